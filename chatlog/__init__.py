"""Errors, stored configuration and MCP serving for chat history."""

__version__ = "0.1.0"
__all__ = ["config", "errors", "mcp"]