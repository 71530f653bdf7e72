"""MCP message types, SSE sessions with a request queue, and the chat-log service."""

__all__ = ["protocol", "service", "transport"]