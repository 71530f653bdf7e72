"""JSON-RPC messages and the MCP (Model Context Protocol) payload types."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

JSON_RPC_VERSION = "2.0"

PROTOCOL_VERSION = "2024-11-05"

METHOD_INITIALIZE = "initialize"
METHOD_PING = "ping"

METHOD_TOOLS_LIST = "tools/list"
METHOD_TOOLS_CALL = "tools/call"

METHOD_PROMPTS_LIST = "prompts/list"
METHOD_PROMPTS_GET = "prompts/get"

METHOD_RESOURCES_LIST = "resources/list"
METHOD_RESOURCES_TEMPLATE_LIST = "resources/templates/list"
METHOD_RESOURCES_READ = "resources/read"
METHOD_RESOURCES_SUBSCRIBE = "resources/subscribe"
METHOD_RESOURCES_UNSUBSCRIBE = "resources/unsubscribe"

NOTIFICATION_RESOURCES_LIST_CHANGED = "notifications/resources/list_changed"
NOTIFICATION_RESOURCES_UPDATED = "notifications/resources/updated"

DEFAULT_CAPABILITIES: dict[str, Any] = {
    "experimental": {},
    "prompts": {"listChanged": False},
    "resources": {"subscribe": False, "listChanged": False},
    "tools": {"listChanged": False},
}


def _encode(value: Any) -> Any:
    """Turn payload objects into plain JSON-ready values."""
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(value, Mapping):
        return {key: _encode(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    return value


def _require_mapping(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise TypeError(f"{what}: expected an object, got {type(data).__name__}")
    return data


def _string(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TypeError(f"field {key!r}: expected a string, got {type(value).__name__}")
    return value


def _object(data: Mapping[str, Any], key: str) -> dict[str, Any] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise TypeError(f"field {key!r}: expected an object, got {type(value).__name__}")
    return dict(value)


class MCPError(Exception):
    """A JSON-RPC error object that can also be raised."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(code, message)
        self.code = code
        self.message = message
        self.data = data

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def __repr__(self) -> str:
        return f"MCPError(code={self.code}, message={self.message!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MCPError):
            return NotImplemented
        return (self.code, self.message, self.data) == (other.code, other.message, other.data)

    def __hash__(self) -> int:
        return hash((self.code, self.message))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            out["data"] = _encode(self.data)
        return out

    def json_rpc(self) -> Response:
        """A response carrying this error and no id."""
        return Response(error=self)


ERR_PARSE_ERROR = MCPError(-32700, "Parse error")
ERR_INVALID_REQUEST = MCPError(-32600, "Invalid Request")
ERR_METHOD_NOT_FOUND = MCPError(-32601, "Method not found")
ERR_INVALID_PARAMS = MCPError(-32602, "Invalid params")
ERR_INTERNAL_ERROR = MCPError(-32603, "Internal error")

ERR_INVALID_SESSION_ID = MCPError(400, "Invalid session ID")
ERR_SESSION_NOT_FOUND = MCPError(404, "Could not find session")
ERR_TOO_MANY_REQUESTS = MCPError(429, "Too many requests")


@dataclass
class Request:
    jsonrpc: str = JSON_RPC_VERSION
    id: Any = None
    method: str = ""
    params: Any = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id, "method": self.method}
        if self.params is not None:
            out["params"] = _encode(self.params)
        return out

    @classmethod
    def from_dict(cls, data: Any) -> Request:
        data = _require_mapping(data, "request")
        return cls(
            jsonrpc=_string(data, "jsonrpc"),
            id=data.get("id"),
            method=_string(data, "method"),
            params=data.get("params"),
        )


@dataclass
class Response:
    jsonrpc: str = JSON_RPC_VERSION
    id: Any = None
    result: Any = None
    error: MCPError | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.result is not None:
            out["result"] = _encode(self.result)
        if self.error is not None:
            out["error"] = self.error.to_dict()
        return out

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))


@dataclass
class Notification:
    jsonrpc: str = JSON_RPC_VERSION
    method: str = ""
    params: Any = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"jsonrpc": self.jsonrpc, "method": self.method}
        if self.params is not None:
            out["params"] = _encode(self.params)
        return out


def new_response(request_id: Any, result: Any) -> Response:
    """A successful response to the request with the given id."""
    return Response(id=request_id, result=result)


def new_error_response(request_id: Any, code: int, err: BaseException) -> Response:
    """An error response whose message is the text of ``err``."""
    return Response(id=request_id, error=MCPError(code, str(err)))


@dataclass
class ClientInfo:
    name: str = ""
    version: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "version": self.version}

    @classmethod
    def from_dict(cls, data: Any) -> ClientInfo:
        data = _require_mapping(data, "clientInfo")
        return cls(name=_string(data, "name"), version=_string(data, "version"))


@dataclass
class InitializeRequest:
    protocol_version: str = ""
    capabilities: dict[str, Any] | None = None
    client_info: ClientInfo | None = None

    @classmethod
    def from_dict(cls, data: Any) -> InitializeRequest:
        data = _require_mapping(data, "initialize params")
        raw_client = data.get("clientInfo")
        return cls(
            protocol_version=_string(data, "protocolVersion"),
            capabilities=_object(data, "capabilities"),
            client_info=None if raw_client is None else ClientInfo.from_dict(raw_client),
        )


@dataclass
class ServerInfo:
    name: str = ""
    version: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "version": self.version}


@dataclass
class InitializeResponse:
    protocol_version: str = PROTOCOL_VERSION
    capabilities: dict[str, Any] = field(default_factory=lambda: _encode(DEFAULT_CAPABILITIES))
    server_info: ServerInfo = field(default_factory=ServerInfo)

    def to_dict(self) -> dict[str, Any]:
        return {
            "protocolVersion": self.protocol_version,
            "capabilities": _encode(self.capabilities),
            "serverInfo": self.server_info.to_dict(),
        }


@dataclass
class ToolSchema:
    type: str = "object"
    properties: dict[str, Any] = field(default_factory=dict)
    required: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type, "properties": _encode(self.properties)}
        if self.required:
            out["required"] = list(self.required)
        return out


@dataclass
class Tool:
    name: str
    input_schema: ToolSchema = field(default_factory=ToolSchema)
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name}
        if self.description:
            out["description"] = self.description
        out["inputSchema"] = self.input_schema.to_dict()
        return out


@dataclass
class ToolsCallRequest:
    name: str = ""
    arguments: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: Any) -> ToolsCallRequest:
        data = _require_mapping(data, "tools/call params")
        return cls(name=_string(data, "name"), arguments=_object(data, "arguments"))


@dataclass
class Content:
    type: str = "text"
    text: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass
class ToolsCallResponse:
    content: list[Content] = field(default_factory=list)
    is_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"content": [c.to_dict() for c in self.content], "isError": self.is_error}


@dataclass
class Resource:
    uri: str
    name: str
    description: str = ""
    mime_type: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"uri": self.uri, "name": self.name}
        if self.description:
            out["description"] = self.description
        if self.mime_type:
            out["mimeType"] = self.mime_type
        return out


@dataclass
class ResourceTemplate:
    uri_template: str
    name: str
    description: str = ""
    mime_type: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"uriTemplate": self.uri_template, "name": self.name}
        if self.description:
            out["description"] = self.description
        if self.mime_type:
            out["mimeType"] = self.mime_type
        return out


@dataclass
class ResourcesReadRequest:
    uri: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> ResourcesReadRequest:
        data = _require_mapping(data, "resources/read params")
        return cls(uri=_string(data, "uri"))


@dataclass
class ReadingResourceContent:
    uri: str
    mime_type: str = ""
    text: str = ""
    blob: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"uri": self.uri}
        if self.mime_type:
            out["mimeType"] = self.mime_type
        if self.text:
            out["text"] = self.text
        if self.blob:
            out["blob"] = self.blob
        return out


@dataclass
class ReadingResource:
    contents: list[ReadingResourceContent] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"contents": [c.to_dict() for c in self.contents]}


@dataclass
class PromptArgument:
    name: str
    description: str = ""
    required: bool = False

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name}
        if self.description:
            out["description"] = self.description
        if self.required:
            out["required"] = True
        return out


@dataclass
class Prompt:
    name: str
    description: str = ""
    arguments: list[PromptArgument] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name}
        if self.description:
            out["description"] = self.description
        if self.arguments:
            out["arguments"] = [a.to_dict() for a in self.arguments]
        return out


@dataclass
class PromptsListResponse:
    prompts: list[Prompt] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"prompts": [p.to_dict() for p in self.prompts]}


@dataclass
class PromptsGetRequest:
    name: str = ""
    arguments: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: Any) -> PromptsGetRequest:
        data = _require_mapping(data, "prompts/get params")
        return cls(name=_string(data, "name"), arguments=_object(data, "arguments"))


@dataclass
class PromptContent:
    type: str = "text"
    text: str = ""
    resource: Any = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type}
        if self.text:
            out["text"] = self.text
        if self.resource is not None:
            out["resource"] = _encode(self.resource)
        return out


@dataclass
class PromptMessage:
    role: str
    content: PromptContent

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content.to_dict()}


@dataclass
class PromptsGetResponse:
    description: str = ""
    messages: list[PromptMessage] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "messages": [m.to_dict() for m in self.messages],
        }