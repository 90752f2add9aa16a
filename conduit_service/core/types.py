import json
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Dict, Optional, TypedDict
from urllib.parse import urlparse

from conduit_service.mcp.types import ToolDescriptor


class TurnEvent(StrEnum):
    ASSISTANT_ROUND = "assistant_round"
    TOOL_RESULT = "tool_result"
    ERROR = "error"
    DONE = "done"


class Event(TypedDict, total=False):
    type: str  # "assistant_round" | "tool_result" | "error" | "done"
    session_id: str
    data: Dict[str, Any]
    ts: str


class TransportKind(StrEnum):
    HTTP_STREAMABLE = "http_streamable"
    SSE = "sse"

    @classmethod
    def parse(cls, value: Any) -> "TransportKind":
        try:
            return cls(value)
        except ValueError:
            return cls.HTTP_STREAMABLE


class ConnectionState(StrEnum):
    UNKNOWN = "unknown"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class ConnectionStatus:
    state: ConnectionState = ConnectionState.UNKNOWN
    server_name: Optional[str] = None
    server_version: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def unknown(cls) -> "ConnectionStatus":
        return cls()

    @classmethod
    def connecting(cls) -> "ConnectionStatus":
        return cls(state=ConnectionState.CONNECTING)

    @classmethod
    def connected(cls, server_name: Optional[str], server_version: Optional[str]) -> "ConnectionStatus":
        return cls(state=ConnectionState.CONNECTED, server_name=server_name, server_version=server_version)

    @classmethod
    def error(cls, message: str) -> "ConnectionStatus":
        return cls(state=ConnectionState.ERROR, message=message)

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def as_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "server_name": self.server_name,
            "server_version": self.server_version,
            "message": self.message,
        }


@dataclass(frozen=True)
class ServerConfig:
    """Connection settings for one tool server, as kept by the config store."""

    name: str
    endpoint: str
    transport: TransportKind = TransportKind.HTTP_STREAMABLE
    api_key: str = ""
    custom_headers: Dict[str, str] = field(default_factory=dict)
    enabled: bool = True
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def has_valid_endpoint(self) -> bool:
        try:
            parsed = urlparse(self.endpoint)
        except ValueError:
            return False
        return parsed.scheme in ("http", "https") and bool(parsed.netloc)

    def build_headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        # custom headers override defaults
        headers.update(self.custom_headers or {})
        return headers

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServerConfig":
        headers = data.get("custom_headers") or {}
        if isinstance(headers, str):
            try:
                headers = json.loads(headers) or {}
            except json.JSONDecodeError:
                headers = {}
        if not isinstance(headers, dict):
            headers = {}
        kwargs: Dict[str, Any] = {
            "name": data.get("name") or "New MCP Server",
            "endpoint": (data.get("endpoint") or "").strip(),
            "transport": TransportKind.parse(data.get("transport", TransportKind.HTTP_STREAMABLE)),
            "api_key": data.get("api_key") or "",
            "custom_headers": {str(k): str(v) for k, v in headers.items()},
            "enabled": bool(data.get("enabled", True)),
        }
        if data.get("id"):
            kwargs["id"] = str(data["id"])
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "endpoint": self.endpoint,
            "transport": self.transport.value,
            "api_key": self.api_key,
            "custom_headers": dict(self.custom_headers),
            "enabled": self.enabled,
        }


@dataclass(frozen=True)
class ToolWithOrigin:
    tool: ToolDescriptor
    server_name: str
    server_endpoint: str

    @property
    def key(self) -> str:
        return f"{self.server_endpoint}.{self.tool.name}"

    @property
    def qualified_name(self) -> str:
        return f"{self.server_name}.{self.tool.name}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ToolWithOrigin):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)
