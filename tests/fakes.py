"""Shared test doubles: in-process tool servers and sessions."""
import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

from conduit_service.core.errors import NotInitializedError
from conduit_service.core.types import ServerConfig
from conduit_service.mcp.types import InitializeResult, ServerInfo, ToolCallResult, ToolDescriptor


def make_server(name: str = "Weather", endpoint: Optional[str] = None, **kwargs: Any) -> ServerConfig:
    endpoint = endpoint or f"http://{name.lower()}.test/mcp"
    return ServerConfig(name=name, endpoint=endpoint, **kwargs)


def make_tool(name: str, description: str = "", properties: Optional[Dict[str, Any]] = None, required=None) -> ToolDescriptor:
    schema = {"type": "object", "properties": properties or {}}
    if required:
        schema["required"] = required
    return ToolDescriptor.model_validate({"name": name, "description": description, "inputSchema": schema})


def rpc_result(request: Dict[str, Any], result: Dict[str, Any]) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request["id"], "result": result}


def sse_event(message: Dict[str, Any], event: str = "message") -> bytes:
    return f"event: {event}\ndata: {json.dumps(message)}\n\n".encode()


class FakeTransport:
    """Transport double that answers requests with a handler function."""

    def __init__(self, handler: Callable[[Dict[str, Any]], Dict[str, Any]]):
        self.handler = handler
        self.sent: List[Dict[str, Any]] = []
        self.notified: List[Dict[str, Any]] = []
        self.connected = 0
        self.closed = False

    async def connect(self) -> None:
        self.connected += 1

    async def send(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.sent.append(payload)
        reply = self.handler(payload)
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def notify(self, payload: Dict[str, Any]) -> None:
        self.notified.append(payload)

    async def close(self) -> None:
        self.closed = True


class FakeSession:
    """Stands in for MCPSession inside the tool registry."""

    def __init__(
        self,
        config: ServerConfig,
        tools: Optional[List[ToolDescriptor]] = None,
        results: Optional[Dict[str, Any]] = None,
        init_error: Optional[BaseException] = None,
        gate: Optional[asyncio.Event] = None,
        server_version: str = "1.0.0",
    ):
        self.config = config
        self._tools = tools or []
        self.results = results or {}
        self.init_error = init_error
        self.gate = gate
        self.server_version = server_version
        self.is_ready = False
        self.closed = False
        self.calls: List[tuple] = []

    async def initialize(self) -> InitializeResult:
        if self.gate is not None:
            await self.gate.wait()
        if self.init_error is not None:
            raise self.init_error
        self.is_ready = True
        return InitializeResult(
            protocol_version="2024-11-05",
            server_info=ServerInfo(name=f"{self.config.name}-server", version=self.server_version),
        )

    async def list_tools(self) -> List[ToolDescriptor]:
        return list(self._tools)

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolCallResult:
        if not self.is_ready:
            raise NotInitializedError()
        self.calls.append((name, arguments))
        outcome = self.results.get(name, {"content": [{"type": "text", "text": f"{name} ok"}]})
        if isinstance(outcome, BaseException):
            raise outcome
        return ToolCallResult.model_validate(outcome)

    async def test_connection(self):
        result = await self.initialize()
        return result.server_info.name, result.server_info.version

    async def close(self) -> None:
        self.closed = True
        self.is_ready = False


class SessionFactory:
    """Registry session factory backed by per-endpoint FakeSession specs."""

    def __init__(self, **specs: Dict[str, Any]):
        # specs keyed by server name
        self.specs = specs
        self.created: List[FakeSession] = []

    def __call__(self, server: ServerConfig) -> FakeSession:
        session = FakeSession(server, **self.specs.get(server.name, {}))
        self.created.append(session)
        return session
