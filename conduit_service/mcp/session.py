import asyncio
import logging
from enum import StrEnum
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from conduit_service import __version__
from conduit_service.core.errors import DecodeError, MCPClientError, NotInitializedError, ProtocolError
from conduit_service.core.types import ServerConfig
from conduit_service.mcp.transport import (
    DEFAULT_CALL_TIMEOUT,
    DEFAULT_CONNECT_TIMEOUT,
    Transport,
    create_transport,
)
from conduit_service.mcp.types import (
    PROTOCOL_VERSION,
    ClientInfo,
    InitializeResult,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    ServerCapabilities,
    ServerInfo,
    ToolCallResult,
    ToolDescriptor,
    ToolsListResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class SessionState(StrEnum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class MCPSession:
    """
    One protocol connection to a tool server.

    Owns its transport, performs the initialize handshake and exposes tool
    listing and invocation. Request ids increase monotonically per session.
    """

    def __init__(
        self,
        config: ServerConfig,
        transport: Optional[Transport] = None,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        client_name: str = "Conduit",
        protocol_version: str = PROTOCOL_VERSION,
    ):
        self.config = config
        self.transport = transport or create_transport(
            config, call_timeout=call_timeout, connect_timeout=connect_timeout
        )
        self.client_info = ClientInfo(name=client_name, version=__version__)
        self.protocol_version = protocol_version
        self.state = SessionState.UNINITIALIZED
        self.server_capabilities: Optional[ServerCapabilities] = None
        self.server_info: Optional[ServerInfo] = None
        self._init_result: Optional[InitializeResult] = None
        self._request_id = 0
        self._init_lock = asyncio.Lock()

    @property
    def is_ready(self) -> bool:
        return self.state == SessionState.READY

    def _next_request_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def initialize(self) -> InitializeResult:
        """Connect the transport and run the capability/version handshake."""
        async with self._init_lock:
            if self.state == SessionState.READY and self._init_result is not None:
                return self._init_result

            self.state = SessionState.INITIALIZING
            try:
                await self.transport.connect()
                result = await self._request(
                    "initialize",
                    {
                        "protocolVersion": self.protocol_version,
                        "capabilities": {},
                        "clientInfo": self.client_info.model_dump(),
                    },
                    InitializeResult,
                )
            except BaseException:
                self.state = SessionState.UNINITIALIZED
                raise

            self.server_capabilities = result.capabilities
            self.server_info = result.server_info
            self._init_result = result
            self.state = SessionState.READY
            if result.protocol_version != self.protocol_version:
                logger.info(
                    f"{self.config.name}: server negotiated protocol {result.protocol_version} "
                    f"(requested {self.protocol_version})"
                )

        await self._notify("notifications/initialized")
        return result

    async def list_tools(self) -> List[ToolDescriptor]:
        self._require_ready()
        tools: List[ToolDescriptor] = []
        cursor: Optional[str] = None
        seen = set()
        while True:
            params = {"cursor": cursor} if cursor else None
            page = await self._request("tools/list", params, ToolsListResult)
            tools.extend(page.tools)
            cursor = page.next_cursor
            if not cursor or cursor in seen:
                break
            seen.add(cursor)
        return tools

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolCallResult:
        self._require_ready()
        params: Dict[str, Any] = {"name": name}
        if arguments is not None:
            params["arguments"] = arguments
        return await self._request("tools/call", params, ToolCallResult)

    async def test_connection(self) -> Tuple[Optional[str], Optional[str]]:
        result = await self.initialize()
        info = result.server_info
        return (info.name if info else None, info.version if info else None)

    async def close(self) -> None:
        self.state = SessionState.UNINITIALIZED
        self._init_result = None
        await self.transport.close()

    def _require_ready(self) -> None:
        if self.state != SessionState.READY:
            raise NotInitializedError()

    async def _request(self, method: str, params: Optional[Dict[str, Any]], model: Type[T]) -> T:
        req = JSONRPCRequest(id=self._next_request_id(), method=method, params=params)
        logger.debug(f"{self.config.name}: -> {method} (id={req.id})")
        msg = await self.transport.send(req.to_payload())
        try:
            resp = JSONRPCResponse.model_validate(msg)
        except ValidationError as e:
            raise DecodeError(f"malformed JSON-RPC reply to '{method}': {e}") from e
        if resp.error is not None:
            raise ProtocolError(resp.error.code, resp.error.message, resp.error.data)
        if resp.result is None:
            raise DecodeError(f"reply to '{method}' has neither result nor error")
        try:
            return model.model_validate(resp.result)
        except ValidationError as e:
            raise DecodeError(f"unexpected result for '{method}': {e}") from e

    async def _notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Fire-and-forget notification; failures are logged only."""
        note = JSONRPCNotification(method=method, params=params)
        try:
            await self.transport.notify(note.to_payload())
        except MCPClientError as e:
            logger.warning(f"{self.config.name}: notification '{method}' failed: {e}")
