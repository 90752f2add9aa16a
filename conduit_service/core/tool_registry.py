import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from conduit_service.core.errors import (
    ConnectionFailedError,
    EndpointNotReceivedError,
    HTTPStatusError,
    MCPClientError,
    NotInitializedError,
    RequestTimeoutError,
    ToolNotFoundError,
)
from conduit_service.core.logging import logger
from conduit_service.core.types import ConnectionStatus, ServerConfig, ToolWithOrigin
from conduit_service.mcp.session import MCPSession
from conduit_service.mcp.types import PROTOCOL_VERSION, ToolDescriptor
from conduit_service.protocol.prompts import build_tools_prompt

SessionFactory = Callable[[ServerConfig], MCPSession]

# failures after which a session is not worth keeping
_CONNECTION_ERRORS = (RequestTimeoutError, ConnectionFailedError, EndpointNotReceivedError, HTTPStatusError)


def parse_tool_name(full_name: str) -> Tuple[Optional[str], str]:
    """Split "ServerName.tool_name" on the first dot; (None, name) when unprefixed."""
    server, sep, tool = full_name.partition(".")
    if sep and server and tool:
        return server, tool
    return None, full_name


@dataclass
class _LoadOutcome:
    server: ServerConfig
    tools: Optional[List[ToolWithOrigin]] = None
    server_name: Optional[str] = None
    server_version: Optional[str] = None
    error: Optional[BaseException] = None


class ToolRegistry:
    """
    Tool catalog aggregated from every enabled tool server.

    Owns one MCPSession per server endpoint. Refreshes fan out one task per
    server; this object's coroutine is the only writer of the aggregate list
    and the status map, so callers need no locking. Once a refresh finishes
    the catalog is in server order, so an ambiguous unqualified tool name
    resolves to the first-registered server that offers it.
    """

    def __init__(
        self,
        cache_ttl: float = 300.0,
        call_timeout: float = 30.0,
        connect_timeout: float = 60.0,
        client_name: str = "Conduit",
        protocol_version: str = PROTOCOL_VERSION,
        session_factory: Optional[SessionFactory] = None,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cache_ttl = cache_ttl
        self.call_timeout = call_timeout
        self.connect_timeout = connect_timeout
        self.client_name = client_name
        self.protocol_version = protocol_version
        self.enabled = enabled
        self._session_factory = session_factory or self._default_session_factory
        self._clock = clock
        self._tools: List[ToolWithOrigin] = []
        self._status: Dict[str, ConnectionStatus] = {}
        self._sessions: Dict[str, MCPSession] = {}
        self._last_fetch: Optional[float] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self.is_loading = False
        self.last_error: Optional[str] = None

    def _default_session_factory(self, server: ServerConfig) -> MCPSession:
        return MCPSession(
            server,
            call_timeout=self.call_timeout,
            connect_timeout=self.connect_timeout,
            client_name=self.client_name,
            protocol_version=self.protocol_version,
        )

    # --- read-only views ---

    @property
    def tools(self) -> List[ToolWithOrigin]:
        return list(self._tools)

    @property
    def status(self) -> Dict[str, ConnectionStatus]:
        return dict(self._status)

    def status_for(self, server: ServerConfig) -> ConnectionStatus:
        return self._status.get(server.endpoint, ConnectionStatus.unknown())

    @property
    def last_fetch(self) -> Optional[float]:
        return self._last_fetch

    def is_fresh(self) -> bool:
        return self._last_fetch is not None and (self._clock() - self._last_fetch) < self.cache_ttl

    # --- refresh ---

    async def refresh(self, servers: Iterable[ServerConfig]) -> None:
        """Reconnect to every enabled server concurrently and rebuild the catalog."""
        if not self.enabled:
            await self.clear_cache()
            return
        if self.is_loading:
            logger.info("Tool refresh already in progress, skipping")
            return

        self.is_loading = True
        self.last_error = None
        try:
            eligible = [s for s in servers if s.enabled and s.has_valid_endpoint]
            logger.info(f"Refreshing tools from {len(eligible)} server(s): {[s.name for s in eligible]}")
            await self._prune(eligible)
            self._tools = []

            tasks = []
            for server in eligible:
                self._status[server.endpoint] = ConnectionStatus.connecting()
                session = await self._get_or_create_session(server)
                tasks.append(asyncio.create_task(self._load_server(server, session)))

            # merge each server as soon as it finishes so slow servers don't hold back fast ones
            for next_done in asyncio.as_completed(tasks):
                outcome = await next_done
                self._merge(outcome)
                if outcome.error is not None:
                    await self._evict(outcome.server.endpoint)

            # partial results arrive in completion order; the final catalog follows server order
            position = {s.endpoint: i for i, s in enumerate(eligible)}
            self._tools.sort(key=lambda t: position.get(t.server_endpoint, len(position)))
            self._last_fetch = self._clock()
            logger.info(f"Tool refresh complete, {len(self._tools)} tool(s) available")
        finally:
            self.is_loading = False

    async def _load_server(self, server: ServerConfig, session: MCPSession) -> _LoadOutcome:
        try:
            init = await session.initialize()
            tools = await session.list_tools()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Error fetching tools from {server.name}: {e}")
            return _LoadOutcome(server=server, error=e)
        info = init.server_info
        wrapped = [ToolWithOrigin(tool=t, server_name=server.name, server_endpoint=server.endpoint) for t in tools]
        logger.info(f"Fetched {len(wrapped)} tool(s) from {server.name}")
        return _LoadOutcome(
            server=server,
            tools=wrapped,
            server_name=info.name if info else None,
            server_version=info.version if info else None,
        )

    def _merge(self, outcome: _LoadOutcome) -> None:
        endpoint = outcome.server.endpoint
        if outcome.error is not None:
            self._status[endpoint] = ConnectionStatus.error(str(outcome.error) or type(outcome.error).__name__)
            self.last_error = f"{outcome.server.name}: {outcome.error}"
            return
        self._status[endpoint] = ConnectionStatus.connected(outcome.server_name, outcome.server_version)
        self._tools.extend(outcome.tools or [])

    async def _get_or_create_session(self, server: ServerConfig) -> MCPSession:
        existing = self._sessions.get(server.endpoint)
        if existing is not None:
            if existing.config == server:
                return existing
            # settings changed; start over with the new ones
            await self._evict(server.endpoint)
        session = self._session_factory(server)
        self._sessions[server.endpoint] = session
        return session

    async def _evict(self, endpoint: str) -> None:
        session = self._sessions.pop(endpoint, None)
        if session is None:
            return
        try:
            await session.close()
        except Exception as e:
            logger.debug(f"Error closing session for {endpoint}: {e}")

    async def _prune(self, eligible: Sequence[ServerConfig]) -> None:
        """Drop sessions and status for servers that were removed or disabled."""
        keep = {s.endpoint for s in eligible}
        for endpoint in [e for e in self._sessions if e not in keep]:
            await self._evict(endpoint)
        for endpoint in [e for e in self._status if e not in keep]:
            self._status.pop(endpoint, None)

    def schedule_refresh(self, servers: Iterable[ServerConfig]) -> Optional[asyncio.Task]:
        """Start a background refresh unless one is already running."""
        if self.is_loading or (self._refresh_task is not None and not self._refresh_task.done()):
            return self._refresh_task
        self._refresh_task = asyncio.create_task(self.refresh(list(servers)))
        self._refresh_task.add_done_callback(self._log_refresh_failure)
        return self._refresh_task

    @staticmethod
    def _log_refresh_failure(task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background tool refresh failed: {task.exception()}")

    async def wait_for_refresh(self) -> None:
        task = self._refresh_task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    # --- prompt support ---

    def _cached_or_refresh(self, servers: Iterable[ServerConfig]) -> List[ToolWithOrigin]:
        if self.is_fresh() and self._tools:
            return list(self._tools)
        # never block the caller on slow servers; answer with what we have
        self.schedule_refresh(servers)
        return list(self._tools)

    def tools_for_prompt(self, servers: Iterable[ServerConfig]) -> List[ToolDescriptor]:
        if not self.enabled:
            return []
        return [t.tool for t in self._cached_or_refresh(servers)]

    def system_prompt(self, servers: Iterable[ServerConfig]) -> str:
        if not self.enabled:
            return ""
        return build_tools_prompt(self._cached_or_refresh(servers))

    # --- tool calls ---

    def resolve(self, qualified_name: str) -> Optional[ToolWithOrigin]:
        server_hint, tool_name = parse_tool_name(qualified_name)
        if server_hint is not None and any(t.server_name == server_hint for t in self._tools):
            return next(
                (t for t in self._tools if t.server_name == server_hint and t.tool.name == tool_name),
                None,
            )
        # no known server prefix: the whole string may itself be a tool name
        match = next((t for t in self._tools if t.tool.name == qualified_name), None)
        if match is None and server_hint is not None:
            match = next((t for t in self._tools if t.tool.name == tool_name), None)
        return match

    async def call_tool(
        self,
        qualified_name: str,
        arguments: Optional[Dict[str, Any]] = None,
        servers: Optional[Iterable[ServerConfig]] = None,
    ) -> str:
        """Invoke a tool and return its text result."""
        target = self.resolve(qualified_name)
        if target is None and servers is not None and not self.is_loading and not self.is_fresh():
            await self.refresh(servers)
            target = self.resolve(qualified_name)
        if target is None:
            raise ToolNotFoundError(qualified_name)

        session = self._sessions.get(target.server_endpoint)
        if session is None or not session.is_ready:
            raise NotInitializedError()

        logger.info(f"Calling tool {target.qualified_name} args={arguments}")
        try:
            result = await session.call_tool(target.tool.name, arguments)
        except _CONNECTION_ERRORS as e:
            self._status[target.server_endpoint] = ConnectionStatus.error(str(e))
            await self._evict(target.server_endpoint)
            raise

        text = result.text_content
        if result.has_error:
            return f"Tool error: {text or 'Unknown error'}"
        return text or ""

    # --- maintenance ---

    async def test_connection(self, server: ServerConfig) -> Tuple[Optional[str], Optional[str]]:
        """Handshake with a server on a throwaway session and record the outcome."""
        self._status[server.endpoint] = ConnectionStatus.connecting()
        session = self._session_factory(server)
        try:
            name, version = await session.test_connection()
        except MCPClientError as e:
            self._status[server.endpoint] = ConnectionStatus.error(str(e))
            raise
        finally:
            try:
                await session.close()
            except Exception as e:
                logger.debug(f"Error closing test session for {server.endpoint}: {e}")
        self._status[server.endpoint] = ConnectionStatus.connected(name, version)
        return name, version

    async def remove_server(self, endpoint: str) -> None:
        await self._evict(endpoint)
        self._status.pop(endpoint, None)
        self._tools = [t for t in self._tools if t.server_endpoint != endpoint]

    async def clear_cache(self) -> None:
        for endpoint in list(self._sessions):
            await self._evict(endpoint)
        self._tools = []
        self._status.clear()
        self._last_fetch = None

    async def aclose(self) -> None:
        task, self._refresh_task = self._refresh_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self.clear_cache()
