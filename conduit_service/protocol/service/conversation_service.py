from datetime import datetime
import time
import uuid
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

from conduit_service.core.interfaces import ConversationStore, ModelProvider
from conduit_service.core.tool_registry import ToolRegistry
from conduit_service.core.types import ServerConfig, ToolWithOrigin
from conduit_service.protocol.orchestration.orchestrator import ContextProvider, orchestrate


class ConversationService:
    def __init__(
        self,
        provider: ModelProvider,
        store: ConversationStore,
        registry: ToolRegistry,
        system_prompt: str,
        model_name: str,
        max_depth: int = 5,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        context_provider: Optional[ContextProvider] = None,
    ):
        self.provider = provider
        self.store = store
        self.registry = registry
        self.system_prompt = system_prompt
        self.model_name = model_name
        self.max_depth = max_depth
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.context_provider = context_provider

    async def stream(
        self, session_id: str, prompt: str, model_name: Optional[str] = None
    ) -> AsyncGenerator[bytes, None]:
        """Run one turn and stream its NDJSON events"""
        if not await self.store.session_exists(session_id):
            await self.store.create_session(session_id, int(time.time()))

        async for chunk in orchestrate(
            session_id=session_id,
            prompt=prompt,
            model_name=model_name or self.model_name,
            provider=self.provider,
            store=self.store,
            registry=self.registry,
            system_prompt=self.system_prompt,
            max_depth=self.max_depth,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            context_provider=self.context_provider,
        ):
            yield chunk

    # --- Session Management ---

    async def create_session(self) -> Dict[str, Any]:
        """Creates a new session and returns its details."""
        session_id = str(uuid.uuid4())
        created_at = int(time.time())
        await self.store.create_session(session_id, created_at)
        return {"session_id": session_id, "created_at": datetime.fromtimestamp(created_at).isoformat()}

    async def list_sessions(self) -> List[Dict[str, Any]]:
        return await self.store.list_sessions()

    async def session_exists(self, session_id: str) -> bool:
        return await self.store.session_exists(session_id)

    async def get_session_messages(self, session_id: str) -> List[Dict[str, Any]]:
        return await self.store.get_history(session_id)

    async def delete_session(self, session_id: str) -> bool:
        return await self.store.delete_session(session_id)

    async def delete_all_sessions(self) -> int:
        return await self.store.delete_all_sessions()

    # --- Tool servers ---

    async def list_servers(self) -> List[ServerConfig]:
        return await self.store.list_servers()

    async def save_server(self, server: ServerConfig) -> ServerConfig:
        previous = await self.store.get_server(server.id)
        saved = await self.store.upsert_server(server)
        # force the next prompt to pick up the change
        if previous is not None and previous.endpoint != saved.endpoint:
            await self.registry.remove_server(previous.endpoint)
        await self.registry.remove_server(saved.endpoint)
        self.registry.schedule_refresh(await self.store.enabled_servers())
        return saved

    async def delete_server(self, server_id: str) -> bool:
        server = await self.store.get_server(server_id)
        if server is None:
            return False
        await self.registry.remove_server(server.endpoint)
        return await self.store.delete_server(server_id)

    async def refresh_tools(self) -> None:
        # a background refresh would make this one a no-op
        await self.registry.wait_for_refresh()
        await self.registry.refresh(await self.store.enabled_servers())

    async def server_status(self) -> List[Dict[str, Any]]:
        out = []
        for server in await self.store.list_servers():
            out.append({"server": server, "status": self.registry.status_for(server)})
        return out

    async def test_server(self, server_id: str) -> Tuple[Optional[str], Optional[str]]:
        server = await self.store.get_server(server_id)
        if server is None:
            raise KeyError(server_id)
        return await self.registry.test_connection(server)

    async def list_tools(self) -> List[ToolWithOrigin]:
        """Cached catalog; a stale cache is refreshed in the background."""
        if not self.registry.is_fresh():
            self.registry.schedule_refresh(await self.store.enabled_servers())
        return self.registry.tools

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> str:
        return await self.registry.call_tool(name, arguments, await self.store.enabled_servers())

    # --- Models ---

    async def list_models(self) -> List[str]:
        return await self.provider.list_models()
