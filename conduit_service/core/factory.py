from importlib import import_module
from typing import Any, Dict, Optional, cast
import inspect

from conduit_service.core.config import load_settings, mcp_settings
from conduit_service.core.interfaces import ConversationStore, ModelProvider
from conduit_service.core.logging import logger
from conduit_service.core.tool_registry import SessionFactory, ToolRegistry
from conduit_service.core.types import ServerConfig
from conduit_service.protocol.service.conversation_service import ConversationService


def load(dotted: str, **kwargs: Any) -> Any:
    """Import a dotted path and instantiate the class if callable.
    Filters kwargs to match the constructor signature (unless **kwargs is accepted)."""
    if not dotted or "." not in dotted:
        raise ValueError(f"Expected a dotted import path, got {dotted!r}")
    module, name = dotted.rsplit(".", 1)
    obj = getattr(import_module(module), name)

    if isinstance(obj, type):
        params = list(inspect.signature(obj.__init__).parameters.values())
        if any(p.kind == p.VAR_KEYWORD for p in params):
            return obj(**kwargs)
        allowed = {p.name for p in params if p.kind in (p.POSITIONAL_OR_KEYWORD, p.KEYWORD_ONLY) and p.name != "self"}
        dropped = sorted(set(kwargs) - allowed)
        if dropped:
            logger.warning(f"Ignoring unknown args for {dotted}: {dropped}")
        return obj(**{k: v for k, v in kwargs.items() if k in allowed})

    return obj


class ServiceFactory:
    """Builds the provider, store, tool registry and conversation service from settings."""

    def __init__(self, config: Optional[Dict[str, Any]] = None, session_factory: Optional[SessionFactory] = None):
        self.config = config if config is not None else load_settings()
        self.session_factory = session_factory
        self._provider: ModelProvider | None = None
        self._store: ConversationStore | None = None
        self._registry: ToolRegistry | None = None
        self._service: ConversationService | None = None

    def _component(self, key: str) -> Any:
        cfg = self.config.get("providers", {}).get(key, {}) or {}
        return load(cfg.get("impl", ""), **(cfg.get("args", {}) or {}))

    def get_provider(self) -> ModelProvider:
        if not self._provider:
            self._provider = cast(ModelProvider, self._component("model"))
        return self._provider

    def get_store(self) -> ConversationStore:
        if not self._store:
            self._store = cast(ConversationStore, self._component("store"))
        return self._store

    def get_registry(self) -> ToolRegistry:
        if not self._registry:
            mcp = mcp_settings(self.config)
            self._registry = ToolRegistry(
                cache_ttl=mcp["cache_ttl_sec"],
                call_timeout=mcp["call_timeout_sec"],
                connect_timeout=mcp["connect_timeout_sec"],
                client_name=mcp["client_name"],
                protocol_version=mcp["protocol_version"],
                enabled=mcp["enabled"],
                session_factory=self.session_factory,
            )
        return self._registry

    def get_conversation_service(self) -> ConversationService:
        if not self._service:
            model_cfg = self.config.get("model", {}) or {}
            limits = self.config.get("limits", {}) or {}
            self._service = ConversationService(
                provider=self.get_provider(),
                store=self.get_store(),
                registry=self.get_registry(),
                system_prompt=self.config.get("system", {}).get("prompt", ""),
                model_name=model_cfg.get("name", ""),
                max_depth=int(limits.get("max_tool_depth", 5)),
                temperature=model_cfg.get("temperature"),
                max_tokens=model_cfg.get("max_tokens"),
            )
        return self._service

    async def seed_servers(self) -> int:
        """Copy `mcp.servers` into the store when it has none yet. Returns how many were added."""
        store = self.get_store()
        if await store.list_servers():
            return 0
        added = 0
        for entry in mcp_settings(self.config)["servers"]:
            server = ServerConfig.from_dict(entry)
            if not server.has_valid_endpoint:
                logger.warning(f"Skipping configured server {server.name!r}: invalid endpoint {server.endpoint!r}")
                continue
            await store.upsert_server(server)
            added += 1
        if added:
            logger.info(f"Seeded {added} tool server(s) from config")
        return added
