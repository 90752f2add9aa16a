"""
ServiceFactory wiring and the dotted-path loader.
"""
import pytest

from conduit_service.context.memory_store import MemoryStore
from conduit_service.core.factory import ServiceFactory, load
from conduit_service.providers.scripted.provider import ScriptedProvider

CONFIG = {
    "system": {"prompt": "Hi."},
    "model": {"name": "m", "temperature": 0.1},
    "limits": {"max_tool_depth": 3},
    "mcp": {
        "cache_ttl_sec": 10,
        "client_name": "tester",
        "servers": [
            {"name": "Good", "endpoint": "http://good.test/mcp"},
            {"name": "Bad", "endpoint": "good.test"},
        ],
    },
    "providers": {
        "model": {"impl": "conduit_service.providers.scripted.provider.ScriptedProvider", "args": {"replies": ["x"]}},
        "store": {"impl": "conduit_service.context.memory_store.MemoryStore", "args": {"unused": 1}},
    },
}


class TestLoad:

    def test_unknown_kwargs_filtered(self):
        store = load("conduit_service.context.memory_store.MemoryStore", dsn="ignored")
        assert isinstance(store, MemoryStore)

    def test_non_dotted_path_rejected(self):
        with pytest.raises(ValueError):
            load("")


class TestServiceFactory:

    def test_builds_service_from_config(self):
        factory = ServiceFactory(CONFIG)
        service = factory.get_conversation_service()
        assert isinstance(service.provider, ScriptedProvider)
        assert isinstance(service.store, MemoryStore)
        assert service.max_depth == 3
        assert service.temperature == 0.1
        assert service.registry.cache_ttl == 10
        assert service.registry.client_name == "tester"
        assert service.registry.protocol_version == "2024-11-05"
        assert factory.get_conversation_service() is service

    @pytest.mark.asyncio
    async def test_seed_skips_invalid_and_runs_once(self):
        factory = ServiceFactory(CONFIG)
        assert await factory.seed_servers() == 1
        assert [s.name for s in await factory.get_store().list_servers()] == ["Good"]
        assert await factory.seed_servers() == 0
