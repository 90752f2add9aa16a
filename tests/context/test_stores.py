"""
Conversation stores: the SQLite store and the in-memory store share one contract.
"""
import time

import pytest

from conduit_service.context.memory_store import MemoryStore
from conduit_service.context.sqlite_store import SqliteStore
from tests.fakes import make_server


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemoryStore()
    return SqliteStore(dsn=f"sqlite:///{tmp_path / 'conduit.db'}")


class TestSessions:

    @pytest.mark.asyncio
    async def test_create_list_delete(self, store):
        await store.create_session("s1", int(time.time()))
        assert await store.session_exists("s1")
        assert [s["session_id"] for s in await store.list_sessions()] == ["s1"]
        assert await store.delete_session("s1") is True
        assert await store.delete_session("s1") is False
        assert not await store.session_exists("s1")

    @pytest.mark.asyncio
    async def test_history_in_order(self, store):
        await store.create_session("s1", int(time.time()))
        await store.add_user("s1", "hi")
        await store.add_assistant_text("s1", "hello")
        await store.add_user("s1", "weather?")
        assert await store.get_history("s1") == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "user", "content": "weather?"},
        ]

    @pytest.mark.asyncio
    async def test_unknown_session_has_empty_history(self, store):
        assert await store.get_history("nope") == []

    @pytest.mark.asyncio
    async def test_add_message_creates_session(self, store):
        await store.add_user("implicit", "hi")
        assert await store.session_exists("implicit")

    @pytest.mark.asyncio
    async def test_delete_all(self, store):
        for sid in ("a", "b"):
            await store.add_user(sid, "x")
        assert await store.delete_all_sessions() == 2
        assert await store.list_sessions() == []
        assert await store.get_history("a") == []


class TestServers:

    @pytest.mark.asyncio
    async def test_upsert_keeps_insertion_order(self, store):
        first, second = make_server("First"), make_server("Second")
        await store.upsert_server(first)
        await store.upsert_server(second)
        updated = make_server("First", endpoint="http://moved/mcp", id=first.id, enabled=False)
        await store.upsert_server(updated)

        servers = await store.list_servers()
        assert [s.name for s in servers] == ["First", "Second"]
        assert servers[0] == updated
        assert await store.get_server(first.id) == updated
        assert [s.name for s in await store.enabled_servers()] == ["Second"]

    @pytest.mark.asyncio
    async def test_headers_and_key_persisted(self, store):
        server = make_server("S", api_key="k", custom_headers={"X-A": "1"})
        await store.upsert_server(server)
        assert await store.get_server(server.id) == server

    @pytest.mark.asyncio
    async def test_delete(self, store):
        server = make_server("S")
        await store.upsert_server(server)
        assert await store.delete_server(server.id) is True
        assert await store.delete_server(server.id) is False
        assert await store.get_server(server.id) is None
