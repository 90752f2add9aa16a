"""Async in-memory conversation store implementing ConversationStore"""
import datetime
from typing import Any, Dict, List, Optional

from conduit_service.core.interfaces import ConversationStore
from conduit_service.core.types import ServerConfig


class MemoryStore(ConversationStore):
    def __init__(self):
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.servers: Dict[str, ServerConfig] = {}

    async def create_session(self, session_id: str, created_at: int) -> None:
        self.sessions.setdefault(
            session_id,
            {"created_at": datetime.datetime.fromtimestamp(created_at).isoformat(), "messages": []},
        )

    async def list_sessions(self) -> List[Dict[str, Any]]:
        rows = [{"session_id": sid, "created_at": s["created_at"]} for sid, s in self.sessions.items()]
        return sorted(rows, key=lambda r: r["created_at"], reverse=True)

    async def session_exists(self, session_id: str) -> bool:
        return session_id in self.sessions

    async def delete_session(self, session_id: str) -> bool:
        return self.sessions.pop(session_id, None) is not None

    async def delete_all_sessions(self) -> int:
        count = len(self.sessions)
        self.sessions.clear()
        return count

    async def add_message(self, session_id: str, role: str, content: str) -> None:
        session = self.sessions.setdefault(
            session_id, {"created_at": datetime.datetime.now().isoformat(), "messages": []}
        )
        session["messages"].append({"role": role, "content": content})

    async def get_history(self, session_id: str) -> List[Dict[str, Any]]:
        session = self.sessions.get(session_id)
        if session is None:
            return []
        return [dict(m) for m in session["messages"]]

    async def list_servers(self) -> List[ServerConfig]:
        return list(self.servers.values())

    async def get_server(self, server_id: str) -> Optional[ServerConfig]:
        return self.servers.get(server_id)

    async def upsert_server(self, server: ServerConfig) -> ServerConfig:
        self.servers[server.id] = server
        return server

    async def delete_server(self, server_id: str) -> bool:
        return self.servers.pop(server_id, None) is not None
