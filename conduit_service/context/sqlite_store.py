"""SQLite-backed conversation store implementing ConversationStore with WAL + safe PRAGMAs"""
from __future__ import annotations

import datetime
import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

from conduit_service.core.interfaces import ConversationStore
from conduit_service.core.types import ServerConfig


def _now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


class SqliteStore(ConversationStore):
    def __init__(self, dsn: str = "sqlite:///./data/conduit.db"):
        path = dsn[len("sqlite:///") :] if dsn.startswith("sqlite:///") else dsn

        if path == ":memory:":
            target = path
        else:
            p = Path(path).expanduser().resolve()
            p.parent.mkdir(parents=True, exist_ok=True)
            target = str(p)

        self.conn = sqlite3.connect(target, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._init_pragmas()
        self._init_schema()

    def _init_pragmas(self) -> None:
        cur = self.conn.cursor()
        cur.execute("PRAGMA journal_mode=WAL;")
        cur.execute("PRAGMA synchronous=NORMAL;")
        cur.execute("PRAGMA foreign_keys=ON;")
        self.conn.commit()

    def _init_schema(self) -> None:
        cur = self.conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                created_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                ts TEXT NOT NULL,
                FOREIGN KEY(session_id) REFERENCES sessions(id) ON DELETE CASCADE
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_messages_session ON messages(session_id, id)")
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS servers (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                endpoint TEXT NOT NULL,
                transport TEXT NOT NULL,
                api_key TEXT NOT NULL DEFAULT '',
                custom_headers TEXT NOT NULL DEFAULT '{}',
                enabled INTEGER NOT NULL DEFAULT 1,
                position INTEGER NOT NULL
            )
            """
        )
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    # --- sessions ---

    async def create_session(self, session_id: str, created_at: int) -> None:
        self.conn.execute(
            "INSERT OR IGNORE INTO sessions(id, created_at) VALUES (?, ?)",
            (session_id, datetime.datetime.fromtimestamp(created_at).isoformat()),
        )
        self.conn.commit()

    async def list_sessions(self) -> List[Dict[str, Any]]:
        rows = self.conn.execute("SELECT id, created_at FROM sessions ORDER BY created_at DESC").fetchall()
        return [{"session_id": r["id"], "created_at": r["created_at"]} for r in rows]

    async def session_exists(self, session_id: str) -> bool:
        row = self.conn.execute("SELECT 1 FROM sessions WHERE id = ?", (session_id,)).fetchone()
        return row is not None

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and its messages. Returns False if it did not exist."""
        cur = self.conn.cursor()
        cur.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
        cur.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        deleted = cur.rowcount
        self.conn.commit()
        return deleted > 0

    async def delete_all_sessions(self) -> int:
        cur = self.conn.cursor()
        count = cur.execute("SELECT COUNT(*) FROM sessions").fetchone()[0]
        cur.execute("DELETE FROM messages")
        cur.execute("DELETE FROM sessions")
        self.conn.commit()
        return count

    async def add_message(self, session_id: str, role: str, content: str) -> None:
        self.conn.execute(
            "INSERT OR IGNORE INTO sessions(id, created_at) VALUES (?, ?)",
            (session_id, _now()),
        )
        self.conn.execute(
            "INSERT INTO messages(session_id, role, content, ts) VALUES (?, ?, ?, ?)",
            (session_id, role, content, _now()),
        )
        self.conn.commit()

    async def get_history(self, session_id: str) -> List[Dict[str, Any]]:
        rows = self.conn.execute(
            "SELECT role, content FROM messages WHERE session_id = ? ORDER BY id ASC",
            (session_id,),
        ).fetchall()
        return [{"role": r["role"], "content": r["content"]} for r in rows]

    # --- tool servers ---

    @staticmethod
    def _row_to_server(row: sqlite3.Row) -> ServerConfig:
        return ServerConfig.from_dict(
            {
                "id": row["id"],
                "name": row["name"],
                "endpoint": row["endpoint"],
                "transport": row["transport"],
                "api_key": row["api_key"],
                "custom_headers": row["custom_headers"],
                "enabled": bool(row["enabled"]),
            }
        )

    async def list_servers(self) -> List[ServerConfig]:
        rows = self.conn.execute("SELECT * FROM servers ORDER BY position ASC").fetchall()
        return [self._row_to_server(r) for r in rows]

    async def get_server(self, server_id: str) -> Optional[ServerConfig]:
        row = self.conn.execute("SELECT * FROM servers WHERE id = ?", (server_id,)).fetchone()
        return self._row_to_server(row) if row else None

    async def upsert_server(self, server: ServerConfig) -> ServerConfig:
        existing = self.conn.execute("SELECT position FROM servers WHERE id = ?", (server.id,)).fetchone()
        if existing is not None:
            position = existing["position"]
        else:
            position = self.conn.execute("SELECT COALESCE(MAX(position), -1) + 1 FROM servers").fetchone()[0]
        self.conn.execute(
            """
            INSERT OR REPLACE INTO servers(id, name, endpoint, transport, api_key, custom_headers, enabled, position)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                server.id,
                server.name,
                server.endpoint,
                server.transport.value,
                server.api_key,
                json.dumps(server.custom_headers),
                int(server.enabled),
                position,
            ),
        )
        self.conn.commit()
        return server

    async def delete_server(self, server_id: str) -> bool:
        cur = self.conn.execute("DELETE FROM servers WHERE id = ?", (server_id,))
        self.conn.commit()
        return cur.rowcount > 0
