from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional

from conduit_service.core.types import ServerConfig


class ModelProvider(ABC):
    @abstractmethod
    def stream(
        self,
        model_name: str,
        messages: List[Dict[str, Any]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[str]:
        """Stream text deltas of one chat completion"""
        ...

    @abstractmethod
    async def list_models(self) -> List[str]:
        """List available models."""
        ...


class ConversationStore(ABC):
    """Conversation history and tool-server configuration records."""

    # --- sessions ---

    @abstractmethod
    async def create_session(self, session_id: str, created_at: int) -> None:
        ...

    @abstractmethod
    async def list_sessions(self) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def session_exists(self, session_id: str) -> bool:
        ...

    @abstractmethod
    async def delete_session(self, session_id: str) -> bool:
        """Delete a session by ID. Returns True if deleted, False if not found."""
        ...

    @abstractmethod
    async def delete_all_sessions(self) -> int:
        """Delete all sessions and return the count of deleted sessions."""
        ...

    @abstractmethod
    async def add_message(self, session_id: str, role: str, content: str) -> None:
        ...

    @abstractmethod
    async def get_history(self, session_id: str) -> List[Dict[str, Any]]:
        ...

    async def add_user(self, session_id: str, text: str) -> None:
        await self.add_message(session_id, "user", text)

    async def add_assistant_text(self, session_id: str, text: str) -> None:
        await self.add_message(session_id, "assistant", text)

    # --- tool servers ---

    @abstractmethod
    async def list_servers(self) -> List[ServerConfig]:
        ...

    @abstractmethod
    async def get_server(self, server_id: str) -> Optional[ServerConfig]:
        ...

    @abstractmethod
    async def upsert_server(self, server: ServerConfig) -> ServerConfig:
        ...

    @abstractmethod
    async def delete_server(self, server_id: str) -> bool:
        ...

    async def enabled_servers(self) -> List[ServerConfig]:
        return [s for s in await self.list_servers() if s.enabled]
