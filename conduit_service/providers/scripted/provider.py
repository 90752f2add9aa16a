import asyncio
from typing import Any, AsyncGenerator, Dict, Iterable, List, Optional

from conduit_service.core.interfaces import ModelProvider


class ScriptedProvider(ModelProvider):
    """
    Replays canned replies, one per stream() call, chunked like a real model.
    When the script runs out the last reply repeats (or `fallback` is used).
    """

    def __init__(
        self,
        replies: Optional[Iterable[str]] = None,
        chunk_size: int = 8,
        delay: float = 0.0,
        fallback: str = "OK.",
    ):
        self.replies: List[str] = list(replies or [])
        self.chunk_size = max(1, chunk_size)
        self.delay = delay
        self.fallback = fallback
        self.calls: List[List[Dict[str, Any]]] = []

    def _next_reply(self) -> str:
        index = len(self.calls) - 1
        if index < len(self.replies):
            return self.replies[index]
        return self.replies[-1] if self.replies else self.fallback

    async def stream(
        self,
        model_name: str,
        messages: List[Dict[str, Any]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncGenerator[str, None]:
        self.calls.append([dict(m) for m in messages])
        reply = self._next_reply()
        for i in range(0, len(reply), self.chunk_size):
            if self.delay:
                await asyncio.sleep(self.delay)
            yield reply[i : i + self.chunk_size]

    async def list_models(self) -> List[str]:
        return ["scripted"]
