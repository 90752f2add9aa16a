from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Dict, Iterable, List, Optional, Tuple

from conduit_service.core.interfaces import ModelProvider
from conduit_service.core.logging import logger
from conduit_service.core.tool_registry import ToolRegistry
from conduit_service.core.types import ServerConfig
from conduit_service.protocol.parsers.tool_calls import ToolCall, extract_tool_calls, format_tool_results

DEFAULT_MAX_DEPTH = 5


@dataclass
class AssistantRound:
    """One model reply plus whatever tool calls it triggered."""

    depth: int
    content: str
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_results: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def executed(self) -> bool:
        return bool(self.tool_results)


@dataclass
class TurnResult:
    history: List[Dict[str, Any]]
    rounds: List[AssistantRound]

    @property
    def final_text(self) -> str:
        return self.rounds[-1].content if self.rounds else ""

    @property
    def depth(self) -> int:
        return self.rounds[-1].depth if self.rounds else 0


class ExecutionLoop:
    """
    Interleaves model generation with tool execution for one user turn.

    Each round: generate a reply, append it, extract tool calls, run them in
    document order, append one results message, go again. Stops when a reply
    has no tool calls or the depth ceiling is reached.
    """

    def __init__(
        self,
        provider: ModelProvider,
        registry: ToolRegistry,
        model_name: str,
        max_depth: int = DEFAULT_MAX_DEPTH,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ):
        self.provider = provider
        self.registry = registry
        self.model_name = model_name
        self.max_depth = max_depth
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def iterate(
        self,
        history: List[Dict[str, Any]],
        servers: Optional[Iterable[ServerConfig]] = None,
        depth: int = 0,
    ) -> AsyncGenerator[AssistantRound, None]:
        """Yield each round as it completes. `history` is extended in place."""
        servers = list(servers) if servers is not None else None
        while True:
            reply = await self._generate(history)
            history.append({"role": "assistant", "content": reply})
            calls = extract_tool_calls(reply)
            rnd = AssistantRound(depth=depth, content=reply, tool_calls=calls)

            if not calls:
                yield rnd
                return
            if depth >= self.max_depth:
                logger.warning(f"Tool depth limit ({self.max_depth}) reached, not executing {len(calls)} call(s)")
                yield rnd
                return

            logger.info(f"Round {depth}: executing {len(calls)} tool call(s)")
            for call in calls:
                rnd.tool_results.append((call.name, await self._invoke(call, servers)))
            yield rnd

            history.append({"role": "user", "content": format_tool_results(rnd.tool_results)})
            depth += 1

    async def run(
        self,
        history: List[Dict[str, Any]],
        servers: Optional[Iterable[ServerConfig]] = None,
        depth: int = 0,
    ) -> TurnResult:
        working = list(history)
        rounds = [rnd async for rnd in self.iterate(working, servers, depth)]
        return TurnResult(history=working, rounds=rounds)

    async def _generate(self, history: List[Dict[str, Any]]) -> str:
        parts: List[str] = []
        async for chunk in self.provider.stream(
            model_name=self.model_name,
            messages=history,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        ):
            if chunk:
                parts.append(chunk)
        return "".join(parts)

    async def _invoke(self, call: ToolCall, servers: Optional[List[ServerConfig]]) -> str:
        try:
            result = await self.registry.call_tool(call.name, call.arguments, servers)
            logger.info(f"Tool {call.name} returned {len(result)} chars")
            return result
        except Exception as e:
            logger.exception(f"Error running tool {call.name}: {e}")
            return f"Error: {e}"
