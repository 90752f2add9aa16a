import inspect
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List, Optional, Union

from conduit_service.core.interfaces import ConversationStore, ModelProvider
from conduit_service.core.logging import logger
from conduit_service.core.tool_registry import ToolRegistry
from conduit_service.core.types import TurnEvent
from conduit_service.protocol.orchestration.emitter import NdjsonEmitter
from conduit_service.protocol.orchestration.execution_loop import ExecutionLoop

ContextProvider = Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]


async def capture_context(context_provider: Optional[ContextProvider]) -> Optional[str]:
    if context_provider is None:
        return None
    try:
        snapshot = context_provider()
        if inspect.isawaitable(snapshot):
            snapshot = await snapshot
    except Exception as e:
        logger.warning(f"Context capture failed: {e}")
        return None
    return snapshot or None


def build_request_messages(
    history: List[Dict[str, Any]],
    system_prompt: str,
    tools_prompt: str,
    context_text: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """System prompt (+ tool catalog), optional captured context, then the stored history."""
    system_parts = [p for p in (system_prompt.strip(), tools_prompt.strip()) if p]
    messages: List[Dict[str, Any]] = []
    if system_parts:
        messages.append({"role": "system", "content": "\n\n".join(system_parts)})
    if context_text:
        messages.append({"role": "system", "content": context_text})
    messages.extend({"role": m["role"], "content": m["content"]} for m in history)
    return messages


async def orchestrate(
    session_id: str,
    prompt: str,
    model_name: str,
    provider: ModelProvider,
    store: ConversationStore,
    registry: ToolRegistry,
    system_prompt: str,
    max_depth: int = 5,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    context_provider: Optional[ContextProvider] = None,
) -> AsyncGenerator[bytes, None]:
    """
    One user turn: store -> request messages -> execution loop -> NDJSON events.
    Only the final assistant reply is persisted.
    """
    emitter = NdjsonEmitter(session_id)

    try:
        logger.info(f"Turn started: session_id={session_id}, model_name={model_name}")
        await store.add_user(session_id, prompt)

        servers = await store.enabled_servers()
        history = await store.get_history(session_id)
        messages = build_request_messages(
            history,
            system_prompt=system_prompt,
            tools_prompt=registry.system_prompt(servers),
            context_text=await capture_context(context_provider),
        )

        loop = ExecutionLoop(
            provider,
            registry,
            model_name=model_name,
            max_depth=max_depth,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        final_text = ""
        async for rnd in loop.iterate(messages, servers):
            final_text = rnd.content
            yield emitter.emit(
                TurnEvent.ASSISTANT_ROUND,
                {
                    "depth": rnd.depth,
                    "content": rnd.content,
                    "tool_calls": [{"name": c.name, "arguments": c.arguments} for c in rnd.tool_calls],
                },
            )
            for name, result in rnd.tool_results:
                yield emitter.emit(TurnEvent.TOOL_RESULT, {"depth": rnd.depth, "tool_name": name, "result": result})

        if final_text:
            await store.add_assistant_text(session_id, final_text)
            logger.info(f"Assistant text persisted: session_id={session_id}, text_length={len(final_text)}")

    except Exception as e:
        logger.exception(f"Exception in orchestrate: session_id={session_id}, error={e}")
        yield emitter.emit(TurnEvent.ERROR, {"message": str(e)})

    logger.info(f"Turn complete: session_id={session_id}")
    yield emitter.emit(TurnEvent.DONE)
