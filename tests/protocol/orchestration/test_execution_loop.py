"""
ExecutionLoop tests: round structure, depth ceiling, sequential tool order
and error substitution.
"""
import pytest

from conduit_service.core.errors import ConnectionFailedError, ToolNotFoundError
from conduit_service.protocol.orchestration.execution_loop import ExecutionLoop
from conduit_service.providers.scripted.provider import ScriptedProvider


def call(name: str, args: str = "{}") -> str:
    return f'<tool_call>{{"name": "{name}", "arguments": {args}}}</tool_call>'


class RecordingRegistry:
    """Registry double: records invocations, answers from a dict."""

    def __init__(self, answers=None):
        self.answers = answers or {}
        self.invoked = []

    async def call_tool(self, name, arguments=None, servers=None):
        self.invoked.append((name, arguments))
        answer = self.answers.get(name, f"{name} result")
        if isinstance(answer, BaseException):
            raise answer
        return answer


def make_loop(replies, registry=None, max_depth=5):
    provider = ScriptedProvider(replies, chunk_size=5)
    registry = registry or RecordingRegistry()
    return ExecutionLoop(provider, registry, model_name="test-model", max_depth=max_depth), provider, registry


class TestRounds:

    @pytest.mark.asyncio
    async def test_plain_reply_is_single_round(self):
        loop, provider, registry = make_loop(["Hello there!"])
        result = await loop.run([{"role": "user", "content": "hi"}])

        assert result.final_text == "Hello there!"
        assert result.depth == 0
        assert len(result.rounds) == 1
        assert registry.invoked == []
        assert result.history[-1] == {"role": "assistant", "content": "Hello there!"}

    @pytest.mark.asyncio
    async def test_tool_round_then_answer(self):
        loop, provider, registry = make_loop(
            ["Checking. " + call("Weather.get_forecast", '{"city": "Oslo"}'), "It is sunny in Oslo."],
            registry=RecordingRegistry({"Weather.get_forecast": "sunny, 21C"}),
        )
        history = [{"role": "user", "content": "weather in Oslo?"}]
        result = await loop.run(history)

        assert registry.invoked == [("Weather.get_forecast", {"city": "Oslo"})]
        assert result.final_text == "It is sunny in Oslo."
        assert result.depth == 1
        roles = [m["role"] for m in result.history]
        assert roles == ["user", "assistant", "user", "assistant"]
        assert '<tool_result name="Weather.get_forecast">\nsunny, 21C\n</tool_result>' in result.history[2]["content"]
        # the model saw the tool results on the second call
        assert provider.calls[1][-1]["content"].startswith("Tool results:")
        assert len(history) == 1

    @pytest.mark.asyncio
    async def test_tools_run_sequentially_in_order(self):
        reply = call("a") + " and " + call("b") + " and " + call("c")
        loop, _, registry = make_loop([reply, "done"])
        result = await loop.run([{"role": "user", "content": "go"}])

        assert [name for name, _ in registry.invoked] == ["a", "b", "c"]
        assert result.rounds[0].tool_results == [("a", "a result"), ("b", "b result"), ("c", "c result")]
        results_msg = result.history[2]["content"]
        assert results_msg.index('name="a"') < results_msg.index('name="b"') < results_msg.index('name="c"')

    @pytest.mark.asyncio
    async def test_iterate_yields_each_round(self):
        loop, _, _ = make_loop([call("a"), call("b"), "final"])
        history = [{"role": "user", "content": "go"}]
        rounds = [r async for r in loop.iterate(history)]
        assert [r.depth for r in rounds] == [0, 1, 2]
        assert [r.executed for r in rounds] == [True, True, False]
        assert len(history) == 6


class TestDepthCeiling:

    @pytest.mark.asyncio
    async def test_stops_after_max_depth_tool_rounds(self):
        loop, provider, registry = make_loop([call("loop")], max_depth=5)
        result = await loop.run([{"role": "user", "content": "go"}])

        assert len(provider.calls) == 6
        assert len(registry.invoked) == 5
        assert result.depth == 5
        last = result.rounds[-1]
        assert last.tool_calls and not last.executed
        assert result.history[-1]["role"] == "assistant"

    @pytest.mark.asyncio
    async def test_zero_depth_never_executes(self):
        loop, provider, registry = make_loop([call("loop")], max_depth=0)
        result = await loop.run([{"role": "user", "content": "go"}])
        assert len(provider.calls) == 1
        assert registry.invoked == []
        assert result.final_text == call("loop")

    @pytest.mark.asyncio
    async def test_starting_depth_counts(self):
        loop, provider, registry = make_loop([call("loop")], max_depth=3)
        await loop.run([{"role": "user", "content": "go"}], depth=2)
        assert len(registry.invoked) == 1
        assert len(provider.calls) == 2


class TestToolErrors:

    @pytest.mark.asyncio
    async def test_failures_become_error_results(self):
        registry = RecordingRegistry(
            {"missing": ToolNotFoundError("missing"), "flaky": ConnectionFailedError("reset")}
        )
        loop, _, _ = make_loop([call("missing") + call("flaky") + call("fine"), "recovered"], registry=registry)
        result = await loop.run([{"role": "user", "content": "go"}])

        assert result.rounds[0].tool_results == [
            ("missing", "Error: Tool not found: missing"),
            ("flaky", "Error: Connection failed: reset"),
            ("fine", "fine result"),
        ]
        assert result.final_text == "recovered"

    @pytest.mark.asyncio
    async def test_tool_error_results_pass_through(self):
        registry = RecordingRegistry({"t": "Tool error: bad input"})
        loop, _, _ = make_loop([call("t"), "ok"], registry=registry)
        result = await loop.run([{"role": "user", "content": "go"}])
        assert result.rounds[0].tool_results == [("t", "Tool error: bad input")]
