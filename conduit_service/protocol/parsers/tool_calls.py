"""
Extraction of tool-call directives from model output.

Primary form::

    <tool_call>{"name": "Server.tool", "arguments": {"q": "x"}}</tool_call>

When a reply contains none of those, the XML-ish form some models fall back
to is accepted as well::

    <execute><invoke name="tool"><parameter name="q">x</parameter></invoke></execute>

Malformed directives are skipped (and logged), never fatal.
"""
import json
import re
from typing import Any, Dict, Iterable, List, NamedTuple, Tuple

from conduit_service.core.logging import logger

TOOL_CALL_OPEN = "<tool_call>"
TOOL_CALL_CLOSE = "</tool_call>"

# a span never contains another opening tag, so a stray "<tool_call>" cannot swallow the next directive
TOOL_CALL_RE = re.compile(r"<tool_call>((?:(?!<tool_call>)[\s\S])*?)</tool_call>")
ALT_INVOKE_RE = re.compile(
    r'<(?:execute|tool)>\s*<invoke\s+name="([^"]+)">([\s\S]*?)</invoke>\s*</(?:execute|tool)>'
)
ALT_PARAM_RE = re.compile(r'<parameter\s+name="([^"]+)">([^<]*)</parameter>')
_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


class ToolCall(NamedTuple):
    name: str
    arguments: Dict[str, Any]


def _parse_json_directive(body: str) -> ToolCall | None:
    raw = _FENCE_RE.sub("", body.strip())
    try:
        obj = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Skipping malformed tool call ({e}): {raw[:100]!r}")
        return None
    if not isinstance(obj, dict):
        logger.warning(f"Skipping tool call that is not a JSON object: {raw[:100]!r}")
        return None
    name = obj.get("name")
    if not isinstance(name, str) or not name.strip():
        logger.warning(f"Skipping tool call without a name: {raw[:100]!r}")
        return None
    args = obj.get("arguments")
    if isinstance(args, str):
        # some models double-encode the arguments object
        try:
            args = json.loads(args)
        except json.JSONDecodeError:
            args = None
    if not isinstance(args, dict):
        args = {}
    return ToolCall(name=name.strip(), arguments=args)


def _extract_json_calls(text: str) -> List[ToolCall]:
    calls: List[ToolCall] = []
    for match in TOOL_CALL_RE.finditer(text):
        call = _parse_json_directive(match.group(1))
        if call is not None:
            calls.append(call)
    return calls


def _extract_alt_calls(text: str) -> List[ToolCall]:
    calls: List[ToolCall] = []
    for match in ALT_INVOKE_RE.finditer(text):
        name, body = match.group(1), match.group(2)
        args = {pname: value for pname, value in ALT_PARAM_RE.findall(body)}
        logger.info(f"Parsed alternative tool call format: {name} args={args}")
        calls.append(ToolCall(name=name, arguments=args))
    return calls


def extract_tool_calls(text: str) -> List[ToolCall]:
    """Return every tool call in `text`, in document order."""
    if not text:
        return []
    calls = _extract_json_calls(text)
    if not calls:
        calls = _extract_alt_calls(text)
    return calls


def contains_tool_calls(text: str) -> bool:
    return bool(text) and bool(TOOL_CALL_RE.search(text) or ALT_INVOKE_RE.search(text))


def _escape_attr(value: str) -> str:
    return value.replace("&", "&amp;").replace('"', "&quot;")


def format_tool_results(results: Iterable[Tuple[str, str]]) -> str:
    """Render (tool name, result text) pairs as <tool_result> blocks."""
    blocks = [f'<tool_result name="{_escape_attr(name)}">\n{result}\n</tool_result>' for name, result in results]
    return "Tool results:\n" + "\n\n".join(blocks)
