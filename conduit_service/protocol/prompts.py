# conduit_service/protocol/prompts.py
"""
System prompt construction with tool catalog injection.

The catalog tells the model:
1. Which tools are available, grouped by the server that provides them
2. How to emit a tool call (the <tool_call> tag convention)
3. How tool results come back
"""
from itertools import groupby
from typing import List, Sequence

from conduit_service.core.types import ToolWithOrigin
from conduit_service.protocol.parsers.tool_calls import TOOL_CALL_CLOSE, TOOL_CALL_OPEN


def _render_tool_catalog(tools: Sequence[ToolWithOrigin]) -> List[str]:
    lines: List[str] = []
    ordered = sorted(tools, key=lambda t: t.server_name)
    for server_name, group in groupby(ordered, key=lambda t: t.server_name):
        lines.append(f"## {server_name} Tools:")
        lines.append("")
        for item in group:
            lines.append(item.tool.format_for_prompt(display_name=item.qualified_name))
            lines.append("")
    return lines


def build_tools_prompt(tools: Sequence[ToolWithOrigin]) -> str:
    """
    Render the tool catalog and calling instructions, or "" when there are no tools.
    Tool names are shown server-qualified (ServerName.tool_name).
    """
    if not tools:
        return ""

    lines = ["You have access to the following tools from connected MCP servers:", ""]
    lines.extend(_render_tool_catalog(tools))
    example = tools[0].qualified_name
    lines.extend(
        [
            "## How to Call Tools",
            "",
            f"When you need to use a tool, you MUST use this EXACT format with JSON inside {TOOL_CALL_OPEN} tags:",
            "",
            TOOL_CALL_OPEN,
            f'{{"name": "{example}", "arguments": {{"param1": "value1"}}}}',
            TOOL_CALL_CLOSE,
            "",
            "Rules:",
            f"1. Use exactly {TOOL_CALL_OPEN} and {TOOL_CALL_CLOSE} tags.",
            '2. The content MUST be valid JSON with "name" and "arguments" fields.',
            '3. Always include the server prefix in the tool name (e.g. "ServerName.tool_name").',
            "4. You may call several tools in one response; they run in order.",
            "5. Results come back in <tool_result> blocks. Do not invent tool results.",
        ]
    )
    return "\n".join(lines)


def build_system_prompt_with_tools(
    tools: Sequence[ToolWithOrigin],
    base_instruction: str = "You are a helpful assistant.",
) -> str:
    catalog = build_tools_prompt(tools)
    if not catalog:
        return base_instruction
    return f"{base_instruction}\n\n{catalog}".strip()
