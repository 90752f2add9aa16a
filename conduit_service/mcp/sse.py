"""
Incremental decoder for the text/event-stream framing used by tool servers.

Lines are fed one at a time (as produced by ``httpx.Response.aiter_lines``);
an event is dispatched when a blank line terminates it.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urlsplit, urlunsplit

logger = logging.getLogger(__name__)


@dataclass
class SSEEvent:
    event: str
    data: str
    id: Optional[str] = None


class SSEDecoder:
    """Stateful line parser: `event:`, `data:`, `id:` fields and `:` comments."""

    DEFAULT_EVENT = "message"

    def __init__(self):
        self._event: Optional[str] = None
        self._data: List[str] = []
        self._id: Optional[str] = None

    def feed_line(self, line: str) -> Optional[SSEEvent]:
        line = line.rstrip("\r\n")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            self._event = value.strip()
        elif field == "data":
            self._data.append(value)
        elif field == "id":
            self._id = value.strip()
        else:
            logger.debug(f"SSE: ignoring unknown field {field!r}")
        return None

    def flush(self) -> Optional[SSEEvent]:
        """Emit a trailing event that was never terminated by a blank line."""
        return self._dispatch()

    def _dispatch(self) -> Optional[SSEEvent]:
        if not self._data and self._event is None:
            return None
        evt = SSEEvent(event=self._event or self.DEFAULT_EVENT, data="\n".join(self._data), id=self._id)
        self._event = None
        self._data = []
        self._id = None
        if not evt.data:
            return None
        return evt


def parse_sse_body(text: str) -> List[SSEEvent]:
    """Decode a complete event-stream body into its events."""
    decoder = SSEDecoder()
    events: List[SSEEvent] = []
    for line in text.splitlines():
        evt = decoder.feed_line(line)
        if evt:
            events.append(evt)
    tail = decoder.flush()
    if tail:
        events.append(tail)
    return events


def resolve_endpoint_url(base_url: str, announced: str) -> str:
    """
    Resolve the URL announced by an `endpoint` event against the subscription URL.

    Absolute URLs are used as-is. A path starting with `/` replaces the base
    path; any other path replaces the last segment of the base path. The base
    query string is kept when the announced path carries none.
    """
    announced = announced.strip()
    target = urlsplit(announced)
    if target.scheme:
        return announced

    base = urlsplit(base_url)
    if target.path.startswith("/"):
        path = target.path
    else:
        parent = base.path.rsplit("/", 1)[0] if "/" in base.path else ""
        path = f"{parent}/{target.path}"
    query = target.query or base.query
    return urlunsplit((base.scheme, base.netloc, path, query, ""))
