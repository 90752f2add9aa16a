import json
import datetime
from typing import Any, Dict, Optional

from conduit_service.core.types import Event


class NdjsonEmitter:
    """Serializes turn events for one session, one JSON object per line."""

    def __init__(self, session_id: str):
        self.session_id = session_id

    def event(self, event_type: str, data: Optional[Dict[str, Any]] = None) -> Event:
        return {
            "type": str(event_type),
            "session_id": self.session_id,
            "data": data or {},
            "ts": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        }

    def emit(self, event_type: str, data: Optional[Dict[str, Any]] = None) -> bytes:
        return (json.dumps(self.event(event_type, data), default=str) + "\n").encode("utf-8")
