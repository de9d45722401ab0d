"""
Server-sent event framing for the wire protocol.
"""

import json
from typing import Any, Dict

from .events import StreamEvent

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def sse(event_type: str, **data: Any) -> str:
    """Frame one typed event as a ``data:`` record."""
    return encode({**data, "type": event_type})


def encode(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"


def encode_event(event: StreamEvent) -> str:
    return encode(event.to_wire())
