"""
Typed events produced while a response is generated, and the replay log
persisted with the assistant message.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


# Wire event type names
CHUNK = "chunk"
THINKING_START = "thinking_start"
THINKING_CHUNK = "thinking_chunk"
THINKING_END = "thinking_end"
ARTIFACT_START = "artifact_start"
ARTIFACT_CONTENT = "artifact_content"
ARTIFACT_COMPLETE = "artifact_complete"
ARTIFACT_SAVED = "artifact_saved"
TOOL_CALL = "tool_call"
TOOL_CALL_COMPLETE = "tool_call_complete"
MODEL_SWITCHED = "model_switched"
USER_BRANCH_CREATED = "user_branch_created"
PRUNED_DESCENDANTS = "pruned_descendants"
COMPLETE = "complete"
ERROR = "error"

# Wire type -> replay log type, for the events that are replayable
_LOGGED_TYPES = {
    CHUNK: "content_chunk",
    THINKING_CHUNK: "thinking_chunk",
    THINKING_START: "thinking_start",
    THINKING_END: "thinking_end",
    TOOL_CALL: "tool_call",
    TOOL_CALL_COMPLETE: "tool_call_complete",
    ARTIFACT_CONTENT: "artifact_content",
}


@dataclass
class ArtifactDraft:
    """An artifact whose content has been fully streamed but not yet saved."""

    type: str
    title: str
    content: str
    language: Optional[str] = None
    closed: bool = True


@dataclass
class StreamEvent:
    """One outgoing event.

    ``marker`` holds the raw tag text the event replaces in the model output,
    and ``synthetic`` flags text that was never in the model output (the
    artifact placeholder). Neither goes over the wire.
    """

    type: str
    data: Dict[str, Any] = field(default_factory=dict)
    marker: str = ""
    synthetic: bool = False
    artifact: Optional[ArtifactDraft] = None

    @property
    def content(self) -> str:
        return self.data.get("content", "")

    def to_wire(self) -> Dict[str, Any]:
        return {**self.data, "type": self.type}


class EventLog:
    """Append-only, strictly time-ordered log of replayable events."""

    def __init__(self, clock=None):
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._last = 0
        self.entries: List[Dict[str, Any]] = []

    def record(self, event: StreamEvent) -> None:
        event_type = _LOGGED_TYPES.get(event.type)
        if event_type is None:
            return
        # Milliseconds collide within a burst; nudge forward to keep order strict
        timestamp = max(self._clock(), self._last + 1)
        self._last = timestamp
        data = dict(event.data)
        if event.type == THINKING_CHUNK:
            data = {"thinkingContent": event.content}
        self.entries.append({"timestamp": timestamp, "eventType": event_type, "data": data})

    def __len__(self):
        return len(self.entries)
