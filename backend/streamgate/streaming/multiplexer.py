"""
Routes model text into the narration, thinking and artifact channels.

The multiplexer owns the accumulated buffer and an "emitted up to" cursor.
Each call rescans only the unemitted part of the buffer, so every character
is sent to exactly one channel exactly once, and a marker split across two
deltas is recognised as soon as its last character arrives.
"""

import logging
from enum import Enum
from typing import List, Optional

from . import events as ev
from .events import ArtifactDraft, StreamEvent
from .tags import (
    THINK_CLOSE,
    THINK_OPEN,
    ArtifactAttributes,
    artifact_placeholder,
    detect_artifact_end,
    detect_artifact_start,
    detect_orphan_close,
    detect_thinking_end,
    detect_thinking_start,
    partial_artifact_open_index,
    partial_marker_index,
)

logger = logging.getLogger(__name__)


class Mode(Enum):
    NARRATING = "narrating"
    THINKING = "thinking"
    STREAMING_ARTIFACT = "streaming_artifact"


class ChannelMultiplexer:
    """Incremental state machine over the model's text deltas."""

    def __init__(self):
        self.buffer = ""
        self.cursor = 0
        self.mode = Mode.NARRATING
        self._artifact: Optional[ArtifactAttributes] = None
        self._artifact_parts: List[str] = []

    def feed(self, delta: str) -> List[StreamEvent]:
        """Add a delta and return the events it releases."""
        if not delta:
            return []
        self.buffer += delta
        return self._scan(final=False)

    def finish(self) -> List[StreamEvent]:
        """Flush everything withheld and close whichever region is still open."""
        out = self._scan(final=True)
        if self.mode is Mode.THINKING:
            out.append(StreamEvent(ev.THINKING_END, {"endedByStream": True, "inferredStart": False}))
        elif self.mode is Mode.STREAMING_ARTIFACT:
            logger.info("Artifact '%s' was not closed before the stream ended", self._artifact.title)
            out.extend(self._close_artifact(marker="", closed=False))
        self.mode = Mode.NARRATING
        return out

    def _scan(self, final: bool) -> List[StreamEvent]:
        out: List[StreamEvent] = []
        while True:
            if self.mode is Mode.NARRATING:
                progressed = self._scan_narration(out, final)
            elif self.mode is Mode.THINKING:
                progressed = self._scan_thinking(out, final)
            else:
                progressed = self._scan_artifact(out, final)
            if not progressed:
                return out

    def _emit_text(self, out: List[StreamEvent], event_type: str, end: int) -> None:
        text = self.buffer[self.cursor:end]
        if text:
            out.append(StreamEvent(event_type, {"content": text}))
            if event_type == ev.ARTIFACT_CONTENT:
                self._artifact_parts.append(text)
        self.cursor = max(self.cursor, end)

    def _scan_narration(self, out: List[StreamEvent], final: bool) -> bool:
        start = self.cursor
        think_open = detect_thinking_start(self.buffer, start)
        orphan = detect_orphan_close(self.buffer, start)
        artifact = detect_artifact_start(self.buffer, start)

        candidates = []
        if think_open.complete:
            candidates.append((think_open.tag_start, 0))
        if orphan.found:
            candidates.append((orphan.tag_start, 1))
        if artifact.complete:
            candidates.append((artifact.tag_start, 2))

        if not candidates:
            end = len(self.buffer)
            if not final:
                held = [
                    i for i in (
                        partial_marker_index(self.buffer, start, (THINK_OPEN, THINK_CLOSE)),
                        partial_artifact_open_index(self.buffer, start),
                    ) if i is not None
                ]
                if held:
                    end = min(held)
            self._emit_text(out, ev.CHUNK, end)
            return False

        _, kind = min(candidates)
        if kind == 0:
            self._emit_text(out, ev.CHUNK, think_open.tag_start)
            out.append(StreamEvent(ev.THINKING_START, {"inferredStart": False}, marker=think_open.raw))
            self.cursor = think_open.content_start
            self.mode = Mode.THINKING
        elif kind == 1:
            # Closing marker without an opening one: whatever is still unsent
            # before it is taken as reasoning
            out.append(StreamEvent(ev.THINKING_START, {"inferredStart": True}))
            self._emit_text(out, ev.THINKING_CHUNK, orphan.tag_start)
            out.append(
                StreamEvent(
                    ev.THINKING_END,
                    {"endedByStream": False, "inferredStart": True},
                    marker=orphan.raw,
                )
            )
            self.cursor = orphan.tag_end
        else:
            self._emit_text(out, ev.CHUNK, artifact.tag_start)
            attributes = artifact.attributes
            payload = {"type": attributes.type.value, "title": attributes.title}
            if attributes.language:
                payload["language"] = attributes.language
            out.append(StreamEvent(ev.ARTIFACT_START, {"artifact": payload}, marker=artifact.raw))
            self.cursor = artifact.content_start
            self.mode = Mode.STREAMING_ARTIFACT
            self._artifact = attributes
            self._artifact_parts = []
        return True

    def _scan_thinking(self, out: List[StreamEvent], final: bool) -> bool:
        # Artifact markers are not looked for inside a thinking block
        end = detect_thinking_end(self.buffer, self.cursor)
        if end.complete:
            self._emit_text(out, ev.THINKING_CHUNK, end.tag_start)
            out.append(
                StreamEvent(ev.THINKING_END, {"endedByStream": False, "inferredStart": False}, marker=end.raw)
            )
            self.cursor = end.tag_end
            self.mode = Mode.NARRATING
            return True
        limit = end.tag_start if end.found and not final else len(self.buffer)
        self._emit_text(out, ev.THINKING_CHUNK, limit)
        return False

    def _scan_artifact(self, out: List[StreamEvent], final: bool) -> bool:
        end = detect_artifact_end(self.buffer, self.cursor)
        if end.complete:
            self._emit_text(out, ev.ARTIFACT_CONTENT, end.tag_start)
            self.cursor = end.tag_end
            out.extend(self._close_artifact(marker=end.raw, closed=True))
            self.mode = Mode.NARRATING
            return True
        limit = end.tag_start if end.found and not final else len(self.buffer)
        self._emit_text(out, ev.ARTIFACT_CONTENT, limit)
        return False

    def _close_artifact(self, marker: str, closed: bool) -> List[StreamEvent]:
        attributes = self._artifact
        draft = ArtifactDraft(
            type=attributes.type.value,
            title=attributes.title,
            language=attributes.language,
            content="".join(self._artifact_parts).strip(),
            closed=closed,
        )
        self._artifact = None
        self._artifact_parts = []
        return [
            StreamEvent(ev.ARTIFACT_COMPLETE, {}, marker=marker, artifact=draft),
            StreamEvent(ev.CHUNK, {"content": artifact_placeholder(draft.title)}, synthetic=True),
        ]
