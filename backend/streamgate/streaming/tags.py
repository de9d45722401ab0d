"""
Incremental marker scanner for thinking and artifact regions.

Every detector receives the whole accumulated buffer plus the offset where
scanning should begin, so callers can rescan a growing buffer without
re-reading text they already emitted. Matching is case-insensitive.

A detector answers one of three ways:

* not found,
* found and complete (the marker is fully present),
* found but incomplete: the buffer ends with the beginning of a marker
  (``<thi``, ``<artifact type="co``), so the caller must hold that tail back
  until more text arrives.
"""

import re
from dataclasses import dataclass
from typing import Optional, Sequence

from .kinds import ArtifactType


THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"

_THINK_OPEN_RE = re.compile(r"<think>", re.IGNORECASE)
_THINK_CLOSE_RE = re.compile(r"</think>", re.IGNORECASE)
_ARTIFACT_OPEN_RE = re.compile(r"<(?:ant)?artifact\s+([^>]*)>", re.IGNORECASE)
_ARTIFACT_CLOSE_RE = re.compile(r"</(?:ant)?artifact>", re.IGNORECASE)
_THINK_BLOCK_RE = re.compile(r"<think>.*?</think>", re.IGNORECASE | re.DOTALL)

_TYPE_ATTR_RE = re.compile(r"\btype=[\"']([^\"']+)[\"']", re.IGNORECASE)
_TITLE_ATTR_RE = re.compile(r"\btitle=[\"']([^\"']+)[\"']", re.IGNORECASE)
_LANGUAGE_ATTR_RE = re.compile(r"\blanguage=[\"']([^\"']+)[\"']", re.IGNORECASE)

_ARTIFACT_OPEN_WORDS = ("<artifact", "<antartifact")
_ARTIFACT_CLOSE_WORDS = ("</artifact>", "</antartifact>")


@dataclass(frozen=True)
class ArtifactAttributes:
    type: ArtifactType
    title: str
    language: Optional[str] = None


@dataclass(frozen=True)
class StartMarker:
    """Result of looking for an opening marker."""

    found: bool
    complete: bool = False
    tag_start: int = -1
    content_start: int = -1
    raw: str = ""
    attributes: Optional[ArtifactAttributes] = None


@dataclass(frozen=True)
class EndMarker:
    """Result of looking for a closing marker; splits the scanned text around it."""

    found: bool
    complete: bool = False
    tag_start: int = -1
    tag_end: int = -1
    raw: str = ""
    before: str = ""
    after: str = ""


NOT_FOUND_START = StartMarker(found=False)
NOT_FOUND_END = EndMarker(found=False)


def _tail_candidate(buffer: str, start: int) -> Optional[int]:
    """Index of the last unterminated '<' at or after start, if any."""
    lt = buffer.rfind("<", start)
    if lt == -1 or ">" in buffer[lt:]:
        return None
    return lt


def partial_marker_index(buffer: str, start: int, markers: Sequence[str]) -> Optional[int]:
    """Where a trailing prefix of one of the fixed markers begins, if the buffer ends with one."""
    lt = _tail_candidate(buffer, start)
    if lt is None:
        return None
    tail = buffer[lt:].lower()
    for marker in markers:
        if len(tail) < len(marker) and marker.startswith(tail):
            return lt
    return None


def _unterminated_opens(buffer: str, start: int):
    """Every '<' at or after start with no '>' following it, left to right."""
    lt = buffer.find("<", max(start, buffer.rfind(">", start) + 1))
    while lt != -1:
        yield lt
        lt = buffer.find("<", lt + 1)


def partial_artifact_open_index(buffer: str, start: int) -> Optional[int]:
    """Where an unterminated artifact opening tag at the end of the buffer begins.

    Attribute values may themselves contain '<', so every unterminated
    '<' is tried, not just the last one.
    """
    for lt in _unterminated_opens(buffer, start):
        tail = buffer[lt:].lower()
        for word in _ARTIFACT_OPEN_WORDS:
            if word.startswith(tail):
                return lt
            if tail.startswith(word) and len(tail) > len(word) and tail[len(word)].isspace():
                return lt
    return None


def parse_artifact_attributes(attribute_text: str) -> Optional[ArtifactAttributes]:
    """Parse type/title/language; a missing or unknown type or a missing title yields None."""
    type_match = _TYPE_ATTR_RE.search(attribute_text)
    title_match = _TITLE_ATTR_RE.search(attribute_text)
    if not type_match or not title_match:
        return None
    artifact_type = ArtifactType.parse(type_match.group(1))
    if artifact_type is None:
        return None
    language_match = _LANGUAGE_ATTR_RE.search(attribute_text)
    return ArtifactAttributes(
        type=artifact_type,
        title=title_match.group(1).strip(),
        language=language_match.group(1).strip() if language_match else None,
    )


def detect_thinking_start(buffer: str, start: int = 0) -> StartMarker:
    match = _THINK_OPEN_RE.search(buffer, start)
    if match:
        return StartMarker(
            found=True,
            complete=True,
            tag_start=match.start(),
            content_start=match.end(),
            raw=match.group(0),
        )
    partial = partial_marker_index(buffer, start, (THINK_OPEN,))
    if partial is not None:
        return StartMarker(found=True, complete=False, tag_start=partial)
    return NOT_FOUND_START


def _detect_end(buffer: str, start: int, pattern: re.Pattern, words: Sequence[str]) -> EndMarker:
    match = pattern.search(buffer, start)
    if match:
        return EndMarker(
            found=True,
            complete=True,
            tag_start=match.start(),
            tag_end=match.end(),
            raw=match.group(0),
            before=buffer[start:match.start()],
            after=buffer[match.end():],
        )
    partial = partial_marker_index(buffer, start, words)
    if partial is not None:
        return EndMarker(found=True, complete=False, tag_start=partial, before=buffer[start:partial])
    return NOT_FOUND_END


def detect_thinking_end(buffer: str, start: int = 0) -> EndMarker:
    return _detect_end(buffer, start, _THINK_CLOSE_RE, (THINK_CLOSE,))


def detect_orphan_close(buffer: str, start: int = 0) -> EndMarker:
    """A closing thinking marker seen while no thinking block is open.

    Only complete markers count: a partial ``</thi`` tail is reported by
    :func:`detect_thinking_end` and withheld by the caller the same way.
    """
    end = detect_thinking_end(buffer, start)
    return end if end.complete else NOT_FOUND_END


def detect_artifact_start(buffer: str, start: int = 0) -> StartMarker:
    """Find the first well-formed artifact opening tag at or after start.

    Complete tags lacking a known type or a title are skipped and left to
    flow through as narration.
    """
    for match in _ARTIFACT_OPEN_RE.finditer(buffer, start):
        attributes = parse_artifact_attributes(match.group(1))
        if attributes is not None:
            return StartMarker(
                found=True,
                complete=True,
                tag_start=match.start(),
                content_start=match.end(),
                raw=match.group(0),
                attributes=attributes,
            )
    partial = partial_artifact_open_index(buffer, start)
    if partial is not None:
        return StartMarker(found=True, complete=False, tag_start=partial)
    return NOT_FOUND_START


def detect_artifact_end(buffer: str, start: int = 0) -> EndMarker:
    return _detect_end(buffer, start, _ARTIFACT_CLOSE_RE, _ARTIFACT_CLOSE_WORDS)


def artifact_placeholder(title: str) -> str:
    """Narration token standing in for an artifact in the visible transcript."""
    return f"[Artifact: {title}]"


def strip_thinking(text: str) -> str:
    """Remove thinking blocks, including an unterminated trailing one."""
    text = _THINK_BLOCK_RE.sub("", text)
    orphan = _THINK_CLOSE_RE.search(text)
    if orphan:
        text = text[orphan.end():]
    opened = _THINK_OPEN_RE.search(text)
    if opened:
        text = text[:opened.start()]
    return text.strip()
