"""
Tool calling: definitions offered to the model, accumulation of streamed
tool-call fragments, execution, and the bounded re-invocation loop.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

from ..config import settings
from ..services.llm_service import StreamEnd, TextDelta, ToolCallDelta
from . import events as ev
from .events import ArtifactDraft, StreamEvent
from .kinds import ArtifactType, ToolName
from .multiplexer import ChannelMultiplexer
from .tags import artifact_placeholder

logger = logging.getLogger(__name__)

TOOL_LIMIT_FALLBACK = (
    "\n\nI reached the limit of tool steps for this response, "
    "so this answer is based on what I have gathered so far."
)


def tool_definitions() -> List[Dict[str, Any]]:
    """Function-calling schema for every tool the engine executes."""
    return [
        {
            "type": "function",
            "function": {
                "name": ToolName.SEARCH_WEB.value,
                "description": "Search the web for current information. Results are numbered for citation.",
                "parameters": {
                    "type": "object",
                    "properties": {
                        "query": {"type": "string", "description": "The search query"},
                        "num_results": {
                            "type": "integer",
                            "description": "Number of results to return",
                            "default": 10,
                        },
                    },
                    "required": ["query"],
                },
            },
        },
        {
            "type": "function",
            "function": {
                "name": ToolName.CREATE_ARTIFACT.value,
                "description": "Create a standalone artifact shown in a separate panel.",
                "parameters": {
                    "type": "object",
                    "properties": {
                        "type": {"type": "string", "enum": [kind.value for kind in ArtifactType]},
                        "title": {"type": "string"},
                        "language": {"type": "string"},
                        "content": {"type": "string"},
                    },
                    "required": ["type", "title", "content"],
                },
            },
        },
    ]


@dataclass
class ToolCall:
    index: int
    id: str
    name: str
    arguments: str = ""
    result: Optional[str] = None

    def parsed_arguments(self) -> Dict[str, Any]:
        value = json.loads(self.arguments or "{}")
        if not isinstance(value, dict):
            raise ValueError("arguments must be a JSON object")
        return value


class ToolCallAccumulator:
    """Joins tool-call fragments that share an index."""

    def __init__(self):
        self._calls: Dict[int, ToolCall] = {}

    def add(self, delta: ToolCallDelta) -> None:
        call = self._calls.get(delta.index)
        if call is None:
            call = ToolCall(index=delta.index, id="", name="")
            self._calls[delta.index] = call
        if delta.id:
            call.id = delta.id
        if delta.name:
            call.name += delta.name
        call.arguments += delta.arguments or ""

    def calls(self) -> List[ToolCall]:
        ordered = [self._calls[i] for i in sorted(self._calls)]
        for call in ordered:
            if not call.id:
                call.id = f"call_{call.index}"
        return ordered


@dataclass
class Citation:
    index: int
    title: str
    url: str
    snippet: str

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "title": self.title, "url": self.url, "snippet": self.snippet}


class ToolCoordinator:
    """Executes tool calls and re-enters the model with their results."""

    def __init__(
        self,
        search_service,
        max_depth: Optional[int] = None,
        chunk_size: Optional[int] = None,
        chunk_delay: Optional[float] = None,
    ):
        self.search_service = search_service
        self.max_depth = settings.MAX_TOOL_DEPTH if max_depth is None else max_depth
        self.chunk_size = chunk_size or settings.ARTIFACT_CHUNK_SIZE
        self.chunk_delay = settings.ARTIFACT_CHUNK_DELAY if chunk_delay is None else chunk_delay
        self.citations: List[Citation] = []
        self.token_count = 0
        self.depth = 0
        self._multiplexer: Optional[ChannelMultiplexer] = None
        self._pending_artifact: Optional[ArtifactDraft] = None

    async def generate(
        self,
        provider,
        messages: List[Dict[str, Any]],
        multiplexer_factory: Callable[[], ChannelMultiplexer] = ChannelMultiplexer,
    ) -> AsyncGenerator[StreamEvent, None]:
        """Stream one response, running tools between model calls.

        Tools are offered while the depth is below the ceiling; the last
        permitted call is made without tools so the model has to answer.
        """
        messages = list(messages)
        while True:
            offer_tools = self.depth < self.max_depth
            multiplexer = self._multiplexer = multiplexer_factory()
            accumulator = ToolCallAccumulator()
            text_parts: List[str] = []

            async for item in provider.stream_completion(messages, tools=tool_definitions() if offer_tools else None):
                if isinstance(item, TextDelta):
                    text_parts.append(item.text)
                    for event in multiplexer.feed(item.text):
                        yield event
                elif isinstance(item, ToolCallDelta):
                    accumulator.add(item)
                elif isinstance(item, StreamEnd):
                    self.token_count += item.token_count

            self._multiplexer = None
            for event in multiplexer.finish():
                yield event

            calls = accumulator.calls()
            if not calls:
                return
            if not offer_tools:
                logger.warning("Model requested %d tool call(s) past the depth limit of %d", len(calls), self.max_depth)
                yield StreamEvent(ev.CHUNK, {"content": TOOL_LIMIT_FALLBACK})
                return

            messages.append({
                "role": "assistant",
                "content": "".join(text_parts) or None,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": call.arguments},
                    }
                    for call in calls
                ],
            })
            for call in calls:
                async for event in self.execute(call):
                    yield event
                messages.append({"role": "tool", "tool_call_id": call.id, "content": call.result})
            self.depth += 1

    async def execute(self, call: ToolCall) -> AsyncGenerator[StreamEvent, None]:
        """Run one call, yielding its events; the tool-result text lands on call.result."""
        tool = ToolName.parse(call.name)
        if tool is None:
            logger.warning("Model requested unknown tool %r", call.name)
            call.result = f"Error: unknown tool '{call.name}'"
            return

        runner = self._search if tool is ToolName.SEARCH_WEB else self._create_artifact
        try:
            async for event in runner(call):
                yield event
        except Exception as e:
            # A failing tool becomes its result text; the response continues
            logger.warning("Tool %s failed: %s", call.name, e)
            call.result = f"Error executing {call.name}: {e}"
            for event in self._close_pending_artifact():
                yield event

    def flush(self) -> List[StreamEvent]:
        """Close whatever an interrupted generate() left open.

        Called when the stream is cut short (deadline or disconnect): the
        live multiplexer is finished, and an artifact the create_artifact
        tool was still streaming is completed with its full content.
        """
        out: List[StreamEvent] = []
        if self._multiplexer is not None:
            out.extend(self._multiplexer.finish())
            self._multiplexer = None
        out.extend(self._close_pending_artifact())
        return out

    def _close_pending_artifact(self) -> List[StreamEvent]:
        draft = self._pending_artifact
        if draft is None:
            return []
        self._pending_artifact = None
        return [
            StreamEvent(ev.ARTIFACT_COMPLETE, {}, artifact=draft),
            StreamEvent(ev.CHUNK, {"content": artifact_placeholder(draft.title)}, synthetic=True),
        ]

    async def _search(self, call: ToolCall) -> AsyncGenerator[StreamEvent, None]:
        tool = ToolName.SEARCH_WEB.value
        try:
            args = call.parsed_arguments()
        except ValueError as e:
            call.result = f"Error executing search: invalid arguments ({e})"
            return
        query = str(args.get("query") or "").strip()
        if not query:
            call.result = "Error executing search: a query is required"
            return

        yield StreamEvent(ev.TOOL_CALL, {"tool": tool, "query": query})
        try:
            results = await self.search_service.search(query, args.get("num_results", 10))
        except Exception as e:
            # Any search failure becomes a tool result; the response continues
            logger.warning("Search for %r failed: %s", query, e)
            call.result = f"Error executing search: {e}"
            yield StreamEvent(
                ev.TOOL_CALL_COMPLETE,
                {"tool": tool, "query": query, "resultsCount": 0, "results": [], "error": str(e)},
            )
            return

        lines = []
        for result in results:
            citation = Citation(
                index=len(self.citations) + 1,
                title=result.title,
                url=result.url,
                snippet=result.snippet,
            )
            self.citations.append(citation)
            lines.append(f"[{citation.index}] {citation.title}\n{citation.snippet}\nSource: {citation.url}")

        call.result = "\n\n".join(lines) if lines else f"No results found for '{query}'."
        yield StreamEvent(
            ev.TOOL_CALL_COMPLETE,
            {
                "tool": tool,
                "query": query,
                "resultsCount": len(results),
                "results": [result.to_dict() for result in results],
            },
        )

    async def _create_artifact(self, call: ToolCall) -> AsyncGenerator[StreamEvent, None]:
        try:
            args = call.parsed_arguments()
        except ValueError as e:
            call.result = f"Error creating artifact: invalid arguments ({e})"
            return
        artifact_type = ArtifactType.parse(args.get("type"))
        title = str(args.get("title") or "").strip()
        content = args.get("content")
        if artifact_type is None or not title or not isinstance(content, str):
            call.result = "Error creating artifact: type, title and content are required and type must be one of " + ", ".join(
                kind.value for kind in ArtifactType
            )
            return

        language = args.get("language")
        if not isinstance(language, str) or not language.strip():
            language = None
        payload = {"type": artifact_type.value, "title": title}
        if language:
            payload["language"] = language
        self._pending_artifact = ArtifactDraft(type=artifact_type.value, title=title, language=language, content=content)
        yield StreamEvent(ev.ARTIFACT_START, {"artifact": payload})

        # Sub-chunks make the artifact appear to be generated live
        for i in range(0, len(content), self.chunk_size):
            yield StreamEvent(ev.ARTIFACT_CONTENT, {"content": content[i:i + self.chunk_size]})
            if self.chunk_delay:
                await asyncio.sleep(self.chunk_delay)

        for event in self._close_pending_artifact():
            yield event
        call.result = f"Artifact '{title}' ({artifact_type.value}) was created and shown to the user."
