"""
Response orchestration: runs one generation from context assembly to the
final ``complete`` event.

The orchestrator opens its own database session because the stream outlives
the request handler that scheduled it.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

import anyio

from ..config import settings
from ..exceptions import ProviderError, ProviderTimeoutError
from ..models import Artifact
from ..schemas.conversation import ConversationResponse
from ..schemas.message import MessageResponse
from ..streaming import events as ev
from ..streaming.events import ArtifactDraft, EventLog, StreamEvent
from ..streaming.tools import ToolCoordinator
from ..streaming.wire import encode_event, sse
from ..utils.locks import GenerationLocks
from .branch_service import ancestor_chain, branch_metadata
from .context_service import ContextAssembler, PromptOptions
from .conversation_store import ConversationStore
from .persistence_service import GeneratedResponse, ResponsePersistence
from .retrieval_service import format_retrieved_context

logger = logging.getLogger(__name__)


@dataclass
class GenerationPlan:
    """What to generate and where the answer goes in the tree."""
    conversation_id: int
    user_id: str
    model_id: str
    user_content: str
    parent_message_id: Optional[int]  # the user message being answered
    branch_index: int
    context_leaf_id: Optional[int]  # last message before the user turn
    user_message_id: Optional[int] = None  # created by this request, removed on failure
    attached_files: List[Dict[str, Any]] = field(default_factory=list)
    options: PromptOptions = field(default_factory=PromptOptions)
    prelude: List[StreamEvent] = field(default_factory=list)
    include_branch_metadata: bool = False
    branch_metadata_message_id: Optional[int] = None  # defaults to the new assistant message
    title_source: Optional[str] = None


class GenerationState:
    """Collects what the client has been sent so it can be persisted."""

    def __init__(self, clock=None):
        self.content_parts: List[str] = []
        self.artifacts: List[ArtifactDraft] = []
        self.log = EventLog(clock)
        self.has_thinking = False

    def observe(self, event: StreamEvent) -> None:
        self.log.record(event)
        if event.type == ev.CHUNK:
            self.content_parts.append(event.content)
        elif event.type == ev.THINKING_CHUNK:
            self.has_thinking = True
        elif event.type == ev.ARTIFACT_COMPLETE and event.artifact is not None:
            self.artifacts.append(event.artifact)

    @property
    def content(self) -> str:
        return "".join(self.content_parts).strip()

    @property
    def has_output(self) -> bool:
        return bool(self.content or self.has_thinking or self.artifacts)


async def _with_deadline(stream: AsyncGenerator, timeout: float) -> AsyncGenerator:
    """Re-yield stream items until the overall deadline passes."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    try:
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise TimeoutError
            try:
                item = await asyncio.wait_for(anext(stream), remaining)
            except StopAsyncIteration:
                return
            yield item
    finally:
        await stream.aclose()


class ChatOrchestrator:
    """Drives one generation and serializes it to the wire."""

    def __init__(
        self,
        session_factory,
        llm_factory: Callable,
        search_service,
        retrieval_service,
        locks: Optional[GenerationLocks] = None,
        assembler: Optional[ContextAssembler] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.llm_factory = llm_factory
        self.search_service = search_service
        self.retrieval_service = retrieval_service
        self.locks = locks
        self.assembler = assembler or ContextAssembler()
        self.timeout_seconds = timeout_seconds or settings.MODEL_TIMEOUT_SECONDS

    async def stream(self, plan: GenerationPlan) -> AsyncGenerator[str, None]:
        try:
            async with self.session_factory() as session:
                frames = self._run(ConversationStore(session), plan)
                try:
                    async for frame in frames:
                        yield frame
                finally:
                    # Finalize inside this session even when the client stops reading
                    await frames.aclose()
        finally:
            if self.locks is not None:
                self.locks.release(plan.conversation_id)

    async def _run(self, store: ConversationStore, plan: GenerationPlan) -> AsyncGenerator[str, None]:
        state = GenerationState()
        coordinator = ToolCoordinator(self.search_service)
        finished = False

        try:
            for event in plan.prelude:
                yield encode_event(event)

            llm_messages = await self._assemble(store, plan)
            provider = self.llm_factory(plan.model_id)

            try:
                async for event in _with_deadline(coordinator.generate(provider, llm_messages), self.timeout_seconds):
                    state.observe(event)
                    yield encode_event(event)
            except TimeoutError:
                # Open regions and withheld marker tails are closed like a normal stream end
                for event in coordinator.flush():
                    state.observe(event)
                    yield encode_event(event)
                if not state.has_output:
                    raise ProviderTimeoutError(self.timeout_seconds, plan.model_id)
                logger.warning(
                    "Generation for conversation %s hit the %ss ceiling, keeping partial output",
                    plan.conversation_id, self.timeout_seconds,
                )

            finished = True
            async for frame in self._finalize(store, plan, state, coordinator):
                yield frame

        except ProviderError as e:
            logger.error("Generation failed for conversation %s: %s", plan.conversation_id, e)
            yield sse(ev.ERROR, error=str(e))
            await ResponsePersistence(store).cleanup_failed_generation(plan.conversation_id, plan.user_message_id)

        except Exception as e:
            logger.exception("Unexpected error while generating for conversation %s", plan.conversation_id)
            yield sse(ev.ERROR, error=f"Generation failed: {e}")
            if not finished:
                await ResponsePersistence(store).cleanup_failed_generation(plan.conversation_id, plan.user_message_id)

        except (asyncio.CancelledError, GeneratorExit):
            # Client went away: keep what was produced, or undo the turn
            logger.info("Generation for conversation %s cancelled by client", plan.conversation_id)
            if not finished:
                for event in coordinator.flush():
                    state.observe(event)
                with anyio.CancelScope(shield=True):
                    await self._finalize_detached(store, plan, state, coordinator)
            raise

    async def _assemble(self, store: ConversationStore, plan: GenerationPlan) -> List[Dict[str, Any]]:
        messages = await store.list_messages(plan.conversation_id)
        path = ancestor_chain(messages, plan.context_leaf_id)

        options = plan.options
        chunks = await self.retrieval_service.retrieve(plan.user_id, plan.conversation_id, plan.user_content)
        if chunks:
            options.retrieval_context = format_retrieved_context(chunks)

        return self.assembler.build(options, path, plan.user_content, plan.attached_files)

    def _response(self, plan: GenerationPlan, state: GenerationState, coordinator: ToolCoordinator) -> GeneratedResponse:
        return GeneratedResponse(
            content=state.content,
            model_name=plan.model_id,
            parent_message_id=plan.parent_message_id,
            branch_index=plan.branch_index,
            token_count=coordinator.token_count,
            event_stream=state.log.entries,
            sources=[c.to_dict() for c in coordinator.citations],
            artifacts=state.artifacts,
        )

    async def _finalize(
        self,
        store: ConversationStore,
        plan: GenerationPlan,
        state: GenerationState,
        coordinator: ToolCoordinator,
    ) -> AsyncGenerator[str, None]:
        persistence = ResponsePersistence(store)
        conversation = await store.get_conversation(plan.conversation_id)
        response = self._response(plan, state, coordinator)

        try:
            message, artifacts = await persistence.persist_response(conversation, response, plan.title_source)
        except Exception:
            # The client already has the content; losing it on disk is logged, not surfaced
            logger.exception("Failed to persist response for conversation %s", plan.conversation_id)
            await store.rollback()
            yield sse(
                ev.COMPLETE,
                message={"role": "assistant", "content": response.content, "model_name": response.model_name},
                conversation={"id": plan.conversation_id},
            )
            return

        for artifact in artifacts:
            yield sse(ev.ARTIFACT_SAVED, artifact=self._artifact_payload(artifact))

        payload: Dict[str, Any] = {
            "message": MessageResponse.model_validate(message).model_dump(mode="json"),
            "conversation": ConversationResponse.model_validate(conversation).model_dump(mode="json"),
        }
        if plan.include_branch_metadata:
            siblings = await store.list_messages(plan.conversation_id)
            target = next((m for m in siblings if m.id == plan.branch_metadata_message_id), message)
            payload["branchMetadata"] = branch_metadata(siblings, target)
        yield sse(ev.COMPLETE, **payload)

    async def _finalize_detached(
        self,
        store: ConversationStore,
        plan: GenerationPlan,
        state: GenerationState,
        coordinator: ToolCoordinator,
    ) -> None:
        """Finalization after the client disconnected; nothing is sent."""
        persistence = ResponsePersistence(store)
        if not state.has_output:
            await persistence.cleanup_failed_generation(plan.conversation_id, plan.user_message_id)
            return
        conversation = await store.get_conversation(plan.conversation_id)
        if conversation is None:
            return
        try:
            await persistence.persist_response(conversation, self._response(plan, state, coordinator), plan.title_source)
        except Exception:
            logger.exception("Failed to persist partial response for conversation %s", plan.conversation_id)
            await store.rollback()

    @staticmethod
    def _artifact_payload(artifact: Artifact) -> Dict[str, Any]:
        return {
            "id": artifact.id,
            "type": artifact.type,
            "title": artifact.title,
            "content": artifact.content,
            "version": artifact.version,
        }
