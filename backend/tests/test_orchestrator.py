import asyncio

import pytest

from conftest import FakeProvider, FakeSearch, parse_events
from streamgate.exceptions import ProviderError
from streamgate.services.chat_service import ChatOrchestrator, GenerationPlan, GenerationState
from streamgate.services.context_service import ContextAssembler
from streamgate.services.conversation_store import ConversationStore
from streamgate.services.llm_service import TextDelta, ToolCallDelta
from streamgate.services.persistence_service import ResponsePersistence
from streamgate.services.retrieval_service import NullRetrievalService
from streamgate.streaming.events import StreamEvent
from streamgate.utils.locks import GenerationLocks


class SlowProvider:
    """Sends some text, then stalls."""

    def __init__(self, first=("partial ",)):
        self.first = first

    async def stream_completion(self, messages, tools=None, **kwargs):
        for text in self.first:
            yield TextDelta(text)
        await asyncio.sleep(10)
        yield TextDelta("never sent")


def make_orchestrator(session_factory, provider, locks=None, timeout_seconds=None):
    return ChatOrchestrator(
        session_factory=session_factory,
        llm_factory=lambda model_id: provider,
        search_service=FakeSearch(),
        retrieval_service=NullRetrievalService(),
        locks=locks,
        assembler=ContextAssembler(master_prompt="MASTER"),
        timeout_seconds=timeout_seconds,
    )


async def start_turn(session_factory, content="Hello there"):
    async with session_factory() as session:
        store = ConversationStore(session)
        conversation = await store.create_conversation("user-1")
        user = await store.add_message(conversation_id=conversation.id, role="user", content=content)
        await store.update_conversation(conversation, message_count=1)
        await store.commit()
        return GenerationPlan(
            conversation_id=conversation.id,
            user_id="user-1",
            model_id="test-model",
            user_content=content,
            parent_message_id=user.id,
            branch_index=0,
            context_leaf_id=None,
            user_message_id=user.id,
            title_source=content,
        )


async def run(orchestrator, plan):
    frames = [frame async for frame in orchestrator.stream(plan)]
    return parse_events("".join(frames))


async def load(session_factory, conversation_id):
    async with session_factory() as session:
        store = ConversationStore(session)
        return await store.get_conversation(conversation_id), await store.list_messages(conversation_id)


class TestSuccessfulGeneration:
    @pytest.mark.asyncio
    async def test_streams_then_persists(self, session_factory):
        provider = FakeProvider([["<think>plan</think>", "The answer."]])
        plan = await start_turn(session_factory)

        events = await run(make_orchestrator(session_factory, provider), plan)

        assert [e["type"] for e in events] == [
            "thinking_start", "thinking_chunk", "thinking_end", "chunk", "complete",
        ]
        complete = events[-1]
        assert complete["message"]["content"] == "The answer."
        assert complete["message"]["parent_message_id"] == plan.parent_message_id
        assert complete["conversation"]["title"] == "Hello there"
        assert complete["conversation"]["message_count"] == 2

        conversation, messages = await load(session_factory, plan.conversation_id)
        assistant = messages[-1]
        assert assistant.role == "assistant"
        assert assistant.model_name == "test-model"
        assert conversation.current_model == "test-model"

    @pytest.mark.asyncio
    async def test_event_log_is_strictly_ordered(self, session_factory):
        provider = FakeProvider([["<think>a", "b</think>", "x", "y", "z"]])
        plan = await start_turn(session_factory)

        await run(make_orchestrator(session_factory, provider), plan)

        _, messages = await load(session_factory, plan.conversation_id)
        log = messages[-1].event_stream
        stamps = [entry["timestamp"] for entry in log]
        assert stamps == sorted(set(stamps))
        assert [entry["eventType"] for entry in log] == [
            "thinking_start", "thinking_chunk", "thinking_chunk", "thinking_end",
            "content_chunk", "content_chunk", "content_chunk",
        ]
        assert log[1]["data"] == {"thinkingContent": "a"}

    @pytest.mark.asyncio
    async def test_artifacts_are_saved_before_complete(self, session_factory):
        provider = FakeProvider([['Intro <artifact type="html" title="Page"><h1>Hi</h1></artifact>']])
        plan = await start_turn(session_factory)

        events = await run(make_orchestrator(session_factory, provider), plan)

        types = [e["type"] for e in events]
        assert types == [
            "chunk", "artifact_start", "artifact_content", "artifact_complete", "chunk", "artifact_saved", "complete",
        ]
        assert events[1] == {"type": "artifact_start", "artifact": {"type": "html", "title": "Page"}}
        saved = events[types.index("artifact_saved")]["artifact"]
        assert saved["type"] == "html"
        assert saved["title"] == "Page" and saved["version"] == 1
        assert events[-1]["message"]["artifact_id"] == saved["id"]
        assert events[-1]["message"]["content"] == "Intro [Artifact: Page]"

    @pytest.mark.asyncio
    async def test_lock_is_released(self, session_factory):
        locks = GenerationLocks()
        plan = await start_turn(session_factory)
        locks.claim(plan.conversation_id)

        await run(make_orchestrator(session_factory, FakeProvider(), locks=locks), plan)

        assert not locks.is_busy(plan.conversation_id)

    @pytest.mark.asyncio
    async def test_prelude_is_sent_first(self, session_factory):
        plan = await start_turn(session_factory)
        plan.prelude = [StreamEvent("model_switched", {"modelId": "m2"})]

        events = await run(make_orchestrator(session_factory, FakeProvider()), plan)

        assert events[0] == {"type": "model_switched", "modelId": "m2"}


class TestFailures:
    @pytest.mark.asyncio
    async def test_provider_error_removes_the_empty_conversation(self, session_factory):
        provider = FakeProvider([[ProviderError("upstream exploded", "test-model")]])
        plan = await start_turn(session_factory)

        events = await run(make_orchestrator(session_factory, provider), plan)

        assert events == [{"type": "error", "error": "upstream exploded"}]
        conversation, messages = await load(session_factory, plan.conversation_id)
        assert conversation is None
        assert messages == []

    @pytest.mark.asyncio
    async def test_provider_error_keeps_earlier_turns(self, session_factory):
        plan = await start_turn(session_factory)
        await run(make_orchestrator(session_factory, FakeProvider([["first answer"]])), plan)
        _, messages = await load(session_factory, plan.conversation_id)

        async with session_factory() as session:
            store = ConversationStore(session)
            second_user = await store.add_message(
                conversation_id=plan.conversation_id, role="user", content="again", parent_message_id=messages[-1].id
            )
            await store.commit()
        plan.user_message_id = second_user.id
        plan.parent_message_id = second_user.id
        plan.context_leaf_id = messages[-1].id

        failing = FakeProvider([[ProviderError("boom")]])
        events = await run(make_orchestrator(session_factory, failing), plan)

        assert events[-1]["type"] == "error"
        conversation, remaining = await load(session_factory, plan.conversation_id)
        assert [m.content for m in remaining] == ["Hello there", "first answer"]
        assert conversation.message_count == 2

    @pytest.mark.asyncio
    async def test_timeout_keeps_partial_output(self, session_factory):
        plan = await start_turn(session_factory)

        events = await run(make_orchestrator(session_factory, SlowProvider(), timeout_seconds=0.05), plan)

        assert events[-1]["type"] == "complete"
        assert events[-1]["message"]["content"] == "partial"

    @pytest.mark.asyncio
    async def test_timeout_without_output_is_an_error(self, session_factory):
        plan = await start_turn(session_factory)

        events = await run(make_orchestrator(session_factory, SlowProvider(first=()), timeout_seconds=0.05), plan)

        assert events[-1]["type"] == "error"
        assert "timed out" in events[-1]["error"]
        conversation, _ = await load(session_factory, plan.conversation_id)
        assert conversation is None

    @pytest.mark.asyncio
    async def test_timeout_inside_artifact_saves_it(self, session_factory):
        plan = await start_turn(session_factory)
        provider = SlowProvider(first=("Intro ", '<artifact type="html" title="Demo">', "<p>body</p>"))

        events = await run(make_orchestrator(session_factory, provider, timeout_seconds=0.05), plan)

        types = [e["type"] for e in events]
        assert types == [
            "chunk", "artifact_start", "artifact_content", "artifact_complete", "chunk", "artifact_saved", "complete",
        ]
        saved = events[types.index("artifact_saved")]["artifact"]
        assert saved["content"] == "<p>body</p>"
        assert events[-1]["message"]["artifact_id"] == saved["id"]
        assert events[-1]["message"]["content"] == "Intro [Artifact: Demo]"

    @pytest.mark.asyncio
    async def test_timeout_inside_thinking_closes_it(self, session_factory):
        plan = await start_turn(session_factory)

        events = await run(
            make_orchestrator(session_factory, SlowProvider(first=("<think>reasoning",)), timeout_seconds=0.05), plan
        )

        assert [e["type"] for e in events] == ["thinking_start", "thinking_chunk", "thinking_end", "complete"]
        assert events[2]["endedByStream"] is True
        _, messages = await load(session_factory, plan.conversation_id)
        assert [entry["eventType"] for entry in messages[-1].event_stream][-1] == "thinking_end"

    @pytest.mark.asyncio
    async def test_timeout_releases_a_withheld_marker_tail(self, session_factory):
        plan = await start_turn(session_factory)

        events = await run(
            make_orchestrator(session_factory, SlowProvider(first=("Answer <thi",)), timeout_seconds=0.05), plan
        )

        assert events[-1]["type"] == "complete"
        assert events[-1]["message"]["content"] == "Answer <thi"

    @pytest.mark.asyncio
    async def test_bad_tool_arguments_do_not_abort_the_turn(self, session_factory):
        call = ToolCallDelta(index=0, id="c1", name="create_artifact", arguments='{"type": 5, "title": "T", "content": "x"}')
        provider = FakeProvider([["Working. ", call], ["Done."]])
        plan = await start_turn(session_factory)

        events = await run(make_orchestrator(session_factory, provider), plan)

        assert "error" not in [e["type"] for e in events]
        assert events[-1]["type"] == "complete"
        assert events[-1]["message"]["content"] == "Working. Done."
        _, messages = await load(session_factory, plan.conversation_id)
        assert [m.role for m in messages] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_persistence_failure_still_completes(self, session_factory, monkeypatch):
        async def broken(self, conversation, response, title_source=None):
            raise RuntimeError("disk full")

        monkeypatch.setattr(ResponsePersistence, "persist_response", broken)
        plan = await start_turn(session_factory)

        events = await run(make_orchestrator(session_factory, FakeProvider([["kept"]])), plan)

        assert events[-1]["type"] == "complete"
        assert events[-1]["message"]["content"] == "kept"

    @pytest.mark.asyncio
    async def test_client_disconnect_persists_what_was_sent(self, session_factory):
        locks = GenerationLocks()
        plan = await start_turn(session_factory)
        locks.claim(plan.conversation_id)
        stream = make_orchestrator(session_factory, SlowProvider(first=("half an ",)), locks=locks).stream(plan)

        first = await stream.__anext__()
        assert '"chunk"' in first
        await stream.aclose()

        _, messages = await load(session_factory, plan.conversation_id)
        assert messages[-1].role == "assistant"
        assert messages[-1].content == "half an"
        assert not locks.is_busy(plan.conversation_id)


def test_generation_state_tracks_output():
    state = GenerationState(clock=lambda: 5)
    assert not state.has_output
    state.observe(StreamEvent("thinking_chunk", {"content": "hmm"}))
    assert state.has_output and state.content == ""
    state.observe(StreamEvent("chunk", {"content": " hi "}))
    assert state.content == "hi"
    assert [entry["timestamp"] for entry in state.log.entries] == [5, 6]
