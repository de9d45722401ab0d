import json

import pytest

from conftest import auth_headers, parse_events
from streamgate.config import FORCE_ARTIFACT_INSTRUCTIONS, PRO_SEARCH_INSTRUCTIONS, settings
from streamgate.exceptions import ProviderError
from streamgate.services.llm_service import ToolCallDelta


async def chat(client, **body):
    response = await client.post("/api/chat", json=body)
    assert response.status_code == 200, response.text
    assert response.headers["content-type"].startswith("text/event-stream")
    return parse_events(response.text)


async def two_turns(client, provider):
    """Q1 -> A1 -> Q2 -> A2; returns the four message ids."""
    provider.scripts = [["A1"], ["A2"]]
    first = (await chat(client, content="Q1"))[-1]
    conversation_id = first["conversation"]["id"]
    second = (await chat(client, content="Q2", conversation_id=conversation_id))[-1]
    return conversation_id, (
        first["message"]["parent_message_id"],
        first["message"]["id"],
        second["message"]["parent_message_id"],
        second["message"]["id"],
    )


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_creates_conversation_and_streams(self, client, provider):
        provider.scripts = [["Hello ", "back"]]

        events = await chat(client, content="Hi there")

        assert [e["type"] for e in events] == ["chunk", "chunk", "complete"]
        complete = events[-1]
        assert complete["message"]["content"] == "Hello back"
        assert complete["message"]["role"] == "assistant"
        assert complete["conversation"]["title"] == "Hi there"
        assert provider.model_ids == [settings.DEFAULT_MODEL_ID]

    @pytest.mark.asyncio
    async def test_listing_hides_empty_conversations(self, client):
        await client.post("/api/conversations", json={"title": "Empty"})
        await chat(client, content="Something")

        listed = (await client.get("/api/conversations")).json()
        assert [c["title"] for c in listed] == ["Something"]

    @pytest.mark.asyncio
    async def test_conversations_are_private(self, client):
        conversation_id = (await chat(client, content="mine"))[-1]["conversation"]["id"]

        response = await client.get(f"/api/conversations/{conversation_id}", headers=auth_headers("someone-else"))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_requires_a_token(self, client):
        response = await client.post("/api/chat", json={"content": "hi"}, headers={"Authorization": ""})
        assert response.status_code in (401, 403)

    @pytest.mark.asyncio
    async def test_failure_on_first_turn_deletes_the_conversation(self, client, provider):
        provider.scripts = [[ProviderError("model offline")]]

        events = await chat(client, content="Hello?")

        assert events == [{"type": "error", "error": "model offline"}]
        assert (await client.get("/api/conversations")).json() == []

    @pytest.mark.asyncio
    async def test_follow_up_continues_from_newest_message(self, client, provider):
        conversation_id, (q1, a1, q2, a2) = await two_turns(client, provider)

        assert q2 != q1
        history = provider.calls[-1]["messages"]
        assert [m["content"] for m in history[1:]] == ["Q1", "A1", "Q2"]

        detail = (await client.get(f"/api/conversations/{conversation_id}")).json()
        assert [(m["id"], m["parent_message_id"]) for m in detail["messages"]] == [
            (q1, None), (a1, q1), (q2, a1), (a2, q2),
        ]

    @pytest.mark.asyncio
    async def test_unknown_parent_is_404(self, client, provider):
        conversation_id = (await chat(client, content="x"))[-1]["conversation"]["id"]

        response = await client.post(
            "/api/chat", json={"content": "y", "conversation_id": conversation_id, "parent_message_id": 999}
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_busy_conversation_is_rejected(self, client, locks):
        conversation_id = (await chat(client, content="x"))[-1]["conversation"]["id"]
        locks.claim(conversation_id)

        response = await client.post("/api/chat", json={"content": "y", "conversation_id": conversation_id})
        assert response.status_code == 409
        assert (await client.delete(f"/api/conversations/{conversation_id}")).status_code == 409

        locks.release(conversation_id)
        assert (await client.delete(f"/api/conversations/{conversation_id}")).status_code == 200


class TestRegenerate:
    @pytest.mark.asyncio
    async def test_prunes_descendants_and_adds_sibling(self, client, provider):
        conversation_id, (q1, a1, q2, a2) = await two_turns(client, provider)
        provider.scripts = [["A1 take two"]]

        response = await client.post(
            f"/api/chat/conversations/{conversation_id}/regenerate/{a1}", json={"directive": "more_concise"}
        )
        events = parse_events(response.text)

        assert events[0] == {"type": "pruned_descendants", "parentMessageId": q1, "removedUserMessageIds": [q2]}
        complete = events[-1]
        assert complete["type"] == "complete"
        assert complete["message"]["branch_index"] == 1
        assert complete["branchMetadata"] == {"currentBranchIndex": 1, "totalBranches": 2, "parentMessageId": q1}

        detail = (await client.get(f"/api/conversations/{conversation_id}")).json()
        ids = [m["id"] for m in detail["messages"]]
        assert q2 not in ids and a2 not in ids
        assert [m["total_branches"] for m in detail["messages"]] == [1, 2, 2]

        sent = provider.calls[-1]["messages"]
        assert "[Previous Response (Rejected by User)]:\nA1" in sent[0]["content"]
        assert "more concise" in sent[0]["content"]
        assert [m["content"] for m in sent[1:]] == ["Q1"]

    @pytest.mark.asyncio
    async def test_leaf_regeneration_reports_no_pruning(self, client, provider):
        conversation_id, (_, _, q2, a2) = await two_turns(client, provider)

        events = parse_events(
            (await client.post(f"/api/chat/conversations/{conversation_id}/regenerate/{a2}")).text
        )

        assert "pruned_descendants" not in [e["type"] for e in events]
        assert events[-1]["branchMetadata"]["parentMessageId"] == q2

    @pytest.mark.asyncio
    async def test_search_directive_turns_on_search(self, client, provider):
        conversation_id, (_, a1, _, _) = await two_turns(client, provider)

        await client.post(
            f"/api/chat/conversations/{conversation_id}/regenerate/{a1}", json={"directive": "search_web"}
        )

        system = provider.calls[-1]["messages"][0]["content"]
        assert PRO_SEARCH_INSTRUCTIONS in system
        assert provider.calls[-1]["tools"] is not None

    @pytest.mark.asyncio
    async def test_user_message_cannot_be_regenerated(self, client, provider):
        conversation_id, (q1, _, _, _) = await two_turns(client, provider)

        response = await client.post(f"/api/chat/conversations/{conversation_id}/regenerate/{q1}")
        assert response.status_code == 400


class TestEdit:
    @pytest.mark.asyncio
    async def test_edit_branches_and_isolates_context(self, client, provider):
        conversation_id, (q1, a1, q2, a2) = await two_turns(client, provider)
        provider.scripts = [["A2 for the edit"]]

        response = await client.post(
            f"/api/chat/conversations/{conversation_id}/edit-message/{q2}", json={"content": "Q2 edited"}
        )
        events = parse_events(response.text)

        created = events[0]
        assert created["type"] == "user_branch_created"
        assert created["userMessage"]["parentMessageId"] == a1
        assert created["userMessage"]["branchIndex"] == 1
        new_id = created["userMessage"]["messageId"]

        sent = provider.calls[-1]["messages"]
        assert [m["content"] for m in sent[1:]] == ["Q1", "A1", "Q2 edited"]

        complete = events[-1]
        assert complete["message"]["parent_message_id"] == new_id
        assert complete["branchMetadata"] == {"currentBranchIndex": 1, "totalBranches": 2, "parentMessageId": a1}

        detail = (await client.get(f"/api/conversations/{conversation_id}")).json()
        ids = [m["id"] for m in detail["messages"]]
        assert q2 in ids and a2 in ids

    @pytest.mark.asyncio
    async def test_editing_the_root_message_sends_no_history(self, client, provider):
        conversation_id, (q1, _, _, _) = await two_turns(client, provider)

        await client.post(f"/api/chat/conversations/{conversation_id}/edit-message/{q1}", json={"content": "Q1 again"})

        sent = provider.calls[-1]["messages"]
        assert [m["role"] for m in sent] == ["system", "user"]
        assert sent[-1]["content"] == "Q1 again"

    @pytest.mark.asyncio
    async def test_assistant_message_cannot_be_edited(self, client, provider):
        conversation_id, (_, a1, _, _) = await two_turns(client, provider)

        response = await client.post(
            f"/api/chat/conversations/{conversation_id}/edit-message/{a1}", json={"content": "nope"}
        )
        assert response.status_code == 400


class TestMessageDetails:
    @pytest.mark.asyncio
    async def test_sources_and_thinking_are_persisted(self, client, provider):
        search = ToolCallDelta(index=0, id="call_1", name="search_web", arguments=json.dumps({"query": "python"}))
        provider.scripts = [[search], ["<think>combine them</think>Python is popular [1]."]]

        events = await chat(client, content="Tell me about Python")

        types = [e["type"] for e in events]
        assert types[:2] == ["tool_call", "tool_call_complete"]
        message = events[-1]["message"]
        conversation_id = events[-1]["conversation"]["id"]
        base = f"/api/conversations/{conversation_id}/messages/{message['id']}"

        sources = (await client.get(f"{base}/sources")).json()
        assert [s["index"] for s in sources["sources"]] == [1, 2]
        assert sources["sources"][0]["url"] == "https://python.org"

        thinking = (await client.get(f"{base}/thinking")).json()
        kinds = [entry["eventType"] for entry in thinking["event_stream"]]
        assert kinds[:2] == ["tool_call", "tool_call_complete"]
        assert "thinking_chunk" in kinds

        detail = (await client.get(f"/api/conversations/{conversation_id}")).json()
        assistant = detail["messages"][-1]
        assert assistant["has_thinking"] is True
        assert assistant["sources_count"] == 2
        assert assistant["content"] == "Python is popular [1]."

    @pytest.mark.asyncio
    async def test_artifact_edit_creates_a_version(self, client, provider):
        provider.scripts = [['<artifact type="code" title="Script" language="python">print(1)</artifact>']]

        events = await chat(client, content="Write a script")
        start = next(e for e in events if e["type"] == "artifact_start")
        assert start["artifact"] == {"type": "code", "title": "Script", "language": "python"}
        saved = next(e for e in events if e["type"] == "artifact_saved")["artifact"]
        assert saved["version"] == 1 and saved["type"] == "code"

        detail = (await client.get(f"/api/conversations/{events[-1]['conversation']['id']}")).json()
        assert detail["messages"][-1]["artifact_title"] == "Script"

        updated = (await client.patch(f"/api/artifacts/{saved['id']}", json={"content": "print(2)"})).json()
        assert updated["version"] == 2
        assert updated["parent_artifact_id"] == saved["id"]
        assert updated["language"] == "python"

        versions = (await client.get(f"/api/artifacts/{updated['id']}/versions")).json()
        assert [v["content"] for v in versions["versions"]] == ["print(1)", "print(2)"]

        other = await client.get(f"/api/artifacts/{saved['id']}", headers=auth_headers("intruder"))
        assert other.status_code == 404


class TestModes:
    @pytest.mark.asyncio
    async def test_pro_search_switches_model(self, client, provider, monkeypatch):
        monkeypatch.setattr(settings, "PRO_SEARCH_MODEL_ID", "search-model")
        monkeypatch.setattr(settings, "PRO_SEARCH_MODEL_NAME", "Search Model")

        events = await chat(client, content="latest news", pro_search=True)

        assert events[0]["type"] == "model_switched"
        assert events[0]["modelId"] == "search-model"
        assert provider.model_ids == ["search-model"]
        assert PRO_SEARCH_INSTRUCTIONS in provider.calls[0]["messages"][0]["content"]
        assert events[-1]["conversation"]["current_model"] == "search-model"

    @pytest.mark.asyncio
    async def test_thinking_model_is_kept_in_search_mode(self, client, provider, monkeypatch):
        monkeypatch.setattr(settings, "PRO_SEARCH_MODEL_ID", "search-model")

        events = await chat(client, content="q", pro_search=True, model_id=settings.THINKING_MODEL_IDS[0])

        assert "model_switched" not in [e["type"] for e in events]
        assert provider.model_ids == [settings.THINKING_MODEL_IDS[0]]

    @pytest.mark.asyncio
    async def test_force_artifact_adds_instructions(self, client, provider):
        await chat(client, content="make a page", force_artifact=True)
        assert FORCE_ARTIFACT_INSTRUCTIONS in provider.calls[0]["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_attachments_are_inlined(self, client, provider):
        await chat(client, content="summarize", attached_files=[{"name": "notes.txt", "content": "alpha"}])
        assert provider.calls[0]["messages"][-1]["content"] == "summarize\n\n[File: notes.txt]\nalpha"

    @pytest.mark.asyncio
    async def test_deep_research_runs_in_two_phases(self, client, provider):
        provider.scripts = [["1. Which region?"], ["report"]]

        first = await chat(client, content="Research solar power", deep_research=True)
        conversation_id = first[-1]["conversation"]["id"]
        assert "clarifying questions" in provider.calls[0]["messages"][0]["content"]
        assert first[-1]["conversation"]["deep_research_phase"] == "questions"

        second = await chat(client, content="Europe", conversation_id=conversation_id)

        sent = provider.calls[1]["messages"]
        assert FORCE_ARTIFACT_INSTRUCTIONS in sent[0]["content"]
        assert sent[-1]["content"] == (
            "Research solar power\n\nAI Questions:\n1. Which region?\n\nUser Answers:\nEurope"
        )
        assert second[-1]["conversation"]["deep_research_active"] is False


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.json()["status"] == "healthy"
