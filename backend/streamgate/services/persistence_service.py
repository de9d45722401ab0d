"""
Saving finished responses and cleaning up after failed ones.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..models import Artifact, Conversation, Message
from ..streaming.events import ArtifactDraft
from .conversation_store import ConversationStore

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Chat"


def title_from_message(first_message: str) -> str:
    """First five words, or the first fifty characters of a short message."""
    words = first_message.split()[:5]
    if len(words) >= 5:
        return " ".join(words) + "..."
    return first_message.strip()[:50] or DEFAULT_TITLE


@dataclass
class GeneratedResponse:
    """Everything a generation produced, ready to be written."""
    content: str
    model_name: str
    parent_message_id: Optional[int]
    branch_index: int
    token_count: int = 0
    event_stream: List[Dict[str, Any]] = field(default_factory=list)
    sources: List[Dict[str, Any]] = field(default_factory=list)
    artifacts: List[ArtifactDraft] = field(default_factory=list)


class ResponsePersistence:
    def __init__(self, store: ConversationStore):
        self.store = store

    async def persist_response(
        self,
        conversation: Conversation,
        response: GeneratedResponse,
        title_source: Optional[str] = None,
    ) -> Tuple[Message, List[Artifact]]:
        """Write the assistant message, its artifacts and the link in one transaction."""
        message = await self.store.add_message(
            conversation_id=conversation.id,
            role="assistant",
            content=response.content,
            model_name=response.model_name,
            token_count=response.token_count,
            branch_index=response.branch_index,
            parent_message_id=response.parent_message_id,
            sources=response.sources or None,
            event_stream=response.event_stream or None,
        )

        saved: List[Artifact] = []
        for draft in response.artifacts:
            saved.append(
                await self.store.add_artifact(
                    conversation_id=conversation.id,
                    message_id=message.id,
                    user_id=conversation.user_id,
                    type=draft.type,
                    title=draft.title,
                    language=draft.language,
                    content=draft.content,
                    version=1,
                    artifact_metadata={"closed": draft.closed},
                )
            )
        if saved:
            message.artifact_id = saved[-1].id

        updates: Dict[str, Any] = {
            "message_count": await self.store.count_messages(conversation.id),
            "total_tokens": (conversation.total_tokens or 0) + response.token_count,
            "current_model": response.model_name,
        }
        if title_source and (conversation.title or DEFAULT_TITLE) == DEFAULT_TITLE:
            updates["title"] = title_from_message(title_source)
        await self.store.update_conversation(conversation, **updates)

        await self.store.commit()
        await self.store.db.refresh(message)
        await self.store.db.refresh(conversation)
        for artifact in saved:
            await self.store.db.refresh(artifact)
        return message, saved

    async def cleanup_failed_generation(self, conversation_id: int, user_message_id: Optional[int]) -> bool:
        """Undo the turn that produced no assistant message.

        Returns True when the conversation was left empty and deleted.
        """
        await self.store.rollback()
        if user_message_id is not None:
            await self.store.delete_messages(conversation_id, [user_message_id])

        remaining = await self.store.count_messages(conversation_id)
        deleted = remaining == 0
        if deleted:
            await self.store.delete_conversation(conversation_id)
            logger.info("Deleted empty conversation %s after a failed generation", conversation_id)
        else:
            conversation = await self.store.get_conversation(conversation_id)
            if conversation is not None:
                await self.store.update_conversation(conversation, message_count=remaining)
        await self.store.commit()
        return deleted
