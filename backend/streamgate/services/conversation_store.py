"""
Persistence for conversations, messages and artifacts.

Mutating methods only flush; the caller decides when to commit so several
writes can share one transaction.
"""

from sqlalchemy import select, delete, desc, func, update
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Iterable, List, Optional

from ..models import Artifact, Conversation, Message


class ConversationStore:
    """Repository over one database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def commit(self):
        await self.db.commit()

    async def rollback(self):
        await self.db.rollback()

    # Conversations

    async def create_conversation(self, user_id: str, title: str = "New Chat", instructions: Optional[str] = None) -> Conversation:
        conversation = Conversation(user_id=user_id, title=title or "New Chat", instructions=instructions)
        self.db.add(conversation)
        await self.db.flush()
        return conversation

    async def get_conversation(self, conversation_id: int, user_id: Optional[str] = None) -> Optional[Conversation]:
        query = select(Conversation).filter(Conversation.id == conversation_id)
        if user_id is not None:
            query = query.filter(Conversation.user_id == user_id)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list_conversations(self, user_id: str, skip: int = 0, limit: int = 50) -> List[Conversation]:
        """Conversations with at least one message, most recent first."""
        result = await self.db.execute(
            select(Conversation)
            .filter(Conversation.user_id == user_id, Conversation.message_count > 0)
            .order_by(desc(Conversation.updated_at), desc(Conversation.id))
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def update_conversation(self, conversation: Conversation, **fields) -> Conversation:
        for key, value in fields.items():
            setattr(conversation, key, value)
        await self.db.flush()
        return conversation

    async def delete_conversation(self, conversation_id: int) -> None:
        """Delete a conversation together with its messages and artifacts."""
        await self.db.execute(delete(Artifact).where(Artifact.conversation_id == conversation_id))
        await self.db.execute(delete(Message).where(Message.conversation_id == conversation_id))
        await self.db.execute(delete(Conversation).where(Conversation.id == conversation_id))

    # Messages

    async def list_messages(self, conversation_id: int) -> List[Message]:
        result = await self.db.execute(
            select(Message)
            .filter(Message.conversation_id == conversation_id)
            .order_by(Message.id)
        )
        return list(result.scalars().all())

    async def get_message(self, conversation_id: int, message_id: int) -> Optional[Message]:
        result = await self.db.execute(
            select(Message).filter(
                Message.conversation_id == conversation_id,
                Message.id == message_id
            )
        )
        return result.scalar_one_or_none()

    async def add_message(self, **fields) -> Message:
        message = Message(**fields)
        self.db.add(message)
        await self.db.flush()
        return message

    async def delete_messages(self, conversation_id: int, message_ids: Iterable[int]) -> None:
        """Delete messages; artifacts they owned stay in the conversation, unlinked."""
        ids = list(message_ids)
        if not ids:
            return
        await self.db.execute(
            update(Artifact)
            .where(Artifact.conversation_id == conversation_id, Artifact.message_id.in_(ids))
            .values(message_id=None)
        )
        await self.db.execute(
            delete(Message).where(
                Message.conversation_id == conversation_id,
                Message.id.in_(ids)
            )
        )

    async def count_messages(self, conversation_id: int) -> int:
        result = await self.db.execute(
            select(func.count(Message.id)).filter(Message.conversation_id == conversation_id)
        )
        return result.scalar_one()

    # Artifacts

    async def add_artifact(self, **fields) -> Artifact:
        artifact = Artifact(**fields)
        self.db.add(artifact)
        await self.db.flush()
        return artifact

    async def get_artifact(self, artifact_id: int, user_id: Optional[str] = None) -> Optional[Artifact]:
        query = select(Artifact).filter(Artifact.id == artifact_id)
        if user_id is not None:
            query = query.filter(Artifact.user_id == user_id)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list_artifacts(self, conversation_id: int) -> List[Artifact]:
        result = await self.db.execute(
            select(Artifact)
            .filter(Artifact.conversation_id == conversation_id)
            .order_by(Artifact.id)
        )
        return list(result.scalars().all())

    async def artifact_versions(self, artifact: Artifact) -> List[Artifact]:
        """The version chain containing artifact, oldest first."""
        root = artifact
        while root.parent_artifact_id is not None:
            parent = await self.get_artifact(root.parent_artifact_id)
            if parent is None:
                break
            root = parent

        chain = [root]
        while True:
            result = await self.db.execute(
                select(Artifact)
                .filter(Artifact.parent_artifact_id == chain[-1].id)
                .order_by(Artifact.id)
            )
            child = result.scalars().first()
            if child is None:
                return chain
            chain.append(child)

    async def delete_artifact(self, artifact_id: int) -> None:
        await self.db.execute(delete(Artifact).where(Artifact.id == artifact_id))
