"""
Conversation management routes.
"""

from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from ..database import get_db
from ..models import Conversation
from ..schemas.artifact import ArtifactResponse
from ..schemas.conversation import (
    ConversationCreate,
    ConversationUpdate,
    ConversationResponse,
    ConversationListResponse,
    ConversationWithMessages
)
from ..schemas.message import MessageWithBranches, SourcesResponse, ThinkingResponse
from ..schemas.user import TokenData
from ..services.branch_service import total_branches
from ..services.conversation_store import ConversationStore
from ..utils.security import get_current_user


router = APIRouter(prefix="/api/conversations", tags=["Conversations"])


async def owned_conversation(store: ConversationStore, conversation_id: int, user: TokenData) -> Conversation:
    conversation = await store.get_conversation(conversation_id, user.user_id)
    if not conversation:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found"
        )
    return conversation


@router.get("", response_model=List[ConversationListResponse])
async def list_conversations(
    skip: int = 0,
    limit: int = 50,
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List the current user's conversations that have messages."""
    return await ConversationStore(db).list_conversations(current_user.user_id, skip, limit)


@router.post("", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    conversation_data: ConversationCreate,
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Create an empty conversation."""
    store = ConversationStore(db)
    conversation = await store.create_conversation(
        current_user.user_id,
        title=conversation_data.title or "New Chat",
        instructions=conversation_data.instructions
    )
    await store.commit()
    await db.refresh(conversation)
    return conversation


@router.get("/{conversation_id}", response_model=ConversationWithMessages)
async def get_conversation(
    conversation_id: int,
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get a conversation with every message and its branch data."""
    store = ConversationStore(db)
    conversation = await owned_conversation(store, conversation_id, current_user)

    messages = await store.list_messages(conversation_id)
    artifacts = {a.id: a for a in await store.list_artifacts(conversation_id)}
    branches = total_branches(messages)

    listed = []
    for msg in messages:
        item = MessageWithBranches.model_validate(msg)
        item.total_branches = branches.get(msg.id, 1)
        item.has_thinking = any(
            entry.get("eventType") == "thinking_chunk" for entry in (msg.event_stream or [])
        )
        item.sources_count = len(msg.sources or [])
        artifact = artifacts.get(msg.artifact_id) if msg.artifact_id else None
        if artifact is not None:
            item.artifact_title = artifact.title
            item.artifact_type = artifact.type
        listed.append(item)

    return {
        **ConversationResponse.model_validate(conversation).model_dump(),
        "messages": listed
    }


@router.patch("/{conversation_id}", response_model=ConversationResponse)
async def update_conversation(
    conversation_id: int,
    updates: ConversationUpdate,
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Update a conversation's title, instructions or model."""
    store = ConversationStore(db)
    conversation = await owned_conversation(store, conversation_id, current_user)

    await store.update_conversation(conversation, **updates.model_dump(exclude_unset=True, exclude_none=True))
    await store.commit()
    await db.refresh(conversation)
    return conversation


@router.delete("/{conversation_id}")
async def delete_conversation(
    conversation_id: int,
    request: Request,
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Delete a conversation with its messages and artifacts."""
    store = ConversationStore(db)
    await owned_conversation(store, conversation_id, current_user)

    if request.app.state.locks.is_busy(conversation_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A response is still being generated for this conversation"
        )

    await store.delete_conversation(conversation_id)
    await store.commit()
    return {"message": "Conversation deleted"}


@router.get("/{conversation_id}/messages/{message_id}/sources", response_model=SourcesResponse)
async def get_message_sources(
    conversation_id: int,
    message_id: int,
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Citations gathered while generating a message."""
    store = ConversationStore(db)
    await owned_conversation(store, conversation_id, current_user)
    message = await store.get_message(conversation_id, message_id)
    if not message:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    return SourcesResponse(message_id=message.id, sources=message.sources or [])


@router.get("/{conversation_id}/messages/{message_id}/thinking", response_model=ThinkingResponse)
async def get_message_thinking(
    conversation_id: int,
    message_id: int,
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """The persisted event stream of a message, for replaying reasoning and tool use."""
    store = ConversationStore(db)
    await owned_conversation(store, conversation_id, current_user)
    message = await store.get_message(conversation_id, message_id)
    if not message:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    return ThinkingResponse(message_id=message.id, event_stream=message.event_stream or [])


@router.get("/{conversation_id}/artifacts", response_model=List[ArtifactResponse])
async def list_conversation_artifacts(
    conversation_id: int,
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Every artifact version created in a conversation."""
    store = ConversationStore(db)
    await owned_conversation(store, conversation_id, current_user)
    return await store.list_artifacts(conversation_id)
