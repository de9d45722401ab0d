"""
Conversation-related Pydantic schemas.
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from .message import MessageWithBranches


class ConversationCreate(BaseModel):
    """Schema for creating a conversation."""
    title: Optional[str] = Field("New Chat", max_length=200)
    instructions: Optional[str] = None


class ConversationUpdate(BaseModel):
    """Schema for updating a conversation."""
    title: Optional[str] = Field(None, max_length=200)
    instructions: Optional[str] = None
    current_model: Optional[str] = Field(None, max_length=200)


class ConversationResponse(BaseModel):
    """Conversation response schema."""
    id: int
    user_id: str
    title: str
    current_model: Optional[str] = None
    instructions: Optional[str] = None
    deep_research_active: bool = False
    deep_research_phase: Optional[str] = None
    message_count: int = 0
    total_tokens: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ConversationListResponse(BaseModel):
    """Schema for conversation list item."""
    id: int
    title: str
    current_model: Optional[str] = None
    message_count: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ConversationWithMessages(ConversationResponse):
    """Conversation with its full message tree."""
    messages: List[MessageWithBranches] = []
