"""
Message-related Pydantic schemas.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Any, Dict
from datetime import datetime


class AttachedFile(BaseModel):
    """Text extracted from an uploaded file, inlined into the prompt."""
    name: str = Field(..., max_length=255)
    content: str = ""
    mime_type: Optional[str] = None


class ChatRequest(BaseModel):
    """Schema for sending a chat message."""
    conversation_id: Optional[int] = None  # If None, create new conversation
    parent_message_id: Optional[int] = None  # If None, continue from the newest message
    content: str = Field(..., min_length=1)
    attached_files: List[AttachedFile] = []
    model_id: Optional[str] = None
    pro_search: bool = False
    force_artifact: bool = False
    deep_research: bool = False

    class Config:
        protected_namespaces = ()


class RegenerateRequest(BaseModel):
    """Schema for regenerating an assistant message."""
    directive: Optional[str] = None
    model_id: Optional[str] = None
    pro_search: bool = False

    class Config:
        protected_namespaces = ()


class EditMessageRequest(BaseModel):
    """Schema for editing a user message into a new branch."""
    content: str = Field(..., min_length=1)
    attached_files: List[AttachedFile] = []
    model_id: Optional[str] = None
    pro_search: bool = False

    class Config:
        protected_namespaces = ()


class MessageResponse(BaseModel):
    """Message response schema."""
    id: int
    conversation_id: int
    role: str
    content: Optional[str] = None
    model_name: Optional[str] = None
    token_count: int = 0
    branch_index: int = 0
    parent_message_id: Optional[int] = None
    artifact_id: Optional[int] = None
    attached_files: Optional[List[Dict[str, Any]]] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        protected_namespaces = ()


class MessageWithBranches(MessageResponse):
    """Message as listed in a conversation, with tree and replay hints."""
    total_branches: int = 1
    has_thinking: bool = False
    sources_count: int = 0
    artifact_title: Optional[str] = None
    artifact_type: Optional[str] = None


class SourcesResponse(BaseModel):
    message_id: int
    sources: List[Dict[str, Any]] = []


class ThinkingResponse(BaseModel):
    message_id: int
    event_stream: List[Dict[str, Any]] = []
