"""
Artifact-related Pydantic schemas.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Any, Dict
from datetime import datetime

from ..streaming.kinds import ArtifactType


class ArtifactUpdate(BaseModel):
    """An edit; always stored as a new version."""
    content: str
    title: Optional[str] = Field(None, max_length=200)
    language: Optional[str] = None


class ArtifactResponse(BaseModel):
    id: int
    conversation_id: int
    message_id: Optional[int] = None
    type: ArtifactType
    title: str
    language: Optional[str] = None
    content: str
    version: int
    parent_artifact_id: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="artifact_metadata")
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ArtifactVersionsResponse(BaseModel):
    artifact_id: int
    versions: List[ArtifactResponse] = []
