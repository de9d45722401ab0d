"""
Artifact database model.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, JSON
from sqlalchemy.sql import func

from ..database import Base


class Artifact(Base):
    """Versioned structured deliverable. Edits add a row linked by parent_artifact_id."""

    __tablename__ = "artifacts"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    message_id = Column(Integer, nullable=True)
    user_id = Column(String(100), nullable=False)

    type = Column(String(20), nullable=False)
    title = Column(String(200), nullable=False)
    language = Column(String(50), nullable=True)
    content = Column(Text, nullable=False, default="")

    version = Column(Integer, default=1, nullable=False)
    parent_artifact_id = Column(Integer, nullable=True)
    artifact_metadata = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
