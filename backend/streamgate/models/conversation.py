"""
Conversation database model.
"""

from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, JSON, Index
from sqlalchemy.sql import func

from ..database import Base


class Conversation(Base):
    """Conversation/chat session model."""

    __tablename__ = "conversations"
    __mapper_args__ = {"eager_defaults": True}

    # Composite index for faster conversation listing by owner ordered by recency
    __table_args__ = (
        Index('ix_conversations_user_updated', 'user_id', 'updated_at'),
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(100), nullable=False, index=True)

    title = Column(String(200), default="New Chat")
    current_model = Column(String(200), nullable=True)
    instructions = Column(Text, nullable=True)  # Project-level instructions

    # Multi-phase workflow state (deep research)
    deep_research_active = Column(Boolean, default=False)
    deep_research_phase = Column(String(50), nullable=True)
    deep_research_data = Column(JSON, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), server_default=func.now())

    # Statistics
    message_count = Column(Integer, default=0)
    total_tokens = Column(Integer, default=0)
