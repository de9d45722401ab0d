"""
Message database model.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, JSON, Index
from sqlalchemy.sql import func

from ..database import Base


class Message(Base):
    """Chat message model. Messages form a tree through parent_message_id."""

    __tablename__ = "messages"
    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        Index('ix_messages_conversation_parent', 'conversation_id', 'parent_message_id'),
        # Ids are never reused after a prune
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)

    role = Column(String(20), nullable=False)  # "user", "assistant", "system"
    content = Column(Text, nullable=True)

    model_name = Column(String(200), nullable=True)
    token_count = Column(Integer, default=0)

    # Branching: null parent means conversation root
    branch_index = Column(Integer, default=0, nullable=False)
    parent_message_id = Column(Integer, nullable=True)

    sources = Column(JSON, nullable=True)  # Citation list
    event_stream = Column(JSON, nullable=True)  # Ordered replay log
    artifact_id = Column(Integer, nullable=True)
    attached_files = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
