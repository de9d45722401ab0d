"""
Database models package.
"""

from .conversation import Conversation
from .message import Message
from .artifact import Artifact

__all__ = ["Conversation", "Message", "Artifact"]
