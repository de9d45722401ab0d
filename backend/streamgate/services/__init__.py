"""
Services package.
"""

from .llm_service import LLMService
from .search_service import SearchService
from .retrieval_service import NullRetrievalService
from .conversation_store import ConversationStore

__all__ = ["LLMService", "SearchService", "NullRetrievalService", "ConversationStore"]
