"""
Retrieval collaborator: ranked content chunks relevant to a prompt.

Embedding and vector storage live outside this service; the engine only
needs something that answers ``retrieve``.
"""

from dataclasses import dataclass
from typing import List, Protocol


@dataclass
class RetrievedChunk:
    source: str
    content: str
    score: float = 0.0


class RetrievalService(Protocol):
    async def retrieve(self, user_id: str, conversation_id: int, query: str) -> List[RetrievedChunk]:
        ...


class NullRetrievalService:
    """Used when no retrieval backend is configured."""

    async def retrieve(self, user_id: str, conversation_id: int, query: str) -> List[RetrievedChunk]:
        return []


def format_retrieved_context(chunks: List[RetrievedChunk]) -> str:
    if not chunks:
        return ""
    blocks = [f"[{i}] {chunk.source}\n{chunk.content}" for i, chunk in enumerate(chunks, start=1)]
    return "\n\n## RELEVANT CONTEXT\n\n" + "\n\n".join(blocks)
