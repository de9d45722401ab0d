"""
Branch and tree operations over a conversation's messages.

Messages link to their parent through ``parent_message_id``; a null parent
is the conversation root. Siblings are the messages that share a role and a
parent, and a message's ``branch_index`` is the number of such siblings that
existed when it was created.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from ..models import Message
from .conversation_store import ConversationStore


def next_branch_index(messages: Sequence[Message], role: str, parent_message_id: Optional[int]) -> int:
    return sum(
        1 for m in messages
        if m.role == role and m.parent_message_id == parent_message_id
    )


def children_map(messages: Sequence[Message]) -> Dict[Optional[int], List[Message]]:
    children: Dict[Optional[int], List[Message]] = {}
    for message in messages:
        children.setdefault(message.parent_message_id, []).append(message)
    return children


def collect_descendants(messages: Sequence[Message], message_id: int) -> List[Message]:
    """Every message reachable from message_id by following children, breadth first."""
    children = children_map(messages)
    found: List[Message] = []
    seen = {message_id}
    queue = deque([message_id])
    while queue:
        current = queue.popleft()
        for child in children.get(current, []):
            if child.id in seen:
                continue
            seen.add(child.id)
            found.append(child)
            queue.append(child.id)
    return found


def ancestor_chain(messages: Sequence[Message], message_id: Optional[int]) -> List[Message]:
    """The path from the root down to message_id, inclusive.

    Only this chain is used as conversation context, so messages on sibling
    branches never leak into a response.
    """
    by_id = {m.id: m for m in messages}
    chain: List[Message] = []
    seen = set()
    current = by_id.get(message_id) if message_id is not None else None
    while current is not None and current.id not in seen:
        seen.add(current.id)
        chain.append(current)
        current = by_id.get(current.parent_message_id) if current.parent_message_id is not None else None
    chain.reverse()
    return chain


def total_branches(messages: Sequence[Message]) -> Dict[int, int]:
    """Sibling-set size for every message id."""
    counts: Dict[tuple, int] = {}
    for m in messages:
        key = (m.role, m.parent_message_id)
        counts[key] = counts.get(key, 0) + 1
    return {m.id: counts[(m.role, m.parent_message_id)] for m in messages}


def branch_metadata(messages: Sequence[Message], message: Message) -> Dict[str, Optional[int]]:
    return {
        "currentBranchIndex": message.branch_index,
        "totalBranches": next_branch_index(messages, message.role, message.parent_message_id),
        "parentMessageId": message.parent_message_id,
    }


@dataclass
class PruneResult:
    parent_message_id: Optional[int]
    removed_ids: List[int] = field(default_factory=list)
    removed_user_ids: List[int] = field(default_factory=list)
    branch_index: int = 0


class BranchService:
    """Tree mutations for regenerate and edit."""

    def __init__(self, store: ConversationStore):
        self.store = store

    async def default_parent_id(self, conversation_id: int) -> Optional[int]:
        """Parent for a new user turn when the client does not name one: the newest message."""
        messages = await self.store.list_messages(conversation_id)
        return messages[-1].id if messages else None

    async def prune_for_regenerate(self, conversation_id: int, target: Message) -> PruneResult:
        """Hard-delete everything below target and work out the new sibling's index.

        Target itself stays: it is one of the siblings the regenerated
        response is counted against.
        """
        messages = await self.store.list_messages(conversation_id)
        descendants = collect_descendants(messages, target.id)
        removed_ids = [m.id for m in descendants]
        await self.store.delete_messages(conversation_id, removed_ids)

        removed = set(removed_ids)
        remaining = [m for m in messages if m.id not in removed]
        return PruneResult(
            parent_message_id=target.parent_message_id,
            removed_ids=removed_ids,
            removed_user_ids=[m.id for m in descendants if m.role == "user"],
            branch_index=next_branch_index(remaining, "assistant", target.parent_message_id),
        )

    async def create_user_branch(
        self,
        conversation_id: int,
        target: Message,
        content: str,
        attached_files: Optional[list] = None,
    ) -> Message:
        """A new user message beside target, under the same parent."""
        messages = await self.store.list_messages(conversation_id)
        return await self.store.add_message(
            conversation_id=conversation_id,
            role="user",
            content=content,
            parent_message_id=target.parent_message_id,
            branch_index=next_branch_index(messages, "user", target.parent_message_id),
            attached_files=attached_files,
            token_count=0,
        )
