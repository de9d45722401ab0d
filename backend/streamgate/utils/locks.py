"""
At most one in-flight generation per conversation.
"""

import logging
from typing import Set

from ..exceptions import ConversationBusyError

logger = logging.getLogger(__name__)


class GenerationLocks:
    """Conversation ids with a generation currently streaming.

    Claims run on the event loop thread with no await in between the
    check and the add.
    """

    def __init__(self):
        self._busy: Set[int] = set()

    def claim(self, conversation_id: int) -> None:
        if conversation_id in self._busy:
            logger.info("Conversation %s already has a generation in flight", conversation_id)
            raise ConversationBusyError(conversation_id)
        self._busy.add(conversation_id)

    def release(self, conversation_id: int) -> None:
        self._busy.discard(conversation_id)

    def is_busy(self, conversation_id: int) -> bool:
        return conversation_id in self._busy
