"""
Topic-based broker for live updates pushed to connected clients.

Topics are tier names or ``"all"``. Each connection owns one queue and
subscribes on connect and unsubscribes on disconnect; nothing here knows
about response generation.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Set

logger = logging.getLogger(__name__)

ALL_TOPIC = "all"


@dataclass(eq=False)
class Subscription:
    topics: Set[str]
    queue: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(maxsize=100))

    async def next(self) -> Dict[str, Any]:
        return await self.queue.get()


class UpdateBroker:
    def __init__(self):
        self._topics: Dict[str, Set[Subscription]] = {}

    def subscribe(self, topics: Iterable[str]) -> Subscription:
        subscription = Subscription(topics={t for t in topics if t})
        for topic in subscription.topics:
            self._topics.setdefault(topic, set()).add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        for topic in subscription.topics:
            subscribers = self._topics.get(topic)
            if subscribers is None:
                continue
            subscribers.discard(subscription)
            if not subscribers:
                del self._topics[topic]

    def publish(self, topic: str, payload: Dict[str, Any]) -> int:
        """Queue payload for every subscriber of topic; returns how many received it."""
        delivered = 0
        for subscription in list(self._topics.get(topic, ())):
            try:
                subscription.queue.put_nowait(payload)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Dropping update for a slow subscriber on topic %r", topic)
        return delivered

    def subscriber_count(self, topic: str) -> int:
        return len(self._topics.get(topic, ()))

    def topics(self) -> List[str]:
        return sorted(self._topics)
