"""
Live update subscription stream.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from typing import Any, Dict
import asyncio
import logging

from ..schemas.user import TokenData
from ..services.update_broker import ALL_TOPIC, UpdateBroker
from ..streaming.wire import SSE_HEADERS, encode, sse
from ..utils.security import get_admin_user, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/updates", tags=["Updates"])

HEARTBEAT_SECONDS = 30.0


class PublishRequest(BaseModel):
    topic: str = ALL_TOPIC
    payload: Dict[str, Any]


def get_broker(request: Request) -> UpdateBroker:
    return request.app.state.broker


@router.get("")
async def subscribe_updates(
    current_user: TokenData = Depends(get_current_user),
    broker: UpdateBroker = Depends(get_broker)
):
    """Stream updates for the caller's tier and for everyone."""

    async def generate():
        # The subscription lives exactly as long as the body is iterated
        subscription = broker.subscribe([current_user.tier, ALL_TOPIC])
        try:
            yield sse("connected", topics=sorted(subscription.topics))
            while True:
                try:
                    update = await asyncio.wait_for(subscription.next(), HEARTBEAT_SECONDS)
                except TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield encode(update)
        finally:
            broker.unsubscribe(subscription)
            logger.debug("Update subscriber for %s disconnected", current_user.user_id)

    return StreamingResponse(generate(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/publish")
async def publish_update(
    publish_request: PublishRequest,
    admin: TokenData = Depends(get_admin_user),
    broker: UpdateBroker = Depends(get_broker)
):
    """Push an update (for example a tier's model list changed) to a topic."""
    delivered = broker.publish(publish_request.topic, publish_request.payload)
    return {"topic": publish_request.topic, "delivered": delivered}
