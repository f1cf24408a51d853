"""Server-Sent Events stream of follow updates."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from dchannel.schemas.common import Envelope
from dchannel.services.poller import PollerRegistry, Subscription

from ..dependencies import RegistryDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/listen", tags=["listen"])

SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


async def _event_stream(
    request: Request, registry: PollerRegistry, subscription: Subscription
) -> AsyncIterator[str]:
    try:
        yield f"event: subscribed\ndata: {subscription.id}\n\n"
        async for follow in subscription.sink.events():
            if await request.is_disconnected():
                break
            yield f"event: message\ndata: {follow.model_dump_json()}\n\n"
    finally:
        await registry.close(subscription.id)
        logger.debug("Listener %s disconnected", subscription.id)


@router.get("")
async def listen(request: Request, registry: RegistryDep) -> StreamingResponse:
    """Start a poll subscription and stream one ``message`` event per changed follow.

    The subscription, and its poller, ends when the client disconnects.
    """
    subscription = await registry.open()
    return StreamingResponse(
        _event_stream(request, registry, subscription),
        media_type="text/event-stream",
        headers={**SSE_HEADERS, "X-Subscription-Id": subscription.id},
    )


@router.get("/subscriptions")
async def list_subscriptions(registry: RegistryDep) -> Envelope:
    return Envelope.ok(registry.active())


@router.delete("/{subscription_id}")
async def close_subscription(subscription_id: str, registry: RegistryDep) -> Envelope:
    """Stop the poller behind a subscription; its stream then ends."""
    registry.get(subscription_id)
    await registry.close(subscription_id)
    return Envelope.ok(subscription_id)
