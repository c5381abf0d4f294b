"""
SSE streaming endpoints.

WHAT: Server-Sent Events for buy request progress and negotiation rooms
WHY: Observers follow the pipeline live instead of polling
HOW: Subscribe to the broker topic, send a `connected` snapshot read from the store,
     then relay published events with periodic heartbeats
"""

import asyncio
import json
from datetime import datetime
from typing import AsyncIterator, Callable, Dict, Any

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from ..dependencies import get_broker, get_store
from ....core.config import settings
from ....core.events import (
    BUY_REQUEST_PROGRESS,
    NEGOTIATION_CONCLUDED,
    NEGOTIATION_STATUS_CHANGED,
    EventBroker,
    Subscription,
    buy_request_topic,
    room_topic,
)
from ....core.models import RoomStatus, SearchStep, TERMINAL_ROOM_STATUSES, TERMINAL_SEARCH_STEPS
from ....core.store import MarketplaceStore
from ....utils.exceptions import BuyRequestNotFoundException, RoomNotFoundException
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _sse(event: str, data: Dict[str, Any]) -> dict:
    return {"event": event, "data": json.dumps(data)}


async def relay_events(
    request: Request,
    subscription: Subscription,
    snapshot: Dict[str, Any],
    is_final: Callable[[Dict[str, Any]], bool],
    heartbeat_interval: float | None = None,
) -> AsyncIterator[dict]:
    """
    Yield SSE dicts for one subscription.

    Args:
        request: Incoming request (disconnect detection)
        subscription: Broker subscription, closed when the generator ends
        snapshot: Current state sent as the `connected` event
        is_final: Envelope predicate; the stream ends after relaying a matching event
        heartbeat_interval: Seconds of silence before a heartbeat
    """
    interval = heartbeat_interval or settings.SSE_HEARTBEAT_INTERVAL
    try:
        yield _sse("connected", {"topic": subscription.topic, "snapshot": snapshot,
                                 "timestamp": datetime.now().isoformat()})

        while True:
            if await request.is_disconnected():
                logger.info(f"SSE client disconnected from {subscription.topic}")
                break

            try:
                envelope = await subscription.get(timeout=interval)
            except asyncio.TimeoutError:
                yield _sse("heartbeat", {"timestamp": datetime.now().isoformat()})
                continue

            yield _sse(envelope["event"], {**envelope["data"], "timestamp": envelope["timestamp"]})
            if is_final(envelope):
                logger.info(f"SSE stream on {subscription.topic} finished after {envelope['event']}")
                break
    finally:
        subscription.close()


async def snapshot_only(subscription: Subscription, snapshot: Dict[str, Any]) -> AsyncIterator[dict]:
    """Single `connected` event for a topic that will not change any more."""
    try:
        yield _sse("connected", {"topic": subscription.topic, "snapshot": snapshot,
                                 "timestamp": datetime.now().isoformat()})
    finally:
        subscription.close()


@router.get("/buy-requests/{buy_request_id}/stream")
async def stream_buy_request(
    buy_request_id: str,
    request: Request,
    store: MarketplaceStore = Depends(get_store),
    broker: EventBroker = Depends(get_broker),
):
    """
    Stream buyRequest:progress events until a terminal step.

    A buy request already in a terminal step gets its snapshot and the stream closes.
    """
    # Subscribe before reading so no step falls between snapshot and relay
    subscription = broker.subscribe(buy_request_topic(buy_request_id))
    buy_request = store.get_buy_request(buy_request_id)
    if buy_request is None:
        subscription.close()
        raise BuyRequestNotFoundException(buy_request_id)

    def is_final(envelope) -> bool:
        return (
            envelope["event"] == BUY_REQUEST_PROGRESS
            and SearchStep(envelope["data"]["searchStep"]) in TERMINAL_SEARCH_STEPS
        )

    if SearchStep(buy_request["searchStep"]) in TERMINAL_SEARCH_STEPS:
        return EventSourceResponse(snapshot_only(subscription, buy_request))
    return EventSourceResponse(relay_events(request, subscription, buy_request, is_final))


@router.get("/negotiation/rooms/{room_id}/stream")
async def stream_room(
    room_id: str,
    request: Request,
    store: MarketplaceStore = Depends(get_store),
    broker: EventBroker = Depends(get_broker),
):
    """
    Stream negotiation:message, statusChanged and concluded events for a room.

    Ends after negotiation:concluded or a status change into a terminal status.
    """
    subscription = broker.subscribe(room_topic(room_id))
    room = store.get_room(room_id)
    if room is None:
        subscription.close()
        raise RoomNotFoundException(room_id)

    def is_final(envelope) -> bool:
        if envelope["event"] == NEGOTIATION_CONCLUDED:
            return True
        # A concluding status change is followed by negotiation:concluded
        return (
            envelope["event"] == NEGOTIATION_STATUS_CHANGED
            and RoomStatus(envelope["data"]["status"]) in TERMINAL_ROOM_STATUSES
            and "outcome" not in envelope["data"]
        )

    if RoomStatus(room["status"]) in TERMINAL_ROOM_STATUSES:
        return EventSourceResponse(snapshot_only(subscription, room))
    return EventSourceResponse(relay_events(request, subscription, room, is_final))
