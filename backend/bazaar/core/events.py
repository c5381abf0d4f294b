"""
In-process event broker.

WHAT: Topic-keyed publish/subscribe for progress and negotiation events
WHY: Observers (SSE clients) need live updates; persistence stays the source of truth
HOW: Each subscriber owns a bounded asyncio.Queue; publish fans out without awaiting
     and never raises
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, Optional, Set

from .config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Event names
BUY_REQUEST_PROGRESS = "buyRequest:progress"
NEGOTIATION_MESSAGE = "negotiation:message"
NEGOTIATION_STATUS_CHANGED = "negotiation:statusChanged"
NEGOTIATION_CONCLUDED = "negotiation:concluded"


def buy_request_topic(buy_request_id: str) -> str:
    return f"buyRequest:{buy_request_id}"


def room_topic(room_id: str) -> str:
    return f"negotiation:{room_id}"


class Subscription:
    """
    One subscriber's view of a topic.

    Iterate with `async for event in subscription` or call `get()`; use as a context
    manager to detach on exit.
    """

    def __init__(self, broker: "EventBroker", topic: str, maxsize: int):
        self.broker = broker
        self.topic = topic
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    def put(self, event: Dict[str, Any]) -> None:
        """Enqueue without blocking; the oldest event is dropped when full."""
        if self.queue.full():
            try:
                self.queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
            logger.warning(f"Subscriber queue full on {self.topic}, dropped oldest event")
        self.queue.put_nowait(event)

    async def get(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout=timeout)

    def close(self) -> None:
        self.broker.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Dict[str, Any]:
        return await self.queue.get()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class EventBroker:
    """
    Topic pub/sub shared by the orchestrator, the negotiation loop and the API.

    WHAT: Fan-out of {event, data, timestamp} dicts to topic subscribers
    WHY: Broadcast is best-effort; it must never fail a persisted step
    HOW: Dict of topic -> subscriptions; failing subscribers are logged and dropped
    """

    def __init__(self, queue_size: int | None = None):
        self.queue_size = queue_size or settings.EVENT_QUEUE_SIZE
        self._subscribers: Dict[str, Set[Subscription]] = {}

    def subscribe(self, topic: str) -> Subscription:
        subscription = Subscription(self, topic, self.queue_size)
        self._subscribers.setdefault(topic, set()).add(subscription)
        logger.debug(f"Subscribed to {topic} ({len(self._subscribers[topic])} subscribers)")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.topic)
        if not subscribers:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscribers[subscription.topic]

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    def publish(self, topic: str, event: str, data: Dict[str, Any]) -> int:
        """
        Deliver an event to every subscriber of a topic.

        Args:
            topic: Topic key (buyRequest:{id} or negotiation:{roomId})
            event: Event name
            data: JSON-serializable payload

        Returns:
            Number of subscribers the event reached
        """
        envelope = {
            "event": event,
            "topic": topic,
            "data": data,
            "timestamp": datetime.now().isoformat(),
        }
        delivered = 0
        for subscription in list(self._subscribers.get(topic, ())):
            try:
                subscription.put(envelope)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping subscriber on {topic} after publish failure: {e}")
                self.unsubscribe(subscription)

        logger.debug(f"Published {event} to {topic} ({delivered} subscribers)")
        return delivered
