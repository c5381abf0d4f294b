"""
Unit tests for the event broker.

WHAT: Topic isolation, envelope shape, bounded queues, unsubscribe
WHY: Broadcast must never fail a persisted step or leak to other topics
HOW: Subscribe, publish, read queues directly
"""

import asyncio

import pytest

from bazaar.core.events import (
    BUY_REQUEST_PROGRESS,
    EventBroker,
    buy_request_topic,
    room_topic,
)


@pytest.mark.unit
class TestEventBroker:

    def test_topic_names(self):
        assert buy_request_topic("abc") == "buyRequest:abc"
        assert room_topic("r1") == "negotiation:r1"

    @pytest.mark.asyncio
    async def test_publish_reaches_topic_subscribers_only(self, broker):
        mine = broker.subscribe(buy_request_topic("a"))
        other = broker.subscribe(buy_request_topic("b"))

        delivered = broker.publish(buy_request_topic("a"), BUY_REQUEST_PROGRESS, {"searchStep": "searching"})

        assert delivered == 1
        envelope = await mine.get(timeout=1)
        assert envelope["event"] == BUY_REQUEST_PROGRESS
        assert envelope["topic"] == "buyRequest:a"
        assert envelope["data"] == {"searchStep": "searching"}
        assert "timestamp" in envelope
        assert other.queue.empty()

    def test_publish_without_subscribers(self, broker):
        assert broker.publish("buyRequest:none", BUY_REQUEST_PROGRESS, {}) == 0

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest(self):
        broker = EventBroker(queue_size=2)
        subscription = broker.subscribe("t")
        for i in range(3):
            broker.publish("t", "e", {"n": i})

        first = await subscription.get(timeout=1)
        second = await subscription.get(timeout=1)
        assert [first["data"]["n"], second["data"]["n"]] == [1, 2]

    @pytest.mark.asyncio
    async def test_get_times_out(self, broker):
        subscription = broker.subscribe("t")
        with pytest.raises(asyncio.TimeoutError):
            await subscription.get(timeout=0.01)

    def test_context_manager_unsubscribes(self, broker):
        with broker.subscribe("t"):
            assert broker.subscriber_count("t") == 1
        assert broker.subscriber_count("t") == 0
        assert broker.publish("t", "e", {}) == 0

    @pytest.mark.asyncio
    async def test_events_keep_publish_order(self, broker):
        subscription = broker.subscribe("t")
        for i in range(5):
            broker.publish("t", "e", {"n": i})
        received = [(await subscription.get(timeout=1))["data"]["n"] for _ in range(5)]
        assert received == [0, 1, 2, 3, 4]
