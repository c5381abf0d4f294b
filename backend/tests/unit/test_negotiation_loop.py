"""
Unit tests for the negotiation loop.

WHAT: Termination rules, round budget, turn order, event and log side effects
WHY: The loop must stop exactly on a feasible agreement, a rejection or the budget
HOW: Scripted negotiator and counterparty over an in-memory store
"""

import pytest

from bazaar.a2a.types import A2AResponseError, CounterpartyUnreachableError
from bazaar.agents.negotiation_loop import NegotiationLoop
from bazaar.core.events import (
    NEGOTIATION_CONCLUDED,
    NEGOTIATION_MESSAGE,
    NEGOTIATION_STATUS_CHANGED,
    room_topic,
)
from bazaar.core.models import RoomStatus
from bazaar.models.negotiation import NegotiationContext, Turn

from tests.fixtures.counterparty import ScriptedCounterparty
from tests.fixtures.data import BUYER_ID, SELLER_ENDPOINT, SELLER_ID

OPENING = [
    Turn("driver", "Hello! I'm interested in your listing.", "greeting-1"),
    Turn("counterparty", "Hello! Yes, I'm available. The table is 15 HBAR.", "reply-0"),
]


class ScriptedNegotiator:
    """Negotiator double returning messages in order (last one repeats)."""

    def __init__(self, messages):
        self.messages = messages
        self.rounds = []

    async def next_message(self, history, round_number):
        self.rounds.append(round_number)
        return self.messages[min(len(self.rounds) - 1, len(self.messages) - 1)]


@pytest.fixture
def context(store, listing, buy_request):
    room = store.claim_room(listing["roomId"], BUYER_ID, None)
    return NegotiationContext.from_projections(room, listing, buy_request, SELLER_ENDPOINT)


def drain(subscription):
    events = []
    while not subscription.queue.empty():
        events.append(subscription.queue.get_nowait())
    return events


@pytest.mark.unit
class TestNegotiationLoop:

    @pytest.mark.asyncio
    async def test_feasible_counterparty_acceptance_concludes(self, store, broker, context):
        counterparty = ScriptedCounterparty(["I accept 14 HBAR. Deal!"])
        subscription = broker.subscribe(room_topic(context.room_id))
        loop = NegotiationLoop(store, broker, counterparty, max_rounds=5, tolerance=0.9)

        result = await loop.run(context, ScriptedNegotiator(["Would you take 14 HBAR?"]), OPENING)

        assert result.concluded
        assert result.outcome == "price_agreed"
        assert result.agreed_price == 14.0
        assert result.rounds_completed == 1
        assert result.room_status == RoomStatus.COMPLETED.value
        assert counterparty.calls[0]["endpoint"] == SELLER_ENDPOINT
        assert counterparty.calls[0]["message_id"] == f"{context.room_id}-r1"

        room = store.get_room(context.room_id)
        assert room["status"] == "COMPLETED"
        assert room["agreedPrice"] == 14.0

        messages = store.get_messages(context.room_id)
        assert [(m["sender"], m["messageType"]) for m in messages] == [
            ("buyer", "negotiation"),
            ("seller", "response"),
        ]
        assert messages[0]["metadata"]["round"] == 1

        events = [e["event"] for e in drain(subscription)]
        assert events == [
            NEGOTIATION_MESSAGE,
            NEGOTIATION_MESSAGE,
            NEGOTIATION_STATUS_CHANGED,
            NEGOTIATION_CONCLUDED,
        ]

    @pytest.mark.asyncio
    async def test_concluded_event_payload(self, store, broker, context):
        subscription = broker.subscribe(room_topic(context.room_id))
        loop = NegotiationLoop(store, broker, ScriptedCounterparty(["I accept 14 HBAR. Deal!"]), max_rounds=5, tolerance=0.9)
        await loop.run(context, ScriptedNegotiator(["Would you take 14 HBAR?"]), OPENING)

        concluded = drain(subscription)[-1]["data"]
        assert concluded["roomId"] == context.room_id
        assert concluded["decisionType"] == "price_agreed"
        assert concluded["agreedPrice"] == 14.0

    @pytest.mark.asyncio
    async def test_driver_acceptance_concludes_before_reply_is_considered(self, store, broker, context):
        counterparty = ScriptedCounterparty(["No deal, I changed my mind."])
        loop = NegotiationLoop(store, broker, counterparty, max_rounds=5, tolerance=0.9)

        result = await loop.run(context, ScriptedNegotiator(["I accept 15 HBAR. Deal!"]), OPENING)

        assert result.outcome == "price_agreed"
        assert result.agreed_price == 15.0
        assert len(store.get_messages(context.room_id)) == 2

    @pytest.mark.asyncio
    async def test_negated_agreement_keeps_room_active(self, store, broker, context):
        opening = [OPENING[0], Turn("counterparty", "We haven't agreed on a price yet. How about 14 HBAR?", "reply-0")]
        counterparty = ScriptedCounterparty(["That's not a deal! How about 14.5 HBAR?"])
        loop = NegotiationLoop(store, broker, counterparty, max_rounds=1, tolerance=0.9)

        result = await loop.run(context, ScriptedNegotiator(["Would you take 13 HBAR?"]), opening)

        assert not result.concluded
        room = store.get_room(context.room_id)
        assert room["status"] == "ACTIVE"
        assert room["agreedPrice"] is None

    @pytest.mark.asyncio
    async def test_infeasible_acceptance_keeps_negotiating(self, store, broker, context):
        counterparty = ScriptedCounterparty(["I accept 20 HBAR. Deal!"])
        loop = NegotiationLoop(store, broker, counterparty, max_rounds=3, tolerance=0.9)

        result = await loop.run(context, ScriptedNegotiator(["How about 12 HBAR?"]), OPENING)

        assert not result.concluded
        assert result.rounds_completed == 3
        assert len(counterparty.calls) == 3
        assert store.get_room(context.room_id)["status"] == "ACTIVE"

    @pytest.mark.asyncio
    async def test_round_budget_leaves_room_active(self, store, broker, context):
        counterparty = ScriptedCounterparty(["Hmm, 15 HBAR is my price."])
        negotiator = ScriptedNegotiator(["How about 12 HBAR?"])
        loop = NegotiationLoop(store, broker, counterparty, max_rounds=5, tolerance=0.9)

        result = await loop.run(context, negotiator, OPENING)

        assert not result.concluded
        assert result.rounds_completed == 5
        assert len(counterparty.calls) == 5
        assert negotiator.rounds == [1, 2, 3, 4, 5]
        assert len(store.get_messages(context.room_id)) == 10
        room = store.get_room(context.room_id)
        assert room["status"] == "ACTIVE"
        assert room["outcome"] is None

    @pytest.mark.asyncio
    async def test_counterparty_rejection_concludes(self, store, broker, context):
        loop = NegotiationLoop(store, broker, ScriptedCounterparty(["No deal, sorry."]), max_rounds=5, tolerance=0.9)

        result = await loop.run(context, ScriptedNegotiator(["How about 5 HBAR?"]), OPENING)

        assert result.outcome == "rejected"
        assert result.agreed_price is None
        room = store.get_room(context.room_id)
        assert room["status"] == "COMPLETED"
        assert room["outcome"] == "rejected"

    @pytest.mark.asyncio
    async def test_opening_reply_can_conclude_without_rounds(self, store, broker, context):
        counterparty = ScriptedCounterparty()
        opening = [OPENING[0], Turn("counterparty", "Not interested, it's sold elsewhere.")]
        loop = NegotiationLoop(store, broker, counterparty, max_rounds=5, tolerance=0.9)

        result = await loop.run(context, ScriptedNegotiator(["unused"]), opening)

        assert result.outcome == "rejected"
        assert result.rounds_completed == 0
        assert counterparty.calls == []

    @pytest.mark.asyncio
    async def test_turn_order_violation(self, store, broker, context):
        counterparty = ScriptedCounterparty()
        loop = NegotiationLoop(store, broker, counterparty, max_rounds=5)

        result = await loop.run(context, ScriptedNegotiator(["x"]), OPENING[:1])

        assert result.halted_on_violation
        assert counterparty.calls == []
        assert store.get_room(context.room_id)["status"] == "ACTIVE"

    @pytest.mark.asyncio
    async def test_bad_reply_halts_as_violation(self, store, broker, context):
        counterparty = ScriptedCounterparty(error=A2AResponseError("no text part", SELLER_ENDPOINT))
        loop = NegotiationLoop(store, broker, counterparty, max_rounds=5)

        result = await loop.run(context, ScriptedNegotiator(["How about 12 HBAR?"]), OPENING)

        assert result.halted_on_violation
        assert result.rounds_completed == 1
        assert store.get_messages(context.room_id) == []

    @pytest.mark.asyncio
    async def test_unreachable_counterparty_propagates(self, store, broker, context):
        error = CounterpartyUnreachableError("timed out", SELLER_ENDPOINT, timeout=30)
        loop = NegotiationLoop(store, broker, ScriptedCounterparty(error=error), max_rounds=5)

        with pytest.raises(CounterpartyUnreachableError):
            await loop.run(context, ScriptedNegotiator(["How about 12 HBAR?"]), OPENING)

    @pytest.mark.asyncio
    async def test_room_closed_externally_stops_loop(self, store, broker, context):
        store.update_room_status(context.room_id, RoomStatus.CANCELLED)
        loop = NegotiationLoop(store, broker, ScriptedCounterparty(["15 HBAR."]), max_rounds=5)

        result = await loop.run(context, ScriptedNegotiator(["How about 12 HBAR?"]), OPENING)

        assert not result.concluded
        assert result.room_status == "CANCELLED"


def negotiation_for(store, budget, band):
    listing = store.create_listing(SELLER_ID, "Oak table", "Solid oak", band[0], band[1], seller_endpoint=SELLER_ENDPOINT)
    buy_request = store.create_buy_request(BUYER_ID, "table", "a table", budget[0], budget[1])
    room = store.claim_room(listing["roomId"], BUYER_ID, None)
    return NegotiationContext.from_projections(room, listing, buy_request, SELLER_ENDPOINT)


@pytest.mark.unit
class TestPriceScenarios:

    @pytest.mark.asyncio
    async def test_counter_offer_with_acceptance_inside_both_ranges(self, store, broker):
        context = negotiation_for(store, budget=(10, 20), band=(12, 15))
        loop = NegotiationLoop(store, broker, ScriptedCounterparty(["OK, I accept 14 HBAR. Deal!"]), max_rounds=20, tolerance=0.9)

        result = await loop.run(context, ScriptedNegotiator(["Can you do 13 HBAR?"]), OPENING)

        assert result.outcome == "price_agreed"
        room = store.get_room(context.room_id)
        assert room["status"] == "COMPLETED"
        assert room["agreedPrice"] == 14.0

    @pytest.mark.asyncio
    async def test_budget_below_seller_floor_never_completes_with_price(self, store, broker):
        context = negotiation_for(store, budget=(5, 8), band=(12, 15))
        counterparty = ScriptedCounterparty(["I accept 11 HBAR. Deal!", "Fine, I accept 10.8 HBAR. Deal!"])
        loop = NegotiationLoop(store, broker, counterparty, max_rounds=4, tolerance=0.9)

        result = await loop.run(context, ScriptedNegotiator(["I can pay 8 HBAR."]), OPENING)

        assert not result.concluded
        assert result.rounds_completed == 4
        room = store.get_room(context.room_id)
        assert room["status"] == "ACTIVE"
        assert room["agreedPrice"] is None
