"""
Multi-round negotiation loop.

WHAT: Drives one ACTIVE room from the seller's first reply to a decision or the round budget
WHY: The bargaining protocol between two independently hosted agents
HOW: Per round: check turn order, classify the latest counterparty message, stop on a
     feasible price agreement or a rejection, otherwise generate our next message,
     send it over A2A and log both sides. Every persisted row is published.
"""

from typing import Any, Dict, List, Optional, Protocol

from ..a2a.types import A2AReply, A2AResponseError
from ..core.config import settings
from ..core.events import (
    EventBroker,
    NEGOTIATION_CONCLUDED,
    NEGOTIATION_MESSAGE,
    NEGOTIATION_STATUS_CHANGED,
    room_topic,
)
from ..core.models import MessageType, NegotiationOutcome, RoomStatus
from ..core.store import MarketplaceStore
from ..models.negotiation import NegotiationContext, NegotiationResult, Turn
from ..services.decision_engine import DecisionType, check_feasibility, detect_decision
from ..utils.exceptions import RoomClosedException
from ..utils.logger import get_logger

logger = get_logger(__name__)

DRIVER = "driver"
COUNTERPARTY = "counterparty"


class MessageSender(Protocol):
    """The part of the A2A client the loop uses."""

    async def send_message(self, endpoint: str, text: str, *, message_id: str | None = None) -> A2AReply:
        ...


class Negotiator(Protocol):
    """Produces the driver side's next message."""

    async def next_message(self, history: List[Turn], round_number: int) -> str:
        ...


class NegotiationLoop:
    """
    Bounded bargaining loop for one room.

    WHAT: run(context, negotiator, turns) -> NegotiationResult
    WHY: Termination rules live in one place, independent of the orchestrator's steps
    HOW: Sequential rounds; the store is written before every publish
    """

    def __init__(
        self,
        store: MarketplaceStore,
        broker: EventBroker,
        sender: MessageSender,
        *,
        max_rounds: int | None = None,
        tolerance: float | None = None,
    ):
        """
        Args:
            store: Persistence for messages and room status
            broker: Event broker for negotiation topics
            sender: A2A client (or double) used to reach the counterparty
            max_rounds: Round budget (defaults to MAX_NEGOTIATION_ROUNDS)
            tolerance: Seller floor as a fraction of expected price
        """
        self.store = store
        self.broker = broker
        self.sender = sender
        self.max_rounds = settings.MAX_NEGOTIATION_ROUNDS if max_rounds is None else max_rounds
        self.tolerance = settings.SELLER_PRICE_TOLERANCE if tolerance is None else tolerance

    async def run(
        self,
        context: NegotiationContext,
        negotiator: Negotiator,
        turns: List[Turn],
    ) -> NegotiationResult:
        """
        Negotiate until a decision, a protocol violation or the round budget.

        Args:
            context: Room constraints
            negotiator: Generator of our messages
            turns: Turns already exchanged (greeting and first reply), oldest first

        Returns:
            NegotiationResult. Room status is COMPLETED only for a feasible price
            agreement or a rejection; otherwise it stays ACTIVE.

        Raises:
            CounterpartyUnreachableError: A round's A2A call timed out or failed
            NegotiatorAgentError: Our message could not be generated
        """
        turns = list(turns)
        rounds = 0

        logger.info(
            f"Starting negotiation in room {context.room_id} (max_rounds={self.max_rounds}, "
            f"budget {context.min_price}-{context.max_price}, band {context.base_price}-{context.expected_price})"
        )

        while True:
            if not turns or turns[-1].speaker != COUNTERPARTY:
                reason = "Protocol violation: expected the counterparty to have the last turn"
                logger.error(f"{reason} in room {context.room_id} (round {rounds})")
                return self._unresolved(context, rounds, turns, reason, violation=True)

            concluded = self._evaluate(context, turns[-1], rounds, turns)
            if concluded:
                return concluded

            if rounds >= self.max_rounds:
                reason = f"No decision after {rounds} rounds"
                logger.info(f"{reason} in room {context.room_id}; room stays ACTIVE")
                return self._unresolved(context, rounds, turns, reason)

            rounds += 1
            text = await negotiator.next_message(turns, rounds)

            try:
                reply = await self.sender.send_message(
                    context.seller_endpoint,
                    text,
                    message_id=f"{context.room_id}-r{rounds}",
                )
            except A2AResponseError as e:
                reason = f"Protocol violation: no usable reply in round {rounds} ({e})"
                logger.error(f"{reason} in room {context.room_id}")
                return self._unresolved(context, rounds, turns, reason, violation=True)

            sent = Turn(DRIVER, text, f"{context.room_id}-r{rounds}")
            received = Turn(COUNTERPARTY, reply.text, reply.message_id)

            try:
                self._log_turn(context, sent, MessageType.NEGOTIATION, rounds, "negotiation-loop")
                turns.append(sent)
                self._log_turn(context, received, MessageType.RESPONSE, rounds, "a2a-response")
                turns.append(received)
            except RoomClosedException as e:
                logger.warning(f"Room {context.room_id} closed during round {rounds}: {e.message}")
                return self._unresolved(context, rounds, turns, e.message)

            # Earlier message wins: our own acceptance or refusal ends the round first
            concluded = self._evaluate(context, sent, rounds, turns)
            if concluded:
                return concluded

    def _evaluate(
        self,
        context: NegotiationContext,
        turn: Turn,
        rounds: int,
        turns: List[Turn],
    ) -> Optional[NegotiationResult]:
        """Conclude the room if this turn carries a terminal decision."""
        decision = detect_decision(turn.content, context.currency)

        if decision.decision_type == DecisionType.PRICE_AGREED:
            feasibility = check_feasibility(
                decision.price,
                context.min_price,
                context.max_price,
                context.base_price,
                context.expected_price,
                tolerance=self.tolerance,
            )
            if feasibility:
                reason = f"{turn.speaker} accepted {decision.price:g} {context.currency}"
                return self._conclude(
                    context, NegotiationOutcome.PRICE_AGREED, decision.price, reason, rounds, turns
                )
            logger.info(
                f"Room {context.room_id} round {rounds}: acceptance at {decision.price:g} not feasible "
                f"({feasibility.reason}), continuing"
            )
            return None

        if decision.decision_type == DecisionType.ACCEPTED:
            logger.info(
                f"Room {context.room_id} round {rounds}: acceptance without a checkable price, continuing"
            )
            return None

        if decision.decision_type == DecisionType.REJECTED:
            reason = f"{turn.speaker} rejected ('{decision.matched_phrase}')"
            return self._conclude(context, NegotiationOutcome.REJECTED, None, reason, rounds, turns)

        return None

    def _conclude(
        self,
        context: NegotiationContext,
        outcome: NegotiationOutcome,
        price: Optional[float],
        reason: str,
        rounds: int,
        turns: List[Turn],
    ) -> NegotiationResult:
        room = self.store.conclude_room(context.room_id, outcome, price)
        topic = room_topic(context.room_id)
        self._publish(topic, NEGOTIATION_STATUS_CHANGED, {
            "roomId": context.room_id, "status": room["status"], "outcome": outcome.value,
        })

        payload: Dict[str, Any] = {"roomId": context.room_id, "decisionType": outcome.value, "reason": reason}
        if room["agreedPrice"] is not None:
            payload["agreedPrice"] = room["agreedPrice"]
        self._publish(topic, NEGOTIATION_CONCLUDED, payload)

        logger.info(f"Negotiation in room {context.room_id} concluded after {rounds} rounds: {reason}")
        return NegotiationResult(
            room_id=context.room_id,
            room_status=room["status"],
            rounds_completed=rounds,
            outcome=outcome.value,
            agreed_price=room["agreedPrice"],
            reason=reason,
            turns=turns,
        )

    def _unresolved(
        self,
        context: NegotiationContext,
        rounds: int,
        turns: List[Turn],
        reason: str,
        *,
        violation: bool = False,
    ) -> NegotiationResult:
        room = self.store.get_room(context.room_id)
        return NegotiationResult(
            room_id=context.room_id,
            room_status=room["status"] if room else RoomStatus.ACTIVE.value,
            rounds_completed=rounds,
            reason=reason,
            halted_on_violation=violation,
            turns=turns,
        )

    def _log_turn(
        self,
        context: NegotiationContext,
        turn: Turn,
        message_type: MessageType,
        round_number: int,
        source: str,
    ) -> None:
        sender_id = context.buyer_agent_id if turn.speaker == DRIVER else context.seller_agent_id
        message = self.store.append_message(
            context.room_id,
            sender_id,
            turn.content,
            message_type,
            {"round": round_number, "source": source, "a2aMessageId": turn.message_id},
        )
        self._publish(room_topic(context.room_id), NEGOTIATION_MESSAGE, message)

    def _publish(self, topic: str, event: str, data: Dict[str, Any]) -> None:
        try:
            self.broker.publish(topic, event, data)
        except Exception as e:
            logger.warning(f"Failed to publish {event} on {topic}: {e}")
