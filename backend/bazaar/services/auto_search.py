"""
Auto-search orchestrator.

WHAT: Per-buy-request pipeline from matching to a negotiated outcome
WHY: Posting a buy intent should find a seller, open the room and bargain with no
     human turn-taking
HOW: One asyncio task per buy request runs strictly sequential steps:

    searching -> found -> verifying -> verified -> contacting -> contacted
      -> joined_room -> [negotiation loop] -> negotiation_complete -> complete

with no_results and error as the other terminal steps. Each step is persisted on the
buy request's progress projection and then published. The seller is contacted (the
greeting is the first A2A exchange) before the room is claimed, so an unreachable
seller leaves the room WAITING.
"""

import asyncio
from typing import Any, Callable, Dict, Optional

from ..a2a.directory import AgentDirectory
from ..agents.negotiation_loop import MessageSender, NegotiationLoop, Negotiator
from ..agents.negotiator_agent import NegotiatorAgent
from ..agents.prompts import render_greeting
from ..core.events import (
    BUY_REQUEST_PROGRESS,
    NEGOTIATION_MESSAGE,
    NEGOTIATION_STATUS_CHANGED,
    EventBroker,
    buy_request_topic,
    room_topic,
)
from ..core.models import (
    BuyRequestStatus,
    ListingStatus,
    MessageType,
    NegotiationOutcome,
    RoomStatus,
    SearchStep,
)
from ..core.store import MarketplaceStore, progress_payload
from ..llm.provider import LLMProvider
from ..llm.provider_factory import get_provider
from ..models.negotiation import NegotiationContext, NegotiationResult, Turn
from ..services.matcher import CounterpartyMatcher
from ..utils.exceptions import (
    AgentEndpointNotFoundException,
    BuyRequestNotFoundException,
    ListingNotAvailableException,
    ListingNotFoundException,
    RoomAlreadyClaimedException,
    RoomNotFoundException,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)


class AutoSearchOrchestrator:
    """
    Top-level state machine for buy requests.

    WHAT: start(buy_request_id) schedules run(); run() drives every step
    WHY: Fire-and-forget for the API caller, durable progress for observers
    HOW: Collaborators are injected; failures are caught at the step boundary and
         recorded as searchError, never raised out of the task
    """

    def __init__(
        self,
        store: MarketplaceStore,
        broker: EventBroker,
        matcher: CounterpartyMatcher,
        directory: AgentDirectory,
        sender: MessageSender,
        provider: LLMProvider | None = None,
        *,
        negotiator_factory: Optional[Callable[[NegotiationContext], Negotiator]] = None,
        max_rounds: int | None = None,
        tolerance: float | None = None,
    ):
        """
        Args:
            store: Persistence contract
            broker: Event broker for progress and room topics
            matcher: Counterparty matcher
            directory: Agent id -> A2A endpoint resolver
            sender: A2A client used for the greeting and every round
            provider: LLM provider for the default NegotiatorAgent (shared provider if None)
            negotiator_factory: Builds the driver-side negotiator for a room
            max_rounds: Round budget for the negotiation loop
            tolerance: Seller tolerance for the feasibility check
        """
        self.store = store
        self.broker = broker
        self.matcher = matcher
        self.directory = directory
        self.sender = sender
        self.negotiator_factory = negotiator_factory or (lambda ctx: NegotiatorAgent(provider or get_provider(), ctx))
        self.loop = NegotiationLoop(store, broker, sender, max_rounds=max_rounds, tolerance=tolerance)
        self._tasks: Dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Task management
    # ------------------------------------------------------------------

    def start(self, buy_request_id: str) -> Optional[asyncio.Task]:
        """
        Schedule the pipeline for a buy request and return immediately.

        A buy request already running, or no longer idle, is not started again.

        Returns:
            The scheduled task, the already running task, or None when not startable
        """
        existing = self._tasks.get(buy_request_id)
        if existing is not None and not existing.done():
            logger.warning(f"Auto-search already running for buy request {buy_request_id}")
            return existing

        buy_request = self.store.get_buy_request(buy_request_id)
        if buy_request is None:
            raise BuyRequestNotFoundException(buy_request_id)
        if buy_request["searchStep"] != SearchStep.IDLE.value:
            logger.warning(
                f"Buy request {buy_request_id} is at step {buy_request['searchStep']}, not starting auto-search"
            )
            return None

        task = asyncio.get_running_loop().create_task(
            self.run(buy_request_id), name=f"auto-search-{buy_request_id}"
        )
        self._tasks[buy_request_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(buy_request_id, None))
        logger.info(f"Auto-search scheduled for buy request {buy_request_id}")
        return task

    def is_running(self, buy_request_id: str) -> bool:
        task = self._tasks.get(buy_request_id)
        return task is not None and not task.done()

    def running_count(self) -> int:
        return sum(1 for t in self._tasks.values() if not t.done())

    async def shutdown(self) -> None:
        """Cancel outstanding pipelines (process shutdown)."""
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} auto-search task(s)")

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def run(self, buy_request_id: str) -> Optional[Dict[str, Any]]:
        """
        Drive one buy request to a terminal step.

        Returns:
            Final buy request projection (None if the buy request vanished)
        """
        try:
            return await self._run_steps(buy_request_id)
        except Exception as e:
            logger.error(f"Auto-search failed for buy request {buy_request_id}: {e}", exc_info=True)
            try:
                return self._progress(buy_request_id, SearchStep.ERROR, "Search failed", search_error=str(e))
            except BuyRequestNotFoundException:
                logger.error(f"Buy request {buy_request_id} disappeared; cannot record error")
                return None

    async def _run_steps(self, buy_request_id: str) -> Dict[str, Any]:
        buy_request = self.store.get_buy_request(buy_request_id)
        if buy_request is None:
            raise BuyRequestNotFoundException(buy_request_id)

        # searching
        self._progress(buy_request_id, SearchStep.SEARCHING, "Searching for matching listings...")
        listings = self.store.list_open_listings()
        if not listings:
            return self._progress(buy_request_id, SearchStep.NO_RESULTS, "No listings available")

        # match
        match = await self.matcher.find_best_match(buy_request, listings)
        if match is None:
            return self._progress(buy_request_id, SearchStep.NO_RESULTS, "No matching listings found")

        listing_id = match.listing_id
        seller_agent_id = match.seller_agent_id
        self._progress(
            buy_request_id,
            SearchStep.FOUND,
            f"Found {match.matches_found} matching listing(s) - Best: {match.reason}",
            matched_listing_id=listing_id,
            seller_agent_id=seller_agent_id,
        )

        # verified: re-read, the listing may have been reserved since matching
        self._progress(buy_request_id, SearchStep.VERIFYING, f"Verifying listing #{listing_id}...")
        listing = self.store.get_listing(listing_id)
        if listing is None:
            raise ListingNotFoundException(listing_id)
        if listing["status"] != ListingStatus.OPEN.value:
            raise ListingNotAvailableException(listing_id, listing["status"])

        room = self.store.get_room_by_listing(listing_id)
        if room is None:
            raise RoomNotFoundException(f"listing #{listing_id}")
        if room["status"] != RoomStatus.WAITING.value or room["buyerAgentId"] is not None:
            raise RoomAlreadyClaimedException(room["id"])
        self._progress(buy_request_id, SearchStep.VERIFIED, f"Listing #{listing_id} verified")

        # contacted: resolve the seller and open the conversation
        self._progress(
            buy_request_id,
            SearchStep.CONTACTING,
            f"Getting A2A endpoint for Agent #{seller_agent_id}...",
        )
        seller_endpoint = await self.directory.resolve(seller_agent_id)
        context = NegotiationContext.from_projections(room, listing, buy_request, seller_endpoint)
        greeting = render_greeting(context)
        greeting_id = f"greeting-{buy_request_id}"
        reply = await self.sender.send_message(seller_endpoint, greeting, message_id=greeting_id)
        self._progress(
            buy_request_id,
            SearchStep.CONTACTED,
            f"Seller agent #{seller_agent_id} reached over A2A",
            a2a_endpoint=seller_endpoint,
        )

        # joined_room: the claim must succeed before anything says "joined"
        buyer_endpoint = await self._resolve_optional(buy_request["buyerAgentId"])
        room = self.store.claim_room(room["id"], buy_request["buyerAgentId"], buyer_endpoint)
        self._publish(room_topic(room["id"]), NEGOTIATION_STATUS_CHANGED, {"roomId": room["id"], "status": room["status"]})
        self._progress(
            buy_request_id,
            SearchStep.JOINED_ROOM,
            "Joined negotiation room! Initiating negotiation...",
            negotiation_room_id=room["id"],
            status=BuyRequestStatus.MATCHED,
        )

        # negotiate
        opening = [
            Turn("driver", greeting, greeting_id),
            Turn("counterparty", reply.text, reply.message_id),
        ]
        self._log_message(context, context.buyer_agent_id, greeting, MessageType.GREETING,
                          {"a2aMessageId": greeting_id, "source": "auto-search", "round": 0})
        self._log_message(context, context.seller_agent_id, reply.text, MessageType.RESPONSE,
                          {"a2aMessageId": reply.message_id, "source": "a2a-response", "round": 0})

        result = await self.loop.run(context, self.negotiator_factory(context), opening)
        return self._finish(buy_request_id, context, result)

    def _finish(self, buy_request_id: str, context: NegotiationContext, result: NegotiationResult) -> Dict[str, Any]:
        currency = context.currency

        if not result.concluded:
            return self._progress(
                buy_request_id,
                SearchStep.COMPLETE,
                f"Negotiation unresolved after {result.rounds_completed} round(s): {result.reason}. "
                f"Room {context.room_id} remains open.",
            )

        if result.outcome == NegotiationOutcome.PRICE_AGREED.value:
            self.store.update_listing_status(context.listing_id, ListingStatus.RESERVED)
            self._progress(
                buy_request_id,
                SearchStep.NEGOTIATION_COMPLETE,
                f"Deal agreed at {result.agreed_price:g} {currency} after {result.rounds_completed} round(s)",
                status=BuyRequestStatus.CLOSED,
            )
            return self._progress(buy_request_id, SearchStep.COMPLETE, f"Purchase agreed at {result.agreed_price:g} {currency}")

        self._progress(
            buy_request_id,
            SearchStep.NEGOTIATION_COMPLETE,
            f"Negotiation ended without a deal: {result.reason}",
        )
        return self._progress(buy_request_id, SearchStep.COMPLETE, "Negotiation closed without agreement")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _resolve_optional(self, agent_id: int) -> Optional[str]:
        try:
            return await self.directory.resolve(agent_id)
        except AgentEndpointNotFoundException:
            logger.warning(f"No A2A endpoint registered for buyer agent {agent_id}; room keeps it empty")
            return None

    def _progress(self, buy_request_id: str, step: SearchStep, message: str, **fields: Any) -> Dict[str, Any]:
        """Persist a step, then publish it."""
        projection = self.store.update_search_progress(buy_request_id, step, message, **fields)
        logger.info(f"Buy request {buy_request_id} -> {step.value}: {message}")
        self._publish(buy_request_topic(buy_request_id), BUY_REQUEST_PROGRESS, progress_payload(projection))
        return projection

    def _log_message(
        self,
        context: NegotiationContext,
        sender_agent_id: int,
        content: str,
        message_type: MessageType,
        metadata: Dict[str, Any],
    ) -> None:
        message = self.store.append_message(context.room_id, sender_agent_id, content, message_type, metadata)
        self._publish(room_topic(context.room_id), NEGOTIATION_MESSAGE, message)

    def _publish(self, topic: str, event: str, data: Dict[str, Any]) -> None:
        try:
            self.broker.publish(topic, event, data)
        except Exception as e:
            logger.warning(f"Failed to publish {event} on {topic}: {e}")
