"""
Marketplace store.

WHAT: Read/write contract over listings, buy requests, rooms and messages
WHY: Orchestrator, negotiation loop and API share one persistence seam with the
     single-claim and room-lifecycle guarantees enforced in one place
HOW: Sync SQLAlchemy sessions from an injected session factory; every method runs in
     its own transaction and returns plain dict projections (camelCase, JSON-safe)
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import update, or_
from sqlalchemy.orm import sessionmaker

from .database import SessionLocal, session_scope
from .models import (
    Listing, BuyRequest, NegotiationRoom, NegotiationMessage,
    ListingStatus, BuyRequestStatus, SearchStep, RoomStatus, SenderRole,
    MessageType, NegotiationOutcome, ROOM_TRANSITIONS, TERMINAL_ROOM_STATUSES,
    utcnow,
)
from ..utils.exceptions import (
    BuyRequestNotFoundException,
    ListingNotFoundException,
    RoomNotFoundException,
    RoomAlreadyClaimedException,
    RoomClosedException,
    InvalidRoomTransitionException,
    NotRoomParticipantException,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Projection fields the orchestrator may set alongside a step
PROGRESS_FIELDS = {
    "search_error",
    "matched_listing_id",
    "seller_agent_id",
    "a2a_endpoint",
    "negotiation_room_id",
    "status",
}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _value(enum_value) -> Optional[str]:
    return enum_value.value if enum_value is not None else None


def listing_to_dict(listing: Listing) -> Dict[str, Any]:
    """Listing projection."""
    return {
        "id": listing.id,
        "sellerAgentId": listing.seller_agent_id,
        "title": listing.title,
        "description": listing.description,
        "category": listing.category,
        "basePrice": listing.base_price,
        "expectedPrice": listing.expected_price,
        "status": _value(listing.status),
        "createdAt": _iso(listing.created_at),
        "updatedAt": _iso(listing.updated_at),
    }


def buy_request_to_dict(buy_request: BuyRequest) -> Dict[str, Any]:
    """Buy request projection including search progress."""
    return {
        "id": buy_request.id,
        "buyerAgentId": buy_request.buyer_agent_id,
        "title": buy_request.title,
        "description": buy_request.description,
        "minPrice": buy_request.min_price,
        "maxPrice": buy_request.max_price,
        "category": buy_request.category,
        "status": _value(buy_request.status),
        "searchStep": _value(buy_request.search_step),
        "searchMessage": buy_request.search_message,
        "searchError": buy_request.search_error,
        "matchedListingId": buy_request.matched_listing_id,
        "sellerAgentId": buy_request.seller_agent_id,
        "a2aEndpoint": buy_request.a2a_endpoint,
        "negotiationRoomId": buy_request.negotiation_room_id,
        "createdAt": _iso(buy_request.created_at),
        "updatedAt": _iso(buy_request.updated_at),
    }


def progress_payload(buy_request: Dict[str, Any]) -> Dict[str, Any]:
    """
    Progress event body for a buy request projection.

    Optional fields are left out while unset.
    """
    payload = {
        "buyRequestId": buy_request["id"],
        "searchStep": buy_request["searchStep"],
        "searchMessage": buy_request["searchMessage"],
    }
    for key in ("matchedListingId", "sellerAgentId", "a2aEndpoint", "searchError", "negotiationRoomId"):
        if buy_request.get(key) is not None:
            payload[key] = buy_request[key]
    return payload


def room_to_dict(room: NegotiationRoom) -> Dict[str, Any]:
    """Negotiation room projection."""
    return {
        "id": room.id,
        "listingId": room.listing_id,
        "sellerAgentId": room.seller_agent_id,
        "buyerAgentId": room.buyer_agent_id,
        "sellerEndpoint": room.seller_endpoint,
        "buyerEndpoint": room.buyer_endpoint,
        "status": _value(room.status),
        "outcome": _value(room.outcome),
        "agreedPrice": room.agreed_price,
        "createdAt": _iso(room.created_at),
        "updatedAt": _iso(room.updated_at),
    }


def message_to_dict(message: NegotiationMessage) -> Dict[str, Any]:
    """Negotiation message projection (matches the message event shape)."""
    return {
        "id": message.id,
        "roomId": message.room_id,
        "sender": _value(message.sender),
        "senderAgentId": message.sender_agent_id,
        "content": message.content,
        "messageType": _value(message.message_type),
        "metadata": message.meta or {},
        "createdAt": _iso(message.created_at),
    }


class MarketplaceStore:
    """
    Persistence contract for the negotiation core.

    WHAT: CRUD on listings, buy requests, rooms and messages
    WHY: Keep uniqueness, single-claim and lifecycle rules next to the data
    HOW: One short transaction per call via session_scope
    """

    def __init__(self, session_factory: sessionmaker | None = None):
        self._session_factory = session_factory or SessionLocal

    def _session(self):
        return session_scope(self._session_factory)

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def create_listing(
        self,
        seller_agent_id: int,
        title: str,
        description: str,
        base_price: float,
        expected_price: float,
        *,
        category: str | None = None,
        seller_endpoint: str | None = None,
    ) -> Dict[str, Any]:
        """
        Publish a listing together with its WAITING negotiation room.

        Both rows commit in one transaction, so an OPEN listing always has a room.

        Returns:
            Listing projection with the new room id under "roomId"
        """
        with self._session() as db:
            listing = Listing(
                seller_agent_id=seller_agent_id,
                title=title,
                description=description,
                category=category,
                base_price=base_price,
                expected_price=expected_price,
                status=ListingStatus.OPEN,
            )
            db.add(listing)
            db.flush()

            room = NegotiationRoom(
                listing_id=listing.id,
                seller_agent_id=seller_agent_id,
                seller_endpoint=seller_endpoint,
                status=RoomStatus.WAITING,
            )
            db.add(room)
            db.flush()

            result = listing_to_dict(listing)
            result["roomId"] = room.id

        logger.info(f"Listing {result['id']} published by seller {seller_agent_id} (room {result['roomId']})")
        return result

    def get_listing(self, listing_id: int) -> Optional[Dict[str, Any]]:
        with self._session() as db:
            listing = db.get(Listing, listing_id)
            return listing_to_dict(listing) if listing else None

    def list_listings(self, status: ListingStatus | None = None) -> List[Dict[str, Any]]:
        """All listings, newest first, optionally filtered by status."""
        with self._session() as db:
            query = db.query(Listing)
            if status is not None:
                query = query.filter(Listing.status == status)
            return [listing_to_dict(l) for l in query.order_by(Listing.created_at.desc(), Listing.id.desc())]

    def list_open_listings(self) -> List[Dict[str, Any]]:
        return self.list_listings(ListingStatus.OPEN)

    def update_listing_status(self, listing_id: int, status: ListingStatus) -> Dict[str, Any]:
        with self._session() as db:
            listing = db.get(Listing, listing_id)
            if listing is None:
                raise ListingNotFoundException(listing_id)
            listing.status = status
            listing.updated_at = utcnow()
            db.flush()
            return listing_to_dict(listing)

    # ------------------------------------------------------------------
    # Buy requests
    # ------------------------------------------------------------------

    def create_buy_request(
        self,
        buyer_agent_id: int,
        title: str,
        description: str,
        min_price: float,
        max_price: float,
        *,
        category: str | None = None,
    ) -> Dict[str, Any]:
        """
        Persist a new buy request in step idle.

        Raises:
            ValidationException: If the budget is out of order
        """
        with self._session() as db:
            buy_request = BuyRequest(
                buyer_agent_id=buyer_agent_id,
                title=title,
                description=description,
                min_price=min_price,
                max_price=max_price,
                category=category,
                status=BuyRequestStatus.OPEN,
                search_step=SearchStep.IDLE,
                search_message="Waiting to start...",
            )
            db.add(buy_request)
            db.flush()
            result = buy_request_to_dict(buy_request)

        logger.info(
            f"Buy request {result['id']} created by buyer {buyer_agent_id} "
            f"(budget {min_price}-{max_price})"
        )
        return result

    def get_buy_request(self, buy_request_id: str) -> Optional[Dict[str, Any]]:
        with self._session() as db:
            buy_request = db.get(BuyRequest, buy_request_id)
            return buy_request_to_dict(buy_request) if buy_request else None

    def list_open_buy_requests(self) -> List[Dict[str, Any]]:
        with self._session() as db:
            rows = (
                db.query(BuyRequest)
                .filter(BuyRequest.status == BuyRequestStatus.OPEN)
                .order_by(BuyRequest.created_at.desc())
            )
            return [buy_request_to_dict(r) for r in rows]

    def update_buy_request_status(self, buy_request_id: str, status: BuyRequestStatus) -> Dict[str, Any]:
        with self._session() as db:
            buy_request = db.get(BuyRequest, buy_request_id)
            if buy_request is None:
                raise BuyRequestNotFoundException(buy_request_id)
            buy_request.status = status
            buy_request.updated_at = utcnow()
            db.flush()
            return buy_request_to_dict(buy_request)

    def update_search_progress(
        self,
        buy_request_id: str,
        step: SearchStep,
        message: str,
        **fields: Any,
    ) -> Dict[str, Any]:
        """
        Persist one orchestrator step on the progress projection.

        Args:
            buy_request_id: Buy request being driven
            step: New search step
            message: Human-readable progress message
            **fields: Optional projection fields (search_error, matched_listing_id,
                seller_agent_id, a2a_endpoint, negotiation_room_id, status)

        Returns:
            Full buy request projection after the update

        Raises:
            BuyRequestNotFoundException: If the buy request does not exist
            ValueError: If an unknown projection field is passed
        """
        unknown = set(fields) - PROGRESS_FIELDS
        if unknown:
            raise ValueError(f"Unknown progress fields: {sorted(unknown)}")

        with self._session() as db:
            buy_request = db.get(BuyRequest, buy_request_id)
            if buy_request is None:
                raise BuyRequestNotFoundException(buy_request_id)

            buy_request.search_step = step
            buy_request.search_message = message
            for key, value in fields.items():
                setattr(buy_request, key, value)
            buy_request.updated_at = utcnow()
            db.flush()
            return buy_request_to_dict(buy_request)

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    def get_room(self, room_id: str) -> Optional[Dict[str, Any]]:
        with self._session() as db:
            room = db.get(NegotiationRoom, room_id)
            return room_to_dict(room) if room else None

    def get_room_by_listing(self, listing_id: int) -> Optional[Dict[str, Any]]:
        with self._session() as db:
            room = db.query(NegotiationRoom).filter(NegotiationRoom.listing_id == listing_id).first()
            return room_to_dict(room) if room else None

    def rooms_for_agent(self, agent_id: int) -> List[Dict[str, Any]]:
        """Rooms where the agent is seller or buyer, with its role attached."""
        with self._session() as db:
            rows = (
                db.query(NegotiationRoom)
                .filter(or_(
                    NegotiationRoom.seller_agent_id == agent_id,
                    NegotiationRoom.buyer_agent_id == agent_id,
                ))
                .order_by(NegotiationRoom.updated_at.desc())
            )
            rooms = []
            for room in rows:
                projection = room_to_dict(room)
                projection["role"] = (
                    SenderRole.SELLER.value if room.seller_agent_id == agent_id else SenderRole.BUYER.value
                )
                rooms.append(projection)
            return rooms

    def claim_room(self, room_id: str, buyer_agent_id: int, buyer_endpoint: str | None) -> Dict[str, Any]:
        """
        Atomically bind a buyer to a WAITING room and activate it.

        WHAT: Single-claim point for a listing's room
        WHY: Concurrent buy requests may target the same listing
        HOW: Conditional UPDATE (buyer still NULL, status still WAITING); rowcount 0 means
             another buyer won or the room moved on

        Returns:
            Room projection after activation

        Raises:
            RoomNotFoundException: If the room does not exist
            RoomAlreadyClaimedException: If the room is no longer claimable
        """
        with self._session() as db:
            result = db.execute(
                update(NegotiationRoom)
                .where(
                    NegotiationRoom.id == room_id,
                    NegotiationRoom.buyer_agent_id.is_(None),
                    NegotiationRoom.status == RoomStatus.WAITING,
                )
                .values(
                    buyer_agent_id=buyer_agent_id,
                    buyer_endpoint=buyer_endpoint,
                    status=RoomStatus.ACTIVE,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )

            if result.rowcount != 1:
                if db.get(NegotiationRoom, room_id) is None:
                    raise RoomNotFoundException(room_id)
                logger.warning(f"Room {room_id} claim by buyer {buyer_agent_id} lost")
                raise RoomAlreadyClaimedException(room_id)

            room = db.get(NegotiationRoom, room_id)
            db.refresh(room)
            projection = room_to_dict(room)

        logger.info(f"Room {room_id} claimed by buyer {buyer_agent_id}")
        return projection

    def _transition(self, db, room_id: str, target: RoomStatus, **values: Any) -> NegotiationRoom:
        room = db.get(NegotiationRoom, room_id)
        if room is None:
            raise RoomNotFoundException(room_id)

        current = room.status
        if target not in ROOM_TRANSITIONS[current] or target == RoomStatus.ACTIVE:
            # WAITING -> ACTIVE only happens through claim_room
            raise InvalidRoomTransitionException(room_id, current.value, target.value)

        result = db.execute(
            update(NegotiationRoom)
            .where(NegotiationRoom.id == room_id, NegotiationRoom.status == current)
            .values(status=target, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.refresh(room)
            raise InvalidRoomTransitionException(room_id, room.status.value, target.value)

        db.refresh(room)
        return room

    def update_room_status(self, room_id: str, status: RoomStatus) -> Dict[str, Any]:
        """
        Move an ACTIVE room to CANCELLED or REJECTED.

        COMPLETED always carries an outcome and is only reached through conclude_room.

        Raises:
            RoomNotFoundException: If the room does not exist
            InvalidRoomTransitionException: If the move breaks the room lifecycle
        """
        with self._session() as db:
            if status == RoomStatus.COMPLETED:
                room = db.get(NegotiationRoom, room_id)
                if room is None:
                    raise RoomNotFoundException(room_id)
                raise InvalidRoomTransitionException(room_id, room.status.value, status.value)
            room = self._transition(db, room_id, status)
            projection = room_to_dict(room)
        logger.info(f"Room {room_id} status -> {status.value}")
        return projection

    def conclude_room(
        self,
        room_id: str,
        outcome: NegotiationOutcome,
        agreed_price: float | None = None,
    ) -> Dict[str, Any]:
        """
        Mark an ACTIVE room COMPLETED with its outcome.

        agreed_price is recorded only for a price agreement.
        """
        values = {"outcome": outcome}
        if outcome == NegotiationOutcome.PRICE_AGREED:
            values["agreed_price"] = agreed_price

        with self._session() as db:
            room = self._transition(db, room_id, RoomStatus.COMPLETED, **values)
            projection = room_to_dict(room)
        logger.info(f"Room {room_id} concluded: {outcome.value} (price={projection['agreedPrice']})")
        return projection

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def append_message(
        self,
        room_id: str,
        sender_agent_id: int,
        content: str,
        message_type: MessageType = MessageType.TEXT,
        metadata: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """
        Append to a room's log; the sender role comes from room membership.

        Raises:
            RoomNotFoundException: If the room does not exist
            RoomClosedException: If the room is terminal
            NotRoomParticipantException: If the sender is neither seller nor buyer
        """
        with self._session() as db:
            room = db.get(NegotiationRoom, room_id)
            if room is None:
                raise RoomNotFoundException(room_id)
            if room.status in TERMINAL_ROOM_STATUSES:
                raise RoomClosedException(room_id, room.status.value)

            if sender_agent_id == room.seller_agent_id:
                sender = SenderRole.SELLER
            elif room.buyer_agent_id is not None and sender_agent_id == room.buyer_agent_id:
                sender = SenderRole.BUYER
            else:
                raise NotRoomParticipantException(room_id, sender_agent_id)

            message = NegotiationMessage(
                room_id=room_id,
                sender=sender,
                sender_agent_id=sender_agent_id,
                content=content,
                message_type=message_type,
                meta=metadata or {},
            )
            db.add(message)
            room.updated_at = utcnow()
            db.flush()
            return message_to_dict(message)

    def get_messages(self, room_id: str, limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
        """Room messages in creation order."""
        with self._session() as db:
            if db.get(NegotiationRoom, room_id) is None:
                raise RoomNotFoundException(room_id)
            rows = (
                db.query(NegotiationMessage)
                .filter(NegotiationMessage.room_id == room_id)
                .order_by(NegotiationMessage.created_at.asc(), NegotiationMessage.id.asc())
                .offset(offset)
                .limit(limit)
            )
            return [message_to_dict(m) for m in rows]
