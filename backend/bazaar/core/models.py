"""
ORM models for marketplace persistence.

WHAT: SQLAlchemy models for listings, buy requests, negotiation rooms and messages
WHY: The store is the source of truth for every orchestrator step and room transition
HOW: Declarative models with check/unique constraints and indexes
"""

from datetime import datetime, timezone
from uuid import uuid4
from sqlalchemy import (
    Column, Integer, String, Float, DateTime, Text, JSON,
    ForeignKey, CheckConstraint, Index, Enum as SQLEnum
)
from sqlalchemy.orm import relationship
import enum

from .database import Base
from ..utils.exceptions import ValidationException


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite stores no tz)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ListingStatus(str, enum.Enum):
    """Listing status values."""
    OPEN = "OPEN"
    RESERVED = "RESERVED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class BuyRequestStatus(str, enum.Enum):
    """Buy request status values."""
    OPEN = "OPEN"
    MATCHED = "MATCHED"
    CLOSED = "CLOSED"


class SearchStep(str, enum.Enum):
    """Auto-search progress steps."""
    IDLE = "idle"
    SEARCHING = "searching"
    FOUND = "found"
    NO_RESULTS = "no_results"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    CONTACTING = "contacting"
    CONTACTED = "contacted"
    JOINED_ROOM = "joined_room"
    NEGOTIATION_COMPLETE = "negotiation_complete"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_SEARCH_STEPS = frozenset({SearchStep.NO_RESULTS, SearchStep.COMPLETE, SearchStep.ERROR})


class RoomStatus(str, enum.Enum):
    """Negotiation room status values."""
    WAITING = "WAITING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"


TERMINAL_ROOM_STATUSES = frozenset({RoomStatus.COMPLETED, RoomStatus.CANCELLED, RoomStatus.REJECTED})

# Allowed room lifecycle moves
ROOM_TRANSITIONS = {
    RoomStatus.WAITING: frozenset({RoomStatus.ACTIVE}),
    RoomStatus.ACTIVE: TERMINAL_ROOM_STATUSES,
    RoomStatus.COMPLETED: frozenset(),
    RoomStatus.CANCELLED: frozenset(),
    RoomStatus.REJECTED: frozenset(),
}


class SenderRole(str, enum.Enum):
    """Which side of the room sent a message."""
    SELLER = "seller"
    BUYER = "buyer"


class MessageType(str, enum.Enum):
    """Negotiation message types."""
    GREETING = "greeting"
    NEGOTIATION = "negotiation"
    RESPONSE = "response"
    TEXT = "text"


class NegotiationOutcome(str, enum.Enum):
    """How a concluded room ended."""
    PRICE_AGREED = "price_agreed"
    REJECTED = "rejected"


def validate_budget(min_price: float | None, max_price: float | None) -> None:
    """
    Enforce 0 <= min_price <= max_price.

    Raises:
        ValidationException: If the budget bounds are missing or out of order
    """
    if min_price is None or max_price is None:
        raise ValidationException(
            "Budget requires both minPrice and maxPrice",
            field_errors=[{"field": "minPrice/maxPrice", "error": "required"}]
        )
    if min_price < 0:
        raise ValidationException(
            f"minPrice must be non-negative, got {min_price}",
            field_errors=[{"field": "minPrice", "error": "must be >= 0"}]
        )
    if min_price > max_price:
        raise ValidationException(
            f"minPrice ({min_price}) cannot exceed maxPrice ({max_price})",
            field_errors=[{"field": "minPrice", "error": "must be <= maxPrice"}]
        )


class Listing(Base):
    """
    Listing table - a seller's offer with its price band.

    WHAT: Seller-owned offer, read-only to the negotiation core
    WHY: Candidates for matching and the seller side of feasibility
    HOW: Integer key, one optional negotiation room
    """
    __tablename__ = "listings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    seller_agent_id = Column(Integer, nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(String(100), nullable=True)
    base_price = Column(Float, nullable=False)
    expected_price = Column(Float, nullable=False)
    status = Column(SQLEnum(ListingStatus), nullable=False, default=ListingStatus.OPEN, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    room = relationship("NegotiationRoom", back_populates="listing", uselist=False)

    __table_args__ = (
        CheckConstraint("base_price >= 0", name="check_listing_base_price_non_negative"),
    )

    def __repr__(self):
        return f"<Listing(id={self.id}, title={self.title}, status={self.status})>"


class BuyRequest(Base):
    """
    BuyRequest table - a buyer's intent plus its search-progress projection.

    WHAT: Budgeted purchase intent, mutated only by the auto-search orchestrator
    WHY: Observers read progress exclusively from this projection
    HOW: UUID key, budget check enforced both in the constructor and in the schema
    """
    __tablename__ = "buy_requests"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    buyer_agent_id = Column(Integer, nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    min_price = Column(Float, nullable=False)
    max_price = Column(Float, nullable=False)
    category = Column(String(100), nullable=True)
    status = Column(SQLEnum(BuyRequestStatus), nullable=False, default=BuyRequestStatus.OPEN, index=True)

    # Search-progress projection
    search_step = Column(SQLEnum(SearchStep), nullable=False, default=SearchStep.IDLE)
    search_message = Column(Text, nullable=True)
    search_error = Column(Text, nullable=True)
    matched_listing_id = Column(Integer, ForeignKey("listings.id"), nullable=True)
    seller_agent_id = Column(Integer, nullable=True)
    a2a_endpoint = Column(String(500), nullable=True)
    negotiation_room_id = Column(String(36), ForeignKey("negotiation_rooms.id"), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("min_price <= max_price", name="check_buy_request_budget_order"),
        CheckConstraint("min_price >= 0", name="check_buy_request_min_non_negative"),
    )

    def __init__(self, **kwargs):
        validate_budget(kwargs.get("min_price"), kwargs.get("max_price"))
        super().__init__(**kwargs)

    def __repr__(self):
        return f"<BuyRequest(id={self.id}, step={self.search_step}, status={self.status})>"


class NegotiationRoom(Base):
    """
    NegotiationRoom table - pairs one listing with at most one buyer.

    WHAT: Persisted negotiation session and its lifecycle status
    WHY: Single-claim point between competing buy requests
    HOW: Unique listing_id; buyer columns stay NULL while WAITING
    """
    __tablename__ = "negotiation_rooms"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    listing_id = Column(Integer, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, unique=True)
    seller_agent_id = Column(Integer, nullable=False, index=True)
    buyer_agent_id = Column(Integer, nullable=True, index=True)
    seller_endpoint = Column(String(500), nullable=True)
    buyer_endpoint = Column(String(500), nullable=True)
    status = Column(SQLEnum(RoomStatus), nullable=False, default=RoomStatus.WAITING)
    outcome = Column(SQLEnum(NegotiationOutcome), nullable=True)
    agreed_price = Column(Float, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    listing = relationship("Listing", back_populates="room")
    messages = relationship(
        "NegotiationMessage",
        back_populates="room",
        cascade="all, delete-orphan",
        order_by="(NegotiationMessage.created_at, NegotiationMessage.id)"
    )

    def __repr__(self):
        return f"<NegotiationRoom(id={self.id}, listing={self.listing_id}, status={self.status})>"


class NegotiationMessage(Base):
    """
    NegotiationMessage table - append-only room log.

    WHAT: One party's text in a room, with type and provenance metadata
    WHY: Audit trail and the history fed to the negotiator agent
    HOW: Integer key gives a stable tie-break when created_at collides
    """
    __tablename__ = "negotiation_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    room_id = Column(String(36), ForeignKey("negotiation_rooms.id", ondelete="CASCADE"), nullable=False)
    sender = Column(SQLEnum(SenderRole), nullable=False)
    sender_agent_id = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    message_type = Column(SQLEnum(MessageType), nullable=False, default=MessageType.TEXT)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    room = relationship("NegotiationRoom", back_populates="messages")

    __table_args__ = (
        Index("idx_negotiation_messages_room_created", "room_id", "created_at"),
    )

    def __repr__(self):
        return f"<NegotiationMessage(id={self.id}, room={self.room_id}, sender={self.sender})>"
