"""
Negotiation core data structures.

WHAT: Constraints, turns and results passed between orchestrator, loop and agent
WHY: Keep the loop independent of ORM rows and API schemas
HOW: Dataclasses built from store projections
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from ..core.config import settings


@dataclass
class NegotiationContext:
    """Both parties' declared constraints for one room."""
    room_id: str
    buy_request_id: str
    listing_id: int
    listing_title: str
    listing_description: str
    buyer_agent_id: int
    seller_agent_id: int
    seller_endpoint: str
    min_price: float
    max_price: float
    base_price: float
    expected_price: float
    request_title: str = ""
    request_description: str = ""
    currency: str = field(default_factory=lambda: settings.CURRENCY_UNIT)

    @classmethod
    def from_projections(
        cls,
        room: Dict[str, Any],
        listing: Dict[str, Any],
        buy_request: Dict[str, Any],
        seller_endpoint: str,
    ) -> "NegotiationContext":
        return cls(
            room_id=room["id"],
            buy_request_id=buy_request["id"],
            listing_id=listing["id"],
            listing_title=listing["title"],
            listing_description=listing.get("description") or "",
            buyer_agent_id=buy_request["buyerAgentId"],
            seller_agent_id=listing["sellerAgentId"],
            seller_endpoint=seller_endpoint,
            min_price=buy_request["minPrice"],
            max_price=buy_request["maxPrice"],
            base_price=listing["basePrice"],
            expected_price=listing["expectedPrice"],
            request_title=buy_request["title"],
            request_description=buy_request["description"],
        )


@dataclass
class Turn:
    """One party's message in the negotiation, driver-relative."""
    speaker: Literal["driver", "counterparty"]
    content: str
    message_id: Optional[str] = None


@dataclass
class NegotiationResult:
    """How a negotiation loop ended."""
    room_id: str
    room_status: str
    rounds_completed: int
    outcome: Optional[str] = None  # price_agreed / rejected, None while unresolved
    agreed_price: Optional[float] = None
    reason: str = ""
    halted_on_violation: bool = False
    turns: List[Turn] = field(default_factory=list)

    @property
    def concluded(self) -> bool:
        return self.outcome is not None
