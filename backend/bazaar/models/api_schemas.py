"""
Pydantic API schemas.

WHAT: Request and response models for the marketplace, negotiation and agent routes
WHY: Reject malformed input synchronously, before any background work starts
HOW: Pydantic v2 models with camelCase aliases and validators
"""

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from ..core.models import BuyRequestStatus, MessageType


class CamelModel(BaseModel):
    """Accepts camelCase (wire) and snake_case (Python) field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ========== Listings ==========

class CreateListingRequest(CamelModel):
    """Seller publishes a listing (a WAITING room is opened with it)."""
    seller_agent_id: int = Field(..., ge=0, description="Seller agent id")
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=5000)
    category: Optional[str] = Field(default=None, max_length=100)
    base_price: float = Field(..., ge=0, description="Lowest listed price")
    expected_price: float = Field(..., ge=0, description="Price the seller expects")
    seller_endpoint: Optional[str] = Field(default=None, max_length=500, description="Seller A2A endpoint")


# ========== Buy requests ==========

class CreateBuyRequestRequest(CamelModel):
    """Buyer posts a purchase intent with a budget."""
    buyer_agent_id: int = Field(..., ge=0, description="Buyer agent id")
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=5000)
    min_price: float = Field(..., ge=0)
    max_price: float = Field(..., ge=0)
    category: Optional[str] = Field(default=None, max_length=100)

    @model_validator(mode="after")
    def validate_budget(self):
        """Ensure min_price <= max_price."""
        if self.min_price > self.max_price:
            raise ValueError(f"minPrice ({self.min_price}) cannot exceed maxPrice ({self.max_price})")
        return self


class CreateBuyRequestResponse(CamelModel):
    """Returned as soon as the buy request is stored and auto-search is scheduled."""
    success: bool = True
    buy_request_id: str
    title: str
    min_price: float
    max_price: float
    search_started: bool = True


class UpdateBuyRequestStatusRequest(CamelModel):
    status: BuyRequestStatus


# ========== Negotiation ==========

class PostMessageRequest(CamelModel):
    """Participant posts a message into a room."""
    sender_agent_id: int = Field(..., ge=0)
    content: str = Field(..., min_length=1, max_length=5000)
    message_type: MessageType = MessageType.TEXT
    metadata: Dict[str, Any] = Field(default_factory=dict)


class UpdateRoomStatusRequest(CamelModel):
    """Manual room close; ACTIVE rooms only. COMPLETED is set by the negotiation loop."""
    status: Literal["CANCELLED", "REJECTED"]


# ========== Agents ==========

class RegisterEndpointRequest(CamelModel):
    endpoint: str = Field(..., min_length=1, max_length=500, description="A2A endpoint URL")


class AgentEndpointResponse(CamelModel):
    agent_id: int
    endpoint: str
