"""
Custom business exceptions for the marketplace API and negotiation core.

WHAT: Domain-specific exceptions that map to HTTP status codes
WHY: Consistent error handling across endpoints and background tasks
HOW: Exception classes carrying an error code, message and details
"""

from typing import Optional, List, Dict, Any


class BusinessException(Exception):
    """Base class for business logic exceptions."""

    def __init__(self, message: str, code: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details


class ValidationException(BusinessException):
    """Raised for validation errors (budget ordering, missing fields)."""

    def __init__(self, message: str, field_errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details={"field_errors": field_errors} if field_errors else None
        )


class BuyRequestNotFoundException(BusinessException):
    """Raised when a buy request is not found."""

    def __init__(self, buy_request_id: str):
        super().__init__(
            message=f"Buy request not found: {buy_request_id}",
            code="BUY_REQUEST_NOT_FOUND",
            details={"buy_request_id": buy_request_id}
        )


class ListingNotFoundException(BusinessException):
    """Raised when a listing is not found."""

    def __init__(self, listing_id: int):
        super().__init__(
            message=f"Listing not found: {listing_id}",
            code="LISTING_NOT_FOUND",
            details={"listing_id": listing_id}
        )


class ListingNotAvailableException(BusinessException):
    """Raised when a matched listing is no longer OPEN."""

    def __init__(self, listing_id: int, current_status: str):
        super().__init__(
            message=f"Listing {listing_id} is no longer available (status: {current_status})",
            code="LISTING_NOT_AVAILABLE",
            details={"listing_id": listing_id, "current_status": current_status}
        )


class RoomNotFoundException(BusinessException):
    """Raised when a negotiation room is not found."""

    def __init__(self, room_id: str):
        super().__init__(
            message=f"Negotiation room not found: {room_id}",
            code="ROOM_NOT_FOUND",
            details={"room_id": room_id}
        )


class RoomAlreadyClaimedException(BusinessException):
    """Raised when a room was claimed by another buyer first."""

    def __init__(self, room_id: str):
        super().__init__(
            message=f"Negotiation room {room_id} is no longer accepting buyers",
            code="ROOM_ALREADY_CLAIMED",
            details={"room_id": room_id}
        )


class InvalidRoomTransitionException(BusinessException):
    """Raised when a room status change violates the lifecycle."""

    def __init__(self, room_id: str, current_status: str, requested_status: str):
        super().__init__(
            message=f"Cannot move room {room_id} from {current_status} to {requested_status}",
            code="INVALID_ROOM_TRANSITION",
            details={
                "room_id": room_id,
                "current_status": current_status,
                "requested_status": requested_status
            }
        )


class NotRoomParticipantException(BusinessException):
    """Raised when a non-participant tries to post to a room."""

    def __init__(self, room_id: str, agent_id: int):
        super().__init__(
            message=f"Agent {agent_id} is not a participant in room {room_id}",
            code="NOT_ROOM_PARTICIPANT",
            details={"room_id": room_id, "agent_id": agent_id}
        )


class AgentEndpointNotFoundException(BusinessException):
    """Raised when the directory cannot resolve an agent's endpoint."""

    def __init__(self, agent_id: int):
        super().__init__(
            message=f"No negotiation endpoint registered for agent {agent_id}",
            code="AGENT_ENDPOINT_NOT_FOUND",
            details={"agent_id": agent_id}
        )


class NegotiationError(Exception):
    """Base error raised inside the negotiation loop."""

    def __init__(self, message: str, room_id: str | None = None, round_number: int | None = None):
        super().__init__(message)
        self.room_id = room_id
        self.round_number = round_number


class NegotiatorAgentError(NegotiationError):
    """Negotiator agent could not produce the next message."""
    pass


class RoomClosedException(BusinessException):
    """Raised when posting to a room that has reached a terminal status."""

    def __init__(self, room_id: str, current_status: str):
        super().__init__(
            message=f"Negotiation room {room_id} is closed (status: {current_status})",
            code="ROOM_CLOSED",
            details={"room_id": room_id, "current_status": current_status}
        )
