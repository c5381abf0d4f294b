"""
Global error handling middleware.

WHAT: Translate exceptions to appropriate HTTP responses
WHY: Consistent error responses with proper status codes
HOW: FastAPI exception handlers for custom exceptions
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from datetime import datetime

from ..a2a.types import A2AResponseError, CounterpartyUnreachableError
from ..llm.types import (
    ProviderTimeoutError,
    ProviderUnavailableError,
    ProviderDisabledError,
    ProviderResponseError,
)
from ..utils.exceptions import (
    AgentEndpointNotFoundException,
    BusinessException,
    BuyRequestNotFoundException,
    InvalidRoomTransitionException,
    ListingNotAvailableException,
    ListingNotFoundException,
    NotRoomParticipantException,
    RoomAlreadyClaimedException,
    RoomClosedException,
    RoomNotFoundException,
    ValidationException,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

NOT_FOUND = (
    BuyRequestNotFoundException,
    ListingNotFoundException,
    RoomNotFoundException,
    AgentEndpointNotFoundException,
)
CONFLICT = (
    RoomAlreadyClaimedException,
    InvalidRoomTransitionException,
    RoomClosedException,
    ListingNotAvailableException,
)


def _error_body(error: str, message: str, details=None) -> dict:
    return {
        "error": error,
        "message": message,
        "details": details,
        "timestamp": datetime.now().isoformat(),
    }


async def provider_disabled_handler(request: Request, exc: ProviderDisabledError):
    """Provider is disabled in config; 400 so the caller fixes configuration."""
    logger.warning(f"Provider disabled: {exc}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body("LLM_PROVIDER_DISABLED", str(exc), "Check LLM provider configuration"),
    )


async def provider_timeout_handler(request: Request, exc: ProviderTimeoutError):
    logger.error(f"Provider timeout: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=_error_body("LLM_TIMEOUT", str(exc), "LLM provider request timed out"),
    )


async def provider_unavailable_handler(request: Request, exc: ProviderUnavailableError):
    logger.error(f"Provider unavailable: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=_error_body("LLM_UNAVAILABLE", str(exc), "LLM provider is not reachable"),
    )


async def provider_response_error_handler(request: Request, exc: ProviderResponseError):
    logger.error(f"Provider response error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content=_error_body("LLM_BAD_GATEWAY", str(exc), "LLM provider returned an invalid response"),
    )


async def counterparty_unreachable_handler(request: Request, exc: CounterpartyUnreachableError):
    """
    Handle CounterpartyUnreachableError.

    WHAT: Remote agent did not answer within the A2A timeout
    WHY: Caller should retry later, nothing was changed on our side
    HOW: Return 503 with the endpoint that failed
    """
    logger.error(f"Counterparty unreachable: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=_error_body("COUNTERPARTY_UNREACHABLE", str(exc), {"endpoint": exc.endpoint}),
    )


async def a2a_response_error_handler(request: Request, exc: A2AResponseError):
    logger.error(f"A2A response error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content=_error_body("A2A_BAD_RESPONSE", str(exc), {"endpoint": exc.endpoint}),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """
    Handle FastAPI RequestValidationError.

    WHAT: Request validation failed
    WHY: Invalid request payload
    HOW: Return 400 with field errors
    """
    errors = exc.errors()
    logger.warning(f"Validation error: {errors}")

    # ctx may carry the raised ValueError, which is not JSON serializable
    cleaned_errors = []
    for error in errors:
        cleaned_error = {
            "type": error.get("type"),
            "loc": list(error.get("loc", ())),
            "msg": error.get("msg"),
            "input": error.get("input"),
        }
        if "ctx" in error:
            cleaned_error["ctx"] = {
                k: str(v) if isinstance(v, Exception) else v for k, v in error["ctx"].items()
            }
        cleaned_errors.append(cleaned_error)

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body("VALIDATION_ERROR", "Request validation failed", cleaned_errors),
    )


async def business_exception_handler(request: Request, exc: BusinessException):
    """
    Handle BusinessException and subclasses.

    WHAT: Domain error raised by the store, directory or orchestrator
    WHY: Each domain failure has one HTTP meaning
    HOW: 404 for lookups, 409 for lifecycle conflicts, 403 for non-participants, else 400
    """
    status_code = status.HTTP_400_BAD_REQUEST

    if isinstance(exc, NOT_FOUND):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, CONFLICT):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(exc, NotRoomParticipantException):
        status_code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, ValidationException):
        status_code = status.HTTP_400_BAD_REQUEST

    logger.warning(f"Business exception: {exc.code} - {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content=_error_body(exc.code, exc.message, exc.details),
    )


def register_exception_handlers(app):
    """
    Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance
    """
    # LLM Provider exceptions
    app.add_exception_handler(ProviderDisabledError, provider_disabled_handler)
    app.add_exception_handler(ProviderTimeoutError, provider_timeout_handler)
    app.add_exception_handler(ProviderUnavailableError, provider_unavailable_handler)
    app.add_exception_handler(ProviderResponseError, provider_response_error_handler)

    # A2A exceptions
    app.add_exception_handler(CounterpartyUnreachableError, counterparty_unreachable_handler)
    app.add_exception_handler(A2AResponseError, a2a_response_error_handler)

    # API exceptions
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(BusinessException, business_exception_handler)

    logger.info("Exception handlers registered")
