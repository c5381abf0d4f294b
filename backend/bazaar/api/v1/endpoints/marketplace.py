"""
Listings and buy requests endpoints.

WHAT: Publish listings, post buy requests, read progress and long-poll for it
WHY: Entry points for seller and buyer agents; posting a buy request kicks off auto-search
HOW: Validate with pydantic schemas, write through the store, schedule the orchestrator
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ..dependencies import get_broker, get_orchestrator, get_store
from ....core.config import settings
from ....core.events import BUY_REQUEST_PROGRESS, EventBroker, buy_request_topic
from ....core.models import ListingStatus, SearchStep, TERMINAL_SEARCH_STEPS
from ....core.store import MarketplaceStore, progress_payload
from ....models.api_schemas import (
    CreateBuyRequestRequest,
    CreateBuyRequestResponse,
    CreateListingRequest,
    UpdateBuyRequestStatusRequest,
)
from ....services.auto_search import AutoSearchOrchestrator
from ....services.polling import PollTimeoutError, poll_until
from ....utils.exceptions import BuyRequestNotFoundException, ListingNotFoundException
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


# ========== Listings ==========

@router.post("/listings", status_code=status.HTTP_201_CREATED)
async def create_listing(
    request: CreateListingRequest,
    store: MarketplaceStore = Depends(get_store),
):
    """
    Publish a listing.

    A WAITING negotiation room is opened with it; its id is returned as roomId.
    """
    listing = store.create_listing(
        request.seller_agent_id,
        request.title,
        request.description,
        request.base_price,
        request.expected_price,
        category=request.category,
        seller_endpoint=request.seller_endpoint,
    )
    return {"success": True, "listing": listing}


@router.get("/listings")
async def list_listings(
    status_filter: Optional[ListingStatus] = Query(default=None, alias="status"),
    store: MarketplaceStore = Depends(get_store),
):
    listings = store.list_listings(status_filter)
    return {"listings": listings, "count": len(listings)}


@router.get("/listings/{listing_id}")
async def get_listing(listing_id: int, store: MarketplaceStore = Depends(get_store)):
    listing = store.get_listing(listing_id)
    if listing is None:
        raise ListingNotFoundException(listing_id)
    room = store.get_room_by_listing(listing_id)
    listing["roomId"] = room["id"] if room else None
    return listing


# ========== Buy requests ==========

@router.post(
    "/buy-requests",
    response_model=CreateBuyRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_buy_request(
    request: CreateBuyRequestRequest,
    store: MarketplaceStore = Depends(get_store),
    orchestrator: AutoSearchOrchestrator = Depends(get_orchestrator),
):
    """
    Post a buy request and start auto-search.

    WHAT: Persist the request, schedule the pipeline, return immediately
    WHY: Matching and negotiation take many seconds; progress is observable instead
    HOW: Budget is validated by the schema before anything is stored
    """
    buy_request = store.create_buy_request(
        request.buyer_agent_id,
        request.title,
        request.description,
        request.min_price,
        request.max_price,
        category=request.category,
    )
    task = orchestrator.start(buy_request["id"])

    return CreateBuyRequestResponse(
        buy_request_id=buy_request["id"],
        title=buy_request["title"],
        min_price=buy_request["minPrice"],
        max_price=buy_request["maxPrice"],
        search_started=task is not None,
    )


@router.get("/buy-requests")
async def list_open_buy_requests(store: MarketplaceStore = Depends(get_store)):
    buy_requests = store.list_open_buy_requests()
    return {"buyRequests": buy_requests, "count": len(buy_requests)}


@router.get("/buy-requests/{buy_request_id}")
async def get_buy_request(buy_request_id: str, store: MarketplaceStore = Depends(get_store)):
    """Buy request with its progress projection."""
    buy_request = store.get_buy_request(buy_request_id)
    if buy_request is None:
        raise BuyRequestNotFoundException(buy_request_id)
    return buy_request


@router.patch("/buy-requests/{buy_request_id}/status")
async def update_buy_request_status(
    buy_request_id: str,
    request: UpdateBuyRequestStatusRequest,
    store: MarketplaceStore = Depends(get_store),
    broker: EventBroker = Depends(get_broker),
):
    buy_request = store.update_buy_request_status(buy_request_id, request.status)
    broker.publish(buy_request_topic(buy_request_id), BUY_REQUEST_PROGRESS, progress_payload(buy_request))
    return buy_request


@router.get("/buy-requests/{buy_request_id}/wait")
async def wait_for_progress(
    buy_request_id: str,
    until: Optional[SearchStep] = Query(default=None, description="Step to wait for (default: any terminal step)"),
    timeout: Optional[float] = Query(default=None, ge=0, le=120, description="Seconds to wait"),
    store: MarketplaceStore = Depends(get_store),
):
    """
    Long-poll the progress projection.

    Returns as soon as the buy request reaches `until` or any terminal step, or once
    `timeout` seconds have passed. `reached` tells the two apart.
    """
    if store.get_buy_request(buy_request_id) is None:
        raise BuyRequestNotFoundException(buy_request_id)

    def done(projection) -> bool:
        if projection is None:
            return True
        step = SearchStep(projection["searchStep"])
        return step == until or step in TERMINAL_SEARCH_STEPS

    max_wait = settings.POLL_MAX_WAIT_SECONDS if timeout is None else timeout
    try:
        projection = await poll_until(lambda: store.get_buy_request(buy_request_id), done, max_wait=max_wait)
        reached = projection is not None
    except PollTimeoutError as e:
        projection = e.last_value
        reached = False

    if projection is None:
        raise BuyRequestNotFoundException(buy_request_id)
    return {"buyRequest": projection, "reached": reached}
