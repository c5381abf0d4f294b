"""
Negotiation room endpoints.

WHAT: Read rooms and their logs, post participant messages, close rooms manually
WHY: Agents inspect and join the conversation the auto-search pipeline opened
HOW: FastAPI router over the store; every write is published on the room topic
"""

from fastapi import APIRouter, Depends, Query, status

from ..dependencies import get_broker, get_store
from ....core.events import (
    EventBroker,
    NEGOTIATION_MESSAGE,
    NEGOTIATION_STATUS_CHANGED,
    room_topic,
)
from ....core.models import RoomStatus
from ....core.store import MarketplaceStore
from ....models.api_schemas import PostMessageRequest, UpdateRoomStatusRequest
from ....utils.exceptions import RoomNotFoundException
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/negotiation")


@router.get("/rooms/{room_id}")
async def get_room(
    room_id: str,
    limit: int = Query(default=100, ge=1, le=500),
    store: MarketplaceStore = Depends(get_store),
):
    """Room projection plus its first `limit` messages."""
    room = store.get_room(room_id)
    if room is None:
        raise RoomNotFoundException(room_id)
    room["messages"] = store.get_messages(room_id, limit=limit)
    return room


@router.get("/agent/{agent_id}/rooms")
async def get_agent_rooms(agent_id: int, store: MarketplaceStore = Depends(get_store)):
    """Rooms the agent takes part in, as seller or buyer."""
    rooms = store.rooms_for_agent(agent_id)
    return {"agentId": agent_id, "rooms": rooms, "count": len(rooms)}


@router.get("/rooms/{room_id}/messages")
async def get_messages(
    room_id: str,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    store: MarketplaceStore = Depends(get_store),
):
    messages = store.get_messages(room_id, limit=limit, offset=offset)
    return {"roomId": room_id, "messages": messages, "count": len(messages)}


@router.post("/rooms/{room_id}/messages", status_code=status.HTTP_201_CREATED)
async def post_message(
    room_id: str,
    request: PostMessageRequest,
    store: MarketplaceStore = Depends(get_store),
    broker: EventBroker = Depends(get_broker),
):
    """
    Append a participant message.

    403 for non-participants, 409 once the room is closed.
    """
    message = store.append_message(
        room_id,
        request.sender_agent_id,
        request.content,
        request.message_type,
        request.metadata,
    )
    broker.publish(room_topic(room_id), NEGOTIATION_MESSAGE, message)
    logger.info(f"Message {message['id']} posted to room {room_id} by agent {request.sender_agent_id}")
    return message


@router.patch("/rooms/{room_id}/status")
async def update_room_status(
    room_id: str,
    request: UpdateRoomStatusRequest,
    store: MarketplaceStore = Depends(get_store),
    broker: EventBroker = Depends(get_broker),
):
    """Close an ACTIVE room; any other move is a 409."""
    room = store.update_room_status(room_id, RoomStatus(request.status))
    broker.publish(room_topic(room_id), NEGOTIATION_STATUS_CHANGED, {"roomId": room_id, "status": room["status"]})
    return room
