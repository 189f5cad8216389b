from fastapi import APIRouter, HTTPException, Query, Request
from typing import List, Optional

from constants import HISTORY_DEFAULT_LIMIT, HISTORY_MAX_LIMIT
from errors import NotFound, RelayError, TransportFailure, ValidationError
from logging_config import get_logger
from schemas.rooms import HealthResponse, MessageOut, PostMessageRequest, RoomDetailsResponse

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])
health_router = APIRouter(tags=["health"])


def to_http_error(e: RelayError) -> HTTPException:
    if isinstance(e, NotFound):
        return HTTPException(status_code=404, detail=e.message)
    if isinstance(e, TransportFailure):
        return HTTPException(status_code=503, detail=e.message)
    if isinstance(e, ValidationError):
        return HTTPException(status_code=422, detail=e.message)
    return HTTPException(status_code=400, detail=e.message)


@rooms_router.get("/{code}", response_model=RoomDetailsResponse)
async def get_room_details(code: str, request: Request):
    """
    Get a room by its short code.

    Returns:
    - room: id, code and creation time
    - local_participants: connections bound to the room on this instance only
    """
    services = request.app.state
    try:
        room = await services.registry.find_room_by_code(code)
    except RelayError as e:
        raise to_http_error(e)
    if not room:
        logger.warning(f"Room details failed: Room {code} not found")
        raise HTTPException(status_code=404, detail="Room not found")

    return RoomDetailsResponse(room=room, local_participants=services.manager.local_members(room.code))


@rooms_router.get("/{code}/messages", response_model=List[MessageOut])
async def get_room_history(
    code: str,
    request: Request,
    limit: int = Query(HISTORY_DEFAULT_LIMIT, ge=1, le=HISTORY_MAX_LIMIT),
    before_id: Optional[int] = Query(None, alias="beforeId", ge=1, description="Only messages with a smaller id"),
):
    """Most recent messages of a room, newest first. Page backwards with beforeId."""
    logger.debug(f"History request for room {code}: limit={limit}, before_id={before_id}")
    try:
        return await request.app.state.pipeline.recent_messages(code, limit, before_id)
    except RelayError as e:
        logger.info(f"History request for room {code} failed: {e.message}")
        raise to_http_error(e)


@rooms_router.post("/{code}/messages", response_model=MessageOut, status_code=201)
async def post_room_message(code: str, body: PostMessageRequest, request: Request):
    """Send a message without a socket. It is broadcast to the room like chat:send."""
    client_host = request.client.host if request.client else 'unknown'
    logger.info(f"HTTP message for room {code} from {client_host}")
    try:
        return await request.app.state.pipeline.send_message(code, body.sender, body.content)
    except RelayError as e:
        logger.info(f"HTTP message for room {code} failed: {e.message}")
        raise to_http_error(e)


@health_router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    services = request.app.state
    return HealthResponse(status="ok", instance=services.instance_id, fanout=services.fanout.name)
