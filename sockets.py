"""Socket event protocol: JSON frames in, acknowledgements out.

Client frame:  {"event": "room:join", "data": {...}, "ack": 7}
Ack frame:     {"event": "ack", "ack": 7, "data": {"ok": true, "room": {...}}}
Push frame:    {"event": "chat:message", "data": {...}}

Request-level failures are reported in the ack and never close the socket.
"""
import json
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from connections import ConnectionManager
from errors import InvalidRequest, RelayError
from logging_config import get_logger
from schemas.events import EventFrame, JoinRoomRequest, SendMessageRequest, ack_frame, parse_payload

logger = get_logger(__name__)


async def on_room_create(manager: ConnectionManager, connection_id: str, data) -> dict:
    room = await manager.create_room(connection_id)
    return {"ok": True, "room": room.model_dump(mode="json")}


async def on_room_join(manager: ConnectionManager, connection_id: str, data) -> dict:
    request = parse_payload(JoinRoomRequest, data)
    room = await manager.join_room(connection_id, request.code, request.nickname)
    return {"ok": True, "room": room.model_dump(mode="json")}


async def on_chat_send(manager: ConnectionManager, connection_id: str, data) -> dict:
    request = parse_payload(SendMessageRequest, data)
    message = await manager.send_message(connection_id, request.roomCode, request.sender, request.content)
    return {"ok": True, "message": message.model_dump(mode="json")}


EVENT_HANDLERS = {
    "room:create": on_room_create,
    "room:join": on_room_join,
    "chat:send": on_chat_send,
}


def error_result(message: str) -> dict:
    return {"ok": False, "error": message}


async def dispatch(manager: ConnectionManager, connection_id: str, event: str, data) -> dict:
    """Run one client event and return its tagged result."""
    handler = EVENT_HANDLERS.get(event)
    try:
        if handler is None:
            raise InvalidRequest(f"Unknown event: {event}")
        return await handler(manager, connection_id, data)
    except RelayError as e:
        logger.info(f"{event} from connection {connection_id} failed: {e.kind}: {e.message}")
        return error_result(e.message)
    except Exception as e:
        logger.error(f"Unexpected error handling {event} from connection {connection_id}: {e}", exc_info=True)
        return error_result("Internal server error")


async def handle_frame(manager: ConnectionManager, connection_id: str, raw: str) -> Optional[dict]:
    """Handle one raw text frame; returns the ack frame to send back, if the client asked for one."""
    try:
        frame = EventFrame.model_validate(json.loads(raw))
    except (json.JSONDecodeError, PydanticValidationError) as e:
        logger.warning(f"Malformed frame from connection {connection_id}: {e}")
        ack_id = _salvage_ack_id(raw)
        if ack_id is None:
            return None
        return ack_frame(ack_id, error_result(InvalidRequest.default_message))

    logger.debug(f"Received {frame.event} from connection {connection_id}")
    result = await dispatch(manager, connection_id, frame.event, frame.data)
    if frame.ack is None:
        return None
    return ack_frame(frame.ack, result)


def _salvage_ack_id(raw: str) -> Optional[int]:
    try:
        ack_id = json.loads(raw).get("ack")
    except (json.JSONDecodeError, AttributeError):
        return None
    return ack_id if isinstance(ack_id, int) and not isinstance(ack_id, bool) else None
