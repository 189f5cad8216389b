from typing import List, Optional

from constants import HISTORY_DEFAULT_LIMIT, HISTORY_MAX_LIMIT
from database import run_blocking
from errors import NotFound, TransportFailure
from fanout import FanoutBridge
from logging_config import get_logger
from registry import RoomRegistry
from schemas.events import SendMessageRequest, parse_payload
from schemas.rooms import MessageOut
from stores import MessageStore

logger = get_logger(__name__)

CHAT_MESSAGE_EVENT = "chat:message"


class MessagePipeline:
    def __init__(self, registry: RoomRegistry, message_store: MessageStore, fanout: FanoutBridge):
        self.registry = registry
        self.message_store = message_store
        self.fanout = fanout

    async def send_message(self, room_code: str, sender: str, content: str) -> MessageOut:
        """Validate, persist, then broadcast a chat message.

        The broadcast only happens once the row is committed. A broadcast
        failure is logged and does not fail the call: the message is durable
        and stays available through history.
        """
        request = parse_payload(SendMessageRequest, {"roomCode": room_code, "sender": sender, "content": content})

        room = await self.registry.find_room_by_code(request.roomCode)
        if room is None:
            logger.info(f"Message rejected: room {request.roomCode} not found")
            raise NotFound("Room not found")

        saved = await run_blocking(self.message_store.insert, room, request.sender, request.content)
        logger.debug(f"Message {saved.id} persisted to room {room.code} by {saved.sender}")

        try:
            await self.fanout.publish(room.code, CHAT_MESSAGE_EVENT, saved.model_dump(mode="json"))
        except TransportFailure:
            logger.warning(f"Message {saved.id} persisted but broadcast to room {room.code} failed")
        return saved

    async def recent_messages(self, room_code: str, limit: int = HISTORY_DEFAULT_LIMIT,
                              before_id: Optional[int] = None) -> List[MessageOut]:
        room = await self.registry.find_room_by_code(room_code)
        if room is None:
            raise NotFound("Room not found")
        limit = min(max(limit, 1), HISTORY_MAX_LIMIT)
        return await run_blocking(self.message_store.recent, room, limit, before_id)
