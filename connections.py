"""Per-connection state for the sockets held by this instance.

Each connection is Connected (no room) or bound to exactly one room, and is
forgotten on disconnect. The table is instance-local: other instances learn
about activity here only through the fanout bridge.
"""
import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from errors import InvalidRequest, NotFound, TransportFailure
from fanout import FanoutBridge
from logging_config import get_logger
from pipeline import MessagePipeline
from registry import RoomRegistry
from schemas.events import SendMessageRequest, parse_payload, server_frame
from schemas.rooms import MessageOut, RoomOut

logger = get_logger(__name__)

PARTICIPANT_JOINED_EVENT = "room:participant-joined"


@dataclass
class ConnectionState:
    connection_id: str
    transport: Any
    room_code: Optional[str] = None
    nickname: Optional[str] = None
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def in_room(self) -> bool:
        return self.room_code is not None


class ConnectionManager:
    def __init__(self, registry: RoomRegistry, pipeline: MessagePipeline, fanout: FanoutBridge):
        self.registry = registry
        self.pipeline = pipeline
        self.fanout = fanout
        # Format: {connection_id: ConnectionState}
        self.connections: Dict[str, ConnectionState] = {}
        # Format: {room_code: {connection_id, ...}}
        self.room_members: Dict[str, Set[str]] = {}

    def on_connect(self, transport) -> str:
        connection_id = str(uuid.uuid4())
        self.connections[connection_id] = ConnectionState(connection_id=connection_id, transport=transport)
        logger.info(f"Connection {connection_id} registered (local connections: {len(self.connections)})")
        return connection_id

    def on_disconnect(self, connection_id: str):
        state = self.connections.pop(connection_id, None)
        if state is None:
            return
        room_code = state.room_code
        self._unbind(state)
        duration = (datetime.now(timezone.utc) - state.connected_at).total_seconds()
        logger.info(f"Connection {connection_id} disconnected from room {room_code} after {duration:.1f}s")

    def get(self, connection_id: str) -> Optional[ConnectionState]:
        return self.connections.get(connection_id)

    def local_members(self, room_code: str) -> int:
        return len(self.room_members.get(room_code, ()))

    def _require(self, connection_id: str) -> ConnectionState:
        state = self.connections.get(connection_id)
        if state is None:
            raise InvalidRequest("Connection is closed")
        return state

    def _unbind(self, state: ConnectionState):
        if state.room_code is None:
            return
        members = self.room_members.get(state.room_code)
        if members is not None:
            members.discard(state.connection_id)
            if not members:
                del self.room_members[state.room_code]
        state.room_code = None

    def _bind(self, state: ConnectionState, room_code: str):
        # Leaving the previous room is silent: only joins are announced
        self._unbind(state)
        state.room_code = room_code
        self.room_members.setdefault(room_code, set()).add(state.connection_id)

    async def create_room(self, connection_id: str) -> RoomOut:
        self._require(connection_id)
        room = await self.registry.create_room()
        state = self._require(connection_id)
        self._bind(state, room.code)
        logger.info(f"Connection {connection_id} created and entered room {room.code}")
        return room

    async def join_room(self, connection_id: str, code: str, nickname: Optional[str] = None) -> RoomOut:
        self._require(connection_id)
        if not code or not code.strip():
            raise InvalidRequest("Room code is required")

        room = await self.registry.find_room_by_code(code)
        if room is None:
            logger.info(f"Join rejected for connection {connection_id}: room {code} not found")
            raise NotFound("Room not found")

        state = self._require(connection_id)
        self._bind(state, room.code)
        if nickname and nickname.strip():
            state.nickname = nickname.strip()
        logger.info(f"Connection {connection_id} ({state.nickname}) joined room {room.code}")

        try:
            await self.fanout.publish(
                room.code,
                PARTICIPANT_JOINED_EVENT,
                {"roomCode": room.code, "nickname": state.nickname},
                exclude=connection_id,
            )
        except TransportFailure:
            # the join stands; only members on other instances miss the announcement
            logger.warning(f"Connection {connection_id} joined room {room.code} but the presence broadcast failed")
        return room

    async def send_message(self, connection_id: str, room_code: str, sender: str, content: str) -> MessageOut:
        state = self._require(connection_id)
        request = parse_payload(SendMessageRequest, {"roomCode": room_code, "sender": sender, "content": content})
        if state.room_code != request.roomCode:
            # Unknown rooms report NotFound before membership is considered
            room = await self.registry.find_room_by_code(request.roomCode)
            if room is not None:
                logger.warning(f"Connection {connection_id} tried to send to room {request.roomCode} without joining it")
                raise InvalidRequest("Join the room before sending messages")
        return await self.pipeline.send_message(request.roomCode, request.sender, request.content)

    async def deliver(self, envelope: dict):
        """Fanout handler: push an envelope to the local members of its room."""
        room_code = envelope["roomCode"]
        exclude = envelope.get("exclude")
        targets = [
            self.connections[conn_id]
            for conn_id in self.room_members.get(room_code, ())
            if conn_id != exclude and conn_id in self.connections
        ]
        if not targets:
            return

        frame = server_frame(envelope["event"], envelope.get("payload") or {})
        results = await asyncio.gather(*(self._safe_send(state, frame) for state in targets))

        for state, ok in zip(targets, results):
            if not ok and state.connection_id in self.connections:
                logger.info(f"Cleaned up unreachable connection {state.connection_id} from room {room_code}")
                self.on_disconnect(state.connection_id)
        logger.debug(f"Delivered {envelope['event']} to {results.count(True)} connections in room {room_code}")

    async def _safe_send(self, state: ConnectionState, frame: dict) -> bool:
        try:
            await state.transport.send_json(frame)
            return True
        except Exception as e:
            logger.warning(f"Error sending to connection {state.connection_id}: {e}")
            return False
