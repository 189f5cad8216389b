from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from errors import DuplicateRoomCode, TransportFailure
from logging_config import get_logger
from models import Room, RoomMessage
from schemas.rooms import MessageOut, RoomOut

logger = get_logger(__name__)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they were written in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def room_out(room: Room) -> RoomOut:
    return RoomOut(id=room.id, code=room.code, createdAt=as_utc(room.created_at))


def message_out(message: RoomMessage, room_code: str) -> MessageOut:
    return MessageOut(
        id=message.id,
        roomId=message.room_id,
        roomCode=room_code,
        sender=message.sender,
        content=message.content,
        createdAt=as_utc(message.created_at),
    )


class RoomStore:
    """Durable rooms table. Code uniqueness is enforced by the unique constraint."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def insert(self, code: str) -> RoomOut:
        with self.session_factory() as db:
            room = Room(code=code)
            db.add(room)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.debug(f"Room code {code} collided with an existing room")
                raise DuplicateRoomCode(code)
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Database error while creating room {code}: {e}", exc_info=True)
                raise TransportFailure()
            db.refresh(room)
            logger.debug(f"Room {code} stored with id {room.id}")
            return room_out(room)

    def find_by_code(self, code: str) -> Optional[RoomOut]:
        try:
            with self.session_factory() as db:
                room = db.execute(select(Room).where(Room.code == code).limit(1)).scalar_one_or_none()
                return room_out(room) if room else None
        except SQLAlchemyError as e:
            logger.error(f"Database error while looking up room {code}: {e}", exc_info=True)
            raise TransportFailure()


class MessageStore:
    """Append-only room_messages table, ordered by id within a room."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def insert(self, room: RoomOut, sender: str, content: str) -> MessageOut:
        with self.session_factory() as db:
            message = RoomMessage(room_id=room.id, sender=sender, content=content)
            db.add(message)
            try:
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Database error while saving message to room {room.code}: {e}", exc_info=True)
                raise TransportFailure()
            db.refresh(message)
            return message_out(message, room.code)

    def recent(self, room: RoomOut, limit: int, before_id: Optional[int] = None) -> List[MessageOut]:
        query = select(RoomMessage).where(RoomMessage.room_id == room.id)
        if before_id is not None:
            query = query.where(RoomMessage.id < before_id)
        query = query.order_by(RoomMessage.id.desc()).limit(limit)
        try:
            with self.session_factory() as db:
                rows = db.execute(query).scalars().all()
                return [message_out(row, room.code) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Database error while reading history for room {room.code}: {e}", exc_info=True)
            raise TransportFailure()
