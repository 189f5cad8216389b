from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from database import Base

# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigId = BigInteger().with_variant(Integer, "sqlite")


def utcnow():
    return datetime.now(timezone.utc)


class Room(Base):
    __tablename__ = "rooms"

    id = Column(BigId, primary_key=True, autoincrement=True)
    code = Column(String(12), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    messages = relationship("RoomMessage", back_populates="room", cascade="all, delete-orphan", passive_deletes=True)

    def __repr__(self):
        return f"<Room(id={self.id}, code='{self.code}')>"


class RoomMessage(Base):
    __tablename__ = "room_messages"

    id = Column(BigId, primary_key=True, autoincrement=True)
    room_id = Column(BigId, ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False)
    sender = Column(String(64), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    room = relationship("Room", back_populates="messages")

    __table_args__ = (
        Index("idx_room_messages_room_id_id", "room_id", "id"),
    )

    def __repr__(self):
        return f"<RoomMessage(id={self.id}, room_id={self.room_id}, content='{self.content[:20]}...')>"
