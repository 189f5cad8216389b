from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional

from constants import CONTENT_MAX_LENGTH, SENDER_MAX_LENGTH


class RoomOut(BaseModel):
    id: int
    code: str
    createdAt: datetime

class MessageOut(BaseModel):
    id: int
    roomId: int
    roomCode: str
    sender: str
    content: str
    createdAt: datetime

class PostMessageRequest(BaseModel):
    sender: str = Field(min_length=1, max_length=SENDER_MAX_LENGTH)
    content: str = Field(min_length=1, max_length=CONTENT_MAX_LENGTH)

class RoomDetailsResponse(BaseModel):
    room: RoomOut
    local_participants: int

class HealthResponse(BaseModel):
    status: str
    instance: str
    fanout: Optional[str] = None
