"""Typed request payloads for socket events.

Raw frames are parsed into these models before any room or store access; the
first constraint violation is reported back to the client.
"""
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from typing import Any, Optional

from constants import CONTENT_MAX_LENGTH, NICKNAME_MAX_LENGTH, SENDER_MAX_LENGTH
from errors import InvalidRequest, ValidationError


class EventFrame(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event: str = Field(min_length=1)
    data: Optional[Any] = None
    ack: Optional[int] = None

class JoinRoomRequest(BaseModel):
    code: str = ""
    nickname: Optional[str] = Field(default=None, max_length=NICKNAME_MAX_LENGTH)

class SendMessageRequest(BaseModel):
    roomCode: str = Field(min_length=1)
    sender: str = Field(min_length=1, max_length=SENDER_MAX_LENGTH)
    content: str = Field(min_length=1, max_length=CONTENT_MAX_LENGTH)


def server_frame(event: str, data: dict) -> dict:
    return {"event": event, "data": data}


def ack_frame(ack_id: int, data: dict) -> dict:
    return {"event": "ack", "ack": ack_id, "data": data}


def parse_payload(model, data):
    """Build ``model`` from a loosely typed payload or raise a client-safe ValidationError."""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidRequest("Payload must be an object")
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "payload"
        raise ValidationError(f"{field}: {first.get('msg', 'invalid value')}")
