import random
import string
from typing import Optional

from constants import ROOM_CODE_ATTEMPTS, ROOM_CODE_LENGTH
from database import run_blocking
from errors import DuplicateRoomCode, RoomCreationExhausted
from logging_config import get_logger
from schemas.rooms import RoomOut
from stores import RoomStore

logger = get_logger(__name__)

ROOM_CODE_ALPHABET = string.ascii_lowercase + string.digits


def generate_room_code(length: int = ROOM_CODE_LENGTH) -> str:
    return ''.join(random.choices(ROOM_CODE_ALPHABET, k=length))


async def retry_on_collision(attempt, attempts: int = ROOM_CODE_ATTEMPTS):
    """Await ``attempt()`` until it stops raising DuplicateRoomCode.

    Any other exception propagates immediately. After ``attempts`` consecutive
    collisions RoomCreationExhausted is raised.
    """
    for number in range(1, attempts + 1):
        try:
            return await attempt()
        except DuplicateRoomCode as e:
            logger.warning(f"Room code collision on attempt {number}/{attempts}: {e.code}")
    logger.error(f"Room creation gave up after {attempts} consecutive code collisions")
    raise RoomCreationExhausted()


class RoomRegistry:
    def __init__(self, room_store: RoomStore, code_length: int = ROOM_CODE_LENGTH,
                 attempts: int = ROOM_CODE_ATTEMPTS, code_factory=generate_room_code):
        self.room_store = room_store
        self.code_length = code_length
        self.attempts = attempts
        self.code_factory = code_factory

    async def create_room(self) -> RoomOut:
        async def attempt():
            code = self.code_factory(self.code_length)
            return await run_blocking(self.room_store.insert, code)

        room = await retry_on_collision(attempt, self.attempts)
        logger.info(f"Room {room.code} created with id {room.id}")
        return room

    async def find_room_by_code(self, code: str) -> Optional[RoomOut]:
        room = await run_blocking(self.room_store.find_by_code, code)
        if room is None:
            logger.debug(f"Room {code} not found")
        return room
