"""Room-scoped broadcast across server instances.

Publishing "to room X" hands an envelope to every subscribed instance; each
instance delivers it to the connections it physically holds. The bridge is a
best-effort relay: nothing is persisted, retried or deduplicated here.
"""
import asyncio
import json
from typing import Awaitable, Callable, List, Optional

import redis

from backend import RedisBackend
from constants import FANOUT_BACKEND, INSTANCE_ID
from errors import TransportFailure
from logging_config import get_logger

logger = get_logger(__name__)

Handler = Callable[[dict], Awaitable[None]]


def build_envelope(room_code: str, event: str, payload: dict, exclude: Optional[str] = None,
                   origin: str = INSTANCE_ID) -> dict:
    return {
        "roomCode": room_code,
        "event": event,
        "payload": payload,
        "exclude": exclude,
        "origin": origin,
    }


class FanoutBridge:
    name = "base"

    def __init__(self, instance_id: str = INSTANCE_ID):
        self.instance_id = instance_id
        self.handlers: List[Handler] = []

    async def subscribe(self, handler: Handler):
        self.handlers.append(handler)

    async def publish(self, room_code: str, event: str, payload: dict, exclude: Optional[str] = None):
        raise NotImplementedError

    async def close(self):
        self.handlers.clear()

    async def _dispatch(self, envelope: dict):
        for handler in list(self.handlers):
            try:
                await handler(envelope)
            except Exception as e:
                logger.error(f"Fanout handler failed for {envelope.get('event')} in room {envelope.get('roomCode')}: {e}", exc_info=True)


class LocalFanout(FanoutBridge):
    """Single-instance bridge: envelopes go straight to this process's handlers."""

    name = "local"

    async def publish(self, room_code: str, event: str, payload: dict, exclude: Optional[str] = None):
        envelope = build_envelope(room_code, event, payload, exclude, self.instance_id)
        logger.debug(f"Local fanout of {event} to room {room_code}")
        await self._dispatch(envelope)


class RedisFanout(FanoutBridge):
    """Fanout over Redis pub/sub.

    Local members are served directly by the publishing instance, so they keep
    receiving events while Redis is down. Envelopes that come back through the
    pattern subscription with this instance as origin are dropped, which keeps
    delivery to each connection at one copy per publish.
    """

    name = "redis"

    def __init__(self, backend: RedisBackend = None, instance_id: str = INSTANCE_ID,
                 poll_timeout: float = 1.0, max_backoff: float = 2.0):
        super().__init__(instance_id)
        self.backend = backend or RedisBackend()
        self.poll_timeout = poll_timeout
        self.max_backoff = max_backoff
        self._listener: Optional[asyncio.Task] = None
        self._closed = False

    async def subscribe(self, handler: Handler):
        await super().subscribe(handler)
        if self._listener is None or self._listener.done():
            self._listener = asyncio.create_task(self._listen())
            logger.info(f"Started Redis pub/sub listener for instance {self.instance_id}")

    async def publish(self, room_code: str, event: str, payload: dict, exclude: Optional[str] = None):
        envelope = build_envelope(room_code, event, payload, exclude, self.instance_id)
        # Redis publish runs inline (no await before it) so publishes leave in call order
        failure = None
        try:
            self.backend.publish_message(room_code, envelope)
        except TransportFailure as e:
            failure = e
        await self._dispatch(envelope)
        if failure is not None:
            raise failure

    def _next_message(self, pubsub):
        """Blocking call to get next message from Redis pub/sub with timeout."""
        return pubsub.get_message(timeout=self.poll_timeout, ignore_subscribe_messages=True)

    async def _listen(self):
        loop = asyncio.get_running_loop()
        failures = 0
        while not self._closed:
            pubsub = None
            try:
                pubsub = await loop.run_in_executor(None, self.backend.subscribe_to_rooms)
                failures = 0
                while not self._closed:
                    message = await loop.run_in_executor(None, self._next_message, pubsub)
                    if message is None:
                        continue
                    await self._handle_message(message)
            except asyncio.CancelledError:
                logger.info(f"Redis listener task cancelled for instance {self.instance_id}")
                raise
            except redis.exceptions.RedisError as e:
                failures += 1
                delay = min(failures * 0.05, self.max_backoff)
                logger.error(f"Redis listener lost its subscription ({e}), retrying in {delay:.2f}s")
                await asyncio.sleep(delay)
            finally:
                if pubsub is not None:
                    try:
                        pubsub.close()
                    except redis.exceptions.RedisError as e:
                        logger.debug(f"Error closing pub/sub: {e}")

    async def _handle_message(self, message: dict):
        if message.get("type") not in ("message", "pmessage"):
            return
        try:
            envelope = json.loads(message["data"])
        except (json.JSONDecodeError, TypeError) as e:
            logger.error(f"Error parsing envelope from channel {message.get('channel')}: {e}")
            return
        if not isinstance(envelope, dict) or not envelope.get("roomCode") or not envelope.get("event"):
            logger.warning(f"Dropping malformed envelope from channel {message.get('channel')}")
            return
        if envelope.get("origin") == self.instance_id:
            # already delivered locally by publish
            return
        logger.debug(f"Received {envelope['event']} for room {envelope['roomCode']} from instance {envelope.get('origin')}")
        await self._dispatch(envelope)

    async def close(self):
        self._closed = True
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        self.backend.close()
        await super().close()


def make_fanout(kind: str = FANOUT_BACKEND) -> FanoutBridge:
    if kind == "local":
        return LocalFanout()
    if kind == "redis":
        return RedisFanout()
    raise ValueError(f"Unknown fanout backend: {kind}")
