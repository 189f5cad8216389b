import redis
import json
from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD
from redis_keys import REDIS_ROOM_CHANNEL, REDIS_ROOM_CHANNEL_PATTERN
from errors import TransportFailure
from logging_config import get_logger

logger = get_logger(__name__)


class RedisBackend:
    def __init__(self, host: str = REDIS_HOST, port: int = REDIS_PORT, password: str = REDIS_PASSWORD):
        self.host = host
        self.port = port
        logger.info(f"Initializing RedisBackend with connection to {host}:{port}")
        self.redis_client = redis.Redis(host=host, port=port, password=password, decode_responses=True)
        # Separate connection for pub/sub (required by Redis)
        self.pubsub_client = redis.Redis(host=host, port=port, password=password, decode_responses=True)

    def connect(self):
        """Fail fast when Redis is unreachable at startup."""
        try:
            self.redis_client.ping()
            self.pubsub_client.ping()
            logger.info(f"Redis clients connected successfully to {self.host}:{self.port}")
        except redis.exceptions.RedisError as e:
            logger.error(f"Failed to connect to Redis at {self.host}:{self.port}: {e}", exc_info=True)
            raise TransportFailure()

    def get_room_channel_name(self, room_code: str) -> str:
        """Get the Redis pub/sub channel name for a room."""
        return REDIS_ROOM_CHANNEL.format(slug=room_code)

    def publish_message(self, room_code: str, envelope: dict) -> int:
        """Publish an envelope to the room's Redis pub/sub channel."""
        channel = self.get_room_channel_name(room_code)
        try:
            subscribers = self.redis_client.publish(channel, json.dumps(envelope))
        except redis.exceptions.RedisError as e:
            logger.error(f"Failed to publish to channel {channel}: {e}")
            raise TransportFailure()
        logger.debug(f"Published {envelope.get('event')} to room {room_code} channel {channel}, {subscribers} subscribers")
        return subscribers

    def subscribe_to_rooms(self):
        """Create a pubsub subscriber for every room channel."""
        logger.debug(f"Subscribing to Redis pattern {REDIS_ROOM_CHANNEL_PATTERN}")
        pubsub = self.pubsub_client.pubsub()
        pubsub.psubscribe(REDIS_ROOM_CHANNEL_PATTERN)
        logger.debug(f"Successfully subscribed to pattern {REDIS_ROOM_CHANNEL_PATTERN}")
        return pubsub

    def close(self):
        for client in (self.redis_client, self.pubsub_client):
            try:
                client.close()
            except redis.exceptions.RedisError as e:
                logger.debug(f"Error closing Redis client: {e}")
