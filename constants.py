import os
import uuid

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./roomrelay.db")

# "redis" fans out across instances, "local" keeps broadcasts in-process
FANOUT_BACKEND = os.getenv("FANOUT_BACKEND", "redis")

ROOM_CODE_LENGTH = min(max(int(os.getenv("ROOM_CODE_LENGTH", 6)), 3), 12)
ROOM_CODE_ATTEMPTS = int(os.getenv("ROOM_CODE_ATTEMPTS", 5))

SENDER_MAX_LENGTH = 64
NICKNAME_MAX_LENGTH = 64
CONTENT_MAX_LENGTH = 5000

HISTORY_DEFAULT_LIMIT = int(os.getenv("HISTORY_DEFAULT_LIMIT", 50))
HISTORY_MAX_LIMIT = int(os.getenv("HISTORY_MAX_LIMIT", 100))

INSTANCE_ID = os.getenv("INSTANCE_ID", uuid.uuid4().hex[:12])

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
