REDIS_ROOM_CHANNEL = "room:channel:{slug}" # room code - pub/sub channel name
REDIS_ROOM_CHANNEL_PATTERN = REDIS_ROOM_CHANNEL.format(slug="*") # every room, one listener per instance

# **Envelope published on `room:channel:{code}`**
# - `roomCode` = room the event is scoped to
# - `event` = server event name (`chat:message`, `room:participant-joined`)
# - `payload` = event body sent to clients as-is
# - `exclude` = connection id that must not receive it (or null)
# - `origin` = instance id of the publisher
