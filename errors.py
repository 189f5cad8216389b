"""Error taxonomy shared by the socket and HTTP surfaces.

Every error carries a short message that is safe to send to a client.
Internal details (driver errors, tracebacks) are logged where they are
caught and never copied into ``message``.
"""


class RelayError(Exception):
    kind = "error"
    default_message = "Request failed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(RelayError):
    kind = "validation_error"
    default_message = "Invalid payload"


class InvalidRequest(RelayError):
    kind = "invalid_request"
    default_message = "Invalid request"


class NotFound(RelayError):
    kind = "not_found"
    default_message = "Room not found"


class RoomCreationExhausted(RelayError):
    kind = "room_creation_exhausted"
    default_message = "Unable to create room"


class TransportFailure(RelayError):
    kind = "transport_failure"
    default_message = "Service unavailable"


class DuplicateRoomCode(Exception):
    """Raised by the room store when a generated code is already taken."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Room code {code!r} already exists")
