"""Error taxonomy for the real-time chat core.

Every failure in this package resolves to a local no-op plus an optional
client-visible signal. Handlers catch ``ChatError`` and answer only the
originating session with ``error({code, message, event})``.
"""
from typing import Optional


class ChatError(Exception):
    """Base class for client-visible chat failures."""

    code = "chat_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_payload(self, event: Optional[str] = None) -> dict:
        payload = {"code": self.code, "message": self.message}
        if event:
            payload["event"] = event
        return payload


class AuthError(ChatError):
    """Invalid or missing credential. No state is mutated."""

    code = "auth_failed"


class NotAuthenticated(ChatError):
    """A room operation arrived before a successful ``authenticate``."""

    code = "not_authenticated"


class RoomNotFound(ChatError):
    """The operation targets an unknown room id."""

    code = "room_not_found"

    def __init__(self, room_id: str) -> None:
        super().__init__(f"Room not found: {room_id}")
        self.room_id = room_id


class ValidationError(ChatError):
    """Malformed or empty input, rejected before any mutation."""

    code = "validation_error"
