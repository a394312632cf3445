"""Data models for the real-time chat core.

Wire-facing records (``Room``, ``Message``, ``RoomSummary``,
``Notification``) are pydantic models whose ``model_dump(mode="json")`` output
is sent to clients as-is. Runtime-only records (``Session``,
``TypingState``) are plain dataclasses because they hold asyncio objects.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Set

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Enums
# =============================================================================


class RoomKind(str, Enum):
    """Visibility of a room.

    Attributes:
        PUBLIC: Listed and joinable by any authenticated user.
        PRIVATE: Created with an explicit participant list.
    """
    PUBLIC = "public"
    PRIVATE = "private"


class MessageKind(str, Enum):
    """Type of chat message.

    Attributes:
        TEXT: Plain text; content must be non-empty.
        FILE: Opaque JSON string referencing an uploaded file
            (fileUrl, filename, size). Not inspected by the server.
    """
    TEXT = "text"
    FILE = "file"


# =============================================================================
# Wire models
# =============================================================================


class Room(BaseModel):
    """A named room.

    ``memberIds`` is durable membership, used for offline notification
    routing. Live subscription is tracked per ``Session`` and in
    ``RoomManager``, never here.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Room ID")
    name: str = Field(..., description="Display name")
    type: RoomKind = Field(default=RoomKind.PUBLIC, description="public or private")
    memberIds: Set[str] = Field(default_factory=set, description="Durable member user IDs")
    createdAt: datetime = Field(default_factory=utcnow)


class RoomSummary(BaseModel):
    id: str
    name: str
    type: RoomKind
    members: int = Field(..., description="Member count")


class Message(BaseModel):
    """Complete chat message as stored in the room log and broadcast.

    Immutable after creation except ``readBy``, which only grows.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique message ID")
    roomId: str = Field(..., description="Room this message belongs to")
    senderId: str = Field(..., description="User ID of the sender")
    sender: str = Field(default="", description="Username of the sender")
    content: str = Field(..., description="Text, or a JSON file reference for type=file")
    type: MessageKind = Field(default=MessageKind.TEXT)
    timestamp: datetime = Field(default_factory=utcnow)
    readBy: Set[str] = Field(default_factory=set, description="User IDs who have seen it")


class Notification(BaseModel):
    """Truncated message preview addressed to an offline member."""
    type: str = "new_message"
    roomId: str
    sender: str
    content: str


# =============================================================================
# Runtime records
# =============================================================================


@dataclass
class TypingState:
    user_id: str
    room_id: str
    session_id: str
    expires_at: float
    timer: Optional[asyncio.Task] = None


@dataclass(eq=False)
class Session:
    """Explicit context for one authenticated live connection.

    Handlers receive this value instead of reading identity off the transport
    object. Outbound events go through ``deliver``, which never blocks.
    """
    user_id: str
    username: str
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    joined_rooms: Set[str] = field(default_factory=set)
    queue_size: int = 256
    closed: bool = False
    outbox: asyncio.Queue = field(init=False)

    def __post_init__(self) -> None:
        self.outbox = asyncio.Queue(maxsize=self.queue_size)

    def deliver(self, event: str, data: Any) -> bool:
        """Enqueue an outbound event. Returns False if it was dropped."""
        if self.closed:
            return False
        try:
            self.outbox.put_nowait({"event": event, "data": data})
            return True
        except asyncio.QueueFull:
            logger.warning(
                f"[Session] Outbound queue full for session {self.session_id} "
                f"({self.username}); dropped {event}"
            )
            return False

    def close(self) -> None:
        """Stop accepting events and wake the writer with a ``None`` sentinel."""
        if self.closed:
            return
        self.closed = True
        try:
            self.outbox.put_nowait(None)
        except asyncio.QueueFull:
            # Writer is busy draining and checks ``closed`` after each event
            pass
