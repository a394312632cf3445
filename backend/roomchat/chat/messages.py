"""Message routing: validate, timestamp, log, fan out, notify offline members."""
import logging
from typing import Any

from .errors import ValidationError
from .models import Message, MessageKind, Notification, Session, utcnow
from .outbox import NotificationOutbox
from .registry import ConnectionRegistry
from .rooms import RoomManager

logger = logging.getLogger(__name__)


def truncate_preview(content: str, limit: int = 50) -> str:
    """Cap a notification preview, appending "..." when truncated."""
    if len(content) > limit:
        return content[:limit] + "..."
    return content


class MessageRouter:
    """Accepts messages into a room's canonical order.

    Within one room, ``send`` is serialized by the room lock: id and
    timestamp assignment, log append, and enqueueing to every subscriber
    happen as one step, so no subscriber can observe message N+1 before N.
    """

    def __init__(
        self,
        rooms: RoomManager,
        registry: ConnectionRegistry,
        outbox: NotificationOutbox,
        preview_chars: int = 50,
    ) -> None:
        self._rooms = rooms
        self._registry = registry
        self._outbox = outbox
        self._preview_chars = preview_chars

    async def send(
        self,
        session: Session,
        room_id: str,
        content: Any,
        kind: Any = MessageKind.TEXT,
    ) -> Message:
        """Create a message in a room and broadcast it.

        Args:
            session: Sender's session context.
            room_id: Target room.
            content: Text, or the JSON file reference for ``kind="file"``.
            kind: "text" or "file".

        Returns:
            The stored Message.

        Raises:
            ValidationError: unknown kind, non-string or empty text content.
            RoomNotFound: unknown room. Nothing is logged or broadcast.
        """
        try:
            kind = MessageKind(kind)
        except ValueError:
            raise ValidationError(f"Unknown message type: {kind}")

        if not isinstance(content, str):
            raise ValidationError("Message content must be a string")
        if kind == MessageKind.TEXT and not content.strip():
            raise ValidationError("Message content is required")

        room = self._rooms.get_room(room_id)

        async with self._rooms.lock_for(room_id):
            timestamp = utcnow()
            previous = self._rooms.last_message(room_id)
            if previous is not None and timestamp < previous.timestamp:
                timestamp = previous.timestamp

            message = Message(
                roomId=room_id,
                senderId=session.user_id,
                sender=session.username,
                content=content,
                type=kind,
                timestamp=timestamp,
                readBy={session.user_id},
            )
            self._rooms.append_message(room_id, message)

            delivered = self._rooms.broadcast(
                room_id, "new_message", message.model_dump(mode="json")
            )
            notified = self._notify_offline_members(room.memberIds, message)

        logger.info(
            f"[Router] {session.username} -> {room_id}: message {message.id} "
            f"(delivered={delivered}, offline_notified={notified})"
        )
        return message

    def _notify_offline_members(self, member_ids, message: Message) -> int:
        preview = truncate_preview(message.content, self._preview_chars)
        notified = 0
        for user_id in sorted(member_ids):
            if self._registry.is_online(user_id):
                continue
            self._outbox.push(user_id, Notification(
                roomId=message.roomId,
                sender=message.sender,
                content=preview,
            ))
            notified += 1
        return notified
