"""Read receipts."""
import logging
from typing import Iterable, List

from .errors import ValidationError
from .models import Message, Session
from .rooms import RoomManager

logger = logging.getLogger(__name__)


class ReadReceiptTracker:
    """Adds readers to ``Message.readBy`` (grow-only set union).

    Unknown message ids and repeat reads are silent no-ops. Subscribers get a
    ``read_receipt`` event only for messages whose reader set changed.
    """

    def __init__(self, rooms: RoomManager) -> None:
        self._rooms = rooms

    async def mark_read(
        self, session: Session, room_id: str, message_ids: Iterable[str]
    ) -> List[Message]:
        """Mark messages in a room as read by the session's user.

        Returns:
            Messages whose ``readBy`` gained the reader.

        Raises:
            RoomNotFound: if the room id is unknown.
            ValidationError: if ``message_ids`` is not a list of ids.
        """
        if isinstance(message_ids, str) or not isinstance(message_ids, (list, tuple, set)):
            raise ValidationError("messageIds must be a list")

        self._rooms.get_room(room_id)
        changed: List[Message] = []

        async with self._rooms.lock_for(room_id):
            for message_id in message_ids:
                if not isinstance(message_id, str):
                    continue
                message = self._rooms.find_message(room_id, message_id)
                if message is None or session.user_id in message.readBy:
                    continue
                message.readBy.add(session.user_id)
                changed.append(message)

            for message in changed:
                self._rooms.broadcast(room_id, "read_receipt", {
                    "roomId": room_id,
                    "messageId": message.id,
                    "readBy": sorted(message.readBy),
                })

        if changed:
            logger.debug(
                f"[Receipts] {session.username} read {len(changed)} messages in {room_id}"
            )
        return changed
