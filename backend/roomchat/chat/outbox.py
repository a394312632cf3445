"""Per-user personal channel for notifications emitted while offline."""
import logging
from collections import deque
from typing import Deque, Dict, List

from .models import Notification, Session

logger = logging.getLogger(__name__)


class NotificationOutbox:
    """Bounded FIFO of pending notifications per user.

    Entries are flushed to the user's next registered session, in emission
    order. Once ``limit`` is reached the oldest entry is dropped.
    """

    def __init__(self, limit: int = 100) -> None:
        self._limit = limit
        self._pending: Dict[str, Deque[Notification]] = {}

    def push(self, user_id: str, notification: Notification) -> None:
        queue = self._pending.setdefault(user_id, deque(maxlen=self._limit))
        queue.append(notification)
        logger.debug(f"[Outbox] Queued notification for {user_id} ({len(queue)} pending)")

    def pending(self, user_id: str) -> List[Notification]:
        return list(self._pending.get(user_id, ()))

    def flush(self, user_id: str, session: Session) -> int:
        """Deliver and clear a user's pending notifications."""
        queue = self._pending.pop(user_id, None)
        if not queue:
            return 0
        for notification in queue:
            session.deliver("notification", notification.model_dump(mode="json"))
        logger.info(f"[Outbox] Flushed {len(queue)} notifications to {session.username}")
        return len(queue)

    def clear(self) -> None:
        self._pending.clear()
