"""Online/offline fan-out for connection registry transitions."""
import logging
from typing import Iterable

from .models import Session

logger = logging.getLogger(__name__)

STATUS_EVENT = "user_status_change"


class PresenceBroadcaster:
    """Emits ``user_status_change`` to every connected session.

    Only ``ConnectionRegistry`` calls ``announce``, and only when a user's
    derived online flag actually flips. The subject's own sessions are
    excluded from the fan-out.
    """

    def announce(
        self,
        user_id: str,
        username: str,
        online: bool,
        recipients: Iterable[Session],
    ) -> int:
        """Broadcast a status change. Returns the number of sessions reached."""
        payload = {"username": username, "isOnline": online}
        delivered = 0
        for session in recipients:
            if session.user_id == user_id:
                continue
            if session.deliver(STATUS_EVENT, payload):
                delivered += 1
        logger.info(
            f"[Presence] {username} is {'online' if online else 'offline'} "
            f"(notified {delivered} sessions)"
        )
        return delivered
