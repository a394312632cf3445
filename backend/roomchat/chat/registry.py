"""Connection registry: the source of truth for presence.

Live connections are keyed by ``(user_id, session_id)``, so one user may hold
several simultaneous sessions (multi-device). A user is online iff their
session set is non-empty; ``PresenceBroadcaster`` is told exactly once per
transition.
"""
import asyncio
import logging
from typing import Dict, List, Optional

from .models import Session
from .presence import PresenceBroadcaster

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Tracks live sessions per user.

    All mutations run under a single registry lock. Presence announcements
    are enqueue-only and happen inside the lock, so a user's online/offline
    events are emitted in transition order.
    """

    def __init__(self, presence: PresenceBroadcaster, queue_size: int = 256) -> None:
        self._presence = presence
        self._queue_size = queue_size

        # user_id -> {session_id -> Session}
        self._user_sessions: Dict[str, Dict[str, Session]] = {}

        # session_id -> Session
        self._sessions: Dict[str, Session] = {}

        self._lock = asyncio.Lock()

    async def register(
        self, user_id: str, username: str, session_id: Optional[str] = None
    ) -> Session:
        """Create and store a session for an authenticated user.

        Announces "online" if this is the user's first live session.
        """
        kwargs = {"session_id": session_id} if session_id else {}
        session = Session(
            user_id=user_id,
            username=username,
            queue_size=self._queue_size,
            **kwargs,
        )

        async with self._lock:
            user_sessions = self._user_sessions.setdefault(user_id, {})
            came_online = not user_sessions
            user_sessions[session.session_id] = session
            self._sessions[session.session_id] = session

            logger.info(
                f"[Registry] Registered session {session.session_id} for {username} "
                f"({len(user_sessions)} live)"
            )
            if came_online:
                self._presence.announce(user_id, username, True, self._sessions.values())

        return session

    async def unregister(self, session_id: str) -> Optional[Session]:
        """Remove a session. Announces "offline" if it was the user's last.

        Unknown or already-removed session ids are a no-op, so a repeated
        teardown never produces a second offline broadcast.
        """
        async with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                return None

            user_sessions = self._user_sessions.get(session.user_id, {})
            user_sessions.pop(session_id, None)
            went_offline = not user_sessions
            if went_offline:
                self._user_sessions.pop(session.user_id, None)

            logger.info(
                f"[Registry] Unregistered session {session_id} for {session.username} "
                f"({len(user_sessions)} live)"
            )
            if went_offline:
                self._presence.announce(
                    session.user_id, session.username, False, self._sessions.values()
                )

        return session

    def is_online(self, user_id: str) -> bool:
        return bool(self._user_sessions.get(user_id))

    def sessions_for(self, user_id: str) -> List[Session]:
        return list(self._user_sessions.get(user_id, {}).values())

    def all_sessions(self) -> List[Session]:
        return list(self._sessions.values())

    def online_user_ids(self) -> List[str]:
        return list(self._user_sessions.keys())
