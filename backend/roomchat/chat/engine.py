"""Real-time session, presence and room-broadcast engine.

``ChatEngine`` is the single owner of all live chat state. It is built once
in the application lifespan, seeds the default public room, and is torn down
with ``shutdown()``. Transport handlers only talk to the engine through
``Session`` values.

Lifecycle of a connection:
    1. ``authenticate(token)`` verifies the token, registers a session,
       announces "online" on the user's first session and flushes any
       notifications queued while the user was offline.
    2. ``join_room`` / ``leave_room`` / ``send_message`` / ``set_typing`` /
       ``mark_read`` operate on the session's rooms.
    3. ``disconnect(session)`` cancels the session's typing timers, drops its
       room subscriptions (membership is kept), unregisters it and announces
       "offline" if it was the user's last session.
"""
import logging
from typing import Any, Iterable, List, Optional

from roomchat.config import ChatSettings

from .messages import MessageRouter
from .models import Message, MessageKind, Room, RoomKind, RoomSummary, Session
from .outbox import NotificationOutbox
from .presence import PresenceBroadcaster
from .receipts import ReadReceiptTracker
from .registry import ConnectionRegistry
from .rooms import RoomManager
from .typing_state import TypingCoordinator

logger = logging.getLogger(__name__)


class ChatEngine:
    """Composes the chat components around one shared state."""

    def __init__(self, verifier: Any, settings: Optional[ChatSettings] = None) -> None:
        """Build the engine.

        Args:
            verifier: Object with ``verify(token) -> Identity`` raising
                ``AuthError`` on failure.
            settings: Chat settings; defaults are used when omitted.
        """
        self.settings = settings or ChatSettings()
        self.verifier = verifier

        self.presence = PresenceBroadcaster()
        self.registry = ConnectionRegistry(self.presence, queue_size=self.settings.outbound_queue_size)
        self.rooms = RoomManager()
        self.outbox = NotificationOutbox(limit=self.settings.pending_notification_limit)
        self.router = MessageRouter(
            self.rooms,
            self.registry,
            self.outbox,
            preview_chars=self.settings.notification_preview_chars,
        )
        self.typing = TypingCoordinator(self.rooms, timeout_ms=self.settings.typing_timeout_ms)
        self.receipts = ReadReceiptTracker(self.rooms)

        self.default_room = self.rooms.create_room(
            self.settings.default_room_name,
            RoomKind.PUBLIC,
            room_id=self.settings.default_room_id,
        )

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def authenticate(self, token: Optional[str]) -> Session:
        """Verify a token and register a new live session.

        Raises:
            AuthError: invalid or missing token. Nothing is registered.
        """
        identity = self.verifier.verify(token)
        session = await self.registry.register(identity.user_id, identity.username)
        session.deliver("authenticated", {
            "success": True,
            "userId": identity.user_id,
            "username": identity.username,
            "sessionId": session.session_id,
        })
        self.outbox.flush(identity.user_id, session)
        return session

    async def disconnect(self, session: Session) -> None:
        """Tear a session down. Safe to call more than once."""
        await self.typing.drop_session(session)
        await self.rooms.drop_session(session)
        await self.registry.unregister(session.session_id)
        session.close()

    async def shutdown(self) -> None:
        """Cancel every typing timer and close every live session."""
        await self.typing.cancel_all()
        for session in self.registry.all_sessions():
            await self.rooms.drop_session(session)
            session.close()
        self.outbox.clear()
        logger.info("[Engine] Shutdown complete")

    # =========================================================================
    # Room operations
    # =========================================================================

    def create_room(
        self, name: str, kind: Any = RoomKind.PUBLIC, member_ids: Iterable[str] = ()
    ) -> Room:
        return self.rooms.create_room(name, RoomKind(kind), member_ids)

    def list_rooms(self) -> List[RoomSummary]:
        return self.rooms.list_rooms()

    async def join_room(self, session: Session, room_id: str) -> Room:
        return await self.rooms.join(session, room_id)

    async def leave_room(self, session: Session, room_id: str) -> bool:
        return await self.rooms.leave(session, room_id)

    async def send_message(
        self, session: Session, room_id: str, content: Any, kind: Any = MessageKind.TEXT
    ) -> Message:
        return await self.router.send(session, room_id, content, kind)

    async def set_typing(self, session: Session, room_id: str, is_typing: bool) -> None:
        await self.typing.set_typing(session, room_id, is_typing)

    async def mark_read(
        self, session: Session, room_id: str, message_ids: Iterable[str]
    ) -> List[Message]:
        return await self.receipts.mark_read(session, room_id, message_ids)

    def is_online(self, user_id: str) -> bool:
        return self.registry.is_online(user_id)
