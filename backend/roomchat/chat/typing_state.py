"""Ephemeral, self-expiring typing indicators.

One ``TypingState`` per (user, room). Each state owns an expiry task; any
refresh, explicit stop or disconnect cancels it, so no timer outlives the
state it belongs to.
"""
import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from .models import Session, TypingState
from .rooms import RoomManager

logger = logging.getLogger(__name__)

TYPING_EVENT = "user_typing"


class TypingCoordinator:
    """Tracks who is typing where and broadcasts start/stop transitions."""

    def __init__(self, rooms: RoomManager, timeout_ms: int = 1000) -> None:
        self._rooms = rooms
        self._timeout = timeout_ms / 1000.0

        # (user_id, room_id) -> TypingState
        self._states: Dict[Tuple[str, str], TypingState] = {}

    async def set_typing(self, session: Session, room_id: str, is_typing: bool) -> None:
        """Start/refresh (``is_typing=True``) or stop typing in a room.

        Every start call re-broadcasts and pushes the expiry forward.

        Raises:
            RoomNotFound: if the room id is unknown.
        """
        self._rooms.get_room(room_id)
        key = (session.user_id, room_id)

        async with self._rooms.lock_for(room_id):
            if is_typing:
                self._cancel(key)
                loop = asyncio.get_running_loop()
                state = TypingState(
                    user_id=session.user_id,
                    room_id=room_id,
                    session_id=session.session_id,
                    expires_at=loop.time() + self._timeout,
                )
                state.timer = asyncio.create_task(self._expire(key, state, session.username))
                self._states[key] = state
                self._broadcast(room_id, session.username, True, exclude=session)
            else:
                self._cancel(key)
                self._broadcast(room_id, session.username, False, exclude=session)

    def is_typing(self, user_id: str, room_id: str) -> bool:
        return (user_id, room_id) in self._states

    async def drop_session(self, session: Session) -> int:
        """Cancel every typing state last set by this session.

        Peers are told the user stopped typing so no indicator is left behind.
        """
        owned = [
            key for key, state in list(self._states.items())
            if state.session_id == session.session_id
        ]
        for key in owned:
            room_id = key[1]
            async with self._rooms.lock_for(room_id):
                state = self._states.get(key)
                if state is None or state.session_id != session.session_id:
                    continue
                self._cancel(key)
                self._broadcast(room_id, session.username, False, exclude=session)
        if owned:
            logger.debug(f"[Typing] Cleared {len(owned)} typing states for {session.username}")
        return len(owned)

    async def cancel_all(self) -> None:
        """Cancel every expiry timer and wait for the tasks to finish."""
        timers = self.active_timers()
        for key in list(self._states):
            self._cancel(key)
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)

    def active_timers(self) -> List[asyncio.Task]:
        return [s.timer for s in self._states.values() if s.timer is not None]

    def _cancel(self, key: Tuple[str, str]) -> None:
        state = self._states.pop(key, None)
        if state is not None and state.timer is not None:
            state.timer.cancel()

    async def _expire(self, key: Tuple[str, str], state: TypingState, username: str) -> None:
        loop = asyncio.get_running_loop()
        # Sleep until expires_at; loop timers may fire marginally early
        while True:
            remaining = state.expires_at - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(remaining)

        async with self._rooms.lock_for(state.room_id):
            if self._states.get(key) is not state:
                return
            del self._states[key]
            logger.debug(f"[Typing] {username} typing expired in {state.room_id}")
            self._broadcast(state.room_id, username, False, exclude_session_id=state.session_id)

    def _broadcast(
        self,
        room_id: str,
        username: str,
        is_typing: bool,
        exclude: Optional[Session] = None,
        exclude_session_id: Optional[str] = None,
    ) -> None:
        if exclude is None and exclude_session_id is not None:
            exclude = next(
                (s for s in self._rooms.subscribers(room_id) if s.session_id == exclude_session_id),
                None,
            )
        self._rooms.broadcast(
            room_id,
            TYPING_EVENT,
            {"username": username, "roomId": room_id, "isTyping": is_typing},
            exclude=exclude,
        )
