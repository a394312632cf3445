"""Room definitions, message logs and live subscriptions.

Each room is a pub/sub topic: ``RoomManager`` keeps an explicit subscriber
set per room and fans events out by enqueueing them on each subscriber's
``Session``. Two different notions of "in the room" coexist:

    - Membership (``Room.memberIds``): durable, drives offline notifications.
      Never removed on leave or disconnect.
    - Subscription (``Session.joined_rooms`` and the subscriber set):
      transient per session, drives live broadcast.

Every operation that must be ordered within a room (join, leave, send,
typing, read) runs under that room's ``asyncio.Lock``. Broadcasting while
holding the lock is safe because delivery never awaits.
"""
import asyncio
import logging
from typing import Dict, Iterable, List, Optional

from .errors import RoomNotFound
from .models import Message, Room, RoomKind, RoomSummary, Session

logger = logging.getLogger(__name__)

class RoomManager:
    """Owns rooms, their message logs and their live subscriber sets."""

    def __init__(self) -> None:
        # room_id -> Room
        self._rooms: Dict[str, Room] = {}

        # room_id -> list of messages (append-only, canonical order)
        self._logs: Dict[str, List[Message]] = {}

        # room_id -> {message_id -> Message}
        self._index: Dict[str, Dict[str, Message]] = {}

        # room_id -> {session_id -> Session}
        self._subscribers: Dict[str, Dict[str, Session]] = {}

        # room_id -> serialization point for that room
        self._locks: Dict[str, asyncio.Lock] = {}

    # =========================================================================
    # Room definitions
    # =========================================================================

    def create_room(
        self,
        name: str,
        kind: RoomKind = RoomKind.PUBLIC,
        member_ids: Iterable[str] = (),
        room_id: Optional[str] = None,
    ) -> Room:
        """Create a room with an empty message log.

        Args:
            name: Display name.
            kind: public or private.
            member_ids: Initial durable members.
            room_id: Fixed id (used for the seeded default room); a UUID is
                allocated when omitted.

        Returns:
            The new Room.
        """
        kwargs = {"id": room_id} if room_id else {}
        room = Room(name=name, type=kind, memberIds=set(member_ids), **kwargs)
        if room.id in self._rooms:
            raise ValueError(f"Room already exists: {room.id}")

        self._rooms[room.id] = room
        self._logs[room.id] = []
        self._index[room.id] = {}
        self._subscribers[room.id] = {}
        self._locks[room.id] = asyncio.Lock()
        logger.info(f"[Rooms] Created {room.type.value} room {room.id} ({room.name})")
        return room

    def get_room(self, room_id: str) -> Room:
        """Return the room or raise ``RoomNotFound``."""
        room = self._rooms.get(room_id)
        if room is None:
            raise RoomNotFound(room_id)
        return room

    def has_room(self, room_id: str) -> bool:
        return room_id in self._rooms

    def lock_for(self, room_id: str) -> asyncio.Lock:
        if room_id not in self._locks:
            raise RoomNotFound(room_id)
        return self._locks[room_id]

    def list_rooms(self) -> List[RoomSummary]:
        """Snapshot of room summaries, in creation order. Lock-free."""
        return [
            RoomSummary(id=room.id, name=room.name, type=room.type, members=len(room.memberIds))
            for room in list(self._rooms.values())
        ]

    # =========================================================================
    # Subscription
    # =========================================================================

    async def join(self, session: Session, room_id: str) -> Room:
        """Subscribe a session to a room's live broadcast.

        Durable membership is left untouched. The joiner receives
        ``room_joined``; other subscribers receive ``user_joined_room``.
        Re-joining an already subscribed room only repeats ``room_joined``
        to the joiner.

        Raises:
            RoomNotFound: if the room id is unknown (no side effects).
        """
        room = self.get_room(room_id)
        async with self._locks[room_id]:
            subscribers = self._subscribers[room_id]
            already_joined = session.session_id in subscribers

            session.joined_rooms.add(room_id)
            subscribers[session.session_id] = session

            session.deliver("room_joined", {
                "roomId": room_id,
                "room": room.model_dump(mode="json"),
            })
            if not already_joined:
                self.broadcast(
                    room_id,
                    "user_joined_room",
                    {"username": session.username, "roomId": room_id},
                    exclude=session,
                )
        logger.info(
            f"[Rooms] {session.username} joined {room_id} "
            f"({len(self._subscribers[room_id])} subscribers)"
        )
        return room

    async def leave(self, session: Session, room_id: str) -> bool:
        """Unsubscribe a session. No-op (returns False) if not joined."""
        if room_id not in self._rooms:
            return False
        async with self._locks[room_id]:
            if self._subscribers[room_id].pop(session.session_id, None) is None:
                session.joined_rooms.discard(room_id)
                return False
            session.joined_rooms.discard(room_id)
            self.broadcast(
                room_id,
                "user_left_room",
                {"username": session.username, "roomId": room_id},
            )
        logger.info(f"[Rooms] {session.username} left {room_id}")
        return True

    async def drop_session(self, session: Session) -> List[str]:
        """Remove a session from every subscriber set (disconnect teardown).

        Membership is left untouched. No ``user_left_room`` is emitted.
        """
        dropped = []
        for room_id in list(session.joined_rooms):
            lock = self._locks.get(room_id)
            if lock is None:
                continue
            async with lock:
                self._subscribers[room_id].pop(session.session_id, None)
            dropped.append(room_id)
        session.joined_rooms.clear()
        return dropped

    def subscribers(self, room_id: str) -> List[Session]:
        return list(self._subscribers.get(room_id, {}).values())

    def broadcast(
        self,
        room_id: str,
        event: str,
        data: dict,
        exclude: Optional[Session] = None,
    ) -> int:
        """Enqueue an event on every subscriber of a room.

        Callers that need room ordering must hold the room lock. A slow or
        closed subscriber only loses its own copy.

        Returns:
            Number of sessions the event was delivered to.
        """
        delivered = 0
        for session in list(self._subscribers.get(room_id, {}).values()):
            if exclude is not None and session is exclude:
                continue
            if session.deliver(event, data):
                delivered += 1
        logger.debug(f"[Rooms] {event} -> {delivered} subscribers of {room_id}")
        return delivered

    # =========================================================================
    # Message log
    # =========================================================================

    def append_message(self, room_id: str, message: Message) -> Message:
        """Append to the room log. Callers hold the room lock."""
        self._logs[room_id].append(message)
        self._index[room_id][message.id] = message
        return message

    def last_message(self, room_id: str) -> Optional[Message]:
        log = self._logs.get(room_id)
        return log[-1] if log else None

    def find_message(self, room_id: str, message_id: str) -> Optional[Message]:
        return self._index.get(room_id, {}).get(message_id)

    def get_history(self, room_id: str) -> List[Message]:
        """Snapshot copy of a room's log."""
        return list(self._logs.get(room_id, []))

    def get_message_count(self, room_id: str) -> int:
        return len(self._logs.get(room_id, []))

    def get_paginated_history(
        self,
        room_id: str,
        before_ts: Optional[float],
        limit: int,
    ) -> List[Message]:
        """Get paginated message history (for lazy loading).

        Returns messages older than the cursor, oldest first.

        Args:
            room_id: The room ID.
            before_ts: Unix timestamp cursor. Returns messages with
                timestamp < before_ts. If None, returns the most recent.
            limit: Maximum number of messages to return. Callers clamp it
                to ``ChatSettings.max_history_page_size``.

        Raises:
            RoomNotFound: if the room id is unknown.
        """
        self.get_room(room_id)
        messages = self.get_history(room_id)

        if before_ts is not None:
            messages = [msg for msg in messages if msg.timestamp.timestamp() < before_ts]

        return messages[-limit:] if messages else []
