"""WebSocket endpoint for real-time chat.

This module provides:
    - WebSocket /ws: authenticated, multi-room real-time messaging

Every frame in both directions is a JSON object ``{"event": ..., "data": ...}``.

Client -> server events:
    - authenticate: data is the token string
    - join_room / leave_room: data is the room id (or {"roomId": ...})
    - send_message: {roomId, content, type}
    - typing: {roomId, isTyping}
    - read_messages: {roomId, messageIds}

Server -> client events:
    - authenticated, room_joined, user_joined_room, user_left_room,
      new_message, user_typing, user_status_change, notification,
      read_receipt, error

Once a connection is authenticated, everything it receives goes through its
``Session`` outbound queue, drained by a single writer task. Before that the
handler answers directly on the socket.
"""
import asyncio
import json
import logging
from typing import Any, Optional, Tuple

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from .engine import ChatEngine
from .errors import AuthError, ChatError, NotAuthenticated, ValidationError
from .models import Session

logger = logging.getLogger(__name__)

router = APIRouter()


def _frame(event: str, data: Any) -> dict:
    return {"event": event, "data": data}


def _parse_frame(raw: str) -> Tuple[str, Any]:
    """Decode an inbound frame into ``(event, data)``.

    Raises:
        ValidationError: not JSON, not an object, or no event name.
    """
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        raise ValidationError("Frame is not valid JSON")
    if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        raise ValidationError("Frame must be an object with an 'event' name")
    return frame["event"], frame.get("data")


def _room_id(data: Any) -> str:
    """Accept a bare room id or an object carrying ``roomId``."""
    if isinstance(data, dict):
        data = data.get("roomId")
    if not isinstance(data, str) or not data:
        raise ValidationError("roomId is required")
    return data


def _payload(data: Any) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("Event data must be an object")
    return data


def _typing_flag(payload: dict) -> bool:
    is_typing = payload.get("isTyping", True)
    if not isinstance(is_typing, bool):
        raise ValidationError("isTyping must be a boolean")
    return is_typing


async def _pump(websocket: WebSocket, session: Session) -> None:
    """Drain a session's outbound queue into the socket."""
    try:
        while True:
            item = await session.outbox.get()
            if item is None or session.closed:
                break
            await websocket.send_json(item)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.debug(f"[WS] Writer for session {session.session_id} stopped: {e}")
        session.close()


async def _dispatch(engine: ChatEngine, session: Session, event: str, data: Any) -> None:
    """Route one authenticated event to the engine."""
    if event == "join_room":
        await engine.join_room(session, _room_id(data))

    elif event == "leave_room":
        await engine.leave_room(session, _room_id(data))

    elif event == "send_message":
        payload = _payload(data)
        await engine.send_message(
            session,
            _room_id(payload),
            payload.get("content"),
            payload.get("type", "text"),
        )

    elif event == "typing":
        payload = _payload(data)
        await engine.set_typing(session, _room_id(payload), _typing_flag(payload))

    elif event == "read_messages":
        payload = _payload(data)
        await engine.mark_read(session, _room_id(payload), payload.get("messageIds") or [])

    else:
        raise ValidationError(f"Unknown event: {event}")


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint handling one client's full session lifecycle.

    Protocol Flow:
        1. Client sends: {event: "authenticate", data: token}
           -> Server sends: {event: "authenticated", data: {success, ...}}
           -> Other users receive user_status_change(isOnline=true) on the
              user's first session
        2. Client issues join_room / send_message / typing / read_messages
        3. On disconnect -> typing cleared, subscriptions dropped, and
           user_status_change(isOnline=false) after the last session
    """
    engine: ChatEngine = websocket.app.state.engine
    await websocket.accept()
    logger.info("[WS] Connection accepted")

    session: Optional[Session] = None
    writer: Optional[asyncio.Task] = None

    try:
        while True:
            raw = await websocket.receive_text()
            event = None
            try:
                event, data = _parse_frame(raw)
                logger.debug(f"[WS] Received event={event}")

                if event == "authenticate":
                    if session is not None:
                        session.deliver("authenticated", {"success": True, "userId": session.user_id})
                        continue
                    try:
                        session = await engine.authenticate(data)
                    except AuthError as e:
                        logger.info(f"[WS] Authentication failed: {e.message}")
                        await websocket.send_json(
                            _frame("authenticated", {"success": False, "error": e.message})
                        )
                        continue
                    writer = asyncio.create_task(_pump(websocket, session))
                    logger.info(
                        f"[WS] Authenticated {session.username} as session {session.session_id}"
                    )
                    continue

                if session is None:
                    raise NotAuthenticated("Authenticate first")

                await _dispatch(engine, session, event, data)

            except ChatError as e:
                logger.info(f"[WS] {event or 'frame'} rejected: {e.code} {e.message}")
                if session is not None:
                    session.deliver("error", e.to_payload(event))
                else:
                    await websocket.send_json(_frame("error", e.to_payload(event)))

    except WebSocketDisconnect:
        logger.info("[WS] Client disconnected")
    finally:
        if session is not None:
            await engine.disconnect(session)
            logger.info(f"[WS] Session {session.session_id} ({session.username}) torn down")
        if writer is not None:
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass
