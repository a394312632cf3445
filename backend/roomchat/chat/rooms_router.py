"""Room REST endpoints.

Endpoints:
    GET  /api/rooms                - Room summaries (id, name, type, member count)
    POST /api/rooms                - Create a room
    GET  /api/messages/{room_id}   - Paginated message log snapshot
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from roomchat.auth.router import require_identity
from roomchat.auth.service import Identity

from .engine import ChatEngine
from .errors import RoomNotFound
from .models import Room, RoomKind, RoomSummary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["rooms"])


class CreateRoomRequest(BaseModel):
    name: str = Field(..., min_length=1)
    type: RoomKind = RoomKind.PUBLIC
    participants: List[str] = Field(default_factory=list, description="Initial member user IDs")


def _engine(request: Request) -> ChatEngine:
    return request.app.state.engine


@router.get("/rooms", response_model=List[RoomSummary])
async def list_rooms(
    request: Request, identity: Identity = Depends(require_identity)
) -> List[RoomSummary]:
    return _engine(request).list_rooms()


@router.post("/rooms", response_model=Room)
async def create_room(
    body: CreateRoomRequest,
    request: Request,
    identity: Identity = Depends(require_identity),
) -> Room:
    room = _engine(request).create_room(body.name, body.type, body.participants)
    logger.info(f"[Rooms] {identity.username} created room {room.id} ({room.name})")
    return room


@router.get("/messages/{room_id}")
async def get_messages(
    room_id: str,
    request: Request,
    before: Optional[float] = Query(None, description="Timestamp cursor (get messages before this time)"),
    limit: Optional[int] = Query(None, ge=1, description="Number of messages to return"),
    identity: Identity = Depends(require_identity),
) -> dict:
    """Get paginated message history for a room, oldest first.

    Example:
        GET /api/messages/general?limit=50
        GET /api/messages/general?before=1707321600.123&limit=50
    """
    engine = _engine(request)
    settings = engine.settings
    page_size = min(limit or settings.history_page_size, settings.max_history_page_size)
    try:
        # One extra row tells us whether an older page exists.
        messages = engine.rooms.get_paginated_history(
            room_id, before, page_size + 1
        )
    except RoomNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)

    has_more = len(messages) > page_size
    if has_more:
        messages = messages[1:]

    return {
        "messages": [msg.model_dump(mode="json") for msg in messages],
        "hasMore": has_more,
    }
