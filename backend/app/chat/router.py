"""Chat router providing the REST facade over rooms and messages.

This module provides:
    - GET  /api/chat/rooms: Active rooms, most recently active first
    - POST /api/chat/rooms: Create a room (creator becomes its first occupant)
    - POST /api/chat/rooms/{room_id}/join: Join a room (capacity enforced)
    - POST /api/chat/rooms/{room_id}/leave: Leave a room
    - GET  /api/chat/rooms/{room_id}/messages: Paginated history, oldest first
    - POST /api/chat/rooms/{room_id}/messages: Send a message
    - POST /api/chat/messages/{message_id}/react: Toggle a reaction
    - GET  /api/chat/online: Users with an open realtime session

Every endpoint requires a bearer token. Messages sent and reactions toggled
here are also fanned out to realtime subscribers, exactly as if they had come
in over the WebSocket.
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from app.auth.dependencies import get_current_user
from app.auth.schemas import UserRecord
from app.errors import ForbiddenError, NotFoundError
from app.services import Services, get_services

from .schemas import MessageCreate, ReactionRequest, RoomCreate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])


@router.get("/rooms")
async def list_rooms(
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> JSONResponse:
    rooms = services.rooms.list_active(limit=services.settings.rooms.list_limit)
    return JSONResponse({
        "success": True,
        "chatrooms": [room.public_info().model_dump(mode="json") for room in rooms],
    })


@router.post("/rooms", status_code=201)
async def create_room(
    body: RoomCreate,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> JSONResponse:
    """Create a chatroom.

    Names are unique among active rooms, ignoring case. The creator is added
    as the first occupant.
    """
    room = services.rooms.create(
        body, user.id, default_max_users=services.settings.rooms.default_max_users
    )
    return JSONResponse(
        {
            "success": True,
            "message": f"Chatroom '{room.name}' created!",
            "chatroom": room.public_info().model_dump(mode="json"),
        },
        status_code=201,
    )


@router.post("/rooms/{room_id}/join")
async def join_room(
    room_id: str,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> JSONResponse:
    room = services.rooms.join(room_id, user.id)
    logger.info(f"[API] {user.username} joined room {room_id}")
    return JSONResponse({
        "success": True,
        "message": f"Joined {room.name}!",
        "chatroom": room.public_info().model_dump(mode="json"),
        "activeUsers": [u.model_dump(mode="json") for u in room.active_users()],
    })


@router.post("/rooms/{room_id}/leave")
async def leave_room(
    room_id: str,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> JSONResponse:
    room = services.rooms.get(room_id)
    if room is None:
        raise NotFoundError("Chatroom not found")
    services.rooms.remove_occupant(room_id, user.id)
    await services.realtime.detach(user.id, room_id)
    return JSONResponse({"success": True, "message": f"Left {room.name}"})


@router.get("/rooms/{room_id}/messages")
async def get_messages(
    room_id: str,
    limit: Optional[int] = Query(None, ge=1, le=100, description="Number of messages to return (default 50)"),
    before: Optional[datetime] = Query(None, description="Only messages created before this ISO-8601 time"),
    before_id: Optional[str] = Query(None, alias="beforeId", description="Only messages sent before this message"),
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> JSONResponse:
    """Get paginated message history for a room.

    Returns the newest ``limit`` messages created before ``before`` (or the
    newest overall), ordered oldest first. Clients page backwards by passing
    the ``id`` of the oldest message they hold as ``beforeId``, or its
    ``createdAt`` as ``before``.

    Example:
        GET /api/chat/rooms/abc123/messages?limit=50
        GET /api/chat/rooms/abc123/messages?before=2024-02-07T16:00:00Z&limit=50
        GET /api/chat/rooms/abc123/messages?beforeId=6f1c...&limit=50
    """
    room = services.rooms.get_active(room_id)
    if not room.has_occupant(user.id):
        raise ForbiddenError("You must join the chatroom to view messages")

    page = services.settings.messages
    limit = min(limit or page.default_page_size, page.max_page_size)
    messages = services.messages.history(
        room_id, user.id, limit=limit, before=before, before_id=before_id
    )
    return JSONResponse({
        "success": True,
        "messages": [m.public_data().model_dump(mode="json") for m in messages],
        "hasMore": len(messages) == limit,
    })


@router.post("/rooms/{room_id}/messages", status_code=201)
async def send_message(
    room_id: str,
    body: MessageCreate,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> JSONResponse:
    message = services.messages.send(room_id, user.id, body)
    await services.realtime.deliver(message)
    return JSONResponse(
        {
            "success": True,
            "message": "Message sent!",
            "data": message.public_data().model_dump(mode="json"),
        },
        status_code=201,
    )


@router.post("/messages/{message_id}/react")
async def react_to_message(
    message_id: str,
    body: ReactionRequest,
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> JSONResponse:
    message = services.messages.toggle_reaction(message_id, user.id, body.emoji)
    summary = await services.realtime.publish_reactions(message)
    return JSONResponse({
        "success": True,
        "message": "Reaction updated",
        **summary.model_dump(),
    })


@router.get("/online")
async def online_users(
    user: UserRecord = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> JSONResponse:
    users = services.realtime.active_users()
    return JSONResponse({"success": True, "count": len(users), "users": users})
