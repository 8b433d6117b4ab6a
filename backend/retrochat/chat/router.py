"""Chat router providing WebSocket and HTTP endpoints.

This module provides:
    - WebSocket /  (alias /ws): Real-time chat messaging
    - GET /rooms/{room_id}: Room summary with presence count
    - GET /rooms/{room_id}/messages: Recent message history

The WebSocket protocol supports:
    - Join on first payload ({username, userId?})
    - Message history delivery on join
    - User join/leave notifications and presence counts
    - Real-time message broadcasting (sender included)
"""
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, WebSocket

from .lifecycle import ConnectionController
from .schemas import RoomSummary, format_timestamp

logger = logging.getLogger(__name__)

router = APIRouter()


def _controller(connection) -> ConnectionController:
    return connection.app.state.chat


def _client_address(websocket: WebSocket) -> str:
    forwarded = websocket.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if websocket.client:
        return f"{websocket.client.host}:{websocket.client.port}"
    return "unknown"


@router.get("/rooms/{room_id}", response_model=RoomSummary)
async def get_room(room_id: str, request: Request) -> RoomSummary:
    """Get a room's name and current counts.

    Args:
        room_id: The room ID.

    Returns:
        RoomSummary with live presence count and history size.
    """
    controller = _controller(request)
    room = controller.rooms.get(room_id)
    if room is None:
        raise HTTPException(status_code=404, detail=f"Room not found: {room_id}")

    return RoomSummary(
        roomId=room.room_id,
        name=room.display_name,
        userCount=controller.sessions.count_in_room(room_id),
        messageCount=room.message_count(),
        createdAt=format_timestamp(room.created_at),
    )


@router.get("/rooms/{room_id}/messages")
async def get_room_messages(
    room_id: str,
    request: Request,
    limit: Optional[int] = Query(None, ge=1, description="Number of messages to return"),
) -> dict:
    """Get the most recent messages of a room, oldest first.

    Args:
        room_id: The room ID.
        limit: Maximum number of messages (default 50, capped at the
            room's history capacity).

    Example:
        GET /rooms/general/messages?limit=50
    """
    controller = _controller(request)
    room = controller.rooms.get(room_id)
    if room is None:
        raise HTTPException(status_code=404, detail=f"Room not found: {room_id}")

    if limit is None:
        limit = controller.settings.fetch_history_limit
    limit = min(limit, room.history_capacity)

    messages = controller.rooms.recent_messages(room_id, limit)
    return {"messages": [msg.to_wire() for msg in messages]}


@router.websocket("/")
@router.websocket("/ws")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for real-time chat.

    Protocol Flow:
        1. Client connects and sends {username, userId?}
           -> Server sends: {messageHistory: [...]} to this client only
           -> Server broadcasts: {system: true, message: "<name> joined the chat"}
           -> Server broadcasts: {userCount: n}
        2. Client sends: {message}
           -> Server broadcasts: {id, username, message, color, timestamp, userId}
           -> Invalid body: {system: true, message: "Invalid message format or length."}
        3. On disconnect -> Server broadcasts leave notice and {userCount: n}
    """
    await websocket.accept()
    controller = _controller(websocket)
    conn = controller.open(websocket, _client_address(websocket))

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            # Binary frames are decoded as UTF-8 JSON like text frames
            frame = message.get("text")
            if frame is None:
                frame = message.get("bytes")
            await controller.handle_text(conn, frame)
    except Exception as e:
        controller.handle_error(conn, e)
    finally:
        await controller.close(conn)
