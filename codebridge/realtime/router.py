"""
Realtime WebSocket endpoint

Frames in both directions are JSON objects: {"event": "<name>", "data": {...}}
"""

import json
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
from motor.motor_asyncio import AsyncIOMotorDatabase

from codebridge.chat.service import (
    MessageType,
    get_room_for_participant,
    mark_message_read,
    mark_room_read,
    save_message,
)
from codebridge.core.database import get_db
from codebridge.core.dependencies import load_user_from_token
from codebridge.core.security import extract_bearer
from codebridge.core.utils import get_user_brief
from codebridge.realtime.manager import manager, user_room

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Realtime"])


def require_field(data: dict, field: str) -> str:
    value = data.get(field)
    if not value:
        raise HTTPException(status_code=400, detail=f"'{field}' is required")
    return value


# ==================== EVENT HANDLERS ====================

async def on_join_room(websocket: WebSocket, db: AsyncIOMotorDatabase, user: dict, data: dict):
    room_id = require_field(data, "room_id")
    await get_room_for_participant(db, room_id, user["user_id"])
    await manager.join(room_id, websocket)
    await mark_room_read(db, room_id, user["user_id"])
    await manager.emit(room_id, "userJoined", {
        "room_id": room_id,
        "user_id": user["user_id"],
        "name": user.get("name")
    })


async def on_leave_room(websocket: WebSocket, db: AsyncIOMotorDatabase, user: dict, data: dict):
    room_id = require_field(data, "room_id")
    await manager.leave(room_id, websocket)
    await manager.emit(room_id, "userLeft", {"room_id": room_id, "user_id": user["user_id"]})


async def on_send_message(websocket: WebSocket, db: AsyncIOMotorDatabase, user: dict, data: dict):
    room_id = require_field(data, "room_id")
    message_type = data.get("type") or MessageType.TEXT.value
    if message_type not in [t.value for t in MessageType]:
        raise HTTPException(status_code=400, detail=f"Unsupported message type: {message_type}")
    room = await get_room_for_participant(db, room_id, user["user_id"])
    message = await save_message(
        db, room, user["user_id"],
        data.get("message", ""),
        message_type=message_type,
        file_url=data.get("file_url"),
        file_name=data.get("file_name")
    )
    message["sender"] = await get_user_brief(db, user["user_id"])
    await manager.emit(room_id, "newMessage", message)

    for p in room["participants"]:
        if p["user_id"] != user["user_id"]:
            await manager.emit_to_user(p["user_id"], "newNotification", {
                "type": "message",
                "title": "New Message",
                "message": f"New message in {room['name']}",
                "metadata": {"room_id": room_id, "message_id": message["message_id"]},
                "created_at": datetime.utcnow()
            })


async def on_typing(websocket: WebSocket, db: AsyncIOMotorDatabase, user: dict, data: dict):
    room_id = require_field(data, "room_id")
    if manager.in_room(room_id, websocket):
        await manager.emit(room_id, "userTyping", {
            "room_id": room_id,
            "user_id": user["user_id"],
            "name": user.get("name")
        }, exclude=websocket)


async def on_stop_typing(websocket: WebSocket, db: AsyncIOMotorDatabase, user: dict, data: dict):
    room_id = require_field(data, "room_id")
    if manager.in_room(room_id, websocket):
        await manager.emit(room_id, "userStoppedTyping", {
            "room_id": room_id,
            "user_id": user["user_id"]
        }, exclude=websocket)


async def on_mark_as_read(websocket: WebSocket, db: AsyncIOMotorDatabase, user: dict, data: dict):
    if data.get("notification_id"):
        await db.notifications.update_one(
            {"notification_id": data["notification_id"], "user_id": user["user_id"]},
            {"$set": {"is_read": True, "read_at": datetime.utcnow()}}
        )
        return

    message_id = require_field(data, "message_id")
    message = await db.messages.find_one({"message_id": message_id}, {"_id": 0, "room_id": 1})
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")
    await get_room_for_participant(db, message["room_id"], user["user_id"])
    await mark_message_read(db, message_id, user["user_id"])
    await manager.emit(message["room_id"], "messageRead", {
        "message_id": message_id,
        "room_id": message["room_id"],
        "user_id": user["user_id"]
    })


async def on_join_notifications(websocket: WebSocket, db: AsyncIOMotorDatabase, user: dict, data: dict):
    # Every connection already sits in its user room
    await manager.send(websocket, "notificationsJoined", {"room": user_room(user["user_id"])})


EVENT_HANDLERS = {
    "joinRoom": on_join_room,
    "leaveRoom": on_leave_room,
    "sendMessage": on_send_message,
    "typing": on_typing,
    "stopTyping": on_stop_typing,
    "markAsRead": on_mark_as_read,
    "joinNotifications": on_join_notifications,
}


# ==================== ENDPOINT ====================

async def receive_frame(websocket: WebSocket) -> Optional[dict]:
    """Next client frame as a dict; None when it is not a JSON object"""
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", status.WS_1000_NORMAL_CLOSURE))
    text = message.get("text")
    if text is None:
        return None
    try:
        frame = json.loads(text)
    except ValueError:
        return None
    return frame if isinstance(frame, dict) else None


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, db: AsyncIOMotorDatabase = Depends(get_db)):
    # Token from the Authorization header or the ?token= query param
    token = extract_bearer(websocket.headers.get("authorization")) or websocket.query_params.get("token")
    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    try:
        user = await load_user_from_token(db, token)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await manager.connect(websocket, user["user_id"])
    try:
        while True:
            frame = await receive_frame(websocket)
            if frame is None:
                await manager.send(websocket, "error", {"message": "Frames must be JSON objects"})
                continue

            event = frame.get("event")
            handler = EVENT_HANDLERS.get(event)
            if not handler:
                await manager.send(websocket, "error", {"message": f"Unknown event: {event}"})
                continue

            data = frame.get("data") or {}
            try:
                await handler(websocket, db, user, data)
            except HTTPException as e:
                await manager.send(websocket, "error", {"event": event, "message": e.detail})
            except Exception:
                logger.exception("Realtime handler %s failed for %s", event, user["user_id"])
                await manager.send(websocket, "error", {"event": event, "message": "Internal server error"})

    except WebSocketDisconnect as e:
        logger.debug("Socket closed by %s (code=%s)", user["user_id"], e.code)
    finally:
        await manager.disconnect(websocket)
