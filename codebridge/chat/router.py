from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel

from codebridge.chat.service import (
    RoomType,
    create_room,
    get_room_for_participant,
    mark_room_read,
    participant,
)
from codebridge.core.database import get_db
from codebridge.core.dependencies import get_current_user, is_admin
from codebridge.core.utils import get_user_brief, get_user_briefs, page_meta
from codebridge.realtime.manager import manager

router = APIRouter(tags=["Chat"])


class DirectRoomRequest(BaseModel):
    participant_id: str


def last_read_of(room: dict, user_id: str):
    for p in room.get("participants", []):
        if p["user_id"] == user_id:
            return p.get("last_read")
    return None


@router.get("/rooms")
async def get_rooms(
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Caller's active rooms, most recently active first, with unread counts"""
    uid = user["user_id"]
    rooms = await db.chat_rooms.find(
        {"participants.user_id": uid, "is_active": True},
        {"_id": 0}
    ).sort("updated_at", -1).to_list(length=None)

    people = await get_user_briefs(db, [p["user_id"] for room in rooms for p in room["participants"]])
    for room in rooms:
        query = {"room_id": room["room_id"], "sender_id": {"$ne": uid}, "is_deleted": {"$ne": True}}
        last_read = last_read_of(room, uid)
        if last_read:
            query["created_at"] = {"$gt": last_read}
        room["unread_count"] = await db.messages.count_documents(query)
        for p in room["participants"]:
            p["user"] = people.get(p["user_id"])
            p["is_online"] = manager.is_online(p["user_id"])

    return {"success": True, "count": len(rooms), "data": rooms}


@router.get("/rooms/{room_id}/messages")
async def get_room_messages(
    room_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Newest page first, returned oldest-to-newest for display"""
    await get_room_for_participant(db, room_id, user["user_id"])

    query = {"room_id": room_id}
    total = await db.messages.count_documents(query)
    messages = await db.messages.find(query, {"_id": 0}) \
        .sort("created_at", -1) \
        .skip((page - 1) * limit) \
        .limit(limit) \
        .to_list(length=limit)
    messages.reverse()

    senders = await get_user_briefs(db, [m["sender_id"] for m in messages])
    for message in messages:
        message["sender"] = senders.get(message["sender_id"])
        if message.get("is_deleted"):
            message["message"] = "This message was deleted"
            message["file_url"] = None

    await mark_room_read(db, room_id, user["user_id"])
    return {"success": True, "count": len(messages), **page_meta(total, page, limit), "data": messages}


@router.post("/rooms/direct")
async def create_direct_room(
    data: DirectRoomRequest,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Return the existing direct room between two users or create one"""
    uid = user["user_id"]
    if data.participant_id == uid:
        raise HTTPException(status_code=400, detail="Cannot create a chat with yourself")

    other = await db.users.find_one({"user_id": data.participant_id}, {"_id": 0, "user_id": 1, "name": 1})
    if not other:
        raise HTTPException(status_code=404, detail="User not found")

    existing = await db.chat_rooms.find_one(
        {
            "type": RoomType.DIRECT.value,
            "participants": {"$size": 2},
            "$and": [
                {"participants.user_id": uid},
                {"participants.user_id": data.participant_id}
            ]
        },
        {"_id": 0}
    )
    if existing:
        return {"success": True, "data": existing, "created": False}

    room = await create_room(
        db,
        name=f"{user.get('name', 'User')} & {other.get('name', 'User')}",
        room_type=RoomType.DIRECT,
        participants=[participant(uid), participant(data.participant_id)]
    )
    return {"success": True, "data": room, "created": True}


@router.delete("/messages/{message_id}")
async def delete_message(
    message_id: str,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Soft delete: the message stays in history as a placeholder"""
    message = await db.messages.find_one({"message_id": message_id}, {"_id": 0})
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")
    if message["sender_id"] != user["user_id"] and not is_admin(user):
        raise HTTPException(status_code=403, detail="Not authorized to delete this message")

    await db.messages.update_one(
        {"message_id": message_id},
        {"$set": {"is_deleted": True, "deleted_at": datetime.utcnow()}}
    )
    await manager.emit(message["room_id"], "messageDeleted", {
        "message_id": message_id,
        "room_id": message["room_id"]
    })
    return {"success": True, "message": "Message deleted successfully"}


@router.get("/online")
async def online_users(
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    users = await get_user_briefs(db, manager.online_users())
    return {"success": True, "count": len(users), "data": list(users.values())}


@router.get("/users/{user_id}")
async def chat_user(
    user_id: str,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    brief = await get_user_brief(db, user_id)
    return {"success": True, "data": {**brief, "is_online": manager.is_online(user_id)}}
