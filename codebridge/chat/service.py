"""
Chat room and message persistence shared by the REST API and the realtime socket
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

from codebridge.core.utils import generate_id

MAX_MESSAGE_LENGTH = 2000


class RoomType(str, Enum):
    COURSE = "course"
    DIRECT = "direct"
    GROUP = "group"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    SYSTEM = "system"


def participant(user_id: str, role: str = "member") -> dict:
    now = datetime.utcnow()
    return {"user_id": user_id, "role": role, "joined_at": now, "last_read": now}


def is_participant(room: dict, user_id: str) -> bool:
    return any(p["user_id"] == user_id for p in room.get("participants", []))


async def create_room(
    db: AsyncIOMotorDatabase,
    name: str,
    room_type: RoomType,
    participants: List[dict],
    course_id: Optional[str] = None
) -> dict:
    room = {
        "room_id": generate_id("ROOM"),
        "name": name,
        "type": RoomType(room_type).value,
        "course_id": course_id,
        "participants": participants,
        "last_message": None,
        "is_active": True,
        "created_at": datetime.utcnow(),
        "updated_at": datetime.utcnow()
    }
    await db.chat_rooms.insert_one(dict(room))
    return room


async def add_participant(db: AsyncIOMotorDatabase, room_id: str, user_id: str, role: str = "member"):
    await db.chat_rooms.update_one(
        {"room_id": room_id, "participants.user_id": {"$ne": user_id}},
        {"$push": {"participants": participant(user_id, role)}}
    )


async def remove_participant(db: AsyncIOMotorDatabase, room_id: str, user_id: str):
    await db.chat_rooms.update_one({"room_id": room_id}, {"$pull": {"participants": {"user_id": user_id}}})


async def get_room_for_participant(db: AsyncIOMotorDatabase, room_id: str, user_id: str) -> dict:
    """
    Raises:
        404: Room not found
        403: Caller is not a participant
    """
    room = await db.chat_rooms.find_one({"room_id": room_id}, {"_id": 0})
    if not room:
        raise HTTPException(status_code=404, detail="Chat room not found")
    if not is_participant(room, user_id):
        raise HTTPException(status_code=403, detail="Not authorized to access this chat room")
    return room


async def mark_room_read(db: AsyncIOMotorDatabase, room_id: str, user_id: str):
    await db.chat_rooms.update_one(
        {"room_id": room_id, "participants.user_id": user_id},
        {"$set": {"participants.$.last_read": datetime.utcnow()}}
    )


async def save_message(
    db: AsyncIOMotorDatabase,
    room: dict,
    sender_id: str,
    text: str,
    message_type: MessageType = MessageType.TEXT,
    file_url: Optional[str] = None,
    file_name: Optional[str] = None
) -> dict:
    """Persist a message and update the room's last_message preview"""
    text = (text or "").strip()
    if not text and not file_url:
        raise HTTPException(status_code=400, detail="Message cannot be empty")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise HTTPException(status_code=400, detail=f"Message cannot exceed {MAX_MESSAGE_LENGTH} characters")

    now = datetime.utcnow()
    message = {
        "message_id": generate_id("MSG"),
        "room_id": room["room_id"],
        "sender_id": sender_id,
        "message": text,
        "type": MessageType(message_type).value,
        "file_url": file_url,
        "file_name": file_name,
        "read_by": [{"user_id": sender_id, "read_at": now}],
        "is_edited": False,
        "edited_at": None,
        "is_deleted": False,
        "deleted_at": None,
        "created_at": now,
        "updated_at": now
    }
    await db.messages.insert_one(dict(message))
    await db.chat_rooms.update_one(
        {"room_id": room["room_id"]},
        {"$set": {
            "last_message": {"text": text or file_name or "", "sender_id": sender_id, "timestamp": now},
            "updated_at": now
        }}
    )
    return message


async def mark_message_read(db: AsyncIOMotorDatabase, message_id: str, user_id: str) -> Optional[dict]:
    message = await db.messages.find_one({"message_id": message_id}, {"_id": 0})
    if not message:
        return None
    if not any(r["user_id"] == user_id for r in message.get("read_by", [])):
        await db.messages.update_one(
            {"message_id": message_id},
            {"$push": {"read_by": {"user_id": user_id, "read_at": datetime.utcnow()}}}
        )
    return message
