"""
Zoom meeting management and webhook receiver
"""

import hashlib
import hmac
import json
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, Field

from codebridge.admin.settings import get_integration_settings
from codebridge.core.config import settings
from codebridge.core.database import get_db
from codebridge.core.dependencies import is_admin, require_tutor
from codebridge.core.utils import generate_id
from codebridge.courses.service import to_naive_utc, verify_course_manager
from codebridge.notifications.service import NotificationPriority, NotificationType, notify_many
from codebridge.zoom.client import ZoomClient, get_zoom_client

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Zoom"])


# ==================== PYDANTIC MODELS ====================

class MeetingCreateRequest(BaseModel):
    course_id: str
    topic: Optional[str] = None
    start_time: datetime
    duration: int = Field(60, ge=1, le=1440)
    agenda: Optional[str] = None
    auto_recording: str = "none"


class MeetingUpdateRequest(BaseModel):
    topic: Optional[str] = None
    start_time: Optional[datetime] = None
    duration: Optional[int] = Field(None, ge=1, le=1440)
    agenda: Optional[str] = None


# ==================== HELPERS ====================

def zoom_signature(secret: str, timestamp: str, body: bytes) -> str:
    message = f"v0:{timestamp}:{body.decode()}"
    digest = hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()
    return f"v0={digest}"


def verify_zoom_signature(secret: str, timestamp: Optional[str], body: bytes, signature: Optional[str]) -> bool:
    if not (secret and timestamp and signature):
        return False
    return hmac.compare_digest(zoom_signature(secret, timestamp, body), signature)


async def find_course_by_meeting(db: AsyncIOMotorDatabase, meeting_id: str) -> Optional[dict]:
    return await db.courses.find_one({"schedule.zoom_meeting_id": str(meeting_id)}, {"_id": 0})


async def verify_meeting_manager(db: AsyncIOMotorDatabase, meeting_id: str, user: dict) -> Optional[dict]:
    """Meetings attached to a course are managed by its tutor; loose meetings by admins only"""
    course = await find_course_by_meeting(db, meeting_id)
    if course:
        if course["tutor_id"] != user["user_id"] and not is_admin(user):
            raise HTTPException(status_code=403, detail="Not authorized to manage this meeting")
    elif not is_admin(user):
        raise HTTPException(status_code=404, detail="Meeting not found")
    return course


async def set_session_status(db: AsyncIOMotorDatabase, meeting_id: str, fields: dict):
    await db.courses.update_one(
        {"schedule.zoom_meeting_id": str(meeting_id)},
        {"$set": {f"schedule.$.{key}": value for key, value in fields.items()}}
    )


# ==================== MEETINGS ====================

@router.post("/create", status_code=201)
async def create_meeting(
    data: MeetingCreateRequest,
    user: dict = Depends(require_tutor),
    db: AsyncIOMotorDatabase = Depends(get_db),
    zoom: ZoomClient = Depends(get_zoom_client)
):
    """Create a meeting and attach it to the course schedule"""
    course = await verify_course_manager(db, data.course_id, user)
    start_time = to_naive_utc(data.start_time)
    topic = data.topic or f"{course['title']} - Live Class"

    meeting = await zoom.create_meeting(
        topic=topic,
        start_time=start_time,
        duration=data.duration,
        agenda=data.agenda or "",
        auto_recording=data.auto_recording
    )

    session = {
        "schedule_id": generate_id("SESSION"),
        "title": topic,
        "description": data.agenda,
        "zoom_meeting_id": meeting["meeting_id"],
        "join_url": meeting["join_url"],
        "start_url": meeting["start_url"],
        "password": meeting.get("password"),
        "start_time": start_time,
        "duration": data.duration,
        "status": "scheduled",
        "recording_url": None,
        "created_at": datetime.utcnow()
    }
    await db.courses.update_one(
        {"course_id": data.course_id},
        {"$push": {"schedule": session}, "$set": {"updated_at": datetime.utcnow()}}
    )
    logger.info("Zoom meeting %s created for %s", meeting["meeting_id"], data.course_id)

    return {"success": True, "data": {**meeting, "schedule_id": session["schedule_id"]}}


@router.get("/meeting/{meeting_id}")
async def get_meeting(
    meeting_id: str,
    user: dict = Depends(require_tutor),
    db: AsyncIOMotorDatabase = Depends(get_db),
    zoom: ZoomClient = Depends(get_zoom_client)
):
    await verify_meeting_manager(db, meeting_id, user)
    return {"success": True, "data": await zoom.get_meeting(meeting_id)}


@router.put("/meeting/{meeting_id}")
async def update_meeting(
    meeting_id: str,
    data: MeetingUpdateRequest,
    user: dict = Depends(require_tutor),
    db: AsyncIOMotorDatabase = Depends(get_db),
    zoom: ZoomClient = Depends(get_zoom_client)
):
    course = await verify_meeting_manager(db, meeting_id, user)
    updates = data.dict(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    if "start_time" in updates:
        updates["start_time"] = to_naive_utc(updates["start_time"])

    await zoom.update_meeting(meeting_id, updates)

    if course:
        local = {}
        if "topic" in updates:
            local["title"] = updates["topic"]
        if "start_time" in updates:
            local["start_time"] = updates["start_time"]
        if "duration" in updates:
            local["duration"] = updates["duration"]
        if "agenda" in updates:
            local["description"] = updates["agenda"]
        if local:
            await set_session_status(db, meeting_id, local)

    return {"success": True, "message": "Meeting updated successfully"}


@router.delete("/meeting/{meeting_id}")
async def delete_meeting(
    meeting_id: str,
    user: dict = Depends(require_tutor),
    db: AsyncIOMotorDatabase = Depends(get_db),
    zoom: ZoomClient = Depends(get_zoom_client)
):
    await verify_meeting_manager(db, meeting_id, user)
    await zoom.delete_meeting(meeting_id)
    await db.courses.update_many(
        {"schedule.zoom_meeting_id": str(meeting_id)},
        {"$pull": {"schedule": {"zoom_meeting_id": str(meeting_id)}}}
    )
    return {"success": True, "message": "Meeting deleted successfully"}


# ==================== WEBHOOK ====================

@router.post("/webhook")
async def zoom_webhook(request: Request, db: AsyncIOMotorDatabase = Depends(get_db)):
    """
    Zoom event notifications - NO AUTH (x-zm-signature verification)
    """
    body = await request.body()
    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    event = payload.get("event")
    overrides = (await get_integration_settings(db)).get("zoom", {})
    secret = overrides.get("webhook_secret") or settings.ZOOM_WEBHOOK_SECRET or ""

    # URL validation is answered before signature checks
    if event == "endpoint.url_validation":
        plain_token = payload.get("payload", {}).get("plainToken", "")
        encrypted = hmac.new(secret.encode(), plain_token.encode(), hashlib.sha256).hexdigest()
        return {"plainToken": plain_token, "encryptedToken": encrypted}

    if not verify_zoom_signature(
        secret,
        request.headers.get("x-zm-request-timestamp"),
        body,
        request.headers.get("x-zm-signature")
    ):
        logger.warning("Rejected Zoom webhook with invalid signature (event=%s)", event)
        raise HTTPException(status_code=401, detail="Invalid signature")

    meeting = payload.get("payload", {}).get("object", {})
    meeting_id = str(meeting.get("id", ""))
    logger.info("Zoom webhook %s for meeting %s", event, meeting_id)

    if event == "meeting.started":
        await set_session_status(db, meeting_id, {"status": "started", "started_at": datetime.utcnow()})
        course = await find_course_by_meeting(db, meeting_id)
        if course:
            await notify_many(
                db,
                [e["student_id"] for e in course.get("enrolled_students", [])],
                NotificationType.CLASS_STARTING,
                title="Class Started",
                message=f"Your live class for {course['title']} has started. Join now!",
                metadata={"course_id": course["course_id"], "meeting_id": meeting_id},
                priority=NotificationPriority.URGENT,
                action_url=f"/courses/{course['course_id']}"
            )

    elif event == "meeting.ended":
        await set_session_status(db, meeting_id, {"status": "ended", "ended_at": datetime.utcnow()})

    elif event == "recording.completed":
        files = meeting.get("recording_files", [])
        recording_url = meeting.get("share_url") or (files[0].get("play_url") if files else None)
        if recording_url:
            await set_session_status(db, meeting_id, {"recording_url": recording_url})

    return {"success": True}
