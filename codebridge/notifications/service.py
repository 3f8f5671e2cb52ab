"""
Notification persistence and realtime push
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from codebridge.core.utils import generate_id, serialize_mongo
from codebridge.notifications.mailer import email_users
from codebridge.realtime.manager import manager

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    MESSAGE = "message"
    ASSIGNMENT = "assignment"
    ASSIGNMENT_SUBMITTED = "assignment_submitted"
    ASSIGNMENT_GRADED = "assignment_graded"
    COURSE_ENROLLED = "course_enrolled"
    COURSE_APPROVED = "course_approved"
    COURSE_REJECTED = "course_rejected"
    COURSE_UPDATE = "course_update"
    CLASS_SCHEDULED = "class_scheduled"
    CLASS_STARTING = "class_starting"
    ACHIEVEMENT = "achievement"
    PAYMENT = "payment"
    ACCOUNT_UPDATE = "account_update"
    POST_LIKE = "post_like"
    POST_COMMENT = "post_comment"
    POST_MODERATED = "post_moderated"
    SYSTEM = "system"


# Also delivered by email
EMAIL_TYPES = {
    NotificationType.COURSE_ENROLLED.value,
    NotificationType.CLASS_SCHEDULED.value,
    NotificationType.ASSIGNMENT_GRADED.value,
    NotificationType.PAYMENT.value,
}


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


def build_notification(
    user_id: str,
    type: NotificationType,
    title: str,
    message: str,
    metadata: Optional[dict] = None,
    priority: NotificationPriority = NotificationPriority.MEDIUM,
    action_url: Optional[str] = None
) -> dict:
    return {
        "notification_id": generate_id("NTF"),
        "user_id": user_id,
        "type": NotificationType(type).value,
        "title": title,
        "message": message,
        "metadata": metadata or {},
        "is_read": False,
        "read_at": None,
        "priority": NotificationPriority(priority).value,
        "action_url": action_url,
        "created_at": datetime.utcnow()
    }


async def push(notification: dict):
    """Deliver a stored notification to the user's live connections"""
    try:
        await manager.emit_to_user(notification["user_id"], "newNotification", serialize_mongo(notification))
    except Exception:
        logger.exception("Failed to push notification %s", notification.get("notification_id"))


async def notify(
    db: AsyncIOMotorDatabase,
    user_id: str,
    type: NotificationType,
    title: str,
    message: str,
    metadata: Optional[dict] = None,
    priority: NotificationPriority = NotificationPriority.MEDIUM,
    action_url: Optional[str] = None
) -> dict:
    """Persist a notification and push it in realtime"""
    notification = build_notification(user_id, type, title, message, metadata, priority, action_url)
    await db.notifications.insert_one(dict(notification))
    await push(notification)
    if notification["type"] in EMAIL_TYPES:
        await email_users(db, [user_id], title, message, action_url)
    return notification


async def notify_many(
    db: AsyncIOMotorDatabase,
    user_ids: Iterable[str],
    type: NotificationType,
    title: str,
    message: str,
    metadata: Optional[dict] = None,
    priority: NotificationPriority = NotificationPriority.MEDIUM,
    action_url: Optional[str] = None
) -> List[dict]:
    notifications = [
        build_notification(user_id, type, title, message, metadata, priority, action_url)
        for user_id in dict.fromkeys(user_ids)
    ]
    if not notifications:
        return []
    await db.notifications.insert_many([dict(n) for n in notifications])
    for notification in notifications:
        await push(notification)
    if NotificationType(type).value in EMAIL_TYPES:
        await email_users(db, [n["user_id"] for n in notifications], title, message, action_url)
    return notifications
