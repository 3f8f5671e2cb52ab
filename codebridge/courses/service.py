"""
Course access rules and the enrollment workflow
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

from codebridge.achievements.service import (
    XP_REWARDS,
    ActivityType,
    increment_stats,
    record_activity,
    safe_check_and_unlock,
)
from codebridge.chat.service import add_participant
from codebridge.core.dependencies import is_admin
from codebridge.courses.sessions import with_status
from codebridge.notifications.service import NotificationType, notify

logger = logging.getLogger(__name__)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Mongo stores naive UTC datetimes"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def is_owner(course: dict, user: Optional[dict]) -> bool:
    return bool(user) and course.get("tutor_id") == user["user_id"]


def can_manage(course: dict, user: Optional[dict]) -> bool:
    return bool(user) and (is_owner(course, user) or is_admin(user))


def is_enrolled(course: dict, user_id: str) -> bool:
    return any(e["student_id"] == user_id for e in course.get("enrolled_students", []))


def enrollment_of(course: dict, user_id: str) -> Optional[dict]:
    for entry in course.get("enrolled_students", []):
        if entry["student_id"] == user_id:
            return entry
    return None


def is_public(course: dict) -> bool:
    return course.get("is_published", False) and course.get("is_approved", False)


def is_visible(course: dict, user: Optional[dict]) -> bool:
    if is_public(course) or can_manage(course, user):
        return True
    return bool(user) and is_enrolled(course, user["user_id"])


async def get_course_or_404(db: AsyncIOMotorDatabase, course_id: str) -> dict:
    course = await db.courses.find_one({"course_id": course_id}, {"_id": 0})
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")
    return course


async def verify_course_manager(db: AsyncIOMotorDatabase, course_id: str, user: dict) -> dict:
    """
    Course owner or admin

    Raises:
        404: Course not found
        403: Not the owner
    """
    course = await get_course_or_404(db, course_id)
    if not can_manage(course, user):
        raise HTTPException(status_code=403, detail="Not authorized to manage this course")
    return course


async def verify_course_member(db: AsyncIOMotorDatabase, course_id: str, user: dict) -> dict:
    """Enrolled student, course owner or admin"""
    course = await get_course_or_404(db, course_id)
    if not (can_manage(course, user) or is_enrolled(course, user["user_id"])):
        raise HTTPException(status_code=403, detail="You must be enrolled in this course")
    return course


# ==================== ENROLLMENT ====================

def check_enrollable(course: dict, user: dict):
    """
    Raises 400 when the user cannot enroll right now
    """
    if is_enrolled(course, user["user_id"]):
        raise HTTPException(status_code=400, detail="Already enrolled in this course")
    if is_owner(course, user):
        raise HTTPException(status_code=400, detail="You cannot enroll in your own course")
    if not is_public(course):
        raise HTTPException(status_code=400, detail="Course is not open for enrollment")
    if len(course.get("enrolled_students", [])) >= course.get("max_students", 100):
        raise HTTPException(status_code=400, detail="Course is full")


async def enroll_student(db: AsyncIOMotorDatabase, course: dict, user: dict, via_payment: bool = False) -> dict:
    """Add a student to a course with all follow-up effects"""
    user_id = user["user_id"]
    course_id = course["course_id"]
    entry = {
        "student_id": user_id,
        "enrolled_at": datetime.utcnow(),
        "progress": 0,
        "completed_lessons": []
    }

    result = await db.courses.update_one(
        {"course_id": course_id, "enrolled_students.student_id": {"$ne": user_id}},
        {"$push": {"enrolled_students": entry}, "$set": {"updated_at": datetime.utcnow()}}
    )
    if result.modified_count == 0:
        raise HTTPException(status_code=400, detail="Already enrolled in this course")

    await db.users.update_one({"user_id": user_id}, {"$addToSet": {"enrolled_courses": course_id}})
    if course.get("group_id"):
        await add_participant(db, course["group_id"], user_id)

    await notify(
        db, user_id, NotificationType.COURSE_ENROLLED,
        title="Enrollment Successful",
        message=f"You have successfully enrolled in {course['title']}",
        metadata={"course_id": course_id},
        action_url=f"/courses/{course_id}"
    )
    await notify(
        db, course["tutor_id"], NotificationType.COURSE_ENROLLED,
        title="New Student Enrolled",
        message=f"{user.get('name', 'A student')} enrolled in {course['title']}",
        metadata={"course_id": course_id, "student_id": user_id, "via_payment": via_payment}
    )

    await increment_stats(db, user_id, total_courses=1)
    await record_activity(
        db, user_id, ActivityType.COURSE_ENROLLED,
        title=f"Enrolled in {course['title']}",
        description="Started a new course",
        icon="🎓",
        metadata={"course_id": course_id},
        xp=XP_REWARDS["course_enrolled"]
    )
    await safe_check_and_unlock(db, user_id, "course_enrolled")

    logger.info("User %s enrolled in %s", user_id, course_id)
    return entry


# ==================== APPROVAL ====================

async def approve_course(db: AsyncIOMotorDatabase, course: dict, admin: dict) -> dict:
    updates = {
        "is_approved": True,
        "approved_by": admin["user_id"],
        "approved_at": datetime.utcnow(),
        "rejection_reason": None,
        "updated_at": datetime.utcnow()
    }
    await db.courses.update_one({"course_id": course["course_id"]}, {"$set": updates})
    await notify(
        db, course["tutor_id"], NotificationType.COURSE_APPROVED,
        title="Course Approved",
        message=f"Your course \"{course['title']}\" has been approved",
        metadata={"course_id": course["course_id"]},
        priority="high",
        action_url=f"/courses/{course['course_id']}"
    )
    return {**course, **updates}


async def reject_course(db: AsyncIOMotorDatabase, course: dict, admin: dict, reason: str) -> dict:
    updates = {
        "is_approved": False,
        "approved_by": None,
        "approved_at": None,
        "rejection_reason": reason,
        "rejected_by": admin["user_id"],
        "updated_at": datetime.utcnow()
    }
    await db.courses.update_one({"course_id": course["course_id"]}, {"$set": updates})
    await notify(
        db, course["tutor_id"], NotificationType.COURSE_REJECTED,
        title="Course Rejected",
        message=f"Your course \"{course['title']}\" was rejected: {reason}",
        metadata={"course_id": course["course_id"], "reason": reason},
        priority="high"
    )
    return {**course, **updates}


# ==================== PRESENTATION ====================

def present_course(course: dict, user: Optional[dict], tutor: Optional[dict] = None) -> dict:
    """
    Course as seen by `user`: host links and the roster stay with managers,
    join details with enrolled students
    """
    course = dict(course)
    manager = can_manage(course, user)
    enrolled = bool(user) and is_enrolled(course, user["user_id"])

    schedule = []
    for session in course.get("schedule", []):
        session = with_status(session)
        if not manager:
            session.pop("start_url", None)
            if not enrolled:
                session.pop("join_url", None)
                session.pop("password", None)
        schedule.append(session)
    course["schedule"] = schedule

    course["enrolled_count"] = len(course.get("enrolled_students", []))
    course["is_enrolled"] = enrolled
    if enrolled:
        course["my_progress"] = enrollment_of(course, user["user_id"]).get("progress", 0)
    if not manager:
        course.pop("enrolled_students", None)
    if tutor is not None:
        course["tutor"] = tutor
    return course
