import logging
import re
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from codebridge.achievements.service import (
    XP_REWARDS,
    ActivityType,
    increment_stats,
    record_activity,
    safe_check_and_unlock,
)
from codebridge.chat.service import RoomType, create_room, participant
from codebridge.core.database import get_db
from codebridge.core.dependencies import (
    get_current_user,
    get_optional_user,
    is_admin,
    require_admin,
    require_tutor,
    verified_tutor_only,
)
from codebridge.core.errors import ZoomError
from codebridge.core.utils import generate_id, get_user_brief, get_user_briefs, page_meta
from codebridge.courses.models import (
    CourseCreate,
    CourseUpdate,
    ProgressUpdate,
    RatingCreate,
    RejectRequest,
    ScheduleCreate,
    ScheduleUpdate,
)
from codebridge.courses.service import (
    approve_course,
    can_manage,
    check_enrollable,
    enroll_student,
    enrollment_of,
    get_course_or_404,
    is_enrolled,
    is_owner,
    is_visible,
    present_course,
    reject_course,
    to_naive_utc,
    verify_course_manager,
)
from codebridge.courses.sessions import ENDED, UPCOMING, session_status, with_status
from codebridge.notifications.service import NotificationType, notify_many
from codebridge.zoom.client import ZoomClient, get_zoom_client

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Courses"])

SORTABLE_FIELDS = {"created_at", "price", "average_rating", "title"}


def parse_sort(sort: str):
    """'-created_at' -> ('created_at', -1)"""
    direction = -1 if sort.startswith("-") else 1
    field = sort.lstrip("-+")
    if field not in SORTABLE_FIELDS:
        raise HTTPException(status_code=400, detail=f"Cannot sort by '{field}'")
    return field, direction


def find_session(course: dict, schedule_id: str) -> dict:
    for session in course.get("schedule", []):
        if session["schedule_id"] == schedule_id:
            return session
    raise HTTPException(status_code=404, detail="Schedule not found")


def enrolled_ids(course: dict) -> list:
    return [e["student_id"] for e in course.get("enrolled_students", [])]


async def build_session(zoom: ZoomClient, course: dict, data: ScheduleCreate) -> dict:
    """Create the Zoom meeting behind a schedule entry"""
    start_time = to_naive_utc(data.start_time)
    title = data.title or f"{course['title']} - Live Class"
    meeting = await zoom.create_meeting(
        topic=title,
        start_time=start_time,
        duration=data.duration,
        agenda=data.description or course.get("description", "")
    )
    return {
        "schedule_id": generate_id("SESSION"),
        "title": title,
        "description": data.description,
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


# ==================== COURSE CRUD ====================

@router.get("")
async def list_courses(
    category: Optional[str] = None,
    level: Optional[str] = None,
    search: Optional[str] = None,
    tutor: Optional[str] = Query(None, description="'me' for the caller's own courses, or a tutor id"),
    enrolled: bool = False,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    sort: str = "-created_at",
    user: Optional[dict] = Depends(get_optional_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Course catalogue
    - tutor=me: caller's own courses (any status)
    - enrolled=true: courses the caller is enrolled in
    - admins see everything, everyone else only published & approved
    """
    query = {}
    if tutor == "me" or enrolled:
        if not user:
            raise HTTPException(status_code=401, detail="Not authorized, no token")
        if tutor == "me":
            query["tutor_id"] = user["user_id"]
        else:
            query["enrolled_students.student_id"] = user["user_id"]
    else:
        if tutor:
            query["tutor_id"] = tutor
        if not (user and is_admin(user)):
            query["is_published"] = True
            query["is_approved"] = True

    if category:
        query["category"] = category
    if level:
        query["level"] = level
    if min_price is not None or max_price is not None:
        query["price"] = {}
        if min_price is not None:
            query["price"]["$gte"] = min_price
        if max_price is not None:
            query["price"]["$lte"] = max_price
    if search:
        pattern = re.escape(search.strip())
        query["$or"] = [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
            {"tags": {"$regex": pattern, "$options": "i"}}
        ]

    sort_field, direction = parse_sort(sort)
    total = await db.courses.count_documents(query)
    courses = await db.courses.find(query, {"_id": 0}) \
        .sort(sort_field, direction) \
        .skip((page - 1) * limit) \
        .limit(limit) \
        .to_list(length=limit)

    tutors = await get_user_briefs(db, [c["tutor_id"] for c in courses])
    data = [present_course(c, user, tutors.get(c["tutor_id"])) for c in courses]

    return {
        "success": True,
        "count": len(data),
        **page_meta(total, page, limit),
        "data": data
    }


@router.get("/{course_id}")
async def get_course(
    course_id: str,
    user: Optional[dict] = Depends(get_optional_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    course = await get_course_or_404(db, course_id)
    if not is_visible(course, user):
        raise HTTPException(status_code=404, detail="Course not found")

    tutor = await get_user_brief(db, course["tutor_id"])
    return {"success": True, "data": present_course(course, user, tutor)}


@router.post("", status_code=201)
async def create_course(
    data: CourseCreate,
    user: dict = Depends(verified_tutor_only),
    db: AsyncIOMotorDatabase = Depends(get_db),
    zoom: ZoomClient = Depends(get_zoom_client)
):
    """
    Create a course with its group chat room
    Initial schedule entries that fail to reach Zoom are skipped
    """
    course_id = generate_id("COURSE")
    room = await create_room(
        db,
        name=f"{data.title} - Group",
        room_type=RoomType.COURSE,
        participants=[participant(user["user_id"], "admin")],
        course_id=course_id
    )

    course_data = data.dict(exclude={"schedule"})
    course = {
        **course_data,
        "course_id": course_id,
        "tutor_id": user["user_id"],
        "syllabus": [
            {**item, "order": item["order"] if item["order"] is not None else index + 1}
            for index, item in enumerate(course_data["syllabus"])
        ],
        "start_date": to_naive_utc(data.start_date),
        "end_date": to_naive_utc(data.end_date),
        "schedule": [],
        "group_id": room["room_id"],
        "enrolled_students": [],
        "is_approved": is_admin(user),
        "approved_by": user["user_id"] if is_admin(user) else None,
        "approved_at": datetime.utcnow() if is_admin(user) else None,
        "rejection_reason": None,
        "ratings": [],
        "average_rating": 0,
        "created_at": datetime.utcnow(),
        "updated_at": datetime.utcnow()
    }

    for session_data in data.schedule:
        try:
            course["schedule"].append(await build_session(zoom, course, session_data))
        except ZoomError as e:
            logger.warning("Skipping schedule entry for %s: %s", course_id, e.message)

    await db.courses.insert_one(dict(course))
    logger.info("Course %s created by %s", course_id, user["user_id"])

    return {
        "success": True,
        "course_id": course_id,
        "data": present_course(course, user),
        "message": "Course created successfully"
    }


@router.put("/{course_id}")
async def update_course(
    course_id: str,
    data: CourseUpdate,
    user: dict = Depends(require_tutor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await verify_course_manager(db, course_id, user)

    updates = data.dict(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    for field in ("start_date", "end_date"):
        if field in updates:
            updates[field] = to_naive_utc(updates[field])
    if "tags" in updates and updates["tags"] is not None:
        updates["tags"] = [t.strip().lower() for t in updates["tags"] if t.strip()]
    updates["updated_at"] = datetime.utcnow()

    await db.courses.update_one({"course_id": course_id}, {"$set": updates})
    course = await get_course_or_404(db, course_id)
    return {"success": True, "data": present_course(course, user), "message": "Course updated successfully"}


@router.delete("/{course_id}")
async def delete_course(
    course_id: str,
    user: dict = Depends(require_tutor),
    db: AsyncIOMotorDatabase = Depends(get_db),
    zoom: ZoomClient = Depends(get_zoom_client)
):
    course = await verify_course_manager(db, course_id, user)
    await remove_course(db, zoom, course)
    return {"success": True, "message": "Course deleted successfully"}


async def remove_course(db: AsyncIOMotorDatabase, zoom: ZoomClient, course: dict):
    """Delete a course and everything hanging off it"""
    for session in course.get("schedule", []):
        if session.get("zoom_meeting_id"):
            try:
                await zoom.delete_meeting(session["zoom_meeting_id"])
            except ZoomError as e:
                logger.warning("Could not delete Zoom meeting %s: %s", session["zoom_meeting_id"], e.message)

    course_id = course["course_id"]
    assignment_ids = [
        a["assignment_id"]
        for a in await db.assignments.find({"course_id": course_id}, {"assignment_id": 1}).to_list(length=None)
    ]
    await db.submissions.delete_many({"assignment_id": {"$in": assignment_ids}})
    await db.assignments.delete_many({"course_id": course_id})
    await db.tests.delete_many({"course_id": course_id})
    if course.get("group_id"):
        await db.messages.delete_many({"room_id": course["group_id"]})
        await db.chat_rooms.delete_one({"room_id": course["group_id"]})
    await db.users.update_many({"enrolled_courses": course_id}, {"$pull": {"enrolled_courses": course_id}})
    await db.courses.delete_one({"course_id": course_id})
    logger.info("Course %s deleted", course_id)


# ==================== ENROLLMENT ====================

@router.post("/{course_id}/enroll")
async def enroll_in_course(
    course_id: str,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    course = await get_course_or_404(db, course_id)
    check_enrollable(course, user)

    if course.get("price", 0) > 0:
        return {
            "success": True,
            "requires_payment": True,
            "data": {
                "course_id": course_id,
                "amount": course["price"],
                "currency": course.get("currency", "NGN")
            },
            "message": "This is a paid course. Please complete payment to enroll."
        }

    entry = await enroll_student(db, course, user)
    return {
        "success": True,
        "requires_payment": False,
        "data": entry,
        "message": "Successfully enrolled in course"
    }


@router.put("/{course_id}/progress")
async def update_progress(
    course_id: str,
    data: ProgressUpdate,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Mark a syllabus lesson complete (or set progress directly for courses without a syllabus)
    """
    course = await get_course_or_404(db, course_id)
    entry = enrollment_of(course, user["user_id"])
    if not entry:
        raise HTTPException(status_code=403, detail="You must be enrolled in this course")

    syllabus = course.get("syllabus", [])
    completed = list(entry.get("completed_lessons", []))
    previous = entry.get("progress", 0)
    study_minutes = 0

    if data.lesson_index is not None:
        if data.lesson_index >= len(syllabus):
            raise HTTPException(status_code=400, detail="Lesson not found in syllabus")
        if data.lesson_index not in completed:
            completed.append(data.lesson_index)
            study_minutes = syllabus[data.lesson_index].get("duration", 0) or 0
        progress = round(len(completed) / len(syllabus) * 100, 1)
    elif data.progress is not None:
        if syllabus:
            raise HTTPException(status_code=400, detail="Progress for this course is tracked per lesson")
        progress = max(previous, data.progress)
    else:
        raise HTTPException(status_code=400, detail="Provide lesson_index or progress")

    await db.courses.update_one(
        {"course_id": course_id, "enrolled_students.student_id": user["user_id"]},
        {"$set": {
            "enrolled_students.$.progress": progress,
            "enrolled_students.$.completed_lessons": completed
        }}
    )

    uid = user["user_id"]
    if study_minutes:
        await increment_stats(db, uid, total_study_hours=round(study_minutes / 60, 2))
        await record_activity(
            db, uid, ActivityType.LESSON_COMPLETED,
            title=f"Completed: {syllabus[data.lesson_index]['title']}",
            description=course["title"],
            icon="📖",
            metadata={"course_id": course_id, "lesson_index": data.lesson_index, "study_minutes": study_minutes},
            xp=XP_REWARDS["lesson_completed"]
        )
        await safe_check_and_unlock(db, uid, "lesson_completed")

    if progress >= 100 > previous:
        await increment_stats(db, uid, courses_completed=1)
        await record_activity(
            db, uid, ActivityType.COURSE_COMPLETED,
            title=f"Completed {course['title']}",
            description="Finished every lesson in the course",
            icon="🎯",
            metadata={"course_id": course_id},
            xp=XP_REWARDS["course_completed"]
        )
        await safe_check_and_unlock(db, uid, "course_completed")

    return {
        "success": True,
        "data": {"course_id": course_id, "progress": progress, "completed_lessons": completed}
    }


@router.post("/{course_id}/rating")
async def add_rating(
    course_id: str,
    data: RatingCreate,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    course = await get_course_or_404(db, course_id)
    if not is_enrolled(course, user["user_id"]):
        raise HTTPException(status_code=403, detail="You must be enrolled to rate this course")

    ratings = [r for r in course.get("ratings", []) if r["user_id"] != user["user_id"]]
    ratings.append({
        "user_id": user["user_id"],
        "rating": data.rating,
        "review": data.review,
        "created_at": datetime.utcnow()
    })
    average = round(sum(r["rating"] for r in ratings) / len(ratings), 1)

    await db.courses.update_one(
        {"course_id": course_id},
        {"$set": {"ratings": ratings, "average_rating": average, "updated_at": datetime.utcnow()}}
    )
    return {
        "success": True,
        "data": {"average_rating": average, "ratings_count": len(ratings)},
        "message": "Rating added successfully"
    }


# ==================== APPROVAL ====================

@router.put("/{course_id}/approve")
async def approve(
    course_id: str,
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    course = await get_course_or_404(db, course_id)
    course = await approve_course(db, course, admin)
    return {"success": True, "data": present_course(course, admin), "message": "Course approved successfully"}


@router.put("/{course_id}/reject")
async def reject(
    course_id: str,
    data: RejectRequest,
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    course = await get_course_or_404(db, course_id)
    course = await reject_course(db, course, admin, data.reason)
    return {"success": True, "data": present_course(course, admin), "message": "Course rejected"}


# ==================== SCHEDULE (LIVE CLASSES) ====================

@router.get("/{course_id}/schedule")
async def get_schedule(
    course_id: str,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    course = await get_course_or_404(db, course_id)
    if not (can_manage(course, user) or is_enrolled(course, user["user_id"])):
        raise HTTPException(status_code=403, detail="You must be enrolled in this course")

    schedule = present_course(course, user)["schedule"]
    schedule.sort(key=lambda s: s["start_time"])
    return {"success": True, "count": len(schedule), "data": schedule}


@router.post("/{course_id}/schedule", status_code=201)
async def add_schedule(
    course_id: str,
    data: ScheduleCreate,
    user: dict = Depends(require_tutor),
    db: AsyncIOMotorDatabase = Depends(get_db),
    zoom: ZoomClient = Depends(get_zoom_client)
):
    course = await verify_course_manager(db, course_id, user)
    start_time = to_naive_utc(data.start_time)
    if session_status(start_time, data.duration) == ENDED:
        raise HTTPException(status_code=400, detail="Class time must be in the future")

    session = await build_session(zoom, course, data)
    await db.courses.update_one(
        {"course_id": course_id},
        {"$push": {"schedule": session}, "$set": {"updated_at": datetime.utcnow()}}
    )

    await notify_many(
        db, enrolled_ids(course), NotificationType.CLASS_SCHEDULED,
        title="New Class Scheduled",
        message=f"{session['title']} for {course['title']} on {start_time.strftime('%b %d, %Y %H:%M')} UTC",
        metadata={"course_id": course_id, "schedule_id": session["schedule_id"]},
        action_url=f"/courses/{course_id}"
    )

    return {"success": True, "data": with_status(session), "message": "Class scheduled successfully"}


@router.put("/{course_id}/schedule/{schedule_id}")
async def update_schedule(
    course_id: str,
    schedule_id: str,
    data: ScheduleUpdate,
    user: dict = Depends(require_tutor),
    db: AsyncIOMotorDatabase = Depends(get_db),
    zoom: ZoomClient = Depends(get_zoom_client)
):
    course = await verify_course_manager(db, course_id, user)
    session = find_session(course, schedule_id)

    updates = data.dict(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    if "start_time" in updates:
        updates["start_time"] = to_naive_utc(updates["start_time"])

    zoom_updates = {}
    if "title" in updates:
        zoom_updates["topic"] = updates["title"]
    if "start_time" in updates:
        zoom_updates["start_time"] = updates["start_time"]
    if "duration" in updates:
        zoom_updates["duration"] = updates["duration"]
    if "description" in updates:
        zoom_updates["agenda"] = updates["description"] or ""
    if zoom_updates and session.get("zoom_meeting_id"):
        await zoom.update_meeting(session["zoom_meeting_id"], zoom_updates)

    await db.courses.update_one(
        {"course_id": course_id, "schedule.schedule_id": schedule_id},
        {"$set": {f"schedule.$.{key}": value for key, value in updates.items()}}
    )
    session = {**session, **updates}

    if "start_time" in updates:
        await notify_many(
            db, enrolled_ids(course), NotificationType.COURSE_UPDATE,
            title="Class Rescheduled",
            message=f"{session['title']} for {course['title']} moved to "
                    f"{session['start_time'].strftime('%b %d, %Y %H:%M')} UTC",
            metadata={"course_id": course_id, "schedule_id": schedule_id}
        )

    return {"success": True, "data": with_status(session), "message": "Schedule updated successfully"}


@router.delete("/{course_id}/schedule/{schedule_id}")
async def delete_schedule(
    course_id: str,
    schedule_id: str,
    user: dict = Depends(require_tutor),
    db: AsyncIOMotorDatabase = Depends(get_db),
    zoom: ZoomClient = Depends(get_zoom_client)
):
    course = await verify_course_manager(db, course_id, user)
    session = find_session(course, schedule_id)

    if session.get("zoom_meeting_id"):
        try:
            await zoom.delete_meeting(session["zoom_meeting_id"])
        except ZoomError as e:
            logger.warning("Could not delete Zoom meeting %s: %s", session["zoom_meeting_id"], e.message)

    await db.courses.update_one(
        {"course_id": course_id},
        {"$pull": {"schedule": {"schedule_id": schedule_id}}, "$set": {"updated_at": datetime.utcnow()}}
    )
    return {"success": True, "message": "Schedule deleted successfully"}


@router.get("/{course_id}/schedule/{schedule_id}/join")
async def get_join_url(
    course_id: str,
    schedule_id: str,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    course = await get_course_or_404(db, course_id)
    if not (is_enrolled(course, user["user_id"]) or is_admin(user)):
        raise HTTPException(status_code=403, detail="You must be enrolled in this course to join")

    session = with_status(find_session(course, schedule_id))
    if session.get("status") == "cancelled":
        raise HTTPException(status_code=400, detail="This class has been cancelled")
    if not is_admin(user) and not session["can_join"]:
        if session["session_status"] == UPCOMING:
            raise HTTPException(status_code=400, detail="Class is not open for joining yet")
        raise HTTPException(status_code=400, detail="This class has ended")

    return {
        "success": True,
        "data": {
            "join_url": session["join_url"],
            "password": session.get("password"),
            "meeting_id": session.get("zoom_meeting_id"),
            "title": session.get("title"),
            "start_time": session["start_time"],
            "duration": session.get("duration"),
            "session_status": session["session_status"]
        }
    }


@router.get("/{course_id}/schedule/{schedule_id}/start")
async def get_start_url(
    course_id: str,
    schedule_id: str,
    user: dict = Depends(require_tutor),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    course = await get_course_or_404(db, course_id)
    if not (is_owner(course, user) or is_admin(user)):
        raise HTTPException(status_code=403, detail="Only the course tutor can start this class")

    session = with_status(find_session(course, schedule_id))
    return {
        "success": True,
        "data": {
            "start_url": session["start_url"],
            "meeting_id": session.get("zoom_meeting_id"),
            "title": session.get("title"),
            "start_time": session["start_time"],
            "duration": session.get("duration"),
            "session_status": session["session_status"]
        }
    }
