from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel

from codebridge.achievements.definitions import get_all_definitions
from codebridge.achievements.service import (
    TRIGGER_ACHIEVEMENTS,
    check_and_unlock,
    get_or_create_stats,
    list_with_progress,
    xp_for_next_level,
)
from codebridge.core.database import get_db
from codebridge.core.dependencies import get_current_user, is_admin

router = APIRouter(tags=["Achievements"])


class CheckRequest(BaseModel):
    trigger_type: str


def ensure_self_or_admin(user: dict, user_id: str):
    if user["user_id"] != user_id and not is_admin(user):
        raise HTTPException(status_code=403, detail="Not authorized to access this data")


@router.get("/definitions")
async def get_definitions():
    return {"success": True, "count": len(get_all_definitions()), "data": get_all_definitions()}


@router.get("/student/{user_id}")
async def get_student_achievements(
    user_id: str,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    ensure_self_or_admin(user, user_id)
    stats = await get_or_create_stats(db, user_id)
    unlocked = await db.achievements.find({"user_id": user_id}, {"_id": 0}).to_list(length=None)
    return {"success": True, "data": list_with_progress(stats, unlocked)}


@router.get("/stats/{user_id}")
async def get_student_stats(
    user_id: str,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    ensure_self_or_admin(user, user_id)
    stats = await get_or_create_stats(db, user_id)
    unlocked_count = await db.achievements.count_documents({"user_id": user_id})
    next_level_xp = xp_for_next_level(stats["level"])

    return {
        "success": True,
        "data": {
            "total_achievements": len(get_all_definitions()),
            "unlocked_achievements": unlocked_count,
            "level": stats["level"],
            "xp": stats["xp"],
            "xp_for_next_level": next_level_xp,
            "xp_to_next_level": next_level_xp - stats["xp"],
            "current_streak": stats["current_streak"],
            "longest_streak": stats["longest_streak"],
            "total_study_hours": stats.get("total_study_hours", 0),
            "courses_completed": stats.get("courses_completed", 0),
            "total_courses": stats.get("total_courses", 0),
            "average_score": stats.get("average_score", 0),
            "community_engagement": {
                "posts": stats.get("total_posts", 0),
                "comments": stats.get("total_comments", 0),
                "likes_received": stats.get("total_likes_received", 0)
            }
        }
    }


@router.get("/analytics/{user_id}")
async def get_learning_analytics(
    user_id: str,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Learning analytics for dashboards
    - learning_progress: last 7 days (study hours from lessons, assignments submitted)
    - course_distribution: completed / in progress / not started
    - assignment_scores: last 8 graded submissions
    - weekly_activity: activity counts for the last 28 days
    """
    ensure_self_or_admin(user, user_id)
    today = datetime.utcnow().date()
    since = datetime.combine(today - timedelta(days=27), datetime.min.time())

    activities = await db.student_activities.find(
        {"user_id": user_id, "created_at": {"$gte": since}},
        {"_id": 0, "activity_type": 1, "created_at": 1, "metadata": 1}
    ).to_list(length=None)

    by_day = {}
    for activity in activities:
        by_day.setdefault(activity["created_at"].date(), []).append(activity)

    learning_progress = []
    for offset in range(6, -1, -1):
        day = today - timedelta(days=offset)
        day_activities = by_day.get(day, [])
        minutes = sum(
            a.get("metadata", {}).get("study_minutes", 0)
            for a in day_activities if a["activity_type"] == "lesson_completed"
        )
        learning_progress.append({
            "date": day.strftime("%b %d"),
            "hours": round(minutes / 60, 1),
            "assignments": sum(1 for a in day_activities if a["activity_type"] == "assignment_submitted")
        })

    courses = await db.courses.find(
        {"enrolled_students.student_id": user_id},
        {"_id": 0, "enrolled_students": 1}
    ).to_list(length=None)
    progresses = [
        entry.get("progress", 0)
        for course in courses
        for entry in course.get("enrolled_students", [])
        if entry.get("student_id") == user_id
    ]
    course_distribution = [
        {"name": "Completed", "value": sum(1 for p in progresses if p >= 100)},
        {"name": "In Progress", "value": sum(1 for p in progresses if 0 < p < 100)},
        {"name": "Not Started", "value": sum(1 for p in progresses if p <= 0)}
    ]

    graded = await db.submissions.find(
        {"student_id": user_id, "status": "graded"},
        {"_id": 0, "assignment_id": 1, "percentage": 1, "graded_at": 1}
    ).sort("graded_at", -1).limit(8).to_list(length=8)
    titles = {}
    if graded:
        assignments = await db.assignments.find(
            {"assignment_id": {"$in": [s["assignment_id"] for s in graded]}},
            {"_id": 0, "assignment_id": 1, "title": 1}
        ).to_list(length=None)
        titles = {a["assignment_id"]: a["title"] for a in assignments}
    assignment_scores = [
        {"name": titles.get(s["assignment_id"], "Assignment")[:15], "score": s.get("percentage")}
        for s in reversed(graded)
    ]

    weekly_activity = [
        {
            "date": (today - timedelta(days=offset)).isoformat(),
            "count": len(by_day.get(today - timedelta(days=offset), []))
        }
        for offset in range(27, -1, -1)
    ]

    return {
        "success": True,
        "data": {
            "learning_progress": learning_progress,
            "course_distribution": course_distribution,
            "assignment_scores": assignment_scores,
            "weekly_activity": weekly_activity
        }
    }


@router.get("/activity/{user_id}")
async def get_activity_timeline(
    user_id: str,
    limit: int = Query(10, ge=1, le=100),
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    ensure_self_or_admin(user, user_id)
    activities = await db.student_activities.find({"user_id": user_id}, {"_id": 0}) \
        .sort("created_at", -1) \
        .limit(limit) \
        .to_list(length=limit)

    return {
        "success": True,
        "data": [
            {
                "id": a["activity_id"],
                "type": a["activity_type"],
                "title": a["title"],
                "description": a.get("description"),
                "icon": a.get("icon"),
                "timestamp": a["created_at"],
                "xp_earned": a.get("xp_earned", 0),
                "metadata": a.get("metadata", {})
            }
            for a in activities
        ]
    }


@router.post("/check/{user_id}")
async def check_achievements(
    user_id: str,
    data: CheckRequest,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    ensure_self_or_admin(user, user_id)
    if data.trigger_type not in TRIGGER_ACHIEVEMENTS:
        raise HTTPException(status_code=400, detail=f"Unknown trigger type: {data.trigger_type}")

    unlocked = await check_and_unlock(db, user_id, data.trigger_type)
    return {
        "success": True,
        "unlocked_count": len(unlocked),
        "data": unlocked
    }
