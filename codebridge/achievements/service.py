"""
Student progression: stats, XP/levels, streaks, activity log and achievement unlocking
"""

import logging
import math
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from codebridge.achievements.definitions import get_all_definitions, get_definition
from codebridge.core.utils import generate_id
from codebridge.notifications.service import NotificationType, notify

logger = logging.getLogger(__name__)


class ActivityType(str, Enum):
    COURSE_ENROLLED = "course_enrolled"
    COURSE_COMPLETED = "course_completed"
    LESSON_COMPLETED = "lesson_completed"
    ASSIGNMENT_SUBMITTED = "assignment_submitted"
    ASSIGNMENT_GRADED = "assignment_graded"
    TEST_COMPLETED = "test_completed"
    POST_CREATED = "post_created"
    COMMENT_ADDED = "comment_added"
    ACHIEVEMENT_UNLOCKED = "achievement_unlocked"
    LEVEL_UP = "level_up"
    LOGIN = "login"


# Which achievements each trigger can unlock. Streaks are evaluated on every trigger.
TRIGGER_ACHIEVEMENTS: Dict[str, List[str]] = {
    "course_enrolled": ["first-course", "first-completion", "3-courses", "10-courses", "100-hours"],
    "course_completed": ["first-completion", "3-courses", "10-courses", "100-hours"],
    "lesson_completed": ["100-hours"],
    "assignment_submitted": ["first-assignment"],
    "assignment_graded": ["perfect-score", "high-achiever", "overachiever"],
    "post_created": ["first-post", "10-posts", "50-posts"],
    "comment_created": ["100-comments"],
    "login": ["early-bird"],
    "profile_updated": ["profile-complete"],
}
STREAK_ACHIEVEMENTS = ["7-day-streak", "30-day-streak", "100-day-streak"]
STREAK_FIELDS = ("current_streak", "longest_streak", "last_activity_date")

# Stat field measured by each achievement
ACHIEVEMENT_METRICS = {
    "first-course": "total_courses",
    "first-assignment": "assignments_submitted",
    "first-post": "total_posts",
    "profile-complete": "profile_complete",
    "7-day-streak": "current_streak",
    "early-bird": "early_login_days",
    "30-day-streak": "current_streak",
    "100-day-streak": "current_streak",
    "first-completion": "courses_completed",
    "3-courses": "courses_completed",
    "10-courses": "courses_completed",
    "100-hours": "total_study_hours",
    "10-posts": "total_posts",
    "50-posts": "total_posts",
    "100-comments": "total_comments",
    "perfect-score": "perfect_scores",
    "high-achiever": "completed_assignments",
    "overachiever": "high_scores",
}

XP_REWARDS = {
    "course_enrolled": 20,
    "lesson_completed": 5,
    "course_completed": 100,
    "assignment_submitted": 15,
    "assignment_graded": 10,
    "test_completed": 10,
    "post_created": 5,
    "comment_added": 2,
}

HIGH_ACHIEVER_AVERAGE = 90
OVERACHIEVER_PERCENTAGE = 95
EARLY_BIRD_HOUR = 7


# ==================== PURE STAT MATH ====================

def new_stats(user_id: str) -> dict:
    now = datetime.utcnow()
    return {
        "user_id": user_id,
        "xp": 0,
        "level": 1,
        "current_streak": 0,
        "longest_streak": 0,
        "last_activity_date": None,
        "total_study_hours": 0.0,
        "total_courses": 0,
        "courses_completed": 0,
        "assignments_submitted": 0,
        "completed_assignments": 0,
        "average_score": 0.0,
        "perfect_scores": 0,
        "high_scores": 0,
        "total_posts": 0,
        "total_comments": 0,
        "total_likes_received": 0,
        "profile_complete": 0,
        "early_login_days": [],
        "created_at": now,
        "updated_at": now
    }


def xp_for_next_level(level: int) -> int:
    """Total XP needed to leave `level` (exponential growth)"""
    return math.floor(1000 * math.pow(1.5, level - 1))


def level_for_xp(xp: int, level: int = 1) -> int:
    while xp >= xp_for_next_level(level):
        level += 1
    return level


def apply_xp(stats: dict, amount: int) -> bool:
    """Add XP to a stats document; returns True when at least one level was gained"""
    stats["xp"] = stats.get("xp", 0) + amount
    level = stats.setdefault("level", 1)
    stats["level"] = level_for_xp(stats["xp"], level)
    return stats["level"] > level


def apply_streak(stats: dict, now: Optional[datetime] = None) -> bool:
    """
    Update streak counters for activity at `now`; returns True when they changed

    Same calendar day: unchanged. Next day: +1. Longer gap: reset to 1.
    """
    now = now or datetime.utcnow()
    last = stats.get("last_activity_date")

    if not last:
        stats["current_streak"] = 1
        stats["longest_streak"] = max(stats.get("longest_streak", 0), 1)
    else:
        days = (now.date() - last.date()).days
        if days <= 0:
            return False
        if days == 1:
            stats["current_streak"] = stats.get("current_streak", 0) + 1
        else:
            stats["current_streak"] = 1
        stats["longest_streak"] = max(stats.get("longest_streak", 0), stats["current_streak"])

    stats["last_activity_date"] = now
    return True


def achievement_current(achievement_id: str, stats: dict) -> float:
    metric = ACHIEVEMENT_METRICS.get(achievement_id)
    if not metric:
        return 0
    if metric == "early_login_days":
        return len(stats.get(metric, []))
    if achievement_id == "high-achiever" and stats.get("average_score", 0) < HIGH_ACHIEVER_AVERAGE:
        return 0
    return stats.get(metric, 0) or 0


def is_achievement_met(achievement_id: str, stats: dict) -> bool:
    definition = get_definition(achievement_id)
    if not definition:
        return False
    return achievement_current(achievement_id, stats) >= definition["target"]


def achievement_progress(achievement_id: str, stats: dict) -> dict:
    definition = get_definition(achievement_id)
    current = min(achievement_current(achievement_id, stats), definition["target"])
    return {
        "current": current,
        "target": definition["target"],
        "progress": round(current / definition["target"] * 100) if definition["target"] else 100
    }


# ==================== PERSISTENCE ====================

async def get_or_create_stats(db: AsyncIOMotorDatabase, user_id: str) -> dict:
    stats = await db.student_stats.find_one({"user_id": user_id}, {"_id": 0})
    if stats:
        return stats
    stats = new_stats(user_id)
    try:
        await db.student_stats.insert_one(dict(stats))
    except DuplicateKeyError:
        # Created concurrently
        stats = await db.student_stats.find_one({"user_id": user_id}, {"_id": 0})
    return stats


async def set_stats(db: AsyncIOMotorDatabase, user_id: str, fields: dict):
    """Overwrite only the named fields; counters are changed with $inc elsewhere"""
    await db.student_stats.update_one(
        {"user_id": user_id},
        {"$set": {**fields, "updated_at": datetime.utcnow()}}
    )


async def increment_stats(db: AsyncIOMotorDatabase, user_id: str, **deltas) -> dict:
    """Atomically bump counters, creating the stats document if needed"""
    await get_or_create_stats(db, user_id)
    await db.student_stats.update_one(
        {"user_id": user_id},
        {"$inc": deltas, "$set": {"updated_at": datetime.utcnow()}}
    )
    return await db.student_stats.find_one({"user_id": user_id}, {"_id": 0})


async def record_activity(
    db: AsyncIOMotorDatabase,
    user_id: str,
    activity_type: ActivityType,
    title: str,
    description: str = "",
    metadata: Optional[dict] = None,
    icon: Optional[str] = None,
    xp: int = 0
) -> dict:
    """Append to the activity timeline and award XP if any"""
    activity = {
        "activity_id": generate_id("ACT"),
        "user_id": user_id,
        "activity_type": ActivityType(activity_type).value,
        "title": title,
        "description": description,
        "icon": icon,
        "metadata": metadata or {},
        "xp_earned": xp,
        "created_at": datetime.utcnow()
    }
    await db.student_activities.insert_one(dict(activity))
    if xp:
        await award_xp(db, user_id, xp)
    return activity


async def award_xp(db: AsyncIOMotorDatabase, user_id: str, amount: int) -> bool:
    """Add XP atomically, then raise the level from the updated total"""
    await get_or_create_stats(db, user_id)
    stats = await db.student_stats.find_one_and_update(
        {"user_id": user_id},
        {"$inc": {"xp": amount}, "$set": {"updated_at": datetime.utcnow()}},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER
    )
    current = stats.get("level", 1)
    level = level_for_xp(stats["xp"], current)
    if level <= current:
        return False

    # $max keeps a concurrent higher level
    await db.student_stats.update_one({"user_id": user_id}, {"$max": {"level": level}})
    await db.student_activities.insert_one({
        "activity_id": generate_id("ACT"),
        "user_id": user_id,
        "activity_type": ActivityType.LEVEL_UP.value,
        "title": f"Level Up! Now Level {level}",
        "description": f"You've reached level {level}!",
        "icon": "🎊",
        "metadata": {"level": level, "xp": stats["xp"]},
        "xp_earned": 0,
        "created_at": datetime.utcnow()
    })
    return True


async def refresh_score_stats(db: AsyncIOMotorDatabase, user_id: str) -> dict:
    """Recompute grade-derived counters from graded submissions"""
    graded = await db.submissions.find(
        {"student_id": user_id, "status": "graded", "percentage": {"$ne": None}},
        {"_id": 0, "percentage": 1}
    ).to_list(length=None)
    percentages = [s["percentage"] for s in graded]

    scores = {
        "completed_assignments": len(percentages),
        "average_score": round(sum(percentages) / len(percentages), 1) if percentages else 0.0,
        "perfect_scores": sum(1 for p in percentages if p >= 100),
        "high_scores": sum(1 for p in percentages if p > OVERACHIEVER_PERCENTAGE),
    }
    await get_or_create_stats(db, user_id)
    await set_stats(db, user_id, scores)
    return await db.student_stats.find_one({"user_id": user_id}, {"_id": 0})


async def track_login(db: AsyncIOMotorDatabase, user_id: str, now: Optional[datetime] = None):
    now = now or datetime.utcnow()
    await get_or_create_stats(db, user_id)
    if now.hour < EARLY_BIRD_HOUR:
        await db.student_stats.update_one(
            {"user_id": user_id},
            {"$addToSet": {"early_login_days": now.date().isoformat()}}
        )


# ==================== UNLOCKING ====================

async def unlock(db: AsyncIOMotorDatabase, user_id: str, achievement_id: str) -> Optional[dict]:
    """Unlock once; returns the achievement record or None if already unlocked"""
    definition = get_definition(achievement_id)
    if not definition:
        return None
    if await db.achievements.find_one({"user_id": user_id, "achievement_id": achievement_id}):
        return None

    record = {
        "user_id": user_id,
        "achievement_id": achievement_id,
        "title": definition["title"],
        "description": definition["description"],
        "emoji": definition["emoji"],
        "category": definition["category"],
        "rarity": definition["rarity"],
        "unlocked": True,
        "unlocked_at": datetime.utcnow(),
        "progress": 100,
        "current": definition["target"],
        "target": definition["target"]
    }
    try:
        await db.achievements.insert_one(dict(record))
    except DuplicateKeyError:
        return None

    await record_activity(
        db, user_id, ActivityType.ACHIEVEMENT_UNLOCKED,
        title=f"Achievement Unlocked: {definition['title']}",
        description=definition["description"],
        icon=definition["emoji"],
        metadata={"achievement_id": achievement_id, "xp_gained": definition["xp_reward"]},
        xp=definition["xp_reward"]
    )
    await notify(
        db, user_id, NotificationType.ACHIEVEMENT,
        title="Achievement Unlocked!",
        message=f"{definition['emoji']} {definition['title']}: {definition['description']}",
        metadata={"achievement_id": achievement_id, "xp_reward": definition["xp_reward"]}
    )
    logger.info("User %s unlocked %s", user_id, achievement_id)
    return record


async def check_and_unlock(
    db: AsyncIOMotorDatabase,
    user_id: str,
    trigger: str
) -> List[dict]:
    """Evaluate achievements relevant to `trigger` and unlock the ones now met"""
    stats = await get_or_create_stats(db, user_id)
    if apply_streak(stats):
        await set_stats(db, user_id, {k: stats[k] for k in STREAK_FIELDS})

    if trigger == "assignment_graded":
        stats = await refresh_score_stats(db, user_id)
    elif trigger == "profile_updated":
        user = await db.users.find_one({"user_id": user_id}, {"_id": 0, "bio": 1, "avatar": 1})
        complete = 1 if user and user.get("bio") and user.get("avatar") else 0
        if complete != stats.get("profile_complete", 0):
            stats["profile_complete"] = complete
            await set_stats(db, user_id, {"profile_complete": complete})

    candidates = TRIGGER_ACHIEVEMENTS.get(trigger, []) + STREAK_ACHIEVEMENTS
    unlocked = []
    for achievement_id in candidates:
        if is_achievement_met(achievement_id, stats):
            record = await unlock(db, user_id, achievement_id)
            if record:
                unlocked.append(record)
    return unlocked


async def safe_check_and_unlock(db: AsyncIOMotorDatabase, user_id: str, trigger: str):
    """Achievement check that never fails the calling request"""
    try:
        return await check_and_unlock(db, user_id, trigger)
    except Exception:
        logger.exception("Achievement check failed for %s (%s)", user_id, trigger)
        return []


def list_with_progress(stats: dict, unlocked_records: List[dict]) -> List[dict]:
    unlocked_map = {record["achievement_id"]: record for record in unlocked_records}
    achievements = []
    for definition in get_all_definitions():
        record = unlocked_map.get(definition["id"])
        base = {
            "id": definition["id"],
            "title": definition["title"],
            "description": definition["description"],
            "emoji": definition["emoji"],
            "category": definition["category"],
            "rarity": definition["rarity"],
            "xp_reward": definition["xp_reward"],
        }
        if record:
            base.update({
                "unlocked": True,
                "unlocked_at": record.get("unlocked_at"),
                "progress": 100,
                "current": definition["target"],
                "target": definition["target"]
            })
        else:
            base.update({"unlocked": False, "unlocked_at": None, **achievement_progress(definition["id"], stats)})
        achievements.append(base)
    return achievements
