"""
Analytics & dashboard stats for the admin panel
Short-lived in-memory cache keeps repeated dashboard loads cheap
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase

# Cache TTLs
DASHBOARD_STATS_TTL = 300  # 5 minutes
CHART_DATA_TTL = 180       # 3 minutes


class CacheManager:
    """In-memory cache with TTL"""

    def __init__(self):
        self._cache: Dict[str, Tuple[Any, datetime]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            if key in self._cache:
                value, expiry = self._cache[key]
                if datetime.utcnow() < expiry:
                    return value
                del self._cache[key]
        return None

    async def set(self, key: str, value: Any, ttl_seconds: int):
        async with self._lock:
            self._cache[key] = (value, datetime.utcnow() + timedelta(seconds=ttl_seconds))

    async def clear(self):
        async with self._lock:
            self._cache.clear()


cache = CacheManager()


def window_start(days: int, now: Optional[datetime] = None) -> datetime:
    """Midnight UTC `days - 1` days ago, so the window covers `days` calendar days"""
    now = now or datetime.utcnow()
    return (now - timedelta(days=days - 1)).replace(hour=0, minute=0, second=0, microsecond=0)


def day_keys(days: int, now: Optional[datetime] = None) -> List[str]:
    start = window_start(days, now)
    return [(start + timedelta(days=i)).strftime("%Y-%m-%d") for i in range(days)]


DAY_OF_CREATED_AT = {"$dateToString": {"format": "%Y-%m-%d", "date": "$created_at"}}


async def revenue_by_currency(db: AsyncIOMotorDatabase, match: Optional[Dict] = None) -> Dict:
    """Successful payment totals per currency, computed server-side"""
    pipeline = await db.payments.aggregate([
        {"$match": {"status": "success", **(match or {})}},
        {
            "$group": {
                "_id": {"$ifNull": ["$currency", "NGN"]},
                "total": {"$sum": {"$ifNull": ["$amount", 0]}},
                "count": {"$sum": 1}
            }
        }
    ]).to_list(length=None)

    by_currency = {item["_id"]: round(item["total"], 2) for item in pipeline}
    return {
        "total": round(sum(by_currency.values()), 2),
        "by_currency": by_currency,
        "successful_payments": sum(item["count"] for item in pipeline),
    }


async def get_overview(db: AsyncIOMotorDatabase) -> Dict:
    cached = await cache.get("overview")
    if cached:
        return cached

    week_ago = datetime.utcnow() - timedelta(days=7)
    recent = await db.users.find({}, {"_id": 0, "password_hash": 0}) \
        .sort("created_at", -1) \
        .limit(5) \
        .to_list(length=5)

    result = {
        "users": {
            "total": await db.users.count_documents({}),
            "students": await db.users.count_documents({"role": "student"}),
            "tutors": await db.users.count_documents({"role": "tutor"}),
            "admins": await db.users.count_documents({"role": {"$in": ["admin", "superadmin"]}}),
            "active": await db.users.count_documents({"is_active": True}),
            "new_this_week": await db.users.count_documents({"created_at": {"$gte": week_ago}}),
            "pending_tutor_verification": await db.users.count_documents(
                {"role": "tutor", "verified_tutor": False}
            ),
        },
        "courses": {
            "total": await db.courses.count_documents({}),
            "published": await db.courses.count_documents({"is_published": True, "is_approved": True}),
            "pending_approval": await db.courses.count_documents(
                {"is_approved": False, "rejection_reason": None}
            ),
        },
        "posts": {
            "total": await db.posts.count_documents({}),
            "hidden": await db.posts.count_documents({"is_hidden": True}),
        },
        "assignments": await db.assignments.count_documents({}),
        "submissions": await db.submissions.count_documents({}),
        "revenue": await revenue_by_currency(db),
        "recent_signups": recent,
    }
    await cache.set("overview", result, DASHBOARD_STATS_TTL)
    return result


async def get_user_growth(db: AsyncIOMotorDatabase, days: int = 30) -> List[Dict]:
    """Daily registrations by role"""
    cache_key = f"chart:user_growth:{days}"
    cached = await cache.get(cache_key)
    if cached:
        return cached

    pipeline = await db.users.aggregate([
        {"$match": {"created_at": {"$exists": True, "$gte": window_start(days)}}},
        {
            "$group": {
                "_id": {"date": DAY_OF_CREATED_AT, "role": "$role"},
                "count": {"$sum": 1}
            }
        }
    ]).to_list(length=None)

    buckets = {day: {"date": day, "total": 0, "student": 0, "tutor": 0, "admin": 0} for day in day_keys(days)}
    for item in pipeline:
        bucket = buckets.get(item["_id"]["date"])
        if bucket is None:
            continue
        role = item["_id"].get("role") or "student"
        role = "admin" if role in ("admin", "superadmin") else role
        bucket["total"] += item["count"]
        bucket[role] = bucket.get(role, 0) + item["count"]

    result = list(buckets.values())
    await cache.set(cache_key, result, CHART_DATA_TTL)
    return result


async def get_revenue(db: AsyncIOMotorDatabase, days: int = 30) -> Dict:
    """Daily successful payment totals plus per-currency totals"""
    cache_key = f"chart:revenue:{days}"
    cached = await cache.get(cache_key)
    if cached:
        return cached

    since = window_start(days)
    pipeline = await db.payments.aggregate([
        {"$match": {"status": "success", "created_at": {"$gte": since}}},
        {
            "$group": {
                "_id": DAY_OF_CREATED_AT,
                "revenue": {"$sum": {"$ifNull": ["$amount", 0]}},
                "count": {"$sum": 1}
            }
        },
        {"$sort": {"_id": 1}}
    ]).to_list(length=None)

    buckets = {day: {"date": day, "revenue": 0.0, "payments": 0} for day in day_keys(days)}
    for item in pipeline:
        bucket = buckets.get(item["_id"])
        if bucket is not None:
            bucket["revenue"] = round(item["revenue"], 2)
            bucket["payments"] = item["count"]

    totals = await revenue_by_currency(db, {"created_at": {"$gte": since}})
    result = {
        "daily": list(buckets.values()),
        "by_currency": totals["by_currency"],
        "total": totals["total"],
    }
    await cache.set(cache_key, result, CHART_DATA_TTL)
    return result


async def get_engagement(db: AsyncIOMotorDatabase, days: int = 30) -> Dict:
    """Activity counts over the window and the most enrolled courses"""
    cache_key = f"engagement:{days}"
    cached = await cache.get(cache_key)
    if cached:
        return cached

    since = window_start(days)
    post_totals = await db.posts.aggregate([
        {"$match": {"created_at": {"$gte": since}}},
        {
            "$group": {
                "_id": None,
                "posts": {"$sum": 1},
                "comments": {"$sum": {"$size": {"$ifNull": ["$comments", []]}}},
                "likes": {"$sum": {"$size": {"$ifNull": ["$likes", []]}}}
            }
        }
    ]).to_list(length=1)
    totals = post_totals[0] if post_totals else {"posts": 0, "comments": 0, "likes": 0}

    top_courses = await db.courses.aggregate([
        {
            "$project": {
                "_id": 0,
                "course_id": 1,
                "title": 1,
                "enrollments": {"$size": {"$ifNull": ["$enrolled_students", []]}},
                "average_rating": {"$ifNull": ["$average_rating", 0]}
            }
        },
        {"$sort": {"enrollments": -1}},
        {"$limit": 5}
    ]).to_list(length=5)

    learners = await db.student_activities.aggregate([
        {"$match": {"created_at": {"$gte": since}}},
        {"$group": {"_id": "$user_id"}},
        {"$count": "total"}
    ]).to_list(length=1)

    result = {
        "days": days,
        "posts": totals["posts"],
        "comments": totals["comments"],
        "likes": totals["likes"],
        "messages": await db.messages.count_documents({"created_at": {"$gte": since}}),
        "submissions": await db.submissions.count_documents({"submitted_at": {"$gte": since}}),
        "active_learners": learners[0]["total"] if learners else 0,
        "top_courses": top_courses,
    }
    await cache.set(cache_key, result, CHART_DATA_TTL)
    return result
