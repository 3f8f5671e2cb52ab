import math
import uuid
from typing import Optional


def generate_id(prefix: str) -> str:
    """Prefixed business id, e.g. COURSE_1A2B3C4D5E6F"""
    return f"{prefix}_{uuid.uuid4().hex[:12].upper()}"


def serialize_mongo(doc: Optional[dict]) -> Optional[dict]:
    """Strip Mongo's internal _id so documents are JSON-ready"""
    if doc is None:
        return None
    doc = dict(doc)
    doc.pop("_id", None)
    return doc


def serialize_many(docs: list) -> list:
    return [serialize_mongo(doc) for doc in docs]


def serialize_user(user: Optional[dict]) -> Optional[dict]:
    """User document without credentials"""
    user = serialize_mongo(user)
    if user is not None:
        user.pop("password_hash", None)
    return user


def page_meta(total: int, page: int, limit: int) -> dict:
    return {
        "total": total,
        "total_pages": math.ceil(total / limit) if limit else 0,
        "current_page": page,
    }


async def get_user_brief(db, user_id: str) -> dict:
    """Basic user info for display alongside content"""
    user = await db.users.find_one(
        {"user_id": user_id},
        {"_id": 0, "user_id": 1, "name": 1, "avatar": 1, "role": 1}
    )
    if user:
        return user
    return {"user_id": user_id, "name": "Unknown", "avatar": None, "role": None}


async def get_user_briefs(db, user_ids) -> dict:
    """Map of user_id -> basic info for a batch of ids"""
    ids = list({uid for uid in user_ids if uid})
    if not ids:
        return {}
    cursor = db.users.find(
        {"user_id": {"$in": ids}},
        {"_id": 0, "user_id": 1, "name": 1, "avatar": 1, "role": 1}
    )
    users = await cursor.to_list(length=None)
    return {user["user_id"]: user for user in users}
