"""
Feed post helpers: tag extraction and presentation
"""

import re
from typing import List, Optional

from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

HASHTAG_PATTERN = re.compile(r"#(\w+)")
MENTION_PATTERN = re.compile(r"@(\w+)")


def _unique_lower(matches: List[str]) -> List[str]:
    return list(dict.fromkeys(m.lower() for m in matches))


def extract_hashtags(text: str) -> List[str]:
    """'#Python and #python #AI' -> ['python', 'ai']"""
    return _unique_lower(HASHTAG_PATTERN.findall(text or ""))


def extract_mentions(text: str) -> List[str]:
    return _unique_lower(MENTION_PATTERN.findall(text or ""))


def present_post(post: dict, viewer_id: Optional[str], authors: Optional[dict] = None) -> dict:
    post = dict(post)
    likes = post.get("likes", [])
    post["likes_count"] = len(likes)
    post["comments_count"] = len(post.get("comments", []))
    post["is_liked"] = bool(viewer_id) and viewer_id in likes
    if authors is not None:
        post["author"] = authors.get(post["author_id"])
        for comment in post.get("comments", []):
            comment["user"] = authors.get(comment["user_id"])
    return post


def collect_user_ids(posts: List[dict]) -> List[str]:
    ids = []
    for post in posts:
        ids.append(post["author_id"])
        ids.extend(c["user_id"] for c in post.get("comments", []))
    return ids


async def get_post_or_404(db: AsyncIOMotorDatabase, post_id: str) -> dict:
    post = await db.posts.find_one({"post_id": post_id}, {"_id": 0})
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return post
