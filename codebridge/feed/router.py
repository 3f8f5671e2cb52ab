import logging
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
from codebridge.core.database import get_db
from codebridge.core.dependencies import get_current_user, is_admin, require_admin
from codebridge.core.utils import generate_id, get_user_brief, get_user_briefs, page_meta
from codebridge.courses.service import get_course_or_404, is_enrolled, is_owner
from codebridge.feed.models import CommentCreate, PostCreate, PostUpdate
from codebridge.feed.service import (
    collect_user_ids,
    extract_hashtags,
    extract_mentions,
    get_post_or_404,
    present_post,
)
from codebridge.notifications.service import NotificationType, notify
from codebridge.realtime.manager import manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Feed"])


def visibility_filter(user: dict) -> dict:
    """Public posts, the caller's own posts and posts in the caller's courses"""
    return {"$or": [
        {"visibility": "public"},
        {"author_id": user["user_id"]},
        {"visibility": "course", "course_id": {"$in": user.get("enrolled_courses", [])}}
    ]}


def can_view(post: dict, user: dict) -> bool:
    if is_admin(user) or post["author_id"] == user["user_id"]:
        return True
    if post.get("is_hidden"):
        return False
    if post.get("visibility") == "course":
        return post.get("course_id") in user.get("enrolled_courses", [])
    return post.get("visibility", "public") == "public"


# ==================== POSTS ====================

@router.get("")
async def list_posts(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    hashtag: Optional[str] = None,
    author: Optional[str] = None,
    include_hidden: bool = False,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Pinned posts first, then newest"""
    query = {}
    if not (include_hidden and is_admin(user)):
        query["is_hidden"] = {"$ne": True}
    if not is_admin(user):
        query.update(visibility_filter(user))
    if hashtag:
        query["hashtags"] = hashtag.lstrip("#").lower()
    if author:
        query["author_id"] = author

    total = await db.posts.count_documents(query)
    posts = await db.posts.find(query, {"_id": 0}) \
        .sort([("is_pinned", -1), ("created_at", -1)]) \
        .skip((page - 1) * limit) \
        .limit(limit) \
        .to_list(length=limit)

    authors = await get_user_briefs(db, collect_user_ids(posts))
    data = [present_post(p, user["user_id"], authors) for p in posts]

    return {"success": True, "count": len(data), **page_meta(total, page, limit), "data": data}


@router.post("", status_code=201)
async def create_post(
    data: PostCreate,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    if data.visibility == "course":
        if not data.course_id:
            raise HTTPException(status_code=400, detail="course_id is required for course posts")
        course = await get_course_or_404(db, data.course_id)
        if not (is_enrolled(course, user["user_id"]) or is_owner(course, user) or is_admin(user)):
            raise HTTPException(status_code=403, detail="You must be enrolled in this course")

    uid = user["user_id"]
    now = datetime.utcnow()
    post = {
        "post_id": generate_id("POST"),
        "author_id": uid,
        "content_text": data.content_text,
        "media": [m.dict() for m in data.media],
        "likes": [],
        "comments": [],
        "hashtags": extract_hashtags(data.content_text),
        "mentions": extract_mentions(data.content_text),
        "visibility": data.visibility,
        "course_id": data.course_id if data.visibility == "course" else None,
        "is_pinned": False,
        "is_hidden": False,
        "moderation_reason": None,
        "moderated_by": None,
        "moderated_at": None,
        "created_at": now,
        "updated_at": now
    }
    await db.posts.insert_one(dict(post))

    author = await get_user_brief(db, uid)
    result = present_post(post, uid, {uid: author})
    if post["visibility"] == "public":
        await manager.broadcast("newPost", result)

    await increment_stats(db, uid, total_posts=1)
    await record_activity(
        db, uid, ActivityType.POST_CREATED,
        title="Shared a post",
        description=data.content_text[:100],
        icon="💬",
        metadata={"post_id": post["post_id"]},
        xp=XP_REWARDS["post_created"]
    )
    await safe_check_and_unlock(db, uid, "post_created")

    return {"success": True, "data": result, "message": "Post created successfully"}


@router.get("/{post_id}")
async def get_post(
    post_id: str,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    post = await get_post_or_404(db, post_id)
    if not can_view(post, user):
        raise HTTPException(status_code=404, detail="Post not found")
    authors = await get_user_briefs(db, collect_user_ids([post]))
    return {"success": True, "data": present_post(post, user["user_id"], authors)}


@router.put("/{post_id}")
async def update_post(
    post_id: str,
    data: PostUpdate,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    post = await get_post_or_404(db, post_id)
    if post["author_id"] != user["user_id"]:
        raise HTTPException(status_code=403, detail="Not authorized to update this post")

    updates = data.dict(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    if "content_text" in updates:
        text = (updates["content_text"] or "").strip()
        if not text:
            raise HTTPException(status_code=400, detail="Post content cannot be empty")
        updates["content_text"] = text
        updates["hashtags"] = extract_hashtags(text)
        updates["mentions"] = extract_mentions(text)
    if updates.get("visibility") == "course" and not post.get("course_id"):
        raise HTTPException(status_code=400, detail="Only posts created in a course can be course-only")
    updates["updated_at"] = datetime.utcnow()

    await db.posts.update_one({"post_id": post_id}, {"$set": updates})
    return {"success": True, "data": present_post({**post, **updates}, user["user_id"]),
            "message": "Post updated successfully"}


@router.delete("/{post_id}")
async def delete_post(
    post_id: str,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    post = await get_post_or_404(db, post_id)
    if post["author_id"] != user["user_id"] and not is_admin(user):
        raise HTTPException(status_code=403, detail="Not authorized to delete this post")

    await db.posts.delete_one({"post_id": post_id})
    logger.info("Post %s deleted by %s", post_id, user["user_id"])
    return {"success": True, "message": "Post deleted successfully"}


# ==================== LIKES & COMMENTS ====================

@router.post("/{post_id}/like")
async def toggle_like(
    post_id: str,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Like if not liked yet, otherwise unlike"""
    post = await get_post_or_404(db, post_id)
    if not can_view(post, user):
        raise HTTPException(status_code=404, detail="Post not found")

    uid = user["user_id"]
    liked = uid not in post.get("likes", [])
    if liked:
        await db.posts.update_one({"post_id": post_id}, {"$addToSet": {"likes": uid}})
    else:
        await db.posts.update_one({"post_id": post_id}, {"$pull": {"likes": uid}})
    post = await get_post_or_404(db, post_id)
    likes_count = len(post.get("likes", []))

    if post["author_id"] != uid:
        await increment_stats(db, post["author_id"], total_likes_received=1 if liked else -1)
        if liked:
            await notify(
                db, post["author_id"], NotificationType.POST_LIKE,
                title="New Like",
                message=f"{user.get('name', 'Someone')} liked your post",
                metadata={"post_id": post_id, "user_id": uid},
                priority="low",
                action_url=f"/feed/{post_id}"
            )

    await manager.broadcast("postLiked", {
        "post_id": post_id,
        "user_id": uid,
        "liked": liked,
        "likes_count": likes_count
    })

    return {
        "success": True,
        "data": {"liked": liked, "likes_count": likes_count},
        "message": "Post liked" if liked else "Post unliked"
    }


@router.post("/{post_id}/comments", status_code=201)
async def add_comment(
    post_id: str,
    data: CommentCreate,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    post = await get_post_or_404(db, post_id)
    if not can_view(post, user):
        raise HTTPException(status_code=404, detail="Post not found")

    uid = user["user_id"]
    comment = {
        "comment_id": generate_id("CMT"),
        "user_id": uid,
        "text": data.text,
        "created_at": datetime.utcnow()
    }
    await db.posts.update_one(
        {"post_id": post_id},
        {"$push": {"comments": comment}, "$set": {"updated_at": datetime.utcnow()}}
    )

    if post["author_id"] != uid:
        await notify(
            db, post["author_id"], NotificationType.POST_COMMENT,
            title="New Comment",
            message=f"{user.get('name', 'Someone')} commented on your post: {data.text[:80]}",
            metadata={"post_id": post_id, "comment_id": comment["comment_id"]},
            action_url=f"/feed/{post_id}"
        )

    result = {**comment, "user": await get_user_brief(db, uid)}
    await manager.broadcast("newComment", {"post_id": post_id, "comment": result})

    await increment_stats(db, uid, total_comments=1)
    await record_activity(
        db, uid, ActivityType.COMMENT_ADDED,
        title="Commented on a post",
        description=data.text[:100],
        icon="🗨️",
        metadata={"post_id": post_id, "comment_id": comment["comment_id"]},
        xp=XP_REWARDS["comment_added"]
    )
    await safe_check_and_unlock(db, uid, "comment_created")

    return {"success": True, "data": result, "message": "Comment added successfully"}


@router.delete("/{post_id}/comments/{comment_id}")
async def delete_comment(
    post_id: str,
    comment_id: str,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    post = await get_post_or_404(db, post_id)
    comment = next((c for c in post.get("comments", []) if c["comment_id"] == comment_id), None)
    if not comment:
        raise HTTPException(status_code=404, detail="Comment not found")

    uid = user["user_id"]
    if uid not in (comment["user_id"], post["author_id"]) and not is_admin(user):
        raise HTTPException(status_code=403, detail="Not authorized to delete this comment")

    await db.posts.update_one({"post_id": post_id}, {"$pull": {"comments": {"comment_id": comment_id}}})
    return {"success": True, "message": "Comment deleted successfully"}


@router.put("/{post_id}/pin")
async def pin_post(
    post_id: str,
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    post = await get_post_or_404(db, post_id)
    pinned = not post.get("is_pinned", False)
    await db.posts.update_one(
        {"post_id": post_id},
        {"$set": {"is_pinned": pinned, "updated_at": datetime.utcnow()}}
    )
    return {"success": True, "data": {"is_pinned": pinned},
            "message": "Post pinned" if pinned else "Post unpinned"}
