from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from codebridge.core.database import get_db
from codebridge.core.dependencies import get_current_user
from codebridge.core.utils import page_meta

router = APIRouter(tags=["Notifications"])


@router.get("")
async def get_notifications(
    unread_only: bool = Query(False, description="Fetch only unread notifications"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    query = {"user_id": user["user_id"]}
    if unread_only:
        query["is_read"] = False

    total = await db.notifications.count_documents(query)
    notifications = await db.notifications.find(query, {"_id": 0}) \
        .sort("created_at", -1) \
        .skip((page - 1) * limit) \
        .limit(limit) \
        .to_list(length=limit)
    unread_count = await db.notifications.count_documents({"user_id": user["user_id"], "is_read": False})

    return {
        "success": True,
        "count": len(notifications),
        **page_meta(total, page, limit),
        "unread_count": unread_count,
        "data": notifications
    }


@router.get("/unread-count")
async def get_unread_count(
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    count = await db.notifications.count_documents({"user_id": user["user_id"], "is_read": False})
    return {"success": True, "unread_count": count}


@router.patch("/read-all")
async def mark_all_notifications_read(
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    result = await db.notifications.update_many(
        {"user_id": user["user_id"], "is_read": False},
        {"$set": {"is_read": True, "read_at": datetime.utcnow()}}
    )
    return {
        "success": True,
        "modified": result.modified_count,
        "message": f"Marked {result.modified_count} notifications as read"
    }


@router.patch("/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    result = await db.notifications.update_one(
        {"notification_id": notification_id, "user_id": user["user_id"]},
        {"$set": {"is_read": True, "read_at": datetime.utcnow()}}
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"success": True, "message": "Notification marked as read"}


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: str,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    result = await db.notifications.delete_one(
        {"notification_id": notification_id, "user_id": user["user_id"]}
    )
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"success": True, "message": "Notification deleted"}
