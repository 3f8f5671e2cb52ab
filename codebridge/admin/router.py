"""
Admin back-office API
User management, moderation, refunds, analytics and platform settings.
Every mutation is written to the audit log.
"""

import logging
import re
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, EmailStr, Field

from codebridge.admin import analytics
from codebridge.admin.audit import AuditService
from codebridge.admin.settings import (
    SettingsUpdate,
    get_integration_settings,
    mask_settings,
    update_integration_settings,
)
from codebridge.assignments.service import delete_assignment_cascade, get_assignment_or_404
from codebridge.auth.models import UserRole
from codebridge.auth.router import new_user
from codebridge.chat.service import add_participant, remove_participant
from codebridge.core.database import get_db
from codebridge.core.dependencies import require_admin
from codebridge.core.utils import get_user_briefs, page_meta, serialize_user
from codebridge.courses.models import RejectRequest
from codebridge.courses.router import remove_course
from codebridge.courses.service import approve_course, get_course_or_404, present_course, reject_course
from codebridge.feed.service import collect_user_ids, get_post_or_404, present_post
from codebridge.notifications.service import NotificationType, notify
from codebridge.payments.gateway import RazorpayGateway, get_payment_gateway
from codebridge.payments.service import refund_payment
from codebridge.zoom.client import ZoomClient, get_zoom_client

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Admin"])


# ==================== PYDANTIC MODELS ====================

class AdminUserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    role: UserRole = UserRole.STUDENT
    verified_tutor: bool = False

    class Config:
        use_enum_values = True


class AdminUserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None
    verified_tutor: Optional[bool] = None

    class Config:
        use_enum_values = True


class AssignTutorRequest(BaseModel):
    tutor_id: str


class PostFlagRequest(BaseModel):
    is_hidden: bool
    reason: Optional[str] = Field(None, max_length=500)


class RefundRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


# ==================== USER MANAGEMENT ====================

async def get_user_or_404(db: AsyncIOMotorDatabase, user_id: str) -> dict:
    user = await db.users.find_one({"user_id": user_id}, {"_id": 0, "password_hash": 0})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("/users")
async def list_users(
    role: Optional[UserRole] = None,
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Filters:
    - role: student / tutor / admin / superadmin
    - search: name or email (case-insensitive)
    - is_active: active or deactivated accounts
    """
    query = {}
    if role:
        query["role"] = role.value
    if is_active is not None:
        query["is_active"] = is_active
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"email": pattern}]

    total = await db.users.count_documents(query)
    users = await db.users.find(query, {"_id": 0, "password_hash": 0}) \
        .sort("created_at", -1) \
        .skip((page - 1) * limit) \
        .limit(limit) \
        .to_list(length=limit)

    return {"success": True, "count": len(users), **page_meta(total, page, limit), "data": users}


@router.get("/users/{user_id}")
async def get_user(
    user_id: str,
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    user = await get_user_or_404(db, user_id)
    stats = await db.student_stats.find_one({"user_id": user_id}, {"_id": 0})
    payments = await db.payments.find({"user_id": user_id}, {"_id": 0}) \
        .sort("created_at", -1) \
        .to_list(length=10)
    courses_taught = await db.courses.count_documents({"tutor_id": user_id})

    return {
        "success": True,
        "data": {
            **user,
            "stats": stats,
            "recent_payments": payments,
            "courses_taught": courses_taught
        }
    }


@router.post("/users", status_code=201)
async def create_user(
    data: AdminUserCreate,
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    email = data.email.lower()
    if await db.users.find_one({"email": email}, {"_id": 1}):
        raise HTTPException(status_code=400, detail="User already exists with this email")

    user = new_user(data.name.strip(), email, data.password, data.role, verified_tutor=data.verified_tutor)
    await db.users.insert_one(dict(user))
    await AuditService.log_action(
        db, admin, "user.create", "user", user["user_id"],
        {"email": email, "role": data.role}
    )
    logger.info("Admin %s created user %s (%s)", admin["user_id"], user["user_id"], data.role)

    return {"success": True, "data": serialize_user(user), "message": "User created successfully"}


@router.put("/users/{user_id}")
async def update_user(
    user_id: str,
    data: AdminUserUpdate,
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Update role, activation, tutor verification or name
    The user is notified of the change
    """
    updates = {k: v for k, v in data.dict(exclude_unset=True).items() if v is not None}
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    if user_id == admin["user_id"] and (updates.get("is_active") is False or "role" in updates):
        raise HTTPException(status_code=400, detail="You cannot change your own role or status")

    await get_user_or_404(db, user_id)
    await db.users.update_one({"user_id": user_id}, {"$set": {**updates, "updated_at": datetime.utcnow()}})

    changes = []
    if "role" in updates:
        changes.append(f"role changed to {updates['role']}")
    if "is_active" in updates:
        changes.append("account activated" if updates["is_active"] else "account deactivated")
    if "verified_tutor" in updates:
        changes.append("tutor verification granted" if updates["verified_tutor"] else "tutor verification revoked")
    if "name" in updates:
        changes.append("name updated")

    await notify(
        db, user_id, NotificationType.ACCOUNT_UPDATE,
        title="Account Updated",
        message=f"An administrator updated your account: {', '.join(changes)}",
        metadata={"fields": list(updates.keys())},
        priority="high"
    )
    await AuditService.log_action(db, admin, "user.update", "user", user_id, updates)

    user = await get_user_or_404(db, user_id)
    return {"success": True, "data": user, "message": "User updated successfully"}


@router.put("/users/{user_id}/toggle-status")
async def toggle_user_status(
    user_id: str,
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    if user_id == admin["user_id"]:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")

    user = await get_user_or_404(db, user_id)
    is_active = not user.get("is_active", True)
    await db.users.update_one(
        {"user_id": user_id},
        {"$set": {"is_active": is_active, "updated_at": datetime.utcnow()}}
    )
    await AuditService.log_action(db, admin, "user.toggle_status", "user", user_id, {"is_active": is_active})

    return {
        "success": True,
        "data": {"user_id": user_id, "is_active": is_active},
        "message": f"User {'activated' if is_active else 'deactivated'} successfully"
    }


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: str,
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    **DANGER:** Delete a user and their personal records

    Courses they teach are kept and must be reassigned
    """
    if user_id == admin["user_id"]:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")

    user = await get_user_or_404(db, user_id)

    await db.courses.update_many(
        {"enrolled_students.student_id": user_id},
        {"$pull": {"enrolled_students": {"student_id": user_id}}}
    )
    await db.chat_rooms.update_many(
        {"participants.user_id": user_id},
        {"$pull": {"participants": {"user_id": user_id}}}
    )
    await db.notifications.delete_many({"user_id": user_id})
    await db.student_stats.delete_one({"user_id": user_id})
    await db.student_activities.delete_many({"user_id": user_id})
    await db.users.delete_one({"user_id": user_id})

    await AuditService.log_action(
        db, admin, "user.delete", "user", user_id,
        {"email": user.get("email"), "role": user.get("role")}
    )
    logger.warning("Admin %s deleted user %s", admin["user_id"], user_id)
    return {"success": True, "message": "User deleted successfully"}


# ==================== COURSE MODERATION ====================

COURSE_STATUS_QUERIES = {
    "pending": {"is_approved": False, "rejection_reason": None},
    "approved": {"is_approved": True},
    "rejected": {"is_approved": False, "rejection_reason": {"$ne": None}},
}


@router.get("/courses")
async def list_courses(
    status: Optional[str] = Query(None, pattern="^(pending|approved|rejected)$"),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    query = dict(COURSE_STATUS_QUERIES[status]) if status else {}
    if search:
        query["title"] = {"$regex": re.escape(search), "$options": "i"}

    total = await db.courses.count_documents(query)
    courses = await db.courses.find(query, {"_id": 0}) \
        .sort("created_at", -1) \
        .skip((page - 1) * limit) \
        .limit(limit) \
        .to_list(length=limit)

    tutors = await get_user_briefs(db, [c["tutor_id"] for c in courses])
    data = [present_course(c, admin, tutors.get(c["tutor_id"])) for c in courses]
    return {"success": True, "count": len(data), **page_meta(total, page, limit), "data": data}


@router.put("/courses/{course_id}/approve")
async def approve(
    course_id: str,
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    course = await get_course_or_404(db, course_id)
    course = await approve_course(db, course, admin)
    await AuditService.log_action(db, admin, "course.approve", "course", course_id)
    return {"success": True, "data": present_course(course, admin), "message": "Course approved successfully"}


@router.put("/courses/{course_id}/reject")
async def reject(
    course_id: str,
    data: RejectRequest,
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    course = await get_course_or_404(db, course_id)
    course = await reject_course(db, course, admin, data.reason)
    await AuditService.log_action(db, admin, "course.reject", "course", course_id, {"reason": data.reason})
    return {"success": True, "data": present_course(course, admin), "message": "Course rejected"}


@router.put("/courses/{course_id}/assign-tutor")
async def assign_tutor(
    course_id: str,
    data: AssignTutorRequest,
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Hand a course over to another verified tutor; the group chat follows"""
    course = await get_course_or_404(db, course_id)
    tutor = await db.users.find_one({"user_id": data.tutor_id}, {"_id": 0, "password_hash": 0})
    if not tutor:
        raise HTTPException(status_code=404, detail="Tutor not found")
    if tutor.get("role") != UserRole.TUTOR.value or not tutor.get("verified_tutor"):
        raise HTTPException(status_code=400, detail="User is not a verified tutor")

    previous = course["tutor_id"]
    await db.courses.update_one(
        {"course_id": course_id},
        {"$set": {"tutor_id": tutor["user_id"], "updated_at": datetime.utcnow()}}
    )
    if course.get("group_id") and previous != tutor["user_id"]:
        await remove_participant(db, course["group_id"], previous)
        await add_participant(db, course["group_id"], tutor["user_id"], "admin")

    await notify(
        db, tutor["user_id"], NotificationType.COURSE_UPDATE,
        title="Course Assigned",
        message=f"You are now the tutor for \"{course['title']}\"",
        metadata={"course_id": course_id},
        action_url=f"/courses/{course_id}"
    )
    await AuditService.log_action(
        db, admin, "course.assign_tutor", "course", course_id,
        {"from": previous, "to": tutor["user_id"]}
    )

    course["tutor_id"] = tutor["user_id"]
    return {
        "success": True,
        "data": present_course(course, admin, {k: tutor.get(k) for k in ("user_id", "name", "avatar", "role")}),
        "message": "Tutor assigned successfully"
    }


@router.delete("/courses/{course_id}")
async def delete_course(
    course_id: str,
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
    zoom: ZoomClient = Depends(get_zoom_client)
):
    course = await get_course_or_404(db, course_id)
    await remove_course(db, zoom, course)
    await AuditService.log_action(db, admin, "course.delete", "course", course_id, {"title": course["title"]})
    return {"success": True, "message": "Course deleted successfully"}


# ==================== ASSIGNMENTS ====================

@router.get("/assignments")
async def list_assignments(
    course_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    query = {"course_id": course_id} if course_id else {}
    total = await db.assignments.count_documents(query)
    assignments = await db.assignments.find(query, {"_id": 0}) \
        .sort("created_at", -1) \
        .skip((page - 1) * limit) \
        .limit(limit) \
        .to_list(length=limit)

    for assignment in assignments:
        assignment["submission_count"] = await db.submissions.count_documents(
            {"assignment_id": assignment["assignment_id"]}
        )
    return {"success": True, "count": len(assignments), **page_meta(total, page, limit), "data": assignments}


@router.delete("/assignments/{assignment_id}")
async def delete_assignment(
    assignment_id: str,
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    assignment = await get_assignment_or_404(db, assignment_id)
    removed = await delete_assignment_cascade(db, assignment_id)
    await AuditService.log_action(
        db, admin, "assignment.delete", "assignment", assignment_id,
        {"title": assignment["title"], "submissions_deleted": removed}
    )
    return {"success": True, "message": "Assignment and its submissions deleted successfully"}


# ==================== FEED MODERATION ====================

@router.get("/feeds")
async def list_posts(
    hidden_only: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """All posts including hidden ones; hidden_only narrows to moderated posts"""
    query = {"is_hidden": True} if hidden_only else {}
    total = await db.posts.count_documents(query)
    posts = await db.posts.find(query, {"_id": 0}) \
        .sort("created_at", -1) \
        .skip((page - 1) * limit) \
        .limit(limit) \
        .to_list(length=limit)

    authors = await get_user_briefs(db, collect_user_ids(posts))
    data = [present_post(p, admin["user_id"], authors) for p in posts]
    return {"success": True, "count": len(data), **page_meta(total, page, limit), "data": data}


@router.put("/feeds/{post_id}/flag")
async def flag_post(
    post_id: str,
    data: PostFlagRequest,
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Hide or unhide a post
    Hiding requires a reason; repeating the current state is a no-op
    """
    reason = (data.reason or "").strip()
    if data.is_hidden and not reason:
        raise HTTPException(status_code=400, detail="A reason is required to hide a post")

    post = await get_post_or_404(db, post_id)
    if bool(post.get("is_hidden")) == data.is_hidden:
        return {
            "success": True,
            "changed": False,
            "data": {"post_id": post_id, "is_hidden": data.is_hidden},
            "message": f"Post already {'hidden' if data.is_hidden else 'visible'}"
        }

    updates = {
        "is_hidden": data.is_hidden,
        "moderation_reason": reason if data.is_hidden else None,
        "moderated_by": admin["user_id"],
        "moderated_at": datetime.utcnow()
    }
    await db.posts.update_one({"post_id": post_id}, {"$set": updates})

    if data.is_hidden:
        await notify(
            db, post["author_id"], NotificationType.POST_MODERATED,
            title="Post Hidden",
            message=f"Your post was hidden by a moderator: {reason}",
            metadata={"post_id": post_id, "reason": reason},
            priority="high"
        )
    await AuditService.log_action(
        db, admin, "post.hide" if data.is_hidden else "post.unhide", "post", post_id,
        {"reason": reason or None}
    )

    return {
        "success": True,
        "changed": True,
        "data": {"post_id": post_id, "is_hidden": data.is_hidden},
        "message": f"Post {'hidden' if data.is_hidden else 'restored'} successfully"
    }


# ==================== PAYMENTS ====================

@router.get("/payments")
async def list_payments(
    status: Optional[str] = Query(None, pattern="^(pending|success|failed|refunded)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    query = {"status": status} if status else {}
    total = await db.payments.count_documents(query)
    payments = await db.payments.find(query, {"_id": 0}) \
        .sort("created_at", -1) \
        .skip((page - 1) * limit) \
        .limit(limit) \
        .to_list(length=limit)

    revenue = await analytics.revenue_by_currency(db)

    return {
        "success": True,
        "count": len(payments),
        **page_meta(total, page, limit),
        "total_revenue": revenue["total"],
        "data": payments
    }


@router.post("/payments/{payment_id}/refund")
async def refund(
    payment_id: str,
    data: RefundRequest,
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_payment_gateway)
):
    payment = await db.payments.find_one({"payment_id": payment_id}, {"_id": 0})
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found")

    payment = await refund_payment(db, gateway, payment, admin, data.reason)
    await AuditService.log_action(
        db, admin, "payment.refund", "payment", payment_id,
        {"amount": payment["amount"], "currency": payment["currency"], "reason": data.reason}
    )
    return {"success": True, "data": payment, "message": "Payment refunded successfully"}


# ==================== ANALYTICS ====================

@router.get("/analytics/overview")
async def analytics_overview(
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    return {"success": True, "data": await analytics.get_overview(db)}


@router.get("/analytics/user-growth")
async def user_growth(
    days: int = Query(30, ge=1, le=365),
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    return {"success": True, "chart_data": await analytics.get_user_growth(db, days)}


@router.get("/analytics/revenue")
async def revenue(
    days: int = Query(30, ge=1, le=365),
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    return {"success": True, "data": await analytics.get_revenue(db, days)}


@router.get("/analytics/engagement")
async def engagement(
    days: int = Query(30, ge=1, le=365),
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    return {"success": True, "data": await analytics.get_engagement(db, days)}


@router.delete("/analytics/cache")
async def clear_analytics_cache(admin: dict = Depends(require_admin)):
    await analytics.cache.clear()
    return {"success": True, "message": "Analytics cache cleared"}


# ==================== SETTINGS & AUDIT ====================

@router.get("/settings")
async def get_settings(
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    return {"success": True, "data": mask_settings(await get_integration_settings(db))}


@router.put("/settings")
async def update_settings(
    data: SettingsUpdate,
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    doc = await update_integration_settings(db, data, admin["user_id"])
    await AuditService.log_action(
        db, admin, "settings.update", "settings", None,
        {"sections": [k for k, v in data.dict(exclude_unset=True).items() if v]}
    )
    return {"success": True, "data": mask_settings(doc), "message": "Settings updated successfully"}


@router.get("/audit-logs")
async def audit_logs(
    limit: int = Query(50, ge=1, le=500),
    admin_id: Optional[str] = None,
    action: Optional[str] = None,
    admin: dict = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    logs = await AuditService.get_recent_actions(db, limit, admin_id, action)
    return {"success": True, "count": len(logs), "data": logs}
