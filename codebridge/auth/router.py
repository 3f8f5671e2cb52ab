import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from codebridge.achievements.service import (
    ActivityType,
    record_activity,
    safe_check_and_unlock,
    track_login,
)
from codebridge.auth.models import (
    SELF_REGISTER_ROLES,
    LoginRequest,
    PasswordChange,
    ProfileUpdate,
    RegisterRequest,
    SettingsUpdate,
    default_settings,
)
from codebridge.core.database import get_db
from codebridge.core.dependencies import get_current_user
from codebridge.core.security import create_access_token, hash_password, verify_password
from codebridge.core.utils import generate_id, serialize_user
from codebridge.notifications.mailer import email_users

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Auth"])


def new_user(name: str, email: str, password: str, role: str, **extra) -> dict:
    now = datetime.utcnow()
    return {
        "user_id": generate_id("USR"),
        "name": name,
        "email": email.lower(),
        "password_hash": hash_password(password),
        "role": role,
        "avatar": None,
        "bio": None,
        "verified_tutor": False,
        "is_active": True,
        "enrolled_courses": [],
        "settings": default_settings(),
        "last_login": None,
        "created_at": now,
        "updated_at": now,
        **extra
    }


def token_response(user: dict, message: str) -> dict:
    return {
        "success": True,
        "token": create_access_token(user["user_id"], user["role"]),
        "user": serialize_user(user),
        "message": message
    }


@router.post("/register", status_code=201)
async def register(data: RegisterRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    if data.role not in SELF_REGISTER_ROLES:
        raise HTTPException(status_code=400, detail="Invalid role. Choose student or tutor")

    email = data.email.lower()
    if await db.users.find_one({"email": email}, {"_id": 1}):
        raise HTTPException(status_code=400, detail="User already exists with this email")

    user = new_user(data.name, email, data.password, data.role)
    try:
        await db.users.insert_one(dict(user))
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="User already exists with this email")

    logger.info("Registered %s as %s", user["user_id"], user["role"])
    await email_users(
        db, [user["user_id"]],
        "Welcome to CodeBridge",
        f"Hi {user['name']}, your {user['role']} account is ready.",
        "/dashboard"
    )
    return token_response(user, "Registration successful")


@router.post("/login")
async def login(data: LoginRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    user = await db.users.find_one({"email": data.email.lower()}, {"_id": 0})
    if not user or not verify_password(data.password, user.get("password_hash")):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if not user.get("is_active", True):
        raise HTTPException(status_code=401, detail="Account has been deactivated")

    now = datetime.utcnow()
    await db.users.update_one({"user_id": user["user_id"]}, {"$set": {"last_login": now}})
    user["last_login"] = now

    if user["role"] == "student":
        await track_login(db, user["user_id"], now)
        await record_activity(
            db, user["user_id"], ActivityType.LOGIN,
            title="Logged in",
            description="Started a learning session",
            icon="👋"
        )
        await safe_check_and_unlock(db, user["user_id"], "login")

    return token_response(user, "Login successful")


@router.get("/me")
async def me(user: dict = Depends(get_current_user)):
    return {"success": True, "user": user}


@router.put("/profile")
async def update_profile(
    data: ProfileUpdate,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    updates = data.dict(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    if "name" in updates:
        name = (updates["name"] or "").strip()
        if not name:
            raise HTTPException(status_code=400, detail="Name is required")
        updates["name"] = name
    updates["updated_at"] = datetime.utcnow()

    await db.users.update_one({"user_id": user["user_id"]}, {"$set": updates})
    await safe_check_and_unlock(db, user["user_id"], "profile_updated")

    user = await db.users.find_one({"user_id": user["user_id"]}, {"_id": 0, "password_hash": 0})
    return {"success": True, "user": user, "message": "Profile updated successfully"}


@router.put("/password")
async def change_password(
    data: PasswordChange,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    record = await db.users.find_one({"user_id": user["user_id"]}, {"_id": 0, "password_hash": 1})
    if not verify_password(data.current_password, record.get("password_hash")):
        raise HTTPException(status_code=401, detail="Current password is incorrect")

    await db.users.update_one(
        {"user_id": user["user_id"]},
        {"$set": {"password_hash": hash_password(data.new_password), "updated_at": datetime.utcnow()}}
    )
    logger.info("Password changed for %s", user["user_id"])
    return {"success": True, "message": "Password updated successfully"}


@router.put("/settings")
async def update_settings(
    data: SettingsUpdate,
    user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    updates = {f"settings.{k}": v for k, v in data.dict(exclude_unset=True).items() if v is not None}
    if not updates:
        raise HTTPException(status_code=400, detail="No settings to update")
    updates["updated_at"] = datetime.utcnow()

    await db.users.update_one({"user_id": user["user_id"]}, {"$set": updates})
    user = await db.users.find_one({"user_id": user["user_id"]}, {"_id": 0, "settings": 1})
    return {"success": True, "settings": user["settings"], "message": "Settings updated successfully"}


@router.post("/logout")
async def logout(user: dict = Depends(get_current_user)):
    """Tokens are stateless; the client discards its copy"""
    return {"success": True, "message": "Logged out successfully"}
