"""
Shared FastAPI dependencies: database access, authentication and role checks
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

from codebridge.core.database import get_db
from codebridge.core.security import decode_access_token, extract_bearer

ADMIN_ROLES = ("admin", "superadmin")


def is_admin(user: dict) -> bool:
    return user.get("role") in ADMIN_ROLES


async def load_user_from_token(db: AsyncIOMotorDatabase, token: str) -> dict:
    """
    Resolve a JWT to an active user document

    Raises:
        401: Invalid token, unknown user or deactivated account
    """
    payload = decode_access_token(token)
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token: missing user id")

    user = await db.users.find_one({"user_id": user_id}, {"_id": 0, "password_hash": 0})
    if not user:
        raise HTTPException(status_code=401, detail="User no longer exists")
    if not user.get("is_active", True):
        raise HTTPException(status_code=401, detail="Account has been deactivated")
    return user


# ==================== DEPENDENCY FUNCTIONS ====================

async def get_current_user(
    authorization: Optional[str] = Header(None),
    db: AsyncIOMotorDatabase = Depends(get_db)
) -> dict:
    """Authenticated user from the bearer token"""
    token = extract_bearer(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Not authorized, no token")
    return await load_user_from_token(db, token)


async def get_optional_user(
    authorization: Optional[str] = Header(None),
    db: AsyncIOMotorDatabase = Depends(get_db)
) -> Optional[dict]:
    """Authenticated user if a valid token is present, otherwise None"""
    token = extract_bearer(authorization)
    if not token:
        return None
    try:
        return await load_user_from_token(db, token)
    except HTTPException:
        return None


async def get_current_user_id(user: dict = Depends(get_current_user)) -> str:
    return user["user_id"]


def require_roles(*roles: str):
    """Dependency factory: caller must hold one of the given roles"""

    async def checker(user: dict = Depends(get_current_user)) -> dict:
        if user.get("role") not in roles:
            raise HTTPException(
                status_code=403,
                detail=f"User role '{user.get('role')}' is not authorized to access this route"
            )
        return user

    return checker


require_admin = require_roles(*ADMIN_ROLES)
require_tutor = require_roles("tutor", *ADMIN_ROLES)
require_student = require_roles("student")


async def verified_tutor_only(user: dict = Depends(require_tutor)) -> dict:
    """Tutors must be verified before publishing content; admins pass"""
    if user.get("role") == "tutor" and not user.get("verified_tutor", False):
        raise HTTPException(
            status_code=403,
            detail="Only verified tutors can perform this action. Please contact an admin."
        )
    return user
