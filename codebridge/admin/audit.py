from datetime import datetime
from typing import Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase


class AuditService:
    """Audit logging for admin actions"""

    @staticmethod
    async def log_action(
        db: AsyncIOMotorDatabase,
        admin: dict,
        action: str,
        target_type: str,
        target_id: Optional[str] = None,
        details: Optional[Dict] = None
    ):
        """
        Record an admin action

        Args:
            db: Database instance
            admin: Acting admin user
            action: e.g. "user.update", "course.approve"
            target_type: Kind of entity affected
            target_id: Business id of the entity
            details: Action parameters / before-after values
        """
        await db.admin_audit_logs.insert_one({
            "admin_id": admin["user_id"],
            "admin_email": admin.get("email"),
            "action": action,
            "target_type": target_type,
            "target_id": target_id,
            "details": details or {},
            "timestamp": datetime.utcnow()
        })

    @staticmethod
    async def get_recent_actions(
        db: AsyncIOMotorDatabase,
        limit: int = 50,
        admin_id: Optional[str] = None,
        action: Optional[str] = None
    ) -> List[Dict]:
        query = {}
        if admin_id:
            query["admin_id"] = admin_id
        if action:
            query["action"] = action

        return await db.admin_audit_logs.find(query, {"_id": 0}) \
            .sort("timestamp", -1) \
            .limit(limit) \
            .to_list(length=limit)
