"""
MongoDB connection lifecycle and index setup
"""

import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from codebridge.core.config import settings

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Manages MongoDB connection lifecycle"""

    def __init__(self):
        self.client: Optional[AsyncIOMotorClient] = None
        self.db: Optional[AsyncIOMotorDatabase] = None

    def connect(self):
        """Initialize MongoDB connection"""
        self.client = AsyncIOMotorClient(settings.MONGO_URL)
        self.db = self.client[settings.MONGO_DB_NAME]
        logger.info("MongoDB connected (database=%s)", settings.MONGO_DB_NAME)

    def disconnect(self):
        """Close MongoDB connection"""
        if self.client:
            self.client.close()
            self.client = None
            self.db = None
            logger.info("MongoDB disconnected")

    def get_database(self) -> AsyncIOMotorDatabase:
        """Get database instance for dependency injection"""
        if self.db is None:
            self.connect()
        return self.db


# Global database manager
db_manager = DatabaseManager()


async def get_db() -> AsyncIOMotorDatabase:
    """FastAPI dependency for database access"""
    return db_manager.get_database()


# ==================== INDEXES ====================

async def create_indexes(db: AsyncIOMotorDatabase):
    """Create MongoDB indexes for data integrity and lookups"""
    await db.users.create_index([("user_id", ASCENDING)], unique=True)
    await db.users.create_index([("email", ASCENDING)], unique=True)
    await db.users.create_index([("role", ASCENDING)])

    await db.courses.create_index([("course_id", ASCENDING)], unique=True)
    await db.courses.create_index([("tutor_id", ASCENDING)])
    await db.courses.create_index([("category", ASCENDING), ("level", ASCENDING)])
    await db.courses.create_index([("enrolled_students.student_id", ASCENDING)])

    await db.assignments.create_index([("assignment_id", ASCENDING)], unique=True)
    await db.assignments.create_index([("course_id", ASCENDING), ("due_date", ASCENDING)])
    await db.submissions.create_index([("submission_id", ASCENDING)], unique=True)
    await db.submissions.create_index(
        [("assignment_id", ASCENDING), ("student_id", ASCENDING)], unique=True
    )

    await db.tests.create_index([("test_id", ASCENDING)], unique=True)
    await db.tests.create_index([("course_id", ASCENDING)])
    await db.test_results.create_index([("test_id", ASCENDING), ("student_id", ASCENDING)])

    await db.posts.create_index([("post_id", ASCENDING)], unique=True)
    await db.posts.create_index([("is_pinned", DESCENDING), ("created_at", DESCENDING)])
    await db.posts.create_index([("hashtags", ASCENDING)])

    await db.chat_rooms.create_index([("room_id", ASCENDING)], unique=True)
    await db.chat_rooms.create_index([("participants.user_id", ASCENDING)])
    await db.messages.create_index([("message_id", ASCENDING)], unique=True)
    await db.messages.create_index([("room_id", ASCENDING), ("created_at", DESCENDING)])

    await db.notifications.create_index([("notification_id", ASCENDING)], unique=True)
    await db.notifications.create_index(
        [("user_id", ASCENDING), ("is_read", ASCENDING), ("created_at", DESCENDING)]
    )

    await db.payments.create_index([("reference", ASCENDING)], unique=True)
    await db.payments.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])

    await db.achievements.create_index(
        [("user_id", ASCENDING), ("achievement_id", ASCENDING)], unique=True
    )
    await db.student_stats.create_index([("user_id", ASCENDING)], unique=True)
    await db.student_activities.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])

    await db.admin_audit_logs.create_index([("timestamp", DESCENDING)])

    logger.info("MongoDB indexes created")
