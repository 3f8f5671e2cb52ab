import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from codebridge.achievements.router import router as achievements_router
from codebridge.admin.router import router as admin_router
from codebridge.ai.router import router as ai_router
from codebridge.assignments.router import router as assignments_router
from codebridge.auth.router import router as auth_router
from codebridge.chat.router import router as chat_router
from codebridge.core.config import settings
from codebridge.core.database import create_indexes, db_manager
from codebridge.core.errors import register_exception_handlers
from codebridge.core.log_config import setup_logging
from codebridge.courses.router import router as courses_router
from codebridge.feed.router import router as feed_router
from codebridge.notifications.router import router as notifications_router
from codebridge.payments.router import router as payments_router
from codebridge.quizzes.router import router as quizzes_router
from codebridge.realtime.router import router as realtime_router
from codebridge.system.health_router import router as health_router
from codebridge.zoom.router import router as zoom_router

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="CodeBridge Learning Platform API", version=settings.VERSION)


@app.on_event("startup")
async def startup_event():
    db = db_manager.get_database()
    try:
        await create_indexes(db)
    except Exception as e:
        logger.warning("Index creation failed: %s", e)
    logger.info("CodeBridge API %s started", settings.VERSION)


@app.on_event("shutdown")
async def shutdown_event():
    db_manager.disconnect()


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


# ==================== ROUTER REGISTRATION ====================
app.include_router(auth_router, prefix="/auth")
app.include_router(courses_router, prefix="/courses")
app.include_router(assignments_router, prefix="/assignments")
app.include_router(quizzes_router, prefix="/tests")
app.include_router(feed_router, prefix="/feeds")
app.include_router(chat_router, prefix="/chat")
app.include_router(realtime_router)
app.include_router(notifications_router, prefix="/notifications")
app.include_router(achievements_router, prefix="/achievements")
app.include_router(payments_router, prefix="/payments")
app.include_router(zoom_router, prefix="/zoom")
app.include_router(ai_router, prefix="/ai")
app.include_router(admin_router, prefix="/admin")
app.include_router(health_router, prefix="/health")
# ============================================================


@app.get("/")
def root():
    return {"success": True, "message": "CodeBridge API is running", "version": settings.VERSION}


@app.get("/version")
def get_version():
    return {"version": settings.VERSION, "status": "stable"}
