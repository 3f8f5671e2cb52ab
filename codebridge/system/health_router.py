import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorDatabase

from codebridge.core.config import settings
from codebridge.core.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("")
async def health():
    """Liveness: the process is up and serving requests"""
    return {"status": "ok", "version": settings.VERSION, "timestamp": datetime.utcnow()}


@router.get("/ready")
async def readiness(db: AsyncIOMotorDatabase = Depends(get_db)):
    """
    Readiness: MongoDB answers a ping
    Integrations are reported but do not affect readiness
    """
    start = datetime.utcnow()
    try:
        await db.command("ping")
    except Exception as e:
        logger.error("Readiness check failed: %s", e)
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "database": "DOWN", "message": "Database unreachable"}
        )

    return {
        "status": "ready",
        "database": "UP",
        "latency_ms": round((datetime.utcnow() - start).total_seconds() * 1000, 2),
        "integrations": {
            "zoom": bool(settings.ZOOM_ACCOUNT_ID and settings.ZOOM_CLIENT_ID and settings.ZOOM_CLIENT_SECRET),
            "ai": bool(settings.GEMINI_API_KEY),
            "payments": bool(settings.RAZORPAY_KEY_ID and settings.RAZORPAY_KEY_SECRET),
        }
    }
