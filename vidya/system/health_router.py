import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from vidya.config import settings
from vidya.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["System"])


@router.get("/health")
async def health(db: AsyncIOMotorDatabase = Depends(get_db)):
    """Liveness plus a database ping"""
    start = datetime.utcnow()
    try:
        await db.command("ping")
        database = "connected"
    except Exception as e:
        logger.warning("Health check ping failed: %s", e)
        database = "disconnected"

    return {
        "status": "ok" if database == "connected" else "degraded",
        "database": database,
        "latency_ms": (datetime.utcnow() - start).total_seconds() * 1000,
        "environment": settings.APP_ENV,
        "timestamp": datetime.utcnow(),
    }
