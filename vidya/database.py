import logging
import uuid
from typing import List, Optional

from fastapi import Request
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from vidya.config import settings

logger = logging.getLogger(__name__)


# ==================== CONNECTION ====================

def connect_mongo(app) -> AsyncIOMotorDatabase:
    """Create the Motor client once and park it on app.state"""
    client = AsyncIOMotorClient(settings.MONGODB_URI)
    app.state.mongo_client = client
    app.state.db = client[settings.MONGODB_DB]
    logger.info("MongoDB client created for database %s", settings.MONGODB_DB)
    return app.state.db


def close_mongo(app) -> None:
    client = getattr(app.state, "mongo_client", None)
    if client is not None:
        client.close()


async def get_db(request: Request) -> AsyncIOMotorDatabase:
    """Database dependency"""
    return request.app.state.db


# ==================== HELPERS ====================

def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12].upper()}"


def strip_id(doc: Optional[dict]) -> Optional[dict]:
    if doc is not None:
        doc.pop("_id", None)
    return doc


def strip_ids(docs: List[dict]) -> List[dict]:
    return [strip_id(doc) for doc in docs]


def paginate(page: int, limit: int) -> tuple:
    """Return (skip, limit) for 1-based page numbers"""
    page = max(page, 1)
    limit = max(min(limit, 100), 1)
    return (page - 1) * limit, limit


def pagination_meta(total: int, page: int, limit: int) -> dict:
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit if limit else 0,
    }


# ==================== INDEXES ====================

async def create_indexes(db: AsyncIOMotorDatabase):
    """Create MongoDB indexes used by lookups and uniqueness rules"""
    await db.users.create_index("user_id", unique=True)
    await db.users.create_index("email")
    await db.users.create_index("role")

    await db.tests.create_index("test_id", unique=True)
    await db.tests.create_index([("status", 1), ("subject", 1)])
    await db.tests.create_index("created_by")
    await db.tests.create_index("series_id")

    await db.testattempts.create_index("attempt_id", unique=True)
    await db.testattempts.create_index([("test_id", 1), ("user_id", 1), ("status", 1)])
    # one completed attempt per (test, user)
    await db.testattempts.create_index(
        [("test_id", 1), ("user_id", 1)],
        unique=True,
        name="uniq_completed_attempt",
        partialFilterExpression={"status": "completed"},
    )
    await db.testattempts.create_index([("status", 1), ("completed_at", -1)])

    await db.testseries.create_index("series_id", unique=True)
    await db.testseries.create_index("tests")
    await db.testseries.create_index([("active", 1), ("category", 1)])

    await db.purchases.create_index("purchase_id", unique=True)
    await db.purchases.create_index([("user_id", 1), ("series_id", 1), ("status", 1)])
    await db.purchases.create_index([("user_id", 1), ("test_id", 1), ("status", 1)])

    await db.leaderboards.create_index(
        [("user_id", 1), ("scope", 1), ("scope_id", 1), ("time_range", 1)],
        unique=True,
    )
    await db.leaderboards.create_index([("scope", 1), ("scope_id", 1), ("time_range", 1), ("score", -1)])

    await db.settings.create_index("key", unique=True)
    await db.settings.create_index("category")

    logger.info("MongoDB indexes ensured")
