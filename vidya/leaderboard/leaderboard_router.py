from enum import Enum
from typing import Optional

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from vidya.auth.permissions import UserContext, get_current_user
from vidya.database import get_db
from vidya.errors import BadRequestError, NotFoundError
from vidya.leaderboard.leaderboard_service import (
    GLOBAL_SCOPE_ID,
    get_attempts_leaderboard,
    get_bucket_leaderboard,
    get_user_rank,
)

router = APIRouter(tags=["Leaderboards"])


class TimeRange(str, Enum):
    ALL = "all"
    WEEK = "week"
    MONTH = "month"


class Scope(str, Enum):
    TEST = "test"
    SERIES = "series"
    GLOBAL = "global"


# ==================== ENDPOINTS ====================

@router.get("")
async def leaderboard(
    time_range: TimeRange = TimeRange.ALL,
    subject: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Average score per user over completed attempts"""
    return await get_attempts_leaderboard(db, time_range.value, subject, page, limit)


@router.get("/test/{test_id}")
async def test_leaderboard(
    test_id: str,
    time_range: TimeRange = TimeRange.ALL,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    result = await get_bucket_leaderboard(db, Scope.TEST.value, test_id, time_range.value, page, limit)
    return {"scope": "test", "test_id": test_id, "time_range": time_range.value, **result}


@router.get("/series/{series_id}")
async def series_leaderboard(
    series_id: str,
    time_range: TimeRange = TimeRange.ALL,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    result = await get_bucket_leaderboard(db, Scope.SERIES.value, series_id, time_range.value, page, limit)
    return {"scope": "series", "series_id": series_id, "time_range": time_range.value, **result}


@router.get("/my-rank")
async def my_rank(
    scope: Scope = Scope.GLOBAL,
    scope_id: Optional[str] = None,
    time_range: TimeRange = TimeRange.ALL,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    if scope == Scope.GLOBAL:
        scope_id = GLOBAL_SCOPE_ID
    elif not scope_id:
        raise BadRequestError("scope_id is required for test and series scopes")

    rank = await get_user_rank(db, user.user_id, scope.value, scope_id, time_range.value)
    if rank is None:
        raise NotFoundError("No leaderboard entry yet")
    return rank
