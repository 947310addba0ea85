"""
Leaderboard maintenance and queries

Stored buckets live in `leaderboards`, one document per
(user, scope, scope_id, time_range), each a running average.
The attempts leaderboard is computed from completed attempts on read.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from vidya.database import pagination_meta
from vidya.exams.models import AttemptStatus
from vidya.exams.scoring import running_average

logger = logging.getLogger(__name__)

TIME_RANGES = ("all", "week", "month")
WINDOWS = {"week": timedelta(days=7), "month": timedelta(days=30)}
GLOBAL_SCOPE_ID = "global"


def window_start(time_range: str, now: datetime) -> Optional[datetime]:
    window = WINDOWS.get(time_range)
    return now - window if window else None


# ==================== UPDATE PATH ====================

async def update_entry(
    db: AsyncIOMotorDatabase,
    user,
    scope: str,
    scope_id: str,
    scope_name: Optional[str],
    time_range: str,
    score: float,
    time_taken: float,
    now: Optional[datetime] = None
) -> dict:
    """
    Fold one result into a bucket with the running-average formula
    A week/month bucket whose period has lapsed starts over.
    """
    now = now or datetime.utcnow()
    key = {"user_id": user.user_id, "scope": scope, "scope_id": scope_id, "time_range": time_range}
    entry = await db.leaderboards.find_one(key, {"_id": 0})

    since = window_start(time_range, now)
    if entry and since is not None and entry.get("period_start", now) < since:
        entry = None

    if entry:
        count = entry.get("tests_taken", 0)
        values = {
            "score": running_average(entry.get("score", 0), count, score),
            "average_time": running_average(entry.get("average_time", 0), count, time_taken),
            "tests_taken": count + 1,
            "period_start": entry.get("period_start", now),
        }
    else:
        values = {"score": score, "average_time": time_taken, "tests_taken": 1, "period_start": now}

    values.update({
        "display_name": user.display_name,
        "email": user.email,
        "photo_url": user.photo_url,
        "scope_name": scope_name,
        "last_updated": now,
    })
    await db.leaderboards.update_one(key, {"$set": values}, upsert=True)
    return {**key, **values}


async def record_result(
    db: AsyncIOMotorDatabase,
    user,
    test: dict,
    attempt: dict,
    series_list: List[dict]
) -> None:
    """Update every bucket a completed attempt contributes to"""
    now = attempt.get("completed_at") or datetime.utcnow()
    score = attempt["score"]
    time_taken = attempt.get("time_taken", 0)

    scopes = [("test", test["test_id"], test.get("title")), ("global", GLOBAL_SCOPE_ID, None)]
    scopes += [("series", s["series_id"], s.get("title")) for s in series_list]

    for scope, scope_id, scope_name in scopes:
        for time_range in TIME_RANGES:
            await update_entry(db, user, scope, scope_id, scope_name, time_range, score, time_taken, now)


# ==================== READ PATH ====================

async def get_bucket_leaderboard(
    db: AsyncIOMotorDatabase,
    scope: str,
    scope_id: str,
    time_range: str = "all",
    page: int = 1,
    limit: int = 10
) -> dict:
    query = {"scope": scope, "scope_id": scope_id, "time_range": time_range}
    since = window_start(time_range, datetime.utcnow())
    if since is not None:
        query["last_updated"] = {"$gte": since}

    skip = (page - 1) * limit
    total = await db.leaderboards.count_documents(query)
    rows = await db.leaderboards.find(query, {"_id": 0}).sort(
        [("score", -1), ("tests_taken", -1)]
    ).skip(skip).limit(limit).to_list(length=limit)

    for idx, row in enumerate(rows):
        row["rank"] = skip + idx + 1

    return {"leaderboard": rows, "pagination": pagination_meta(total, page, limit)}


async def get_attempts_leaderboard(
    db: AsyncIOMotorDatabase,
    time_range: str = "all",
    subject: Optional[str] = None,
    page: int = 1,
    limit: int = 10
) -> dict:
    """Average score per user over completed attempts, paginated in memory"""
    match = {"status": AttemptStatus.COMPLETED.value}
    since = window_start(time_range, datetime.utcnow())
    if since is not None:
        match["completed_at"] = {"$gte": since}
    if subject:
        match["subject"] = subject

    pipeline = [
        {"$match": match},
        {"$group": {
            "_id": "$user_id",
            "average_score": {"$avg": "$score"},
            "total_attempts": {"$sum": 1},
            "average_time": {"$avg": "$time_taken"},
            "best_score": {"$max": "$score"},
        }},
    ]
    groups = await db.testattempts.aggregate(pipeline).to_list(length=None)
    groups.sort(key=lambda g: (-(g["average_score"] or 0), -g["total_attempts"]))

    total = len(groups)
    skip = (page - 1) * limit
    page_rows = groups[skip:skip + limit]

    user_ids = [g["_id"] for g in page_rows]
    users = await db.users.find(
        {"user_id": {"$in": user_ids}},
        {"_id": 0, "user_id": 1, "name": 1, "email": 1, "photo_url": 1},
    ).to_list(length=None)
    by_id = {u["user_id"]: u for u in users}

    leaderboard = []
    for idx, group in enumerate(page_rows):
        profile = by_id.get(group["_id"], {})
        leaderboard.append({
            "rank": skip + idx + 1,
            "user_id": group["_id"],
            "display_name": profile.get("name") or "Anonymous",
            "photo_url": profile.get("photo_url"),
            "average_score": round(group["average_score"] or 0, 2),
            "best_score": group.get("best_score", 0),
            "total_attempts": group["total_attempts"],
            "average_time": round(group.get("average_time") or 0, 2),
        })

    return {"leaderboard": leaderboard, "pagination": pagination_meta(total, page, limit)}


async def get_user_rank(
    db: AsyncIOMotorDatabase,
    user_id: str,
    scope: str,
    scope_id: str,
    time_range: str = "all",
    now: Optional[datetime] = None
) -> Optional[dict]:
    """Caller's position on the same board get_bucket_leaderboard returns"""
    key = {"scope": scope, "scope_id": scope_id, "time_range": time_range}
    since = window_start(time_range, now or datetime.utcnow())
    if since is not None:
        key["last_updated"] = {"$gte": since}

    entry = await db.leaderboards.find_one({**key, "user_id": user_id}, {"_id": 0})
    if not entry:
        return None

    # users sorted before this one: higher score, or same score with more tests
    score = entry.get("score", 0)
    ahead = await db.leaderboards.count_documents({**key, "$or": [
        {"score": {"$gt": score}},
        {"score": score, "tests_taken": {"$gt": entry.get("tests_taken", 0)}},
    ]})
    total = await db.leaderboards.count_documents(key)
    return {**entry, "rank": ahead + 1, "total_participants": total}
