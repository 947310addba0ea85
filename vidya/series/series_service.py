import logging
import re
from datetime import datetime
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from vidya.database import new_id
from vidya.errors import BadRequestError, NotFoundError
from vidya.exams.exam_service import discounted_price
from vidya.exams.scoring import running_average

logger = logging.getLogger(__name__)


def dedupe_tests(test_ids: List[str]) -> List[str]:
    return list(dict.fromkeys(t for t in test_ids or [] if t))


def with_pricing(series: dict) -> dict:
    series["discounted_price"] = discounted_price(
        series.get("price", 0), series.get("discount", 0), series.get("is_paid", False)
    )
    return series


def validate_series(series: dict) -> None:
    if series.get("is_paid") and not (series.get("price") or 0) > 0:
        raise BadRequestError("Paid test series must have a price greater than 0")


# ==================== CRUD ====================

async def create_series(db: AsyncIOMotorDatabase, data: dict, creator_id: str) -> dict:
    validate_series(data)
    now = datetime.utcnow()
    tests = dedupe_tests(data.get("tests", []))
    series = {
        **data,
        "series_id": new_id("SER"),
        "tests": tests,
        "total_tests": len(tests),
        "created_by": creator_id,
        "students": 0,
        "rating": 0,
        "created_at": now,
        "updated_at": now,
    }
    await db.testseries.insert_one(series)
    series.pop("_id", None)
    logger.info("Test series %s created by %s", series["series_id"], creator_id)
    return with_pricing(series)


async def update_series(db: AsyncIOMotorDatabase, series: dict, updates: dict) -> dict:
    validate_series({**series, **updates})
    if "tests" in updates:
        updates["tests"] = dedupe_tests(updates["tests"])
        updates["total_tests"] = len(updates["tests"])
    updates["updated_at"] = datetime.utcnow()
    updated = await db.testseries.find_one_and_update(
        {"series_id": series["series_id"]},
        {"$set": updates},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
    )
    return with_pricing(updated)


async def get_series(db: AsyncIOMotorDatabase, series_id: str) -> Optional[dict]:
    return await db.testseries.find_one({"series_id": series_id}, {"_id": 0})


async def require_series(db: AsyncIOMotorDatabase, series_id: str) -> dict:
    series = await get_series(db, series_id)
    if not series:
        raise NotFoundError("Test series not found")
    return series


async def list_series(
    db: AsyncIOMotorDatabase,
    category: Optional[str] = None,
    search: Optional[str] = None,
    paid: Optional[bool] = None,
    popular: Optional[bool] = None,
) -> List[dict]:
    query = {"active": True}
    if category:
        query["category"] = category
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    if paid is not None:
        query["is_paid"] = paid
    if popular is not None:
        query["popular"] = popular

    docs = await db.testseries.find(query, {"_id": 0}).sort(
        [("popular", -1), ("students", -1)]
    ).to_list(length=None)
    return [with_pricing(doc) for doc in docs]


async def sync_series_tests(db: AsyncIOMotorDatabase, series: dict) -> dict:
    """Merge in tests that name this series and refresh total_tests"""
    linked = await db.tests.find(
        {"series_id": series["series_id"]}, {"_id": 0, "test_id": 1}
    ).to_list(length=None)
    tests = dedupe_tests(series.get("tests", []) + [t["test_id"] for t in linked])
    if tests != series.get("tests") or series.get("total_tests") != len(tests):
        await db.testseries.update_one(
            {"series_id": series["series_id"]},
            {"$set": {"tests": tests, "total_tests": len(tests), "updated_at": datetime.utcnow()}},
        )
    series["tests"] = tests
    series["total_tests"] = len(tests)
    return series


async def sync_all_series(db: AsyncIOMotorDatabase) -> List[dict]:
    report = []
    async for series in db.testseries.find({}, {"_id": 0}):
        before = series.get("total_tests", 0)
        synced = await sync_series_tests(db, series)
        report.append({
            "series_id": synced["series_id"],
            "before": before,
            "after": synced["total_tests"],
        })
    logger.info("Synced test membership for %d series", len(report))
    return report


# ==================== USER PROGRESS ====================

async def subscribe(db: AsyncIOMotorDatabase, user_id: str, series: dict) -> dict:
    user = await db.users.find_one({"user_id": user_id}, {"_id": 0, "subscribed_series": 1})
    subscribed = (user or {}).get("subscribed_series", [])
    existing = next((s for s in subscribed if s["series_id"] == series["series_id"]), None)
    if existing:
        return existing

    entry = {
        "series_id": series["series_id"],
        "subscribed_at": datetime.utcnow(),
        "progress": 0,
        "tests_completed": [],
        "last_activity_at": datetime.utcnow(),
    }
    await db.users.update_one({"user_id": user_id}, {"$push": {"subscribed_series": entry}})
    return entry


async def update_series_progress(
    db: AsyncIOMotorDatabase,
    user_id: str,
    test_id: str,
    score: float,
    series_list: List[dict]
) -> None:
    """Record a completed test against every series the user follows or bought"""
    if not series_list:
        return
    user = await db.users.find_one(
        {"user_id": user_id}, {"_id": 0, "subscribed_series": 1, "purchased_series": 1}
    )
    if not user:
        return

    totals = {s["series_id"]: s.get("total_tests") or len(s.get("tests", [])) for s in series_list}
    now = datetime.utcnow()

    subscribed = user.get("subscribed_series", [])
    for entry in subscribed:
        if entry["series_id"] not in totals:
            continue
        done = dedupe_tests(entry.get("tests_completed", []) + [test_id])
        total = totals[entry["series_id"]]
        entry["tests_completed"] = done
        entry["progress"] = round(len(done) / total * 100) if total else 0
        entry["last_activity_at"] = now

    purchased = user.get("purchased_series", [])
    for entry in purchased:
        if entry["series_id"] not in totals:
            continue
        progress = entry.get("progress") or {}
        attempted = progress.get("tests_attempted", 0)
        completed_ids = dedupe_tests(progress.get("completed_test_ids", []) + [test_id])
        entry["progress"] = {
            "tests_attempted": attempted + 1,
            "tests_completed": len(completed_ids),
            "completed_test_ids": completed_ids,
            "average_score": running_average(progress.get("average_score", 0), attempted, score),
        }

    await db.users.update_one(
        {"user_id": user_id},
        {"$set": {"subscribed_series": subscribed, "purchased_series": purchased}},
    )
