"""
Attempt lifecycle: start, autosave, submit

One completed attempt per (test, user). Submission finalises the
in-progress attempt with a conditional update, so two racing submits
cannot both complete it; the partial unique index on completed attempts
backs this up at the storage layer.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from vidya.database import new_id
from vidya.errors import ConflictError
from vidya.exams import exam_service
from vidya.exams.models import AttemptStatus
from vidya.exams.scoring import elapsed_seconds, is_passed, score_attempt
from vidya.leaderboard import leaderboard_service
from vidya.purchases.access import containing_series
from vidya.series import series_service
from vidya.users import user_service

logger = logging.getLogger(__name__)

ALREADY_COMPLETED = "Test already completed"


async def find_completed_attempt(db: AsyncIOMotorDatabase, test_id: str, user_id: str) -> Optional[dict]:
    return await db.testattempts.find_one(
        {"test_id": test_id, "user_id": user_id, "status": AttemptStatus.COMPLETED.value},
        {"_id": 0},
    )


async def ensure_not_completed(db: AsyncIOMotorDatabase, test_id: str, user_id: str) -> None:
    if await find_completed_attempt(db, test_id, user_id):
        raise ConflictError(ALREADY_COMPLETED)


async def get_or_start_attempt(db: AsyncIOMotorDatabase, test: dict, user_id: str) -> dict:
    """Atomic find-or-create of the caller's in-progress attempt"""
    return await db.testattempts.find_one_and_update(
        {"test_id": test["test_id"], "user_id": user_id, "status": AttemptStatus.IN_PROGRESS.value},
        {"$setOnInsert": {
            "attempt_id": new_id("ATT"),
            "test_title": test.get("title"),
            "subject": test.get("subject"),
            "answers": {},
            "time_left": test.get("duration", 0) * 60,
            "started_at": datetime.utcnow(),
        }},
        upsert=True,
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
    )


async def start_attempt(db: AsyncIOMotorDatabase, test: dict, user_id: str) -> dict:
    await ensure_not_completed(db, test["test_id"], user_id)
    return await get_or_start_attempt(db, test, user_id)


async def save_progress(
    db: AsyncIOMotorDatabase,
    test: dict,
    user_id: str,
    answers: Dict[str, Any],
    time_left: Optional[int]
) -> dict:
    await ensure_not_completed(db, test["test_id"], user_id)
    attempt = await get_or_start_attempt(db, test, user_id)

    changes = {f"answers.{qid}": value for qid, value in answers.items()}
    if time_left is not None:
        changes["time_left"] = time_left
    changes["updated_at"] = datetime.utcnow()

    saved = await db.testattempts.find_one_and_update(
        {"attempt_id": attempt["attempt_id"], "status": AttemptStatus.IN_PROGRESS.value},
        {"$set": changes},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
    )
    if saved is None:
        raise ConflictError(ALREADY_COMPLETED)
    return saved


async def submit_attempt(
    db: AsyncIOMotorDatabase,
    test: dict,
    user,
    answers: Dict[str, Any],
    time_left: Optional[int]
) -> dict:
    """
    Score and finalise the caller's attempt

    Raises:
        ConflictError: a completed attempt already exists, or another
            submit finalised this attempt first
    """
    await ensure_not_completed(db, test["test_id"], user.user_id)
    attempt = await get_or_start_attempt(db, test, user.user_id)

    merged = {**(attempt.get("answers") or {}), **answers}
    scored = score_attempt(test.get("questions") or [], merged)
    passed = is_passed(scored["percentage"], test.get("passing_score"))

    now = datetime.utcnow()
    final = {
        "status": AttemptStatus.COMPLETED.value,
        "answers": merged,
        "score": scored["percentage"],
        "obtained_marks": scored["obtained_marks"],
        "total_marks": scored["total_marks"],
        "correct_answers": scored["correct_answers"],
        "total_questions": scored["total_questions"],
        "is_passed": passed,
        "completed_at": now,
        "time_taken": elapsed_seconds(attempt["started_at"], now),
        "time_left": time_left if time_left is not None else attempt.get("time_left"),
        "updated_at": now,
    }

    try:
        completed = await db.testattempts.find_one_and_update(
            {"attempt_id": attempt["attempt_id"], "status": AttemptStatus.IN_PROGRESS.value},
            {"$set": final},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        raise ConflictError(ALREADY_COMPLETED)
    if completed is None:
        raise ConflictError(ALREADY_COMPLETED)

    logger.info(
        "Attempt %s submitted: %s/%s (%s%%)",
        completed["attempt_id"], scored["obtained_marks"], scored["total_marks"], scored["percentage"],
    )

    await apply_side_effects(db, test, user, completed)

    if (test.get("settings") or {}).get("show_results", True):
        completed["results"] = scored["results"]
    return completed


async def apply_side_effects(db: AsyncIOMotorDatabase, test: dict, user, attempt: dict) -> None:
    """Best effort: a failure here leaves the saved attempt in place"""
    try:
        await user_service.record_test_history(db, user.user_id, test, attempt)
    except Exception:
        logger.exception("Failed to record test history for attempt %s", attempt["attempt_id"])

    try:
        await exam_service.record_attempt_stats(db, test["test_id"], attempt["score"])
    except Exception:
        logger.exception("Failed to update stats for test %s", test["test_id"])

    series_list: List[dict] = []
    try:
        series_list = await containing_series(db, test)
    except Exception:
        logger.exception("Failed to load series for test %s", test["test_id"])

    try:
        await leaderboard_service.record_result(db, user, test, attempt, series_list)
    except Exception:
        logger.exception("Failed to update leaderboard for attempt %s", attempt["attempt_id"])

    try:
        await series_service.update_series_progress(
            db, user.user_id, test["test_id"], attempt["score"], series_list
        )
    except Exception:
        logger.exception("Failed to update series progress for attempt %s", attempt["attempt_id"])


async def list_user_attempts(db: AsyncIOMotorDatabase, user_id: str, test_id: Optional[str] = None) -> List[dict]:
    query = {"user_id": user_id}
    if test_id:
        query["test_id"] = test_id
    return await db.testattempts.find(query, {"_id": 0}).sort("started_at", -1).to_list(length=100)
