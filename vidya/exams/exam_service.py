"""
Test CRUD, derived totals and statistics
"""

import logging
import math
from collections import Counter
from datetime import datetime
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from vidya.database import new_id, strip_ids
from vidya.errors import BadRequestError, NotFoundError
from vidya.exams.models import AttemptStatus, TestStatus
from vidya.exams.scoring import running_average

logger = logging.getLogger(__name__)

DEFAULT_SECTION = "General"
ANSWER_FIELDS = ("correct_answer", "explanation")


# ==================== DERIVED FIELDS ====================

def discounted_price(price: float, discount: float, is_paid: bool = True) -> float:
    if not is_paid:
        return 0
    price = price or 0
    return round(price - price * (discount or 0) / 100, 2)


def prepare_questions(questions: List[dict]) -> List[dict]:
    """Assign ids and fill correct_answer from flagged options"""
    prepared = []
    for question in questions:
        question = dict(question)
        question["question_id"] = question.get("question_id") or new_id("Q")
        options = []
        for option in question.get("options") or []:
            option = dict(option)
            option["option_id"] = option.get("option_id") or new_id("OPT")
            options.append(option)
        question["options"] = options
        if question.get("correct_answer") in (None, "", []):
            flagged = [o["text"] for o in options if o.get("is_correct")]
            if len(flagged) == 1:
                question["correct_answer"] = flagged[0]
            elif flagged:
                question["correct_answer"] = flagged
        question["section_title"] = question.get("section_title") or DEFAULT_SECTION
        prepared.append(question)
    return prepared


def compute_totals(test: dict) -> dict:
    """Recompute total_marks, total_questions and per-section totals in place"""
    questions = test.get("questions") or []
    test["total_marks"] = sum(q.get("marks", 1) for q in questions)
    test["total_questions"] = len(questions)

    sections = {s["title"]: dict(s) for s in test.get("sections") or []}
    for question in questions:
        title = question.get("section_title") or DEFAULT_SECTION
        if title not in sections:
            sections[title] = {"title": title, "description": None, "order": len(sections)}

    passing_score = test.get("passing_score")
    if passing_score is None:
        passing_score = 60
    for section in sections.values():
        section["section_id"] = section.get("section_id") or new_id("SEC")
        members = [q for q in questions if (q.get("section_title") or DEFAULT_SECTION) == section["title"]]
        section["total_marks"] = sum(q.get("marks", 1) for q in members)
        section["total_questions"] = len(members)
        section["passing_marks"] = math.ceil(section["total_marks"] * passing_score / 100)

    test["sections"] = sorted(sections.values(), key=lambda s: s.get("order", 0))
    return test


def validate_test(test: dict) -> None:
    errors = []
    if test.get("is_paid") and not (test.get("price") or 0) > 0:
        errors.append("Paid tests must have a price greater than 0")
    if test.get("is_series_test") and not test.get("series_id"):
        errors.append("Series tests must have a seriesId")
    if errors:
        raise BadRequestError(errors[0], details=errors)


def publish_readiness(test: dict) -> List[str]:
    """Reasons a test cannot be published; empty when ready"""
    problems = []
    for field in ("title", "description", "grade", "subject"):
        if not test.get(field):
            problems.append(f"Missing {field}")
    if not (test.get("duration") or 0) > 0:
        problems.append("Duration must be positive")
    if not test.get("sections"):
        problems.append("At least one section is required")
    if not test.get("questions"):
        problems.append("At least one question is required")
    if not (test.get("total_marks") or 0) > 0:
        problems.append("Total marks must be positive")
    return problems


def hide_answers(test: dict) -> dict:
    """Copy of a test safe to show a student before submission"""
    visible = dict(test)
    questions = []
    for question in test.get("questions") or []:
        question = {k: v for k, v in question.items() if k not in ANSWER_FIELDS}
        question["options"] = [
            {k: v for k, v in option.items() if k != "is_correct"}
            for option in question.get("options") or []
        ]
        questions.append(question)
    visible["questions"] = questions
    return visible


def calculate_stats(test: dict) -> dict:
    questions = test.get("questions") or []
    return {
        "total_questions": len(questions),
        "total_marks": test.get("total_marks", 0),
        "question_types": dict(Counter(q.get("type", "mcq") for q in questions)),
        "section_stats": [
            {
                "title": s["title"],
                "total_questions": s.get("total_questions", 0),
                "total_marks": s.get("total_marks", 0),
                "passing_marks": s.get("passing_marks", 0),
            }
            for s in test.get("sections") or []
        ],
        "attempts": test.get("attempts", 0),
        "average_score": round(test.get("average_score", 0), 2),
    }


# ==================== CRUD ====================

async def create_test(db: AsyncIOMotorDatabase, data: dict, creator_id: str) -> dict:
    now = datetime.utcnow()
    test = {
        **data,
        "test_id": new_id("TEST"),
        "questions": prepare_questions(data.get("questions") or []),
        "created_by": creator_id,
        "attempts": 0,
        "average_score": 0,
        "metadata": {"version": 1, "last_modified": now},
        "created_at": now,
        "updated_at": now,
    }
    compute_totals(test)
    validate_test(test)

    if test.get("status") == TestStatus.PUBLISHED:
        problems = publish_readiness(test)
        if problems:
            raise BadRequestError("Test is not ready for publishing", details=problems)

    await db.tests.insert_one(test)
    test.pop("_id", None)
    logger.info("Test %s created by %s", test["test_id"], creator_id)
    return test


async def get_test(db: AsyncIOMotorDatabase, test_id: str) -> Optional[dict]:
    return await db.tests.find_one({"test_id": test_id}, {"_id": 0})


async def require_test(db: AsyncIOMotorDatabase, test_id: str) -> dict:
    test = await get_test(db, test_id)
    if not test:
        raise NotFoundError("Test not found")
    return test


async def list_tests(
    db: AsyncIOMotorDatabase,
    filters: dict,
    skip: int = 0,
    limit: int = 20
) -> tuple:
    projection = {"_id": 0, "questions": 0}
    cursor = db.tests.find(filters, projection).sort("created_at", -1).skip(skip).limit(limit)
    tests = await cursor.to_list(length=limit)
    total = await db.tests.count_documents(filters)
    return tests, total


async def update_test(db: AsyncIOMotorDatabase, test: dict, updates: dict) -> dict:
    """Apply updates, recompute totals and bump the version"""
    merged = {**test, **updates}
    if "questions" in updates:
        merged["questions"] = prepare_questions(updates["questions"])
    compute_totals(merged)
    validate_test(merged)

    if merged.get("status") == TestStatus.PUBLISHED:
        problems = publish_readiness(merged)
        if problems:
            raise BadRequestError("Test is not ready for publishing", details=problems)

    now = datetime.utcnow()
    changes = {k: merged[k] for k in updates}
    changes.update({
        "questions": merged.get("questions", []),
        "sections": merged["sections"],
        "total_marks": merged["total_marks"],
        "total_questions": merged["total_questions"],
        "metadata.last_modified": now,
        "updated_at": now,
    })
    updated = await db.tests.find_one_and_update(
        {"test_id": test["test_id"]},
        {"$set": changes, "$inc": {"metadata.version": 1}},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
    )
    return updated


async def delete_test(db: AsyncIOMotorDatabase, test_id: str) -> None:
    await db.tests.delete_one({"test_id": test_id})
    # drop it from every series that lists it
    async for series in db.testseries.find({"tests": test_id}, {"_id": 0, "series_id": 1, "tests": 1}):
        remaining = [t for t in series.get("tests", []) if t != test_id]
        await db.testseries.update_one(
            {"series_id": series["series_id"]},
            {"$set": {"tests": remaining, "total_tests": len(remaining), "updated_at": datetime.utcnow()}},
        )


async def record_attempt_stats(db: AsyncIOMotorDatabase, test_id: str, score: float) -> None:
    test = await db.tests.find_one({"test_id": test_id}, {"_id": 0, "attempts": 1, "average_score": 1})
    if not test:
        return
    count = test.get("attempts", 0)
    await db.tests.update_one(
        {"test_id": test_id},
        {"$set": {
            "attempts": count + 1,
            "average_score": running_average(test.get("average_score", 0), count, score),
        }},
    )


async def attempt_summary(db: AsyncIOMotorDatabase, test_id: str) -> dict:
    completed = {"test_id": test_id, "status": AttemptStatus.COMPLETED.value}
    total = await db.testattempts.count_documents(completed)
    passed = await db.testattempts.count_documents({**completed, "is_passed": True})
    in_progress = await db.testattempts.count_documents(
        {"test_id": test_id, "status": AttemptStatus.IN_PROGRESS.value}
    )
    return {
        "completed_attempts": total,
        "in_progress_attempts": in_progress,
        "pass_rate": round(passed / total * 100, 2) if total else 0,
    }


async def subject_list(db: AsyncIOMotorDatabase) -> List[str]:
    subjects = await db.tests.distinct("subject", {"status": TestStatus.PUBLISHED.value})
    return [s for s in subjects if s]


async def tests_by_ids(db: AsyncIOMotorDatabase, test_ids: List[str]) -> List[dict]:
    """Tests in the order of test_ids, answers and questions excluded"""
    docs = await db.tests.find(
        {"test_id": {"$in": test_ids}}, {"_id": 0, "questions": 0}
    ).to_list(length=None)
    order = {tid: i for i, tid in enumerate(test_ids)}
    return sorted(strip_ids(docs), key=lambda t: order.get(t["test_id"], 0))
