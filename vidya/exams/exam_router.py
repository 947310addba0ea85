import re
from typing import Optional

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from vidya.auth.permissions import UserContext, get_current_user, require_teacher, verify_owner_or_admin
from vidya.database import get_db, pagination_meta, paginate
from vidya.errors import BadRequestError, ForbiddenError, NotFoundError
from vidya.exams import attempt_service, exam_service
from vidya.exams.categories import build_categories
from vidya.exams.models import SaveProgressRequest, SubmitRequest, TestCreate, TestStatus, TestStatusUpdate, TestUpdate
from vidya.purchases.access import check_test_access

router = APIRouter(tags=["Tests"])


async def require_access(db: AsyncIOMotorDatabase, user: UserContext, test: dict) -> dict:
    decision = await check_test_access(db, user, test)
    if not decision["has_access"]:
        raise ForbiddenError(decision["message"], details={"access_reason": decision["access_reason"]})
    return decision


# ==================== CATALOGUE ====================

@router.get("")
async def list_tests(
    subject: Optional[str] = None,
    grade: Optional[str] = None,
    status: Optional[TestStatus] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    """Published tests for students; staff may filter by any status"""
    filters = {}
    if subject:
        filters["subject"] = subject
    if grade:
        filters["grade"] = grade
    if search:
        filters["title"] = {"$regex": re.escape(search), "$options": "i"}
    if user.is_staff:
        if status:
            filters["status"] = status.value
    else:
        filters["status"] = TestStatus.PUBLISHED.value

    skip, limit = paginate(page, limit)
    tests, total = await exam_service.list_tests(db, filters, skip, limit)
    for test in tests:
        test["discounted_price"] = exam_service.discounted_price(
            test.get("price", 0), test.get("discount", 0), test.get("is_paid", False)
        )
    return {"tests": tests, "pagination": pagination_meta(total, page, limit)}


@router.get("/categories")
async def get_categories(db: AsyncIOMotorDatabase = Depends(get_db)):
    """Default exam categories merged with subjects of published tests"""
    subjects = await exam_service.subject_list(db)
    return {"categories": build_categories(subjects)}


@router.get("/{test_id}")
async def get_test(
    test_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    test = await exam_service.require_test(db, test_id)
    decision = await require_access(db, user, test)
    if not user.is_staff and test.get("created_by") != user.user_id:
        test = exam_service.hide_answers(test)
    test["discounted_price"] = exam_service.discounted_price(
        test.get("price", 0), test.get("discount", 0), test.get("is_paid", False)
    )
    test["access"] = decision
    return test


# ==================== AUTHORING ====================

@router.post("", status_code=201)
async def create_test(
    payload: TestCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_teacher)
):
    if not user.permissions.get("can_create_tests"):
        raise ForbiddenError("Access denied: cannot create tests")
    test = await exam_service.create_test(db, payload.dict(), user.user_id)
    await db.users.update_one({"user_id": user.user_id}, {"$push": {"created_tests": test["test_id"]}})
    return test


@router.put("/{test_id}")
async def update_test(
    test_id: str,
    payload: TestUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_teacher)
):
    test = await exam_service.require_test(db, test_id)
    verify_owner_or_admin(user, test.get("created_by"), "Only the creator or an admin can edit this test")
    updates = payload.dict(exclude_unset=True)
    if not updates:
        raise BadRequestError("No fields to update")
    return await exam_service.update_test(db, test, updates)


@router.patch("/{test_id}/status")
async def update_test_status(
    test_id: str,
    payload: TestStatusUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_teacher)
):
    test = await exam_service.require_test(db, test_id)
    verify_owner_or_admin(user, test.get("created_by"), "Only the creator or an admin can change this test")
    return await exam_service.update_test(db, test, {"status": payload.status})


@router.delete("/{test_id}")
async def delete_test(
    test_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_teacher)
):
    test = await exam_service.require_test(db, test_id)
    verify_owner_or_admin(user, test.get("created_by"), "Only the creator or an admin can delete this test")
    if not user.is_admin and not user.permissions.get("can_delete_tests"):
        raise ForbiddenError("Access denied: cannot delete tests")
    await exam_service.delete_test(db, test_id)
    return {"message": "Test deleted", "test_id": test_id}


@router.get("/{test_id}/stats")
async def test_stats(
    test_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_teacher)
):
    test = await exam_service.require_test(db, test_id)
    stats = exam_service.calculate_stats(test)
    stats.update(await exam_service.attempt_summary(db, test_id))
    stats["ready_for_publishing"] = not exam_service.publish_readiness(test)
    return stats


# ==================== ACCESS & ATTEMPTS ====================

@router.get("/{test_id}/check-access")
async def check_access(
    test_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    test = await exam_service.require_test(db, test_id)
    decision = await check_test_access(db, user, test)
    decision["test_id"] = test_id
    decision["is_paid"] = test.get("is_paid", False)
    return decision


@router.post("/{test_id}/start")
async def start_test(
    test_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    test = await exam_service.require_test(db, test_id)
    await require_access(db, user, test)
    return await attempt_service.start_attempt(db, test, user.user_id)


@router.post("/{test_id}/save-progress")
async def save_progress(
    test_id: str,
    payload: SaveProgressRequest,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    test = await exam_service.require_test(db, test_id)
    await require_access(db, user, test)
    attempt = await attempt_service.save_progress(db, test, user.user_id, payload.answers, payload.time_left)
    return {"message": "Progress saved", "attempt": attempt}


@router.post("/{test_id}/submit")
async def submit_test(
    test_id: str,
    payload: SubmitRequest,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    test = await exam_service.require_test(db, test_id)
    await require_access(db, user, test)
    attempt = await attempt_service.submit_attempt(db, test, user, payload.answers, payload.time_left)
    return {"message": "Test submitted", "attempt": attempt}


@router.get("/{test_id}/check-completion")
async def check_completion(
    test_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    attempt = await attempt_service.find_completed_attempt(db, test_id, user.user_id)
    return {"completed": attempt is not None, "attempt": attempt}


@router.get("/{test_id}/attempts/me")
async def my_attempts(
    test_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    attempts = await attempt_service.list_user_attempts(db, user.user_id, test_id)
    return {"attempts": attempts}


@router.get("/{test_id}/attempts/{attempt_id}")
async def get_attempt(
    test_id: str,
    attempt_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    attempt = await db.testattempts.find_one({"attempt_id": attempt_id, "test_id": test_id}, {"_id": 0})
    if not attempt:
        raise NotFoundError("Attempt not found")
    if attempt["user_id"] != user.user_id and not user.is_staff:
        raise ForbiddenError("Access denied")
    return attempt
