from typing import Optional

from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from vidya.auth.permissions import UserContext, get_current_user, require_admin, require_teacher, verify_owner_or_admin
from vidya.database import get_db
from vidya.errors import BadRequestError
from vidya.exams import exam_service
from vidya.exams.models import TestStatus
from vidya.purchases.access import find_valid_purchase
from vidya.series import series_service
from vidya.series.models import SeriesCreate, SeriesUpdate

router = APIRouter(tags=["Test Series"])


# ==================== CATALOGUE ====================

@router.get("")
async def list_series(
    category: Optional[str] = None,
    search: Optional[str] = None,
    paid: Optional[bool] = None,
    popular: Optional[bool] = None,
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    series = await series_service.list_series(db, category, search, paid, popular)
    return {"series": series, "total": len(series)}


@router.get("/user/purchased")
async def purchased_series(
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    entries = user.profile.get("purchased_series", [])
    ids = [e["series_id"] for e in entries]
    docs = await db.testseries.find({"series_id": {"$in": ids}}, {"_id": 0}).to_list(length=None)
    by_id = {d["series_id"]: series_service.with_pricing(d) for d in docs}
    return {"series": [{**e, "series": by_id.get(e["series_id"])} for e in entries]}


@router.get("/user/subscribed")
async def subscribed_series(
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    entries = user.profile.get("subscribed_series", [])
    ids = [e["series_id"] for e in entries]
    docs = await db.testseries.find({"series_id": {"$in": ids}}, {"_id": 0}).to_list(length=None)
    by_id = {d["series_id"]: series_service.with_pricing(d) for d in docs}
    return {"series": [{**e, "series": by_id.get(e["series_id"])} for e in entries]}


@router.post("/admin/sync-tests")
async def sync_tests(
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_admin)
):
    """Rebuild every series' test list from tests that name it"""
    report = await series_service.sync_all_series(db)
    return {"message": "Series synced", "series": report}


@router.get("/{series_id}")
async def get_series(series_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    series = await series_service.require_series(db, series_id)
    if not series.get("tests"):
        series = await series_service.sync_series_tests(db, series)
    return series_service.with_pricing(series)


@router.get("/{series_id}/tests")
async def series_tests(
    series_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    series = await series_service.require_series(db, series_id)
    tests = await exam_service.tests_by_ids(db, series.get("tests", []))
    if not user.is_staff:
        tests = [t for t in tests if t.get("status") == TestStatus.PUBLISHED]
    return {"series_id": series_id, "tests": tests, "total": len(tests)}


@router.get("/{series_id}/check-purchase")
async def check_purchase(
    series_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    series = await series_service.require_series(db, series_id)
    if not series.get("is_paid"):
        return {"has_purchased": True, "is_free": True, "purchase": None}
    purchase = await find_valid_purchase(db, user.user_id, series_id=series_id)
    return {"has_purchased": purchase is not None, "is_free": False, "purchase": purchase}


@router.post("/{series_id}/subscribe")
async def subscribe(
    series_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    series = await series_service.require_series(db, series_id)
    entry = await series_service.subscribe(db, user.user_id, series)
    return {"message": "Subscribed", "subscription": entry}


# ==================== AUTHORING ====================

@router.post("", status_code=201)
async def create_series(
    payload: SeriesCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_teacher)
):
    return await series_service.create_series(db, payload.dict(), user.user_id)


@router.put("/{series_id}")
async def update_series(
    series_id: str,
    payload: SeriesUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_teacher)
):
    series = await series_service.require_series(db, series_id)
    verify_owner_or_admin(user, series.get("created_by"), "Only the creator or an admin can edit this series")
    updates = payload.dict(exclude_unset=True)
    if not updates:
        raise BadRequestError("No fields to update")
    return await series_service.update_series(db, series, updates)


@router.delete("/{series_id}")
async def delete_series(
    series_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_admin)
):
    await series_service.require_series(db, series_id)
    await db.testseries.delete_one({"series_id": series_id})
    return {"message": "Test series deleted", "series_id": series_id}
