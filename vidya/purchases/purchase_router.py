import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from vidya.auth.permissions import UserContext, get_current_user, require_admin, verify_owner_or_admin
from vidya.database import get_db, new_id, pagination_meta, paginate
from vidya.errors import ConflictError, ForbiddenError, NotFoundError
from vidya.exams import exam_service
from vidya.purchases.access import calculate_expiry, find_valid_purchase
from vidya.purchases.models import PaymentMethod, PurchaseComplete, PurchaseCreate, PurchaseStatus
from vidya.series import series_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Purchases"])


async def grant_access(db: AsyncIOMotorDatabase, purchase: dict) -> None:
    """Attach a completed purchase to the buyer's profile"""
    if purchase.get("series_id"):
        entry = {
            "series_id": purchase["series_id"],
            "purchase_id": purchase["purchase_id"],
            "purchased_at": purchase.get("completed_at") or datetime.utcnow(),
            "expires_at": purchase.get("expires_at"),
            "progress": {"tests_attempted": 0, "tests_completed": 0, "average_score": 0},
        }
        await db.users.update_one(
            {"user_id": purchase["user_id"]},
            {"$pull": {"purchased_series": {"series_id": purchase["series_id"]}}},
        )
        await db.users.update_one({"user_id": purchase["user_id"]}, {"$push": {"purchased_series": entry}})
        await db.testseries.update_one({"series_id": purchase["series_id"]}, {"$inc": {"students": 1}})
    else:
        await db.users.update_one(
            {"user_id": purchase["user_id"]},
            {"$addToSet": {"purchased_tests": purchase["test_id"]}},
        )


async def require_purchase(db: AsyncIOMotorDatabase, purchase_id: str) -> dict:
    purchase = await db.purchases.find_one({"purchase_id": purchase_id}, {"_id": 0})
    if not purchase:
        raise NotFoundError("Purchase not found")
    return purchase


# ==================== BUYER ====================

@router.post("/create", status_code=201)
async def create_purchase(
    payload: PurchaseCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    """
    Create a purchase for a series or a single test
    Free content completes immediately; paid content waits for /complete.
    """
    if payload.series_id:
        target = await series_service.require_series(db, payload.series_id)
        target_key = {"series_id": payload.series_id}
        duration = target.get("duration")
    else:
        target = await exam_service.require_test(db, payload.test_id)
        target_key = {"test_id": payload.test_id}
        days = target.get("access_duration")
        duration = f"{days} days" if days else None

    if await find_valid_purchase(db, user.user_id, **target_key):
        raise ConflictError("You already have access to this content")

    price = target.get("price", 0)
    amount = exam_service.discounted_price(price, target.get("discount", 0), target.get("is_paid", False))
    is_free = amount <= 0
    now = datetime.utcnow()

    purchase = {
        "purchase_id": new_id("PUR"),
        "user_id": user.user_id,
        **target_key,
        "amount": amount,
        "discount_applied": round((price or 0) - amount, 2) if target.get("is_paid") else 0,
        "payment_method": PaymentMethod.FREE.value if is_free else payload.payment_method,
        "payment_id": payload.payment_id,
        "status": PurchaseStatus.COMPLETED.value if is_free else PurchaseStatus.PENDING.value,
        "access_granted": is_free,
        "expires_at": calculate_expiry(duration, now) if is_free else None,
        "transaction_details": {},
        "completed_at": now if is_free else None,
        "created_at": now,
        "updated_at": now,
    }
    await db.purchases.insert_one(purchase)
    purchase.pop("_id", None)

    if is_free:
        await grant_access(db, purchase)

    logger.info("Purchase %s created for %s (%s)", purchase["purchase_id"], user.user_id, purchase["status"])
    return purchase


@router.post("/{purchase_id}/complete")
async def complete_purchase(
    purchase_id: str,
    payload: PurchaseComplete,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    purchase = await require_purchase(db, purchase_id)
    if purchase["user_id"] != user.user_id:
        raise ForbiddenError("Not authorized to complete this purchase")

    if purchase.get("series_id"):
        series = await series_service.get_series(db, purchase["series_id"])
        duration = (series or {}).get("duration")
    else:
        test = await exam_service.get_test(db, purchase["test_id"])
        days = (test or {}).get("access_duration")
        duration = f"{days} days" if days else None

    now = datetime.utcnow()
    completed = await db.purchases.find_one_and_update(
        {"purchase_id": purchase_id, "status": PurchaseStatus.PENDING.value},
        {"$set": {
            "status": PurchaseStatus.COMPLETED.value,
            "access_granted": True,
            "payment_id": payload.payment_id or purchase.get("payment_id"),
            "transaction_details": payload.transaction_details,
            "expires_at": calculate_expiry(duration, now),
            "completed_at": now,
            "updated_at": now,
        }},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
    )
    if completed is None:
        raise ConflictError(f"Purchase is already {purchase['status']}")

    await grant_access(db, completed)
    logger.info("Purchase %s completed", purchase_id)
    return completed


@router.get("/history")
async def purchase_history(
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    purchases = await db.purchases.find({"user_id": user.user_id}, {"_id": 0}).sort(
        "created_at", -1
    ).to_list(length=None)
    return {"purchases": purchases}


# ==================== ADMIN ====================

@router.get("/admin/all")
async def all_purchases(
    status: Optional[PurchaseStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_admin)
):
    query = {"status": status.value} if status else {}
    skip, limit = paginate(page, limit)
    total = await db.purchases.count_documents(query)
    purchases = await db.purchases.find(query, {"_id": 0}).sort(
        "created_at", -1
    ).skip(skip).limit(limit).to_list(length=limit)
    return {"purchases": purchases, "pagination": pagination_meta(total, page, limit)}


@router.get("/admin/stats")
async def purchase_stats(
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_admin)
):
    by_status = await db.purchases.aggregate([
        {"$group": {"_id": "$status", "count": {"$sum": 1}, "amount": {"$sum": "$amount"}}},
    ]).to_list(length=None)

    completed = await db.purchases.find(
        {"status": PurchaseStatus.COMPLETED.value}, {"_id": 0}
    ).to_list(length=None)

    series_ids = list({p["series_id"] for p in completed if p.get("series_id")})
    categories = {
        s["series_id"]: s.get("category", "uncategorized")
        for s in await db.testseries.find(
            {"series_id": {"$in": series_ids}}, {"_id": 0, "series_id": 1, "category": 1}
        ).to_list(length=None)
    }

    by_category = {}
    monthly = {}
    for p in completed:
        category = categories.get(p.get("series_id"), "single_test")
        bucket = by_category.setdefault(category, {"count": 0, "revenue": 0})
        bucket["count"] += 1
        bucket["revenue"] += p.get("amount", 0)

        created = p.get("completed_at") or p.get("created_at")
        month = created.strftime("%Y-%m") if created else "unknown"
        m = monthly.setdefault(month, {"count": 0, "revenue": 0})
        m["count"] += 1
        m["revenue"] += p.get("amount", 0)

    for m in monthly.values():
        m["average_amount"] = round(m["revenue"] / m["count"], 2)

    return {
        "by_status": {row["_id"]: {"count": row["count"], "amount": row["amount"]} for row in by_status},
        "total_revenue": sum(p.get("amount", 0) for p in completed),
        "by_category": by_category,
        "monthly": dict(sorted(monthly.items())),
    }


@router.get("/{purchase_id}")
async def get_purchase(
    purchase_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    purchase = await require_purchase(db, purchase_id)
    verify_owner_or_admin(user, purchase["user_id"], "Not authorized to view this purchase")
    return purchase


@router.post("/{purchase_id}/refund")
async def refund_purchase(
    purchase_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_admin)
):
    purchase = await require_purchase(db, purchase_id)
    if purchase["status"] != PurchaseStatus.COMPLETED:
        raise ConflictError("Only completed purchases can be refunded")

    refunded = await db.purchases.find_one_and_update(
        {"purchase_id": purchase_id},
        {"$set": {
            "status": PurchaseStatus.REFUNDED.value,
            "access_granted": False,
            "updated_at": datetime.utcnow(),
        }},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
    )
    if purchase.get("series_id"):
        await db.users.update_one(
            {"user_id": purchase["user_id"]},
            {"$pull": {"purchased_series": {"series_id": purchase["series_id"]}}},
        )
    else:
        await db.users.update_one(
            {"user_id": purchase["user_id"]},
            {"$pull": {"purchased_tests": purchase["test_id"]}},
        )
    logger.info("Purchase %s refunded by %s", purchase_id, admin.user_id)
    return refunded
