"""
Purchase validity and content access decisions
"""

import calendar
import re
from datetime import datetime, timedelta
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from vidya.exams.models import TestStatus
from vidya.purchases.models import AccessReason, PurchaseStatus

_DURATION = re.compile(r"^\s*(\d+)\s*(day|week|month|year)s?\s*$", re.IGNORECASE)

ACCESS_MESSAGES = {
    AccessReason.ADMIN_OR_CREATOR: "Staff access",
    AccessReason.FREE_TEST: "This test is free",
    AccessReason.PURCHASED_SERIES: "Access granted through a purchased test series",
    AccessReason.PURCHASED_TEST: "Access granted through a test purchase",
    AccessReason.NOT_PURCHASED: "Purchase required to access this test",
    AccessReason.NOT_PUBLISHED: "This test is not published",
}


# ==================== EXPIRY ====================

def add_months(start: datetime, months: int) -> datetime:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def calculate_expiry(duration: Optional[str], start: datetime) -> Optional[datetime]:
    """
    Expiry for a duration like "6 months"; None for "Unlimited" or unparseable values
    """
    if not duration:
        return None
    match = _DURATION.match(str(duration))
    if not match:
        return None
    amount, unit = int(match.group(1)), match.group(2).lower()
    if unit == "day":
        return start + timedelta(days=amount)
    if unit == "week":
        return start + timedelta(weeks=amount)
    if unit == "month":
        return add_months(start, amount)
    return add_months(start, amount * 12)


# ==================== VALIDITY ====================

def is_purchase_valid(purchase: Optional[dict], now: Optional[datetime] = None) -> bool:
    if not purchase:
        return False
    now = now or datetime.utcnow()
    expires_at = purchase.get("expires_at")
    return (
        purchase.get("status") == PurchaseStatus.COMPLETED
        and purchase.get("access_granted") is True
        and (expires_at is None or expires_at > now)
    )


def valid_purchase_filter(user_id: str, now: Optional[datetime] = None) -> dict:
    now = now or datetime.utcnow()
    return {
        "user_id": user_id,
        "status": PurchaseStatus.COMPLETED.value,
        "access_granted": True,
        "$or": [{"expires_at": None}, {"expires_at": {"$gt": now}}],
    }


async def has_purchased(db: AsyncIOMotorDatabase, user_id: str, series_id: str) -> bool:
    purchase = await db.purchases.find_one({**valid_purchase_filter(user_id), "series_id": series_id})
    return purchase is not None


async def has_purchased_test(db: AsyncIOMotorDatabase, user_id: str, test_id: str) -> bool:
    purchase = await db.purchases.find_one({**valid_purchase_filter(user_id), "test_id": test_id})
    return purchase is not None


async def find_valid_purchase(db: AsyncIOMotorDatabase, user_id: str, **target) -> Optional[dict]:
    return await db.purchases.find_one({**valid_purchase_filter(user_id), **target}, {"_id": 0})


# ==================== ACCESS CHECK ====================

async def containing_series(db: AsyncIOMotorDatabase, test: dict) -> List[dict]:
    """Series that list the test, plus the one named by its series_id"""
    query = {"tests": test["test_id"]}
    if test.get("series_id"):
        query = {"$or": [query, {"series_id": test["series_id"]}]}
    return await db.testseries.find(query, {"_id": 0}).to_list(length=None)


def access_decision(reason: AccessReason) -> dict:
    return {
        "has_access": reason in (
            AccessReason.ADMIN_OR_CREATOR,
            AccessReason.FREE_TEST,
            AccessReason.PURCHASED_SERIES,
            AccessReason.PURCHASED_TEST,
        ),
        "access_reason": reason.value,
        "message": ACCESS_MESSAGES[reason],
    }


async def check_test_access(db: AsyncIOMotorDatabase, user, test: dict) -> dict:
    """
    Decide whether a user may open a test

    Returns:
    {
        "has_access": bool,
        "access_reason": AccessReason value,
        "message": str
    }
    """
    if user.is_staff or test.get("created_by") == user.user_id:
        return access_decision(AccessReason.ADMIN_OR_CREATOR)

    if test.get("status") != TestStatus.PUBLISHED:
        return access_decision(AccessReason.NOT_PUBLISHED)

    series = await containing_series(db, test)
    paid_series = [s for s in series if s.get("is_paid")]
    if not test.get("is_paid") and not paid_series:
        return access_decision(AccessReason.FREE_TEST)

    for s in series:
        if await has_purchased(db, user.user_id, s["series_id"]):
            return access_decision(AccessReason.PURCHASED_SERIES)

    if await has_purchased_test(db, user.user_id, test["test_id"]):
        return access_decision(AccessReason.PURCHASED_TEST)

    return access_decision(AccessReason.NOT_PURCHASED)
