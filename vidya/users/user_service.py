import logging
from datetime import datetime
from typing import List, Optional, Union

from motor.motor_asyncio import AsyncIOMotorDatabase

from vidya.auth.permissions import permissions_for_role
from vidya.users.models import UserRole

logger = logging.getLogger(__name__)


def parse_subjects(subjects: Union[List[str], str, None]) -> List[str]:
    """Accepts a list or a comma separated string"""
    if not subjects:
        return []
    if isinstance(subjects, str):
        subjects = subjects.split(",")
    return [s.strip() for s in subjects if s and s.strip()]


def build_user_document(
    user_id: str,
    email: Optional[str],
    name: str,
    role: str = UserRole.STUDENT.value,
    grade: Optional[str] = None,
    subjects: Union[List[str], str, None] = None,
    phone_number: Optional[str] = None,
    photo_url: Optional[str] = None
) -> dict:
    now = datetime.utcnow()
    return {
        "user_id": user_id,
        "email": (email or "").lower() or None,
        "name": name,
        "phone_number": phone_number,
        "photo_url": photo_url,
        "role": role,
        "grade": grade,
        "subjects": parse_subjects(subjects),
        "admin_permissions": permissions_for_role(role),
        "test_history": [],
        "created_tests": [],
        "purchased_series": [],
        "subscribed_series": [],
        "purchased_tests": [],
        "preferences": {},
        "is_active": True,
        "login_count": 1,
        "last_login": now,
        "created_at": now,
        "updated_at": now,
    }


def public_profile(user: dict) -> dict:
    """User document without the bulky embedded lists"""
    hidden = ("test_history", "purchased_series", "subscribed_series")
    return {k: v for k, v in user.items() if k not in hidden and k != "_id"}


async def record_login(db: AsyncIOMotorDatabase, user_id: str) -> None:
    await db.users.update_one(
        {"user_id": user_id},
        {"$set": {"last_login": datetime.utcnow()}, "$inc": {"login_count": 1}},
    )


async def record_test_history(db: AsyncIOMotorDatabase, user_id: str, test: dict, attempt: dict) -> None:
    entry = {
        "test_id": test["test_id"],
        "test_title": test.get("title"),
        "subject": test.get("subject"),
        "attempt_id": attempt["attempt_id"],
        "score": attempt["score"],
        "is_passed": attempt["is_passed"],
        "completed_at": attempt["completed_at"],
        "time_taken": attempt["time_taken"],
    }
    await db.users.update_one({"user_id": user_id}, {"$push": {"test_history": entry}})


def dashboard_stats(user: dict) -> dict:
    history = user.get("test_history") or []
    scores = [h.get("score", 0) for h in history]
    recent = sorted(history, key=lambda h: h.get("completed_at") or datetime.min, reverse=True)[:3]
    return {
        "total_tests": len(history),
        "average_score": round(sum(scores) / len(scores), 2) if scores else 0,
        "completed_tests": len({h.get("test_id") for h in history}),
        "passed_tests": sum(1 for h in history if h.get("is_passed")),
        "recent_tests": recent,
        "last_login": user.get("last_login"),
    }


async def user_stats(db: AsyncIOMotorDatabase) -> dict:
    pipeline = [{"$group": {"_id": "$role", "count": {"$sum": 1}}}]
    by_role = {row["_id"]: row["count"] for row in await db.users.aggregate(pipeline).to_list(length=None)}
    return {
        "total_users": sum(by_role.values()),
        "active_users": await db.users.count_documents({"is_active": True}),
        "by_role": {role.value: by_role.get(role.value, 0) for role in UserRole},
    }
