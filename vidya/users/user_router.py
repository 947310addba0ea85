import logging
import re
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from vidya.auth.firebase_auth import get_token_claims, verify_firebase_token
from vidya.auth.permissions import UserContext, get_current_user, permissions_for_role, require_admin
from vidya.database import get_db, pagination_meta, paginate
from vidya.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from vidya.users import user_service
from vidya.users.models import (
    DashboardStats,
    GoogleAuthRequest,
    ProfileUpdate,
    RegisterRequest,
    RoleUpdate,
    StatusUpdate,
    UserRole,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Users"])


# ==================== AUTH ====================

@router.post("/register", status_code=201)
async def register(
    payload: RegisterRequest,
    claims: dict = Depends(get_token_claims),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Create the profile for a verified Firebase account"""
    user_id = claims["uid"]
    if await db.users.find_one({"user_id": user_id}):
        raise ConflictError("User already registered")

    if not payload.grade:
        raise BadRequestError("Grade is required for students")

    user = user_service.build_user_document(
        user_id=user_id,
        email=claims.get("email") or payload.email,
        name=payload.name,
        grade=payload.grade,
        subjects=payload.subjects,
        phone_number=payload.phone_number,
        photo_url=payload.photo_url or claims.get("picture"),
    )
    try:
        await db.users.insert_one(user)
    except DuplicateKeyError:
        raise ConflictError("User already registered")

    logger.info("Registered user %s", user_id)
    return user_service.public_profile(user)


@router.post("/auth/google")
async def google_auth(payload: GoogleAuthRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    """Find or create a student from a Google-backed Firebase ID token"""
    claims = verify_firebase_token(payload.id_token)
    user_id = claims["uid"]

    existing = await db.users.find_one({"user_id": user_id}, {"_id": 0})
    if existing:
        if not existing.get("is_active", True):
            raise ForbiddenError("Account is deactivated")
        await user_service.record_login(db, user_id)
        existing["login_count"] = existing.get("login_count", 0) + 1
        return {"user": user_service.public_profile(existing), "is_new_user": False}

    email = claims.get("email") or ""
    user = user_service.build_user_document(
        user_id=user_id,
        email=email,
        name=claims.get("name") or email.split("@")[0] or "Student",
        photo_url=claims.get("picture"),
    )
    try:
        await db.users.insert_one(user)
    except DuplicateKeyError:
        raise ConflictError("User already registered")

    logger.info("Created user %s from Google sign-in", user_id)
    return {"user": user_service.public_profile(user), "is_new_user": True}


# ==================== PROFILE ====================

@router.get("/me")
async def get_profile(user: UserContext = Depends(get_current_user)):
    return user_service.public_profile(user.profile)


@router.put("/me")
async def update_profile(
    payload: ProfileUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    updates = payload.dict(exclude_unset=True)
    if not updates:
        raise BadRequestError("No fields to update")
    if "subjects" in updates:
        updates["subjects"] = user_service.parse_subjects(updates["subjects"])
    updates["updated_at"] = datetime.utcnow()

    updated = await db.users.find_one_and_update(
        {"user_id": user.user_id},
        {"$set": updates},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
    )
    return user_service.public_profile(updated)


@router.get("/me/dashboard", response_model=DashboardStats)
async def dashboard(user: UserContext = Depends(get_current_user)):
    return user_service.dashboard_stats(user.profile)


@router.get("/me/purchases")
async def my_purchases(
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    purchases = await db.purchases.find({"user_id": user.user_id}, {"_id": 0}).sort(
        "created_at", -1
    ).to_list(length=None)
    return {
        "purchases": purchases,
        "purchased_series": user.profile.get("purchased_series", []),
        "purchased_tests": user.profile.get("purchased_tests", []),
    }


# ==================== ADMIN ====================

@router.get("")
async def list_users(
    role: Optional[UserRole] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_admin)
):
    query = {}
    if role:
        query["role"] = role.value
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"email": {"$regex": pattern, "$options": "i"}},
        ]
    skip, limit = paginate(page, limit)
    total = await db.users.count_documents(query)
    users = await db.users.find(
        query, {"_id": 0, "test_history": 0, "purchased_series": 0, "subscribed_series": 0}
    ).sort("created_at", -1).skip(skip).limit(limit).to_list(length=limit)
    return {"users": users, "pagination": pagination_meta(total, page, limit)}


@router.get("/stats")
async def stats(
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_admin)
):
    return await user_service.user_stats(db)


@router.put("/{user_id}/role")
async def change_role(
    user_id: str,
    payload: RoleUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_admin)
):
    updated = await db.users.find_one_and_update(
        {"user_id": user_id},
        {"$set": {
            "role": payload.role.value,
            "admin_permissions": permissions_for_role(payload.role.value),
            "updated_at": datetime.utcnow(),
        }},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise NotFoundError("User not found")
    logger.info("User %s role set to %s by %s", user_id, payload.role.value, admin.user_id)
    return user_service.public_profile(updated)


@router.put("/{user_id}/status")
async def change_status(
    user_id: str,
    payload: StatusUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_admin)
):
    if user_id == admin.user_id and not payload.is_active:
        raise BadRequestError("Admins cannot deactivate themselves")
    updated = await db.users.find_one_and_update(
        {"user_id": user_id},
        {"$set": {"is_active": payload.is_active, "updated_at": datetime.utcnow()}},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise NotFoundError("User not found")
    return user_service.public_profile(updated)
