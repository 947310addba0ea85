"""
Admin key/value settings with a public subset
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, validator
from pymongo.errors import DuplicateKeyError

from vidya.auth.permissions import UserContext, require_admin
from vidya.database import get_db
from vidya.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Settings"])


class SettingCategory(str, Enum):
    GENERAL = "general"
    TEST = "test"
    USER = "user"
    NOTIFICATION = "notification"
    SECURITY = "security"


class SettingCreate(BaseModel):
    key: str
    value: Any = None
    description: Optional[str] = None
    category: SettingCategory = SettingCategory.GENERAL
    is_public: bool = False

    class Config:
        use_enum_values = True

    @validator("key")
    def validate_key(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Key is required")
        return v


class SettingsBulkUpdate(BaseModel):
    settings: Dict[str, Any]


# ==================== PUBLIC ====================

@router.get("/public")
async def public_settings(db: AsyncIOMotorDatabase = Depends(get_db)):
    docs = await db.settings.find({"is_public": True}, {"_id": 0, "key": 1, "value": 1}).to_list(length=None)
    return {doc["key"]: doc.get("value") for doc in docs}


# ==================== ADMIN ====================

@router.get("")
async def list_settings(
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_admin)
):
    docs = await db.settings.find({}, {"_id": 0}).sort([("category", 1), ("key", 1)]).to_list(length=None)
    return {"settings": docs}


@router.get("/category/{category}")
async def settings_by_category(
    category: SettingCategory,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_admin)
):
    docs = await db.settings.find({"category": category.value}, {"_id": 0}).sort("key", 1).to_list(length=None)
    return {"category": category.value, "settings": docs}


@router.post("")
async def bulk_update(
    payload: SettingsBulkUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_admin)
):
    """Update values of existing keys; unknown keys are reported, not created"""
    updated, missing = [], []
    for key, value in payload.settings.items():
        result = await db.settings.update_one(
            {"key": key},
            {"$set": {"value": value, "updated_by": admin.user_id, "updated_at": datetime.utcnow()}},
        )
        (updated if result.matched_count else missing).append(key)
    return {"updated": updated, "not_found": missing}


@router.post("/create", status_code=201)
async def create_setting(
    payload: SettingCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_admin)
):
    if await db.settings.find_one({"key": payload.key}):
        raise ConflictError(f"Setting '{payload.key}' already exists")

    now = datetime.utcnow()
    setting = {**payload.dict(), "updated_by": admin.user_id, "created_at": now, "updated_at": now}
    try:
        await db.settings.insert_one(setting)
    except DuplicateKeyError:
        raise ConflictError(f"Setting '{payload.key}' already exists")
    setting.pop("_id", None)
    logger.info("Setting %s created by %s", payload.key, admin.user_id)
    return setting


@router.delete("/{key}")
async def delete_setting(
    key: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_admin)
):
    result = await db.settings.delete_one({"key": key})
    if not result.deleted_count:
        raise NotFoundError("Setting not found")
    return {"message": "Setting deleted", "key": key}
