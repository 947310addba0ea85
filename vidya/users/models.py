from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, validator

# ==================== ENUMS ====================

class UserRole(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"


# ==================== REQUEST MODELS ====================

class RegisterRequest(BaseModel):
    name: str
    email: Optional[str] = None
    phone_number: Optional[str] = None
    grade: Optional[str] = None
    subjects: Union[List[str], str] = []
    photo_url: Optional[str] = None

    @validator("name")
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError("Name is required")
        return v.strip()


class GoogleAuthRequest(BaseModel):
    id_token: str


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    phone_number: Optional[str] = None
    grade: Optional[str] = None
    subjects: Optional[Union[List[str], str]] = None
    photo_url: Optional[str] = None
    preferences: Optional[Dict[str, Any]] = None


class RoleUpdate(BaseModel):
    role: UserRole


class StatusUpdate(BaseModel):
    is_active: bool


# ==================== RESPONSE MODELS ====================

class DashboardStats(BaseModel):
    total_tests: int
    average_score: float
    completed_tests: int
    passed_tests: int
    recent_tests: List[Dict[str, Any]]
    last_login: Optional[datetime] = None
