from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from vidya.auth.firebase_auth import get_token_claims
from vidya.database import get_db
from vidya.errors import AuthenticationError, ForbiddenError, NotFoundError
from vidya.users.models import UserRole

PERMISSION_KEYS = (
    "can_create_tests",
    "can_edit_tests",
    "can_delete_tests",
    "can_manage_users",
    "can_view_analytics",
)


def permissions_for_role(role: str) -> dict:
    """Default admin permission flags for a role"""
    if role == UserRole.ADMIN:
        return {key: True for key in PERMISSION_KEYS}
    if role == UserRole.TEACHER:
        return {
            "can_create_tests": True,
            "can_edit_tests": True,
            "can_delete_tests": False,
            "can_manage_users": False,
            "can_view_analytics": True,
        }
    return {key: False for key in PERMISSION_KEYS}


class UserContext:
    """
    Contains the registered user profile behind a verified token
    """
    def __init__(self, profile: dict):
        self.user_id = profile["user_id"]
        self.email = profile.get("email")
        self.name = profile.get("name")
        self.photo_url = profile.get("photo_url")
        self.role = profile.get("role", UserRole.STUDENT.value)
        self.permissions = profile.get("admin_permissions") or permissions_for_role(self.role)
        self.profile = profile

    @property
    def display_name(self) -> str:
        return self.name or (self.email or "").split("@")[0] or "Anonymous"

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.TEACHER)


async def get_current_user(
    claims: dict = Depends(get_token_claims),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> UserContext:
    """
    Dependency: loads the user record for the verified token

    Raises:
        401: token without a subject
        404: no user record for the subject
        403: account deactivated
    """
    user_id = claims.get("uid") or claims.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token", details="missing subject")

    profile = await db.users.find_one({"user_id": user_id}, {"_id": 0})
    if not profile:
        raise NotFoundError("User not found")

    if not profile.get("is_active", True):
        raise ForbiddenError("Account is deactivated")

    return UserContext(profile)


async def require_admin(user: UserContext = Depends(get_current_user)) -> UserContext:
    if not user.is_admin:
        raise ForbiddenError("Access denied: Admin privileges required")
    return user


async def require_teacher(user: UserContext = Depends(get_current_user)) -> UserContext:
    """Teachers and admins"""
    if not user.is_staff:
        raise ForbiddenError("Access denied: Teacher privileges required")
    return user


def verify_owner_or_admin(user: UserContext, owner_id: str, message: str = "Access denied") -> None:
    if user.is_admin or user.user_id == owner_id:
        return
    raise ForbiddenError(message)
