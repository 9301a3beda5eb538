from __future__ import annotations

import re
from typing import Any

from brandguard.core.errors import BadRequestError
from brandguard.core.observability import log_event
from brandguard.core.schemas import CamelModel
from brandguard.db.database import SessionLocal
from brandguard.repositories.user_repository import UserRepository
from brandguard.services.auth_service import UserRecord

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
ROLES = frozenset({"user", "admin"})


class EmailPreferences(CamelModel):
    email_notifications: bool
    email: str


class EmailPreferencesUpdate(CamelModel):
    email_notifications: Any = None


class UserInfo(CamelModel):
    id: str
    email: str
    role: str
    full_name: str | None = None
    is_active: bool
    email_notifications: bool
    created_at: str


class UsersResponse(CamelModel):
    users: list[UserInfo]


class RoleUpdate(CamelModel):
    email: Any = None
    role: Any = None


class RoleUpdateResponse(CamelModel):
    message: str
    user: UserInfo


def _to_info(user) -> UserInfo:
    return UserInfo(
        id=user.id,
        email=user.email,
        role=user.role,
        full_name=user.full_name,
        is_active=user.is_active,
        email_notifications=user.email_notifications,
        created_at=user.created_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
    )


def get_email_preferences(current_user: UserRecord) -> EmailPreferences:
    with SessionLocal() as session:
        user = UserRepository(session).get_by_id(current_user.id)
        if user is None:
            raise ValueError("User not found")
        return EmailPreferences(email_notifications=user.email_notifications, email=user.email)


def update_email_preferences(current_user: UserRecord, payload: EmailPreferencesUpdate) -> EmailPreferences:
    # Strict bool: pydantic would coerce "yes" or 1.
    if not isinstance(payload.email_notifications, bool):
        raise BadRequestError("emailNotifications must be a boolean")

    with SessionLocal() as session:
        user = UserRepository(session).update_email_preferences(current_user.id, payload.email_notifications)
        if user is None:
            raise ValueError("User not found")
        log_event("email_preferences_updated", user_id=user.id, email_notifications=user.email_notifications)
        return EmailPreferences(email_notifications=user.email_notifications, email=user.email)


def list_users() -> UsersResponse:
    with SessionLocal() as session:
        return UsersResponse(users=[_to_info(user) for user in UserRepository(session).list_all()])


def update_user_role(current_user: UserRecord, payload: RoleUpdate) -> RoleUpdateResponse:
    email = str(payload.email or "").strip().lower()
    if not EMAIL_RE.fullmatch(email) or not isinstance(payload.role, str) or payload.role not in ROLES:
        raise BadRequestError("Invalid email or role")

    with SessionLocal() as session:
        user = UserRepository(session).update_role(email, payload.role)
        if user is None:
            raise ValueError("User not found")
        info = _to_info(user)

    log_event("user_role_updated", admin_id=current_user.id, user_id=info.id, role=info.role)
    return RoleUpdateResponse(message="User role updated successfully", user=info)
