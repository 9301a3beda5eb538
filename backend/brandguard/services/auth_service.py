from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx
from fastapi import HTTPException, status
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from brandguard.core.observability import log_event
from brandguard.db.database import SessionLocal
from brandguard.db.models import User
from brandguard.repositories.user_repository import UserRepository

SUPABASE_URL = (os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL", "")).rstrip("/")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY") or os.getenv("NEXT_PUBLIC_SUPABASE_ANON_KEY", "")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET", "dev-secret-change-me")
AUTH_TOKEN_ALGORITHM = os.getenv("AUTH_TOKEN_ALGORITHM", "HS256")
AUTH_VERIFY_MODE = os.getenv("AUTH_VERIFY_MODE", "local").strip().lower()
ADMIN_EMAIL_DOMAIN = os.getenv("ADMIN_EMAIL_DOMAIN", "danielbrian.com").strip().lower().lstrip("@")
APP_ENV = os.getenv("APP_ENV", "dev").strip().lower()

REMOTE_VERIFY_TIMEOUT_SECONDS = 10.0


@dataclass
class AuthIdentity:
    id: str
    email: str


@dataclass
class UserRecord:
    id: str
    email: str
    role: str
    full_name: str | None
    email_notifications: bool
    is_active: bool
    created_at: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_record(user: User) -> UserRecord:
    return UserRecord(
        id=user.id,
        email=user.email,
        role=user.role,
        full_name=user.full_name,
        email_notifications=user.email_notifications,
        is_active=user.is_active,
        created_at=user.created_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
    )


def _invalid_token() -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail={"error": "Invalid token"})


def role_for_email(email: str) -> str:
    return "admin" if email.lower().endswith(f"@{ADMIN_EMAIL_DOMAIN}") else "user"


def _verify_local(token: str) -> AuthIdentity:
    if APP_ENV == "prod" and SUPABASE_JWT_SECRET == "dev-secret-change-me":
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Auth is misconfigured"},
        )

    try:
        payload = jwt.decode(
            token,
            SUPABASE_JWT_SECRET,
            algorithms=[AUTH_TOKEN_ALGORITHM],
            options={"verify_aud": False, "require_sub": True, "require_exp": True},
        )
    except ExpiredSignatureError as exc:
        log_event("auth_token_rejected", reason="expired")
        raise _invalid_token() from exc
    except JWTError as exc:
        log_event("auth_token_rejected", reason="invalid")
        raise _invalid_token() from exc

    user_id = payload.get("sub")
    email = payload.get("email")
    if not user_id or not email:
        raise _invalid_token()
    return AuthIdentity(id=str(user_id), email=str(email).strip().lower())


def _verify_remote(token: str) -> AuthIdentity:
    if not SUPABASE_URL:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Auth is misconfigured"},
        )

    api_key = SUPABASE_ANON_KEY or SUPABASE_SERVICE_ROLE_KEY
    try:
        response = httpx.get(
            f"{SUPABASE_URL}/auth/v1/user",
            headers={"apikey": api_key, "Authorization": f"Bearer {token}"},
            timeout=REMOTE_VERIFY_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as exc:
        log_event("auth_provider_unreachable", error=str(exc))
        raise _invalid_token() from exc

    if response.status_code != 200:
        log_event("auth_token_rejected", reason="provider", status_code=response.status_code)
        raise _invalid_token()

    data = response.json()
    if not data.get("id") or not data.get("email"):
        raise _invalid_token()
    return AuthIdentity(id=str(data["id"]), email=str(data["email"]).strip().lower())


def verify_access_token(token: str) -> AuthIdentity:
    if AUTH_VERIFY_MODE == "remote":
        return _verify_remote(token)
    return _verify_local(token)


def resolve_user(identity: AuthIdentity) -> UserRecord:
    """Return the application user for ``identity``, creating it on first sight."""
    with SessionLocal() as session:
        repository = UserRepository(session)
        user = repository.get_by_email(identity.email) or repository.get_by_id(identity.id)
        if user is not None:
            return to_record(user)

        now = _now_utc()
        role = role_for_email(identity.email)
        try:
            user = repository.create(
                User(
                    id=identity.id,
                    email=identity.email,
                    role=role,
                    is_active=True,
                    email_notifications=True,
                    created_at=now,
                    updated_at=now,
                )
            )
        except IntegrityError:
            # Another request created the row first.
            session.rollback()
            user = repository.get_by_id(identity.id) or repository.get_by_email(identity.email)
            if user is None:
                log_event("auth_user_create_race_unresolved", user_id=identity.id)
                raise HTTPException(
                    status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                    detail={"error": "User creation race condition"},
                )
            return to_record(user)
        except SQLAlchemyError as exc:
            session.rollback()
            log_event("auth_user_create_failed", user_id=identity.id, error=str(exc))
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail={"error": "Failed to create user", "details": str(exc)},
            ) from exc

    log_event("auth_user_created", user_id=user.id, role=role)
    return to_record(user)


def authenticate(token: str) -> UserRecord:
    return resolve_user(verify_access_token(token))
