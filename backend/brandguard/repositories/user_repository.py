from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.orm import Session

from brandguard.db.models import User


def _now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UserRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_by_email(self, email: str) -> User | None:
        return self.session.query(User).filter(User.email == email).first()

    def get_by_id(self, user_id: str) -> User | None:
        return self.session.query(User).filter(User.id == user_id).first()

    def create(self, user: User) -> User:
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def list_all(self) -> list[User]:
        return self.session.query(User).order_by(User.created_at.desc()).all()

    def count(self) -> int:
        return self.session.query(func.count(User.id)).scalar() or 0

    def update_role(self, email: str, role: str) -> User | None:
        user = self.get_by_email(email)
        if user is None:
            return None
        user.role = role
        user.updated_at = _now_utc()
        self.session.commit()
        self.session.refresh(user)
        return user

    def update_email_preferences(self, user_id: str, email_notifications: bool) -> User | None:
        user = self.get_by_id(user_id)
        if user is None:
            return None
        user.email_notifications = email_notifications
        user.updated_at = _now_utc()
        self.session.commit()
        self.session.refresh(user)
        return user
