from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from core.clock import utcnow
from core.errors import ConflictError, NotFoundError, ValidationError
from core.models import User
from core.security import account_locked, apply_failed_login, hash_password, verify_password
from core.services.entries import validate_frequency
from core.validators import UserCreateInput, UserUpdateInput

logger = logging.getLogger(__name__)


@dataclass
class LoginOutcome:
    user: Optional[User]
    locked: bool = False

    @property
    def ok(self) -> bool:
        return self.user is not None and not self.locked


def get_user(s: Session, user_id: int) -> User:
    user = s.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def get_user_by_email(s: Session, email: str) -> Optional[User]:
    return s.execute(select(User).where(func.lower(User.email) == email.strip().lower())).scalar_one_or_none()


def create_user(s: Session, data: UserCreateInput) -> User:
    if get_user_by_email(s, data.email) is not None:
        raise ConflictError("A user with this email already exists")
    try:
        password_hash = hash_password(data.password)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    user = User(
        email=data.email,
        name=data.name,
        role=data.role,
        password_hash=password_hash,
        is_test_user=data.is_test_user,
        check_in_frequency_days=data.check_in_frequency_days,
    )
    s.add(user)
    s.flush()
    logger.info("user_created", extra={"user_id": user.id, "role": user.role})
    return user


def list_users(
    s: Session, role: Optional[str] = None, offset: int = 0, limit: int = 50
) -> tuple[list[User], int]:
    q = select(User)
    c = select(func.count()).select_from(User)
    if role:
        q = q.where(User.role == role)
        c = c.where(User.role == role)
    rows = list(s.execute(q.order_by(User.name, User.email).offset(offset).limit(limit)).scalars())
    return rows, s.execute(c).scalar_one()


def update_user(s: Session, user_id: int, data: UserUpdateInput) -> User:
    user = get_user(s, user_id)
    changes = data.model_dump(exclude_unset=True)
    if "check_in_frequency_days" in changes:
        changes["check_in_frequency_days"] = validate_frequency(changes["check_in_frequency_days"])
    for key, value in changes.items():
        if key == "is_test_user" and value is None:
            continue
        setattr(user, key, value)
    s.flush()
    return user


def authenticate(s: Session, email: str, password: str, now: Optional[datetime] = None) -> LoginOutcome:
    """Check credentials and track failed attempts.

    The attempt counter is written to the session even on failure, so the
    caller must commit before turning a failed outcome into an error.
    """
    now = now or utcnow()
    user = get_user_by_email(s, email)
    if user is None:
        return LoginOutcome(user=None)
    if account_locked(user.locked_until, now):
        logger.warning("login_rejected_locked", extra={"user_id": user.id})
        return LoginOutcome(user=user, locked=True)
    if not verify_password(password, user.password_hash):
        user.failed_attempts, user.locked_until = apply_failed_login(user.failed_attempts or 0, now=now)
        s.flush()
        logger.warning("login_failed", extra={"user_id": user.id, "failed_attempts": user.failed_attempts})
        return LoginOutcome(user=None)
    user.failed_attempts = 0
    user.locked_until = None
    user.last_login_at = now
    s.flush()
    return LoginOutcome(user=user)
