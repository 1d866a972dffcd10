from __future__ import annotations

import re
from datetime import datetime, timedelta

from passlib.context import CryptContext

from core.clock import utcnow

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

PASSWORD_REGEX = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[^A-Za-z\d]).{10,128}$")
LOCKOUT_THRESHOLD = 5
LOCKOUT_MINUTES = 15


def validate_password_policy(password: str) -> tuple[bool, str]:
    if not PASSWORD_REGEX.match(password):
        return False, "Password must be 10+ chars with upper, lower, number, and symbol"
    return True, "ok"


def hash_password(password: str) -> str:
    valid, msg = validate_password_policy(password)
    if not valid:
        raise ValueError(msg)
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except (ValueError, TypeError):
        return False


def account_locked(locked_until: datetime | None, now: datetime | None = None) -> bool:
    if not locked_until:
        return False
    return locked_until > (now or utcnow())


def apply_failed_login(
    failed_attempts: int,
    threshold: int = LOCKOUT_THRESHOLD,
    lock_minutes: int = LOCKOUT_MINUTES,
    now: datetime | None = None,
) -> tuple[int, datetime | None]:
    failed = failed_attempts + 1
    if failed >= threshold:
        return failed, (now or utcnow()) + timedelta(minutes=lock_minutes)
    return failed, None
