"""Self-service password reset via single-use, one-hour email tokens.

Requesting a reset never reveals whether the address has an account.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from core.clock import utcnow
from core.config import get_settings
from core.errors import NotFoundError, ValidationError
from core.models import PasswordResetToken
from core.security import hash_password
from core.services.email import EmailResult, EmailSender, get_email_sender
from core.services.users import get_user_by_email
from core.validators import PasswordResetInput

logger = logging.getLogger(__name__)

RESET_TOKEN_TTL = timedelta(hours=1)
INVALID_TOKEN_MESSAGE = "Invalid or expired reset token. Please request a new one."


@dataclass
class PasswordResetNotice:
    user_id: int
    email: str
    name: str
    token: str
    is_test_user: bool


def request_password_reset(s: Session, email: str, now: Optional[datetime] = None) -> Optional[PasswordResetNotice]:
    """Issue a fresh token for ``email``, replacing any earlier ones.

    Returns None for unknown addresses; callers respond identically either way.
    """
    now = now or utcnow()
    user = get_user_by_email(s, email)
    if user is None or not user.password_hash:
        logger.info("password_reset_unknown_email")
        return None
    s.execute(delete(PasswordResetToken).where(PasswordResetToken.email == user.email))
    token = secrets.token_hex(32)
    s.add(PasswordResetToken(email=user.email, token=token, expires_at=now + RESET_TOKEN_TTL, created_at=now))
    s.flush()
    logger.info("password_reset_requested", extra={"user_id": user.id})
    return PasswordResetNotice(
        user_id=user.id,
        email=user.email,
        name=user.name or "there",
        token=token,
        is_test_user=bool(user.is_test_user),
    )


def send_password_reset_email(notice: PasswordResetNotice, sender: EmailSender | None = None) -> EmailResult:
    sender = sender or get_email_sender()
    result = sender.send_system_email(
        "password_reset",
        notice.email,
        {
            "userName": notice.name,
            "resetUrl": f"{get_settings().app_url.rstrip('/')}/reset-password?token={notice.token}",
        },
        is_test_user=notice.is_test_user,
    )
    if not result.success:
        logger.warning("password_reset_email_failed", extra={"user_id": notice.user_id, "error": result.error})
    return result


def _find_token(s: Session, token: str) -> Optional[PasswordResetToken]:
    return s.execute(select(PasswordResetToken).where(PasswordResetToken.token == token)).scalar_one_or_none()


def validate_reset_token(s: Session, token: str, now: Optional[datetime] = None) -> Optional[str]:
    """Email the token was issued for, or None. Expired tokens are deleted on sight."""
    now = now or utcnow()
    row = _find_token(s, token)
    if row is None:
        return None
    if row.expires_at < now:
        s.delete(row)
        s.flush()
        return None
    return row.email


def reset_password(s: Session, data: PasswordResetInput, now: Optional[datetime] = None) -> None:
    now = now or utcnow()
    row = _find_token(s, data.token)
    if row is None or row.expires_at < now:
        raise ValidationError(INVALID_TOKEN_MESSAGE)
    user = get_user_by_email(s, row.email)
    if user is None:
        raise NotFoundError("User not found")
    try:
        user.password_hash = hash_password(data.password)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    user.failed_attempts = 0
    user.locked_until = None
    s.execute(delete(PasswordResetToken).where(PasswordResetToken.email == row.email))
    s.flush()
    logger.info("password_reset_completed", extra={"user_id": user.id})
