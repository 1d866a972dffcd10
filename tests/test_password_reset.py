"""Tests for self-service password reset."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from core.errors import ValidationError
from core.services.email import EmailResult
from core.validators import PasswordResetInput

NOW = datetime(2026, 10, 16, 9, 0)


@pytest.fixture
def db(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{tmp_path / 'password_reset.db'}")
    monkeypatch.setenv("APP_ENV", "test")
    from core.db import Base, get_engine, reset_engine

    reset_engine()
    Base.metadata.create_all(bind=get_engine())
    yield
    reset_engine()


def _user(locked: bool = False) -> int:
    from core.db import session_scope
    from core.models import User
    from core.security import hash_password

    with session_scope() as s:
        user = User(
            email="runner@example.com",
            name="Runner",
            password_hash=hash_password("OldPass!2345"),
            role="client",
            failed_attempts=5 if locked else 0,
            locked_until=NOW + timedelta(minutes=10) if locked else None,
        )
        s.add(user)
        s.flush()
        return user.id


def test_unknown_email_gets_no_token(db):
    from core.db import session_scope
    from core.models import PasswordResetToken
    from core.services.password_reset import request_password_reset

    _user()
    with session_scope() as s:
        assert request_password_reset(s, "nobody@example.com", now=NOW) is None
        assert s.query(PasswordResetToken).count() == 0


def test_new_request_replaces_earlier_tokens(db):
    from core.db import session_scope
    from core.models import PasswordResetToken
    from core.services.password_reset import request_password_reset, validate_reset_token

    _user()
    with session_scope() as s:
        first = request_password_reset(s, "Runner@Example.com", now=NOW)
        second = request_password_reset(s, "runner@example.com", now=NOW + timedelta(minutes=5))
        assert first.token != second.token
        assert len(second.token) == 64
        assert s.query(PasswordResetToken).count() == 1
        assert validate_reset_token(s, first.token, now=NOW) is None
        assert validate_reset_token(s, second.token, now=NOW) == "runner@example.com"


def test_expired_token_is_rejected_and_removed(db):
    from core.db import session_scope
    from core.models import PasswordResetToken
    from core.services.password_reset import request_password_reset, reset_password, validate_reset_token

    _user()
    with session_scope() as s:
        notice = request_password_reset(s, "runner@example.com", now=NOW)
        later = NOW + timedelta(hours=1, seconds=1)
        with pytest.raises(ValidationError, match="Invalid or expired reset token"):
            reset_password(s, PasswordResetInput(token=notice.token, password="NewPass!2345"), now=later)
        assert validate_reset_token(s, notice.token, now=later) is None
        assert s.query(PasswordResetToken).count() == 0


def test_reset_sets_password_unlocks_and_burns_token(db):
    from core.db import session_scope
    from core.models import PasswordResetToken, User
    from core.security import verify_password
    from core.services.password_reset import request_password_reset, reset_password

    user_id = _user(locked=True)
    with session_scope() as s:
        notice = request_password_reset(s, "runner@example.com", now=NOW)
        with pytest.raises(ValidationError):
            reset_password(s, PasswordResetInput(token=notice.token, password="alllowercase"), now=NOW)
        reset_password(s, PasswordResetInput(token=notice.token, password="NewPass!2345"), now=NOW)
        user = s.get(User, user_id)
        assert verify_password("NewPass!2345", user.password_hash)
        assert user.failed_attempts == 0
        assert user.locked_until is None
        assert s.query(PasswordResetToken).count() == 0
        with pytest.raises(ValidationError):
            reset_password(s, PasswordResetInput(token=notice.token, password="Other!Pass234"), now=NOW)


def test_reset_email_carries_the_token_link(db):
    from core.services.password_reset import PasswordResetNotice, send_password_reset_email

    class _Sender:
        def send_system_email(self, template_key, to, variables, *, is_test_user=False, **kwargs):
            self.call = (template_key, to, variables)
            return EmailResult(success=True)

    sender = _Sender()
    notice = PasswordResetNotice(user_id=1, email="a@example.com", name="there", token="abc123", is_test_user=False)
    assert send_password_reset_email(notice, sender=sender).success
    key, to, variables = sender.call
    assert key == "password_reset"
    assert variables["resetUrl"].endswith("/reset-password?token=abc123")
