from __future__ import annotations

import pytest
from fastapi import HTTPException

from api.auth import TokenData, check_roles, create_access_token, decode_access_token


def test_token_round_trip(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "unit-secret")
    token = create_access_token({"sub": "coach@example.com", "user_id": 7, "role": "coach"})
    data = decode_access_token(token)
    assert data == TokenData(user_id=7, username="coach@example.com", role="coach")
    assert data.actor.id == 7
    assert data.actor.role == "coach"


def test_expired_token_is_rejected(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "unit-secret")
    token = create_access_token({"sub": "a@example.com", "user_id": 1, "role": "admin"}, expires_minutes=-1)
    with pytest.raises(HTTPException) as exc:
        decode_access_token(token)
    assert exc.value.status_code == 401
    assert exc.value.detail["code"] == "INVALID_TOKEN"


def test_token_signed_with_other_secret_is_rejected(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "first")
    token = create_access_token({"sub": "a@example.com", "user_id": 1, "role": "admin"})
    monkeypatch.setenv("JWT_SECRET", "second")
    with pytest.raises(HTTPException):
        decode_access_token(token)


def test_token_missing_claims_is_rejected(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "unit-secret")
    token = create_access_token({"sub": "a@example.com"})
    with pytest.raises(HTTPException) as exc:
        decode_access_token(token)
    assert exc.value.status_code == 401


def test_check_roles_lets_admin_through():
    admin = TokenData(user_id=1, username="a", role="admin")
    coach = TokenData(user_id=2, username="c", role="coach")
    client = TokenData(user_id=3, username="u", role="client")

    assert check_roles(admin, {"coach"}) is admin
    assert check_roles(coach, {"coach"}) is coach
    with pytest.raises(HTTPException) as exc:
        check_roles(client, {"coach"})
    assert exc.value.status_code == 403
    assert exc.value.detail["required_roles"] == ["coach"]
