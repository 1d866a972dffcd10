from __future__ import annotations

import json

from starlette.requests import Request

from api.ratelimit import client_address, limiter_enabled, rate_limit_exceeded_handler
from core.config import Settings


def _request(forwarded: str | None = None) -> Request:
    headers = [(b"x-forwarded-for", forwarded.encode())] if forwarded else []
    return Request(
        {
            "type": "http",
            "method": "POST",
            "path": "/api/v1/auth/token",
            "headers": headers,
            "client": ("10.0.0.9", 51000),
            "query_string": b"",
        }
    )


def test_client_address_ignores_forwarded_header_by_default(monkeypatch):
    monkeypatch.delenv("TRUST_PROXY_HEADERS", raising=False)
    assert client_address(_request("203.0.113.7, 10.0.0.1")) == "10.0.0.9"


def test_client_address_uses_first_forwarded_hop_when_trusted(monkeypatch):
    monkeypatch.setenv("TRUST_PROXY_HEADERS", "true")
    assert client_address(_request("203.0.113.7, 10.0.0.1")) == "203.0.113.7"
    assert client_address(_request()) == "10.0.0.9"


def test_limiter_disabled_under_test_profile():
    assert limiter_enabled(Settings(database_url="sqlite://", app_env="test", rate_limit_enabled=True)) is False
    assert limiter_enabled(Settings(database_url="sqlite://", app_env="dev", rate_limit_enabled=True)) is True
    assert limiter_enabled(Settings(database_url="sqlite://", app_env="production", rate_limit_enabled=False)) is False


def test_exceeded_handler_body():
    resp = rate_limit_exceeded_handler(_request(), RuntimeError("limit"))
    assert resp.status_code == 429
    assert json.loads(resp.body)["detail"]["code"] == "RATE_LIMITED"
    assert "retry-after" not in resp.headers
