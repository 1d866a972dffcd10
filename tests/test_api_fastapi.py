from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path
import sys
import time

from fastapi.testclient import TestClient


def _purge_api_modules() -> None:
    # routers and the limiter read settings at import time
    for name in [n for n in sys.modules if n == "api" or n.startswith("api.")]:
        sys.modules.pop(name, None)


def _seed_users():
    from core.clock import utcnow
    from core.db import session_scope
    from core.models import User
    from core.security import hash_password

    with session_scope() as s:
        s.add(User(id=1, email="admin@example.com", name="Admin", password_hash=hash_password("AdminPass!234"), role="admin"))
        s.add(User(id=2, email="coach@example.com", name="Coach", password_hash=hash_password("CoachPass!234"), role="coach"))
        s.add(User(id=3, email="client@example.com", name="Client", password_hash=hash_password("ClientPass!234"), role="client"))
        s.add(
            User(
                id=4,
                email="locked@example.com",
                password_hash=hash_password("LockedPass!234"),
                role="coach",
                failed_attempts=5,
                locked_until=utcnow() + timedelta(minutes=15),
            )
        )


def _create_schema():
    import core.models  # noqa: F401
    from core.db import Base, get_engine

    # each client starts from a fresh schema so reseeding the same db file works
    Base.metadata.drop_all(bind=get_engine())
    Base.metadata.create_all(bind=get_engine())


def _build_client(tmp_path: Path, monkeypatch, env_overrides: dict[str, str] | None = None) -> TestClient:
    db_path = tmp_path / "api_test.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{db_path}")
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6399/15")
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("CORS_ORIGINS", "http://localhost:5173")
    monkeypatch.delenv("STRIPE_WEBHOOK_SECRET", raising=False)
    if env_overrides:
        for key, value in env_overrides.items():
            monkeypatch.setenv(key, value)

    from core.db import reset_engine

    reset_engine()
    _purge_api_modules()
    _create_schema()
    _seed_users()

    from api.main import create_app

    return TestClient(create_app())


def _auth_headers(client: TestClient, email: str, password: str) -> dict[str, str]:
    resp = client.post("/api/v1/auth/token", json={"username": email, "password": password})
    assert resp.status_code == 200, resp.text
    token = resp.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


def test_health_echoes_or_generates_request_id_header(tmp_path, monkeypatch):
    with _build_client(tmp_path, monkeypatch) as client:
        custom_request_id = "req-test-123"
        resp = client.get("/api/v1/health", headers={"X-Request-ID": custom_request_id})
        assert resp.status_code == 200, resp.text
        assert resp.headers["X-Request-ID"] == custom_request_id
        assert resp.json()["app_env"] == "test"
        assert client.app.state.cache_backend == "memory"

        generated = client.get("/api/v1/health")
        assert generated.status_code == 200, generated.text
        assert generated.headers.get("X-Request-ID")


def test_login_and_me(tmp_path, monkeypatch):
    with _build_client(tmp_path, monkeypatch) as client:
        resp = client.post("/api/v1/auth/token", json={"username": "coach@example.com", "password": "CoachPass!234"})
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["role"] == "coach"
        assert body["token_type"] == "bearer"

        me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
        assert me.status_code == 200
        assert me.json() == {"user_id": 2, "username": "coach@example.com", "role": "coach"}


def test_login_failures(tmp_path, monkeypatch):
    with _build_client(tmp_path, monkeypatch) as client:
        bad = client.post("/api/v1/auth/token", json={"username": "coach@example.com", "password": "nope"})
        assert bad.status_code == 401
        assert bad.json()["detail"]["code"] == "INVALID_CREDENTIALS"

        locked = client.post("/api/v1/auth/token", json={"username": "locked@example.com", "password": "LockedPass!234"})
        assert locked.status_code == 423
        assert locked.json()["detail"]["code"] == "ACCOUNT_LOCKED"

        missing = client.get("/api/v1/auth/me")
        assert missing.status_code == 401
        assert missing.json()["detail"]["code"] == "AUTH_REQUIRED"

        garbage = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-token"})
        assert garbage.status_code == 401
        assert garbage.json()["detail"]["code"] == "INVALID_TOKEN"


def test_failed_attempts_are_committed(tmp_path, monkeypatch):
    with _build_client(tmp_path, monkeypatch) as client:
        client.post("/api/v1/auth/token", json={"username": "client@example.com", "password": "wrong"})

    from core.db import session_scope
    from core.models import User

    with session_scope() as s:
        assert s.get(User, 3).failed_attempts == 1


def test_auth_token_rate_limit_returns_429_when_enabled(tmp_path, monkeypatch):
    env = {
        "APP_ENV": "dev",
        "RATE_LIMIT_ENABLED": "true",
        "AUTH_TOKEN_RATE_LIMIT": "2/minute",
    }
    with _build_client(tmp_path, monkeypatch, env_overrides=env) as client:
        for _ in range(2):
            resp = client.post("/api/v1/auth/token", json={"username": "nobody@example.com", "password": "wrong"})
            assert resp.status_code == 401
        limited = client.post("/api/v1/auth/token", json={"username": "nobody@example.com", "password": "wrong"})
        assert limited.status_code == 429, limited.text
        assert limited.json()["detail"]["code"] == "RATE_LIMITED"


def test_role_checks(tmp_path, monkeypatch):
    with _build_client(tmp_path, monkeypatch) as client:
        client_headers = _auth_headers(client, "client@example.com", "ClientPass!234")
        coach_headers = _auth_headers(client, "coach@example.com", "CoachPass!234")
        admin_headers = _auth_headers(client, "admin@example.com", "AdminPass!234")

        forbidden = client.get("/api/v1/users", headers=client_headers)
        assert forbidden.status_code == 403
        assert forbidden.json()["detail"]["code"] == "FORBIDDEN_ROLE"

        users = client.get("/api/v1/users", params={"role": "client"}, headers=coach_headers)
        assert users.status_code == 200
        assert users.json()["total"] == 1

        assert client.get("/api/v1/system-settings", headers=coach_headers).status_code == 403
        settings = client.get("/api/v1/system-settings", headers=admin_headers)
        assert settings.status_code == 200
        assert settings.json()["defaultCheckInFrequencyDays"] == 7


def test_clients_may_only_edit_themselves(tmp_path, monkeypatch):
    with _build_client(tmp_path, monkeypatch) as client:
        headers = _auth_headers(client, "client@example.com", "ClientPass!234")
        assert client.patch("/api/v1/users/2", json={"name": "X"}, headers=headers).status_code == 403
        frequency = client.patch("/api/v1/users/3", json={"check_in_frequency_days": 3}, headers=headers)
        assert frequency.status_code == 403
        ok = client.patch("/api/v1/users/3", json={"name": "Renamed"}, headers=headers)
        assert ok.status_code == 200, ok.text
        assert ok.json()["name"] == "Renamed"


def test_service_errors_map_to_status_codes(tmp_path, monkeypatch):
    with _build_client(tmp_path, monkeypatch) as client:
        admin_headers = _auth_headers(client, "admin@example.com", "AdminPass!234")
        payload = {"name": "Autumn", "start_date": "2026-10-01"}
        created = client.post("/api/v1/cohorts", json=payload, headers=admin_headers)
        assert created.status_code == 201, created.text
        assert created.json()["status"] == "active"

        duplicate = client.post("/api/v1/cohorts", json=payload, headers=admin_headers)
        assert duplicate.status_code == 409
        assert duplicate.json()["detail"]["code"] == "CONFLICT"
        assert duplicate.json()["detail"]["message"]

        missing = client.get("/api/v1/cohorts/999", headers=admin_headers)
        assert missing.status_code == 404
        assert missing.json()["detail"]["code"] == "NOT_FOUND"


def test_coach_cannot_open_unassigned_cohort(tmp_path, monkeypatch):
    with _build_client(tmp_path, monkeypatch) as client:
        admin_headers = _auth_headers(client, "admin@example.com", "AdminPass!234")
        coach_headers = _auth_headers(client, "coach@example.com", "CoachPass!234")
        cohort_id = client.post(
            "/api/v1/cohorts", json={"name": "Winter", "start_date": "2026-12-01"}, headers=admin_headers
        ).json()["id"]

        resp = client.get(f"/api/v1/cohorts/{cohort_id}", headers=coach_headers)
        assert resp.status_code == 403
        assert resp.json()["detail"]["code"] == "FORBIDDEN"


def test_webhook_requires_secret_and_signature(tmp_path, monkeypatch):
    with _build_client(tmp_path, monkeypatch) as client:
        resp = client.post("/api/v1/billing/webhook", content=b"{}")
        assert resp.status_code == 500
        assert resp.json()["detail"]["code"] == "WEBHOOK_NOT_CONFIGURED"

    with _build_client(tmp_path, monkeypatch, env_overrides={"STRIPE_WEBHOOK_SECRET": "whsec_test"}) as client:
        missing = client.post("/api/v1/billing/webhook", content=b"{}")
        assert missing.status_code == 400
        assert missing.json()["detail"]["code"] == "MISSING_SIGNATURE"

        bad = client.post("/api/v1/billing/webhook", content=b"{}", headers={"stripe-signature": "t=1,v1=abc"})
        assert bad.status_code == 400
        assert bad.json()["detail"]["code"] == "INVALID_SIGNATURE"


def test_webhook_accepts_signed_event(tmp_path, monkeypatch):
    from core.services.stripe_client import compute_signature

    payload = json.dumps({"id": "evt_1", "type": "customer.created", "data": {"object": {}}})
    timestamp = int(time.time())
    header = f"t={timestamp},v1={compute_signature(payload, timestamp, 'whsec_test')}"
    with _build_client(tmp_path, monkeypatch, env_overrides={"STRIPE_WEBHOOK_SECRET": "whsec_test"}) as client:
        resp = client.post("/api/v1/billing/webhook", content=payload.encode(), headers={"stripe-signature": header})
        assert resp.status_code == 200, resp.text
        assert resp.json() == {"received": True}


def test_webhook_activation_runs_off_the_event_loop(tmp_path, monkeypatch):
    import asyncio

    from core.db import session_scope
    from core.models import MembershipPlan, UserMembership
    from core.services import memberships as membership_service
    from core.services.stripe_client import compute_signature

    sent = []

    def record_send(activation):
        try:
            asyncio.get_running_loop()
            sent.append(("event_loop", activation.email))
        except RuntimeError:
            sent.append(("worker_thread", activation.email))

    monkeypatch.setattr(membership_service, "send_membership_activated_email", record_send)
    with _build_client(tmp_path, monkeypatch, env_overrides={"STRIPE_WEBHOOK_SECRET": "whsec_test"}) as client:
        with session_scope() as s:
            plan = MembershipPlan(name="Five Pack", type="pack", total_sessions=5)
            s.add(plan)
            s.flush()
            plan_id = plan.id
        obj = {"id": "cs_7", "metadata": {"type": "membership", "userId": "3", "planId": str(plan_id)}}
        payload = json.dumps({"id": "evt_7", "type": "checkout.session.completed", "data": {"object": obj}})
        timestamp = int(time.time())
        header = f"t={timestamp},v1={compute_signature(payload, timestamp, 'whsec_test')}"
        resp = client.post("/api/v1/billing/webhook", content=payload.encode(), headers={"stripe-signature": header})
        assert resp.status_code == 200, resp.text

    assert sent == [("worker_thread", "client@example.com")]
    with session_scope() as s:
        assert s.query(UserMembership).filter_by(user_id=3, stripe_checkout_session_id="cs_7").count() == 1


def test_reports_dashboard_and_export(tmp_path, monkeypatch):
    with _build_client(tmp_path, monkeypatch) as client:
        coach_headers = _auth_headers(client, "coach@example.com", "CoachPass!234")
        client_headers = _auth_headers(client, "client@example.com", "ClientPass!234")

        assert client.get("/api/v1/reports/dashboard", headers=client_headers).status_code == 403

        dashboard = client.get("/api/v1/reports/dashboard", headers=coach_headers)
        assert dashboard.status_code == 200, dashboard.text
        assert dashboard.json()["total_members"] == 0

        assert client.get("/api/v1/reports/revenue", headers=coach_headers).status_code == 403

        export = client.get("/api/v1/reports/export", params={"type": "members", "format": "csv"}, headers=coach_headers)
        assert export.status_code == 200, export.text
        assert export.headers["content-type"].startswith("text/csv")
        assert "members-report-" in export.headers["content-disposition"]
        assert export.text.startswith("Member Engagement Report")

        bad = client.get("/api/v1/reports/export", params={"type": "members", "format": "xml"}, headers=coach_headers)
        assert bad.status_code == 400
        assert bad.json()["detail"]["code"] == "VALIDATION_ERROR"


def test_password_reset_flow_over_http(tmp_path, monkeypatch):
    from core.services import password_reset as password_reset_service

    notices = []
    monkeypatch.setattr(password_reset_service, "send_password_reset_email", notices.append)
    with _build_client(tmp_path, monkeypatch) as client:
        unknown = client.post("/api/v1/auth/password-reset/request", json={"email": "ghost@example.com"})
        known = client.post("/api/v1/auth/password-reset/request", json={"email": "client@example.com"})
        assert unknown.status_code == known.status_code == 200
        assert unknown.json() == known.json()
        assert [n.email for n in notices] == ["client@example.com"]

        token = notices[0].token
        valid = client.get("/api/v1/auth/password-reset/validate", params={"token": token})
        assert valid.json() == {"valid": True, "email": "client@example.com"}

        reset = client.post("/api/v1/auth/password-reset", json={"token": token, "password": "Fresh!Pass234"})
        assert reset.status_code == 200, reset.text
        _auth_headers(client, "client@example.com", "Fresh!Pass234")

        reused = client.post("/api/v1/auth/password-reset", json={"token": token, "password": "Fresh!Pass234"})
        assert reused.status_code == 400
        assert reused.json()["detail"]["code"] == "VALIDATION_ERROR"


def test_review_queue_and_coach_notes_routes(tmp_path, monkeypatch):
    from core.clock import utctoday
    from core.db import session_scope
    from core.models import CoachCohortMembership, Cohort, CohortMembership
    from core.services import review_queue as review_service

    sent = []
    monkeypatch.setattr(review_service, "send_coach_response_email", sent.append)
    with _build_client(tmp_path, monkeypatch) as client:
        with session_scope() as s:
            cohort = Cohort(name="Autumn", start_date=review_service.monday_of(utctoday()))
            s.add(cohort)
            s.flush()
            s.add(CoachCohortMembership(coach_id=2, cohort_id=cohort.id))
            s.add(CohortMembership(cohort_id=cohort.id, user_id=3, status="active"))

        coach_headers = _auth_headers(client, "coach@example.com", "CoachPass!234")
        client_headers = _auth_headers(client, "client@example.com", "ClientPass!234")
        assert client.get("/api/v1/review-queue/summaries", headers=client_headers).status_code == 403

        summaries = client.get("/api/v1/review-queue/summaries", headers=coach_headers)
        assert summaries.status_code == 200, summaries.text
        assert [c["client_id"] for c in summaries.json()["clients"]] == [3]

        week_start = summaries.json()["week_start"]
        saved = client.put(
            "/api/v1/review-queue/responses",
            json={"client_id": 3, "week_start": week_start, "note": "Nice work"},
            headers=coach_headers,
        )
        assert saved.status_code == 200, saved.text
        assert [n.email for n in sent] == ["client@example.com"]
        summary = client.get("/api/v1/review-queue/summary", headers=coach_headers).json()
        assert (summary["completed_reviews"], summary["pending_reviews"]) == (1, 0)

        note = client.post(
            "/api/v1/coach-notes", json={"client_id": 3, "week_number": 1, "notes": "Keep going"}, headers=coach_headers
        )
        assert note.status_code == 201, note.text
        listed = client.get("/api/v1/coach-notes/clients/3", headers=coach_headers).json()
        assert [n["notes"] for n in listed] == ["Keep going"]
        assert listed[0]["coach"]["email"] == "coach@example.com"
        assert client.delete(f"/api/v1/coach-notes/{note.json()['id']}", headers=coach_headers).status_code == 200