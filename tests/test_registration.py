"""Tests for class bookings, plan limits and the waitlist."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from core.errors import PermissionDeniedError, ValidationError
from core.services.email import EmailResult
from core.services.registration import week_bounds

# Monday
NOW = datetime(2026, 10, 12, 8, 0)


@pytest.fixture
def db(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{tmp_path / 'registration.db'}")
    monkeypatch.setenv("APP_ENV", "test")
    from core.db import Base, get_engine, reset_engine

    reset_engine()
    Base.metadata.create_all(bind=get_engine())
    yield
    reset_engine()


def _setup(plan: dict, capacity: int = 1, clients: int = 2, with_access: bool = True) -> dict:
    from core.db import session_scope
    from core.models import (
        ClassSession,
        ClassType,
        Cohort,
        CohortMembership,
        CohortSessionAccess,
        MembershipAllowance,
        MembershipPlan,
        User,
    )
    from core.services.memberships import build_membership

    with session_scope() as s:
        coach = User(email="coach@example.com", name="Coach", password_hash="x", role="coach")
        ct = ClassType(name="Strength", default_capacity=capacity, default_duration_mins=60)
        cohort = Cohort(name="Autumn", start_date=NOW.date(), status="active")
        s.add_all([coach, ct, cohort])
        s.flush()
        if with_access:
            s.add(CohortSessionAccess(cohort_id=cohort.id, class_type_id=ct.id))

        membership_plan = MembershipPlan(name="Plan", **plan)
        s.add(membership_plan)
        s.flush()
        s.add(MembershipAllowance(plan_id=membership_plan.id, class_type_id=ct.id))
        s.flush()

        client_ids = []
        for idx in range(clients):
            client = User(
                email=f"client{idx}@example.com", name=f"Client {idx}", password_hash="x", role="client", is_test_user=True
            )
            s.add(client)
            s.flush()
            s.add(CohortMembership(cohort_id=cohort.id, user_id=client.id, status="active"))
            s.add(build_membership(membership_plan, client.id, NOW.date()))
            client_ids.append(client.id)

        sessions = []
        for day in (1, 2):
            start = NOW + timedelta(days=day)
            cls = ClassSession(
                class_type_id=ct.id,
                coach_id=coach.id,
                title=f"Strength {day}",
                start_time=start,
                end_time=start + timedelta(hours=1),
                max_occupancy=capacity,
                status="scheduled",
            )
            s.add(cls)
            s.flush()
            sessions.append(cls.id)
        return {"clients": client_ids, "sessions": sessions, "class_type": ct.id, "coach": coach.id}


PACK = {"type": "pack", "total_sessions": 2, "pack_price": 2000, "late_cancel_cutoff_hours": 2}


def test_week_bounds_start_on_monday():
    start, end = week_bounds(datetime(2026, 10, 14, 18, 30))
    assert start == datetime(2026, 10, 12)
    assert end == datetime(2026, 10, 19)


def test_register_consumes_pack_session(db):
    from core.db import session_scope
    from core.services.memberships import get_active_membership
    from core.services.registration import register_for_session

    ids = _setup(PACK)
    client = ids["clients"][0]
    with session_scope() as s:
        result = register_for_session(s, client, ids["sessions"][0], now=NOW)
        assert result.waitlisted is False
        assert result.registration.status == "registered"
    with session_scope() as s:
        assert get_active_membership(s, client).sessions_remaining == 1


def test_full_session_waitlists_and_rejects_duplicates(db):
    from core.db import session_scope
    from core.services.registration import register_for_session

    ids = _setup(PACK)
    first, second = ids["clients"]
    session_id = ids["sessions"][0]
    with session_scope() as s:
        register_for_session(s, first, session_id, now=NOW)
        waitlisted = register_for_session(s, second, session_id, now=NOW)
        assert waitlisted.waitlisted is True
        assert waitlisted.waitlist_position == 1
        assert waitlisted.registration.status == "waitlisted"
        with pytest.raises(ValidationError, match="Already registered"):
            register_for_session(s, first, session_id, now=NOW)


def test_early_cancel_refunds_pack_and_promotes_waitlist(db):
    from core.db import session_scope
    from core.models import SessionRegistration
    from core.services.memberships import get_active_membership
    from core.services.registration import cancel_registration, register_for_session

    ids = _setup(PACK)
    first, second = ids["clients"]
    session_id = ids["sessions"][0]
    with session_scope() as s:
        reg_id = register_for_session(s, first, session_id, now=NOW).registration.id
        register_for_session(s, second, session_id, now=NOW)

    with session_scope() as s:
        result = cancel_registration(s, first, reg_id, now=NOW)
        assert result.late_cancelled is False
        assert result.registration.status == "cancelled"
        assert result.promotion is not None
        assert result.promotion.user_id == second
        assert result.promotion.session_title == "Strength 1"

    with session_scope() as s:
        assert get_active_membership(s, first).sessions_remaining == 2
        promoted = s.query(SessionRegistration).filter_by(session_id=session_id, user_id=second).one()
        assert promoted.status == "registered"
        assert promoted.waitlist_position is None
        assert promoted.promoted_from_waitlist_at == NOW


def test_late_cancel_keeps_session_spent(db):
    from core.db import session_scope
    from core.services.memberships import get_active_membership
    from core.services.registration import cancel_registration, register_for_session

    ids = _setup(PACK)
    client = ids["clients"][0]
    with session_scope() as s:
        reg_id = register_for_session(s, client, ids["sessions"][0], now=NOW).registration.id

    one_hour_before = NOW + timedelta(days=1, hours=-1)
    with session_scope() as s:
        result = cancel_registration(s, client, reg_id, now=one_hour_before)
        assert result.late_cancelled is True
        assert result.registration.status == "late_cancelled"
        assert result.promotion is None
    with session_scope() as s:
        assert get_active_membership(s, client).sessions_remaining == 1


def test_cancel_someone_elses_registration_is_forbidden(db):
    from core.db import session_scope
    from core.services.registration import cancel_registration, register_for_session

    ids = _setup(PACK)
    first, second = ids["clients"]
    with session_scope() as s:
        reg_id = register_for_session(s, first, ids["sessions"][0], now=NOW).registration.id
        with pytest.raises(PermissionDeniedError):
            cancel_registration(s, second, reg_id, now=NOW)


def test_weekly_limit_on_recurring_plan(db):
    from core.db import session_scope
    from core.services.registration import register_for_session

    ids = _setup({"type": "recurring", "sessions_per_week": 1, "monthly_price": 5000}, capacity=5, clients=1)
    client = ids["clients"][0]
    with session_scope() as s:
        register_for_session(s, client, ids["sessions"][0], now=NOW)
        with pytest.raises(ValidationError, match=r"Weekly session limit reached \(1 per week\)"):
            register_for_session(s, client, ids["sessions"][1], now=NOW)


def test_empty_pack_is_rejected(db):
    from core.db import session_scope
    from core.services.memberships import get_active_membership
    from core.services.registration import register_for_session

    ids = _setup(PACK, capacity=5, clients=1)
    client = ids["clients"][0]
    with session_scope() as s:
        get_active_membership(s, client).sessions_remaining = 0
    with session_scope() as s:
        with pytest.raises(ValidationError, match="No sessions remaining"):
            register_for_session(s, client, ids["sessions"][0], now=NOW)


def test_expired_prepaid_membership_is_rejected(db):
    from core.db import session_scope
    from core.services.memberships import get_active_membership
    from core.services.registration import register_for_session

    ids = _setup({"type": "prepaid", "duration_days": 30, "prepaid_price": 9000}, capacity=5, clients=1)
    client = ids["clients"][0]
    with session_scope() as s:
        get_active_membership(s, client).end_date = NOW.date() - timedelta(days=1)
    with session_scope() as s:
        with pytest.raises(ValidationError, match="Your prepaid membership has expired"):
            register_for_session(s, client, ids["sessions"][0], now=NOW)


def test_plan_without_class_type_allowance_is_rejected(db):
    from core.db import session_scope
    from core.models import ClassSession, ClassType, Cohort, CohortSessionAccess
    from core.services.registration import register_for_session

    ids = _setup(PACK, capacity=5, clients=1)
    with session_scope() as s:
        hiit = ClassType(name="HIIT", default_capacity=5, default_duration_mins=45)
        s.add(hiit)
        s.flush()
        cohort = s.query(Cohort).one()
        s.add(CohortSessionAccess(cohort_id=cohort.id, class_type_id=hiit.id))
        start = NOW + timedelta(days=3)
        cls = ClassSession(
            class_type_id=hiit.id,
            coach_id=ids["coach"],
            title="HIIT",
            start_time=start,
            end_time=start + timedelta(minutes=45),
            max_occupancy=5,
        )
        s.add(cls)
        s.flush()
        hiit_session = cls.id
    with session_scope() as s:
        with pytest.raises(PermissionDeniedError, match="Your membership plan does not include this class type"):
            register_for_session(s, ids["clients"][0], hiit_session, now=NOW)


def test_cancelled_session_is_not_available(db):
    from core.db import session_scope
    from core.models import ClassSession
    from core.services.registration import register_for_session

    ids = _setup(PACK, capacity=5, clients=1)
    with session_scope() as s:
        s.get(ClassSession, ids["sessions"][0]).status = "cancelled"
    with session_scope() as s:
        with pytest.raises(ValidationError, match="Session is not available for registration"):
            register_for_session(s, ids["clients"][0], ids["sessions"][0], now=NOW)


def test_registration_needs_an_active_membership(db):
    from core.db import session_scope
    from core.services.memberships import get_active_membership
    from core.services.registration import register_for_session

    ids = _setup(PACK, capacity=5, clients=1)
    client = ids["clients"][0]
    with session_scope() as s:
        get_active_membership(s, client).status = "cancelled"
    with session_scope() as s:
        with pytest.raises(ValidationError, match="No active membership found"):
            register_for_session(s, client, ids["sessions"][0], now=NOW)


def test_cancelling_a_waitlisted_spot_neither_promotes_nor_refunds(db):
    from core.db import session_scope
    from core.models import SessionRegistration
    from core.services.memberships import get_active_membership
    from core.services.registration import cancel_registration, register_for_session

    ids = _setup(PACK, capacity=1, clients=3)
    first, second, third = ids["clients"]
    session_id = ids["sessions"][0]
    with session_scope() as s:
        register_for_session(s, first, session_id, now=NOW)
        waiting_id = register_for_session(s, second, session_id, now=NOW).registration.id
        register_for_session(s, third, session_id, now=NOW)

    with session_scope() as s:
        result = cancel_registration(s, second, waiting_id, now=NOW)
        assert result.late_cancelled is False
        assert result.promotion is None
        assert result.registration.status == "cancelled"
        assert result.registration.waitlist_position is None

    with session_scope() as s:
        assert get_active_membership(s, first).sessions_remaining == 1
        assert get_active_membership(s, second).sessions_remaining == 2
        still_waiting = s.query(SessionRegistration).filter_by(session_id=session_id, user_id=third).one()
        assert still_waiting.status == "waitlisted"
        assert still_waiting.waitlist_position == 2


def test_cohort_without_access_cannot_register(db):
    from core.db import session_scope
    from core.services.registration import register_for_session

    ids = _setup(PACK, with_access=False)
    with session_scope() as s:
        with pytest.raises(PermissionDeniedError, match="do not have access"):
            register_for_session(s, ids["clients"][0], ids["sessions"][0], now=NOW)


def test_available_sessions_report_counts_and_my_status(db):
    from core.db import session_scope
    from core.services.registration import get_available_sessions, register_for_session

    ids = _setup(PACK)
    first, second = ids["clients"]
    with session_scope() as s:
        register_for_session(s, first, ids["sessions"][0], now=NOW)
    with session_scope() as s:
        rows = get_available_sessions(s, second, now=NOW)
        assert [r["session"].id for r in rows] == ids["sessions"]
        assert rows[0]["registered_count"] == 1
        assert rows[0]["my_status"] is None
        mine = get_available_sessions(s, first, now=NOW)
        assert mine[0]["my_status"] == "registered"


def test_session_usage_for_pack_and_permissions(db):
    from core.db import session_scope
    from core.permissions import Actor
    from core.services.registration import get_session_usage

    ids = _setup(PACK)
    first, second = ids["clients"]
    with session_scope() as s:
        usage = get_session_usage(s, Actor(id=first, role="client"), today=NOW.date())
        assert usage == {"type": "pack", "sessions_remaining": 2, "total_sessions": 2, "plan_name": "Plan"}
        with pytest.raises(PermissionDeniedError):
            get_session_usage(s, Actor(id=first, role="client"), user_id=second)
        assert get_session_usage(s, Actor(id=ids["coach"], role="coach"), user_id=second)["type"] == "pack"


def test_roster_orders_registered_before_waitlist(db):
    from core.db import session_scope
    from core.services.registration import get_session_registrations, mark_attendance, register_for_session

    ids = _setup(PACK)
    first, second = ids["clients"]
    session_id = ids["sessions"][0]
    with session_scope() as s:
        register_for_session(s, second, session_id, now=NOW)
        register_for_session(s, first, session_id, now=NOW)
    with session_scope() as s:
        roster = get_session_registrations(s, session_id)
        assert [r.status for r in roster] == ["registered", "waitlisted"]
        assert roster[0].user_id == second
        assert mark_attendance(s, roster[0].id, "attended").status == "attended"
        with pytest.raises(ValidationError):
            mark_attendance(s, roster[0].id, "registered")


class _RecordingSender:
    def __init__(self):
        self.calls = []

    def send_system_email(self, template_key, to, variables, *, is_test_user=False, **kwargs):
        self.calls.append((template_key, to, variables, is_test_user))
        return EmailResult(success=True)


def test_promotion_email_uses_waitlist_template():
    from core.services.registration import WaitlistPromotion, send_waitlist_promotion_email

    sender = _RecordingSender()
    promotion = WaitlistPromotion(
        user_id=7,
        email="member@example.com",
        name="Member",
        is_test_user=False,
        session_title="Strength 1",
        session_start=datetime(2026, 10, 13, 7, 0),
    )
    result = send_waitlist_promotion_email(promotion, sender=sender)
    assert result.success is True
    key, to, variables, is_test_user = sender.calls[0]
    assert key == "waitlist_promoted"
    assert to == "member@example.com"
    assert variables["sessionTitle"] == "Strength 1"
    assert variables["sessionDate"] == "Tuesday, October 13, 2026"
    assert variables["sessionTime"] == "7:00 AM"
