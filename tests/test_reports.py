"""Tests for dashboard reports and exports."""

from __future__ import annotations

import json
from datetime import date, datetime, timedelta

import pytest

from core.errors import PermissionDeniedError, ValidationError
from core.permissions import Actor
from core.services.reports import growth_percent

NOW = datetime(2026, 10, 16, 12, 0)
TODAY = NOW.date()


@pytest.fixture
def db(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{tmp_path / 'reports.db'}")
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.delenv("BILLING_CURRENCY", raising=False)
    from core.db import Base, get_engine, reset_engine

    reset_engine()
    Base.metadata.create_all(bind=get_engine())
    yield
    reset_engine()


def _seed() -> dict:
    """Coach runs cohort A (two clients); cohort B has one client the coach cannot see."""
    from core.db import session_scope
    from core.models import (
        ClassSession,
        ClassType,
        CoachCohortMembership,
        Cohort,
        CohortMembership,
        Entry,
        Invoice,
        QuestionnaireBundle,
        QuestionnaireResponse,
        SessionRegistration,
        User,
    )

    with session_scope() as s:
        admin = User(email="admin@example.com", name="Admin", password_hash="x", role="admin")
        coach = User(email="coach@example.com", name="Coach", password_hash="x", role="coach")
        c1 = User(email="c1@example.com", name="One", password_hash="x", role="client")
        c2 = User(email="c2@example.com", name="Two", password_hash="x", role="client")
        c3 = User(email="c3@example.com", name="Three", password_hash="x", role="client")
        a = Cohort(name="A", start_date=date(2026, 10, 1))
        b = Cohort(name="B", start_date=date(2026, 9, 1))
        s.add_all([admin, coach, c1, c2, c3, a, b])
        s.flush()
        s.add(CoachCohortMembership(coach_id=coach.id, cohort_id=a.id))
        s.add_all(
            [
                CohortMembership(cohort_id=a.id, user_id=c1.id, joined_at=datetime(2026, 10, 2)),
                CohortMembership(cohort_id=a.id, user_id=c2.id, joined_at=datetime(2026, 10, 2)),
                CohortMembership(cohort_id=b.id, user_id=c3.id, joined_at=datetime(2026, 9, 15)),
            ]
        )
        s.add_all(
            [
                Entry(user_id=c1.id, date=TODAY),
                Entry(user_id=c1.id, date=TODAY - timedelta(days=1)),
                Entry(user_id=c3.id, date=TODAY),
            ]
        )
        s.add_all(
            [
                Invoice(user_id=c1.id, month=date(2026, 10, 1), total_amount=5000, payment_status="paid",
                        paid_at=datetime(2026, 10, 5)),
                Invoice(user_id=c2.id, month=date(2026, 9, 1), total_amount=3000, payment_status="paid",
                        paid_at=datetime(2026, 9, 10)),
                Invoice(user_id=c2.id, month=date(2026, 10, 1), total_amount=2000),
            ]
        )
        bundle = QuestionnaireBundle(cohort_id=a.id, week_number=1, questions={})
        strength = ClassType(name="Strength", default_capacity=10)
        s.add_all([bundle, strength])
        s.flush()
        s.add(QuestionnaireResponse(user_id=c1.id, bundle_id=bundle.id, week_number=1, status="completed"))

        past_start = datetime(2026, 10, 8, 7, 0)
        past = ClassSession(class_type_id=strength.id, coach_id=coach.id, title="Strength", start_time=past_start,
                            end_time=past_start + timedelta(hours=1), max_occupancy=10, status="completed")
        future = ClassSession(class_type_id=strength.id, coach_id=coach.id, title="Strength",
                              start_time=NOW + timedelta(days=2), end_time=NOW + timedelta(days=2, hours=1),
                              max_occupancy=10, status="scheduled")
        s.add_all([past, future])
        s.flush()
        s.add_all(
            [
                SessionRegistration(session_id=past.id, user_id=c1.id, status="attended"),
                SessionRegistration(session_id=past.id, user_id=c2.id, status="no_show"),
            ]
        )
        return {
            "admin": Actor(id=admin.id, role="admin"),
            "coach": Actor(id=coach.id, role="coach"),
            "client": Actor(id=c1.id, role="client"),
            "c1": c1.id,
        }


def test_growth_percent():
    assert growth_percent(150, 100) == 50.0
    assert growth_percent(5, 0) == 100.0
    assert growth_percent(0, 0) == 0.0


def test_overview_is_scoped_for_coaches(db):
    from core.db import session_scope
    from core.services.reports import dashboard_overview

    people = _seed()
    with session_scope() as s:
        coach = dashboard_overview(s, people["coach"], now=NOW)
        admin = dashboard_overview(s, people["admin"], now=NOW)
        with pytest.raises(PermissionDeniedError):
            dashboard_overview(s, people["client"], now=NOW)

    assert coach["total_members"] == 2
    assert coach["active_cohorts"] == 1
    assert coach["attention_required"] == 1
    assert coach["member_growth"] == 100.0
    assert coach["monthly_revenue"] == 0

    assert admin["total_members"] == 3
    assert admin["active_cohorts"] == 2
    assert admin["monthly_revenue"] == 5000
    assert admin["revenue_growth"] == pytest.approx(66.666, rel=1e-3)


def test_member_engagement_and_cohorts(db):
    from core.db import session_scope
    from core.services.reports import cohort_report, member_engagement_report

    people = _seed()
    with session_scope() as s:
        members = member_engagement_report(s, people["coach"], now=NOW)
        cohorts = cohort_report(s, people["coach"], now=NOW)

    assert members["total_members"] == 2
    assert members["active_members"] == 1
    assert members["inactive_members"] == 1
    assert members["avg_check_ins_per_member"] == 1.0
    assert [p["count"] for p in members["check_in_trend"]] == [1, 1]
    assert members["check_in_trend"][-1]["date"] == TODAY.isoformat()

    assert cohorts["total_cohorts"] == 1
    assert cohorts["cohort_breakdown"][0]["member_count"] == 2
    assert cohorts["cohort_breakdown"][0]["avg_engagement"] == 50.0


def test_revenue_report_admin_only(db):
    from core.db import session_scope
    from core.services.reports import revenue_report

    people = _seed()
    with session_scope() as s:
        with pytest.raises(PermissionDeniedError):
            revenue_report(s, people["coach"], now=NOW)
        report = revenue_report(s, people["admin"], year=2026, now=NOW)

    assert report["total_revenue"] == 8000
    assert report["revenue_this_month"] == 5000
    assert report["revenue_last_month"] == 3000
    assert report["monthly_revenue"][9] == {"month": "2026-10", "revenue": 5000, "invoice_count": 1}
    assert report["monthly_revenue"][0]["revenue"] == 0
    statuses = {r["status"]: r for r in report["invoices_by_status"]}
    assert statuses["unpaid"] == {"status": "unpaid", "count": 1, "amount": 2000}
    assert report["top_clients"][0]["id"] == people["c1"]


def test_compliance_counts_members_who_have_not_started(db):
    from core.db import session_scope
    from core.services.reports import compliance_report

    people = _seed()
    with session_scope() as s:
        report = compliance_report(s, people["coach"])

    assert report["total_questionnaires"] == 1
    assert report["completed_responses"] == 1
    assert report["pending_responses"] == 1
    assert report["completion_rate"] == 50.0
    assert report["responses_by_week"] == [{"week_number": 1, "completed": 1, "pending": 1, "total": 2}]


def test_session_attendance(db):
    from core.db import session_scope
    from core.services.reports import session_attendance_report

    people = _seed()
    with session_scope() as s:
        report = session_attendance_report(s, people["coach"], now=NOW)

    assert report["total_sessions"] == 2
    assert report["completed_sessions"] == 1
    assert report["upcoming_sessions"] == 1
    assert report["attendance_rate"] == 50.0
    assert report["no_show_rate"] == 50.0
    assert report["average_occupancy"] == 5.0
    assert report["attendance_trend"] == [{"date": "2026-10-05", "attended": 1, "no_show": 1, "total": 2}]
    assert report["popular_class_types"][0]["name"] == "Strength"


def test_membership_churn(db):
    from core.db import session_scope
    from core.models import MembershipPlan, UserMembership
    from core.services.reports import membership_report

    people = _seed()
    with session_scope() as s:
        plan = MembershipPlan(name="Ten pack", type="pack", total_sessions=10)
        s.add(plan)
        s.flush()
        s.add_all(
            [
                UserMembership(user_id=people["c1"], plan_id=plan.id, status="active", start_date=TODAY,
                               updated_at=NOW - timedelta(days=1)),
                UserMembership(user_id=people["c1"], plan_id=plan.id, status="cancelled", start_date=TODAY,
                               updated_at=NOW - timedelta(days=1)),
            ]
        )
        s.flush()
        report = membership_report(s, people["admin"], now=NOW)

    assert report["total_active_memberships"] == 1
    assert report["churn_rate"] == 50.0
    assert report["plan_popularity"] == [{"plan_name": "Ten pack", "type": "pack", "active_count": 1}]


def test_export_csv_and_json(db):
    from core.db import session_scope
    from core.services.reports import export_report

    people = _seed()
    with session_scope() as s:
        csv_export = export_report(s, people["coach"], "members", "csv", now=NOW)
        json_export = export_report(s, people["admin"], "revenue", "json", now=NOW)
        with pytest.raises(PermissionDeniedError):
            export_report(s, people["coach"], "revenue", "csv", now=NOW)
        with pytest.raises(ValidationError):
            export_report(s, people["coach"], "invoices", "csv", now=NOW)
        with pytest.raises(ValidationError):
            export_report(s, people["coach"], "members", "xlsx", now=NOW)

    assert csv_export["filename"] == "members-report-2026-10-16.csv"
    assert csv_export["content_type"] == "text/csv"
    assert csv_export["content"].startswith("Member Engagement Report\nMetric,Value\nTotal Members,2\n")
    assert "Check-in Trend" in csv_export["content"]

    assert json_export["filename"] == "revenue-report-2026-10-16.json"
    assert json.loads(json_export["content"])["total_revenue"] == 8000


def test_revenue_csv_formats_money(db):
    from core.db import session_scope
    from core.services.reports import report_to_csv, revenue_report

    people = _seed()
    with session_scope() as s:
        content = report_to_csv(revenue_report(s, people["admin"], now=NOW), "revenue")
    assert "Total Revenue,£80.00" in content
    assert "2026-10,£50.00,1" in content
