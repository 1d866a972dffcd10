"""Tests for Pydantic input validation models."""

from __future__ import annotations

from datetime import date, datetime, timedelta

import pytest
from pydantic import ValidationError

from core.validators import (
    ClassSessionInput,
    CohortCreateInput,
    EntryInput,
    InvoiceCreateInput,
    MembershipPlanInput,
    RecurringSessionsInput,
    SystemSettingsUpdate,
    UserCreateInput,
)


# --- UserCreateInput ---

def test_user_email_and_role_normalized():
    u = UserCreateInput(email="Ada@Example.COM", password="Str0ng!Passw0rd", role="Coach")
    assert u.email == "ada@example.com"
    assert u.role == "coach"


def test_user_unknown_role():
    with pytest.raises(ValidationError):
        UserCreateInput(email="a@example.com", password="Str0ng!Passw0rd", role="owner")


def test_user_bad_email():
    with pytest.raises(ValidationError):
        UserCreateInput(email="not-an-email", password="Str0ng!Passw0rd")


# --- EntryInput ---

def test_entry_tracks_fields_set():
    e = EntryInput(date=date(2026, 10, 1), steps=9000)
    assert e.model_fields_set == {"date", "steps"}
    assert e.weight is None


def test_entry_out_of_range_stress():
    with pytest.raises(ValidationError):
        EntryInput(perceived_stress=11)


def test_entry_negative_steps():
    with pytest.raises(ValidationError):
        EntryInput(steps=-1)


# --- CohortCreateInput ---

def test_cohort_name_stripped():
    c = CohortCreateInput(name="  Autumn  ", start_date=date(2026, 10, 1))
    assert c.name == "Autumn"


def test_cohort_blank_name():
    with pytest.raises(ValidationError):
        CohortCreateInput(name="   ", start_date=date(2026, 10, 1))


# --- sessions ---

def test_session_end_must_follow_start():
    start = datetime(2026, 10, 20, 7, 0)
    with pytest.raises(ValidationError):
        ClassSessionInput(title="Strength", start_time=start, end_time=start)
    ok = ClassSessionInput(title="Strength", start_time=start, end_time=start + timedelta(hours=1))
    assert ok.max_occupancy is None


def test_recurring_sessions_time_format():
    with pytest.raises(ValidationError):
        RecurringSessionsInput(
            title="Run club", day_of_week=2, start_time="7:00", end_time="08:00", start_date=date(2026, 10, 1), weeks=4
        )
    with pytest.raises(ValidationError):
        RecurringSessionsInput(
            title="Run club", day_of_week=7, start_time="07:00", end_time="08:00", start_date=date(2026, 10, 1), weeks=4
        )


# --- MembershipPlanInput ---

def test_plan_type_requirements():
    with pytest.raises(ValidationError):
        MembershipPlanInput(name="Weekly", type="recurring")
    with pytest.raises(ValidationError):
        MembershipPlanInput(name="Ten pack", type="pack")
    with pytest.raises(ValidationError):
        MembershipPlanInput(name="Six weeks", type="prepaid")
    plan = MembershipPlanInput(name="Ten pack", type="pack", total_sessions=10, pack_price=8000)
    assert plan.late_cancel_cutoff_hours == 2
    assert plan.allow_repeat_purchase is True


def test_plan_unknown_type():
    with pytest.raises(ValidationError):
        MembershipPlanInput(name="Drop in", type="dropin")


# --- InvoiceCreateInput ---

def test_invoice_month_pattern():
    assert InvoiceCreateInput(user_id=1, month="2026-10", amount=100).month == "2026-10"
    with pytest.raises(ValidationError):
        InvoiceCreateInput(user_id=1, month="2026-13", amount=100)
    with pytest.raises(ValidationError):
        InvoiceCreateInput(user_id=1, month="2026-10", amount=-1)


# --- SystemSettingsUpdate ---

def test_system_settings_rejects_unknown_keys():
    with pytest.raises(ValidationError):
        SystemSettingsUpdate.model_validate({"maxClients": 10})


def test_system_settings_partial():
    update = SystemSettingsUpdate.model_validate({"maxClientsPerCoach": 40, "notificationTimeUtc": "07:30"})
    assert update.model_dump(exclude_unset=True) == {"maxClientsPerCoach": 40, "notificationTimeUtc": "07:30"}
    with pytest.raises(ValidationError):
        SystemSettingsUpdate.model_validate({"notificationTimeUtc": "25:00"})
