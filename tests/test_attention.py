"""Tests for attention scoring and the cached queue."""

from __future__ import annotations

from datetime import date, datetime, timedelta

import pytest

from core.services.attention import (
    ClientActivity,
    CoachLoad,
    CohortLoad,
    effective_frequency,
    priority_for,
    score_client,
    score_coach,
    score_cohort,
)

TODAY = date(2026, 10, 16)
NOW = datetime(2026, 10, 16, 12, 0)


def _activity(**overrides) -> ClientActivity:
    values = {
        "user_id": 1,
        "name": "Client",
        "email": "client@example.com",
        "frequency_days": 7,
        "last_entry_date": TODAY,
        "entry_dates": [TODAY - timedelta(days=d) for d in range(14)],
        "cohort_count": 1,
    }
    values.update(overrides)
    return ClientActivity(**values)


@pytest.fixture
def db(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{tmp_path / 'attention.db'}")
    monkeypatch.setenv("APP_ENV", "test")
    from core.db import Base, get_engine, reset_engine

    reset_engine()
    Base.metadata.create_all(bind=get_engine())
    yield
    reset_engine()


def test_priority_thresholds():
    assert priority_for(0) == "green"
    assert priority_for(29) == "green"
    assert priority_for(30) == "amber"
    assert priority_for(59) == "amber"
    assert priority_for(60) == "red"
    assert priority_for(100) == "red"


def test_effective_frequency_precedence():
    assert effective_frequency(3, 14, 7) == 3
    assert effective_frequency(None, 14, 7) == 14
    assert effective_frequency(None, None, 5) == 5
    assert effective_frequency(None, None, None) == 7


def test_engaged_client_scores_zero():
    item = score_client(_activity(), TODAY)
    assert item.score == 0
    assert item.priority == "green"
    assert item.reasons == []


def test_client_with_no_entries_is_red():
    item = score_client(_activity(last_entry_date=None, entry_dates=[]), TODAY)
    assert item.score == 70
    assert item.priority == "red"
    assert "No entries in last 14 days" in item.reasons
    assert item.metadata["entriesLast14Days"] == 0


def test_client_without_cohort_gets_flagged():
    item = score_client(_activity(cohort_count=0), TODAY)
    assert item.score == 20
    assert item.priority == "green"
    assert "Not assigned to any cohort" in item.reasons
    assert "Assign client to a cohort" in item.suggested_actions


def test_single_missed_checkin_depends_on_policy():
    last = TODAY - timedelta(days=8)
    activity = _activity(last_entry_date=last, entry_dates=[last])

    relaxed = score_client(activity, TODAY, policy="option_a")
    assert relaxed.score == 45
    assert relaxed.priority == "amber"
    assert "Missed 1 check-in in last 7 days" in relaxed.reasons

    strict = score_client(activity, TODAY, policy="option_b")
    assert strict.score == 60
    assert strict.priority == "red"


def test_daily_client_missing_several_days():
    last = TODAY - timedelta(days=3)
    dates = [TODAY - timedelta(days=d) for d in range(3, 14)]
    item = score_client(_activity(frequency_days=1, last_entry_date=last, entry_dates=dates), TODAY)
    assert item.priority == "red"
    assert item.score == 60
    assert "No entry in the last 1 day" in item.reasons
    assert item.metadata["expectedInWindow"] == 7


def test_long_silence_over_thirty_days():
    last = TODAY - timedelta(days=45)
    item = score_client(_activity(last_entry_date=last, entry_dates=[]), TODAY)
    assert "No entries for 45 days" in item.reasons
    assert item.metadata["daysSinceLastEntry"] == 45
    assert item.score == 70


def test_low_engagement_client_below_expected_entries():
    dates = [TODAY - timedelta(days=d) for d in range(4)]
    item = score_client(_activity(frequency_days=2, last_entry_date=TODAY, entry_dates=dates), TODAY)
    assert item.score == 15
    assert item.priority == "green"
    assert item.reasons == ["Only 4 entries in last 14 days (low engagement)"]
    assert item.metadata["entriesLast14Days"] == 4


def test_overloaded_coach():
    item = score_coach(CoachLoad(1, "Coach", "c@example.com", 2, 60, 60 * 14))
    assert item.score == 50
    assert item.priority == "amber"
    assert item.metadata["recommendedMax"] == 50
    assert "Consider adding another coach" in item.suggested_actions


def test_coach_without_cohorts():
    item = score_coach(CoachLoad(1, "Coach", "c@example.com", 0, 0, 0))
    assert item.score == 30
    assert item.reasons == ["No cohorts assigned"]


def test_underutilised_coach_with_low_engagement():
    item = score_coach(CoachLoad(1, "Coach", "c@example.com", 1, 3, 3), max_clients=50, min_clients=10)
    assert item.score == 35
    assert item.priority == "amber"
    assert item.metadata["recommendedMin"] == 10
    assert item.metadata["engagementRate"] == round(3 / 42, 4)


def test_coach_with_moderate_client_engagement():
    item = score_coach(CoachLoad(1, "Coach", "c@example.com", 1, 10, 56))
    assert item.score == 15
    assert item.priority == "green"
    assert item.reasons == ["Moderate client engagement: 40% entry completion"]
    assert item.suggested_actions == ["Monitor client engagement"]
    assert item.metadata["engagementRate"] == 0.4


def test_empty_cohort_without_coach_is_red():
    item = score_cohort(CohortLoad(1, "Empty", 0, 0, 0))
    assert item.score == 70
    assert item.priority == "red"
    assert "No coach assigned" in item.reasons


def test_highly_engaged_cohort_clamps_to_zero():
    item = score_cohort(CohortLoad(1, "Busy", 2, 1, 28))
    assert item.score == 0
    assert item.priority == "green"
    assert item.reasons == ["High engagement: 100% entry completion"]


def _seed_queue():
    from core.db import session_scope
    from core.models import CoachCohortMembership, Cohort, CohortMembership, Entry, User

    with session_scope() as s:
        engaged = User(email="engaged@example.com", name="Engaged", password_hash="x", role="client")
        silent = User(email="silent@example.com", name="Silent", password_hash="x", role="client")
        coach = User(email="coach@example.com", name="Coach", password_hash="x", role="coach")
        idle_coach = User(email="idle@example.com", name="Idle", password_hash="x", role="coach")
        cohort = Cohort(name="Autumn", start_date=TODAY - timedelta(weeks=2), status="active")
        s.add_all([engaged, silent, coach, idle_coach, cohort])
        s.flush()
        s.add(CoachCohortMembership(coach_id=coach.id, cohort_id=cohort.id))
        s.add(CohortMembership(cohort_id=cohort.id, user_id=engaged.id, status="active"))
        s.add(CohortMembership(cohort_id=cohort.id, user_id=silent.id, status="active"))
        for d in range(14):
            s.add(Entry(user_id=engaged.id, date=TODAY - timedelta(days=d)))
        return engaged.id, silent.id, idle_coach.id


def test_queue_scores_clients_and_coaches(db):
    from core.db import session_scope
    from core.services.attention import calculate_attention_queue, get_attention_queue

    engaged_id, silent_id, idle_coach_id = _seed_queue()
    with session_scope() as s:
        queue = calculate_attention_queue(s, force_refresh=True, now=NOW)

    red_users = {i.entity_id for i in queue["red"] if i.entity_type == "user"}
    assert silent_id in red_users
    all_items = queue["red"] + queue["amber"] + queue["green"]
    assert engaged_id not in {i.entity_id for i in all_items if i.entity_type == "user"}
    assert idle_coach_id in {i.entity_id for i in all_items if i.entity_type == "coach"}

    with session_scope() as s:
        cached = get_attention_queue(s, now=NOW + timedelta(minutes=5))
    assert cached["total_clients"] == 2
    assert cached["last_calculated"] == NOW
    silent = next(i for i in cached["red"] if i.entity_id == silent_id)
    assert silent.entity_name == "Silent"
    assert silent.calculated_at == NOW


def test_cached_scores_expire(db):
    from core.db import session_scope
    from core.services.attention import calculate_attention_queue, get_cached_scores

    _seed_queue()
    with session_scope() as s:
        calculate_attention_queue(s, force_refresh=True, now=NOW)
    with session_scope() as s:
        assert get_cached_scores(s, now=NOW + timedelta(minutes=30))
        assert get_cached_scores(s, now=NOW + timedelta(minutes=61)) == []


def test_client_score_is_cached_per_user(db):
    from core.db import session_scope
    from core.models import AttentionScore
    from core.services.attention import get_client_attention_score, recalculate_client_attention

    _, silent_id, _ = _seed_queue()
    with session_scope() as s:
        item = get_client_attention_score(s, silent_id, now=NOW)
        assert item.priority == "red"
    with session_scope() as s:
        assert recalculate_client_attention(s, [silent_id, silent_id], now=NOW) == 1
        rows = s.query(AttentionScore).filter_by(entity_type="user", entity_id=silent_id).all()
        assert len(rows) == 1


def test_recalculation_drops_rows_for_clients_back_on_track(db):
    from core.db import session_scope
    from core.models import AttentionScore, Entry
    from core.services.attention import get_client_attention_score, recalculate_client_attention

    _, silent_id, _ = _seed_queue()
    with session_scope() as s:
        assert get_client_attention_score(s, silent_id, now=NOW).priority == "red"
    with session_scope() as s:
        for d in range(14):
            s.add(Entry(user_id=silent_id, date=TODAY - timedelta(days=d)))
    with session_scope() as s:
        assert recalculate_client_attention(s, [silent_id], now=NOW + timedelta(minutes=5)) == 0
    with session_scope() as s:
        assert s.query(AttentionScore).filter_by(entity_type="user", entity_id=silent_id).count() == 0
        assert get_client_attention_score(s, silent_id, now=NOW + timedelta(minutes=5)) is None


def test_adherence_settings_require_admin_and_expire_cache(db):
    from core.clock import utcnow
    from core.db import session_scope
    from core.errors import PermissionDeniedError
    from core.models import AttentionScore, AuditLog
    from core.permissions import Actor
    from core.services.attention import calculate_attention_queue, update_adherence_settings
    from core.validators import AdherenceSettingsInput

    _seed_queue()
    data = AdherenceSettingsInput(
        adherence_green_minimum=5, adherence_amber_minimum=2, attention_missed_checkins_policy="option_b"
    )
    with session_scope() as s:
        calculate_attention_queue(s, force_refresh=True, now=NOW)
        with pytest.raises(PermissionDeniedError):
            update_adherence_settings(s, Actor(id=1, role="coach"), data)

    with session_scope() as s:
        result = update_adherence_settings(s, Actor(id=1, role="admin"), data)
        assert result["attention_missed_checkins_policy"] == "option_b"
        assert result["adherence_green_minimum"] == 5
        assert all(row.expires_at <= utcnow() for row in s.query(AttentionScore).all())
        assert s.query(AuditLog).filter_by(action="UPDATE_ADHERENCE_SETTINGS").count() == 1


def test_adherence_input_rejects_inverted_thresholds():
    from core.validators import AdherenceSettingsInput

    with pytest.raises(ValueError):
        AdherenceSettingsInput(adherence_green_minimum=2, adherence_amber_minimum=3)
