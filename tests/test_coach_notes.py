"""Tests for coach notes on clients."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from core.errors import NotFoundError, PermissionDeniedError
from core.permissions import Actor
from core.validators import CoachNoteInput, CoachNoteUpdateInput

TODAY = date(2026, 10, 16)
ADMIN = Actor(id=1, role="admin")


@pytest.fixture
def db(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{tmp_path / 'coach_notes.db'}")
    monkeypatch.setenv("APP_ENV", "test")
    from core.db import Base, get_engine, reset_engine

    reset_engine()
    Base.metadata.create_all(bind=get_engine())
    yield
    reset_engine()


def _setup() -> dict:
    """Coach assigned to a cohort with one active client; a second coach and an unassigned client."""
    from core.db import session_scope
    from core.models import CoachCohortMembership, Cohort, CohortMembership, User

    with session_scope() as s:
        admin = User(email="admin@example.com", password_hash="x", role="admin")
        coach = User(email="coach@example.com", name="Coach Carter", password_hash="x", role="coach")
        other_coach = User(email="other@example.com", password_hash="x", role="coach")
        client = User(email="client@example.com", password_hash="x", role="client")
        stranger = User(email="stranger@example.com", password_hash="x", role="client")
        cohort = Cohort(name="Autumn", start_date=TODAY - timedelta(days=15))
        s.add_all([admin, coach, other_coach, client, stranger, cohort])
        s.flush()
        s.add(CoachCohortMembership(coach_id=coach.id, cohort_id=cohort.id))
        s.add(CohortMembership(cohort_id=cohort.id, user_id=client.id, status="active"))
        s.flush()
        return {
            "coach": Actor(id=coach.id, role="coach"),
            "other_coach": Actor(id=other_coach.id, role="coach"),
            "client": client.id,
            "stranger": stranger.id,
        }


def test_coach_writes_and_lists_notes_newest_week_first(db):
    from core.db import session_scope
    from core.services.coach_notes import create_coach_note, get_client_notes, get_client_week_notes

    ids = _setup()
    with session_scope() as s:
        create_coach_note(s, ids["coach"], CoachNoteInput(client_id=ids["client"], week_number=1, notes=" Strong start "))
        create_coach_note(s, ids["coach"], CoachNoteInput(client_id=ids["client"], week_number=3, notes="Sleep dipped"))
        notes = get_client_notes(s, ids["coach"], ids["client"])
        assert [n.week_number for n in notes] == [3, 1]
        assert notes[1].notes == "Strong start"
        assert notes[0].coach.name == "Coach Carter"
        week_one = get_client_week_notes(s, ids["coach"], ids["client"], 1)
        assert [n.notes for n in week_one] == ["Strong start"]


def test_notes_need_an_active_client_in_the_coachs_cohorts(db):
    from core.db import session_scope
    from core.models import CohortMembership
    from core.services.coach_notes import create_coach_note, get_client_notes

    ids = _setup()
    with session_scope() as s:
        with pytest.raises(PermissionDeniedError, match="access to this client"):
            create_coach_note(s, ids["coach"], CoachNoteInput(client_id=ids["stranger"], week_number=1, notes="Hi"))
        with pytest.raises(PermissionDeniedError):
            get_client_notes(s, ids["other_coach"], ids["client"])
        with pytest.raises(NotFoundError, match="Client not found"):
            create_coach_note(s, ids["coach"], CoachNoteInput(client_id=999, week_number=1, notes="Hi"))
        with pytest.raises(PermissionDeniedError):
            get_client_notes(s, Actor(id=ids["client"], role="client"), ids["client"])

        membership = s.query(CohortMembership).filter_by(user_id=ids["client"]).one()
        membership.status = "paused"
        s.flush()
        with pytest.raises(PermissionDeniedError):
            get_client_notes(s, ids["coach"], ids["client"])
        assert get_client_notes(s, ADMIN, ids["client"]) == []


def test_only_the_author_or_an_admin_changes_a_note(db):
    from core.db import session_scope
    from core.models import CoachNote
    from core.services.coach_notes import create_coach_note, delete_coach_note, update_coach_note

    ids = _setup()
    with session_scope() as s:
        note = create_coach_note(s, ids["coach"], CoachNoteInput(client_id=ids["client"], week_number=2, notes="Draft"))
        with pytest.raises(PermissionDeniedError, match="edit your own notes"):
            update_coach_note(s, ids["other_coach"], note.id, CoachNoteUpdateInput(notes="Hijack"))
        with pytest.raises(PermissionDeniedError, match="delete your own notes"):
            delete_coach_note(s, ids["other_coach"], note.id)
        assert update_coach_note(s, ids["coach"], note.id, CoachNoteUpdateInput(notes="Final")).notes == "Final"
        assert update_coach_note(s, ADMIN, note.id, CoachNoteUpdateInput(notes="Edited by admin")).notes == "Edited by admin"
        delete_coach_note(s, ids["coach"], note.id)
        assert s.get(CoachNote, note.id) is None
        with pytest.raises(NotFoundError, match="Note not found"):
            delete_coach_note(s, ids["coach"], note.id)


def test_current_week_number_follows_the_active_cohort(db):
    from core.db import session_scope
    from core.services.coach_notes import current_week_number

    ids = _setup()
    with session_scope() as s:
        assert current_week_number(s, ids["client"], today=TODAY) == 3
        # cohort not started yet still reports week 1
        assert current_week_number(s, ids["client"], today=TODAY - timedelta(days=30)) == 1
        assert current_week_number(s, ids["stranger"], today=TODAY) == TODAY.isocalendar()[1]
