from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from core.clock import utctoday
from core.errors import NotFoundError, PermissionDeniedError
from core.models import CoachNote, Cohort, CohortMembership, User
from core.permissions import ensure_coach, is_admin
from core.services.cohorts import coach_has_active_client
from core.services.questionnaires import current_week
from core.validators import CoachNoteInput, CoachNoteUpdateInput

logger = logging.getLogger(__name__)


def _ensure_client_access(s: Session, actor, client_id: int) -> None:
    ensure_coach(actor, "Forbidden: coach access required")
    if is_admin(actor):
        return
    if not coach_has_active_client(s, actor.id, client_id):
        raise PermissionDeniedError("You don't have access to this client")


def _get_note(s: Session, note_id: int) -> CoachNote:
    note = s.get(CoachNote, note_id)
    if note is None:
        raise NotFoundError("Note not found")
    return note


def get_client_notes(s: Session, actor, client_id: int) -> list[CoachNote]:
    _ensure_client_access(s, actor, client_id)
    return list(
        s.execute(
            select(CoachNote)
            .options(selectinload(CoachNote.coach))
            .where(CoachNote.user_id == client_id)
            .order_by(CoachNote.week_number.desc(), CoachNote.created_at.desc(), CoachNote.id.desc())
        ).scalars()
    )


def get_client_week_notes(s: Session, actor, client_id: int, week_number: int) -> list[CoachNote]:
    _ensure_client_access(s, actor, client_id)
    return list(
        s.execute(
            select(CoachNote)
            .options(selectinload(CoachNote.coach))
            .where(CoachNote.user_id == client_id, CoachNote.week_number == week_number)
            .order_by(CoachNote.created_at.desc(), CoachNote.id.desc())
        ).scalars()
    )


def create_coach_note(s: Session, actor, data: CoachNoteInput) -> CoachNote:
    client = s.get(User, data.client_id)
    if client is None or client.role != "client":
        raise NotFoundError("Client not found")
    _ensure_client_access(s, actor, client.id)
    note = CoachNote(user_id=client.id, coach_id=actor.id, week_number=data.week_number, notes=data.notes.strip())
    s.add(note)
    s.flush()
    logger.info(
        "coach_note_created",
        extra={"note_id": note.id, "client_id": client.id, "coach_id": actor.id, "week": note.week_number},
    )
    return note


def update_coach_note(s: Session, actor, note_id: int, data: CoachNoteUpdateInput) -> CoachNote:
    ensure_coach(actor, "Forbidden: coach access required")
    note = _get_note(s, note_id)
    if note.coach_id != actor.id and not is_admin(actor):
        raise PermissionDeniedError("You can only edit your own notes")
    note.notes = data.notes.strip()
    s.flush()
    return note


def delete_coach_note(s: Session, actor, note_id: int) -> None:
    ensure_coach(actor, "Forbidden: coach access required")
    note = _get_note(s, note_id)
    if note.coach_id != actor.id and not is_admin(actor):
        raise PermissionDeniedError("You can only delete your own notes")
    s.delete(note)
    s.flush()
    logger.info("coach_note_deleted", extra={"note_id": note_id, "coach_id": actor.id})


def current_week_number(s: Session, client_id: int, today: Optional[date] = None) -> int:
    """Programme week of the client's first active cohort, else the ISO week of the year."""
    today = today or utctoday()
    cohort = s.execute(
        select(Cohort)
        .join(CohortMembership, CohortMembership.cohort_id == Cohort.id)
        .where(CohortMembership.user_id == client_id, CohortMembership.status == "active")
        .order_by(CohortMembership.joined_at, CohortMembership.id)
    ).scalars().first()
    if cohort is None:
        return today.isocalendar()[1]
    return max(1, current_week(cohort.start_date, today))
