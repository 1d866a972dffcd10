from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from api.auth import TokenData, require_coach
from api.schemas import CoachNoteOut, MessageOut, WeekNumberOut
from core.db import session_scope
from core.services import coach_notes as notes_service
from core.validators import CoachNoteInput, CoachNoteUpdateInput

router = APIRouter(prefix="/coach-notes", tags=["coach-notes"])


@router.get("/clients/{client_id}", response_model=list[CoachNoteOut])
def client_notes(client_id: int, coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        return [CoachNoteOut.model_validate(n) for n in notes_service.get_client_notes(s, coach.actor, client_id)]


@router.get("/clients/{client_id}/weeks/{week_number}", response_model=list[CoachNoteOut])
def client_week_notes(client_id: int, week_number: int, coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        notes = notes_service.get_client_week_notes(s, coach.actor, client_id, week_number)
        return [CoachNoteOut.model_validate(n) for n in notes]


@router.get("/clients/{client_id}/current-week", response_model=WeekNumberOut)
def client_current_week(client_id: int, coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        return WeekNumberOut(client_id=client_id, week_number=notes_service.current_week_number(s, client_id))


@router.post("", response_model=CoachNoteOut, status_code=201)
def create_note(body: CoachNoteInput, coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        return CoachNoteOut.model_validate(notes_service.create_coach_note(s, coach.actor, body))


@router.patch("/{note_id}", response_model=CoachNoteOut)
def update_note(note_id: int, body: CoachNoteUpdateInput, coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        return CoachNoteOut.model_validate(notes_service.update_coach_note(s, coach.actor, note_id, body))


@router.delete("/{note_id}", response_model=MessageOut)
def delete_note(note_id: int, coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        notes_service.delete_coach_note(s, coach.actor, note_id)
    return MessageOut(message="Note deleted")
