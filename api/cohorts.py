from __future__ import annotations

from typing import Annotated, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api.auth import TokenData, require_admin, require_coach
from api.schemas import ClassTypeOut, CoachOut, CohortMembershipOut, CohortOut, MessageOut
from core.db import session_scope
from core.errors import PermissionDeniedError
from core.permissions import is_admin
from core.services import cohorts as cohort_service
from core.validators import (
    CohortCoachInput,
    CohortCreateInput,
    CohortMemberInput,
    CohortMembershipStatusInput,
    CohortStatusInput,
    CohortUpdateInput,
    SessionAccessInput,
)

router = APIRouter(prefix="/cohorts", tags=["cohorts"])


def _ensure_cohort_access(s: Session, user: TokenData, cohort_id: int) -> None:
    if is_admin(user.actor):
        return
    if cohort_id not in cohort_service.coach_cohort_ids(s, user.user_id):
        raise PermissionDeniedError("Forbidden: not assigned to this cohort")


@router.get("", response_model=list[CohortOut])
def list_cohorts(coach: Annotated[TokenData, Depends(require_coach)], status: Optional[str] = None):
    with session_scope() as s:
        rows = cohort_service.list_cohorts(s, coach.actor, status=status)
        return [
            CohortOut.model_validate(r["cohort"]).model_copy(
                update={"member_count": r["member_count"], "coach_count": r["coach_count"]}
            )
            for r in rows
        ]


@router.post("", response_model=CohortOut, status_code=201)
def create_cohort(body: CohortCreateInput, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        return CohortOut.model_validate(cohort_service.create_cohort(s, body))


@router.get("/{cohort_id}", response_model=CohortOut)
def get_cohort(cohort_id: int, coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        _ensure_cohort_access(s, coach, cohort_id)
        return CohortOut.model_validate(cohort_service.get_cohort(s, cohort_id))


@router.patch("/{cohort_id}", response_model=CohortOut)
def update_cohort(cohort_id: int, body: CohortUpdateInput, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        return CohortOut.model_validate(cohort_service.update_cohort(s, cohort_id, body))


@router.patch("/{cohort_id}/status", response_model=CohortOut)
def update_cohort_status(
    cohort_id: int, body: CohortStatusInput, admin: Annotated[TokenData, Depends(require_admin)]
):
    with session_scope() as s:
        return CohortOut.model_validate(cohort_service.update_cohort_status(s, cohort_id, body.status))


@router.delete("/{cohort_id}", response_model=MessageOut)
def delete_cohort(cohort_id: int, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        cohort_service.delete_cohort(s, cohort_id)
    return MessageOut(message="Cohort deleted")


@router.get("/{cohort_id}/members", response_model=list[CohortMembershipOut])
def list_members(cohort_id: int, coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        _ensure_cohort_access(s, coach, cohort_id)
        return [CohortMembershipOut.model_validate(m) for m in cohort_service.list_members(s, cohort_id)]


@router.post("/{cohort_id}/members", response_model=CohortMembershipOut, status_code=201)
def add_member(cohort_id: int, body: CohortMemberInput, coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        _ensure_cohort_access(s, coach, cohort_id)
        membership, invite = cohort_service.add_member(s, cohort_id, body.user_id)
        result = CohortMembershipOut.model_validate(membership)
    cohort_service.send_cohort_invite_email(invite)
    return result


@router.patch("/{cohort_id}/members/{user_id}", response_model=CohortMembershipOut)
def update_member_status(
    cohort_id: int,
    user_id: int,
    body: CohortMembershipStatusInput,
    coach: Annotated[TokenData, Depends(require_coach)],
):
    with session_scope() as s:
        _ensure_cohort_access(s, coach, cohort_id)
        membership = cohort_service.update_membership_status(s, cohort_id, user_id, body.status)
        return CohortMembershipOut.model_validate(membership)


@router.delete("/{cohort_id}/members/{user_id}", response_model=MessageOut)
def remove_member(cohort_id: int, user_id: int, coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        _ensure_cohort_access(s, coach, cohort_id)
        cohort_service.remove_member(s, cohort_id, user_id)
    return MessageOut(message="Member removed")


@router.get("/{cohort_id}/coaches", response_model=list[CoachOut])
def list_cohort_coaches(cohort_id: int, coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        return [CoachOut.model_validate(c) for c in cohort_service.list_coaches(s, cohort_id)]


@router.post("/{cohort_id}/coaches", response_model=MessageOut, status_code=201)
def add_coach(cohort_id: int, body: CohortCoachInput, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        cohort_service.add_coach(s, cohort_id, body.coach_id)
    return MessageOut(message="Coach assigned")


@router.delete("/{cohort_id}/coaches/{coach_id}", response_model=MessageOut)
def remove_coach(cohort_id: int, coach_id: int, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        cohort_service.remove_coach(s, cohort_id, coach_id)
    return MessageOut(message="Coach removed")


@router.get("/{cohort_id}/session-access", response_model=list[ClassTypeOut])
def get_session_access(cohort_id: int, coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        return [ClassTypeOut.model_validate(c) for c in cohort_service.get_cohort_session_access(s, cohort_id)]


@router.put("/{cohort_id}/session-access", response_model=list[ClassTypeOut])
def set_session_access(
    cohort_id: int, body: SessionAccessInput, admin: Annotated[TokenData, Depends(require_admin)]
):
    with session_scope() as s:
        rows = cohort_service.set_cohort_session_access(s, cohort_id, body.class_type_ids)
        return [ClassTypeOut.model_validate(c) for c in rows]
