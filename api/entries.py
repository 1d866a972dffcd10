from __future__ import annotations

from datetime import date
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query

from api.auth import TokenData, get_current_user, require_client, require_coach
from api.schemas import CheckInConfigOut, CheckInStatsOut, CohortOut, EntryOut, FrequencyConfigOut, UserOut
from core.db import session_scope
from core.errors import PermissionDeniedError
from core.services import entries as entry_service
from core.validators import CheckInConfigInput, EntryInput, FrequencyInput

router = APIRouter(tags=["entries"])


def _target_user(current_user: TokenData, user_id: Optional[int]) -> int:
    target = user_id if user_id is not None else current_user.user_id
    if current_user.role == "client" and target != current_user.user_id:
        raise PermissionDeniedError("Forbidden: cannot view other users' entries")
    return target


@router.post("/entries", response_model=EntryOut)
def upsert_entry(body: EntryInput, client: Annotated[TokenData, Depends(require_client)]):
    with session_scope() as s:
        return EntryOut.model_validate(entry_service.upsert_entry(s, client.actor, body))


@router.get("/entries", response_model=list[EntryOut])
def list_entries(
    current_user: Annotated[TokenData, Depends(get_current_user)],
    user_id: Optional[int] = None,
    limit: int = Query(100, ge=1, le=500),
):
    with session_scope() as s:
        rows = entry_service.get_entries(s, current_user.actor, user_id=user_id, limit=limit)
        return [EntryOut.model_validate(r) for r in rows]


@router.get("/entries/by-date/{day}", response_model=Optional[EntryOut])
def entry_by_date(day: date, current_user: Annotated[TokenData, Depends(get_current_user)]):
    with session_scope() as s:
        entry = entry_service.get_entry_by_date(s, current_user.actor, day)
        return EntryOut.model_validate(entry) if entry else None


@router.get("/entries/stats", response_model=CheckInStatsOut)
def entry_stats(current_user: Annotated[TokenData, Depends(get_current_user)], user_id: Optional[int] = None):
    target = _target_user(current_user, user_id)
    with session_scope() as s:
        return CheckInStatsOut(**entry_service.get_check_in_stats(s, target))


@router.get("/check-in-config", response_model=CheckInConfigOut)
def read_check_in_config(
    current_user: Annotated[TokenData, Depends(get_current_user)], cohort_id: Optional[int] = None
):
    with session_scope() as s:
        if cohort_id is None:
            return entry_service.get_check_in_config(s, user_id=current_user.user_id)
        return entry_service.get_check_in_config(s, cohort_id=cohort_id)


@router.put("/check-in-config/{cohort_id}", response_model=CheckInConfigOut)
def write_check_in_config(
    cohort_id: int, body: CheckInConfigInput, coach: Annotated[TokenData, Depends(require_coach)]
):
    with session_scope() as s:
        return entry_service.update_check_in_config(s, coach.actor, cohort_id, body)


@router.get("/check-in-frequency", response_model=FrequencyConfigOut)
def read_check_in_frequency(
    current_user: Annotated[TokenData, Depends(get_current_user)], user_id: Optional[int] = None
):
    target = _target_user(current_user, user_id)
    with session_scope() as s:
        return entry_service.get_check_in_frequency_config(s, target)


@router.put("/check-in-frequency/cohorts/{cohort_id}", response_model=CohortOut)
def write_cohort_frequency(
    cohort_id: int, body: FrequencyInput, coach: Annotated[TokenData, Depends(require_coach)]
):
    with session_scope() as s:
        cohort = entry_service.update_cohort_check_in_frequency(s, coach.actor, cohort_id, body.days)
        return CohortOut.model_validate(cohort)


@router.put("/check-in-frequency/users/{user_id}", response_model=UserOut)
def write_user_frequency(user_id: int, body: FrequencyInput, coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        user = entry_service.update_user_check_in_frequency(s, coach.actor, user_id, body.days)
        return UserOut.model_validate(user)
