from __future__ import annotations

from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Query

from api.auth import TokenData, require_admin, require_coach
from api.schemas import AdherenceSettingsOut, AttentionItemOut, AttentionQueueOut
from core.db import session_scope
from core.services import attention as attention_service
from core.validators import AdherenceSettingsInput

router = APIRouter(prefix="/attention", tags=["attention"])


def _queue_out(queue: dict[str, Any]) -> AttentionQueueOut:
    return AttentionQueueOut(
        red=[AttentionItemOut.model_validate(i) for i in queue["red"]],
        amber=[AttentionItemOut.model_validate(i) for i in queue["amber"]],
        green=[AttentionItemOut.model_validate(i) for i in queue["green"]],
        total_clients=queue["total_clients"],
        last_calculated=queue["last_calculated"],
    )


@router.get("", response_model=AttentionQueueOut)
def attention_queue(
    coach: Annotated[TokenData, Depends(require_coach)],
    refresh: bool = False,
    entity_type: Optional[str] = Query(None, pattern="^(user|coach|cohort)$"),
):
    with session_scope() as s:
        return _queue_out(attention_service.get_attention_queue(s, force_refresh=refresh, entity_type=entity_type))


@router.post("/recalculate", response_model=AttentionQueueOut)
def recalculate(coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        return _queue_out(attention_service.get_attention_queue(s, force_refresh=True))


@router.get("/cohorts/{cohort_id}", response_model=AttentionQueueOut)
def cohort_attention(cohort_id: int, coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        return _queue_out(attention_service.get_attention_queue_by_cohort(s, cohort_id))


@router.get("/users/{user_id}", response_model=Optional[AttentionItemOut])
def client_attention(user_id: int, coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        item = attention_service.get_client_attention_score(s, user_id)
        return AttentionItemOut.model_validate(item) if item else None


@router.get("/settings", response_model=AdherenceSettingsOut)
def read_adherence_settings(admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        return attention_service.get_adherence_settings(s)


@router.put("/settings", response_model=AdherenceSettingsOut)
def write_adherence_settings(body: AdherenceSettingsInput, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        return attention_service.update_adherence_settings(s, admin.actor, body)
