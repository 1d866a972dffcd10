from __future__ import annotations

from typing import Annotated, Optional

from fastapi import APIRouter, Depends

from api.auth import TokenData, get_current_user, require_admin, require_client, require_coach
from api.schemas import BundleOut, MessageOut, ResponseOut, WeeklyResponsesOut
from core.db import session_scope
from core.services import questionnaires as questionnaire_service
from core.validators import QuestionnaireBundleInput, QuestionnaireBundleUpdateInput, QuestionnaireResponseInput

router = APIRouter(prefix="/questionnaires", tags=["questionnaires"])


@router.get("/cohorts/{cohort_id}", response_model=list[BundleOut])
def list_bundles(cohort_id: int, current_user: Annotated[TokenData, Depends(get_current_user)]):
    with session_scope() as s:
        return [BundleOut.model_validate(b) for b in questionnaire_service.list_bundles(s, cohort_id)]


@router.get("/cohorts/{cohort_id}/weeks/{week_number}", response_model=Optional[BundleOut])
def get_bundle(cohort_id: int, week_number: int, current_user: Annotated[TokenData, Depends(get_current_user)]):
    with session_scope() as s:
        bundle = questionnaire_service.get_bundle(s, cohort_id, week_number)
        return BundleOut.model_validate(bundle) if bundle else None


@router.get("/cohorts/{cohort_id}/weeks/{week_number}/responses", response_model=WeeklyResponsesOut)
def weekly_responses(cohort_id: int, week_number: int, coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        result = questionnaire_service.get_weekly_responses(s, cohort_id, week_number)
        return WeeklyResponsesOut(
            bundle=BundleOut.model_validate(result["bundle"]) if result["bundle"] else None,
            responses=[ResponseOut.model_validate(r) for r in result["responses"]],
            completed=result["completed"],
            in_progress=result["in_progress"],
        )


@router.post("", response_model=BundleOut, status_code=201)
def create_bundle(body: QuestionnaireBundleInput, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        return BundleOut.model_validate(questionnaire_service.create_bundle(s, admin.actor, body))


@router.patch("/{bundle_id}", response_model=BundleOut)
def update_bundle(
    bundle_id: int, body: QuestionnaireBundleUpdateInput, admin: Annotated[TokenData, Depends(require_admin)]
):
    with session_scope() as s:
        return BundleOut.model_validate(questionnaire_service.update_bundle(s, admin.actor, bundle_id, body))


@router.delete("/{bundle_id}", response_model=MessageOut)
def delete_bundle(bundle_id: int, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        questionnaire_service.delete_bundle(s, admin.actor, bundle_id)
    return MessageOut(message="Questionnaire deleted")


@router.put("/responses", response_model=ResponseOut)
def save_response(body: QuestionnaireResponseInput, client: Annotated[TokenData, Depends(require_client)]):
    with session_scope() as s:
        return ResponseOut.model_validate(questionnaire_service.upsert_response(s, client.user_id, body))


@router.get("/responses/me", response_model=list[ResponseOut])
def my_responses(client: Annotated[TokenData, Depends(require_client)], cohort_id: Optional[int] = None):
    with session_scope() as s:
        return [
            ResponseOut.model_validate(r) for r in questionnaire_service.get_my_responses(s, client.user_id, cohort_id)
        ]
