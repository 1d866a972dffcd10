from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, selectinload

from core.clock import utctoday
from core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from core.models import CohortMembership, QuestionnaireBundle, QuestionnaireResponse
from core.permissions import ensure_admin
from core.services.cohorts import get_cohort
from core.validators import QuestionnaireBundleInput, QuestionnaireBundleUpdateInput, QuestionnaireResponseInput

logger = logging.getLogger(__name__)


def current_week(start_date: date, today: date) -> int:
    return (today - start_date).days // 7 + 1


def get_bundle(s: Session, cohort_id: int, week_number: int) -> Optional[QuestionnaireBundle]:
    return s.execute(
        select(QuestionnaireBundle).where(
            QuestionnaireBundle.cohort_id == cohort_id, QuestionnaireBundle.week_number == week_number
        )
    ).scalar_one_or_none()


def list_bundles(s: Session, cohort_id: int) -> list[QuestionnaireBundle]:
    return list(
        s.execute(
            select(QuestionnaireBundle)
            .where(QuestionnaireBundle.cohort_id == cohort_id)
            .order_by(QuestionnaireBundle.week_number)
        ).scalars()
    )


def _get_bundle_by_id(s: Session, bundle_id: int) -> QuestionnaireBundle:
    bundle = s.get(QuestionnaireBundle, bundle_id)
    if bundle is None:
        raise NotFoundError("Questionnaire not found")
    return bundle


def create_bundle(s: Session, actor, data: QuestionnaireBundleInput) -> QuestionnaireBundle:
    ensure_admin(actor, "Forbidden: only admins can manage questionnaires")
    get_cohort(s, data.cohort_id)
    if get_bundle(s, data.cohort_id, data.week_number) is not None:
        raise ConflictError("A questionnaire already exists for this cohort and week")
    bundle = QuestionnaireBundle(**data.model_dump())
    s.add(bundle)
    s.flush()
    logger.info("questionnaire_bundle_created", extra={"bundle_id": bundle.id, "week": bundle.week_number})
    return bundle


def update_bundle(s: Session, actor, bundle_id: int, data: QuestionnaireBundleUpdateInput) -> QuestionnaireBundle:
    ensure_admin(actor, "Forbidden: only admins can manage questionnaires")
    bundle = _get_bundle_by_id(s, bundle_id)
    for key, value in data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(bundle, key, value)
    s.flush()
    return bundle


def delete_bundle(s: Session, actor, bundle_id: int) -> None:
    ensure_admin(actor, "Forbidden: only admins can manage questionnaires")
    bundle = _get_bundle_by_id(s, bundle_id)
    s.execute(delete(QuestionnaireResponse).where(QuestionnaireResponse.bundle_id == bundle_id))
    s.delete(bundle)
    s.flush()


def upsert_response(
    s: Session,
    user_id: int,
    data: QuestionnaireResponseInput,
    today: Optional[date] = None,
) -> QuestionnaireResponse:
    """Save progress on the current week's questionnaire.

    Only the cohort's current week accepts answers, and a completed
    response can no longer change.
    """
    bundle = s.execute(
        select(QuestionnaireBundle)
        .options(selectinload(QuestionnaireBundle.cohort))
        .where(QuestionnaireBundle.id == data.bundle_id)
    ).scalar_one_or_none()
    if bundle is None or not bundle.is_active:
        raise NotFoundError("Questionnaire not found")

    member = s.execute(
        select(CohortMembership.id).where(
            CohortMembership.cohort_id == bundle.cohort_id,
            CohortMembership.user_id == user_id,
            CohortMembership.status == "active",
        )
    ).first()
    if member is None:
        raise PermissionDeniedError("Not a member of this cohort")

    week = current_week(bundle.cohort.start_date, today or utctoday())
    if data.week_number != bundle.week_number:
        raise ValidationError("Week number does not match questionnaire")
    if data.week_number > week:
        raise ValidationError("Questionnaire not available yet")
    if data.week_number < week:
        raise ValidationError("Questionnaire is locked for past weeks")

    response = s.execute(
        select(QuestionnaireResponse).where(
            QuestionnaireResponse.user_id == user_id, QuestionnaireResponse.bundle_id == bundle.id
        )
    ).scalar_one_or_none()
    if response is not None and response.status == "completed":
        raise ValidationError("Questionnaire is locked after completion")
    if response is None:
        response = QuestionnaireResponse(user_id=user_id, bundle_id=bundle.id, week_number=data.week_number)
        s.add(response)
    response.responses = data.responses
    response.status = data.status or "in_progress"
    s.flush()
    logger.info(
        "questionnaire_response_saved",
        extra={"user_id": user_id, "bundle_id": bundle.id, "status": response.status},
    )
    return response


def get_my_responses(s: Session, user_id: int, cohort_id: Optional[int] = None) -> list[QuestionnaireResponse]:
    q = (
        select(QuestionnaireResponse)
        .join(QuestionnaireBundle, QuestionnaireBundle.id == QuestionnaireResponse.bundle_id)
        .where(QuestionnaireResponse.user_id == user_id)
        .order_by(QuestionnaireResponse.week_number)
    )
    if cohort_id is not None:
        q = q.where(QuestionnaireBundle.cohort_id == cohort_id)
    return list(s.execute(q).scalars())


def get_weekly_responses(s: Session, cohort_id: int, week_number: int) -> dict[str, Any]:
    get_cohort(s, cohort_id)
    bundle = get_bundle(s, cohort_id, week_number)
    if bundle is None:
        return {"bundle": None, "responses": [], "completed": 0, "in_progress": 0}
    responses = list(
        s.execute(
            select(QuestionnaireResponse)
            .where(QuestionnaireResponse.bundle_id == bundle.id)
            .order_by(QuestionnaireResponse.user_id)
        ).scalars()
    )
    completed = sum(1 for r in responses if r.status == "completed")
    return {
        "bundle": bundle,
        "responses": responses,
        "completed": completed,
        "in_progress": len(responses) - completed,
    }
