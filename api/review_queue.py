from __future__ import annotations

from datetime import date
from typing import Annotated, Optional

from fastapi import APIRouter, Depends

from api.auth import TokenData, require_coach
from api.schemas import (
    ClientWeeklySummaryOut,
    CoachCohortOut,
    ReminderOut,
    ReviewQueueSummaryOut,
    WeeklyResponseOut,
    WeeklySummariesOut,
)
from core.db import session_scope
from core.services import review_queue as review_service
from core.validators import QuestionnaireReminderInput, WeeklyResponseInput

router = APIRouter(prefix="/review-queue", tags=["review-queue"])


@router.get("/summaries", response_model=WeeklySummariesOut)
def weekly_summaries(
    coach: Annotated[TokenData, Depends(require_coach)],
    week_start: Optional[date] = None,
    cohort_id: Optional[int] = None,
):
    with session_scope() as s:
        result = review_service.get_weekly_summaries(s, coach.actor, week_start=week_start, cohort_id=cohort_id)
        return WeeklySummariesOut(
            week_start=result["week_start"],
            week_end=result["week_end"],
            clients=[ClientWeeklySummaryOut.model_validate(c) for c in result["clients"]],
        )


@router.get("/summary", response_model=ReviewQueueSummaryOut)
def queue_summary(coach: Annotated[TokenData, Depends(require_coach)], week_start: Optional[date] = None):
    with session_scope() as s:
        return review_service.get_review_queue_summary(s, coach.actor, week_start=week_start)


@router.get("/cohorts", response_model=list[CoachCohortOut])
def coach_cohorts(coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        return review_service.get_coach_cohorts(s, coach.actor)


@router.get("/responses/{client_id}", response_model=WeeklyResponseOut)
def weekly_response(client_id: int, week_start: date, coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        response = review_service.get_weekly_response(s, coach.actor, client_id, week_start)
        if response is None:
            return WeeklyResponseOut(client_id=client_id, week_start=review_service.monday_of(week_start))
        return WeeklyResponseOut.model_validate(response)


@router.put("/responses", response_model=WeeklyResponseOut)
def save_weekly_response(body: WeeklyResponseInput, coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        response, notice = review_service.save_weekly_response(s, coach.actor, body)
        out = WeeklyResponseOut.model_validate(response)
    if notice is not None:
        review_service.send_coach_response_email(notice)
    return out


@router.post("/reminders", response_model=ReminderOut)
def questionnaire_reminder(body: QuestionnaireReminderInput, coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        return ReminderOut.model_validate(review_service.send_questionnaire_reminder(s, coach.actor, body))
