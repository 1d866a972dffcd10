"""Weekly review queue for coaches.

A coach reviews each active client of their cohorts once per Monday-Sunday
week: check-in stats, questionnaire progress and the client's attention
score, then records a Loom link or note as the week's response.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from core.clock import utcnow
from core.config import get_settings
from core.errors import NotFoundError, PermissionDeniedError
from core.models import (
    CoachCohortMembership,
    Cohort,
    CohortMembership,
    Entry,
    QuestionnaireBundle,
    QuestionnaireResponse,
    User,
    WeeklyCoachResponse,
)
from core.permissions import ensure_coach, is_admin
from core.services.attention import AttentionItem, score_clients
from core.services.cohorts import coach_has_active_client, get_cohort
from core.services.email import EmailResult, EmailSender, get_email_sender
from core.services.questionnaires import get_bundle
from core.validators import QuestionnaireReminderInput, WeeklyResponseInput

logger = logging.getLogger(__name__)

PRIORITY_ORDER = {"red": 0, "amber": 1, "green": 2}


@dataclass
class QuestionnaireStatus:
    status: str
    last_updated: Optional[datetime] = None
    hours_since_last_save: Optional[int] = None


@dataclass
class WeeklyStats:
    check_in_count: int
    check_in_rate: float
    expected_check_ins: int
    avg_weight: Optional[float] = None
    weight_trend: Optional[float] = None
    avg_steps: Optional[int] = None
    avg_calories: Optional[int] = None
    avg_sleep_quality: Optional[float] = None
    avg_stress: Optional[float] = None


@dataclass
class ClientWeeklySummary:
    client_id: int
    name: Optional[str]
    email: str
    cohort_id: int
    cohort_name: str
    stats: WeeklyStats
    questionnaire_status: QuestionnaireStatus
    last_check_in_date: Optional[date] = None
    attention_score: Optional[AttentionItem] = None


@dataclass
class CoachResponseNotice:
    client_id: int
    email: str
    name: str
    coach_name: str
    is_test_user: bool


@dataclass
class ReminderResult:
    success: bool
    message: str
    email: Optional[EmailResult] = field(default=None, repr=False)


def monday_of(day: date) -> date:
    return day - timedelta(days=day.weekday())


def _mean(values: list[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def _weekly_stats(entries: list[Entry], expected: int) -> WeeklyStats:
    weights = [e.weight for e in entries if e.weight is not None]
    steps = [e.steps for e in entries if e.steps is not None]
    calories = [e.calories for e in entries if e.calories is not None]
    avg_steps = _mean(steps)
    avg_calories = _mean(calories)
    return WeeklyStats(
        check_in_count=len(entries),
        check_in_rate=len(entries) / expected if expected > 0 else 0.0,
        expected_check_ins=expected,
        avg_weight=_mean(weights),
        weight_trend=weights[-1] - weights[0] if len(weights) >= 2 else None,
        avg_steps=round(avg_steps) if avg_steps is not None else None,
        avg_calories=round(avg_calories) if avg_calories is not None else None,
        avg_sleep_quality=_mean([e.sleep_quality for e in entries if e.sleep_quality is not None]),
        avg_stress=_mean([e.perceived_stress for e in entries if e.perceived_stress is not None]),
    )


def _cohort_week(cohort: Cohort, monday: date) -> int:
    return max(1, (monday - cohort.start_date).days // 7 + 1)


def _questionnaire_status(
    response: Optional[QuestionnaireResponse], has_bundle: bool, now: datetime
) -> QuestionnaireStatus:
    if not has_bundle:
        return QuestionnaireStatus("no_questionnaire")
    if response is None:
        return QuestionnaireStatus("not_started")
    hours = int((now - response.updated_at).total_seconds() // 3600)
    status = "completed" if response.status == "completed" else "in_progress"
    return QuestionnaireStatus(status, response.updated_at, hours)


def _sort_key(summary: ClientWeeklySummary) -> tuple[int, int, float]:
    item = summary.attention_score
    priority = item.priority if item is not None else "green"
    score = item.score if item is not None else 0
    return PRIORITY_ORDER.get(priority, 2), -score, summary.stats.check_in_rate


def get_weekly_summaries(
    s: Session,
    actor,
    week_start: Optional[date] = None,
    cohort_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """One summary per active client across the coach's cohorts, most urgent first.

    A client in several of the coach's cohorts is reported once, against the
    last cohort listed.
    """
    ensure_coach(actor, "Forbidden: coach access required")
    now = now or utcnow()
    monday = monday_of(week_start or now.date())
    sunday = monday + timedelta(days=6)
    result: dict[str, Any] = {"week_start": monday, "week_end": sunday, "clients": []}

    q = (
        select(Cohort)
        .join(CoachCohortMembership, CoachCohortMembership.cohort_id == Cohort.id)
        .where(CoachCohortMembership.coach_id == actor.id)
        .order_by(CoachCohortMembership.id)
    )
    if cohort_id is not None:
        q = q.where(Cohort.id == cohort_id)
    cohorts = list(s.execute(q).scalars())
    if not cohorts:
        return result

    members = s.execute(
        select(CohortMembership.cohort_id, User)
        .join(User, User.id == CohortMembership.user_id)
        .where(CohortMembership.cohort_id.in_([c.id for c in cohorts]), CohortMembership.status == "active")
        .order_by(CohortMembership.id)
    ).all()
    by_cohort = {c.id: c for c in cohorts}
    clients: dict[int, tuple[User, Cohort]] = {}
    for cohort in cohorts:
        for member_cohort_id, user in members:
            if member_cohort_id == cohort.id:
                clients[user.id] = (user, cohort)
    if not clients:
        return result
    client_ids = list(clients)

    entries_by_user: dict[int, list[Entry]] = {cid: [] for cid in client_ids}
    for entry in s.execute(
        select(Entry)
        .where(Entry.user_id.in_(client_ids), Entry.date >= monday, Entry.date <= sunday)
        .order_by(Entry.date)
    ).scalars():
        entries_by_user[entry.user_id].append(entry)

    last_check_in = dict(
        s.execute(
            select(Entry.user_id, func.max(Entry.date)).where(Entry.user_id.in_(client_ids)).group_by(Entry.user_id)
        ).all()
    )

    bundle_ids: dict[int, Optional[int]] = {}
    for cohort in by_cohort.values():
        bundle = get_bundle(s, cohort.id, _cohort_week(cohort, monday))
        bundle_ids[cohort.id] = bundle.id if bundle is not None and bundle.is_active else None
    live_bundles = [b for b in bundle_ids.values() if b is not None]
    responses: dict[tuple[int, int], QuestionnaireResponse] = {}
    if live_bundles:
        for response in s.execute(
            select(QuestionnaireResponse).where(
                QuestionnaireResponse.user_id.in_(client_ids), QuestionnaireResponse.bundle_id.in_(live_bundles)
            )
        ).scalars():
            responses[(response.user_id, response.bundle_id)] = response

    expected = max(0, min(7, (now.date() - monday).days + 1))
    attention = {item.entity_id: item for item in score_clients(s, client_ids, now.date())}

    summaries = []
    for client_id, (user, cohort) in clients.items():
        bundle_id = bundle_ids.get(cohort.id)
        summaries.append(
            ClientWeeklySummary(
                client_id=client_id,
                name=user.name,
                email=user.email,
                cohort_id=cohort.id,
                cohort_name=cohort.name,
                stats=_weekly_stats(entries_by_user[client_id], expected),
                questionnaire_status=_questionnaire_status(
                    responses.get((client_id, bundle_id)) if bundle_id is not None else None,
                    bundle_id is not None,
                    now,
                ),
                last_check_in_date=last_check_in.get(client_id),
                attention_score=attention.get(client_id),
            )
        )
    summaries.sort(key=_sort_key)
    result["clients"] = summaries
    return result


def _find_response(s: Session, coach_id: int, client_id: int, week_start: date) -> Optional[WeeklyCoachResponse]:
    return s.execute(
        select(WeeklyCoachResponse).where(
            WeeklyCoachResponse.coach_id == coach_id,
            WeeklyCoachResponse.client_id == client_id,
            WeeklyCoachResponse.week_start == week_start,
        )
    ).scalar_one_or_none()


def get_weekly_response(s: Session, actor, client_id: int, week_start: date) -> Optional[WeeklyCoachResponse]:
    ensure_coach(actor, "Forbidden: coach access required")
    return _find_response(s, actor.id, client_id, monday_of(week_start))


def save_weekly_response(
    s: Session, actor, data: WeeklyResponseInput
) -> tuple[WeeklyCoachResponse, Optional[CoachResponseNotice]]:
    """Upsert this coach's response for the client's week.

    Returns a notice for the client email when a link or note was given.
    """
    ensure_coach(actor, "Forbidden: coach access required")
    if not is_admin(actor) and not coach_has_active_client(s, actor.id, data.client_id):
        raise PermissionDeniedError("Forbidden: You don't have access to this client")
    client = s.get(User, data.client_id)
    if client is None:
        raise NotFoundError("Client not found")

    monday = monday_of(data.week_start)
    response = _find_response(s, actor.id, client.id, monday)
    if response is None:
        response = WeeklyCoachResponse(coach_id=actor.id, client_id=client.id, week_start=monday)
        s.add(response)
    response.loom_url = data.loom_url
    response.note = data.note
    s.flush()
    logger.info(
        "weekly_response_saved",
        extra={"coach_id": actor.id, "client_id": client.id, "week_start": monday.isoformat()},
    )

    if not (data.loom_url or data.note):
        return response, None
    coach = s.get(User, actor.id)
    notice = CoachResponseNotice(
        client_id=client.id,
        email=client.email,
        name=client.name or "Member",
        coach_name=(coach.name if coach is not None else None) or "Your Coach",
        is_test_user=bool(client.is_test_user),
    )
    return response, notice


def send_coach_response_email(notice: CoachResponseNotice, sender: EmailSender | None = None) -> EmailResult:
    sender = sender or get_email_sender()
    result = sender.send_system_email(
        "coach_note_received",
        notice.email,
        {
            "userName": notice.name,
            "coachName": notice.coach_name,
            "loginUrl": f"{get_settings().app_url.rstrip('/')}/client/dashboard",
        },
        is_test_user=notice.is_test_user,
    )
    if not result.success:
        logger.warning("coach_response_email_failed", extra={"user_id": notice.client_id, "error": result.error})
    return result


def get_review_queue_summary(
    s: Session, actor, week_start: Optional[date] = None, now: Optional[datetime] = None
) -> dict[str, int]:
    now = now or utcnow()
    monday = monday_of(week_start or now.date())
    clients: list[ClientWeeklySummary] = get_weekly_summaries(s, actor, monday, now=now)["clients"]
    priorities = [c.attention_score.priority if c.attention_score is not None else "green" for c in clients]

    completed = 0
    if clients:
        completed = s.execute(
            select(func.count(WeeklyCoachResponse.id)).where(
                WeeklyCoachResponse.coach_id == actor.id,
                WeeklyCoachResponse.client_id.in_([c.client_id for c in clients]),
                WeeklyCoachResponse.week_start == monday,
                or_(WeeklyCoachResponse.loom_url.is_not(None), WeeklyCoachResponse.note.is_not(None)),
            )
        ).scalar_one()

    return {
        "total_clients": len(clients),
        "red_priority": priorities.count("red"),
        "amber_priority": priorities.count("amber"),
        "green_priority": priorities.count("green"),
        "pending_reviews": len(clients) - completed,
        "completed_reviews": completed,
    }


def get_coach_cohorts(s: Session, actor) -> list[dict[str, Any]]:
    ensure_coach(actor, "Forbidden: coach access required")
    active_members = (
        select(CohortMembership.cohort_id, func.count(CohortMembership.id).label("members"))
        .where(CohortMembership.status == "active")
        .group_by(CohortMembership.cohort_id)
        .subquery()
    )
    rows = s.execute(
        select(Cohort, func.coalesce(active_members.c.members, 0))
        .join(CoachCohortMembership, CoachCohortMembership.cohort_id == Cohort.id)
        .outerjoin(active_members, active_members.c.cohort_id == Cohort.id)
        .where(CoachCohortMembership.coach_id == actor.id)
        .order_by(Cohort.name)
    ).all()
    return [
        {"id": cohort.id, "name": cohort.name, "status": cohort.status, "member_count": int(count)}
        for cohort, count in rows
    ]


def send_questionnaire_reminder(
    s: Session,
    actor,
    data: QuestionnaireReminderInput,
    today: Optional[date] = None,
    sender: EmailSender | None = None,
) -> ReminderResult:
    """Email the client a nudge for the current week's questionnaire.

    Nothing is written, so the email goes out immediately.
    """
    ensure_coach(actor, "Forbidden: coach access required")
    if not is_admin(actor):
        assigned = s.execute(
            select(CoachCohortMembership.id).where(
                CoachCohortMembership.coach_id == actor.id, CoachCohortMembership.cohort_id == data.cohort_id
            )
        ).first()
        if assigned is None:
            raise PermissionDeniedError("Forbidden: You don't have access to this cohort")
    cohort = get_cohort(s, data.cohort_id)

    week = _cohort_week(cohort, monday_of(today or utcnow().date()))
    bundle = get_bundle(s, cohort.id, week)
    if bundle is None or not bundle.is_active:
        return ReminderResult(False, "No questionnaire available for this week")

    completed = s.execute(
        select(QuestionnaireResponse.id).where(
            QuestionnaireResponse.user_id == data.client_id,
            QuestionnaireResponse.bundle_id == bundle.id,
            QuestionnaireResponse.status == "completed",
        )
    ).first()
    if completed is not None:
        return ReminderResult(False, "Client has already completed this week's questionnaire")

    client = s.get(User, data.client_id)
    if client is None or not client.email:
        return ReminderResult(False, "Client email not found")

    coach = s.get(User, actor.id)
    sender = sender or get_email_sender()
    email = sender.send_system_email(
        "weekly_questionnaire_reminder",
        client.email,
        {
            "userName": client.name or "Member",
            "coachName": (coach.name if coach is not None else None) or "Your Coach",
            "weekNumber": str(week),
            "questionnaireUrl": f"{get_settings().app_url.rstrip('/')}/client/questionnaires/{cohort.id}/{week}",
        },
        is_test_user=bool(client.is_test_user),
    )
    if not email.success:
        logger.warning("questionnaire_reminder_failed", extra={"user_id": client.id, "error": email.error})
    logger.info("questionnaire_reminder_sent", extra={"user_id": client.id, "cohort_id": cohort.id, "week": week})
    return ReminderResult(True, "Reminder sent successfully", email)
