from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import Optional

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from core.clock import utcnow
from core.errors import NotFoundError, ValidationError
from core.models import ClassSession, ClassType, SessionRegistration, User
from core.permissions import ensure_admin, ensure_coach
from core.services.calendar import CalendarError, CalendarEvent, GoogleCalendarClient, get_calendar_client
from core.services.memberships import get_active_membership
from core.validators import (
    ClassSessionInput,
    ClassSessionUpdateInput,
    ClassTypeInput,
    ClassTypeUpdateInput,
    RecurringSessionsInput,
)

logger = logging.getLogger(__name__)

CANCELLABLE_REGISTRATION_STATUSES = ("registered", "waitlisted")


# class types


def list_class_types(s: Session, active_only: bool = True) -> list[ClassType]:
    q = select(ClassType).order_by(ClassType.name)
    if active_only:
        q = q.where(ClassType.is_active.is_(True))
    return list(s.execute(q).scalars())


def get_class_type(s: Session, class_type_id: int) -> ClassType:
    class_type = s.get(ClassType, class_type_id)
    if class_type is None:
        raise NotFoundError("Class type not found")
    return class_type


def create_class_type(s: Session, actor, data: ClassTypeInput) -> ClassType:
    ensure_admin(actor, "Forbidden: only admins can manage class types")
    class_type = ClassType(**data.model_dump())
    s.add(class_type)
    s.flush()
    logger.info("class_type_created", extra={"class_type_id": class_type.id})
    return class_type


def update_class_type(s: Session, actor, class_type_id: int, data: ClassTypeUpdateInput) -> ClassType:
    ensure_admin(actor, "Forbidden: only admins can manage class types")
    class_type = get_class_type(s, class_type_id)
    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(class_type, key, value)
    s.flush()
    return class_type


def delete_class_type(s: Session, actor, class_type_id: int) -> ClassType:
    """Soft delete: existing sessions keep their class type."""
    ensure_admin(actor, "Forbidden: only admins can manage class types")
    class_type = get_class_type(s, class_type_id)
    class_type.is_active = False
    s.flush()
    return class_type


# sessions


def list_sessions(
    s: Session,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    class_type_id: Optional[int] = None,
    coach_id: Optional[int] = None,
    status: Optional[str] = None,
) -> list[ClassSession]:
    q = select(ClassSession).order_by(ClassSession.start_time, ClassSession.id)
    if start is not None:
        q = q.where(ClassSession.start_time >= start)
    if end is not None:
        q = q.where(ClassSession.start_time <= end)
    if class_type_id is not None:
        q = q.where(ClassSession.class_type_id == class_type_id)
    if coach_id is not None:
        q = q.where(ClassSession.coach_id == coach_id)
    if status:
        q = q.where(ClassSession.status == status)
    return list(s.execute(q).scalars())


def get_session(s: Session, session_id: int) -> ClassSession:
    session = s.get(ClassSession, session_id)
    if session is None:
        raise NotFoundError("Session not found")
    return session


def _resolve_coach(s: Session, actor, coach_id: Optional[int]) -> int:
    if coach_id is None or coach_id == actor.id:
        return actor.id
    coach = s.get(User, coach_id)
    if coach is None or coach.role not in ("coach", "admin"):
        raise ValidationError("Coach not found")
    return coach.id


def _calendar_event(session: ClassSession) -> CalendarEvent:
    return CalendarEvent(
        title=session.title,
        start=session.start_time,
        end=session.end_time,
        description=session.notes or "",
        location=session.location or "",
    )


def sync_session_to_calendar(session: ClassSession, calendar: GoogleCalendarClient | None = None) -> Optional[str]:
    """Push ``session`` to Google Calendar; failures are logged, never raised."""
    calendar = calendar or get_calendar_client()
    if not calendar.configured:
        return None
    try:
        if session.google_event_id:
            calendar.update_event(session.google_event_id, _calendar_event(session))
        else:
            created = calendar.add_event(_calendar_event(session))
            session.google_event_id = created.get("id")
    except (CalendarError, httpx.HTTPError) as exc:
        logger.warning("calendar_sync_failed", extra={"session_id": session.id, "error": str(exc)})
        return None
    return session.google_event_id


def create_session(
    s: Session,
    actor,
    data: ClassSessionInput,
    calendar: GoogleCalendarClient | None = None,
) -> ClassSession:
    ensure_coach(actor, "Forbidden: only coaches can create sessions")
    max_occupancy = data.max_occupancy
    if data.class_type_id is not None:
        class_type = get_class_type(s, data.class_type_id)
        if max_occupancy is None:
            max_occupancy = class_type.default_capacity
    if data.end_time <= data.start_time:
        raise ValidationError("End time must be after start time")
    session = ClassSession(
        class_type_id=data.class_type_id,
        coach_id=_resolve_coach(s, actor, data.coach_id),
        title=data.title,
        start_time=data.start_time,
        end_time=data.end_time,
        max_occupancy=max_occupancy or 12,
        location=data.location,
        notes=data.notes,
        status="scheduled",
    )
    s.add(session)
    s.flush()
    sync_session_to_calendar(session, calendar)
    s.flush()
    logger.info("class_session_created", extra={"session_id": session.id, "coach_id": session.coach_id})
    return session


def update_session(
    s: Session,
    actor,
    session_id: int,
    data: ClassSessionUpdateInput,
    calendar: GoogleCalendarClient | None = None,
) -> ClassSession:
    ensure_coach(actor, "Forbidden: only coaches can update sessions")
    session = get_session(s, session_id)
    changes = data.model_dump(exclude_unset=True)
    if changes.get("class_type_id") is not None:
        get_class_type(s, changes["class_type_id"])
    if "coach_id" in changes:
        changes["coach_id"] = _resolve_coach(s, actor, changes["coach_id"])
    start = changes.get("start_time") or session.start_time
    end = changes.get("end_time") or session.end_time
    if end <= start:
        raise ValidationError("End time must be after start time")
    for key, value in changes.items():
        if value is None and key in ("title", "start_time", "end_time", "max_occupancy", "status"):
            continue
        setattr(session, key, value)
    s.flush()
    sync_session_to_calendar(session, calendar)
    s.flush()
    return session


def cancel_session(s: Session, actor, session_id: int, now: Optional[datetime] = None) -> ClassSession:
    ensure_coach(actor, "Forbidden: only coaches can cancel sessions")
    session = get_session(s, session_id)
    now = now or utcnow()
    session.status = "cancelled"
    open_regs = s.execute(
        select(SessionRegistration).where(
            SessionRegistration.session_id == session_id,
            SessionRegistration.status.in_(CANCELLABLE_REGISTRATION_STATUSES),
        )
    ).scalars().all()
    refunded = 0
    for reg in open_regs:
        if reg.status == "registered":
            membership = get_active_membership(s, reg.user_id)
            if membership is not None and membership.plan.type == "pack" and membership.sessions_remaining is not None:
                membership.sessions_remaining += 1
                refunded += 1
        reg.status = "cancelled"
        reg.cancelled_at = now
        reg.waitlist_position = None
    s.flush()
    logger.info(
        "class_session_cancelled",
        extra={"session_id": session_id, "registrations": len(open_regs), "refunded": refunded},
    )
    return session


def first_weekday_on_or_after(start: date, day_of_week: int) -> date:
    """``day_of_week`` counts from Sunday = 0."""
    target = (day_of_week - 1) % 7
    return start + timedelta(days=(target - start.weekday()) % 7)


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def generate_recurring_sessions(
    s: Session,
    actor,
    data: RecurringSessionsInput,
    calendar: GoogleCalendarClient | None = None,
) -> list[ClassSession]:
    ensure_coach(actor, "Forbidden: only coaches can create sessions")
    start_clock = _parse_hhmm(data.start_time)
    end_clock = _parse_hhmm(data.end_time)
    if end_clock <= start_clock:
        raise ValidationError("End time must be after start time")

    max_occupancy = data.max_occupancy
    if data.class_type_id is not None:
        class_type = get_class_type(s, data.class_type_id)
        if max_occupancy is None:
            max_occupancy = class_type.default_capacity
    coach_id = _resolve_coach(s, actor, data.coach_id)

    first = first_weekday_on_or_after(data.start_date, data.day_of_week)
    sessions = []
    for week in range(data.weeks):
        day = first + timedelta(weeks=week)
        session = ClassSession(
            class_type_id=data.class_type_id,
            coach_id=coach_id,
            title=data.title,
            start_time=datetime.combine(day, start_clock),
            end_time=datetime.combine(day, end_clock),
            max_occupancy=max_occupancy or 12,
            location=data.location,
            status="scheduled",
        )
        s.add(session)
        sessions.append(session)
    s.flush()

    calendar = calendar or get_calendar_client()
    if calendar.configured:
        for result, session in zip(calendar.add_events([_calendar_event(x) for x in sessions]), sessions):
            if result.success:
                session.google_event_id = result.google_event_id
        s.flush()
    logger.info("recurring_sessions_generated", extra={"count": len(sessions), "coach_id": coach_id})
    return sessions
