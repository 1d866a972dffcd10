"""Class-session booking with plan limits and a waitlist.

Every mutating function works inside the caller's transaction; nothing here
commits. Email for waitlist promotions is sent separately, after the caller
has committed, via ``send_waitlist_promotion_email``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from core.clock import utcnow
from core.errors import NotFoundError, PermissionDeniedError, ValidationError
from core.models import (
    REGISTRATION_STATUSES,
    ClassSession,
    CohortMembership,
    CohortSessionAccess,
    SessionRegistration,
)
from core.permissions import is_client
from core.services.email import EmailResult, EmailSender, get_email_sender
from core.services.memberships import get_active_membership

logger = logging.getLogger(__name__)

OCCUPYING_STATUSES = ("registered", "attended")
WEEKLY_COUNTED_STATUSES = ("registered", "late_cancelled", "attended")
STATUS_ORDER = {status: idx for idx, status in enumerate(REGISTRATION_STATUSES)}


@dataclass
class RegistrationResult:
    registration: SessionRegistration
    waitlisted: bool
    waitlist_position: Optional[int] = None


@dataclass
class WaitlistPromotion:
    user_id: int
    email: str
    name: str
    is_test_user: bool
    session_title: str
    session_start: datetime


@dataclass
class CancellationResult:
    registration: SessionRegistration
    late_cancelled: bool
    promotion: Optional[WaitlistPromotion] = None


def week_bounds(moment: datetime) -> tuple[datetime, datetime]:
    """Monday 00:00 of ``moment``'s week and the following Monday."""
    monday = moment.date() - timedelta(days=moment.weekday())
    start = datetime.combine(monday, time.min)
    return start, start + timedelta(days=7)


def _active_cohort_ids(s: Session, user_id: int) -> list[int]:
    return list(
        s.execute(
            select(CohortMembership.cohort_id).where(
                CohortMembership.user_id == user_id, CohortMembership.status == "active"
            )
        ).scalars()
    )


def _occupancy(s: Session, session_id: int) -> int:
    return s.execute(
        select(func.count(SessionRegistration.id)).where(
            SessionRegistration.session_id == session_id,
            SessionRegistration.status.in_(OCCUPYING_STATUSES),
        )
    ).scalar_one()


def _weekly_count(s: Session, user_id: int, moment: datetime) -> int:
    start, end = week_bounds(moment)
    return s.execute(
        select(func.count(SessionRegistration.id))
        .join(ClassSession, ClassSession.id == SessionRegistration.session_id)
        .where(
            SessionRegistration.user_id == user_id,
            SessionRegistration.status.in_(WEEKLY_COUNTED_STATUSES),
            ClassSession.start_time >= start,
            ClassSession.start_time < end,
        )
    ).scalar_one()


def register_for_session(
    s: Session, user_id: int, session_id: int, now: Optional[datetime] = None
) -> RegistrationResult:
    now = now or utcnow()
    cls = s.get(ClassSession, session_id)
    if cls is None:
        raise NotFoundError("Session not found")
    if cls.status != "scheduled":
        raise ValidationError("Session is not available for registration")

    if cls.class_type_id is not None:
        cohort_ids = _active_cohort_ids(s, user_id)
        if not cohort_ids:
            raise PermissionDeniedError("You are not a member of any cohort")
        access = s.execute(
            select(CohortSessionAccess.id).where(
                CohortSessionAccess.cohort_id.in_(cohort_ids),
                CohortSessionAccess.class_type_id == cls.class_type_id,
            )
        ).first()
        if access is None:
            raise PermissionDeniedError("You do not have access to register for this session")

    existing = s.execute(
        select(SessionRegistration).where(
            SessionRegistration.session_id == session_id, SessionRegistration.user_id == user_id
        )
    ).scalar_one_or_none()
    if existing is not None and existing.status != "cancelled":
        raise ValidationError("Already registered for this session")

    membership = get_active_membership(s, user_id)
    if membership is None:
        raise ValidationError("No active membership found")
    plan = membership.plan

    allowed = plan.class_type_ids
    if allowed and cls.class_type_id is not None and cls.class_type_id not in allowed:
        raise PermissionDeniedError("Your membership plan does not include this class type")

    if plan.type == "recurring" and plan.sessions_per_week:
        if _weekly_count(s, user_id, cls.start_time) >= plan.sessions_per_week:
            raise ValidationError(f"Weekly session limit reached ({plan.sessions_per_week} per week)")
    elif plan.type == "pack":
        if membership.sessions_remaining is not None and membership.sessions_remaining <= 0:
            raise ValidationError("No sessions remaining in your pack")
    elif plan.type == "prepaid":
        if membership.end_date is not None and now.date() > membership.end_date:
            raise ValidationError("Your prepaid membership has expired")

    if _occupancy(s, session_id) >= cls.max_occupancy:
        max_position = s.execute(
            select(func.max(SessionRegistration.waitlist_position)).where(
                SessionRegistration.session_id == session_id, SessionRegistration.status == "waitlisted"
            )
        ).scalar_one_or_none()
        position = (max_position or 0) + 1
        reg = existing or SessionRegistration(session_id=session_id, user_id=user_id)
        reg.status = "waitlisted"
        reg.waitlist_position = position
        reg.cancelled_at = None
        reg.registered_at = now
        s.add(reg)
        s.flush()
        logger.info("session_waitlisted", extra={"session_id": session_id, "user_id": user_id, "position": position})
        return RegistrationResult(registration=reg, waitlisted=True, waitlist_position=position)

    reg = existing or SessionRegistration(session_id=session_id, user_id=user_id)
    reg.status = "registered"
    reg.waitlist_position = None
    reg.cancelled_at = None
    reg.registered_at = now
    s.add(reg)
    if plan.type == "pack" and membership.sessions_remaining is not None:
        membership.sessions_remaining -= 1
    s.flush()
    logger.info("session_registered", extra={"session_id": session_id, "user_id": user_id})
    return RegistrationResult(registration=reg, waitlisted=False)


def cancel_registration(
    s: Session, user_id: int, registration_id: int, now: Optional[datetime] = None
) -> CancellationResult:
    now = now or utcnow()
    reg = s.get(SessionRegistration, registration_id)
    if reg is None:
        raise NotFoundError("Registration not found")
    if reg.user_id != user_id:
        raise PermissionDeniedError("Not authorized to cancel this registration")
    if reg.status not in ("registered", "waitlisted"):
        raise ValidationError("Cannot cancel this registration")

    if reg.status == "waitlisted":
        reg.status = "cancelled"
        reg.cancelled_at = now
        reg.waitlist_position = None
        s.flush()
        return CancellationResult(registration=reg, late_cancelled=False)

    membership = get_active_membership(s, user_id)
    cutoff_hours = membership.plan.late_cancel_cutoff_hours if membership else 2
    hours_until = (reg.session.start_time - now).total_seconds() / 3600
    late = hours_until < cutoff_hours

    reg.status = "late_cancelled" if late else "cancelled"
    reg.cancelled_at = now
    if not late and membership and membership.plan.type == "pack" and membership.sessions_remaining is not None:
        membership.sessions_remaining += 1
    s.flush()

    promotion = promote_next_waitlisted(s, reg.session_id, now)
    logger.info(
        "session_registration_cancelled",
        extra={"registration_id": reg.id, "late": late, "promoted_user_id": promotion.user_id if promotion else None},
    )
    return CancellationResult(registration=reg, late_cancelled=late, promotion=promotion)


def promote_next_waitlisted(s: Session, session_id: int, now: Optional[datetime] = None) -> Optional[WaitlistPromotion]:
    nxt = s.execute(
        select(SessionRegistration)
        .where(SessionRegistration.session_id == session_id, SessionRegistration.status == "waitlisted")
        .order_by(SessionRegistration.waitlist_position.asc(), SessionRegistration.id.asc())
        .limit(1)
    ).scalar_one_or_none()
    if nxt is None:
        return None
    nxt.status = "registered"
    nxt.waitlist_position = None
    nxt.promoted_from_waitlist_at = now or utcnow()
    s.flush()
    user = nxt.user
    return WaitlistPromotion(
        user_id=user.id,
        email=user.email,
        name=user.name or "Member",
        is_test_user=bool(user.is_test_user),
        session_title=nxt.session.title,
        session_start=nxt.session.start_time,
    )


def send_waitlist_promotion_email(promotion: WaitlistPromotion, sender: EmailSender | None = None) -> EmailResult:
    """Best-effort; call after the cancelling transaction has committed."""
    sender = sender or get_email_sender()
    result = sender.send_system_email(
        "waitlist_promoted",
        promotion.email,
        {
            "userName": promotion.name,
            "sessionTitle": promotion.session_title,
            "sessionDate": promotion.session_start.strftime("%A, %B %d, %Y"),
            "sessionTime": promotion.session_start.strftime("%I:%M %p").lstrip("0"),
        },
        is_test_user=promotion.is_test_user,
    )
    if not result.success:
        logger.warning("waitlist_promotion_email_failed", extra={"user_id": promotion.user_id, "error": result.error})
    return result


def get_my_registrations(
    s: Session,
    user_id: int,
    status: Optional[str] = None,
    upcoming: bool = False,
    now: Optional[datetime] = None,
) -> list[SessionRegistration]:
    q = (
        select(SessionRegistration)
        .join(ClassSession, ClassSession.id == SessionRegistration.session_id)
        .options(selectinload(SessionRegistration.session).selectinload(ClassSession.class_type))
        .where(SessionRegistration.user_id == user_id)
        .order_by(ClassSession.start_time.asc())
    )
    if status:
        q = q.where(SessionRegistration.status == status)
    if upcoming:
        q = q.where(ClassSession.start_time >= (now or utcnow()), ClassSession.status == "scheduled")
    return list(s.execute(q).scalars())


def get_available_sessions(
    s: Session,
    user_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> list[dict[str, Any]]:
    now = now or utcnow()
    cohort_ids = _active_cohort_ids(s, user_id)
    granted: set[int] = set()
    if cohort_ids:
        granted = set(
            s.execute(
                select(CohortSessionAccess.class_type_id).where(CohortSessionAccess.cohort_id.in_(cohort_ids))
            ).scalars()
        )
    membership = get_active_membership(s, user_id)
    allowances = set(membership.plan.class_type_ids) if membership else set()

    earliest = max(start, now) if start else now
    q = select(ClassSession).where(ClassSession.status == "scheduled", ClassSession.start_time >= earliest)
    if end:
        q = q.where(ClassSession.start_time <= end)

    if granted and allowances:
        allowed = granted & allowances
        if not allowed:
            return []
        q = q.where(ClassSession.class_type_id.in_(allowed))
    elif granted:
        q = q.where(ClassSession.class_type_id.in_(granted))
    elif allowances:
        q = q.where(ClassSession.class_type_id.in_(allowances))

    sessions = list(s.execute(q.order_by(ClassSession.start_time.asc())).scalars())
    if not sessions:
        return []
    ids = [c.id for c in sessions]
    counts = dict(
        s.execute(
            select(SessionRegistration.session_id, func.count(SessionRegistration.id))
            .where(SessionRegistration.session_id.in_(ids), SessionRegistration.status.in_(OCCUPYING_STATUSES))
            .group_by(SessionRegistration.session_id)
        ).all()
    )
    mine = dict(
        s.execute(
            select(SessionRegistration.session_id, SessionRegistration.status).where(
                SessionRegistration.session_id.in_(ids), SessionRegistration.user_id == user_id
            )
        ).all()
    )
    return [
        {"session": c, "registered_count": counts.get(c.id, 0), "my_status": mine.get(c.id)}
        for c in sessions
    ]


def get_session_usage(s: Session, actor, user_id: Optional[int] = None, today: Optional[date] = None) -> Optional[dict[str, Any]]:
    target = user_id if user_id is not None else actor.id
    if target != actor.id and is_client(actor):
        raise PermissionDeniedError("Forbidden")

    membership = get_active_membership(s, target)
    if membership is None:
        return None
    plan = membership.plan
    today = today or utcnow().date()

    if plan.type == "recurring":
        used = _weekly_count(s, target, datetime.combine(today, time.min))
        limit = plan.sessions_per_week or 0
        return {"type": "recurring", "used": used, "limit": limit, "remaining": max(0, limit - used), "plan_name": plan.name}
    if plan.type == "pack":
        return {
            "type": "pack",
            "sessions_remaining": membership.sessions_remaining or 0,
            "total_sessions": plan.total_sessions or 0,
            "plan_name": plan.name,
        }
    days_remaining = max(0, (membership.end_date - today).days) if membership.end_date else 0
    return {"type": "prepaid", "days_remaining": days_remaining, "end_date": membership.end_date, "plan_name": plan.name}


def mark_attendance(s: Session, registration_id: int, status: str) -> SessionRegistration:
    if status not in ("attended", "no_show"):
        raise ValidationError("Attendance status must be attended or no_show")
    reg = s.get(SessionRegistration, registration_id)
    if reg is None:
        raise NotFoundError("Registration not found")
    reg.status = status
    s.flush()
    return reg


def get_session_registrations(s: Session, session_id: int) -> list[SessionRegistration]:
    rows = list(
        s.execute(
            select(SessionRegistration)
            .options(selectinload(SessionRegistration.user))
            .where(SessionRegistration.session_id == session_id)
        ).scalars()
    )
    rows.sort(
        key=lambda r: (
            STATUS_ORDER.get(r.status, len(STATUS_ORDER)),
            r.waitlist_position if r.waitlist_position is not None else 0,
            r.registered_at,
        )
    )
    return rows
