from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from core.clock import utcnow
from core.config import get_settings
from core.errors import ConflictError, NotFoundError, ValidationError
from core.models import (
    ClassType,
    CoachCohortMembership,
    Cohort,
    CohortMembership,
    CohortSessionAccess,
    QuestionnaireBundle,
    QuestionnaireResponse,
    User,
)
from core.permissions import is_admin
from core.services.email import EmailResult, EmailSender, get_email_sender
from core.validators import CohortCreateInput, CohortUpdateInput

logger = logging.getLogger(__name__)


@dataclass
class CohortInvite:
    user_id: int
    email: str
    name: str
    is_test_user: bool
    cohort_name: str


def get_cohort(s: Session, cohort_id: int) -> Cohort:
    cohort = s.get(Cohort, cohort_id)
    if cohort is None:
        raise NotFoundError("Cohort not found")
    return cohort


def coach_cohort_ids(s: Session, coach_id: int) -> list[int]:
    return list(
        s.execute(select(CoachCohortMembership.cohort_id).where(CoachCohortMembership.coach_id == coach_id)).scalars()
    )


def coach_client_ids(s: Session, coach_id: int) -> set[int]:
    """Users with any membership in a cohort this coach is assigned to."""
    cohort_ids = coach_cohort_ids(s, coach_id)
    if not cohort_ids:
        return set()
    return set(
        s.execute(select(CohortMembership.user_id).where(CohortMembership.cohort_id.in_(cohort_ids))).scalars()
    )


def coach_has_active_client(s: Session, coach_id: int, client_id: int) -> bool:
    return (
        s.execute(
            select(CohortMembership.id)
            .join(CoachCohortMembership, CoachCohortMembership.cohort_id == CohortMembership.cohort_id)
            .where(
                CoachCohortMembership.coach_id == coach_id,
                CohortMembership.user_id == client_id,
                CohortMembership.status == "active",
            )
            .limit(1)
        ).first()
        is not None
    )


def _check_dates(start: date, end: Optional[date]) -> None:
    if end is not None and end <= start:
        raise ValidationError("End date must be after start date")


def _check_name_free(s: Session, name: str, exclude_id: Optional[int] = None) -> None:
    q = select(Cohort.id).where(func.lower(Cohort.name) == name.lower())
    if exclude_id is not None:
        q = q.where(Cohort.id != exclude_id)
    if s.execute(q).first():
        raise ConflictError("A cohort with this name already exists")


def create_cohort(s: Session, data: CohortCreateInput) -> Cohort:
    name = data.name.strip()
    if not name:
        raise ValidationError("Name is required")
    _check_dates(data.start_date, data.end_date)
    _check_name_free(s, name)
    cohort = Cohort(
        name=name,
        description=data.description,
        start_date=data.start_date,
        end_date=data.end_date,
        check_in_frequency_days=data.check_in_frequency_days,
        status="active",
    )
    s.add(cohort)
    s.flush()
    logger.info("cohort_created", extra={"cohort_id": cohort.id})
    return cohort


def update_cohort(s: Session, cohort_id: int, data: CohortUpdateInput) -> Cohort:
    cohort = get_cohort(s, cohort_id)
    changes = data.model_dump(exclude_unset=True)
    if "name" in changes:
        name = (changes["name"] or "").strip()
        if not name:
            raise ValidationError("Name is required")
        if name.lower() != cohort.name.lower():
            _check_name_free(s, name, exclude_id=cohort.id)
        changes["name"] = name
    if changes.get("start_date") is None:
        changes.pop("start_date", None)
    _check_dates(changes.get("start_date", cohort.start_date), changes.get("end_date", cohort.end_date))
    for key, value in changes.items():
        setattr(cohort, key, value)
    s.flush()
    return cohort


def update_cohort_status(s: Session, cohort_id: int, status: str) -> Cohort:
    if status not in ("active", "completed", "archived"):
        raise ValidationError("Invalid cohort status")
    cohort = get_cohort(s, cohort_id)
    cohort.status = status
    s.flush()
    return cohort


def delete_cohort(s: Session, cohort_id: int) -> None:
    cohort = get_cohort(s, cohort_id)
    bundle_ids = select(QuestionnaireBundle.id).where(QuestionnaireBundle.cohort_id == cohort_id)
    s.execute(delete(QuestionnaireResponse).where(QuestionnaireResponse.bundle_id.in_(bundle_ids)))
    s.execute(delete(QuestionnaireBundle).where(QuestionnaireBundle.cohort_id == cohort_id))
    s.execute(delete(CohortSessionAccess).where(CohortSessionAccess.cohort_id == cohort_id))
    s.execute(delete(CoachCohortMembership).where(CoachCohortMembership.cohort_id == cohort_id))
    s.execute(delete(CohortMembership).where(CohortMembership.cohort_id == cohort_id))
    s.delete(cohort)
    s.flush()
    logger.info("cohort_deleted", extra={"cohort_id": cohort_id})


def list_cohorts(s: Session, actor, status: Optional[str] = None) -> list[dict]:
    q = select(Cohort).order_by(Cohort.start_date.desc(), Cohort.id.desc())
    if not is_admin(actor):
        q = q.where(Cohort.id.in_(coach_cohort_ids(s, actor.id)))
    if status:
        q = q.where(Cohort.status == status)
    cohorts = list(s.execute(q).scalars())
    ids = [c.id for c in cohorts]
    member_counts: dict[int, int] = {}
    coach_counts: dict[int, int] = {}
    if ids:
        member_counts = dict(
            s.execute(
                select(CohortMembership.cohort_id, func.count(CohortMembership.id))
                .where(CohortMembership.cohort_id.in_(ids), CohortMembership.status == "active")
                .group_by(CohortMembership.cohort_id)
            ).all()
        )
        coach_counts = dict(
            s.execute(
                select(CoachCohortMembership.cohort_id, func.count(CoachCohortMembership.id))
                .where(CoachCohortMembership.cohort_id.in_(ids))
                .group_by(CoachCohortMembership.cohort_id)
            ).all()
        )
    return [
        {"cohort": c, "member_count": member_counts.get(c.id, 0), "coach_count": coach_counts.get(c.id, 0)}
        for c in cohorts
    ]


def list_members(s: Session, cohort_id: int) -> list[CohortMembership]:
    get_cohort(s, cohort_id)
    return list(
        s.execute(
            select(CohortMembership)
            .where(CohortMembership.cohort_id == cohort_id)
            .order_by(CohortMembership.joined_at, CohortMembership.id)
        ).scalars()
    )


def add_member(s: Session, cohort_id: int, user_id: int) -> tuple[CohortMembership, CohortInvite]:
    cohort = get_cohort(s, cohort_id)
    user = s.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    if user.role != "client":
        raise ValidationError("Only clients can be added to a cohort")
    exists = s.execute(
        select(CohortMembership.id).where(CohortMembership.cohort_id == cohort_id, CohortMembership.user_id == user_id)
    ).first()
    if exists:
        raise ConflictError("Member is already in this cohort")
    membership = CohortMembership(cohort_id=cohort_id, user_id=user_id, status="active", joined_at=utcnow())
    s.add(membership)
    s.flush()
    logger.info("cohort_member_added", extra={"cohort_id": cohort_id, "user_id": user_id})
    invite = CohortInvite(
        user_id=user.id,
        email=user.email,
        name=user.name or "Member",
        is_test_user=bool(user.is_test_user),
        cohort_name=cohort.name,
    )
    return membership, invite


def send_cohort_invite_email(invite: CohortInvite, sender: EmailSender | None = None) -> EmailResult:
    sender = sender or get_email_sender()
    result = sender.send_system_email(
        "cohort_invite",
        invite.email,
        {
            "userName": invite.name,
            "cohortName": invite.cohort_name,
            "loginUrl": f"{get_settings().app_url.rstrip('/')}/client/cohorts",
        },
        is_test_user=invite.is_test_user,
    )
    if not result.success:
        logger.warning("cohort_invite_email_failed", extra={"user_id": invite.user_id, "error": result.error})
    return result


def _get_membership(s: Session, cohort_id: int, user_id: int) -> CohortMembership:
    membership = s.execute(
        select(CohortMembership).where(CohortMembership.cohort_id == cohort_id, CohortMembership.user_id == user_id)
    ).scalar_one_or_none()
    if membership is None:
        raise NotFoundError("Membership not found")
    return membership


def remove_member(s: Session, cohort_id: int, user_id: int) -> None:
    s.delete(_get_membership(s, cohort_id, user_id))
    s.flush()


def update_membership_status(
    s: Session, cohort_id: int, user_id: int, status: str, now: Optional[datetime] = None
) -> CohortMembership:
    if status not in ("active", "paused", "inactive"):
        raise ValidationError("Invalid membership status")
    membership = _get_membership(s, cohort_id, user_id)
    membership.status = status
    if status == "inactive":
        membership.left_at = now or utcnow()
    elif status == "active":
        membership.left_at = None
    s.flush()
    return membership


def add_coach(s: Session, cohort_id: int, coach_id: int) -> CoachCohortMembership:
    get_cohort(s, cohort_id)
    coach = s.get(User, coach_id)
    if coach is None:
        raise NotFoundError("Coach not found")
    if coach.role not in ("coach", "admin"):
        raise ValidationError("User is not a coach")
    exists = s.execute(
        select(CoachCohortMembership.id).where(
            CoachCohortMembership.cohort_id == cohort_id, CoachCohortMembership.coach_id == coach_id
        )
    ).first()
    if exists:
        raise ConflictError("Coach is already assigned to this cohort")
    link = CoachCohortMembership(cohort_id=cohort_id, coach_id=coach_id)
    s.add(link)
    s.flush()
    return link


def remove_coach(s: Session, cohort_id: int, coach_id: int) -> None:
    link = s.execute(
        select(CoachCohortMembership).where(
            CoachCohortMembership.cohort_id == cohort_id, CoachCohortMembership.coach_id == coach_id
        )
    ).scalar_one_or_none()
    if link is None:
        raise NotFoundError("Coach is not assigned to this cohort")
    s.delete(link)
    s.flush()


def list_coaches(s: Session, cohort_id: Optional[int] = None) -> list[User]:
    if cohort_id is None:
        return list(
            s.execute(select(User).where(User.role.in_(("coach", "admin"))).order_by(User.name, User.email)).scalars()
        )
    get_cohort(s, cohort_id)
    return list(
        s.execute(
            select(User)
            .join(CoachCohortMembership, CoachCohortMembership.coach_id == User.id)
            .where(CoachCohortMembership.cohort_id == cohort_id)
            .order_by(User.name, User.email)
        ).scalars()
    )


def get_cohort_session_access(s: Session, cohort_id: int) -> list[ClassType]:
    get_cohort(s, cohort_id)
    return list(
        s.execute(
            select(ClassType)
            .join(CohortSessionAccess, CohortSessionAccess.class_type_id == ClassType.id)
            .where(CohortSessionAccess.cohort_id == cohort_id)
            .order_by(ClassType.name)
        ).scalars()
    )


def set_cohort_session_access(s: Session, cohort_id: int, class_type_ids: list[int]) -> list[ClassType]:
    get_cohort(s, cohort_id)
    wanted = sorted(set(class_type_ids))
    if wanted:
        found = set(s.execute(select(ClassType.id).where(ClassType.id.in_(wanted))).scalars())
        missing = [cid for cid in wanted if cid not in found]
        if missing:
            raise ValidationError(f"Unknown class type ids: {missing}")
    s.execute(delete(CohortSessionAccess).where(CohortSessionAccess.cohort_id == cohort_id))
    for cid in wanted:
        s.add(CohortSessionAccess(cohort_id=cohort_id, class_type_id=cid))
    s.flush()
    return get_cohort_session_access(s, cohort_id)
