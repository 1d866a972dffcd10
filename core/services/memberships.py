from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from core.clock import utctoday
from core.errors import NotFoundError, ValidationError
from core.models import ClassType, MembershipAllowance, MembershipPlan, User, UserMembership
from core.services.email import EmailResult, EmailSender, get_email_sender
from core.validators import MembershipPlanInput, MembershipPlanUpdateInput

logger = logging.getLogger(__name__)


@dataclass
class MembershipActivation:
    user_id: int
    email: str
    name: str
    is_test_user: bool
    plan_name: str


def validate_plan_fields(plan: MembershipPlan) -> None:
    if plan.type == "recurring" and not (plan.sessions_per_week and plan.sessions_per_week >= 1):
        raise ValidationError("Recurring plans require sessions_per_week of at least 1")
    if plan.type == "pack" and not (plan.total_sessions and plan.total_sessions >= 1):
        raise ValidationError("Pack plans require total_sessions of at least 1")
    if plan.type == "prepaid" and not (plan.duration_days and plan.duration_days >= 1):
        raise ValidationError("Prepaid plans require duration_days of at least 1")


def _set_allowances(s: Session, plan: MembershipPlan, class_type_ids: list[int]) -> None:
    wanted = sorted(set(class_type_ids))
    if wanted:
        found = set(s.execute(select(ClassType.id).where(ClassType.id.in_(wanted))).scalars())
        missing = [cid for cid in wanted if cid not in found]
        if missing:
            raise ValidationError(f"Unknown class type ids: {missing}")
    plan.allowances.clear()
    s.flush()
    plan.allowances.extend(MembershipAllowance(class_type_id=cid) for cid in wanted)


def list_plans(s: Session, active_only: bool = False) -> list[MembershipPlan]:
    q = select(MembershipPlan).options(selectinload(MembershipPlan.allowances)).order_by(MembershipPlan.name)
    if active_only:
        q = q.where(MembershipPlan.is_active.is_(True))
    return list(s.execute(q).scalars())


def get_plan(s: Session, plan_id: int) -> MembershipPlan:
    plan = s.get(MembershipPlan, plan_id)
    if plan is None:
        raise NotFoundError("Membership plan not found")
    return plan


def create_plan(s: Session, data: MembershipPlanInput) -> MembershipPlan:
    fields = data.model_dump(exclude={"class_type_ids"})
    plan = MembershipPlan(**fields)
    validate_plan_fields(plan)
    s.add(plan)
    s.flush()
    if data.class_type_ids:
        _set_allowances(s, plan, data.class_type_ids)
        s.flush()
    logger.info("membership_plan_created", extra={"plan_id": plan.id, "type": plan.type})
    return plan


def update_plan(s: Session, plan_id: int, data: MembershipPlanUpdateInput) -> MembershipPlan:
    plan = get_plan(s, plan_id)
    changes = data.model_dump(exclude_unset=True)
    class_type_ids = changes.pop("class_type_ids", None)
    for key, value in changes.items():
        setattr(plan, key, value)
    validate_plan_fields(plan)
    if class_type_ids is not None:
        _set_allowances(s, plan, class_type_ids)
    s.flush()
    return plan


def deactivate_plan(s: Session, plan_id: int) -> MembershipPlan:
    plan = get_plan(s, plan_id)
    plan.is_active = False
    s.flush()
    return plan


def get_active_membership(s: Session, user_id: int) -> Optional[UserMembership]:
    return s.execute(
        select(UserMembership)
        .options(selectinload(UserMembership.plan).selectinload(MembershipPlan.allowances))
        .where(UserMembership.user_id == user_id, UserMembership.status == "active")
        .order_by(UserMembership.created_at.desc(), UserMembership.id.desc())
    ).scalars().first()


def get_membership_history(s: Session, user_id: int) -> list[UserMembership]:
    return list(
        s.execute(
            select(UserMembership)
            .options(selectinload(UserMembership.plan))
            .where(UserMembership.user_id == user_id)
            .order_by(UserMembership.created_at.desc(), UserMembership.id.desc())
        ).scalars()
    )


def build_membership(
    plan: MembershipPlan,
    user_id: int,
    start_date: date,
    sessions_override: Optional[int] = None,
    status: str = "active",
) -> UserMembership:
    end_date = None
    sessions_remaining = None
    if plan.type == "pack":
        sessions_remaining = sessions_override if sessions_override is not None else plan.total_sessions
    elif plan.type == "prepaid" and plan.duration_days:
        end_date = start_date + timedelta(days=plan.duration_days)
    return UserMembership(
        user_id=user_id,
        plan_id=plan.id,
        status=status,
        start_date=start_date,
        end_date=end_date,
        sessions_remaining=sessions_remaining,
    )


def assign_membership(
    s: Session,
    user_id: int,
    plan_id: int,
    start_date: Optional[date] = None,
    sessions_override: Optional[int] = None,
) -> UserMembership:
    if s.get(User, user_id) is None:
        raise NotFoundError("User not found")
    plan = get_plan(s, plan_id)
    if not plan.is_active:
        raise ValidationError("This plan is not currently available")

    today = utctoday()
    for current in s.execute(
        select(UserMembership).where(UserMembership.user_id == user_id, UserMembership.status == "active")
    ).scalars():
        current.status = "cancelled"
        current.end_date = today

    membership = build_membership(plan, user_id, start_date or today, sessions_override)
    s.add(membership)
    s.flush()
    logger.info("membership_assigned", extra={"user_id": user_id, "plan_id": plan_id, "membership_id": membership.id})
    return membership


def _get_membership(s: Session, membership_id: int) -> UserMembership:
    membership = s.get(UserMembership, membership_id)
    if membership is None:
        raise NotFoundError("Membership not found")
    return membership


def pause_membership(s: Session, membership_id: int) -> UserMembership:
    membership = _get_membership(s, membership_id)
    if membership.status != "active":
        raise ValidationError("Only active memberships can be paused")
    membership.status = "paused"
    s.flush()
    return membership


def resume_membership(s: Session, membership_id: int) -> UserMembership:
    membership = _get_membership(s, membership_id)
    if membership.status != "paused":
        raise ValidationError("Only paused memberships can be resumed")
    membership.status = "active"
    s.flush()
    return membership


def cancel_membership(s: Session, membership_id: int, today: Optional[date] = None) -> UserMembership:
    membership = _get_membership(s, membership_id)
    membership.status = "cancelled"
    membership.end_date = today or utctoday()
    s.flush()
    return membership


def activation_for(s: Session, membership: UserMembership) -> MembershipActivation:
    user = s.get(User, membership.user_id)
    plan = s.get(MembershipPlan, membership.plan_id)
    return MembershipActivation(
        user_id=user.id,
        email=user.email,
        name=user.name or "Member",
        is_test_user=bool(user.is_test_user),
        plan_name=plan.name,
    )


def send_membership_activated_email(activation: MembershipActivation, sender: EmailSender | None = None) -> EmailResult:
    sender = sender or get_email_sender()
    result = sender.send_system_email(
        "membership_activated",
        activation.email,
        {"userName": activation.name, "planName": activation.plan_name},
        is_test_user=activation.is_test_user,
    )
    if not result.success:
        logger.warning("membership_email_failed", extra={"user_id": activation.user_id, "error": result.error})
    return result
