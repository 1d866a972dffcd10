"""Demo data for local development.

Creates an admin, two coaches, a cohort of clients with a few weeks of
check-ins, class types with a fortnight of sessions, membership plans and
invoices. Safe to run repeatedly: existing rows are left alone.
"""
from __future__ import annotations

import logging
from datetime import datetime, time, timedelta

from alembic import command
from alembic.config import Config
from sqlalchemy import select

from core.clock import utcnow, utctoday
from core.config import get_settings
from core.db import session_scope
from core.logging_config import setup_logging
from core.models import (
    ClassSession,
    ClassType,
    CoachCohortMembership,
    Cohort,
    CohortMembership,
    CohortSessionAccess,
    Entry,
    Invoice,
    MembershipAllowance,
    MembershipPlan,
    QuestionnaireBundle,
    User,
)
from core.security import hash_password
from core.services.attention import calculate_attention_queue
from core.services.memberships import build_membership
from core.services.system_settings import SYSTEM_SETTINGS_DEFAULTS, set_system_settings

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "DemoPass!2345"
DEMO_DOMAIN = "centurion.test"

CLASS_TYPES = [
    ("Strength", "#c0392b", 12, 60),
    ("Conditioning", "#2980b9", 16, 45),
    ("Mobility", "#27ae60", 10, 30),
]

PLANS = [
    {"name": "Unlimited Monthly", "type": "recurring", "sessions_per_week": 5, "commitment_months": 3, "monthly_price": 12900},
    {"name": "Twice Weekly", "type": "recurring", "sessions_per_week": 2, "commitment_months": 1, "monthly_price": 6900},
    {"name": "10 Class Pack", "type": "pack", "total_sessions": 10, "pack_price": 9000},
    {"name": "6 Week Challenge", "type": "prepaid", "duration_days": 42, "prepaid_price": 19900},
]

WEEK_ONE_QUESTIONS = {
    "title": "Week 1 reflection",
    "questions": [
        {"id": "goal", "type": "text", "label": "What is your main goal for the next 12 weeks?"},
        {"id": "confidence", "type": "scale", "label": "How confident are you (1-10)?"},
    ],
}


def run_migrations() -> None:
    cfg = Config("alembic.ini")
    command.upgrade(cfg, "head")


def _get_or_create_user(s, email: str, name: str, role: str) -> User:
    user = s.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if user is None:
        user = User(email=email, name=name, role=role, password_hash=hash_password(DEMO_PASSWORD), is_test_user=True)
        s.add(user)
        s.flush()
    return user


def seed_settings() -> None:
    with session_scope() as s:
        set_system_settings(s, {k: v for k, v in SYSTEM_SETTINGS_DEFAULTS.items() if v is not None})


def seed_people() -> None:
    today = utctoday()
    with session_scope() as s:
        _get_or_create_user(s, f"admin@{DEMO_DOMAIN}", "Avery Admin", "admin")
        coaches = [
            _get_or_create_user(s, f"coach{idx}@{DEMO_DOMAIN}", f"Coach {name}", "coach")
            for idx, name in enumerate(("Jordan", "Sam"), start=1)
        ]

        cohort = s.execute(select(Cohort).where(Cohort.name == "Autumn Transformation")).scalar_one_or_none()
        if cohort is None:
            cohort = Cohort(
                name="Autumn Transformation",
                description="Twelve-week coached cohort",
                start_date=today - timedelta(weeks=3),
                end_date=today + timedelta(weeks=9),
                status="active",
            )
            s.add(cohort)
            s.flush()
            s.add(CoachCohortMembership(coach_id=coaches[0].id, cohort_id=cohort.id))
            s.add(QuestionnaireBundle(cohort_id=cohort.id, week_number=1, questions=WEEK_ONE_QUESTIONS, is_active=True))

        for idx in range(1, 9):
            client = _get_or_create_user(s, f"client{idx}@{DEMO_DOMAIN}", f"Client {idx}", "client")
            joined = s.execute(
                select(CohortMembership.id).where(
                    CohortMembership.cohort_id == cohort.id, CohortMembership.user_id == client.id
                )
            ).first()
            if joined:
                continue
            s.add(CohortMembership(cohort_id=cohort.id, user_id=client.id, status="active"))
            # later clients check in less often so the attention queue has some spread
            gap = 1 + idx // 3
            for d in range(0, 21 - idx * 2, gap):
                s.add(
                    Entry(
                        user_id=client.id,
                        date=today - timedelta(days=d),
                        weight=round(80 - idx - d * 0.05, 1),
                        steps=6000 + idx * 500 + d * 10,
                        calories=2100 + idx * 20,
                        perceived_stress=3 + idx % 4,
                        sleep_quality=6 + idx % 3,
                    )
                )
    logger.info("seed_people_complete")


def seed_classes() -> None:
    today = utctoday()
    with session_scope() as s:
        coach = s.execute(select(User).where(User.email == f"coach1@{DEMO_DOMAIN}")).scalar_one()
        cohort = s.execute(select(Cohort).where(Cohort.name == "Autumn Transformation")).scalar_one()
        types = []
        for name, color, capacity, duration in CLASS_TYPES:
            ct = s.execute(select(ClassType).where(ClassType.name == name)).scalar_one_or_none()
            if ct is None:
                ct = ClassType(name=name, color=color, default_capacity=capacity, default_duration_mins=duration)
                s.add(ct)
                s.flush()
                s.add(CohortSessionAccess(cohort_id=cohort.id, class_type_id=ct.id))
            types.append(ct)

        if s.execute(select(ClassSession.id).limit(1)).first():
            return
        for day in range(14):
            session_day = today + timedelta(days=day)
            ct = types[day % len(types)]
            start = datetime.combine(session_day, time(7, 0))
            s.add(
                ClassSession(
                    class_type_id=ct.id,
                    coach_id=coach.id,
                    title=f"{ct.name} AM",
                    start_time=start,
                    end_time=start + timedelta(minutes=ct.default_duration_mins),
                    max_occupancy=ct.default_capacity,
                    location="Main studio",
                    status="scheduled",
                )
            )
    logger.info("seed_classes_complete")


def seed_billing() -> None:
    today = utctoday()
    with session_scope() as s:
        class_type_ids = list(s.execute(select(ClassType.id)).scalars())
        plans = []
        for plan_data in PLANS:
            plan = s.execute(select(MembershipPlan).where(MembershipPlan.name == plan_data["name"])).scalar_one_or_none()
            if plan is None:
                plan = MembershipPlan(**plan_data)
                s.add(plan)
                s.flush()
                for class_type_id in class_type_ids:
                    s.add(MembershipAllowance(plan_id=plan.id, class_type_id=class_type_id))
            plans.append(plan)
        s.flush()

        clients = list(s.execute(select(User).where(User.role == "client").order_by(User.id)).scalars())
        month = today.replace(day=1)
        for idx, client in enumerate(clients):
            plan = plans[idx % len(plans)]
            if not s.execute(select(Invoice.id).where(Invoice.user_id == client.id)).first():
                s.add(build_membership(plan, client.id, today - timedelta(days=14)))
                s.add(
                    Invoice(
                        user_id=client.id,
                        month=month,
                        total_amount=plan.price or 0,
                        payment_status="paid" if idx % 3 else "unpaid",
                        paid_at=utcnow() if idx % 3 else None,
                        description=f"{plan.name} {month:%B %Y}",
                    )
                )
    logger.info("seed_billing_complete")


def seed_attention() -> None:
    with session_scope() as s:
        queue = calculate_attention_queue(s, force_refresh=True)
    logger.info("seed_attention_complete", extra={"red": len(queue["red"]), "amber": len(queue["amber"])})


def main() -> None:
    setup_logging(get_settings().log_level, component="seed")
    run_migrations()
    seed_settings()
    seed_people()
    seed_classes()
    seed_billing()
    seed_attention()
    logger.info("seed_complete", extra={"password": DEMO_PASSWORD})


if __name__ == "__main__":
    main()
