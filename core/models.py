from __future__ import annotations

import datetime as dt
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from core.clock import utcnow

ROLES = ("admin", "coach", "client")
COHORT_STATUSES = ("active", "completed", "archived")
COHORT_MEMBERSHIP_STATUSES = ("active", "paused", "inactive")
SESSION_STATUSES = ("scheduled", "cancelled", "completed")
REGISTRATION_STATUSES = ("registered", "waitlisted", "cancelled", "late_cancelled", "attended", "no_show")
PLAN_TYPES = ("recurring", "pack", "prepaid")
USER_MEMBERSHIP_STATUSES = ("active", "paused", "expired", "cancelled")
PAYMENT_STATUSES = ("unpaid", "paid", "overdue", "cancelled")
RESPONSE_STATUSES = ("in_progress", "completed")
ENTITY_TYPES = ("user", "coach", "cohort")


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True)
    name: Mapped[str | None] = mapped_column(String(160))
    password_hash: Mapped[str] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(20), index=True, default="client")
    check_in_frequency_days: Mapped[int | None] = mapped_column(Integer)
    is_test_user: Mapped[bool] = mapped_column(Boolean, default=False)
    failed_attempts: Mapped[int] = mapped_column(Integer, default=0)
    locked_until: Mapped[dt.datetime | None] = mapped_column(DateTime)
    last_login_at: Mapped[dt.datetime | None] = mapped_column(DateTime)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow)

    @property
    def display_name(self) -> str:
        return self.name or self.email


class Cohort(Base):
    __tablename__ = "cohorts"
    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(160), unique=True)
    description: Mapped[str | None] = mapped_column(Text)
    start_date: Mapped[dt.date] = mapped_column(Date)
    end_date: Mapped[dt.date | None] = mapped_column(Date)
    status: Mapped[str] = mapped_column(String(20), default="active", index=True)
    check_in_frequency_days: Mapped[int | None] = mapped_column(Integer)
    check_in_config: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow)

    members: Mapped[list["CohortMembership"]] = relationship(back_populates="cohort")
    coaches: Mapped[list["CoachCohortMembership"]] = relationship(back_populates="cohort")


class CohortMembership(Base):
    __tablename__ = "cohort_memberships"
    id: Mapped[int] = mapped_column(primary_key=True)
    cohort_id: Mapped[int] = mapped_column(ForeignKey("cohorts.id"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    status: Mapped[str] = mapped_column(String(20), default="active")
    joined_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow)
    left_at: Mapped[dt.datetime | None] = mapped_column(DateTime)

    cohort: Mapped[Cohort] = relationship(back_populates="members")
    user: Mapped[User] = relationship()
    __table_args__ = (UniqueConstraint("cohort_id", "user_id", name="uq_cohort_member"),)


class CoachCohortMembership(Base):
    __tablename__ = "coach_cohort_memberships"
    id: Mapped[int] = mapped_column(primary_key=True)
    coach_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    cohort_id: Mapped[int] = mapped_column(ForeignKey("cohorts.id"), index=True)

    cohort: Mapped[Cohort] = relationship(back_populates="coaches")
    coach: Mapped[User] = relationship()
    __table_args__ = (UniqueConstraint("coach_id", "cohort_id", name="uq_coach_cohort"),)


class Entry(Base):
    __tablename__ = "entries"
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    date: Mapped[dt.date] = mapped_column(Date, index=True)
    weight: Mapped[float | None] = mapped_column()
    steps: Mapped[int | None] = mapped_column(Integer)
    calories: Mapped[int | None] = mapped_column(Integer)
    sleep_quality: Mapped[int | None] = mapped_column(Integer)
    perceived_stress: Mapped[int | None] = mapped_column(Integer)
    notes: Mapped[str | None] = mapped_column(Text)
    custom_responses: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    data_sources: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_entry_daily"),
        CheckConstraint("sleep_quality is null or sleep_quality between 1 and 10"),
        CheckConstraint("perceived_stress is null or perceived_stress between 1 and 10"),
    )


class ClassType(Base):
    __tablename__ = "class_types"
    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(120))
    description: Mapped[str | None] = mapped_column(Text)
    color: Mapped[str | None] = mapped_column(String(20))
    default_capacity: Mapped[int] = mapped_column(Integer, default=12)
    default_duration_mins: Mapped[int] = mapped_column(Integer, default=60)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow)


class CohortSessionAccess(Base):
    __tablename__ = "cohort_session_access"
    id: Mapped[int] = mapped_column(primary_key=True)
    cohort_id: Mapped[int] = mapped_column(ForeignKey("cohorts.id"), index=True)
    class_type_id: Mapped[int] = mapped_column(ForeignKey("class_types.id"), index=True)
    __table_args__ = (UniqueConstraint("cohort_id", "class_type_id", name="uq_cohort_class_type"),)


class ClassSession(Base):
    __tablename__ = "class_sessions"
    id: Mapped[int] = mapped_column(primary_key=True)
    class_type_id: Mapped[int | None] = mapped_column(ForeignKey("class_types.id"), index=True)
    coach_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    title: Mapped[str] = mapped_column(String(160))
    start_time: Mapped[dt.datetime] = mapped_column(DateTime, index=True)
    end_time: Mapped[dt.datetime] = mapped_column(DateTime)
    max_occupancy: Mapped[int] = mapped_column(Integer, default=12)
    location: Mapped[str | None] = mapped_column(String(200))
    notes: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="scheduled", index=True)
    google_event_id: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow)

    class_type: Mapped[ClassType | None] = relationship()
    registrations: Mapped[list["SessionRegistration"]] = relationship(back_populates="session")
    __table_args__ = (CheckConstraint("max_occupancy >= 1"),)


class SessionRegistration(Base):
    __tablename__ = "session_registrations"
    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[int] = mapped_column(ForeignKey("class_sessions.id"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    status: Mapped[str] = mapped_column(String(20), default="registered")
    waitlist_position: Mapped[int | None] = mapped_column(Integer)
    registered_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow)
    cancelled_at: Mapped[dt.datetime | None] = mapped_column(DateTime)
    promoted_from_waitlist_at: Mapped[dt.datetime | None] = mapped_column(DateTime)

    session: Mapped[ClassSession] = relationship(back_populates="registrations")
    user: Mapped[User] = relationship()
    __table_args__ = (
        UniqueConstraint("session_id", "user_id", name="uq_session_registration"),
        Index("ix_registration_waitlist", "session_id", "status", "waitlist_position"),
    )


class MembershipPlan(Base):
    __tablename__ = "membership_plans"
    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(160))
    description: Mapped[str | None] = mapped_column(Text)
    type: Mapped[str] = mapped_column(String(20))
    sessions_per_week: Mapped[int | None] = mapped_column(Integer)
    commitment_months: Mapped[int | None] = mapped_column(Integer)
    monthly_price: Mapped[int | None] = mapped_column(Integer)
    total_sessions: Mapped[int | None] = mapped_column(Integer)
    pack_price: Mapped[int | None] = mapped_column(Integer)
    duration_days: Mapped[int | None] = mapped_column(Integer)
    prepaid_price: Mapped[int | None] = mapped_column(Integer)
    late_cancel_cutoff_hours: Mapped[int] = mapped_column(Integer, default=2)
    allow_repeat_purchase: Mapped[bool] = mapped_column(Boolean, default=True)
    purchasable_by_client: Mapped[bool] = mapped_column(Boolean, default=True)
    penalty_system_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    stripe_product_id: Mapped[str | None] = mapped_column(String(255))
    stripe_price_id: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow)

    allowances: Mapped[list["MembershipAllowance"]] = relationship(
        back_populates="plan", cascade="all, delete-orphan"
    )

    @property
    def class_type_ids(self) -> list[int]:
        return [a.class_type_id for a in self.allowances]

    @property
    def price(self) -> int | None:
        if self.type == "recurring":
            return self.monthly_price
        if self.type == "pack":
            return self.pack_price
        return self.prepaid_price


class MembershipAllowance(Base):
    __tablename__ = "membership_allowances"
    id: Mapped[int] = mapped_column(primary_key=True)
    plan_id: Mapped[int] = mapped_column(ForeignKey("membership_plans.id"), index=True)
    class_type_id: Mapped[int] = mapped_column(ForeignKey("class_types.id"))

    plan: Mapped[MembershipPlan] = relationship(back_populates="allowances")
    __table_args__ = (UniqueConstraint("plan_id", "class_type_id", name="uq_plan_class_type"),)


class UserMembership(Base):
    __tablename__ = "user_memberships"
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    plan_id: Mapped[int] = mapped_column(ForeignKey("membership_plans.id"), index=True)
    status: Mapped[str] = mapped_column(String(20), default="active", index=True)
    start_date: Mapped[dt.date] = mapped_column(Date)
    end_date: Mapped[dt.date | None] = mapped_column(Date)
    sessions_remaining: Mapped[int | None] = mapped_column(Integer)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), index=True)
    stripe_checkout_session_id: Mapped[str | None] = mapped_column(String(255), unique=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    plan: Mapped[MembershipPlan] = relationship()
    user: Mapped[User] = relationship()


class Invoice(Base):
    __tablename__ = "invoices"
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    month: Mapped[dt.date] = mapped_column(Date)
    total_amount: Mapped[int] = mapped_column(Integer, default=0)
    payment_status: Mapped[str] = mapped_column(String(20), default="unpaid", index=True)
    paid_at: Mapped[dt.datetime | None] = mapped_column(DateTime)
    description: Mapped[str | None] = mapped_column(Text)
    stripe_payment_url: Mapped[str | None] = mapped_column(String(500))
    email_sent: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow)

    user: Mapped[User] = relationship()
    __table_args__ = (
        UniqueConstraint("user_id", "month", name="uq_invoice_user_month"),
        CheckConstraint("total_amount >= 0"),
    )


class QuestionnaireBundle(Base):
    __tablename__ = "questionnaire_bundles"
    id: Mapped[int] = mapped_column(primary_key=True)
    cohort_id: Mapped[int] = mapped_column(ForeignKey("cohorts.id"), index=True)
    week_number: Mapped[int] = mapped_column(Integer)
    questions: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow)

    cohort: Mapped[Cohort] = relationship()
    responses: Mapped[list["QuestionnaireResponse"]] = relationship(back_populates="bundle")
    __table_args__ = (
        UniqueConstraint("cohort_id", "week_number", name="uq_bundle_week"),
        CheckConstraint("week_number between 1 and 12"),
    )


class QuestionnaireResponse(Base):
    __tablename__ = "questionnaire_responses"
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    bundle_id: Mapped[int] = mapped_column(ForeignKey("questionnaire_bundles.id"), index=True)
    week_number: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(20), default="in_progress")
    responses: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    bundle: Mapped[QuestionnaireBundle] = relationship(back_populates="responses")
    __table_args__ = (UniqueConstraint("user_id", "bundle_id", name="uq_response_user_bundle"),)


class AttentionScore(Base):
    __tablename__ = "attention_scores"
    id: Mapped[int] = mapped_column(primary_key=True)
    entity_type: Mapped[str] = mapped_column(String(20))
    entity_id: Mapped[int] = mapped_column(Integer)
    priority: Mapped[str] = mapped_column(String(10), index=True)
    score: Mapped[int] = mapped_column(Integer)
    reasons: Mapped[list[str]] = mapped_column(JSON, default=list)
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict)
    calculated_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow)
    expires_at: Mapped[dt.datetime | None] = mapped_column(DateTime, index=True)
    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", name="uq_attention_entity"),
        CheckConstraint("score between 0 and 100"),
    )


class SystemSetting(Base):
    __tablename__ = "system_settings"
    id: Mapped[int] = mapped_column(primary_key=True)
    key: Mapped[str] = mapped_column(String(120), unique=True)
    value: Mapped[Any] = mapped_column(JSON)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), index=True)
    action: Mapped[str] = mapped_column(String(120), index=True)
    target: Mapped[str | None] = mapped_column(String(160))
    details: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow)


class CoachNote(Base):
    __tablename__ = "coach_notes"
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    coach_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    week_number: Mapped[int] = mapped_column(Integer)
    notes: Mapped[str] = mapped_column(Text)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    coach: Mapped[User] = relationship(foreign_keys=[coach_id])
    __table_args__ = (CheckConstraint("week_number >= 1"),)


class WeeklyCoachResponse(Base):
    __tablename__ = "weekly_coach_responses"
    id: Mapped[int] = mapped_column(primary_key=True)
    coach_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    week_start: Mapped[dt.date] = mapped_column(Date)
    loom_url: Mapped[str | None] = mapped_column(String(500))
    note: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    __table_args__ = (UniqueConstraint("coach_id", "client_id", "week_start", name="uq_weekly_coach_response"),)


class UserGoals(Base):
    __tablename__ = "user_goals"
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), unique=True)
    current_weight_kg: Mapped[float | None] = mapped_column()
    target_weight_kg: Mapped[float | None] = mapped_column()
    height_cm: Mapped[float | None] = mapped_column()
    daily_calories_kcal: Mapped[int | None] = mapped_column(Integer)
    protein_grams: Mapped[float | None] = mapped_column()
    carb_grams: Mapped[float | None] = mapped_column()
    fat_grams: Mapped[float | None] = mapped_column()
    water_intake_ml: Mapped[int | None] = mapped_column(Integer)
    daily_steps_target: Mapped[int | None] = mapped_column(Integer)
    weekly_workout_minutes: Mapped[int | None] = mapped_column(Integer)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class PasswordResetToken(Base):
    __tablename__ = "password_reset_tokens"
    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(255), index=True)
    token: Mapped[str] = mapped_column(String(128), unique=True)
    expires_at: Mapped[dt.datetime] = mapped_column(DateTime)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow)
