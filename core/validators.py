"""Pydantic validation models for all user-facing data entry points."""

from __future__ import annotations

from datetime import date as dt_date
from datetime import datetime as dt_datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from core.models import ROLES

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"
MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


class UserCreateInput(BaseModel):
    email: EmailStr
    name: Optional[str] = Field(default=None, max_length=160)
    role: str = "client"
    password: str = Field(min_length=10, max_length=128)
    is_test_user: bool = False
    check_in_frequency_days: Optional[int] = Field(default=None, ge=1, le=90)

    @field_validator("role")
    @classmethod
    def valid_role(cls, v):
        v = v.lower()
        if v not in ROLES:
            raise ValueError(f"role must be one of {ROLES}")
        return v

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v):
        return v.strip().lower()


class UserUpdateInput(BaseModel):
    name: Optional[str] = Field(default=None, max_length=160)
    is_test_user: Optional[bool] = None
    check_in_frequency_days: Optional[int] = None


class LoginInput(BaseModel):
    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class EntryInput(BaseModel):
    """Daily check-in. Only fields present in the request are written on update."""

    date: dt_date = Field(default_factory=dt_date.today)
    weight: Optional[float] = Field(default=None, gt=0, le=1000)
    steps: Optional[int] = Field(default=None, ge=0, le=200000)
    calories: Optional[int] = Field(default=None, ge=0, le=20000)
    sleep_quality: Optional[int] = Field(default=None, ge=1, le=10)
    perceived_stress: Optional[int] = Field(default=None, ge=1, le=10)
    notes: Optional[str] = Field(default=None, max_length=2000)
    custom_responses: Optional[dict[str, Any]] = None
    data_sources: Optional[dict[str, Any]] = None


class CustomPromptInput(BaseModel):
    label: str = Field(min_length=1, max_length=200)
    type: Literal["scale", "text", "number"]


class CheckInConfigInput(BaseModel):
    enabled_prompts: list[str] = Field(default_factory=list)
    custom_prompt: Optional[CustomPromptInput] = None


class FrequencyInput(BaseModel):
    days: Optional[int] = None


class CohortCreateInput(BaseModel):
    name: str = Field(min_length=1, max_length=160)
    description: Optional[str] = None
    start_date: dt_date
    end_date: Optional[dt_date] = None
    check_in_frequency_days: Optional[int] = Field(default=None, ge=1, le=90)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Name is required")
        return v


class CohortUpdateInput(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=160)
    description: Optional[str] = None
    start_date: Optional[dt_date] = None
    end_date: Optional[dt_date] = None


class CohortStatusInput(BaseModel):
    status: Literal["active", "completed", "archived"]


class CohortMemberInput(BaseModel):
    user_id: int = Field(gt=0)


class CohortMembershipStatusInput(BaseModel):
    status: Literal["active", "paused", "inactive"]


class CohortCoachInput(BaseModel):
    coach_id: int = Field(gt=0)


class SessionAccessInput(BaseModel):
    class_type_ids: list[int] = Field(default_factory=list)


class ClassTypeInput(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: Optional[str] = None
    color: Optional[str] = Field(default=None, max_length=20)
    default_capacity: int = Field(default=12, ge=1)
    default_duration_mins: int = Field(default=60, ge=1)


class ClassTypeUpdateInput(ClassTypeInput):
    is_active: bool = True


class ClassSessionInput(BaseModel):
    class_type_id: Optional[int] = None
    coach_id: Optional[int] = None
    title: str = Field(min_length=1, max_length=160)
    start_time: dt_datetime
    end_time: dt_datetime
    max_occupancy: Optional[int] = Field(default=None, ge=1)
    location: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _end_after_start(self):
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")
        return self


class ClassSessionUpdateInput(BaseModel):
    class_type_id: Optional[int] = None
    coach_id: Optional[int] = None
    title: Optional[str] = Field(default=None, min_length=1, max_length=160)
    start_time: Optional[dt_datetime] = None
    end_time: Optional[dt_datetime] = None
    max_occupancy: Optional[int] = Field(default=None, ge=1)
    location: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[Literal["scheduled", "cancelled", "completed"]] = None


class RecurringSessionsInput(BaseModel):
    class_type_id: Optional[int] = None
    coach_id: Optional[int] = None
    title: str = Field(min_length=1, max_length=160)
    day_of_week: int = Field(ge=0, le=6, description="0 = Sunday")
    start_time: str = Field(pattern=HHMM_PATTERN)
    end_time: str = Field(pattern=HHMM_PATTERN)
    start_date: dt_date
    weeks: int = Field(ge=1, le=52)
    max_occupancy: Optional[int] = Field(default=None, ge=1)
    location: Optional[str] = None

    @model_validator(mode="after")
    def _end_after_start(self):
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")
        return self


class RegistrationInput(BaseModel):
    session_id: int = Field(gt=0)


class AttendanceInput(BaseModel):
    status: Literal["attended", "no_show"]


class MembershipPlanInput(BaseModel):
    name: str = Field(min_length=1, max_length=160)
    description: Optional[str] = None
    type: Literal["recurring", "pack", "prepaid"]
    sessions_per_week: Optional[int] = Field(default=None, ge=1)
    commitment_months: Optional[int] = Field(default=None, ge=0)
    monthly_price: Optional[int] = Field(default=None, ge=0)
    total_sessions: Optional[int] = Field(default=None, ge=1)
    pack_price: Optional[int] = Field(default=None, ge=0)
    duration_days: Optional[int] = Field(default=None, ge=1)
    prepaid_price: Optional[int] = Field(default=None, ge=0)
    late_cancel_cutoff_hours: int = Field(default=2, ge=0, le=168)
    allow_repeat_purchase: bool = True
    purchasable_by_client: bool = True
    penalty_system_enabled: bool = False
    class_type_ids: Optional[list[int]] = None

    @model_validator(mode="after")
    def _type_requirements(self):
        if self.type == "recurring" and not self.sessions_per_week:
            raise ValueError("Recurring plans require sessions_per_week")
        if self.type == "pack" and not self.total_sessions:
            raise ValueError("Pack plans require total_sessions")
        if self.type == "prepaid" and not self.duration_days:
            raise ValueError("Prepaid plans require duration_days")
        return self


class MembershipPlanUpdateInput(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=160)
    description: Optional[str] = None
    sessions_per_week: Optional[int] = Field(default=None, ge=1)
    commitment_months: Optional[int] = Field(default=None, ge=0)
    monthly_price: Optional[int] = Field(default=None, ge=0)
    total_sessions: Optional[int] = Field(default=None, ge=1)
    pack_price: Optional[int] = Field(default=None, ge=0)
    duration_days: Optional[int] = Field(default=None, ge=1)
    prepaid_price: Optional[int] = Field(default=None, ge=0)
    late_cancel_cutoff_hours: Optional[int] = Field(default=None, ge=0, le=168)
    allow_repeat_purchase: Optional[bool] = None
    purchasable_by_client: Optional[bool] = None
    penalty_system_enabled: Optional[bool] = None
    is_active: Optional[bool] = None
    class_type_ids: Optional[list[int]] = None


class AssignMembershipInput(BaseModel):
    user_id: int = Field(gt=0)
    plan_id: int = Field(gt=0)
    start_date: Optional[dt_date] = None
    sessions_override: Optional[int] = Field(default=None, ge=0)


class CheckoutInput(BaseModel):
    plan_id: int = Field(gt=0)
    success_url: str = Field(min_length=1)
    cancel_url: str = Field(min_length=1)


class SubscriptionCancelInput(BaseModel):
    at_period_end: bool = True


class InvoiceCreateInput(BaseModel):
    user_id: int = Field(gt=0)
    month: str = Field(pattern=MONTH_PATTERN, description="YYYY-MM")
    amount: int = Field(ge=0, description="Minor units")
    description: Optional[str] = Field(default=None, max_length=500)


class InvoiceStatusInput(BaseModel):
    status: Literal["unpaid", "paid", "overdue", "cancelled"]


class QuestionnaireBundleInput(BaseModel):
    cohort_id: int = Field(gt=0)
    week_number: int = Field(ge=1, le=12)
    questions: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True


class QuestionnaireBundleUpdateInput(BaseModel):
    questions: Optional[dict[str, Any]] = None
    is_active: Optional[bool] = None


class QuestionnaireResponseInput(BaseModel):
    bundle_id: int = Field(gt=0)
    week_number: int = Field(ge=1, le=12)
    responses: dict[str, Any] = Field(default_factory=dict)
    status: Optional[Literal["in_progress", "completed"]] = None


class AdherenceSettingsInput(BaseModel):
    adherence_green_minimum: int = Field(ge=0)
    adherence_amber_minimum: int = Field(ge=0)
    attention_missed_checkins_policy: Literal["option_a", "option_b"] = "option_a"

    @model_validator(mode="after")
    def _green_above_amber(self):
        if self.adherence_green_minimum <= self.adherence_amber_minimum:
            raise ValueError("Green minimum must be greater than amber minimum")
        return self


class SystemSettingsUpdate(BaseModel):
    """Every key is optional; unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")

    maxClientsPerCoach: Optional[int] = Field(default=None, gt=0)
    minClientsPerCoach: Optional[int] = Field(default=None, gt=0)
    recentActivityDays: Optional[int] = Field(default=None, gt=0)
    lowEngagementEntries: Optional[int] = Field(default=None, gt=0)
    noActivityDays: Optional[int] = Field(default=None, gt=0)
    criticalNoActivityDays: Optional[int] = Field(default=None, gt=0)
    shortTermWindowDays: Optional[int] = Field(default=None, gt=0)
    longTermWindowDays: Optional[int] = Field(default=None, gt=0)
    defaultCheckInFrequencyDays: Optional[int] = Field(default=None, gt=0)
    notificationTimeUtc: Optional[str] = Field(default=None, pattern=HHMM_PATTERN)
    healthkitEnabled: Optional[bool] = None
    showPersonalizedPlan: Optional[bool] = None
    adminOverrideEmail: Optional[str] = None
    adherenceGreenMinimum: Optional[int] = Field(default=None, ge=0)
    adherenceAmberMinimum: Optional[int] = Field(default=None, ge=0)
    attentionMissedCheckinsPolicy: Optional[Literal["option_a", "option_b"]] = None
    consentVersion: Optional[str] = None


class CoachNoteInput(BaseModel):
    client_id: int = Field(gt=0)
    week_number: int = Field(ge=1)
    notes: str = Field(min_length=1, max_length=5000)


class CoachNoteUpdateInput(BaseModel):
    notes: str = Field(min_length=1, max_length=5000)


class WeeklyResponseInput(BaseModel):
    client_id: int = Field(gt=0)
    week_start: dt_date
    loom_url: Optional[str] = Field(default=None, max_length=500, pattern=r"^https?://\S+$")
    note: Optional[str] = Field(default=None, max_length=5000)

    @field_validator("loom_url", "note", mode="before")
    @classmethod
    def blank_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class QuestionnaireReminderInput(BaseModel):
    client_id: int = Field(gt=0)
    cohort_id: int = Field(gt=0)


class UserGoalsInput(BaseModel):
    current_weight_kg: Optional[float] = Field(default=None, gt=0)
    target_weight_kg: Optional[float] = Field(default=None, gt=0)
    height_cm: Optional[float] = Field(default=None, gt=0)
    daily_calories_kcal: Optional[int] = Field(default=None, gt=0)
    protein_grams: Optional[float] = Field(default=None, gt=0)
    carb_grams: Optional[float] = Field(default=None, gt=0)
    fat_grams: Optional[float] = Field(default=None, gt=0)
    water_intake_ml: Optional[int] = Field(default=None, gt=0)
    daily_steps_target: Optional[int] = Field(default=None, gt=0)
    weekly_workout_minutes: Optional[int] = Field(default=None, gt=0)


class PasswordResetRequestInput(BaseModel):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v):
        return v.strip().lower()


class PasswordResetInput(BaseModel):
    token: str = Field(min_length=1, max_length=128)
    password: str = Field(min_length=10, max_length=128)
