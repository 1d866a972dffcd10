from __future__ import annotations

from datetime import date as dt_date
from datetime import datetime as dt_datetime
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    items: list[T]
    total: int
    offset: int
    limit: int


class MessageOut(BaseModel):
    message: str


class HealthOut(BaseModel):
    status: str
    app_env: str
    cache_backend: str


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: Optional[str] = None
    role: str
    is_test_user: bool = False
    check_in_frequency_days: Optional[int] = None
    last_login_at: Optional[dt_datetime] = None
    created_at: Optional[dt_datetime] = None


class CohortOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    start_date: dt_date
    end_date: Optional[dt_date] = None
    status: str
    check_in_frequency_days: Optional[int] = None
    member_count: Optional[int] = None
    coach_count: Optional[int] = None


class CohortMembershipOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    cohort_id: int
    user_id: int
    status: str
    joined_at: dt_datetime
    left_at: Optional[dt_datetime] = None
    user: Optional[UserOut] = None


class CoachOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: Optional[str] = None


class EntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    date: dt_date
    weight: Optional[float] = None
    steps: Optional[int] = None
    calories: Optional[int] = None
    sleep_quality: Optional[int] = None
    perceived_stress: Optional[int] = None
    notes: Optional[str] = None
    custom_responses: Optional[dict[str, Any]] = None
    data_sources: Optional[dict[str, Any]] = None


class CheckInStatsOut(BaseModel):
    current_streak: int
    total_entries: int
    last_check_in: Optional[dt_date] = None


class CustomPromptOut(BaseModel):
    label: str
    type: str


class CheckInConfigOut(BaseModel):
    enabled_prompts: list[str]
    custom_prompt: Optional[CustomPromptOut] = None


class FrequencyConfigOut(BaseModel):
    system_default: Optional[int] = None
    cohort_override: Optional[int] = None
    cohort_name: Optional[str] = None
    user_override: Optional[int] = None
    effective: int


class ClassTypeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    color: Optional[str] = None
    default_capacity: int
    default_duration_mins: int
    is_active: bool


class ClassSessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    class_type_id: Optional[int] = None
    coach_id: int
    title: str
    start_time: dt_datetime
    end_time: dt_datetime
    max_occupancy: int
    location: Optional[str] = None
    notes: Optional[str] = None
    status: str
    google_event_id: Optional[str] = None
    class_type: Optional[ClassTypeOut] = None


class RegistrationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    session_id: int
    user_id: int
    status: str
    waitlist_position: Optional[int] = None
    registered_at: dt_datetime
    cancelled_at: Optional[dt_datetime] = None
    promoted_from_waitlist_at: Optional[dt_datetime] = None


class RegistrationDetailOut(RegistrationOut):
    session: Optional[ClassSessionOut] = None


class SessionRosterItem(RegistrationOut):
    user: Optional[CoachOut] = None


class RegistrationResultOut(BaseModel):
    registration: RegistrationOut
    waitlisted: bool
    waitlist_position: Optional[int] = None


class CancellationOut(BaseModel):
    registration: RegistrationOut
    late_cancelled: bool
    promoted_user_id: Optional[int] = None


class AvailableSessionOut(BaseModel):
    session: ClassSessionOut
    registered_count: int
    spots_left: int
    my_status: Optional[str] = None


class SessionUsageOut(BaseModel):
    type: str
    plan_name: str
    used: Optional[int] = None
    limit: Optional[int] = None
    remaining: Optional[int] = None
    sessions_remaining: Optional[int] = None
    total_sessions: Optional[int] = None
    days_remaining: Optional[int] = None
    end_date: Optional[dt_date] = None


class PlanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    type: str
    sessions_per_week: Optional[int] = None
    commitment_months: Optional[int] = None
    monthly_price: Optional[int] = None
    total_sessions: Optional[int] = None
    pack_price: Optional[int] = None
    duration_days: Optional[int] = None
    prepaid_price: Optional[int] = None
    late_cancel_cutoff_hours: int
    allow_repeat_purchase: bool
    purchasable_by_client: bool
    penalty_system_enabled: bool
    is_active: bool
    stripe_price_id: Optional[str] = None
    class_type_ids: list[int] = Field(default_factory=list)
    price: Optional[int] = None


class UserMembershipOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    plan_id: int
    status: str
    start_date: dt_date
    end_date: Optional[dt_date] = None
    sessions_remaining: Optional[int] = None
    stripe_subscription_id: Optional[str] = None
    plan: Optional[PlanOut] = None


class PlanSyncOut(BaseModel):
    product_id: str
    price_id: str


class CheckoutOut(BaseModel):
    session_id: Optional[str] = None
    url: Optional[str] = None


class InvoiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    month: dt_date
    total_amount: int
    payment_status: str
    paid_at: Optional[dt_datetime] = None
    description: Optional[str] = None
    stripe_payment_url: Optional[str] = None
    email_sent: bool = False
    created_at: Optional[dt_datetime] = None


class PaymentLinkOut(BaseModel):
    url: str


class EmailSentOut(BaseModel):
    success: bool
    error: Optional[str] = None


class RevenueStatsOut(BaseModel):
    year: int
    invoice_count: int
    total_amount: int
    paid_amount: int
    unpaid_amount: int
    overdue_amount: int
    paid_count: int
    unpaid_count: int
    overdue_count: int
    total_revenue: int
    monthly_revenue: dict[int, int]


class WebhookReceivedOut(BaseModel):
    received: bool = True


class BundleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    cohort_id: int
    week_number: int
    questions: dict[str, Any]
    is_active: bool


class ResponseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    bundle_id: int
    week_number: int
    status: str
    responses: dict[str, Any]
    updated_at: Optional[dt_datetime] = None


class WeeklyResponsesOut(BaseModel):
    bundle: Optional[BundleOut] = None
    responses: list[ResponseOut]
    completed: int
    in_progress: int


class AttentionItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entity_type: str
    entity_id: int
    entity_name: str = ""
    entity_email: Optional[str] = None
    priority: str
    score: int
    reasons: list[str] = Field(default_factory=list)
    suggested_actions: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    calculated_at: Optional[dt_datetime] = None


class AttentionQueueOut(BaseModel):
    red: list[AttentionItemOut]
    amber: list[AttentionItemOut]
    green: list[AttentionItemOut]
    total_clients: int
    last_calculated: Optional[dt_datetime] = None


class AdherenceSettingsOut(BaseModel):
    adherence_green_minimum: int
    adherence_amber_minimum: int
    attention_missed_checkins_policy: str
    default_check_in_frequency_days: Optional[int] = None


class AuditLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: Optional[int] = None
    action: str
    target: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    created_at: dt_datetime


class CoachNoteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    coach_id: int
    week_number: int
    notes: str
    created_at: dt_datetime
    updated_at: Optional[dt_datetime] = None
    coach: Optional[CoachOut] = None


class WeekNumberOut(BaseModel):
    client_id: int
    week_number: int


class WeeklyResponseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    client_id: int
    week_start: dt_date
    loom_url: Optional[str] = None
    note: Optional[str] = None


class QuestionnaireStatusOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: str
    last_updated: Optional[dt_datetime] = None
    hours_since_last_save: Optional[int] = None


class WeeklyStatsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    check_in_count: int
    check_in_rate: float
    expected_check_ins: int
    avg_weight: Optional[float] = None
    weight_trend: Optional[float] = None
    avg_steps: Optional[int] = None
    avg_calories: Optional[int] = None
    avg_sleep_quality: Optional[float] = None
    avg_stress: Optional[float] = None


class ClientWeeklySummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    client_id: int
    name: Optional[str] = None
    email: str
    cohort_id: int
    cohort_name: str
    stats: WeeklyStatsOut
    questionnaire_status: QuestionnaireStatusOut
    last_check_in_date: Optional[dt_date] = None
    attention_score: Optional[AttentionItemOut] = None


class WeeklySummariesOut(BaseModel):
    week_start: dt_date
    week_end: dt_date
    clients: list[ClientWeeklySummaryOut]


class ReviewQueueSummaryOut(BaseModel):
    total_clients: int
    red_priority: int
    amber_priority: int
    green_priority: int
    pending_reviews: int
    completed_reviews: int


class CoachCohortOut(BaseModel):
    id: int
    name: str
    status: str
    member_count: int


class ReminderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    success: bool
    message: str


class UserGoalsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    current_weight_kg: Optional[float] = None
    target_weight_kg: Optional[float] = None
    height_cm: Optional[float] = None
    daily_calories_kcal: Optional[int] = None
    protein_grams: Optional[float] = None
    carb_grams: Optional[float] = None
    fat_grams: Optional[float] = None
    water_intake_ml: Optional[int] = None
    daily_steps_target: Optional[int] = None
    weekly_workout_minutes: Optional[int] = None
    updated_at: Optional[dt_datetime] = None


class ResetTokenOut(BaseModel):
    valid: bool
    email: Optional[str] = None
