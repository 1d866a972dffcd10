"""initial coaching schema

Revision ID: 20261016_0001
Revises:
Create Date: 2026-10-16
"""

from alembic import op
import sqlalchemy as sa


revision = "20261016_0001"
down_revision = None
branch_labels = None
depends_on = None


def _now():
    return sa.text("CURRENT_TIMESTAMP")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("name", sa.String(length=160), nullable=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="client"),
        sa.Column("check_in_frequency_days", sa.Integer(), nullable=True),
        sa.Column("is_test_user", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("failed_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("locked_until", sa.DateTime(), nullable=True),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=_now()),
    )
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "cohorts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=160), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("check_in_frequency_days", sa.Integer(), nullable=True),
        sa.Column("check_in_config", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=_now()),
    )
    op.create_index("ix_cohorts_status", "cohorts", ["status"])

    op.create_table(
        "cohort_memberships",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("cohort_id", sa.Integer(), sa.ForeignKey("cohorts.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("joined_at", sa.DateTime(), nullable=False, server_default=_now()),
        sa.Column("left_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("cohort_id", "user_id", name="uq_cohort_member"),
    )
    op.create_index("ix_cohort_memberships_cohort_id", "cohort_memberships", ["cohort_id"])
    op.create_index("ix_cohort_memberships_user_id", "cohort_memberships", ["user_id"])

    op.create_table(
        "coach_cohort_memberships",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("coach_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("cohort_id", sa.Integer(), sa.ForeignKey("cohorts.id"), nullable=False),
        sa.UniqueConstraint("coach_id", "cohort_id", name="uq_coach_cohort"),
    )
    op.create_index("ix_coach_cohort_memberships_coach_id", "coach_cohort_memberships", ["coach_id"])
    op.create_index("ix_coach_cohort_memberships_cohort_id", "coach_cohort_memberships", ["cohort_id"])

    op.create_table(
        "entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("weight", sa.Float(), nullable=True),
        sa.Column("steps", sa.Integer(), nullable=True),
        sa.Column("calories", sa.Integer(), nullable=True),
        sa.Column("sleep_quality", sa.Integer(), nullable=True),
        sa.Column("perceived_stress", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("custom_responses", sa.JSON(), nullable=True),
        sa.Column("data_sources", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=_now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=_now()),
        sa.UniqueConstraint("user_id", "date", name="uq_entry_daily"),
        sa.CheckConstraint("sleep_quality is null or sleep_quality between 1 and 10"),
        sa.CheckConstraint("perceived_stress is null or perceived_stress between 1 and 10"),
    )
    op.create_index("ix_entries_user_id", "entries", ["user_id"])
    op.create_index("ix_entries_date", "entries", ["date"])

    op.create_table(
        "class_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("color", sa.String(length=20), nullable=True),
        sa.Column("default_capacity", sa.Integer(), nullable=False, server_default="12"),
        sa.Column("default_duration_mins", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=_now()),
    )

    op.create_table(
        "cohort_session_access",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("cohort_id", sa.Integer(), sa.ForeignKey("cohorts.id"), nullable=False),
        sa.Column("class_type_id", sa.Integer(), sa.ForeignKey("class_types.id"), nullable=False),
        sa.UniqueConstraint("cohort_id", "class_type_id", name="uq_cohort_class_type"),
    )
    op.create_index("ix_cohort_session_access_cohort_id", "cohort_session_access", ["cohort_id"])
    op.create_index("ix_cohort_session_access_class_type_id", "cohort_session_access", ["class_type_id"])

    op.create_table(
        "class_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("class_type_id", sa.Integer(), sa.ForeignKey("class_types.id"), nullable=True),
        sa.Column("coach_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(length=160), nullable=False),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("end_time", sa.DateTime(), nullable=False),
        sa.Column("max_occupancy", sa.Integer(), nullable=False, server_default="12"),
        sa.Column("location", sa.String(length=200), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="scheduled"),
        sa.Column("google_event_id", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=_now()),
        sa.CheckConstraint("max_occupancy >= 1"),
    )
    op.create_index("ix_class_sessions_class_type_id", "class_sessions", ["class_type_id"])
    op.create_index("ix_class_sessions_coach_id", "class_sessions", ["coach_id"])
    op.create_index("ix_class_sessions_start_time", "class_sessions", ["start_time"])
    op.create_index("ix_class_sessions_status", "class_sessions", ["status"])

    op.create_table(
        "session_registrations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("class_sessions.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="registered"),
        sa.Column("waitlist_position", sa.Integer(), nullable=True),
        sa.Column("registered_at", sa.DateTime(), nullable=False, server_default=_now()),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("promoted_from_waitlist_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("session_id", "user_id", name="uq_session_registration"),
    )
    op.create_index("ix_session_registrations_session_id", "session_registrations", ["session_id"])
    op.create_index("ix_session_registrations_user_id", "session_registrations", ["user_id"])
    op.create_index(
        "ix_registration_waitlist", "session_registrations", ["session_id", "status", "waitlist_position"]
    )

    op.create_table(
        "membership_plans",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("sessions_per_week", sa.Integer(), nullable=True),
        sa.Column("commitment_months", sa.Integer(), nullable=True),
        sa.Column("monthly_price", sa.Integer(), nullable=True),
        sa.Column("total_sessions", sa.Integer(), nullable=True),
        sa.Column("pack_price", sa.Integer(), nullable=True),
        sa.Column("duration_days", sa.Integer(), nullable=True),
        sa.Column("prepaid_price", sa.Integer(), nullable=True),
        sa.Column("late_cancel_cutoff_hours", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("allow_repeat_purchase", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("purchasable_by_client", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("penalty_system_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("stripe_product_id", sa.String(length=255), nullable=True),
        sa.Column("stripe_price_id", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=_now()),
    )

    op.create_table(
        "membership_allowances",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("plan_id", sa.Integer(), sa.ForeignKey("membership_plans.id"), nullable=False),
        sa.Column("class_type_id", sa.Integer(), sa.ForeignKey("class_types.id"), nullable=False),
        sa.UniqueConstraint("plan_id", "class_type_id", name="uq_plan_class_type"),
    )
    op.create_index("ix_membership_allowances_plan_id", "membership_allowances", ["plan_id"])

    op.create_table(
        "user_memberships",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("plan_id", sa.Integer(), sa.ForeignKey("membership_plans.id"), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("sessions_remaining", sa.Integer(), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(length=255), nullable=True),
        sa.Column("stripe_checkout_session_id", sa.String(length=255), nullable=True, unique=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=_now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=_now()),
    )
    op.create_index("ix_user_memberships_user_id", "user_memberships", ["user_id"])
    op.create_index("ix_user_memberships_plan_id", "user_memberships", ["plan_id"])
    op.create_index("ix_user_memberships_status", "user_memberships", ["status"])
    op.create_index("ix_user_memberships_stripe_subscription_id", "user_memberships", ["stripe_subscription_id"])

    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("month", sa.Date(), nullable=False),
        sa.Column("total_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="unpaid"),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("stripe_payment_url", sa.String(length=500), nullable=True),
        sa.Column("email_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=_now()),
        sa.UniqueConstraint("user_id", "month", name="uq_invoice_user_month"),
        sa.CheckConstraint("total_amount >= 0"),
    )
    op.create_index("ix_invoices_user_id", "invoices", ["user_id"])
    op.create_index("ix_invoices_payment_status", "invoices", ["payment_status"])

    op.create_table(
        "questionnaire_bundles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("cohort_id", sa.Integer(), sa.ForeignKey("cohorts.id"), nullable=False),
        sa.Column("week_number", sa.Integer(), nullable=False),
        sa.Column("questions", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=_now()),
        sa.UniqueConstraint("cohort_id", "week_number", name="uq_bundle_week"),
        sa.CheckConstraint("week_number between 1 and 12"),
    )
    op.create_index("ix_questionnaire_bundles_cohort_id", "questionnaire_bundles", ["cohort_id"])

    op.create_table(
        "questionnaire_responses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("bundle_id", sa.Integer(), sa.ForeignKey("questionnaire_bundles.id"), nullable=False),
        sa.Column("week_number", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="in_progress"),
        sa.Column("responses", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=_now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=_now()),
        sa.UniqueConstraint("user_id", "bundle_id", name="uq_response_user_bundle"),
    )
    op.create_index("ix_questionnaire_responses_user_id", "questionnaire_responses", ["user_id"])
    op.create_index("ix_questionnaire_responses_bundle_id", "questionnaire_responses", ["bundle_id"])

    op.create_table(
        "attention_scores",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("entity_type", sa.String(length=20), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("priority", sa.String(length=10), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("reasons", sa.JSON(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("calculated_at", sa.DateTime(), nullable=False, server_default=_now()),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("entity_type", "entity_id", name="uq_attention_entity"),
        sa.CheckConstraint("score between 0 and 100"),
    )
    op.create_index("ix_attention_scores_priority", "attention_scores", ["priority"])
    op.create_index("ix_attention_scores_expires_at", "attention_scores", ["expires_at"])

    op.create_table(
        "system_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(length=120), nullable=False, unique=True),
        sa.Column("value", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=_now()),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("action", sa.String(length=120), nullable=False),
        sa.Column("target", sa.String(length=160), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=_now()),
    )
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])


def downgrade() -> None:
    for table in [
        "audit_logs",
        "system_settings",
        "attention_scores",
        "questionnaire_responses",
        "questionnaire_bundles",
        "invoices",
        "user_memberships",
        "membership_allowances",
        "membership_plans",
        "session_registrations",
        "class_sessions",
        "cohort_session_access",
        "class_types",
        "entries",
        "coach_cohort_memberships",
        "cohort_memberships",
        "cohorts",
        "users",
    ]:
        op.drop_table(table)
