"""coach notes, weekly reviews, goals and password reset tokens

Revision ID: 20261016_0002
Revises: 20261016_0001
Create Date: 2026-10-16
"""

from alembic import op
import sqlalchemy as sa


revision = "20261016_0002"
down_revision = "20261016_0001"
branch_labels = None
depends_on = None


def _now():
    return sa.text("CURRENT_TIMESTAMP")


def upgrade() -> None:
    op.create_table(
        "coach_notes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("coach_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("week_number", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=_now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=_now()),
        sa.CheckConstraint("week_number >= 1"),
    )
    op.create_index("ix_coach_notes_user_id", "coach_notes", ["user_id"])
    op.create_index("ix_coach_notes_coach_id", "coach_notes", ["coach_id"])

    op.create_table(
        "weekly_coach_responses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("coach_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("week_start", sa.Date(), nullable=False),
        sa.Column("loom_url", sa.String(length=500), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=_now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=_now()),
        sa.UniqueConstraint("coach_id", "client_id", "week_start", name="uq_weekly_coach_response"),
    )
    op.create_index("ix_weekly_coach_responses_coach_id", "weekly_coach_responses", ["coach_id"])
    op.create_index("ix_weekly_coach_responses_client_id", "weekly_coach_responses", ["client_id"])

    op.create_table(
        "user_goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, unique=True),
        sa.Column("current_weight_kg", sa.Float(), nullable=True),
        sa.Column("target_weight_kg", sa.Float(), nullable=True),
        sa.Column("height_cm", sa.Float(), nullable=True),
        sa.Column("daily_calories_kcal", sa.Integer(), nullable=True),
        sa.Column("protein_grams", sa.Float(), nullable=True),
        sa.Column("carb_grams", sa.Float(), nullable=True),
        sa.Column("fat_grams", sa.Float(), nullable=True),
        sa.Column("water_intake_ml", sa.Integer(), nullable=True),
        sa.Column("daily_steps_target", sa.Integer(), nullable=True),
        sa.Column("weekly_workout_minutes", sa.Integer(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=_now()),
    )

    op.create_table(
        "password_reset_tokens",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("token", sa.String(length=128), nullable=False, unique=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=_now()),
    )
    op.create_index("ix_password_reset_tokens_email", "password_reset_tokens", ["email"])


def downgrade() -> None:
    for table in ["password_reset_tokens", "user_goals", "weekly_coach_responses", "coach_notes"]:
        op.drop_table(table)
