"""Daily check-ins, streaks, prompt config and check-in frequency."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.clock import utctoday
from core.errors import NotFoundError, PermissionDeniedError, ValidationError
from core.models import Cohort, CohortMembership, Entry, User
from core.permissions import ensure_coach, is_admin, is_client
from core.services.attention import effective_frequency, recalculate_client_attention
from core.services.cohorts import coach_client_ids, get_cohort
from core.services.system_settings import default_check_in_frequency
from core.validators import CheckInConfigInput, EntryInput

logger = logging.getLogger(__name__)

MANDATORY_PROMPTS = ["weight", "steps", "calories", "perceivedStress"]
OPTIONAL_PROMPTS = ["sleepQuality", "notes"]
STATS_LOOKBACK_ENTRIES = 90
MIN_FREQUENCY_DAYS = 1
MAX_FREQUENCY_DAYS = 90

ENTRY_FIELDS = (
    "weight",
    "steps",
    "calories",
    "sleep_quality",
    "perceived_stress",
    "notes",
    "custom_responses",
    "data_sources",
)


def upsert_entry(s: Session, actor, data: EntryInput) -> Entry:
    """Create or update the actor's entry for ``data.date``.

    Only fields present in the request are written, so a partial update
    never clears values logged earlier in the day.
    """
    if not is_client(actor):
        raise PermissionDeniedError("Forbidden: only members can create check-ins")

    entry = s.execute(
        select(Entry).where(Entry.user_id == actor.id, Entry.date == data.date)
    ).scalar_one_or_none()
    created = entry is None
    if created:
        entry = Entry(user_id=actor.id, date=data.date)
        s.add(entry)
    for name in ENTRY_FIELDS:
        if name in data.model_fields_set:
            setattr(entry, name, getattr(data, name))
    s.flush()
    logger.info(
        "entry_upserted",
        extra={"user_id": actor.id, "date": data.date.isoformat(), "created": created},
    )

    try:
        with s.begin_nested():
            recalculate_client_attention(s, [actor.id])
    except SQLAlchemyError as exc:
        logger.warning("entry_attention_recalc_failed", extra={"user_id": actor.id, "error": str(exc)})
    return entry


def _ensure_can_view(s: Session, actor, user_id: int) -> None:
    if user_id == actor.id or is_admin(actor):
        return
    if is_client(actor):
        raise PermissionDeniedError("Forbidden: cannot view other users' entries")
    if user_id not in coach_client_ids(s, actor.id):
        raise PermissionDeniedError("Forbidden: client is not in your cohorts")


def get_entries(s: Session, actor, user_id: Optional[int] = None, limit: int = 100) -> list[Entry]:
    target = user_id if user_id is not None else actor.id
    _ensure_can_view(s, actor, target)
    return list(
        s.execute(
            select(Entry).where(Entry.user_id == target).order_by(Entry.date.desc()).limit(limit)
        ).scalars()
    )


def get_entry_by_date(s: Session, actor, day: date) -> Optional[Entry]:
    return s.execute(
        select(Entry).where(Entry.user_id == actor.id, Entry.date == day)
    ).scalar_one_or_none()


def current_streak(dates: list[date], today: date) -> int:
    """Consecutive days ending today; 0 when there is no entry today."""
    days = set(dates)
    streak = 0
    cursor = today
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def get_check_in_stats(s: Session, user_id: int, today: Optional[date] = None) -> dict[str, Any]:
    today = today or utctoday()
    dates = list(
        s.execute(
            select(Entry.date)
            .where(Entry.user_id == user_id, Entry.date <= today)
            .order_by(Entry.date.desc())
            .limit(STATS_LOOKBACK_ENTRIES)
        ).scalars()
    )
    total = s.execute(select(func.count(Entry.id)).where(Entry.user_id == user_id)).scalar_one()
    return {
        "total_entries": total,
        "current_streak": current_streak(dates, today),
        "last_check_in": dates[0] if dates else None,
    }


# check-in prompt config


def default_check_in_config() -> dict[str, Any]:
    return {"enabled_prompts": MANDATORY_PROMPTS + OPTIONAL_PROMPTS, "custom_prompt": None}


def normalize_check_in_config(raw: Optional[dict[str, Any]]) -> dict[str, Any]:
    if not raw:
        return default_check_in_config()
    enabled = [p for p in raw.get("enabled_prompts") or [] if p in OPTIONAL_PROMPTS]
    return {
        "enabled_prompts": MANDATORY_PROMPTS + enabled,
        "custom_prompt": raw.get("custom_prompt") or None,
    }


def _active_cohort(s: Session, user_id: int) -> Optional[Cohort]:
    return s.execute(
        select(Cohort)
        .join(CohortMembership, CohortMembership.cohort_id == Cohort.id)
        .where(CohortMembership.user_id == user_id, CohortMembership.status == "active")
        .order_by(CohortMembership.joined_at, CohortMembership.id)
    ).scalars().first()


def get_check_in_config(
    s: Session, cohort_id: Optional[int] = None, user_id: Optional[int] = None
) -> dict[str, Any]:
    """Config for ``cohort_id``, or for the user's active cohort when omitted."""
    if cohort_id is not None:
        cohort = get_cohort(s, cohort_id)
    elif user_id is not None:
        cohort = _active_cohort(s, user_id)
    else:
        cohort = None
    if cohort is None:
        return default_check_in_config()
    return normalize_check_in_config(cohort.check_in_config)


def update_check_in_config(s: Session, actor, cohort_id: int, data: CheckInConfigInput) -> dict[str, Any]:
    ensure_coach(actor, "Forbidden: only coaches can update check-in config")
    cohort = get_cohort(s, cohort_id)
    allowed = set(MANDATORY_PROMPTS) | set(OPTIONAL_PROMPTS)
    unknown = [p for p in data.enabled_prompts if p not in allowed]
    if unknown:
        raise ValidationError(f"Unknown prompts: {', '.join(unknown)}")
    optional = [p for p in OPTIONAL_PROMPTS if p in data.enabled_prompts]
    cohort.check_in_config = {
        "enabled_prompts": optional,
        "custom_prompt": data.custom_prompt.model_dump() if data.custom_prompt else None,
    }
    s.flush()
    logger.info("check_in_config_updated", extra={"cohort_id": cohort_id})
    return normalize_check_in_config(cohort.check_in_config)


# check-in frequency


def validate_frequency(days: Optional[int]) -> Optional[int]:
    if days is None:
        return None
    if not MIN_FREQUENCY_DAYS <= days <= MAX_FREQUENCY_DAYS:
        raise ValidationError("Frequency must be between 1 and 90 days")
    return days


def get_effective_check_in_frequency(s: Session, user_id: int) -> int:
    user = s.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    cohort = _active_cohort(s, user_id)
    return effective_frequency(
        user.check_in_frequency_days,
        cohort.check_in_frequency_days if cohort else None,
        default_check_in_frequency(s),
    )


def update_cohort_check_in_frequency(s: Session, actor, cohort_id: int, days: Optional[int]) -> Cohort:
    ensure_coach(actor, "Forbidden: only coaches can update check-in frequency")
    cohort = get_cohort(s, cohort_id)
    cohort.check_in_frequency_days = validate_frequency(days)
    s.flush()
    member_ids = s.execute(
        select(CohortMembership.user_id).where(CohortMembership.cohort_id == cohort_id)
    ).scalars().all()
    recalculate_client_attention(s, member_ids)
    return cohort


def update_user_check_in_frequency(s: Session, actor, user_id: int, days: Optional[int]) -> User:
    ensure_coach(actor, "Forbidden: only coaches can update check-in frequency")
    user = s.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    user.check_in_frequency_days = validate_frequency(days)
    s.flush()
    recalculate_client_attention(s, [user_id])
    return user


def get_check_in_frequency_config(s: Session, user_id: int) -> dict[str, Any]:
    user = s.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    cohort = _active_cohort(s, user_id)
    system_default = default_check_in_frequency(s)
    cohort_override = cohort.check_in_frequency_days if cohort else None
    return {
        "system_default": system_default,
        "cohort_override": cohort_override,
        "cohort_name": cohort.name if cohort else None,
        "user_override": user.check_in_frequency_days,
        "effective": effective_frequency(user.check_in_frequency_days, cohort_override, system_default),
    }
