from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from core.errors import ValidationError
from core.models import SystemSetting
from core.permissions import ensure_admin
from core.services.audit import log_audit_event
from core.validators import SystemSettingsUpdate

logger = logging.getLogger(__name__)

SYSTEM_SETTINGS_DEFAULTS: dict[str, Any] = {
    "maxClientsPerCoach": 50,
    "minClientsPerCoach": 10,
    "recentActivityDays": 14,
    "lowEngagementEntries": 7,
    "noActivityDays": 14,
    "criticalNoActivityDays": 30,
    "shortTermWindowDays": 7,
    "longTermWindowDays": 30,
    "defaultCheckInFrequencyDays": 7,
    "notificationTimeUtc": "09:00",
    "healthkitEnabled": True,
    "showPersonalizedPlan": True,
    "adminOverrideEmail": None,
    "adherenceGreenMinimum": 6,
    "adherenceAmberMinimum": 3,
    "attentionMissedCheckinsPolicy": "option_a",
    "consentVersion": "1.0.0",
}


def get_system_setting(s: Session, key: str, default: Any = None) -> Any:
    row = s.execute(select(SystemSetting).where(SystemSetting.key == key)).scalar_one_or_none()
    if row is not None and row.value is not None:
        return row.value
    if default is not None:
        return default
    return SYSTEM_SETTINGS_DEFAULTS.get(key)


def get_system_settings(s: Session) -> dict[str, Any]:
    settings = dict(SYSTEM_SETTINGS_DEFAULTS)
    for row in s.execute(select(SystemSetting)).scalars():
        if row.value is not None:
            settings[row.key] = row.value
    return settings


def set_system_settings(s: Session, values: dict[str, Any]) -> None:
    """Upsert raw key/value pairs without validation or auditing."""
    existing = {
        row.key: row
        for row in s.execute(select(SystemSetting).where(SystemSetting.key.in_(list(values)))).scalars()
    }
    for key, value in values.items():
        row = existing.get(key)
        if row is None:
            s.add(SystemSetting(key=key, value=value))
        else:
            row.value = value
    s.flush()


def update_system_settings(s: Session, actor, values: dict[str, Any]) -> dict[str, Any]:
    ensure_admin(actor, "Forbidden: only admins can update system settings")
    try:
        parsed = SystemSettingsUpdate.model_validate(values)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(f"Invalid setting {field}: {first.get('msg')}") from exc

    changes = parsed.model_dump(exclude_unset=True)
    if changes:
        set_system_settings(s, changes)
    log_audit_event(
        s,
        "UPDATE_SYSTEM_SETTINGS",
        actor_id=actor.id,
        target_type="SystemSettings",
        details={"keys": sorted(changes)},
    )
    logger.info("system_settings_updated", extra={"actor_id": actor.id, "keys": sorted(changes)})
    return get_system_settings(s)


def default_check_in_frequency(s: Session) -> Optional[int]:
    value = get_system_setting(s, "defaultCheckInFrequencyDays")
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None
