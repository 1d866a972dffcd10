from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from core.models import AuditLog

logger = logging.getLogger(__name__)


def build_target(target_type: Optional[str], target_id: Optional[int]) -> Optional[str]:
    if target_type and target_id is not None:
        return f"{target_type}:{target_id}"
    return None


def log_audit_event(
    s: Session,
    action: str,
    actor_id: Optional[int],
    target_type: Optional[str] = None,
    target_id: Optional[int] = None,
    details: Optional[dict[str, Any]] = None,
) -> AuditLog:
    row = AuditLog(user_id=actor_id, action=action, target=build_target(target_type, target_id), details=details)
    s.add(row)
    s.flush()
    logger.info("audit_event", extra={"action": action, "actor_id": actor_id, "target": row.target})
    return row


def list_audit_events(s: Session, action: Optional[str] = None, limit: int = 100) -> list[AuditLog]:
    q = select(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)
    if action:
        q = q.where(AuditLog.action == action)
    return list(s.execute(q).scalars())
