from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from core.models import UserGoals
from core.permissions import ensure_coach
from core.validators import UserGoalsInput

logger = logging.getLogger(__name__)

GOAL_FIELDS = tuple(UserGoalsInput.model_fields)


def get_user_goals(s: Session, actor, user_id: Optional[int] = None) -> Optional[UserGoals]:
    """Goals for ``user_id``; reading someone else's requires coach access."""
    if user_id is not None and user_id != actor.id:
        ensure_coach(actor, "Forbidden: coach access required")
    target = user_id if user_id is not None else actor.id
    return s.execute(select(UserGoals).where(UserGoals.user_id == target)).scalar_one_or_none()


def upsert_user_goals(s: Session, user_id: int, data: UserGoalsInput) -> UserGoals:
    goals = s.execute(select(UserGoals).where(UserGoals.user_id == user_id)).scalar_one_or_none()
    if goals is None:
        goals = UserGoals(user_id=user_id)
        s.add(goals)
    # omitted fields are cleared, the form always submits the full set
    for name in GOAL_FIELDS:
        setattr(goals, name, getattr(data, name))
    s.flush()
    logger.info("user_goals_saved", extra={"user_id": user_id})
    return goals
