from __future__ import annotations

from typing import Annotated, Optional

from fastapi import APIRouter, Depends

from api.auth import TokenData, get_current_user
from api.schemas import UserGoalsOut
from core.db import session_scope
from core.services import goals as goals_service
from core.validators import UserGoalsInput

router = APIRouter(prefix="/goals", tags=["goals"])


@router.get("", response_model=Optional[UserGoalsOut])
def read_goals(current_user: Annotated[TokenData, Depends(get_current_user)], user_id: Optional[int] = None):
    with session_scope() as s:
        goals = goals_service.get_user_goals(s, current_user.actor, user_id)
        return UserGoalsOut.model_validate(goals) if goals else None


@router.put("", response_model=UserGoalsOut)
def save_goals(body: UserGoalsInput, current_user: Annotated[TokenData, Depends(get_current_user)]):
    with session_scope() as s:
        return UserGoalsOut.model_validate(goals_service.upsert_user_goals(s, current_user.user_id, body))
