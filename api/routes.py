import logging
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, Response, status

from api.attention import router as attention_router
from api.auth import TokenData, TokenResponse, create_access_token, get_current_user, require_admin, require_coach
from api.billing import router as billing_router
from api.coach_notes import router as coach_notes_router
from api.cohorts import router as cohorts_router
from api.entries import router as entries_router
from api.goals import router as goals_router
from api.questionnaires import router as questionnaires_router
from api.ratelimit import limiter
from api.reports import router as reports_router
from api.review_queue import router as review_queue_router
from api.schemas import AuditLogOut, CoachOut, HealthOut, MessageOut, PaginatedResponse, ResetTokenOut, UserOut
from api.sessions import router as sessions_router
from core.config import get_settings
from core.db import session_scope
from core.services import password_reset as password_reset_service
from core.services.audit import list_audit_events
from core.services.cohorts import list_coaches
from core.services.system_settings import get_system_settings, update_system_settings
from core.services.users import authenticate, create_user, list_users, update_user
from core.validators import (
    LoginInput,
    PasswordResetInput,
    PasswordResetRequestInput,
    UserCreateInput,
    UserUpdateInput,
)

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/api/v1")


@router.get("/health", response_model=HealthOut, tags=["system"])
def health(request: Request):
    return HealthOut(
        status="ok",
        app_env=settings.app_env,
        cache_backend=getattr(request.app.state, "cache_backend", "unknown"),
    )


@router.post("/auth/token", response_model=TokenResponse, tags=["auth"])
@limiter.limit(settings.auth_token_rate_limit)
def login(request: Request, response: Response, body: LoginInput):
    result: Optional[TokenResponse] = None
    # failed-attempt counters must commit even when the login is rejected
    with session_scope() as s:
        outcome = authenticate(s, body.username, body.password)
        if outcome.ok:
            user = outcome.user
            token = create_access_token({"sub": user.email, "user_id": user.id, "role": user.role})
            result = TokenResponse(access_token=token, role=user.role, user_id=user.id)
    if outcome.locked:
        raise HTTPException(
            status_code=status.HTTP_423_LOCKED,
            detail={"code": "ACCOUNT_LOCKED", "message": "Account is temporarily locked. Try again later."},
        )
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "INVALID_CREDENTIALS", "message": "Invalid email or password"},
        )
    logger.info("login_succeeded", extra={"user_id": result.user_id, "role": result.role})
    return result


@router.post("/auth/password-reset/request", response_model=MessageOut, tags=["auth"])
@limiter.limit(settings.auth_token_rate_limit)
def request_password_reset(request: Request, response: Response, body: PasswordResetRequestInput):
    with session_scope() as s:
        notice = password_reset_service.request_password_reset(s, body.email)
    if notice is not None:
        password_reset_service.send_password_reset_email(notice)
    return MessageOut(message="If an account exists for that email, a reset link has been sent.")


@router.get("/auth/password-reset/validate", response_model=ResetTokenOut, tags=["auth"])
def validate_reset_token(token: str = Query(..., min_length=1, max_length=128)):
    with session_scope() as s:
        email = password_reset_service.validate_reset_token(s, token)
    return ResetTokenOut(valid=email is not None, email=email)


@router.post("/auth/password-reset", response_model=MessageOut, tags=["auth"])
def reset_password(body: PasswordResetInput):
    with session_scope() as s:
        password_reset_service.reset_password(s, body)
    return MessageOut(message="Password updated")


@router.get("/auth/me", response_model=TokenData, tags=["auth"])
def me(current_user: Annotated[TokenData, Depends(get_current_user)]):
    return current_user


@router.post("/users", response_model=UserOut, status_code=201, tags=["users"])
def create_user_endpoint(body: UserCreateInput, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        user = create_user(s, body)
        return UserOut.model_validate(user)


@router.get("/users", response_model=PaginatedResponse[UserOut], tags=["users"])
def list_users_endpoint(
    coach: Annotated[TokenData, Depends(require_coach)],
    role: Optional[str] = None,
    offset: int = Query(0, ge=0),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
):
    with session_scope() as s:
        rows, total = list_users(s, role=role, offset=offset, limit=limit)
        return PaginatedResponse[UserOut](items=[UserOut.model_validate(r) for r in rows], total=total, offset=offset, limit=limit)


@router.patch("/users/{user_id}", response_model=UserOut, tags=["users"])
def update_user_endpoint(
    user_id: int, body: UserUpdateInput, current_user: Annotated[TokenData, Depends(get_current_user)]
):
    if current_user.role == "client":
        if user_id != current_user.user_id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail={"code": "FORBIDDEN", "message": "Forbidden"})
        if "check_in_frequency_days" in body.model_fields_set:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"code": "FORBIDDEN", "message": "Only coaches can change check-in frequency"},
            )
    with session_scope() as s:
        user = update_user(s, user_id, body)
        return UserOut.model_validate(user)


@router.get("/system-settings", tags=["system"])
def read_system_settings(admin: Annotated[TokenData, Depends(require_admin)]) -> dict[str, Any]:
    with session_scope() as s:
        return get_system_settings(s)


@router.patch("/system-settings", tags=["system"])
def patch_system_settings(
    admin: Annotated[TokenData, Depends(require_admin)], body: dict[str, Any] = Body(...)
) -> dict[str, Any]:
    with session_scope() as s:
        return update_system_settings(s, admin.actor, body)


@router.get("/audit-logs", response_model=list[AuditLogOut], tags=["system"])
def audit_logs(
    admin: Annotated[TokenData, Depends(require_admin)],
    action: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
):
    with session_scope() as s:
        return [AuditLogOut.model_validate(r) for r in list_audit_events(s, action=action, limit=limit)]


@router.get("/coaches", response_model=list[CoachOut], tags=["users"])
def list_coaches_endpoint(admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        return [CoachOut.model_validate(c) for c in list_coaches(s)]


router.include_router(cohorts_router)
router.include_router(entries_router)
router.include_router(sessions_router)
router.include_router(billing_router)
router.include_router(questionnaires_router)
router.include_router(attention_router)
router.include_router(reports_router)
router.include_router(review_queue_router)
router.include_router(coach_notes_router)
router.include_router(goals_router)
