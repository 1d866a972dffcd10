# fastapi-cache wraps endpoints, so annotations here must stay real objects
# rather than postponed strings.
from datetime import date
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi_cache.decorator import cache

from api.auth import TokenData, require_admin, require_coach
from core.config import get_settings
from core.db import session_scope
from core.services import reports as report_service

settings = get_settings()
router = APIRouter(prefix="/reports", tags=["reports"])


def report_key_builder(
    func,
    namespace: str = "",
    *,
    request: Optional[Request] = None,
    response: Optional[Response] = None,
    args: tuple = (),
    kwargs: Optional[dict[str, Any]] = None,
) -> str:
    """Reports are scoped to the caller, so the cache key is too."""
    user = (kwargs or {}).get("current_user")
    owner = user.user_id if user is not None else "anonymous"
    if request is None:
        return f"{namespace}:{func.__module__}.{func.__name__}:{owner}"
    return f"{namespace}:{owner}:{request.url.path}?{request.url.query}"


@router.get("/dashboard")
@cache(expire=settings.report_cache_seconds, namespace="reports", key_builder=report_key_builder)
def dashboard(current_user: Annotated[TokenData, Depends(require_coach)]) -> dict[str, Any]:
    with session_scope() as s:
        return report_service.dashboard_overview(s, current_user.actor)


@router.get("/members")
@cache(expire=settings.report_cache_seconds, namespace="reports", key_builder=report_key_builder)
def members(
    current_user: Annotated[TokenData, Depends(require_coach)],
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> dict[str, Any]:
    with session_scope() as s:
        return report_service.member_engagement_report(s, current_user.actor, date_from=date_from, date_to=date_to)


@router.get("/cohorts")
@cache(expire=settings.report_cache_seconds, namespace="reports", key_builder=report_key_builder)
def cohorts(current_user: Annotated[TokenData, Depends(require_coach)]) -> dict[str, Any]:
    with session_scope() as s:
        return report_service.cohort_report(s, current_user.actor)


@router.get("/revenue")
@cache(expire=settings.report_cache_seconds, namespace="reports", key_builder=report_key_builder)
def revenue(current_user: Annotated[TokenData, Depends(require_admin)], year: Optional[int] = None) -> dict[str, Any]:
    with session_scope() as s:
        return report_service.revenue_report(s, current_user.actor, year=year)


@router.get("/compliance")
@cache(expire=settings.report_cache_seconds, namespace="reports", key_builder=report_key_builder)
def compliance(current_user: Annotated[TokenData, Depends(require_coach)]) -> dict[str, Any]:
    with session_scope() as s:
        return report_service.compliance_report(s, current_user.actor)


@router.get("/attendance")
@cache(expire=settings.report_cache_seconds, namespace="reports", key_builder=report_key_builder)
def attendance(current_user: Annotated[TokenData, Depends(require_coach)]) -> dict[str, Any]:
    with session_scope() as s:
        return report_service.session_attendance_report(s, current_user.actor)


@router.get("/memberships")
@cache(expire=settings.report_cache_seconds, namespace="reports", key_builder=report_key_builder)
def memberships(current_user: Annotated[TokenData, Depends(require_admin)]) -> dict[str, Any]:
    with session_scope() as s:
        return report_service.membership_report(s, current_user.actor)


@router.get("/export")
def export(
    current_user: Annotated[TokenData, Depends(require_coach)],
    report_type: str = Query(..., alias="type"),
    fmt: str = Query("csv", alias="format"),
) -> Response:
    with session_scope() as s:
        exported = report_service.export_report(s, current_user.actor, report_type, fmt)
    return Response(
        content=exported["content"],
        media_type=exported["content_type"],
        headers={"Content-Disposition": f'attachment; filename="{exported["filename"]}"'},
    )
