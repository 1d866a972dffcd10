from __future__ import annotations

from datetime import datetime
from typing import Annotated, Optional

from fastapi import APIRouter, Depends

from api.auth import TokenData, get_current_user, require_admin, require_client, require_coach
from api.schemas import (
    AvailableSessionOut,
    CancellationOut,
    ClassSessionOut,
    ClassTypeOut,
    RegistrationDetailOut,
    RegistrationOut,
    RegistrationResultOut,
    SessionRosterItem,
    SessionUsageOut,
)
from core.db import session_scope
from core.services import class_sessions as session_service
from core.services import registration as registration_service
from core.validators import (
    AttendanceInput,
    ClassSessionInput,
    ClassSessionUpdateInput,
    ClassTypeInput,
    ClassTypeUpdateInput,
    RecurringSessionsInput,
    RegistrationInput,
)

router = APIRouter(tags=["sessions"])


@router.get("/class-types", response_model=list[ClassTypeOut])
def list_class_types(current_user: Annotated[TokenData, Depends(get_current_user)], active_only: bool = True):
    with session_scope() as s:
        return [ClassTypeOut.model_validate(c) for c in session_service.list_class_types(s, active_only=active_only)]


@router.post("/class-types", response_model=ClassTypeOut, status_code=201)
def create_class_type(body: ClassTypeInput, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        return ClassTypeOut.model_validate(session_service.create_class_type(s, admin.actor, body))


@router.patch("/class-types/{class_type_id}", response_model=ClassTypeOut)
def update_class_type(
    class_type_id: int, body: ClassTypeUpdateInput, admin: Annotated[TokenData, Depends(require_admin)]
):
    with session_scope() as s:
        return ClassTypeOut.model_validate(session_service.update_class_type(s, admin.actor, class_type_id, body))


@router.delete("/class-types/{class_type_id}", response_model=ClassTypeOut)
def delete_class_type(class_type_id: int, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        return ClassTypeOut.model_validate(session_service.delete_class_type(s, admin.actor, class_type_id))


@router.get("/sessions", response_model=list[ClassSessionOut])
def list_sessions(
    coach: Annotated[TokenData, Depends(require_coach)],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    class_type_id: Optional[int] = None,
    coach_id: Optional[int] = None,
    status: Optional[str] = None,
):
    with session_scope() as s:
        rows = session_service.list_sessions(
            s, start=start, end=end, class_type_id=class_type_id, coach_id=coach_id, status=status
        )
        return [ClassSessionOut.model_validate(r) for r in rows]


@router.get("/sessions/available", response_model=list[AvailableSessionOut])
def available_sessions(
    client: Annotated[TokenData, Depends(require_client)],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
):
    with session_scope() as s:
        rows = registration_service.get_available_sessions(s, client.user_id, start=start, end=end)
        return [
            AvailableSessionOut(
                session=ClassSessionOut.model_validate(r["session"]),
                registered_count=r["registered_count"],
                spots_left=max(0, r["session"].max_occupancy - r["registered_count"]),
                my_status=r["my_status"],
            )
            for r in rows
        ]


@router.post("/sessions", response_model=ClassSessionOut, status_code=201)
def create_session(body: ClassSessionInput, coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        return ClassSessionOut.model_validate(session_service.create_session(s, coach.actor, body))


@router.post("/sessions/recurring", response_model=list[ClassSessionOut], status_code=201)
def create_recurring_sessions(body: RecurringSessionsInput, coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        rows = session_service.generate_recurring_sessions(s, coach.actor, body)
        return [ClassSessionOut.model_validate(r) for r in rows]


@router.get("/sessions/{session_id}", response_model=ClassSessionOut)
def get_session(session_id: int, current_user: Annotated[TokenData, Depends(get_current_user)]):
    with session_scope() as s:
        return ClassSessionOut.model_validate(session_service.get_session(s, session_id))


@router.patch("/sessions/{session_id}", response_model=ClassSessionOut)
def update_session(
    session_id: int, body: ClassSessionUpdateInput, coach: Annotated[TokenData, Depends(require_coach)]
):
    with session_scope() as s:
        return ClassSessionOut.model_validate(session_service.update_session(s, coach.actor, session_id, body))


@router.post("/sessions/{session_id}/cancel", response_model=ClassSessionOut)
def cancel_session(session_id: int, coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        return ClassSessionOut.model_validate(session_service.cancel_session(s, coach.actor, session_id))


@router.get("/sessions/{session_id}/registrations", response_model=list[SessionRosterItem])
def session_registrations(session_id: int, coach: Annotated[TokenData, Depends(require_coach)]):
    with session_scope() as s:
        session_service.get_session(s, session_id)
        rows = registration_service.get_session_registrations(s, session_id)
        return [SessionRosterItem.model_validate(r) for r in rows]


@router.post("/registrations", response_model=RegistrationResultOut, status_code=201)
def register(body: RegistrationInput, client: Annotated[TokenData, Depends(require_client)]):
    with session_scope() as s:
        result = registration_service.register_for_session(s, client.user_id, body.session_id)
        return RegistrationResultOut(
            registration=RegistrationOut.model_validate(result.registration),
            waitlisted=result.waitlisted,
            waitlist_position=result.waitlist_position,
        )


@router.get("/registrations/me", response_model=list[RegistrationDetailOut])
def my_registrations(
    client: Annotated[TokenData, Depends(require_client)],
    status: Optional[str] = None,
    upcoming: bool = False,
):
    with session_scope() as s:
        rows = registration_service.get_my_registrations(s, client.user_id, status=status, upcoming=upcoming)
        return [RegistrationDetailOut.model_validate(r) for r in rows]


@router.post("/registrations/{registration_id}/cancel", response_model=CancellationOut)
def cancel_registration(registration_id: int, client: Annotated[TokenData, Depends(require_client)]):
    with session_scope() as s:
        result = registration_service.cancel_registration(s, client.user_id, registration_id)
        out = CancellationOut(
            registration=RegistrationOut.model_validate(result.registration),
            late_cancelled=result.late_cancelled,
            promoted_user_id=result.promotion.user_id if result.promotion else None,
        )
    if result.promotion is not None:
        registration_service.send_waitlist_promotion_email(result.promotion)
    return out


@router.patch("/registrations/{registration_id}/attendance", response_model=RegistrationOut)
def mark_attendance(
    registration_id: int, body: AttendanceInput, coach: Annotated[TokenData, Depends(require_coach)]
):
    with session_scope() as s:
        return RegistrationOut.model_validate(registration_service.mark_attendance(s, registration_id, body.status))


@router.get("/session-usage", response_model=Optional[SessionUsageOut])
def session_usage(current_user: Annotated[TokenData, Depends(get_current_user)], user_id: Optional[int] = None):
    with session_scope() as s:
        usage = registration_service.get_session_usage(s, current_user.actor, user_id=user_id)
        return SessionUsageOut(**usage) if usage else None
