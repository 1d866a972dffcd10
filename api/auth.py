from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Callable, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from api.observability import set_user_id
from core.config import get_settings
from core.permissions import Actor

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token", auto_error=False)


class TokenData(BaseModel):
    user_id: int
    username: str
    role: str

    @property
    def actor(self) -> Actor:
        return Actor(id=self.user_id, role=self.role)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str
    user_id: int


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": code, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_access_token(data: dict[str, Any], expires_minutes: Optional[int] = None) -> str:
    settings = get_settings()
    payload = dict(data)
    minutes = expires_minutes if expires_minutes is not None else settings.jwt_expire_minutes
    payload["exp"] = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> TokenData:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise _unauthorized("INVALID_TOKEN", "Could not validate credentials") from exc
    try:
        return TokenData(user_id=int(payload["user_id"]), username=str(payload["sub"]), role=str(payload["role"]))
    except (KeyError, TypeError, ValueError) as exc:
        raise _unauthorized("INVALID_TOKEN", "Could not validate credentials") from exc


def get_current_user(token: Annotated[Optional[str], Depends(oauth2_scheme)]) -> TokenData:
    if not token:
        raise _unauthorized("AUTH_REQUIRED", "Not authenticated")
    user = decode_access_token(token)
    set_user_id(user.user_id)
    return user


def check_roles(user: TokenData, allowed: set[str]) -> TokenData:
    # admin passes every role check
    if user.role != "admin" and user.role not in allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "FORBIDDEN_ROLE", "message": "Forbidden", "required_roles": sorted(allowed)},
        )
    return user


def require_roles(*roles: str) -> Callable[[TokenData], TokenData]:
    allowed = {r.lower() for r in roles}

    def _dependency(current_user: Annotated[TokenData, Depends(get_current_user)]) -> TokenData:
        return check_roles(current_user, allowed)

    return _dependency


def require_coach(current_user: Annotated[TokenData, Depends(get_current_user)]) -> TokenData:
    return check_roles(current_user, {"coach"})


def require_admin(current_user: Annotated[TokenData, Depends(get_current_user)]) -> TokenData:
    return check_roles(current_user, {"admin"})


def require_client(current_user: Annotated[TokenData, Depends(get_current_user)]) -> TokenData:
    return check_roles(current_user, {"client"})
