"""Role checks shared by the service layer.

Anything with ``id`` and ``role`` attributes can act as an actor: a ``User``
row, or the ``Actor`` built from a decoded access token.
"""

from __future__ import annotations

from dataclasses import dataclass

from core.errors import PermissionDeniedError


@dataclass(frozen=True)
class Actor:
    id: int
    role: str


def is_admin(actor) -> bool:
    return getattr(actor, "role", None) == "admin"


def is_coach(actor) -> bool:
    """Coach permission is held by coaches and admins."""
    return getattr(actor, "role", None) in {"coach", "admin"}


def is_client(actor) -> bool:
    return getattr(actor, "role", None) == "client"


def ensure_admin(actor, message: str = "Forbidden") -> None:
    if not is_admin(actor):
        raise PermissionDeniedError(message)


def ensure_coach(actor, message: str = "Forbidden") -> None:
    if not is_coach(actor):
        raise PermissionDeniedError(message)
