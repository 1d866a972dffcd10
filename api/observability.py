"""Request-scoped logging for the HTTP service.

Each log line is a single JSON object. The middleware binds a request id and,
once the bearer token is decoded, the caller's user id; both ride along on
every line logged while the request is in flight.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import time
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

_request_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("request_id", default=None)
_user_id_var: contextvars.ContextVar[Optional[int]] = contextvars.ContextVar("user_id", default=None)
_configured_level: Optional[int] = None
_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}
_QUIET_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore")
_UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def new_request_id() -> str:
    return uuid4().hex


def get_request_id() -> Optional[str]:
    return _request_id_var.get()


def set_request_id(value: Optional[str]) -> contextvars.Token:
    return _request_id_var.set(value)


def reset_request_id(token: contextvars.Token) -> None:
    _request_id_var.reset(token)
    _user_id_var.set(None)


def set_user_id(value: Optional[int]) -> None:
    _user_id_var.set(value)


def bound_context() -> dict[str, Any]:
    ctx: dict[str, Any] = {}
    request_id = _request_id_var.get()
    if request_id:
        ctx["request_id"] = request_id
    user_id = _user_id_var.get()
    if user_id is not None:
        ctx["user_id"] = user_id
    return ctx


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **bound_context(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        payload.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_") and key not in payload
        )
        return json.dumps(payload, default=str, separators=(",", ":"))


def configure_logging(level: str = "INFO") -> None:
    """Route root and uvicorn loggers through one stdout JSON handler."""
    global _configured_level
    numeric = getattr(logging, str(level).upper(), logging.INFO)
    if _configured_level == numeric:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(numeric)

    for name in _UVICORN_LOGGERS:
        uv = logging.getLogger(name)
        uv.handlers.clear()
        uv.propagate = True
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    _configured_level = numeric


def request_log_fields(
    *,
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    client_ip: Optional[str],
    query: str = "",
) -> dict[str, object]:
    fields: dict[str, object] = {
        "method": method,
        "path": path,
        "status_code": int(status_code),
        "duration_ms": round(float(duration_ms), 2),
        "client_ip": client_ip or "",
    }
    if query:
        fields["query"] = query
    return fields


def monotonic_ms() -> float:
    return time.perf_counter() * 1000.0
