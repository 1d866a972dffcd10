"""Request throttling for the login and payment webhook endpoints."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from core.config import Settings, get_settings

logger = logging.getLogger(__name__)


def client_address(request: Request) -> str:
    """Key requests by caller IP; behind a trusted proxy use the first forwarded hop."""
    if get_settings().trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return get_remote_address(request)


def limiter_enabled(settings: Settings) -> bool:
    # tests would otherwise share one memory bucket across app instances
    if str(settings.app_env).lower() == "test":
        return False
    return bool(settings.rate_limit_enabled)


def build_limiter(settings: Settings) -> Limiter:
    return Limiter(
        key_func=client_address,
        storage_uri=settings.rate_limit_storage_uri,
        enabled=limiter_enabled(settings),
        headers_enabled=True,
    )


limiter = build_limiter(get_settings())


def rate_limit_exceeded_handler(request: Request, exc: Exception) -> JSONResponse:
    retry_after: Optional[str] = getattr(exc, "retry_after", None) if isinstance(exc, RateLimitExceeded) else None
    logger.warning(
        "rate_limited",
        extra={"path": request.url.path, "client": client_address(request), "limit": str(getattr(exc, "detail", ""))},
    )
    headers = {"Retry-After": str(retry_after)} if retry_after is not None else {}
    return JSONResponse(
        status_code=429,
        content={"detail": {"code": "RATE_LIMITED", "message": "Too many requests. Try again shortly."}},
        headers=headers,
    )
