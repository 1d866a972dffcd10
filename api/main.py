"""HTTP entry point: app factory, cache backend, error envelopes and request logging."""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi_cache import FastAPICache
from fastapi_cache.backends.inmemory import InMemoryBackend
from fastapi_cache.backends.redis import RedisBackend
from redis import asyncio as redis_async
from slowapi.errors import RateLimitExceeded

from api.observability import (
    configure_logging,
    monotonic_ms,
    new_request_id,
    request_log_fields,
    reset_request_id,
    set_request_id,
)
from api.ratelimit import limiter, rate_limit_exceeded_handler
from api.routes import router
from core.config import Settings, get_settings
from core.errors import ServiceError
from core.services.stripe_client import StripeError

logger = logging.getLogger(__name__)


def error_body(code: str, message: str) -> dict:
    return {"detail": {"code": code, "message": message}}


def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("service_error", extra={"code": exc.code, "path": request.url.path})
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.code, exc.message))


def payment_provider_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("payment_provider_error", extra={"error": str(exc), "path": request.url.path})
    return JSONResponse(status_code=502, content=error_body("PAYMENT_PROVIDER_ERROR", str(exc)))


async def init_cache_backend(app: FastAPI, settings: Settings) -> None:
    """Use Redis for report caching when reachable, else an in-process dict."""
    try:
        redis_client = redis_async.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
        await redis_client.ping()
    except Exception as exc:  # pragma: no cover - depends on runtime infra
        logger.warning("Redis unavailable, using in-memory cache backend: %s", exc)
        FastAPICache.init(InMemoryBackend(), prefix=settings.cache_prefix)
        app.state.redis = None
        app.state.cache_backend = "memory"
        return
    FastAPICache.init(RedisBackend(redis_client), prefix=settings.cache_prefix)
    app.state.redis = redis_client
    app.state.cache_backend = "redis"
    logger.info("cache_backend_initialized", extra={"cache_backend": "redis", "redis_url": settings.redis_url})


def install_request_context(app: FastAPI, settings: Settings) -> None:
    header_name = settings.request_id_header_name or "X-Request-ID"

    def log_request(request: Request, status_code: int, started_ms: float, failed: bool = False) -> None:
        fields = request_log_fields(
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            duration_ms=monotonic_ms() - started_ms,
            client_ip=getattr(request.client, "host", None),
            query=request.url.query,
        )
        if failed:
            logger.exception("http_request_error", extra=fields)
        else:
            logger.info("http_request", extra=fields)

    @app.middleware("http")
    async def request_context(request: Request, call_next: Callable) -> Response:
        request_id = (request.headers.get(header_name) or "").strip() or new_request_id()
        token = set_request_id(request_id)
        started_ms = monotonic_ms()
        try:
            response = await call_next(request)
        except Exception:
            log_request(request, 500, started_ms, failed=True)
            raise
        else:
            response.headers[header_name] = request_id
            log_request(request, response.status_code, started_ms)
            return response
        finally:
            reset_request_id(token)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_cache_backend(app, settings)
        try:
            yield
        finally:
            redis_client = getattr(app.state, "redis", None)
            if redis_client is not None:
                await redis_client.aclose()

    app = FastAPI(title="Centurion Coaching API", version="1.0.0", lifespan=lifespan)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(StripeError, payment_provider_error_handler)
    app.include_router(router)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_request_context(app, settings)
    logger.info("app_created", extra={"app_env": settings.app_env, "cors_origins": settings.cors_origins})
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host="0.0.0.0", port=8000, log_level="warning")
