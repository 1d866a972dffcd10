"""Application configuration with environment-specific profiles.

Supports dev, staging, production and test environments via APP_ENV.
All values can be overridden by environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Settings:
    """Immutable application settings resolved from environment."""

    database_url: str
    app_env: str = "dev"
    secret_key: str = "change-me"
    jwt_secret: str = "jwt-change-me"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 480
    log_level: str = "INFO"

    # HTTP service
    redis_url: str = "redis://localhost:6379/0"
    cache_prefix: str = "centurion"
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:3000"])
    request_id_header_name: str = "X-Request-ID"
    rate_limit_enabled: bool = True
    rate_limit_storage_uri: str = "memory://"
    trust_proxy_headers: bool = False
    auth_token_rate_limit: str = "10/minute"
    webhook_rate_limit: str = "120/minute"
    report_cache_seconds: int = 60

    # Attention queue
    attention_cache_ttl_minutes: int = 60
    attention_batch_size: int = 200

    # Payments
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_api_base: str = "https://api.stripe.com/v1"
    currency: str = "gbp"

    # Email
    resend_api_key: str = ""
    email_from: str = "Centurion <noreply@centurion.local>"
    email_api_base: str = "https://api.resend.com"
    app_url: str = "http://localhost:3000"

    # Calendar
    google_service_account_email: str = ""
    google_private_key: str = ""
    google_calendar_id: str = "primary"
    time_zone: str = "America/New_York"

    # Outbound HTTP
    http_retry_attempts: int = 3
    http_timeout_seconds: float = 30.0

    # Pagination
    default_page_size: int = 50
    max_page_size: int = 200

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def calendar_enabled(self) -> bool:
        return bool(self.google_service_account_email and self.google_private_key)


# -- Environment profiles --

_ENV_PROFILES: dict[str, dict] = {
    "dev": {
        "log_level": "DEBUG",
        "jwt_expire_minutes": 1440,
        "rate_limit_enabled": False,
    },
    "test": {
        "log_level": "WARNING",
        "jwt_expire_minutes": 60,
        "rate_limit_enabled": False,
        "report_cache_seconds": 1,
    },
    "staging": {
        "log_level": "INFO",
        "jwt_expire_minutes": 480,
    },
    "production": {
        "log_level": "WARNING",
        "jwt_expire_minutes": 240,
        "auth_token_rate_limit": "5/minute",
    },
}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def get_database_url() -> str:
    """Resolve database URL from env var, Streamlit secrets, or local default.

    Resolution order:
    1. DATABASE_URL environment variable
    2. Streamlit secrets (`.streamlit/secrets.toml`)
    3. Local default for common dev setups
    """
    env_url = os.getenv("DATABASE_URL")
    if env_url:
        return env_url
    try:
        import streamlit as st

        return st.secrets["DATABASE_URL"]
    except Exception:
        pass
    return "postgresql+psycopg2://localhost:5432/centurion"


def get_settings() -> Settings:
    """Build Settings by merging environment profile with env-var overrides."""
    app_env = os.getenv("APP_ENV", "dev")
    profile = _ENV_PROFILES.get(app_env, _ENV_PROFILES["dev"])
    secret_key = os.getenv("SECRET_KEY", "change-me")

    return Settings(
        database_url=get_database_url(),
        app_env=app_env,
        secret_key=secret_key,
        jwt_secret=os.getenv("JWT_SECRET", os.getenv("SECRET_KEY", "jwt-change-me")),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        jwt_expire_minutes=int(os.getenv("JWT_EXPIRE_MINUTES", str(profile.get("jwt_expire_minutes", 480)))),
        log_level=os.getenv("LOG_LEVEL", profile.get("log_level", "INFO")),
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        cache_prefix=os.getenv("CACHE_PREFIX", "centurion"),
        cors_origins=_env_list("CORS_ORIGINS", ["http://localhost:3000"]),
        request_id_header_name=os.getenv("REQUEST_ID_HEADER", "X-Request-ID"),
        rate_limit_enabled=_env_bool("RATE_LIMIT_ENABLED", profile.get("rate_limit_enabled", True)),
        rate_limit_storage_uri=os.getenv("RATE_LIMIT_STORAGE_URI", "memory://"),
        trust_proxy_headers=_env_bool("TRUST_PROXY_HEADERS", False),
        auth_token_rate_limit=os.getenv("AUTH_TOKEN_RATE_LIMIT", profile.get("auth_token_rate_limit", "10/minute")),
        webhook_rate_limit=os.getenv("WEBHOOK_RATE_LIMIT", "120/minute"),
        report_cache_seconds=int(os.getenv("REPORT_CACHE_SECONDS", str(profile.get("report_cache_seconds", 60)))),
        attention_cache_ttl_minutes=int(os.getenv("ATTENTION_CACHE_TTL_MINUTES", "60")),
        attention_batch_size=int(os.getenv("ATTENTION_BATCH_SIZE", "200")),
        stripe_secret_key=os.getenv("STRIPE_SECRET_KEY", ""),
        stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET", ""),
        stripe_api_base=os.getenv("STRIPE_API_BASE", "https://api.stripe.com/v1"),
        currency=os.getenv("BILLING_CURRENCY", "gbp"),
        resend_api_key=os.getenv("RESEND_API_KEY", ""),
        email_from=os.getenv("EMAIL_FROM", "Centurion <noreply@centurion.local>"),
        email_api_base=os.getenv("EMAIL_API_BASE", "https://api.resend.com"),
        app_url=os.getenv("APP_URL", "http://localhost:3000"),
        google_service_account_email=os.getenv("GOOGLE_SERVICE_ACCOUNT_EMAIL", ""),
        google_private_key=os.getenv("GOOGLE_PRIVATE_KEY", "").replace("\\n", "\n"),
        google_calendar_id=os.getenv("GOOGLE_CALENDAR_ID", "primary"),
        time_zone=os.getenv("TIME_ZONE", "America/New_York"),
        http_retry_attempts=int(os.getenv("HTTP_RETRY_ATTEMPTS", "3")),
        http_timeout_seconds=float(os.getenv("HTTP_TIMEOUT_SECONDS", "30")),
        default_page_size=int(os.getenv("DEFAULT_PAGE_SIZE", "50")),
        max_page_size=int(os.getenv("MAX_PAGE_SIZE", "200")),
    )
