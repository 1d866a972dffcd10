"""Retrying wrapper for outbound HTTP calls made with httpx."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    timeout: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds before retry number ``attempt`` (0-based)."""
        return min(self.initial_delay * (self.backoff_multiplier ** attempt), self.max_delay)


def request_with_retry(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request, retrying transport errors and retryable status codes.

    Returns the final response (which may still be an error status) or
    re-raises the last transport error once retries are exhausted.
    """
    policy = policy or RetryPolicy()
    kwargs.setdefault("timeout", policy.timeout)
    last_error: httpx.TransportError | None = None

    for attempt in range(policy.max_retries + 1):
        try:
            response = client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            last_error = exc
            if attempt >= policy.max_retries:
                break
            delay = policy.delay_for(attempt)
            logger.warning(
                "http_retry_transport_error",
                extra={"url": url, "attempt": attempt + 1, "delay_s": delay, "error": str(exc)},
            )
            sleep(delay)
            continue

        if response.status_code not in RETRYABLE_STATUS_CODES or attempt >= policy.max_retries:
            return response
        delay = policy.delay_for(attempt)
        logger.warning(
            "http_retry_status",
            extra={"url": url, "attempt": attempt + 1, "status_code": response.status_code, "delay_s": delay},
        )
        sleep(delay)

    assert last_error is not None
    raise last_error
