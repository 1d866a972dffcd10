"""Minimal Stripe REST client and webhook signature verification.

Requests are form-encoded with bracketed keys (``metadata[user_id]=7``) as the
Stripe API expects.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from typing import Any, Optional
from uuid import uuid4

import httpx

from core.config import Settings, get_settings
from core.http_retry import RetryPolicy, request_with_retry

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300


class StripeError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SignatureVerificationError(ValueError):
    pass


def _flatten(data: dict[str, Any], prefix: str = "") -> list[tuple[str, str]]:
    items: list[tuple[str, str]] = []
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            items.extend(_flatten(value, name))
        elif isinstance(value, (list, tuple)):
            for idx, item in enumerate(value):
                if isinstance(item, dict):
                    items.extend(_flatten(item, f"{name}[{idx}]"))
                else:
                    items.append((f"{name}[{idx}]", str(item)))
        elif isinstance(value, bool):
            items.append((name, "true" if value else "false"))
        else:
            items.append((name, str(value)))
    return items


def compute_signature(payload: str, timestamp: int | str, secret: str) -> str:
    signed = f"{timestamp}.{payload}"
    return hmac.new(secret.encode(), signed.encode(), hashlib.sha256).hexdigest()


def verify_webhook_signature(
    payload: bytes | str,
    signature_header: str,
    secret: str,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> dict[str, Any]:
    """Validate a ``Stripe-Signature`` header and return the decoded event."""
    body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
    timestamp: str | None = None
    signatures: list[str] = []
    for part in signature_header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)

    if not timestamp or not signatures:
        raise SignatureVerificationError("Unable to extract timestamp and signatures from header")

    expected = compute_signature(body, timestamp, secret)
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise SignatureVerificationError("No signatures found matching the expected signature for payload")

    try:
        ts = int(timestamp)
    except ValueError as exc:
        raise SignatureVerificationError("Invalid timestamp in signature header") from exc
    current = time.time() if now is None else now
    if tolerance and abs(current - ts) > tolerance:
        raise SignatureVerificationError("Timestamp outside the tolerance zone")

    try:
        return json.loads(body)
    except json.JSONDecodeError as exc:
        raise SignatureVerificationError("Invalid JSON payload") from exc


class StripeClient:
    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.Client | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.settings = settings or get_settings()
        self._client = client
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=self.settings.http_retry_attempts, timeout=self.settings.http_timeout_seconds
        )

    @property
    def configured(self) -> bool:
        return bool(self.settings.stripe_secret_key)

    def _request(self, method: str, path: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
        if not self.configured:
            raise StripeError("Payment provider is not configured")
        headers = {"Authorization": f"Bearer {self.settings.stripe_secret_key}"}
        if method == "POST":
            # one key per logical request, shared by its retries
            headers["Idempotency-Key"] = uuid4().hex
        client = self._client or httpx.Client()
        try:
            resp = request_with_retry(
                client,
                method,
                f"{self.settings.stripe_api_base}{path}",
                data=dict(_flatten(data)) if data else None,
                headers=headers,
                policy=self.retry_policy,
            )
        finally:
            if self._client is None:
                client.close()

        body = resp.json() if resp.content else {}
        if resp.status_code >= 400:
            message = (body.get("error") or {}).get("message") or f"Stripe request failed ({resp.status_code})"
            logger.error("stripe_request_failed", extra={"path": path, "status_code": resp.status_code, "error": message})
            raise StripeError(message, status_code=resp.status_code)
        return body

    def create_product(self, name: str, description: str | None = None, metadata: dict[str, Any] | None = None) -> dict[str, Any]:
        return self._request("POST", "/products", {"name": name, "description": description, "metadata": metadata or {}})

    def create_price(self, product_id: str, unit_amount: int, currency: str, recurring_interval: str | None = None) -> dict[str, Any]:
        data: dict[str, Any] = {"product": product_id, "unit_amount": int(unit_amount), "currency": currency}
        if recurring_interval:
            data["recurring"] = {"interval": recurring_interval}
        return self._request("POST", "/prices", data)

    def create_checkout_session(
        self,
        *,
        price_id: str,
        mode: str,
        success_url: str,
        cancel_url: str,
        customer_email: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        data: dict[str, Any] = {
            "mode": mode,
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "customer_email": customer_email,
            "metadata": metadata or {},
        }
        if mode == "subscription":
            # Subscription events read plan/user ids from the subscription itself.
            data["subscription_data"] = {"metadata": metadata or {}}
        return self._request("POST", "/checkout/sessions", data)

    def create_payment_link(self, amount: int, description: str, metadata: dict[str, Any] | None = None) -> dict[str, Any]:
        """Create a one-off payment link for ``amount`` in minor units."""
        product = self.create_product(description)
        price = self.create_price(product["id"], amount, self.settings.currency)
        link = self._request(
            "POST",
            "/payment_links",
            {
                "line_items": [{"price": price["id"], "quantity": 1}],
                "metadata": metadata or {},
                "payment_intent_data": {"metadata": metadata or {}},
            },
        )
        return {"id": link.get("id"), "url": link.get("url")}

    def update_subscription(self, subscription_id: str, data: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", f"/subscriptions/{subscription_id}", data)

    def cancel_subscription(self, subscription_id: str) -> dict[str, Any]:
        return self._request("DELETE", f"/subscriptions/{subscription_id}")


def get_stripe_client() -> StripeClient:
    return StripeClient()
