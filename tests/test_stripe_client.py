import json
from urllib.parse import parse_qs

import httpx
import pytest

from core.config import Settings
from core.http_retry import RetryPolicy
from core.services.stripe_client import (
    SignatureVerificationError,
    StripeClient,
    StripeError,
    _flatten,
    compute_signature,
    verify_webhook_signature,
)

SECRET = "whsec_test"
PAYLOAD = json.dumps({"id": "evt_1", "type": "checkout.session.completed", "data": {"object": {}}})


def _header(payload: str = PAYLOAD, timestamp: int = 1_700_000_000, secret: str = SECRET) -> str:
    return f"t={timestamp},v1={compute_signature(payload, timestamp, secret)}"


def test_flatten_uses_bracketed_keys():
    items = _flatten(
        {
            "mode": "payment",
            "line_items": [{"price": "price_1", "quantity": 1}],
            "metadata": {"user_id": 7, "plan_id": None},
            "recurring": {"interval": "month"},
            "active": True,
        }
    )
    assert ("line_items[0][price]", "price_1") in items
    assert ("line_items[0][quantity]", "1") in items
    assert ("metadata[user_id]", "7") in items
    assert ("recurring[interval]", "month") in items
    assert ("active", "true") in items
    assert all(not key.startswith("metadata[plan_id]") for key, _ in items)


def test_valid_signature_returns_event():
    event = verify_webhook_signature(PAYLOAD.encode(), _header(), SECRET, now=1_700_000_010)
    assert event["id"] == "evt_1"


def test_any_matching_v1_signature_is_accepted():
    header = f"t=1700000000,v1=deadbeef,v1={compute_signature(PAYLOAD, 1700000000, SECRET)}"
    assert verify_webhook_signature(PAYLOAD, header, SECRET, now=1_700_000_000)["type"] == "checkout.session.completed"


def test_wrong_secret_is_rejected():
    with pytest.raises(SignatureVerificationError, match="No signatures found"):
        verify_webhook_signature(PAYLOAD, _header(secret="other"), SECRET, now=1_700_000_000)


def test_stale_timestamp_is_rejected():
    with pytest.raises(SignatureVerificationError, match="tolerance"):
        verify_webhook_signature(PAYLOAD, _header(), SECRET, now=1_700_000_000 + 301)


def test_malformed_header_is_rejected():
    with pytest.raises(SignatureVerificationError, match="Unable to extract"):
        verify_webhook_signature(PAYLOAD, "garbage", SECRET)


def test_unconfigured_client_raises():
    client = StripeClient(settings=Settings(database_url="sqlite://"))
    assert client.configured is False
    with pytest.raises(StripeError, match="not configured"):
        client.create_product("Plan")


def _stripe(handler) -> StripeClient:
    settings = Settings(database_url="sqlite://", stripe_secret_key="sk_test_123", currency="gbp")
    return StripeClient(
        settings=settings,
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        retry_policy=RetryPolicy(max_retries=0),
    )


def test_payment_link_posts_product_price_and_link():
    requests = []

    def handler(request):
        requests.append(request)
        path = request.url.path
        if path.endswith("/products"):
            return httpx.Response(200, json={"id": "prod_1"})
        if path.endswith("/prices"):
            return httpx.Response(200, json={"id": "price_1"})
        return httpx.Response(200, json={"id": "plink_1", "url": "https://buy.example/plink_1"})

    link = _stripe(handler).create_payment_link(4500, "Invoice 2026-10", metadata={"invoiceId": 3})
    assert link == {"id": "plink_1", "url": "https://buy.example/plink_1"}
    assert [r.url.path for r in requests] == ["/v1/products", "/v1/prices", "/v1/payment_links"]
    assert requests[0].headers["Authorization"] == "Bearer sk_test_123"

    price_form = parse_qs(requests[1].content.decode())
    assert price_form["unit_amount"] == ["4500"]
    assert price_form["currency"] == ["gbp"]
    link_form = parse_qs(requests[2].content.decode())
    assert link_form["line_items[0][price]"] == ["price_1"]
    assert link_form["payment_intent_data[metadata][invoiceId]"] == ["3"]


def test_subscription_checkout_copies_metadata():
    seen = {}

    def handler(request):
        seen.update(parse_qs(request.content.decode()))
        return httpx.Response(200, json={"id": "cs_1", "url": "https://checkout.example/cs_1"})

    _stripe(handler).create_checkout_session(
        price_id="price_1",
        mode="subscription",
        success_url="https://app/success",
        cancel_url="https://app/cancel",
        metadata={"userId": 1, "planId": 2},
    )
    assert seen["mode"] == ["subscription"]
    assert seen["subscription_data[metadata][planId]"] == ["2"]


def test_api_error_message_is_surfaced():
    def handler(request):
        return httpx.Response(402, json={"error": {"message": "Your card was declined."}})

    with pytest.raises(StripeError, match="declined") as exc:
        _stripe(handler).cancel_subscription("sub_1")
    assert exc.value.status_code == 402


def test_retried_post_reuses_its_idempotency_key():
    seen = []

    def handler(request):
        seen.append(request)
        if len(seen) == 1:
            return httpx.Response(503, json={})
        return httpx.Response(200, json={"id": f"prod_{len(seen)}"})

    client = StripeClient(
        settings=Settings(database_url="sqlite://", stripe_secret_key="sk_test_123"),
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        retry_policy=RetryPolicy(max_retries=1, initial_delay=0),
    )
    assert client.create_product("Plan") == {"id": "prod_2"}
    assert len(seen) == 2
    key = seen[0].headers["Idempotency-Key"]
    assert key and seen[1].headers["Idempotency-Key"] == key

    client.create_product("Other")
    assert seen[2].headers["Idempotency-Key"] != key
