import httpx
import pytest

from core.http_retry import RetryPolicy, request_with_retry


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_delay_backs_off_and_caps():
    policy = RetryPolicy(initial_delay=1.0, max_delay=5.0, backoff_multiplier=2.0)
    assert [policy.delay_for(i) for i in range(4)] == [1.0, 2.0, 4.0, 5.0]


def test_retries_server_errors_until_success():
    statuses = iter([503, 502, 200])
    delays = []

    def handler(request):
        return httpx.Response(next(statuses), json={"ok": True})

    resp = request_with_retry(_client(handler), "GET", "https://api.example/x", sleep=delays.append)
    assert resp.status_code == 200
    assert delays == [1.0, 2.0]


def test_timeouts_and_internal_errors_are_retried():
    statuses = iter([408, 500, 200])
    delays = []

    def handler(request):
        return httpx.Response(next(statuses), json={"ok": True})

    resp = request_with_retry(_client(handler), "GET", "https://api.example/x", sleep=delays.append)
    assert resp.status_code == 200
    assert len(delays) == 2


def test_client_errors_are_returned_without_retry():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(400, json={"error": "bad"})

    resp = request_with_retry(_client(handler), "POST", "https://api.example/x", sleep=lambda d: None)
    assert resp.status_code == 400
    assert len(calls) == 1


def test_last_retryable_response_is_returned_when_exhausted():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(429)

    policy = RetryPolicy(max_retries=2)
    resp = request_with_retry(_client(handler), "GET", "https://api.example/x", policy=policy, sleep=lambda d: None)
    assert resp.status_code == 429
    assert len(calls) == 3


def test_transport_errors_reraise_after_retries():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(httpx.ConnectError):
        request_with_retry(
            _client(handler), "GET", "https://api.example/x", policy=RetryPolicy(max_retries=1), sleep=lambda d: None
        )
    assert len(calls) == 2
