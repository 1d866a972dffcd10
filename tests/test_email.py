import json

import httpx

from core.config import Settings
from core.http_retry import RetryPolicy
from core.services.email import EmailSender, is_test_address, render_email_template, render_template_text


def _sender(handler=None, api_key="re_test") -> EmailSender:
    client = httpx.Client(transport=httpx.MockTransport(handler)) if handler else None
    return EmailSender(
        settings=Settings(database_url="sqlite://", resend_api_key=api_key),
        client=client,
        retry_policy=RetryPolicy(max_retries=0),
    )


def test_render_replaces_known_and_blanks_unknown():
    assert render_template_text("Hi {{ name }}, {{missing}}!", {"name": "Ada"}) == "Hi Ada, !"


def test_render_email_template():
    rendered = render_email_template("membership_activated", {"userName": "Ada", "planName": "Unlimited"})
    assert rendered.subject == "Your Unlimited membership is active"
    assert "Hi Ada" in rendered.text
    assert render_email_template("nope", {}) is None


def test_test_addresses():
    assert is_test_address("Someone@Test.Local")
    assert not is_test_address("someone@example.com")


def test_test_users_are_suppressed():
    def handler(request):
        raise AssertionError("should not send")

    sender = _sender(handler)
    assert sender.send("a@example.com", "Hi", "<p>Hi</p>", is_test_user=True).suppressed is True
    assert sender.send("a@test.local", "Hi", "<p>Hi</p>").suppressed is True


def test_missing_api_key_is_a_silent_success():
    result = _sender(api_key="").send("a@example.com", "Hi", "<p>Hi</p>")
    assert result.success is True
    assert result.suppressed is True


def test_successful_send_returns_message_id():
    captured = {}

    def handler(request):
        captured["body"] = json.loads(request.content)
        captured["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={"id": "msg_1"})

    result = _sender(handler).send_system_email(
        "cohort_invite", "a@example.com", {"userName": "Ada", "cohortName": "Autumn", "loginUrl": "https://app"}
    )
    assert result.success is True
    assert result.message_id == "msg_1"
    assert captured["auth"] == "Bearer re_test"
    assert captured["body"]["to"] == ["a@example.com"]
    assert captured["body"]["subject"] == "You've been added to Autumn"


def test_api_error_is_returned_not_raised():
    def handler(request):
        return httpx.Response(422, json={"message": "Invalid from address"})

    result = _sender(handler).send("a@example.com", "Hi", "<p>Hi</p>")
    assert result.success is False
    assert result.error == "Invalid from address"


def test_transport_error_is_returned_not_raised():
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    result = _sender(handler).send("a@example.com", "Hi", "<p>Hi</p>")
    assert result.success is False
    assert "down" in result.error


def test_unknown_template_uses_fallback_or_fails():
    sender = _sender(api_key="")
    assert sender.send_system_email("missing", "a@example.com", {}).success is False
    fallback = sender.send_system_email("missing", "a@example.com", {}, fallback_subject="S", fallback_html="<p>H</p>")
    assert fallback.success is True
