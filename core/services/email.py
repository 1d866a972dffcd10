"""Transactional email over the Resend HTTP API.

Sending never raises: failures come back as an unsuccessful ``EmailResult``
so callers can log and carry on.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from core.config import Settings, get_settings
from core.http_retry import RetryPolicy, request_with_retry

logger = logging.getLogger(__name__)

TEST_EMAIL_DOMAIN = "@test.local"
_VARIABLE_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")


@dataclass(frozen=True)
class EmailTemplate:
    subject: str
    html: str
    text: str


EMAIL_TEMPLATES: dict[str, EmailTemplate] = {
    "cohort_invite": EmailTemplate(
        subject="You've been added to {{cohortName}}",
        html="<p>Hi {{userName}},</p><p>You are now a member of <strong>{{cohortName}}</strong>.</p>"
        '<p><a href="{{loginUrl}}">Sign in</a> to start checking in.</p>',
        text="Hi {{userName}}, you are now a member of {{cohortName}}. Sign in at {{loginUrl}}.",
    ),
    "waitlist_promoted": EmailTemplate(
        subject="You're in: {{sessionTitle}}",
        html="<p>Hi {{userName}},</p><p>A spot opened up and you have been moved from the waitlist "
        "into <strong>{{sessionTitle}}</strong> on {{sessionDate}}.</p>",
        text="Hi {{userName}}, a spot opened up and you are now registered for {{sessionTitle}} on {{sessionDate}}.",
    ),
    "membership_activated": EmailTemplate(
        subject="Your {{planName}} membership is active",
        html="<p>Hi {{userName}},</p><p>Your <strong>{{planName}}</strong> membership is now active.</p>",
        text="Hi {{userName}}, your {{planName}} membership is now active.",
    ),
    "invoice_payment_link": EmailTemplate(
        subject="Invoice for {{month}}",
        html="<p>Hi {{userName}},</p><p>Your invoice for {{month}} totals {{amount}}.</p>"
        '<p><a href="{{paymentUrl}}">Pay now</a></p>',
        text="Hi {{userName}}, your invoice for {{month}} totals {{amount}}. Pay at {{paymentUrl}}.",
    ),
    "coach_note_received": EmailTemplate(
        subject="New note from {{coachName}}",
        html="<p>Hi {{userName}},</p><p>{{coachName}} has left you a new note.</p>"
        '<p><a href="{{loginUrl}}">View note</a></p>',
        text="New note from {{coachName}}. View at: {{loginUrl}}",
    ),
    "weekly_questionnaire_reminder": EmailTemplate(
        subject="Weekly check-in reminder: week {{weekNumber}}",
        html="<p>Hi {{userName}},</p><p>It's time to complete your weekly check-in for week {{weekNumber}}.</p>"
        '<p><a href="{{questionnaireUrl}}">Complete check-in</a></p>',
        text="Weekly check-in reminder for week {{weekNumber}}. Complete at: {{questionnaireUrl}}",
    ),
    "password_reset": EmailTemplate(
        subject="Reset your password",
        html="<p>Hi {{userName}},</p><p>We received a request to reset your password. The link expires in one hour.</p>"
        '<p><a href="{{resetUrl}}">Reset password</a></p>',
        text="Hi {{userName}}, reset your password at {{resetUrl}}. The link expires in one hour.",
    ),
}


@dataclass
class EmailResult:
    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None
    suppressed: bool = False


def render_template_text(template: str, variables: dict[str, Any]) -> str:
    """Replace ``{{name}}`` placeholders; unknown names render as empty strings."""
    return _VARIABLE_RE.sub(lambda m: str(variables.get(m.group(1), "")), template)


def render_email_template(key: str, variables: dict[str, Any]) -> EmailTemplate | None:
    template = EMAIL_TEMPLATES.get(key)
    if template is None:
        return None
    return EmailTemplate(
        subject=render_template_text(template.subject, variables),
        html=render_template_text(template.html, variables),
        text=render_template_text(template.text, variables),
    )


def is_test_address(email: str) -> bool:
    return email.strip().lower().endswith(TEST_EMAIL_DOMAIN)


class EmailSender:
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

    def send(self, to: str, subject: str, html: str, text: str = "", is_test_user: bool = False) -> EmailResult:
        if is_test_user or is_test_address(to):
            logger.info("email_suppressed_test_user", extra={"to": to, "subject": subject, "preview": text[:200]})
            return EmailResult(success=True, suppressed=True)

        if not self.settings.resend_api_key:
            logger.warning("email_not_configured", extra={"to": to, "subject": subject})
            return EmailResult(success=True, suppressed=True)

        payload = {"from": self.settings.email_from, "to": [to], "subject": subject, "html": html, "text": text}
        headers = {"Authorization": f"Bearer {self.settings.resend_api_key}"}
        client = self._client or httpx.Client()
        try:
            resp = request_with_retry(
                client,
                "POST",
                f"{self.settings.email_api_base}/emails",
                json=payload,
                headers=headers,
                policy=self.retry_policy,
            )
        except httpx.HTTPError as exc:
            logger.error("email_send_failed", extra={"to": to, "subject": subject, "error": str(exc)})
            return EmailResult(success=False, error=str(exc))
        finally:
            if self._client is None:
                client.close()

        if resp.status_code >= 400:
            try:
                message = resp.json().get("message") or "Failed to send email"
            except ValueError:
                message = "Failed to send email"
            logger.error("email_api_error", extra={"to": to, "status_code": resp.status_code, "error": message})
            return EmailResult(success=False, error=message)

        message_id = resp.json().get("id") if resp.content else None
        logger.info("email_sent", extra={"to": to, "subject": subject, "message_id": message_id})
        return EmailResult(success=True, message_id=message_id)

    def send_system_email(
        self,
        template_key: str,
        to: str,
        variables: dict[str, Any],
        *,
        is_test_user: bool = False,
        fallback_subject: str | None = None,
        fallback_html: str | None = None,
        fallback_text: str | None = None,
    ) -> EmailResult:
        rendered = render_email_template(template_key, variables)
        if rendered is None:
            if not (fallback_subject and fallback_html):
                logger.error("email_template_missing", extra={"template_key": template_key})
                return EmailResult(success=False, error="Email template not available")
            logger.warning("email_template_fallback", extra={"template_key": template_key})
            rendered = EmailTemplate(fallback_subject, fallback_html, fallback_text or "")
        return self.send(to, rendered.subject, rendered.html, rendered.text, is_test_user=is_test_user)


def get_email_sender() -> EmailSender:
    return EmailSender()
