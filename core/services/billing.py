"""Payment-provider checkout, webhook handling and subscription admin.

Webhook handlers never raise for unknown ids or malformed metadata: they log
and acknowledge so the provider does not keep retrying an event we cannot
use.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from core.clock import utcnow
from core.config import get_settings
from core.errors import NotFoundError, ValidationError
from core.models import Invoice, MembershipPlan, User, UserMembership
from core.services.memberships import (
    MembershipActivation,
    activation_for,
    build_membership,
    get_active_membership,
    get_plan,
)
from core.services.stripe_client import StripeClient, get_stripe_client

logger = logging.getLogger(__name__)


class MembershipMetadata(BaseModel):
    type: Literal["membership"]
    user_id: int = Field(gt=0, validation_alias=AliasChoices("user_id", "userId"))
    plan_id: int = Field(gt=0, validation_alias=AliasChoices("plan_id", "planId"))


@dataclass
class WebhookOutcome:
    event_type: str
    handled: bool
    activation: Optional[MembershipActivation] = None


def _parse_membership_metadata(metadata: dict[str, Any], handler: str) -> Optional[MembershipMetadata]:
    if (metadata or {}).get("type") != "membership":
        return None
    try:
        return MembershipMetadata.model_validate(metadata)
    except PydanticValidationError as exc:
        logger.error("billing_invalid_metadata", extra={"handler": handler, "error": str(exc)})
        return None


def _membership_by_subscription(s: Session, subscription_id: Optional[str]) -> Optional[UserMembership]:
    if not subscription_id:
        return None
    return s.execute(
        select(UserMembership).where(UserMembership.stripe_subscription_id == subscription_id)
    ).scalars().first()


def _membership_by_checkout_session(s: Session, session_id: Optional[str]) -> Optional[UserMembership]:
    if not session_id:
        return None
    return s.execute(
        select(UserMembership).where(UserMembership.stripe_checkout_session_id == session_id)
    ).scalars().first()


def _membership_target(s: Session, meta: MembershipMetadata) -> Optional[tuple[User, MembershipPlan]]:
    user = s.get(User, meta.user_id)
    if user is None:
        logger.error("billing_user_not_found", extra={"user_id": meta.user_id})
        return None
    plan = s.get(MembershipPlan, meta.plan_id)
    if plan is None:
        logger.error("billing_plan_not_found", extra={"plan_id": meta.plan_id})
        return None
    return user, plan


def _replace_active_membership(s: Session, plan: MembershipPlan, user: User, now: datetime) -> UserMembership:
    for current in s.execute(
        select(UserMembership).where(UserMembership.user_id == user.id, UserMembership.status == "active")
    ).scalars():
        current.status = "cancelled"
        current.end_date = now.date()
    membership = build_membership(plan, user.id, now.date())
    s.add(membership)
    return membership


def mark_invoice_paid(s: Session, invoice_id: Any, now: Optional[datetime] = None) -> Optional[Invoice]:
    try:
        invoice = s.get(Invoice, int(invoice_id))
    except (TypeError, ValueError):
        invoice = None
    if invoice is None:
        logger.warning("billing_invoice_not_found", extra={"invoice_id": invoice_id})
        return None
    invoice.payment_status = "paid"
    invoice.paid_at = now or utcnow()
    s.flush()
    logger.info("billing_invoice_paid", extra={"invoice_id": invoice.id})
    return invoice


def handle_checkout_completed(s: Session, obj: dict[str, Any], now: datetime) -> Optional[MembershipActivation]:
    metadata = obj.get("metadata") or {}
    if metadata.get("type") == "membership":
        meta = _parse_membership_metadata(metadata, "checkout_completed")
        if meta is None:
            return None
        session_id = obj.get("id")
        if _membership_by_checkout_session(s, session_id) is not None:
            logger.info("billing_checkout_already_recorded", extra={"session_id": session_id})
            return None
        target = _membership_target(s, meta)
        if target is None:
            return None
        user, plan = target
        if plan.type == "recurring":
            return None
        membership = _replace_active_membership(s, plan, user, now)
        membership.stripe_checkout_session_id = session_id
        s.flush()
        logger.info("billing_membership_created", extra={"membership_id": membership.id, "plan_id": plan.id})
        return activation_for(s, membership)

    invoice_id = metadata.get("invoiceId")
    if not invoice_id:
        logger.warning("billing_checkout_unrecognized_metadata", extra={"session_id": obj.get("id")})
        return None
    mark_invoice_paid(s, invoice_id, now)
    return None


def handle_subscription_created(s: Session, obj: dict[str, Any], now: datetime) -> Optional[MembershipActivation]:
    meta = _parse_membership_metadata(obj.get("metadata") or {}, "subscription_created")
    if meta is None:
        return None
    if _membership_by_subscription(s, obj.get("id")) is not None:
        logger.info("billing_subscription_already_recorded", extra={"subscription_id": obj.get("id")})
        return None
    target = _membership_target(s, meta)
    if target is None:
        return None
    user, plan = target
    membership = _replace_active_membership(s, plan, user, now)
    membership.stripe_subscription_id = obj.get("id")
    s.flush()
    return activation_for(s, membership)


def handle_subscription_updated(s: Session, obj: dict[str, Any]) -> None:
    membership = _membership_by_subscription(s, obj.get("id"))
    if membership is None:
        logger.warning("billing_subscription_not_found", extra={"subscription_id": obj.get("id")})
        return
    status = obj.get("status")
    if status == "active" and not obj.get("cancel_at_period_end"):
        membership.status = "active"
    elif status == "paused":
        membership.status = "paused"
    elif status in ("canceled", "unpaid"):
        membership.status = "cancelled"
    s.flush()


def handle_subscription_deleted(s: Session, obj: dict[str, Any], now: datetime) -> None:
    membership = _membership_by_subscription(s, obj.get("id"))
    if membership is None:
        logger.warning("billing_subscription_not_found", extra={"subscription_id": obj.get("id")})
        return
    membership.status = "cancelled"
    membership.end_date = now.date()
    s.flush()


def _subscription_ref(obj: dict[str, Any]) -> Optional[str]:
    ref = obj.get("subscription")
    if isinstance(ref, dict):
        return ref.get("id")
    return str(ref) if ref else None


def handle_invoice_paid(s: Session, obj: dict[str, Any]) -> None:
    membership = _membership_by_subscription(s, _subscription_ref(obj))
    if membership is not None and membership.status == "paused":
        membership.status = "active"
        s.flush()


def handle_invoice_payment_failed(s: Session, obj: dict[str, Any]) -> None:
    membership = _membership_by_subscription(s, _subscription_ref(obj))
    if membership is None:
        return
    membership.status = "paused"
    s.flush()
    logger.warning("billing_subscription_payment_failed", extra={"membership_id": membership.id})


def handle_webhook_event(s: Session, event: dict[str, Any], now: Optional[datetime] = None) -> WebhookOutcome:
    now = now or utcnow()
    event_type = event.get("type") or ""
    obj = (event.get("data") or {}).get("object") or {}
    activation = None

    if event_type == "checkout.session.completed":
        activation = handle_checkout_completed(s, obj, now)
    elif event_type == "customer.subscription.created":
        activation = handle_subscription_created(s, obj, now)
    elif event_type == "customer.subscription.updated":
        handle_subscription_updated(s, obj)
    elif event_type == "customer.subscription.deleted":
        handle_subscription_deleted(s, obj, now)
    elif event_type == "invoice.paid":
        handle_invoice_paid(s, obj)
    elif event_type == "invoice.payment_failed":
        handle_invoice_payment_failed(s, obj)
    elif event_type == "payment_intent.succeeded":
        invoice_id = (obj.get("metadata") or {}).get("invoiceId")
        if invoice_id:
            mark_invoice_paid(s, invoice_id, now)
    elif event_type == "payment_intent.payment_failed":
        invoice_id = (obj.get("metadata") or {}).get("invoiceId")
        if invoice_id:
            logger.error("billing_invoice_payment_failed", extra={"invoice_id": invoice_id})
    else:
        logger.warning("billing_unhandled_event", extra={"event_type": event_type})
        return WebhookOutcome(event_type=event_type, handled=False)

    logger.info("billing_webhook_processed", extra={"event_type": event_type, "event_id": event.get("id")})
    return WebhookOutcome(event_type=event_type, handled=True, activation=activation)


def ensure_plan_price(s: Session, plan: MembershipPlan, client: StripeClient) -> str:
    """Create the provider product and price for ``plan`` when missing."""
    if plan.stripe_price_id:
        return plan.stripe_price_id
    return sync_plan_to_stripe(s, plan.id, client)["price_id"]


def sync_plan_to_stripe(s: Session, plan_id: int, client: StripeClient | None = None) -> dict[str, str]:
    client = client or get_stripe_client()
    plan = get_plan(s, plan_id)
    product = client.create_product(
        plan.name,
        description=plan.description,
        metadata={"plan_id": plan.id, "plan_type": plan.type},
    )
    price = client.create_price(
        product["id"],
        plan.price or 0,
        get_settings().currency,
        recurring_interval="month" if plan.type == "recurring" else None,
    )
    plan.stripe_product_id = product["id"]
    plan.stripe_price_id = price["id"]
    s.flush()
    logger.info("billing_plan_synced", extra={"plan_id": plan.id, "price_id": price["id"]})
    return {"product_id": product["id"], "price_id": price["id"]}


def create_membership_checkout(
    s: Session,
    user_id: int,
    plan_id: int,
    success_url: str,
    cancel_url: str,
    client: StripeClient | None = None,
    customer_email: str | None = None,
) -> dict[str, Any]:
    plan = s.get(MembershipPlan, plan_id)
    if plan is None:
        raise NotFoundError("Plan not found")
    if not plan.is_active:
        raise ValidationError("This plan is not currently available")
    if not plan.purchasable_by_client:
        raise ValidationError("This plan cannot be purchased directly")
    if not plan.allow_repeat_purchase and get_active_membership(s, user_id) is not None:
        raise ValidationError("You already have an active membership")

    client = client or get_stripe_client()
    price_id = ensure_plan_price(s, plan, client)
    session = client.create_checkout_session(
        price_id=price_id,
        mode="subscription" if plan.type == "recurring" else "payment",
        success_url=success_url,
        cancel_url=cancel_url,
        customer_email=customer_email,
        metadata={"type": "membership", "user_id": user_id, "plan_id": plan.id},
    )
    logger.info("billing_checkout_created", extra={"user_id": user_id, "plan_id": plan.id})
    return {"session_id": session.get("id"), "url": session.get("url")}


def _subscription_membership(s: Session, membership_id: int) -> UserMembership:
    membership = s.get(UserMembership, membership_id)
    if membership is None:
        raise NotFoundError("Membership not found")
    if not membership.stripe_subscription_id:
        raise ValidationError("No payment subscription found for this membership")
    return membership


def pause_subscription(s: Session, membership_id: int, client: StripeClient | None = None) -> UserMembership:
    membership = _subscription_membership(s, membership_id)
    (client or get_stripe_client()).update_subscription(
        membership.stripe_subscription_id, {"pause_collection": {"behavior": "void"}}
    )
    membership.status = "paused"
    s.flush()
    return membership


def resume_subscription(s: Session, membership_id: int, client: StripeClient | None = None) -> UserMembership:
    membership = _subscription_membership(s, membership_id)
    (client or get_stripe_client()).update_subscription(membership.stripe_subscription_id, {"pause_collection": ""})
    membership.status = "active"
    s.flush()
    return membership


def cancel_subscription(
    s: Session,
    membership_id: int,
    at_period_end: bool = True,
    client: StripeClient | None = None,
    now: Optional[datetime] = None,
) -> UserMembership:
    membership = _subscription_membership(s, membership_id)
    client = client or get_stripe_client()
    if at_period_end:
        client.update_subscription(membership.stripe_subscription_id, {"cancel_at_period_end": True})
    else:
        client.cancel_subscription(membership.stripe_subscription_id)
        membership.status = "cancelled"
        membership.end_date = (now or utcnow()).date()
    s.flush()
    return membership
