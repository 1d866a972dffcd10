import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.concurrency import run_in_threadpool

from api.auth import TokenData, get_current_user, require_admin, require_client
from api.ratelimit import limiter
from api.schemas import (
    CheckoutOut,
    EmailSentOut,
    InvoiceOut,
    MessageOut,
    PaymentLinkOut,
    PlanOut,
    PlanSyncOut,
    RevenueStatsOut,
    UserMembershipOut,
    WebhookReceivedOut,
)
from core.clock import utcnow
from core.config import get_settings
from core.db import session_scope
from core.errors import PermissionDeniedError
from core.services import billing as billing_service
from core.services import invoices as invoice_service
from core.services import memberships as membership_service
from core.services.stripe_client import SignatureVerificationError, verify_webhook_signature
from core.validators import (
    AssignMembershipInput,
    CheckoutInput,
    InvoiceCreateInput,
    InvoiceStatusInput,
    MembershipPlanInput,
    MembershipPlanUpdateInput,
    SubscriptionCancelInput,
)

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(tags=["billing"])


# plans


@router.get("/plans", response_model=list[PlanOut])
def list_plans(current_user: Annotated[TokenData, Depends(get_current_user)], active_only: bool = False):
    with session_scope() as s:
        rows = membership_service.list_plans(s, active_only=active_only or current_user.role == "client")
        return [PlanOut.model_validate(p) for p in rows]


@router.post("/plans", response_model=PlanOut, status_code=201)
def create_plan(body: MembershipPlanInput, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        return PlanOut.model_validate(membership_service.create_plan(s, body))


@router.patch("/plans/{plan_id}", response_model=PlanOut)
def update_plan(plan_id: int, body: MembershipPlanUpdateInput, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        return PlanOut.model_validate(membership_service.update_plan(s, plan_id, body))


@router.delete("/plans/{plan_id}", response_model=PlanOut)
def deactivate_plan(plan_id: int, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        return PlanOut.model_validate(membership_service.deactivate_plan(s, plan_id))


@router.post("/plans/{plan_id}/sync", response_model=PlanSyncOut)
def sync_plan(plan_id: int, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        return billing_service.sync_plan_to_stripe(s, plan_id)


# memberships


@router.get("/memberships/me", response_model=Optional[UserMembershipOut])
def my_membership(client: Annotated[TokenData, Depends(require_client)]):
    with session_scope() as s:
        membership = membership_service.get_active_membership(s, client.user_id)
        return UserMembershipOut.model_validate(membership) if membership else None


@router.get("/memberships/history", response_model=list[UserMembershipOut])
def membership_history(current_user: Annotated[TokenData, Depends(get_current_user)], user_id: Optional[int] = None):
    target = user_id if user_id is not None else current_user.user_id
    if current_user.role == "client" and target != current_user.user_id:
        raise PermissionDeniedError("Forbidden")
    with session_scope() as s:
        return [UserMembershipOut.model_validate(m) for m in membership_service.get_membership_history(s, target)]


@router.post("/memberships", response_model=UserMembershipOut, status_code=201)
def assign_membership(body: AssignMembershipInput, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        membership = membership_service.assign_membership(
            s, body.user_id, body.plan_id, start_date=body.start_date, sessions_override=body.sessions_override
        )
        activation = membership_service.activation_for(s, membership)
        result = UserMembershipOut.model_validate(membership)
    membership_service.send_membership_activated_email(activation)
    return result


@router.post("/memberships/{membership_id}/pause", response_model=UserMembershipOut)
def pause_membership(membership_id: int, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        return UserMembershipOut.model_validate(membership_service.pause_membership(s, membership_id))


@router.post("/memberships/{membership_id}/resume", response_model=UserMembershipOut)
def resume_membership(membership_id: int, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        return UserMembershipOut.model_validate(membership_service.resume_membership(s, membership_id))


@router.post("/memberships/{membership_id}/cancel", response_model=UserMembershipOut)
def cancel_membership(membership_id: int, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        return UserMembershipOut.model_validate(membership_service.cancel_membership(s, membership_id))


@router.post("/memberships/{membership_id}/subscription/pause", response_model=UserMembershipOut)
def pause_subscription(membership_id: int, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        return UserMembershipOut.model_validate(billing_service.pause_subscription(s, membership_id))


@router.post("/memberships/{membership_id}/subscription/resume", response_model=UserMembershipOut)
def resume_subscription(membership_id: int, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        return UserMembershipOut.model_validate(billing_service.resume_subscription(s, membership_id))


@router.post("/memberships/{membership_id}/subscription/cancel", response_model=UserMembershipOut)
def cancel_subscription(
    membership_id: int, body: SubscriptionCancelInput, admin: Annotated[TokenData, Depends(require_admin)]
):
    with session_scope() as s:
        membership = billing_service.cancel_subscription(s, membership_id, at_period_end=body.at_period_end)
        return UserMembershipOut.model_validate(membership)


@router.post("/billing/checkout", response_model=CheckoutOut)
def checkout(body: CheckoutInput, client: Annotated[TokenData, Depends(require_client)]):
    with session_scope() as s:
        return billing_service.create_membership_checkout(
            s,
            client.user_id,
            body.plan_id,
            body.success_url,
            body.cancel_url,
            customer_email=client.username,
        )


def _apply_webhook_event(event: dict) -> billing_service.WebhookOutcome:
    with session_scope() as s:
        return billing_service.handle_webhook_event(s, event, now=utcnow())


@router.post("/billing/webhook", response_model=WebhookReceivedOut)
@limiter.limit(settings.webhook_rate_limit)
async def billing_webhook(request: Request, response: Response):
    secret = get_settings().stripe_webhook_secret
    if not secret:
        logger.error("billing_webhook_not_configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": "WEBHOOK_NOT_CONFIGURED", "message": "Webhook secret not configured"},
        )
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "MISSING_SIGNATURE", "message": "Missing signature"},
        )
    payload = await request.body()
    try:
        event = verify_webhook_signature(payload, signature, secret)
    except SignatureVerificationError as exc:
        logger.warning("billing_webhook_bad_signature", extra={"error": str(exc)})
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "INVALID_SIGNATURE", "message": "Invalid signature"},
        ) from exc

    try:
        outcome = await run_in_threadpool(_apply_webhook_event, event)
    except Exception as exc:
        logger.exception("billing_webhook_failed", extra={"event_type": event.get("type"), "event_id": event.get("id")})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": "WEBHOOK_HANDLER_FAILED", "message": "Webhook handler failed"},
        ) from exc

    if outcome.activation is not None:
        await run_in_threadpool(membership_service.send_membership_activated_email, outcome.activation)
    return WebhookReceivedOut()


# invoices


@router.get("/invoices", response_model=list[InvoiceOut])
def list_invoices(
    admin: Annotated[TokenData, Depends(require_admin)],
    user_id: Optional[int] = None,
    payment_status: Optional[str] = Query(None, alias="status"),
    year: Optional[int] = None,
):
    with session_scope() as s:
        rows = invoice_service.list_invoices(s, user_id=user_id, status=payment_status, year=year)
        return [InvoiceOut.model_validate(i) for i in rows]


@router.get("/invoices/me", response_model=list[InvoiceOut])
def my_invoices(client: Annotated[TokenData, Depends(require_client)]):
    with session_scope() as s:
        return [InvoiceOut.model_validate(i) for i in invoice_service.get_my_invoices(s, client.user_id)]


@router.get("/invoices/me/{invoice_id}", response_model=InvoiceOut)
def my_invoice(invoice_id: int, client: Annotated[TokenData, Depends(require_client)]):
    with session_scope() as s:
        return InvoiceOut.model_validate(invoice_service.get_my_invoice(s, client.user_id, invoice_id))


@router.get("/invoices/revenue", response_model=RevenueStatsOut)
def revenue_stats(admin: Annotated[TokenData, Depends(require_admin)], year: Optional[int] = None):
    with session_scope() as s:
        return invoice_service.get_revenue_stats(s, year or utcnow().year)


@router.post("/invoices", response_model=InvoiceOut, status_code=201)
def create_invoice(body: InvoiceCreateInput, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        invoice = invoice_service.create_manual_invoice(s, body.user_id, body.month, body.amount, body.description)
        return InvoiceOut.model_validate(invoice)


@router.patch("/invoices/{invoice_id}/status", response_model=InvoiceOut)
def update_invoice_status(
    invoice_id: int, body: InvoiceStatusInput, admin: Annotated[TokenData, Depends(require_admin)]
):
    with session_scope() as s:
        return InvoiceOut.model_validate(invoice_service.update_invoice_payment_status(s, invoice_id, body.status))


@router.delete("/invoices/{invoice_id}", response_model=MessageOut)
def delete_invoice(invoice_id: int, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        invoice_service.delete_invoice(s, invoice_id)
    return MessageOut(message="Invoice deleted")


@router.post("/invoices/{invoice_id}/payment-link", response_model=PaymentLinkOut)
def invoice_payment_link(invoice_id: int, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        return PaymentLinkOut(url=invoice_service.create_invoice_payment_link(s, invoice_id))


@router.post("/invoices/{invoice_id}/send", response_model=EmailSentOut)
def send_invoice(invoice_id: int, admin: Annotated[TokenData, Depends(require_admin)]):
    with session_scope() as s:
        result = invoice_service.send_invoice_email(s, invoice_id)
    return EmailSentOut(success=result.success, error=result.error)
