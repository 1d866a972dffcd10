from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import extract, select
from sqlalchemy.orm import Session, selectinload

from core.clock import utcnow
from core.config import get_settings
from core.errors import ConflictError, NotFoundError, ValidationError
from core.models import PAYMENT_STATUSES, Invoice, User
from core.services.email import EmailResult, EmailSender, get_email_sender
from core.services.stripe_client import StripeClient, get_stripe_client

logger = logging.getLogger(__name__)

CURRENCY_SYMBOLS = {"gbp": "£", "usd": "$", "eur": "€"}


def format_money(minor_units: int | None, currency: str | None = None) -> str:
    currency = (currency or get_settings().currency).lower()
    symbol = CURRENCY_SYMBOLS.get(currency, "")
    value = f"{(minor_units or 0) / 100:.2f}"
    return f"{symbol}{value}" if symbol else f"{value} {currency.upper()}"


def parse_month(value: str) -> date:
    try:
        year, month = (int(part) for part in value.split("-"))
        return date(year, month, 1)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Month must be in YYYY-MM format") from exc


def get_invoice(s: Session, invoice_id: int) -> Invoice:
    invoice = s.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found")
    return invoice


def list_invoices(
    s: Session,
    user_id: Optional[int] = None,
    status: Optional[str] = None,
    year: Optional[int] = None,
) -> list[Invoice]:
    q = select(Invoice).options(selectinload(Invoice.user)).order_by(Invoice.month.desc(), Invoice.id.desc())
    if user_id is not None:
        q = q.where(Invoice.user_id == user_id)
    if status:
        q = q.where(Invoice.payment_status == status)
    if year:
        q = q.where(extract("year", Invoice.month) == year)
    return list(s.execute(q).scalars())


def get_my_invoices(s: Session, user_id: int) -> list[Invoice]:
    return list_invoices(s, user_id=user_id)


def get_my_invoice(s: Session, user_id: int, invoice_id: int) -> Invoice:
    invoice = s.get(Invoice, invoice_id)
    if invoice is None or invoice.user_id != user_id:
        raise NotFoundError("Invoice not found")
    return invoice


def create_manual_invoice(
    s: Session,
    user_id: int,
    month: str,
    amount: int,
    description: Optional[str] = None,
) -> Invoice:
    if s.get(User, user_id) is None:
        raise NotFoundError("User not found")
    if amount < 0:
        raise ValidationError("Amount must be zero or more")
    month_start = parse_month(month)
    exists = s.execute(
        select(Invoice.id).where(Invoice.user_id == user_id, Invoice.month == month_start)
    ).first()
    if exists:
        raise ConflictError("Invoice already exists for this user and month")
    invoice = Invoice(user_id=user_id, month=month_start, total_amount=amount, description=description)
    s.add(invoice)
    s.flush()
    logger.info("invoice_created", extra={"invoice_id": invoice.id, "user_id": user_id, "month": month})
    return invoice


def update_invoice_payment_status(
    s: Session, invoice_id: int, status: str, now: Optional[datetime] = None
) -> Invoice:
    if status not in PAYMENT_STATUSES:
        raise ValidationError(f"Payment status must be one of {', '.join(PAYMENT_STATUSES)}")
    invoice = get_invoice(s, invoice_id)
    invoice.payment_status = status
    invoice.paid_at = (now or utcnow()) if status == "paid" else None
    s.flush()
    return invoice


def delete_invoice(s: Session, invoice_id: int) -> None:
    invoice = get_invoice(s, invoice_id)
    s.delete(invoice)
    s.flush()
    logger.info("invoice_deleted", extra={"invoice_id": invoice_id})


def create_invoice_payment_link(s: Session, invoice_id: int, client: StripeClient | None = None) -> str:
    invoice = get_invoice(s, invoice_id)
    if invoice.stripe_payment_url:
        return invoice.stripe_payment_url
    if invoice.payment_status == "paid":
        raise ValidationError("Invoice is already paid")

    client = client or get_stripe_client()
    label = invoice.description or f"Invoice {invoice.month:%Y-%m}"
    link = client.create_payment_link(invoice.total_amount, label, metadata={"invoiceId": invoice.id})
    invoice.stripe_payment_url = link["url"]
    s.flush()
    logger.info("invoice_payment_link_created", extra={"invoice_id": invoice.id})
    return link["url"]


def send_invoice_email(s: Session, invoice_id: int, sender: EmailSender | None = None) -> EmailResult:
    """Email the payment link; marks the invoice as sent only on success."""
    invoice = get_invoice(s, invoice_id)
    user = invoice.user
    sender = sender or get_email_sender()
    result = sender.send_system_email(
        "invoice_payment_link",
        user.email,
        {
            "userName": user.name or "Member",
            "month": f"{invoice.month:%B %Y}",
            "amount": format_money(invoice.total_amount),
            "paymentUrl": invoice.stripe_payment_url or "",
        },
        is_test_user=bool(user.is_test_user),
    )
    if result.success:
        invoice.email_sent = True
        s.flush()
    else:
        logger.warning("invoice_email_failed", extra={"invoice_id": invoice.id, "error": result.error})
    return result


def get_revenue_stats(s: Session, year: int) -> dict[str, Any]:
    invoices = list(s.execute(select(Invoice).where(extract("year", Invoice.month) == year)).scalars())
    stats: dict[str, Any] = {
        "year": year,
        "invoice_count": len(invoices),
        "total_amount": sum(i.total_amount for i in invoices),
        "monthly_revenue": {m: 0 for m in range(1, 13)},
    }
    for status in ("paid", "unpaid", "overdue"):
        rows = [i for i in invoices if i.payment_status == status]
        stats[f"{status}_amount"] = sum(i.total_amount for i in rows)
        stats[f"{status}_count"] = len(rows)
    for invoice in invoices:
        if invoice.payment_status == "paid":
            stats["monthly_revenue"][invoice.month.month] += invoice.total_amount
    stats["total_revenue"] = stats["paid_amount"]
    return stats
