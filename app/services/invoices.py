"""GST invoices for subscriptions and one-off services."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Sequence

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app import models
from app.clock import as_utc, utc_now
from app.db import settings
from app.domain.billing.enums import InvoiceStatus, ServiceCategory
from app.domain.billing.pricing import CURRENCY, TIER_LABELS, gst_rate_for, hsn_code_for, plan_price
from app.domain.commission.rates import round_money
from app.errors import AlreadyPaid, Conflict, NotFound, ValidationError
from app.services.subscriptions import cycle_end, get_subscription
from app.services.usage_ledger import upsert_insert

logger = logging.getLogger(__name__)

PAYMENT_DUE_DAYS = 7
PAYMENT_TERMS = "7 days from invoice date"

OPEN_STATUSES = (InvoiceStatus.sent, InvoiceStatus.overdue, InvoiceStatus.partially_paid)
CANCELLABLE_STATUSES = (InvoiceStatus.draft, InvoiceStatus.sent, InvoiceStatus.overdue)


@dataclass(frozen=True, slots=True)
class LineInput:
    description: str
    unit_price: Decimal
    quantity: int = 1
    category: ServiceCategory | None = None


def next_invoice_number(db: Session, moment: datetime) -> str:
    """Reserve the next number for the month of ``moment``.

    Runs inside the caller's transaction; the reserved value is only
    released by a rollback of that transaction.
    """
    month = f"{moment.year:04d}-{moment.month:02d}"
    insert = upsert_insert(db)
    db.execute(
        insert(models.InvoiceSequence)
        .values(month=month, last_value=1)
        .on_conflict_do_update(
            index_elements=["month"],
            set_={"last_value": models.InvoiceSequence.last_value + 1},
        )
    )
    value = (
        db.query(models.InvoiceSequence.last_value)
        .filter(models.InvoiceSequence.month == month)
        .scalar()
    )
    return f"{settings.invoice_prefix}-{moment.year:04d}{moment.month:02d}-{value:04d}"


def _build_lines(lines: Sequence[LineInput], default_category: ServiceCategory) -> list[models.InvoiceLineItem]:
    items = []
    for position, line in enumerate(lines, start=1):
        if not line.description:
            raise ValidationError("Line description is required", position=position)
        quantity = int(line.quantity)
        unit_price = round_money(Decimal(str(line.unit_price)))
        if quantity < 1:
            raise ValidationError("Line quantity must be at least 1", position=position)
        if unit_price < 0:
            raise ValidationError("Line unit price cannot be negative", position=position)
        category = line.category or default_category
        gst_rate = gst_rate_for(category)
        total_price = round_money(unit_price * quantity)
        items.append(
            models.InvoiceLineItem(
                position=position,
                description=line.description,
                category=category,
                hsn_code=hsn_code_for(category),
                quantity=quantity,
                unit_price=unit_price,
                total_price=total_price,
                gst_rate=gst_rate,
                gst_amount=round_money(total_price * gst_rate),
            )
        )
    return items


def _create_invoice(
    db: Session,
    *,
    user_id: str,
    category: ServiceCategory,
    lines: Sequence[LineInput],
    subscription_id: str | None = None,
    period_start: date | None = None,
    period_end: date | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> models.Invoice:
    if not lines:
        raise ValidationError("At least one line item is required")
    moment = as_utc(now) or utc_now()
    items = _build_lines(lines, category)
    subtotal = sum((item.total_price for item in items), Decimal("0"))
    gst_amount = sum((item.gst_amount for item in items), Decimal("0"))
    issue_date = moment.date()

    invoice = models.Invoice(
        id=str(uuid.uuid4()),
        invoice_number=next_invoice_number(db, moment),
        user_id=user_id,
        subscription_id=subscription_id,
        status=InvoiceStatus.sent,
        category=category,
        subtotal=subtotal,
        gst_amount=gst_amount,
        total_amount=subtotal + gst_amount,
        currency=CURRENCY,
        issue_date=issue_date,
        due_date=issue_date + timedelta(days=PAYMENT_DUE_DAYS),
        billing_period_start=period_start,
        billing_period_end=period_end,
        payment_terms=PAYMENT_TERMS,
        notes=notes,
        created_at=moment,
        updated_at=moment,
    )
    invoice.line_items = items
    db.add(invoice)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(invoice)
    logger.info(
        "Invoice issued number=%s user=%s total=%s",
        invoice.invoice_number,
        user_id,
        invoice.total_amount,
    )
    return invoice


def _format_period(start: date, end: date) -> str:
    return f"{start.strftime('%d %b %Y')} - {end.strftime('%d %b %Y')}"


def generate_for_subscription(
    db: Session,
    subscription_id: str,
    period_start: date | None = None,
    period_end: date | None = None,
    *,
    now: datetime | None = None,
) -> models.Invoice:
    moment = as_utc(now) or utc_now()
    subscription = get_subscription(db, subscription_id)
    amount = plan_price(subscription.tier, subscription.billing_cycle)
    if amount is None:
        raise ValidationError(
            "Only paid subscriptions are invoiced",
            subscription_id=subscription_id,
            tier=subscription.tier.value,
        )
    start = period_start or moment.date()
    end = period_end or cycle_end(moment, subscription.billing_cycle).date()
    if end < start:
        raise ValidationError("Billing period ends before it starts")
    label = TIER_LABELS[subscription.tier]
    line = LineInput(
        description=f"{label} Subscription - {subscription.billing_cycle.value} ({_format_period(start, end)})",
        unit_price=amount,
        category=ServiceCategory.subscription,
    )
    return _create_invoice(
        db,
        user_id=subscription.owner_id,
        category=ServiceCategory.subscription,
        lines=[line],
        subscription_id=subscription.id,
        period_start=start,
        period_end=end,
        now=moment,
    )


def generate_for_service(
    db: Session,
    user_id: str,
    line_items: Sequence[LineInput],
    category: ServiceCategory,
    *,
    notes: str | None = None,
    now: datetime | None = None,
) -> models.Invoice:
    if not user_id:
        raise ValidationError("user_id is required")
    return _create_invoice(db, user_id=user_id, category=category, lines=line_items, notes=notes, now=now)


def get_invoice(db: Session, invoice_id: str) -> models.Invoice:
    invoice = (
        db.query(models.Invoice)
        .options(selectinload(models.Invoice.line_items))
        .filter(models.Invoice.id == invoice_id)
        .first()
    )
    if not invoice:
        raise NotFound("Invoice not found", invoice_id=invoice_id)
    return invoice


def mark_paid(
    db: Session,
    invoice_id: str,
    payment_id: str,
    paid_amount: Decimal | None = None,
    *,
    now: datetime | None = None,
) -> models.Invoice:
    """Record a payment against an invoice.

    Paying at least the total settles it; less leaves it ``partially_paid``
    with no ``paid_date``. A settled or cancelled invoice is never updated.
    """
    moment = as_utc(now) or utc_now()
    invoice = get_invoice(db, invoice_id)
    total = Decimal(str(invoice.total_amount))
    amount = total if paid_amount is None else round_money(Decimal(str(paid_amount)))
    if amount <= 0:
        raise ValidationError("Paid amount must be greater than zero", paid_amount=str(paid_amount))
    fully_paid = amount >= total

    result = db.execute(
        update(models.Invoice)
        .where(
            models.Invoice.id == invoice_id,
            models.Invoice.status.notin_([InvoiceStatus.paid, InvoiceStatus.cancelled]),
        )
        .values(
            status=InvoiceStatus.paid if fully_paid else InvoiceStatus.partially_paid,
            paid_amount=amount,
            paid_date=moment if fully_paid else None,
            payment_id=payment_id,
            updated_at=moment,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        current = get_invoice(db, invoice_id)
        if current.status == InvoiceStatus.cancelled:
            raise Conflict("Invoice is cancelled", invoice_id=invoice_id, status=current.status.value)
        raise AlreadyPaid("Invoice already paid", invoice_id=invoice_id)
    db.commit()
    db.expire_all()
    logger.info("Invoice payment invoice=%s amount=%s fully_paid=%s", invoice_id, amount, fully_paid)
    return get_invoice(db, invoice_id)


def cancel_invoice(db: Session, invoice_id: str) -> models.Invoice:
    get_invoice(db, invoice_id)
    result = db.execute(
        update(models.Invoice)
        .where(
            models.Invoice.id == invoice_id,
            models.Invoice.status.in_(CANCELLABLE_STATUSES),
        )
        .values(status=InvoiceStatus.cancelled, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        current = get_invoice(db, invoice_id)
        raise Conflict(
            f"Cannot cancel an invoice in status {current.status.value}",
            invoice_id=invoice_id,
            status=current.status.value,
        )
    db.commit()
    db.expire_all()
    logger.info("Invoice cancelled invoice=%s", invoice_id)
    return get_invoice(db, invoice_id)


def mark_overdue(db: Session, today: date | None = None) -> int:
    day = today or utc_now().date()
    result = db.execute(
        update(models.Invoice)
        .where(
            models.Invoice.status == InvoiceStatus.sent,
            models.Invoice.due_date < day,
        )
        .values(status=InvoiceStatus.overdue, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount:
        logger.info("Invoices marked overdue count=%s", result.rowcount)
    return result.rowcount


def list_user_invoices(
    db: Session,
    user_id: str,
    *,
    status: InvoiceStatus | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[models.Invoice], int, Decimal]:
    query = db.query(models.Invoice).filter(models.Invoice.user_id == user_id)
    if status:
        query = query.filter(models.Invoice.status == status)
    total = query.count()
    rows = (
        query.options(selectinload(models.Invoice.line_items))
        .order_by(models.Invoice.issue_date.desc(), models.Invoice.invoice_number.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    amount_due = (
        db.query(
            func.coalesce(
                func.sum(models.Invoice.total_amount - func.coalesce(models.Invoice.paid_amount, 0)),
                0,
            )
        )
        .filter(
            models.Invoice.user_id == user_id,
            models.Invoice.status.in_(OPEN_STATUSES),
        )
        .scalar()
    )
    return rows, total, round_money(Decimal(str(amount_due)))
