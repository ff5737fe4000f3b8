from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.auth.dependencies import Principal, get_principal, require_admin
from app.db import get_db
from app.domain.billing.enums import InvoiceStatus
from app.errors import Forbidden, ValidationError
from app.schemas import (
    InvoiceListOut,
    InvoiceOut,
    InvoicePaymentIn,
    ServiceInvoiceIn,
    SubscriptionInvoiceIn,
)
from app.services import invoices
from app.services.invoices import LineInput

router = APIRouter(prefix="/billing/invoices", tags=["billing"])


@router.post("/subscription", response_model=InvoiceOut)
def create_subscription_invoice(
    payload: SubscriptionInvoiceIn,
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin()),
):
    return invoices.generate_for_subscription(
        db,
        payload.subscription_id,
        payload.period_start,
        payload.period_end,
    )


@router.post("/service", response_model=InvoiceOut)
def create_service_invoice(
    payload: ServiceInvoiceIn,
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin()),
):
    lines = [
        LineInput(
            description=item.description,
            unit_price=item.unit_price,
            quantity=item.quantity,
            category=item.category,
        )
        for item in payload.line_items
    ]
    return invoices.generate_for_service(db, payload.user_id, lines, payload.category, notes=payload.notes)


@router.post("/mark-overdue")
def mark_overdue(
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin()),
):
    return {"success": True, "updated": invoices.mark_overdue(db)}


@router.get("", response_model=InvoiceListOut)
def list_invoices(
    user_id: Optional[str] = Query(default=None),
    status: Optional[InvoiceStatus] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    owner = user_id if principal.is_admin and user_id else principal.user_id
    if not owner:
        raise ValidationError("user_id is required")
    rows, total, amount_due = invoices.list_user_invoices(db, owner, status=status, page=page, limit=limit)
    return InvoiceListOut(
        invoices=[InvoiceOut.model_validate(row) for row in rows],
        total=total,
        page=page,
        limit=limit,
        total_amount_due=amount_due,
    )


@router.get("/{invoice_id}", response_model=InvoiceOut)
def get_invoice(
    invoice_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    invoice = invoices.get_invoice(db, invoice_id)
    if not principal.is_admin and invoice.user_id != principal.user_id:
        raise Forbidden("Not allowed to view this invoice")
    return invoice


@router.post("/{invoice_id}/pay", response_model=InvoiceOut)
def pay_invoice(
    invoice_id: str,
    payload: InvoicePaymentIn,
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin()),
):
    return invoices.mark_paid(db, invoice_id, payload.payment_id, payload.paid_amount)


@router.post("/{invoice_id}/cancel", response_model=InvoiceOut)
def cancel_invoice(
    invoice_id: str,
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin()),
):
    return invoices.cancel_invoice(db, invoice_id)
