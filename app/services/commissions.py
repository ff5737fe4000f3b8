from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import models
from app.clock import utc_now
from app.db import settings
from app.domain.commission.rates import calculate_commission, commission_for_rate, round_money
from app.domain.partner.enums import AppointmentStatus, CommissionStatus, CommissionType
from app.errors import CommissionConflict, NotFound, ValidationError
from app.services.usage_ledger import upsert_insert

logger = logging.getLogger(__name__)

MAX_MANUAL_RATE = Decimal("0.5")
ZERO = Decimal("0")


def _money(value) -> Decimal:
    return round_money(Decimal(str(value or 0)))


def _reference(partner_id: str, commission_type: str) -> str:
    return f"COM-{partner_id[:6].upper()}-{commission_type[:3].upper()}-{secrets.token_hex(4).upper()}"


def _get_partner(db: Session, partner_id: str) -> models.Partner:
    partner = db.query(models.Partner).filter(models.Partner.id == partner_id).first()
    if not partner:
        raise NotFound("Partner not found", partner_id=partner_id)
    return partner


def _existing_for_appointment(db: Session, appointment_id: str, commission_type: str):
    return (
        db.query(models.CommissionEarning)
        .filter(
            models.CommissionEarning.appointment_id == appointment_id,
            models.CommissionEarning.commission_type == commission_type,
        )
        .first()
    )


def _appointment_values(appointment: models.Appointment) -> dict:
    commission_type = CommissionType.appointment.value
    quote = calculate_commission(appointment.consultation_fee, appointment.partner.partnership_tier, commission_type)
    return {
        "id": str(uuid.uuid4()),
        "partner_id": appointment.partner_id,
        "user_id": appointment.user_id,
        "appointment_id": appointment.id,
        "commission_type": commission_type,
        "base_amount": _money(appointment.consultation_fee),
        "commission_rate": quote.rate,
        "commission_amount": quote.amount,
        "status": CommissionStatus.pending,
        "reference": _reference(appointment.partner_id, commission_type),
        "created_at": utc_now(),
    }


def record_appointment_commission(db: Session, appointment_id: str) -> models.CommissionEarning:
    """Create the commission for a completed appointment.

    A second call for the same appointment raises ``CommissionConflict``;
    the unique constraint backs the pre-check when two calls race.
    """
    appointment = db.query(models.Appointment).filter(models.Appointment.id == appointment_id).first()
    if not appointment:
        raise NotFound("Appointment not found", appointment_id=appointment_id)

    existing = _existing_for_appointment(db, appointment_id, CommissionType.appointment.value)
    if existing:
        raise CommissionConflict(
            "Commission already exists for this appointment",
            appointment_id=appointment_id,
            commission_id=existing.id,
        )
    if appointment.status != AppointmentStatus.completed:
        raise ValidationError(
            "Commission is only generated for completed appointments",
            appointment_id=appointment_id,
            status=appointment.status.value,
        )
    if _money(appointment.consultation_fee) <= ZERO:
        raise ValidationError("No commission applicable for this appointment", appointment_id=appointment_id)

    commission = models.CommissionEarning(**_appointment_values(appointment))
    db.add(commission)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise CommissionConflict("Commission already exists for this appointment", appointment_id=appointment_id)
    db.refresh(commission)
    logger.info(
        "Commission recorded appointment=%s partner=%s amount=%s",
        appointment_id,
        commission.partner_id,
        commission.commission_amount,
    )
    return commission


def record_referral_commission(
    db: Session,
    partner_id: str,
    referred_user_id: str,
    referral_value: Decimal | int | float | str,
    *,
    description: str | None = None,
) -> models.CommissionEarning:
    base = _money(referral_value)
    if base <= ZERO:
        raise ValidationError("Referral value must be greater than zero", referral_value=str(referral_value))
    if not referred_user_id:
        raise ValidationError("Referred user ID is required")
    partner = _get_partner(db, partner_id)
    commission_type = CommissionType.referral.value
    quote = calculate_commission(base, partner.partnership_tier, commission_type)
    commission = models.CommissionEarning(
        id=str(uuid.uuid4()),
        partner_id=partner.id,
        user_id=referred_user_id,
        commission_type=commission_type,
        base_amount=base,
        commission_rate=quote.rate,
        commission_amount=quote.amount,
        status=CommissionStatus.pending,
        reference=_reference(partner.id, commission_type),
        description=description,
        created_at=utc_now(),
    )
    db.add(commission)
    db.commit()
    db.refresh(commission)
    logger.info("Referral commission partner=%s user=%s amount=%s", partner.id, referred_user_id, quote.amount)
    return commission


def record_manual_commission(
    db: Session,
    partner_id: str,
    base_amount: Decimal | int | float | str,
    *,
    commission_rate: Decimal | int | float | str | None = None,
    commission_type: str | None = None,
    user_id: str | None = None,
    description: str | None = None,
) -> models.CommissionEarning:
    """Admin-entered commission with no appointment behind it.

    Without ``commission_rate`` the partner's tier rate is used.
    """
    base = _money(base_amount)
    if base <= ZERO:
        raise ValidationError("Base amount must be greater than zero", base_amount=str(base_amount))
    partner = _get_partner(db, partner_id)
    kind = (commission_type or CommissionType.manual.value).strip().lower()

    if commission_rate is None:
        quote = calculate_commission(base, partner.partnership_tier, kind)
        rate, amount = quote.rate, quote.amount
    else:
        rate = Decimal(str(commission_rate))
        if rate < ZERO or rate > MAX_MANUAL_RATE:
            raise ValidationError(
                f"Commission rate must be between 0 and {MAX_MANUAL_RATE}",
                commission_rate=str(commission_rate),
            )
        amount = commission_for_rate(base, rate)

    commission = models.CommissionEarning(
        id=str(uuid.uuid4()),
        partner_id=partner.id,
        user_id=user_id,
        commission_type=kind,
        base_amount=base,
        commission_rate=rate,
        commission_amount=amount,
        status=CommissionStatus.pending,
        reference=_reference(partner.id, kind),
        description=description,
        created_at=utc_now(),
    )
    db.add(commission)
    db.commit()
    db.refresh(commission)
    logger.info("Manual commission partner=%s type=%s amount=%s", partner.id, kind, amount)
    return commission


def _unprocessed_appointments(db: Session, limit: int) -> list[models.Appointment]:
    has_commission = (
        db.query(models.CommissionEarning.id)
        .filter(
            models.CommissionEarning.appointment_id == models.Appointment.id,
            models.CommissionEarning.commission_type == CommissionType.appointment.value,
        )
        .exists()
    )
    return (
        db.query(models.Appointment)
        .filter(
            models.Appointment.status == AppointmentStatus.completed,
            models.Appointment.consultation_fee > 0,
            ~has_commission,
        )
        .order_by(models.Appointment.appointment_date.asc(), models.Appointment.id.asc())
        .limit(limit)
        .all()
    )


def bulk_reconcile(db: Session, batch_size: int | None = None) -> dict:
    """Backfill commissions for completed appointments that have none.

    Handles at most ``batch_size`` appointments per call; callers loop until
    ``processed_count`` is zero. Rows the per-event path inserted meanwhile
    are skipped by ``ON CONFLICT DO NOTHING``.
    """
    limit = settings.reconcile_batch_size if batch_size is None else batch_size
    if limit < 1:
        raise ValidationError("batch_size must be at least 1", batch_size=batch_size)

    insert = upsert_insert(db)
    processed = 0
    total = ZERO
    for appointment in _unprocessed_appointments(db, limit):
        values = _appointment_values(appointment)
        result = db.execute(
            insert(models.CommissionEarning)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["appointment_id", "commission_type"])
        )
        if result.rowcount:
            processed += 1
            total += values["commission_amount"]
    db.commit()
    logger.info("Bulk reconcile processed=%s total=%s", processed, total)
    return {"processed_count": processed, "total_amount": round_money(total)}


def _advance(
    db: Session,
    commission_ids: Iterable[str],
    from_status: CommissionStatus,
    values: dict,
    *,
    partner_id: str | None = None,
) -> int:
    ids = [cid for cid in commission_ids if cid]
    if not ids:
        raise ValidationError("Commission IDs array is required")
    stmt = update(models.CommissionEarning).where(
        models.CommissionEarning.id.in_(ids),
        models.CommissionEarning.status == from_status,
    )
    if partner_id:
        stmt = stmt.where(models.CommissionEarning.partner_id == partner_id)
    result = db.execute(stmt.values(**values).execution_options(synchronize_session=False))
    db.commit()
    return result.rowcount


def approve_commissions(db: Session, commission_ids: Iterable[str], *, now: datetime | None = None) -> int:
    """Move pending commissions to approved; others in the list are left alone.

    ``paid_at`` is stamped on approval as well, matching how payouts were
    reported before the separate payout step existed.
    """
    moment = now or utc_now()
    count = _advance(
        db,
        commission_ids,
        CommissionStatus.pending,
        {"status": CommissionStatus.approved, "approved_at": moment, "paid_at": moment},
    )
    logger.info("Commissions approved count=%s", count)
    return count


def mark_commissions_paid(db: Session, commission_ids: Iterable[str], *, now: datetime | None = None) -> int:
    moment = now or utc_now()
    count = _advance(
        db,
        commission_ids,
        CommissionStatus.approved,
        {"status": CommissionStatus.paid, "paid_at": moment},
    )
    logger.info("Commissions paid count=%s", count)
    return count


@dataclass(slots=True)
class CommissionFilters:
    partner_id: str | None = None
    status: CommissionStatus | None = None
    commission_type: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


def _filtered(db: Session, filters: CommissionFilters):
    query = db.query(models.CommissionEarning)
    if filters.partner_id:
        query = query.filter(models.CommissionEarning.partner_id == filters.partner_id)
    if filters.status:
        query = query.filter(models.CommissionEarning.status == filters.status)
    if filters.commission_type:
        query = query.filter(models.CommissionEarning.commission_type == filters.commission_type)
    if filters.start_date:
        query = query.filter(models.CommissionEarning.created_at >= filters.start_date)
    if filters.end_date:
        query = query.filter(models.CommissionEarning.created_at <= filters.end_date)
    return query


def list_commissions(
    db: Session,
    filters: CommissionFilters,
    *,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[models.CommissionEarning], int]:
    query = _filtered(db, filters)
    total = query.count()
    rows = (
        query.order_by(models.CommissionEarning.created_at.desc(), models.CommissionEarning.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def _group_totals(db: Session, filters: CommissionFilters, column) -> dict:
    q = _filtered(db, filters).with_entities(
        column,
        func.count(models.CommissionEarning.id),
        func.coalesce(func.sum(models.CommissionEarning.commission_amount), 0),
        func.coalesce(func.sum(models.CommissionEarning.base_amount), 0),
    ).group_by(column)
    out = {}
    for key, count, commission_amount, base_amount in q.all():
        label = key.value if hasattr(key, "value") else key
        out[label] = {
            "count": int(count),
            "commission_amount": _money(commission_amount),
            "base_amount": _money(base_amount),
        }
    return out


def commission_summary(db: Session, filters: CommissionFilters) -> dict:
    by_status = _group_totals(db, filters, models.CommissionEarning.status)
    by_type = _group_totals(db, filters, models.CommissionEarning.commission_type)
    total_commissions = sum((v["commission_amount"] for v in by_status.values()), ZERO)
    total_base = sum((v["base_amount"] for v in by_status.values()), ZERO)
    total_count = sum(v["count"] for v in by_status.values())
    average_rate = ZERO
    if total_base > 0:
        average_rate = round_money(total_commissions / total_base * 100)
    return {
        "totals": {
            "total_commissions": round_money(total_commissions),
            "total_base_amount": round_money(total_base),
            "total_count": total_count,
            "average_commission_rate": average_rate,
        },
        "by_status": by_status,
        "by_type": by_type,
    }
