"""Consultation credit pools.

Balances are refreshed lazily: a read at or after ``next_refresh_date``
resets both pools to the plan allotment. A subscription that is never read
after its refresh date keeps showing the old balance until the next access.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import models
from app.clock import as_utc, start_of_next_month, utc_now
from app.domain.billing.enums import ConsultationType, CreditPool, CreditTransactionKind, SubscriptionTier
from app.domain.entitlements.limits import consultation_cost, consultation_pool, credit_allotment
from app.errors import Conflict, Forbidden, InsufficientCreditsError, ValidationError
from app.services.subscriptions import effective_tier
from app.services.usage_ledger import upsert_insert

logger = logging.getLogger(__name__)

PREMIUM_REQUIRED_MESSAGE = (
    "Expert consultations are a premium feature. Upgrade to ₹99/month for instant access to veterinary experts."
)


@dataclass(frozen=True, slots=True)
class BalanceView:
    subscription_id: str
    tier: SubscriptionTier
    available: Decimal
    emergency: Decimal
    purchased_total: Decimal
    last_refresh: datetime
    next_refresh: datetime


@dataclass(frozen=True, slots=True)
class DebitResult:
    consultation_type: ConsultationType
    pool: CreditPool
    credits_used: Decimal
    remaining: Decimal
    balance: BalanceView


def parse_consultation_type(value: str | ConsultationType) -> ConsultationType:
    if isinstance(value, ConsultationType):
        return value
    cleaned = str(value or "").strip().lower()
    # accept the long names used by older clients
    if cleaned.endswith("_consultation"):
        cleaned = cleaned[: -len("_consultation")]
    try:
        return ConsultationType(cleaned)
    except ValueError:
        raise ValidationError(
            "Unknown consultation type",
            consultation_type=value,
            allowed=[t.value for t in ConsultationType],
        )


def _pool_column(pool: CreditPool):
    if pool == CreditPool.emergency:
        return models.CreditBalance.emergency_credits
    return models.CreditBalance.available_credits


def _load_row(db: Session, subscription_id: str) -> models.CreditBalance | None:
    return (
        db.query(models.CreditBalance)
        .filter(models.CreditBalance.subscription_id == subscription_id)
        .populate_existing()
        .first()
    )


def _view(row: models.CreditBalance, tier: SubscriptionTier) -> BalanceView:
    return BalanceView(
        subscription_id=row.subscription_id,
        tier=tier,
        available=Decimal(str(row.available_credits)),
        emergency=Decimal(str(row.emergency_credits)),
        purchased_total=Decimal(str(row.purchased_credits_total)),
        last_refresh=as_utc(row.last_refresh_date),
        next_refresh=as_utc(row.next_refresh_date),
    )


def get_balance(
    db: Session,
    subscription: models.Subscription,
    *,
    now: datetime | None = None,
) -> BalanceView:
    moment = as_utc(now) or utc_now()
    tier = effective_tier(subscription, moment)
    allotment = credit_allotment(tier)
    if allotment is None:
        raise Forbidden(
            "Premium subscription required",
            upgrade_message=PREMIUM_REQUIRED_MESSAGE,
            trial_available=subscription.trial_end is None,
        )

    row = _load_row(db, subscription.id)
    if row is None:
        insert = upsert_insert(db)
        db.execute(
            insert(models.CreditBalance)
            .values(
                id=str(uuid.uuid4()),
                subscription_id=subscription.id,
                available_credits=allotment.monthly_credits,
                emergency_credits=allotment.emergency_credits,
                purchased_credits_total=Decimal("0"),
                last_refresh_date=moment,
                next_refresh_date=start_of_next_month(moment),
            )
            .on_conflict_do_nothing(index_elements=["subscription_id"])
        )
        db.commit()
        row = _load_row(db, subscription.id)

    if moment >= as_utc(row.next_refresh_date):
        result = db.execute(
            update(models.CreditBalance)
            .where(
                models.CreditBalance.subscription_id == subscription.id,
                models.CreditBalance.next_refresh_date <= moment,
            )
            .values(
                available_credits=allotment.monthly_credits,
                emergency_credits=allotment.emergency_credits,
                last_refresh_date=moment,
                next_refresh_date=start_of_next_month(moment),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            _record(
                db,
                subscription.id,
                kind=CreditTransactionKind.refresh,
                pool=CreditPool.general,
                credits=allotment.monthly_credits,
                balance_after=allotment.monthly_credits,
            )
            if allotment.emergency_credits > 0:
                _record(
                    db,
                    subscription.id,
                    kind=CreditTransactionKind.refresh,
                    pool=CreditPool.emergency,
                    credits=allotment.emergency_credits,
                    balance_after=allotment.emergency_credits,
                )
            logger.info("Credits refreshed subscription=%s tier=%s", subscription.id, tier.value)
        db.commit()
        row = _load_row(db, subscription.id)

    return _view(row, tier)


def _record(
    db: Session,
    subscription_id: str,
    *,
    kind: CreditTransactionKind,
    pool: CreditPool,
    credits: Decimal,
    balance_after: Decimal,
    consultation_type: str | None = None,
    expert_id: str | None = None,
    consultation_id: str | None = None,
    payment_id: str | None = None,
) -> models.CreditTransaction:
    entry = models.CreditTransaction(
        id=str(uuid.uuid4()),
        subscription_id=subscription_id,
        kind=kind,
        pool=pool,
        credits=credits,
        balance_after=balance_after,
        consultation_type=consultation_type,
        expert_id=expert_id,
        consultation_id=consultation_id,
        payment_id=payment_id,
        created_at=utc_now(),
    )
    db.add(entry)
    return entry


def debit(
    db: Session,
    subscription: models.Subscription,
    consultation_type: ConsultationType | str,
    *,
    expert_id: str | None = None,
    consultation_id: str | None = None,
    now: datetime | None = None,
) -> DebitResult:
    """Spend the credits a consultation costs, all or nothing."""
    kind = parse_consultation_type(consultation_type)
    cost = consultation_cost(kind)
    pool = consultation_pool(kind)
    balance = get_balance(db, subscription, now=now)

    column = _pool_column(pool)
    result = db.execute(
        update(models.CreditBalance)
        .where(
            models.CreditBalance.subscription_id == subscription.id,
            column >= cost,
        )
        .values({column.key: column - cost})
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        current = get_balance(db, subscription, now=now)
        have = current.emergency if pool == CreditPool.emergency else current.available
        label = "emergency credits" if pool == CreditPool.emergency else "credits"
        raise InsufficientCreditsError(
            f"Insufficient {label}. Need {cost}, have {have}.",
            required=str(cost),
            available=str(have),
            pool=pool.value,
            next_refresh_date=current.next_refresh.isoformat(),
        )

    after = db.query(column).filter(models.CreditBalance.subscription_id == subscription.id).scalar()
    after = Decimal(str(after))
    _record(
        db,
        subscription.id,
        kind=CreditTransactionKind.consumption,
        pool=pool,
        credits=-cost,
        balance_after=after,
        consultation_type=kind.value,
        expert_id=expert_id,
        consultation_id=consultation_id,
    )
    db.commit()
    logger.info(
        "Credits debited subscription=%s type=%s cost=%s remaining=%s",
        subscription.id,
        kind.value,
        cost,
        after,
    )
    return DebitResult(kind, pool, cost, after, _view(_load_row(db, subscription.id), balance.tier))


def credit(
    db: Session,
    subscription: models.Subscription,
    amount: Decimal | int,
    *,
    payment_id: str,
    now: datetime | None = None,
) -> BalanceView:
    """Add purchased credits to the general pool.

    ``payment_id`` identifies the purchase; replaying it raises ``Conflict``
    instead of crediting twice.
    """
    amount = Decimal(str(amount))
    if amount <= 0:
        raise ValidationError("Credit amount must be greater than zero", credit_count=str(amount))
    if not payment_id:
        raise ValidationError("payment_id is required")
    balance = get_balance(db, subscription, now=now)

    already = (
        db.query(models.CreditTransaction.id)
        .filter(
            models.CreditTransaction.kind == CreditTransactionKind.purchase,
            models.CreditTransaction.payment_id == payment_id,
        )
        .first()
    )
    if already:
        raise Conflict("Payment already applied", payment_id=payment_id, already_recorded=True)

    db.execute(
        update(models.CreditBalance)
        .where(models.CreditBalance.subscription_id == subscription.id)
        .values(
            available_credits=models.CreditBalance.available_credits + amount,
            purchased_credits_total=models.CreditBalance.purchased_credits_total + amount,
        )
        .execution_options(synchronize_session=False)
    )
    after = (
        db.query(models.CreditBalance.available_credits)
        .filter(models.CreditBalance.subscription_id == subscription.id)
        .scalar()
    )
    _record(
        db,
        subscription.id,
        kind=CreditTransactionKind.purchase,
        pool=CreditPool.general,
        credits=amount,
        balance_after=Decimal(str(after)),
        payment_id=payment_id,
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Payment already applied", payment_id=payment_id, already_recorded=True)
    logger.info("Credits purchased subscription=%s amount=%s payment=%s", subscription.id, amount, payment_id)
    return _view(_load_row(db, subscription.id), balance.tier)


def credit_history(db: Session, subscription_id: str, *, limit: int = 20, offset: int = 0):
    query = (
        db.query(models.CreditTransaction)
        .filter(models.CreditTransaction.subscription_id == subscription_id)
        .order_by(models.CreditTransaction.created_at.desc(), models.CreditTransaction.id.desc())
    )
    total = query.count()
    return query.offset(offset).limit(limit).all(), total
