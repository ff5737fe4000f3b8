import logging
import uuid
from datetime import datetime, timedelta
from typing import Iterable

from sqlalchemy import update
from sqlalchemy.orm import Session

from app import models
from app.clock import add_months, as_utc, utc_now
from app.db import settings
from app.domain.billing.enums import BillingCycle, SubscriptionStatus, SubscriptionTier
from app.domain.billing.pricing import PAID_TIERS
from app.errors import InvalidTransition, NotFound, ValidationError
from app.services.usage_ledger import upsert_insert

logger = logging.getLogger(__name__)

# paused <-> active is the only reversible edge; cancelled leaves only through reactivate
ALLOWED_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    SubscriptionStatus.trial: frozenset({SubscriptionStatus.active, SubscriptionStatus.cancelled}),
    SubscriptionStatus.active: frozenset({SubscriptionStatus.paused, SubscriptionStatus.cancelled}),
    SubscriptionStatus.paused: frozenset({SubscriptionStatus.active, SubscriptionStatus.cancelled}),
    SubscriptionStatus.cancelled: frozenset({SubscriptionStatus.active}),
}


def _sources_for(target: SubscriptionStatus) -> list[SubscriptionStatus]:
    return [status for status, targets in ALLOWED_TRANSITIONS.items() if target in targets]


def cycle_end(start: datetime, cycle: BillingCycle) -> datetime:
    return add_months(start, 12 if cycle == BillingCycle.yearly else 1)


def effective_tier(subscription: models.Subscription | None, now: datetime | None = None) -> SubscriptionTier:
    if subscription is None:
        return SubscriptionTier.free
    moment = as_utc(now) or utc_now()
    if subscription.status in (SubscriptionStatus.cancelled, SubscriptionStatus.paused):
        return SubscriptionTier.free
    if subscription.status == SubscriptionStatus.trial:
        trial_end = as_utc(subscription.trial_end)
        if trial_end is None or moment > trial_end:
            return SubscriptionTier.free
        return SubscriptionTier.trial
    next_billing = as_utc(subscription.next_billing_date)
    if (
        subscription.tier in PAID_TIERS
        and not subscription.auto_renew
        and next_billing is not None
        and moment > next_billing
    ):
        return SubscriptionTier.free
    return subscription.tier


def is_expired(subscription: models.Subscription | None, now: datetime | None = None) -> bool:
    if subscription is None:
        return False
    return subscription.tier != SubscriptionTier.free and effective_tier(subscription, now) == SubscriptionTier.free


def get_subscription(db: Session, subscription_id: str) -> models.Subscription:
    subscription = db.query(models.Subscription).filter(models.Subscription.id == subscription_id).first()
    if not subscription:
        raise NotFound("Subscription not found", subscription_id=subscription_id)
    return subscription


def find_subscription_for_owner(db: Session, owner_id: str) -> models.Subscription | None:
    return db.query(models.Subscription).filter(models.Subscription.owner_id == owner_id).first()


def get_or_create_subscription(db: Session, owner_id: str, *, auto_commit: bool = True) -> models.Subscription:
    """Return the owner's subscription, creating an ``active``/``free`` one on first use."""
    existing = find_subscription_for_owner(db, owner_id)
    if existing:
        return existing
    insert = upsert_insert(db)
    stmt = (
        insert(models.Subscription)
        .values(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            status=SubscriptionStatus.active,
            tier=SubscriptionTier.free,
            billing_cycle=BillingCycle.monthly,
            auto_renew=True,
            started_at=utc_now(),
            updated_at=utc_now(),
        )
        .on_conflict_do_nothing(index_elements=["owner_id"])
    )
    db.execute(stmt)
    if auto_commit:
        db.commit()
    subscription = find_subscription_for_owner(db, owner_id)
    if subscription is None:
        raise NotFound("Subscription not found", owner_id=owner_id)
    return subscription


def _guarded_update(
    db: Session,
    subscription_id: str,
    allowed_from: Iterable[SubscriptionStatus],
    values: dict,
    *,
    action: str,
) -> models.Subscription:
    allowed = list(allowed_from)
    result = db.execute(
        update(models.Subscription)
        .where(
            models.Subscription.id == subscription_id,
            models.Subscription.status.in_(allowed),
        )
        .values(**values, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        current = get_subscription(db, subscription_id)
        raise InvalidTransition(
            f"Cannot {action} a subscription in status {current.status.value}",
            subscription_id=subscription_id,
            status=current.status.value,
        )
    db.commit()
    subscription = get_subscription(db, subscription_id)
    db.refresh(subscription)
    logger.info("Subscription %s action=%s status=%s", subscription_id, action, subscription.status.value)
    return subscription


def start_trial(db: Session, owner_id: str, *, now: datetime | None = None) -> models.Subscription:
    moment = as_utc(now) or utc_now()
    subscription = get_or_create_subscription(db, owner_id)
    if subscription.tier != SubscriptionTier.free or subscription.trial_end is not None:
        raise InvalidTransition(
            "Trial is only available once, from the free plan",
            subscription_id=subscription.id,
            status=subscription.status.value,
        )
    trial_end = moment + timedelta(days=settings.trial_days)
    result = db.execute(
        update(models.Subscription)
        .where(
            models.Subscription.id == subscription.id,
            models.Subscription.tier == SubscriptionTier.free,
            models.Subscription.status == SubscriptionStatus.active,
            models.Subscription.trial_end.is_(None),
        )
        .values(
            status=SubscriptionStatus.trial,
            tier=SubscriptionTier.trial,
            trial_end=trial_end,
            next_billing_date=trial_end,
            updated_at=moment,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        raise InvalidTransition("Trial already started", subscription_id=subscription.id)
    db.commit()
    db.refresh(subscription)
    logger.info("Trial started subscription=%s trial_end=%s", subscription.id, trial_end.isoformat())
    return subscription


def activate(
    db: Session,
    subscription_id: str,
    tier: SubscriptionTier,
    *,
    billing_cycle: BillingCycle = BillingCycle.monthly,
    payment_id: str | None = None,
    now: datetime | None = None,
) -> models.Subscription:
    """Move a trial (or free) subscription onto a paid tier after payment."""
    if tier not in PAID_TIERS:
        raise ValidationError("Only paid tiers can be activated", tier=tier.value)
    moment = as_utc(now) or utc_now()
    subscription = get_subscription(db, subscription_id)
    if subscription.status == SubscriptionStatus.active and subscription.tier != SubscriptionTier.free:
        raise InvalidTransition(
            "Subscription is already active; use change-plan instead",
            subscription_id=subscription_id,
            status=subscription.status.value,
        )
    allowed = [SubscriptionStatus.trial]
    if subscription.tier == SubscriptionTier.free:
        allowed.append(SubscriptionStatus.active)
    return _guarded_update(
        db,
        subscription_id,
        allowed,
        {
            "status": SubscriptionStatus.active,
            "tier": tier,
            "billing_cycle": billing_cycle,
            "auto_renew": True,
            "next_billing_date": cycle_end(moment, billing_cycle),
            "external_payment_id": payment_id,
        },
        action="activate",
    )


def change_plan(db: Session, subscription_id: str, tier: SubscriptionTier) -> models.Subscription:
    if tier not in PAID_TIERS:
        raise ValidationError("Plan changes must target a paid tier", tier=tier.value)
    subscription = get_subscription(db, subscription_id)
    if subscription.tier not in PAID_TIERS:
        raise InvalidTransition(
            "Only paid subscriptions can change plan",
            subscription_id=subscription_id,
            status=subscription.status.value,
        )
    # recorded usage rows are left untouched; the new limits apply from the next check
    return _guarded_update(
        db,
        subscription_id,
        [SubscriptionStatus.active],
        {"tier": tier},
        action="change plan of",
    )


def pause(db: Session, subscription_id: str) -> models.Subscription:
    return _guarded_update(
        db,
        subscription_id,
        _sources_for(SubscriptionStatus.paused),
        {"status": SubscriptionStatus.paused, "paused_at": utc_now()},
        action="pause",
    )


def resume(db: Session, subscription_id: str) -> models.Subscription:
    return _guarded_update(
        db,
        subscription_id,
        [SubscriptionStatus.paused],
        {"status": SubscriptionStatus.active, "paused_at": None},
        action="resume",
    )


def cancel(db: Session, subscription_id: str) -> models.Subscription:
    return _guarded_update(
        db,
        subscription_id,
        _sources_for(SubscriptionStatus.cancelled),
        {"status": SubscriptionStatus.cancelled, "auto_renew": False, "cancelled_at": utc_now()},
        action="cancel",
    )


def reactivate(
    db: Session,
    subscription_id: str,
    *,
    tier: SubscriptionTier | None = None,
    billing_cycle: BillingCycle | None = None,
    payment_id: str | None = None,
    now: datetime | None = None,
) -> models.Subscription:
    """Bring a cancelled subscription back to ``active`` with renewal on.

    Keeps the stored plan unless ``tier`` is given. A cancelled trial has no
    plan to return to, so it needs a paid ``tier``.
    """
    moment = as_utc(now) or utc_now()
    subscription = get_subscription(db, subscription_id)
    target = tier or subscription.tier
    if target == SubscriptionTier.trial:
        raise ValidationError("Choose a paid tier to reactivate a cancelled trial", tier=target.value)
    cycle = billing_cycle or subscription.billing_cycle
    values = {
        "status": SubscriptionStatus.active,
        "tier": target,
        "billing_cycle": cycle,
        "auto_renew": True,
        "cancelled_at": None,
        "paused_at": None,
        "next_billing_date": cycle_end(moment, cycle) if target in PAID_TIERS else None,
    }
    if payment_id:
        values["external_payment_id"] = payment_id
    return _guarded_update(
        db,
        subscription_id,
        [SubscriptionStatus.cancelled],
        values,
        action="reactivate",
    )
