from datetime import datetime, timezone
from decimal import Decimal

import pytest

from app import models
from app.domain.billing.enums import CreditPool, CreditTransactionKind, SubscriptionTier
from app.errors import Conflict, Forbidden, InsufficientCreditsError, ValidationError
from app.services import credits
from app.services.subscriptions import activate, get_or_create_subscription, get_subscription
from conftest import run_concurrently


def _subscribed(db, owner_id, tier, now):
    subscription = get_or_create_subscription(db, owner_id)
    return activate(db, subscription.id, tier, now=now)


def test_premium_allotment_and_debit(db, now):
    subscription = _subscribed(db, "owner-premium", SubscriptionTier.premium, now)

    balance = credits.get_balance(db, subscription, now=now)
    assert balance.available == Decimal("5")
    assert balance.emergency == Decimal("2")
    assert balance.next_refresh == datetime(2026, 4, 1, tzinfo=timezone.utc)

    result = credits.debit(db, subscription, "video_consultation", expert_id="expert-1", now=now)
    assert result.credits_used == Decimal("2")
    assert result.remaining == Decimal("3")
    assert result.pool == CreditPool.general

    entry = db.query(models.CreditTransaction).filter_by(kind=CreditTransactionKind.consumption).one()
    assert entry.credits == Decimal("-2")
    assert entry.expert_id == "expert-1"


def test_balance_refreshes_next_month(db, now):
    subscription = _subscribed(db, "owner-refresh", SubscriptionTier.premium, now)
    credits.debit(db, subscription, "text", now=now)
    credits.debit(db, subscription, "follow_up", now=now)

    later = datetime(2026, 4, 2, 9, 0, tzinfo=timezone.utc)
    balance = credits.get_balance(db, subscription, now=later)
    assert balance.available == Decimal("5")
    assert balance.emergency == Decimal("2")
    assert balance.next_refresh == datetime(2026, 5, 1, tzinfo=timezone.utc)
    refreshes = db.query(models.CreditTransaction).filter_by(kind=CreditTransactionKind.refresh).all()
    assert {(row.pool, row.credits) for row in refreshes} == {
        (CreditPool.general, Decimal("5")),
        (CreditPool.emergency, Decimal("2")),
    }


def test_refresh_without_emergency_allotment_logs_general_pool_only(db, now):
    subscription = _subscribed(db, "owner-basic-refresh", SubscriptionTier.basic, now)
    credits.get_balance(db, subscription, now=now)
    credits.get_balance(db, subscription, now=datetime(2026, 4, 1, tzinfo=timezone.utc))
    refreshes = db.query(models.CreditTransaction).filter_by(kind=CreditTransactionKind.refresh).all()
    assert [row.pool for row in refreshes] == [CreditPool.general]


def test_emergency_needs_emergency_pool(db, now):
    subscription = _subscribed(db, "owner-basic", SubscriptionTier.basic, now)
    with pytest.raises(InsufficientCreditsError) as excinfo:
        credits.debit(db, subscription, "emergency", now=now)
    assert excinfo.value.meta["pool"] == "emergency"
    assert excinfo.value.meta["required"] == "3"

    balance = credits.get_balance(db, subscription, now=now)
    assert balance.available == Decimal("2")


def test_debit_is_all_or_nothing(db, now):
    subscription = _subscribed(db, "owner-drain", SubscriptionTier.basic, now)
    credits.debit(db, subscription, "text", now=now)
    credits.debit(db, subscription, "follow_up", now=now)
    with pytest.raises(InsufficientCreditsError):
        credits.debit(db, subscription, "text", now=now)
    assert credits.get_balance(db, subscription, now=now).available == Decimal("0.5")


def test_purchase_is_applied_once(db, now):
    subscription = _subscribed(db, "owner-buy", SubscriptionTier.premium, now)
    balance = credits.credit(db, subscription, 3, payment_id="pay_001", now=now)
    assert balance.available == Decimal("8")
    assert balance.purchased_total == Decimal("3")

    with pytest.raises(Conflict) as excinfo:
        credits.credit(db, subscription, 3, payment_id="pay_001", now=now)
    assert excinfo.value.meta["already_recorded"] is True
    assert credits.get_balance(db, subscription, now=now).available == Decimal("8")


def test_purchase_rejects_non_positive_amount(db, now):
    subscription = _subscribed(db, "owner-zero", SubscriptionTier.premium, now)
    with pytest.raises(ValidationError):
        credits.credit(db, subscription, 0, payment_id="pay_002", now=now)


def test_free_tier_has_no_credits(db, now):
    subscription = get_or_create_subscription(db, "owner-free")
    with pytest.raises(Forbidden) as excinfo:
        credits.get_balance(db, subscription, now=now)
    assert excinfo.value.meta["trial_available"] is True


def test_unknown_consultation_type(db, now):
    with pytest.raises(ValidationError):
        credits.parse_consultation_type("house_call")
    assert credits.parse_consultation_type("follow_up_consultation").value == "follow_up"


def test_history_is_paginated(db, now):
    subscription = _subscribed(db, "owner-history", SubscriptionTier.premium, now)
    credits.debit(db, subscription, "text", now=now)
    credits.credit(db, subscription, 2, payment_id="pay_003", now=now)
    rows, total = credits.credit_history(db, subscription.id, limit=1)
    assert total == 2
    assert len(rows) == 1


def test_concurrent_debits_never_overspend(db, now):
    subscription = _subscribed(db, "owner-race", SubscriptionTier.premium, now)
    credits.get_balance(db, subscription, now=now)
    subscription_id = subscription.id

    def spend(session):
        own = get_subscription(session, subscription_id)
        return credits.debit(session, own, "text", now=now)

    results, errors = run_concurrently(spend, 8)
    assert len(results) == 5
    assert len(errors) == 3
    assert all(isinstance(exc, InsufficientCreditsError) for exc in errors)

    db.expire_all()
    assert credits.get_balance(db, subscription, now=now).available == Decimal("0")
    assert db.query(models.CreditTransaction).filter_by(kind=CreditTransactionKind.consumption).count() == 5
