from datetime import timedelta

import pytest

from app.domain.billing.enums import BillingCycle, SubscriptionStatus, SubscriptionTier
from app.errors import InvalidTransition, ValidationError
from app.services import subscriptions


def test_first_use_creates_free_subscription(db):
    subscription = subscriptions.get_or_create_subscription(db, "owner-1")
    again = subscriptions.get_or_create_subscription(db, "owner-1")
    assert subscription.id == again.id
    assert subscription.status == SubscriptionStatus.active
    assert subscriptions.effective_tier(subscription) == SubscriptionTier.free


def test_trial_runs_fourteen_days_once(db, now):
    subscription = subscriptions.start_trial(db, "owner-trial", now=now)
    assert subscription.status == SubscriptionStatus.trial
    assert subscriptions.effective_tier(subscription, now + timedelta(days=13)) == SubscriptionTier.trial
    assert subscriptions.effective_tier(subscription, now + timedelta(days=15)) == SubscriptionTier.free
    assert subscriptions.is_expired(subscription, now + timedelta(days=15))

    with pytest.raises(InvalidTransition):
        subscriptions.start_trial(db, "owner-trial", now=now)


def test_activate_from_trial(db, now):
    trial = subscriptions.start_trial(db, "owner-paid", now=now)
    active = subscriptions.activate(
        db, trial.id, SubscriptionTier.basic, billing_cycle=BillingCycle.yearly, payment_id="pay_1", now=now
    )
    assert active.status == SubscriptionStatus.active
    assert active.tier == SubscriptionTier.basic
    assert active.external_payment_id == "pay_1"
    assert active.next_billing_date.year == 2027

    with pytest.raises(InvalidTransition):
        subscriptions.activate(db, trial.id, SubscriptionTier.premium, now=now)
    with pytest.raises(ValidationError):
        subscriptions.activate(db, trial.id, SubscriptionTier.trial, now=now)


def test_change_plan_keeps_status(db, now):
    subscription = subscriptions.get_or_create_subscription(db, "owner-plan")
    with pytest.raises(InvalidTransition):
        subscriptions.change_plan(db, subscription.id, SubscriptionTier.premium)
    subscriptions.activate(db, subscription.id, SubscriptionTier.basic, now=now)
    changed = subscriptions.change_plan(db, subscription.id, SubscriptionTier.enterprise)
    assert changed.tier == SubscriptionTier.enterprise
    assert changed.status == SubscriptionStatus.active


def test_pause_resume_and_cancel(db, now):
    subscription = subscriptions.get_or_create_subscription(db, "owner-cycle")
    subscriptions.activate(db, subscription.id, SubscriptionTier.premium, now=now)

    paused = subscriptions.pause(db, subscription.id)
    assert paused.status == SubscriptionStatus.paused
    assert subscriptions.effective_tier(paused) == SubscriptionTier.free
    with pytest.raises(InvalidTransition):
        subscriptions.pause(db, subscription.id)

    resumed = subscriptions.resume(db, subscription.id)
    assert resumed.status == SubscriptionStatus.active
    assert resumed.paused_at is None

    cancelled = subscriptions.cancel(db, subscription.id)
    assert cancelled.status == SubscriptionStatus.cancelled
    assert cancelled.auto_renew is False
    for action in (subscriptions.resume, subscriptions.pause, subscriptions.cancel):
        with pytest.raises(InvalidTransition):
            action(db, subscription.id)


def test_lapsed_paid_plan_without_renewal_meters_as_free(db, now):
    subscription = subscriptions.get_or_create_subscription(db, "owner-lapsed")
    subscription = subscriptions.activate(db, subscription.id, SubscriptionTier.premium, now=now)
    subscription.auto_renew = False
    db.commit()
    assert subscriptions.effective_tier(subscription, now + timedelta(days=10)) == SubscriptionTier.premium
    assert subscriptions.effective_tier(subscription, now + timedelta(days=40)) == SubscriptionTier.free


def test_cancelled_paid_plan_can_be_reactivated(db, now):
    subscription = subscriptions.get_or_create_subscription(db, "owner-back")
    subscriptions.activate(db, subscription.id, SubscriptionTier.premium, now=now)
    subscriptions.cancel(db, subscription.id)

    later = now + timedelta(days=60)
    reactivated = subscriptions.reactivate(db, subscription.id, payment_id="pay_again", now=later)
    assert reactivated.status == SubscriptionStatus.active
    assert reactivated.tier == SubscriptionTier.premium
    assert reactivated.auto_renew is True
    assert reactivated.cancelled_at is None
    assert reactivated.external_payment_id == "pay_again"
    assert subscriptions.effective_tier(reactivated, later + timedelta(days=1)) == SubscriptionTier.premium

    with pytest.raises(InvalidTransition):
        subscriptions.reactivate(db, subscription.id, now=later)


def test_cancelled_trial_reactivates_onto_paid_tier(db, now):
    trial = subscriptions.start_trial(db, "owner-trial-back", now=now)
    subscriptions.cancel(db, trial.id)
    with pytest.raises(ValidationError):
        subscriptions.reactivate(db, trial.id, now=now)

    reactivated = subscriptions.reactivate(
        db, trial.id, tier=SubscriptionTier.basic, billing_cycle=BillingCycle.yearly, now=now
    )
    assert reactivated.tier == SubscriptionTier.basic
    assert reactivated.next_billing_date.year == 2027
