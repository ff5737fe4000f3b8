from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Literal

from sqlalchemy.orm import Session

from app import models
from app.clock import as_utc, month_key, utc_now
from app.domain.billing.enums import SubscriptionTier
from app.domain.entitlements.limits import FEATURES, feature_limit, is_known_feature, upgrade_message
from app.errors import FeatureQuotaExceeded, UnknownFeatureError
from app.services import subscriptions as subscription_service
from app.services.usage_ledger import get_usage, increment_usage, usage_for_month

logger = logging.getLogger(__name__)

UNLIMITED = "unlimited"


@dataclass(frozen=True, slots=True)
class FeatureAccess:
    feature: str
    tier: SubscriptionTier
    has_access: bool
    limit: int | None
    used: int
    remaining: int | Literal["unlimited"]
    upgrade_required: bool
    upgrade_message: str | None

    def as_dict(self) -> dict:
        data = asdict(self)
        data["tier"] = self.tier.value
        return data


def _require_feature(feature_key: str) -> None:
    if not is_known_feature(feature_key):
        raise UnknownFeatureError(
            "Unknown feature",
            feature=feature_key,
            allowed=sorted(FEATURES),
        )


def resolve_tier(
    subscription: models.Subscription | None,
    claimed_tier: SubscriptionTier | None,
    now: datetime,
) -> SubscriptionTier:
    """Tier used for metering.

    A tier claimed by the caller's token wins, except that an expired stored
    subscription always meters as ``free``.
    """
    if claimed_tier is None:
        return subscription_service.effective_tier(subscription, now)
    if subscription_service.is_expired(subscription, now):
        return SubscriptionTier.free
    return claimed_tier


def _access(feature_key: str, tier: SubscriptionTier, used: int) -> FeatureAccess:
    limit = feature_limit(feature_key, tier)
    has_access = limit is None or used < limit
    remaining = UNLIMITED if limit is None else max(limit - used, 0)
    return FeatureAccess(
        feature=feature_key,
        tier=tier,
        has_access=has_access,
        limit=limit,
        used=used,
        remaining=remaining,
        upgrade_required=not has_access,
        upgrade_message=None if has_access else upgrade_message(tier, feature_key),
    )


def check_access(
    db: Session,
    principal_id: str,
    feature_key: str,
    *,
    tier: SubscriptionTier | None = None,
    now: datetime | None = None,
) -> FeatureAccess:
    """Read-only access decision; nothing is created or counted."""
    _require_feature(feature_key)
    moment = as_utc(now) or utc_now()
    subscription = subscription_service.find_subscription_for_owner(db, principal_id)
    resolved = resolve_tier(subscription, tier, moment)
    used = 0
    if subscription is not None:
        used = get_usage(db, subscription.id, feature_key, month_key(moment))
    return _access(feature_key, resolved, used)


def consume(
    db: Session,
    principal_id: str,
    feature_key: str,
    *,
    tier: SubscriptionTier | None = None,
    now: datetime | None = None,
) -> FeatureAccess:
    """Count one use of ``feature_key``, or raise ``FeatureQuotaExceeded``.

    The increment is gated on the limit inside the same statement, so two
    concurrent calls at ``limit - 1`` cannot both succeed.
    """
    _require_feature(feature_key)
    moment = as_utc(now) or utc_now()
    subscription = subscription_service.get_or_create_subscription(db, principal_id)
    resolved = resolve_tier(subscription, tier, moment)
    limit = feature_limit(feature_key, resolved)

    new_count = None
    if limit is None or limit > 0:
        new_count = increment_usage(db, subscription.id, feature_key, ceiling=limit, now=moment)

    if new_count is None:
        used = get_usage(db, subscription.id, feature_key, month_key(moment))
        logger.info(
            "Feature denied owner=%s feature=%s tier=%s used=%s limit=%s",
            principal_id,
            feature_key,
            resolved.value,
            used,
            limit,
        )
        raise FeatureQuotaExceeded(
            "Feature access denied",
            feature=feature_key,
            tier=resolved.value,
            limit=limit,
            used=used,
            remaining=0,
            upgrade_required=True,
            upgrade_message=upgrade_message(resolved, feature_key),
        )
    return _access(feature_key, resolved, new_count)


def list_feature_availability(
    db: Session,
    principal_id: str,
    *,
    tier: SubscriptionTier | None = None,
    now: datetime | None = None,
) -> tuple[SubscriptionTier, list[FeatureAccess]]:
    moment = as_utc(now) or utc_now()
    subscription = subscription_service.find_subscription_for_owner(db, principal_id)
    resolved = resolve_tier(subscription, tier, moment)
    rows = {}
    if subscription is not None:
        rows = usage_for_month(db, subscription.id, month_key(moment))
    features = []
    for key in FEATURES:
        used = rows[key].usage_count if key in rows else 0
        features.append(_access(key, resolved, used))
    return resolved, features
