from __future__ import annotations

from decimal import Decimal
from types import MappingProxyType
from typing import Mapping

from app.domain.billing.enums import BillingCycle, ServiceCategory, SubscriptionTier

PRICING_VERSION = "2025-09"

CURRENCY = "INR"

# Every category is taxed at the same rate in this deployment; the per-category
# map is kept so a rate change only touches this table.
GST_RATES: Mapping[ServiceCategory, Decimal] = MappingProxyType(
    {
        ServiceCategory.subscription: Decimal("0.18"),
        ServiceCategory.consultation: Decimal("0.18"),
        ServiceCategory.dog_id: Decimal("0.18"),
        ServiceCategory.platform_fee: Decimal("0.18"),
    }
)

HSN_CODES: Mapping[ServiceCategory, str] = MappingProxyType(
    {
        ServiceCategory.subscription: "998314",
        ServiceCategory.consultation: "998311",
        ServiceCategory.dog_id: "998399",
        ServiceCategory.platform_fee: "998313",
    }
)

MONTHLY_PRICES: Mapping[SubscriptionTier, Decimal] = MappingProxyType(
    {
        SubscriptionTier.basic: Decimal("49.00"),
        SubscriptionTier.premium: Decimal("99.00"),
        SubscriptionTier.enterprise: Decimal("149.00"),
    }
)

# yearly plans bill ten months and give two free
YEARLY_MONTHS_CHARGED = 10

PAID_TIERS = frozenset(MONTHLY_PRICES)

TIER_LABELS: Mapping[SubscriptionTier, str] = MappingProxyType(
    {
        SubscriptionTier.basic: "Basic",
        SubscriptionTier.premium: "Premium",
        SubscriptionTier.enterprise: "Enterprise",
    }
)


def gst_rate_for(category: ServiceCategory) -> Decimal:
    return GST_RATES[category]


def hsn_code_for(category: ServiceCategory) -> str:
    return HSN_CODES[category]


def plan_price(tier: SubscriptionTier, cycle: BillingCycle) -> Decimal | None:
    monthly = MONTHLY_PRICES.get(tier)
    if monthly is None:
        return None
    if cycle == BillingCycle.yearly:
        return monthly * YEARLY_MONTHS_CHARGED
    return monthly
