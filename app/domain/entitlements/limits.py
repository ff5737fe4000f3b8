"""Feature limit matrix and consultation credit tables.

Tables are read-only and carry a version so that stored usage rows and
cached responses can be traced back to the table that produced them.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping

from app.domain.billing.enums import ConsultationType, CreditPool, SubscriptionTier

LIMITS_VERSION = "2025-09"

FREE = SubscriptionTier.free
TRIAL = SubscriptionTier.trial
BASIC = SubscriptionTier.basic
PREMIUM = SubscriptionTier.premium
ENTERPRISE = SubscriptionTier.enterprise


@dataclass(frozen=True, slots=True)
class FeatureDefinition:
    key: str
    name: str
    description: str
    # None = unlimited, 0 = not available at that tier
    limits: Mapping[SubscriptionTier, int | None]


@dataclass(frozen=True, slots=True)
class CreditAllotment:
    monthly_credits: Decimal
    emergency_credits: Decimal


def _feature(key: str, name: str, description: str, **limits: int | None) -> FeatureDefinition:
    by_tier = {SubscriptionTier(tier): value for tier, value in limits.items()}
    missing = set(SubscriptionTier) - set(by_tier)
    if missing:
        raise ValueError(f"feature {key} is missing limits for {sorted(t.value for t in missing)}")
    return FeatureDefinition(key=key, name=name, description=description, limits=MappingProxyType(by_tier))


_FEATURES = (
    _feature(
        "health_analytics",
        "Advanced Health Analytics",
        "AI-powered health insights and predictive analytics",
        free=3, trial=10, basic=10, premium=None, enterprise=None,
    ),
    _feature(
        "expert_consultation",
        "Expert Consultations",
        "Book consultations with verified veterinary experts",
        free=0, trial=1, basic=1, premium=3, enterprise=10,
    ),
    _feature(
        "priority_booking",
        "Priority Appointment Booking",
        "Get priority access to partner appointments",
        free=0, trial=None, basic=0, premium=None, enterprise=None,
    ),
    _feature(
        "unlimited_health_logs",
        "Unlimited Health Logs",
        "Track unlimited health logs with photo storage",
        free=20, trial=50, basic=100, premium=None, enterprise=None,
    ),
    _feature(
        "advanced_insights",
        "Advanced Health Insights",
        "Detailed breed-specific and age-based recommendations",
        free=0, trial=None, basic=0, premium=None, enterprise=None,
    ),
    _feature(
        "export_reports",
        "Health Report Export",
        "Export detailed health reports for veterinary visits",
        free=1, trial=3, basic=5, premium=None, enterprise=None,
    ),
    _feature(
        "multi_dog_management",
        "Multi-Dog Management",
        "Manage health records for multiple dogs",
        free=1, trial=3, basic=2, premium=None, enterprise=None,
    ),
)

FEATURES: Mapping[str, FeatureDefinition] = MappingProxyType({f.key: f for f in _FEATURES})

CREDIT_ALLOTMENTS: Mapping[SubscriptionTier, CreditAllotment] = MappingProxyType(
    {
        TRIAL: CreditAllotment(monthly_credits=Decimal("1"), emergency_credits=Decimal("0")),
        BASIC: CreditAllotment(monthly_credits=Decimal("2"), emergency_credits=Decimal("0")),
        PREMIUM: CreditAllotment(monthly_credits=Decimal("5"), emergency_credits=Decimal("2")),
        ENTERPRISE: CreditAllotment(monthly_credits=Decimal("10"), emergency_credits=Decimal("5")),
    }
)

CONSULTATION_COSTS: Mapping[ConsultationType, Decimal] = MappingProxyType(
    {
        ConsultationType.text: Decimal("1"),
        ConsultationType.video: Decimal("2"),
        ConsultationType.emergency: Decimal("3"),
        ConsultationType.follow_up: Decimal("0.5"),
    }
)

CONSULTATION_DESCRIPTIONS: Mapping[ConsultationType, str] = MappingProxyType(
    {
        ConsultationType.text: "Text-based consultation with expert",
        ConsultationType.video: "Video call consultation with expert",
        ConsultationType.emergency: "Emergency consultation with priority response",
        ConsultationType.follow_up: "Follow-up question on existing consultation",
    }
)


def is_known_feature(feature_key: str) -> bool:
    return feature_key in FEATURES


def feature_definition(feature_key: str) -> FeatureDefinition | None:
    return FEATURES.get(feature_key)


def feature_limit(feature_key: str, tier: SubscriptionTier) -> int | None:
    definition = FEATURES.get(feature_key)
    if definition is None:
        raise KeyError(feature_key)
    return definition.limits[tier]


def credit_allotment(tier: SubscriptionTier) -> CreditAllotment | None:
    return CREDIT_ALLOTMENTS.get(tier)


def consultation_cost(consultation_type: ConsultationType) -> Decimal:
    return CONSULTATION_COSTS[consultation_type]


def consultation_pool(consultation_type: ConsultationType) -> CreditPool:
    if consultation_type == ConsultationType.emergency:
        return CreditPool.emergency
    return CreditPool.general


def upgrade_message(tier: SubscriptionTier, feature_key: str) -> str:
    name = FEATURES[feature_key].name
    if tier == FREE:
        return f"Upgrade to Premium to access {name}. Start with a 14-day free trial!"
    if tier == TRIAL:
        return f"Your trial includes limited {name}. Upgrade to Premium for unlimited access!"
    if tier == BASIC:
        return f"Your Basic plan limit for {name} is reached. Upgrade to Premium for more."
    return f"Monthly limit for {name} reached. It resets at the start of next month."
