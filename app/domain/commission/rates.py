from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import Mapping

from app.domain.partner.enums import CommissionType, PartnershipTier

RATES_VERSION = "2025-09"

CENT = Decimal("0.01")

BASE_RATES: Mapping[PartnershipTier, Decimal] = MappingProxyType(
    {
        PartnershipTier.basic: Decimal("0.10"),
        PartnershipTier.premium: Decimal("0.15"),
        PartnershipTier.enterprise: Decimal("0.20"),
    }
)

TYPE_MODIFIERS: Mapping[str, Decimal] = MappingProxyType(
    {
        CommissionType.appointment.value: Decimal("1.0"),
        CommissionType.referral.value: Decimal("1.5"),
        CommissionType.subscription.value: Decimal("0.8"),
        CommissionType.corporate.value: Decimal("1.2"),
        CommissionType.health_verification.value: Decimal("0.5"),
        CommissionType.training_package.value: Decimal("1.3"),
    }
)

DEFAULT_MODIFIER = Decimal("1.0")


@dataclass(frozen=True, slots=True)
class CommissionQuote:
    rate: Decimal
    rate_percent: int
    amount: Decimal


def round_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _to_decimal(value: Decimal | int | float | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps 0.1 as 0.1 instead of its binary expansion
    return Decimal(str(value))


def _tier(value: PartnershipTier | str | None) -> PartnershipTier:
    if isinstance(value, PartnershipTier):
        return value
    try:
        return PartnershipTier(str(value or "").strip().lower())
    except ValueError:
        return PartnershipTier.basic


def _type_key(value: CommissionType | str) -> str:
    if isinstance(value, CommissionType):
        return value.value
    return str(value or "").strip().lower()


def base_rate(tier: PartnershipTier | str | None) -> Decimal:
    return BASE_RATES[_tier(tier)]


def type_modifier(commission_type: CommissionType | str) -> Decimal:
    return TYPE_MODIFIERS.get(_type_key(commission_type), DEFAULT_MODIFIER)


def calculate_commission(
    base_amount: Decimal | int | float | str,
    tier: PartnershipTier | str | None,
    commission_type: CommissionType | str,
) -> CommissionQuote:
    """Commission owed on ``base_amount`` for a partner tier and commission type.

    The rate is exact (``base rate x modifier``). The displayed percent is the
    rate rounded half away from zero to a whole percent, and the amount is
    computed from the exact rate, not from the displayed percent, so the two
    can disagree by a fraction (premium referral: 23% shown, 22.5% charged).
    """
    amount = _to_decimal(base_amount)
    rate = base_rate(tier) * type_modifier(commission_type)
    rate_percent = int((rate * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return CommissionQuote(rate=rate, rate_percent=rate_percent, amount=round_money(amount * rate))


def commission_for_rate(base_amount: Decimal | int | float | str, rate: Decimal | int | float | str) -> Decimal:
    return round_money(_to_decimal(base_amount) * _to_decimal(rate))


def display_percent(rate: Decimal | int | float | str) -> int:
    return int((_to_decimal(rate) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
