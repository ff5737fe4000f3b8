from app.domain.billing.enums import (
    BillingCycle,
    ConsultationType,
    CreditPool,
    CreditTransactionKind,
    InvoiceStatus,
    ServiceCategory,
    SubscriptionStatus,
    SubscriptionTier,
)
from app.domain.billing.models import (
    CreditBalance,
    CreditTransaction,
    FeatureUsage,
    Invoice,
    InvoiceLineItem,
    InvoiceSequence,
    Subscription,
)
from app.domain.partner.enums import AppointmentStatus, CommissionStatus, CommissionType, PartnershipTier
from app.domain.partner.models import Appointment, CommissionEarning, Partner

__all__ = [
    "BillingCycle",
    "ConsultationType",
    "CreditPool",
    "CreditTransactionKind",
    "InvoiceStatus",
    "ServiceCategory",
    "SubscriptionStatus",
    "SubscriptionTier",
    "AppointmentStatus",
    "CommissionStatus",
    "CommissionType",
    "PartnershipTier",
    "Subscription",
    "FeatureUsage",
    "CreditBalance",
    "CreditTransaction",
    "InvoiceSequence",
    "Invoice",
    "InvoiceLineItem",
    "Partner",
    "Appointment",
    "CommissionEarning",
]
