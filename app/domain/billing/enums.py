import enum


class SubscriptionStatus(enum.Enum):
    trial = "trial"
    active = "active"
    paused = "paused"
    cancelled = "cancelled"


class SubscriptionTier(enum.Enum):
    free = "free"
    trial = "trial"
    basic = "basic"
    premium = "premium"
    enterprise = "enterprise"


class BillingCycle(enum.Enum):
    monthly = "monthly"
    yearly = "yearly"


class ConsultationType(enum.Enum):
    text = "text"
    video = "video"
    emergency = "emergency"
    follow_up = "follow_up"


class CreditPool(enum.Enum):
    general = "general"
    emergency = "emergency"


class CreditTransactionKind(enum.Enum):
    consumption = "consumption"
    purchase = "purchase"
    refresh = "refresh"


class InvoiceStatus(enum.Enum):
    draft = "draft"
    sent = "sent"
    paid = "paid"
    partially_paid = "partially_paid"
    overdue = "overdue"
    cancelled = "cancelled"


class ServiceCategory(enum.Enum):
    subscription = "subscription"
    consultation = "consultation"
    dog_id = "dog_id"
    platform_fee = "platform_fee"
