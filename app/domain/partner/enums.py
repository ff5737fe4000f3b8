import enum


class PartnershipTier(enum.Enum):
    basic = "basic"
    premium = "premium"
    enterprise = "enterprise"


class AppointmentStatus(enum.Enum):
    scheduled = "scheduled"
    completed = "completed"
    cancelled = "cancelled"


class CommissionType(enum.Enum):
    appointment = "appointment"
    referral = "referral"
    subscription = "subscription"
    corporate = "corporate"
    health_verification = "health_verification"
    training_package = "training_package"
    manual = "manual"


class CommissionStatus(enum.Enum):
    pending = "pending"
    approved = "approved"
    paid = "paid"
