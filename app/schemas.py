from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, PlainSerializer, computed_field

from app import models
from app.domain.commission.rates import display_percent


def _money_str(value: Decimal) -> str:
    return str(Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


# rendered as "1180.00" in JSON
Money = Annotated[Decimal, PlainSerializer(_money_str, return_type=str, when_used="json")]
Credits = Annotated[Decimal, PlainSerializer(lambda v: float(v), return_type=float, when_used="json")]


# Features


class FeatureActionIn(BaseModel):
    feature: str
    action: Literal["use", "check"] = "use"


class FeatureAccessOut(BaseModel):
    feature: str
    tier: str
    has_access: bool
    limit: Optional[int] = None
    used: int
    remaining: Union[int, Literal["unlimited"]]
    upgrade_required: bool
    upgrade_message: Optional[str] = None


class FeatureInfoOut(FeatureAccessOut):
    name: str
    description: str


# Credits


class CreditActionIn(BaseModel):
    action: Literal["use_credits", "purchase_credits"]
    consultation_type: Optional[str] = None
    expert_id: Optional[str] = None
    consultation_id: Optional[str] = None
    credit_count: Optional[Decimal] = Field(default=None, gt=0)
    payment_id: Optional[str] = None


class CreditBalanceOut(BaseModel):
    tier: str
    available_credits: Credits
    emergency_credits: Credits
    purchased_credits_total: Credits
    last_refresh_date: datetime
    next_refresh_date: datetime


class ConsultationTypeOut(BaseModel):
    cost: Credits
    pool: str
    description: str


class CreditTransactionOut(BaseModel):
    id: str
    kind: models.CreditTransactionKind
    pool: models.CreditPool
    credits: Credits
    balance_after: Credits
    consultation_type: Optional[str] = None
    expert_id: Optional[str] = None
    consultation_id: Optional[str] = None
    payment_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


# Commissions


class ReferralDataIn(BaseModel):
    referrer_partner_id: str
    referred_user_id: str
    referral_value: Decimal = Field(gt=0)
    description: Optional[str] = None


class ManualCommissionIn(BaseModel):
    partner_id: str
    base_amount: Decimal = Field(gt=0)
    commission_rate: Optional[Decimal] = Field(default=None, ge=0, le=Decimal("0.5"))
    commission_type: Optional[str] = Field(default=None, max_length=32)
    user_id: Optional[str] = None
    description: Optional[str] = None


CommissionAction = Literal[
    "generate_appointment_commission",
    "create_referral_commission",
    "manual_commission",
    "bulk_process",
    "approve_commission",
    "mark_paid",
]


class CommissionActionIn(BaseModel):
    action: CommissionAction
    appointment_id: Optional[str] = None
    referral_data: Optional[ReferralDataIn] = None
    manual_commission: Optional[ManualCommissionIn] = None
    commission_ids: Optional[List[str]] = None
    batch_size: Optional[int] = Field(default=None, ge=1, le=1000)


class CommissionOut(BaseModel):
    id: str
    partner_id: str
    user_id: Optional[str] = None
    appointment_id: Optional[str] = None
    commission_type: str
    base_amount: Money
    commission_rate: Decimal
    commission_amount: Money
    status: models.CommissionStatus
    reference: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime
    approved_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @computed_field
    @property
    def commission_rate_percent(self) -> int:
        return display_percent(self.commission_rate)


class CommissionGroupOut(BaseModel):
    count: int
    commission_amount: Money
    base_amount: Money


class CommissionTotalsOut(BaseModel):
    total_commissions: Money
    total_base_amount: Money
    total_count: int
    average_commission_rate: Decimal


class CommissionAnalyticsOut(BaseModel):
    totals: CommissionTotalsOut
    by_status: Dict[str, CommissionGroupOut]
    by_type: Dict[str, CommissionGroupOut]


class PaginationOut(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


# Subscriptions


class SubscriptionOut(BaseModel):
    id: str
    owner_id: str
    status: models.SubscriptionStatus
    tier: models.SubscriptionTier
    effective_tier: Optional[models.SubscriptionTier] = None
    billing_cycle: models.BillingCycle
    auto_renew: bool
    started_at: datetime
    trial_end: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SubscriptionActivateIn(BaseModel):
    tier: models.SubscriptionTier
    billing_cycle: models.BillingCycle = models.BillingCycle.monthly
    payment_id: Optional[str] = None


class SubscriptionChangePlanIn(BaseModel):
    tier: models.SubscriptionTier


class SubscriptionReactivateIn(BaseModel):
    tier: Optional[models.SubscriptionTier] = None
    billing_cycle: Optional[models.BillingCycle] = None
    payment_id: Optional[str] = None


# Invoices


class InvoiceLineIn(BaseModel):
    description: str = Field(min_length=1)
    unit_price: Decimal = Field(ge=0)
    quantity: int = Field(default=1, ge=1)
    category: Optional[models.ServiceCategory] = None


class ServiceInvoiceIn(BaseModel):
    user_id: str
    category: models.ServiceCategory
    line_items: List[InvoiceLineIn] = Field(min_length=1)
    notes: Optional[str] = None


class SubscriptionInvoiceIn(BaseModel):
    subscription_id: str
    period_start: Optional[date] = None
    period_end: Optional[date] = None


class InvoicePaymentIn(BaseModel):
    payment_id: str = Field(min_length=1)
    paid_amount: Optional[Decimal] = Field(default=None, gt=0)


class InvoiceLineOut(BaseModel):
    position: int
    description: str
    category: models.ServiceCategory
    hsn_code: str
    quantity: int
    unit_price: Money
    total_price: Money
    gst_rate: Decimal
    gst_amount: Money

    class Config:
        from_attributes = True


class InvoiceOut(BaseModel):
    id: str
    invoice_number: str
    user_id: str
    subscription_id: Optional[str] = None
    status: models.InvoiceStatus
    category: models.ServiceCategory
    subtotal: Money
    gst_amount: Money
    total_amount: Money
    currency: str
    issue_date: date
    due_date: date
    paid_date: Optional[datetime] = None
    paid_amount: Optional[Money] = None
    payment_id: Optional[str] = None
    billing_period_start: Optional[date] = None
    billing_period_end: Optional[date] = None
    payment_terms: str
    notes: Optional[str] = None
    line_items: List[InvoiceLineOut] = Field(default_factory=list)

    class Config:
        from_attributes = True


class InvoiceListOut(BaseModel):
    invoices: List[InvoiceOut]
    total: int
    page: int
    limit: int
    total_amount_due: Money
