from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base
from app.domain.billing.enums import (
    BillingCycle,
    CreditPool,
    CreditTransactionKind,
    InvoiceStatus,
    ServiceCategory,
    SubscriptionStatus,
    SubscriptionTier,
)


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    status: Mapped[SubscriptionStatus] = mapped_column(Enum(SubscriptionStatus), nullable=False)
    tier: Mapped[SubscriptionTier] = mapped_column(Enum(SubscriptionTier), nullable=False)
    billing_cycle: Mapped[BillingCycle] = mapped_column(
        Enum(BillingCycle), default=BillingCycle.monthly, nullable=False
    )
    auto_renew: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    started_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    trial_end: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True))
    next_billing_date: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True))
    paused_at: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True))
    external_payment_id: Mapped[str | None] = mapped_column(String(128))
    updated_at: Mapped["DateTime"] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class FeatureUsage(Base):
    __tablename__ = "feature_usage"
    __table_args__ = (
        UniqueConstraint("subscription_id", "feature_name", "usage_month", name="uq_feature_usage_month"),
        CheckConstraint("usage_count >= 0", name="ck_feature_usage_count_non_negative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subscription_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    feature_name: Mapped[str] = mapped_column(String(64), nullable=False)
    usage_month: Mapped[str] = mapped_column(String(7), nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    monthly_limit: Mapped[int | None] = mapped_column(Integer)
    last_used_at: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True))


class CreditBalance(Base):
    __tablename__ = "credit_balances"
    __table_args__ = (
        CheckConstraint("available_credits >= 0", name="ck_credit_available_non_negative"),
        CheckConstraint("emergency_credits >= 0", name="ck_credit_emergency_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    subscription_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    available_credits: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    emergency_credits: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    purchased_credits_total: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    last_refresh_date: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), nullable=False)
    next_refresh_date: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), nullable=False)


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"
    __table_args__ = (
        # a purchase payment is applied once
        UniqueConstraint("kind", "payment_id", name="uq_credit_transaction_payment"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    subscription_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind: Mapped[CreditTransactionKind] = mapped_column(Enum(CreditTransactionKind), nullable=False)
    pool: Mapped[CreditPool] = mapped_column(Enum(CreditPool), nullable=False)
    credits: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    consultation_type: Mapped[str | None] = mapped_column(String(32))
    expert_id: Mapped[str | None] = mapped_column(String(36))
    consultation_id: Mapped[str | None] = mapped_column(String(36))
    payment_id: Mapped[str | None] = mapped_column(String(128))
    balance_after: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class InvoiceSequence(Base):
    __tablename__ = "invoice_sequences"

    month: Mapped[str] = mapped_column(String(7), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    invoice_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    # weak reference, kept for display only
    subscription_id: Mapped[str | None] = mapped_column(String(36))
    status: Mapped[InvoiceStatus] = mapped_column(Enum(InvoiceStatus), default=InvoiceStatus.sent, nullable=False)
    category: Mapped[ServiceCategory] = mapped_column(Enum(ServiceCategory), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    gst_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="INR", nullable=False)
    issue_date: Mapped["Date"] = mapped_column(Date, nullable=False)
    due_date: Mapped["Date"] = mapped_column(Date, nullable=False)
    paid_date: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True))
    paid_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    payment_id: Mapped[str | None] = mapped_column(String(128))
    billing_period_start: Mapped["Date | None"] = mapped_column(Date)
    billing_period_end: Mapped["Date | None"] = mapped_column(Date)
    payment_terms: Mapped[str] = mapped_column(String(64), default="7 days from invoice date", nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped["DateTime"] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    line_items = relationship(
        "InvoiceLineItem",
        cascade="all, delete-orphan",
        back_populates="invoice",
        order_by="InvoiceLineItem.position",
    )


class InvoiceLineItem(Base):
    __tablename__ = "invoice_line_items"
    __table_args__ = (
        UniqueConstraint("invoice_id", "position", name="uq_invoice_line_position"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    invoice_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[ServiceCategory] = mapped_column(Enum(ServiceCategory), nullable=False)
    hsn_code: Mapped[str] = mapped_column(String(8), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    gst_rate: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    gst_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    invoice = relationship("Invoice", back_populates="line_items")
