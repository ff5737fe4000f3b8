"""metering init: subscriptions, usage, credits, commissions, invoices

Revision ID: 20261019_metering_init
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "20261019_metering_init"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENUMS = {
    "subscriptionstatus": ("trial", "active", "paused", "cancelled"),
    "subscriptiontier": ("free", "trial", "basic", "premium", "enterprise"),
    "billingcycle": ("monthly", "yearly"),
    "creditpool": ("general", "emergency"),
    "credittransactionkind": ("consumption", "purchase", "refresh"),
    "invoicestatus": ("draft", "sent", "paid", "partially_paid", "overdue", "cancelled"),
    "servicecategory": ("subscription", "consultation", "dog_id", "platform_fee"),
    "partnershiptier": ("basic", "premium", "enterprise"),
    "appointmentstatus": ("scheduled", "completed", "cancelled"),
    "commissionstatus": ("pending", "approved", "paid"),
}


def _enum(name: str) -> sa.Enum:
    # types are created once up front; servicecategory is shared by two tables
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        sa.Enum(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("owner_id", sa.String(length=36), nullable=False),
        sa.Column("status", _enum("subscriptionstatus"), nullable=False),
        sa.Column("tier", _enum("subscriptiontier"), nullable=False),
        sa.Column("billing_cycle", _enum("billingcycle"), nullable=False, server_default="monthly"),
        sa.Column("auto_renew", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("trial_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_billing_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paused_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("external_payment_id", sa.String(length=128), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("owner_id"),
    )

    op.create_table(
        "feature_usage",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("subscription_id", sa.String(length=36), nullable=False),
        sa.Column("feature_name", sa.String(length=64), nullable=False),
        sa.Column("usage_month", sa.String(length=7), nullable=False),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("monthly_limit", sa.Integer(), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("usage_count >= 0", name="ck_feature_usage_count_non_negative"),
        sa.ForeignKeyConstraint(["subscription_id"], ["subscriptions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("subscription_id", "feature_name", "usage_month", name="uq_feature_usage_month"),
    )
    op.create_index("ix_feature_usage_subscription_id", "feature_usage", ["subscription_id"])

    op.create_table(
        "credit_balances",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("subscription_id", sa.String(length=36), nullable=False),
        sa.Column("available_credits", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("emergency_credits", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("purchased_credits_total", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("last_refresh_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("next_refresh_date", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("available_credits >= 0", name="ck_credit_available_non_negative"),
        sa.CheckConstraint("emergency_credits >= 0", name="ck_credit_emergency_non_negative"),
        sa.ForeignKeyConstraint(["subscription_id"], ["subscriptions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("subscription_id"),
    )

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("subscription_id", sa.String(length=36), nullable=False),
        sa.Column("kind", _enum("credittransactionkind"), nullable=False),
        sa.Column("pool", _enum("creditpool"), nullable=False),
        sa.Column("credits", sa.Numeric(10, 2), nullable=False),
        sa.Column("consultation_type", sa.String(length=32), nullable=True),
        sa.Column("expert_id", sa.String(length=36), nullable=True),
        sa.Column("consultation_id", sa.String(length=36), nullable=True),
        sa.Column("payment_id", sa.String(length=128), nullable=True),
        sa.Column("balance_after", sa.Numeric(10, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["subscription_id"], ["subscriptions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("kind", "payment_id", name="uq_credit_transaction_payment"),
    )
    op.create_index("ix_credit_transactions_subscription_id", "credit_transactions", ["subscription_id"])

    op.create_table(
        "partners",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("business_name", sa.String(), nullable=True),
        sa.Column("partnership_tier", _enum("partnershiptier"), nullable=False, server_default="basic"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "appointments",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("partner_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("service_type", sa.String(length=64), nullable=True),
        sa.Column("consultation_fee", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("status", _enum("appointmentstatus"), nullable=False, server_default="scheduled"),
        sa.Column("appointment_date", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["partner_id"], ["partners.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_appointments_partner_id", "appointments", ["partner_id"])
    op.create_index("ix_appointments_user_id", "appointments", ["user_id"])

    op.create_table(
        "commission_earnings",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("partner_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("appointment_id", sa.String(length=36), nullable=True),
        sa.Column("commission_type", sa.String(length=32), nullable=False),
        sa.Column("base_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("commission_rate", sa.Numeric(6, 4), nullable=False),
        sa.Column("commission_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", _enum("commissionstatus"), nullable=False, server_default="pending"),
        sa.Column("reference", sa.String(length=64), nullable=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["partner_id"], ["partners.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("appointment_id", "commission_type", name="uq_commission_appointment_type"),
    )
    op.create_index("ix_commission_earnings_partner_id", "commission_earnings", ["partner_id"])

    op.create_table(
        "invoice_sequences",
        sa.Column("month", sa.String(length=7), nullable=False),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("month"),
    )

    op.create_table(
        "invoices",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("invoice_number", sa.String(length=32), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("subscription_id", sa.String(length=36), nullable=True),
        sa.Column("status", _enum("invoicestatus"), nullable=False, server_default="sent"),
        sa.Column("category", _enum("servicecategory"), nullable=False),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False),
        sa.Column("gst_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="INR"),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("paid_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("payment_id", sa.String(length=128), nullable=True),
        sa.Column("billing_period_start", sa.Date(), nullable=True),
        sa.Column("billing_period_end", sa.Date(), nullable=True),
        sa.Column("payment_terms", sa.String(length=64), nullable=False, server_default="7 days from invoice date"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("invoice_number"),
    )
    op.create_index("ix_invoices_user_id", "invoices", ["user_id"])

    op.create_table(
        "invoice_line_items",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("invoice_id", sa.String(length=36), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column("category", _enum("servicecategory"), nullable=False),
        sa.Column("hsn_code", sa.String(length=8), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("gst_rate", sa.Numeric(5, 4), nullable=False),
        sa.Column("gst_amount", sa.Numeric(12, 2), nullable=False),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("invoice_id", "position", name="uq_invoice_line_position"),
    )
    op.create_index("ix_invoice_line_items_invoice_id", "invoice_line_items", ["invoice_id"])


def downgrade() -> None:
    op.drop_index("ix_invoice_line_items_invoice_id", table_name="invoice_line_items")
    op.drop_table("invoice_line_items")
    op.drop_index("ix_invoices_user_id", table_name="invoices")
    op.drop_table("invoices")
    op.drop_table("invoice_sequences")
    op.drop_index("ix_commission_earnings_partner_id", table_name="commission_earnings")
    op.drop_table("commission_earnings")
    op.drop_index("ix_appointments_user_id", table_name="appointments")
    op.drop_index("ix_appointments_partner_id", table_name="appointments")
    op.drop_table("appointments")
    op.drop_table("partners")
    op.drop_index("ix_credit_transactions_subscription_id", table_name="credit_transactions")
    op.drop_table("credit_transactions")
    op.drop_table("credit_balances")
    op.drop_index("ix_feature_usage_subscription_id", table_name="feature_usage")
    op.drop_table("feature_usage")
    op.drop_table("subscriptions")
    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        sa.Enum(name=name).drop(bind, checkfirst=True)
