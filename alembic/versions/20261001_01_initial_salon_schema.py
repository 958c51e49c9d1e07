"""Initial salon schema: clients, catalog, sales, loyalty ledger and recurring series.

Revision ID: 20261001_01
Revises: 
Create Date: 2026-10-01
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261001_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


uuid_type = sa.dialects.postgresql.UUID(as_uuid=True)

loyalty_tier = sa.Enum("SILVER", "GOLD", "PLATINUM", name="loyalty_tier")
loyalty_transaction_type = sa.Enum(
    "EARNED", "REDEEMED", "EXPIRED", "BONUS", "ADJUSTMENT", name="loyalty_transaction_type"
)
sale_status = sa.Enum("OPEN", "COMPLETED", "CANCELLED", name="sale_status")
sale_discount_type = sa.Enum("PERCENTAGE", "FIXED", name="sale_discount_type")
invoice_status = sa.Enum("PAID", "PARTIALLY_REFUNDED", "REFUNDED", name="invoice_status")
payment_method = sa.Enum("CASH", "CARD", "OTHER", name="payment_method")
appointment_status = sa.Enum(
    "SCHEDULED", "CONFIRMED", "COMPLETED", "CANCELLED", "NO_SHOW", name="appointment_status"
)
recurrence_pattern = sa.Enum(
    "DAILY",
    "WEEKLY",
    "BIWEEKLY",
    "MONTHLY",
    "CUSTOM",
    "SPECIFIC_DAYS",
    "NTH_WEEKDAY",
    name="recurrence_pattern",
)
recurrence_end_type = sa.Enum("NEVER", "AFTER_COUNT", "BY_DATE", name="recurrence_end_type")
series_audit_action = sa.Enum(
    "CREATED",
    "CANCELLED",
    "PAUSED",
    "RESUMED",
    "EXTENDED",
    "EXCEPTION_ADDED",
    "EXCEPTION_REMOVED",
    "OCCURRENCE_DETACHED",
    "CANCELLED_FROM_DATE",
    "UPDATED",
    "APPOINTMENTS_UPDATED",
    "CLONED",
    name="series_audit_action",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "salon_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("salon_name", sa.String(), nullable=False, server_default="Salon"),
        sa.Column("timezone", sa.String(), nullable=False, server_default="UTC"),
        sa.Column("business_hours_start", sa.String(length=5), nullable=False, server_default="09:00"),
        sa.Column("business_hours_end", sa.String(length=5), nullable=False, server_default="19:00"),
        sa.Column("tax_rate", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("points_per_currency_unit", sa.Numeric(8, 2), nullable=False, server_default="1"),
        sa.Column("redemption_rate", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("gold_threshold", sa.Integer(), nullable=False, server_default="500"),
        sa.Column("platinum_threshold", sa.Integer(), nullable=False, server_default="1000"),
        sa.Column("silver_multiplier", sa.Numeric(4, 2), nullable=False, server_default="1.0"),
        sa.Column("gold_multiplier", sa.Numeric(4, 2), nullable=False, server_default="1.5"),
        sa.Column("platinum_multiplier", sa.Numeric(4, 2), nullable=False, server_default="2.0"),
        sa.Column("points_expiry_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("points_expiry_months", sa.Integer(), nullable=False, server_default="12"),
        sa.Column("birthday_bonus_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("birthday_bonus_points", sa.Integer(), nullable=False, server_default="50"),
        *_timestamps(),
    )

    op.create_table(
        "clients",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("first_name", sa.String(), nullable=False),
        sa.Column("last_name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("birthday", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_clients_email", "clients", ["email"])

    op.create_table(
        "staff_members",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("first_name", sa.String(), nullable=False),
        sa.Column("last_name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True, unique=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )

    op.create_table(
        "salon_services",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("loyalty_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )

    op.create_table(
        "products",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("sku", sa.String(), nullable=True, unique=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("loyalty_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stock_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )

    op.create_table(
        "sales",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("client_id", uuid_type, sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("staff_id", uuid_type, sa.ForeignKey("staff_members.id"), nullable=True),
        sa.Column("status", sale_status, nullable=False, server_default="OPEN"),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("discount_type", sale_discount_type, nullable=True),
        sa.Column("discount_value", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("final_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_sales_client_id", "sales", ["client_id"])

    op.create_table(
        "sale_items",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("sale_id", uuid_type, nullable=False),
        sa.Column("service_id", uuid_type, sa.ForeignKey("salon_services.id"), nullable=True),
        sa.Column("product_id", uuid_type, sa.ForeignKey("products.id"), nullable=True),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("unit_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("line_total", sa.Numeric(12, 2), nullable=False),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "(service_id IS NOT NULL) OR (product_id IS NOT NULL)",
            name="ck_sale_items_has_catalog_reference",
        ),
    )
    op.create_index("ix_sale_items_sale_id", "sale_items", ["sale_id"])

    op.create_table(
        "invoices",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("invoice_number", sa.String(), nullable=False),
        sa.Column("sale_id", uuid_type, sa.ForeignKey("sales.id"), nullable=False, unique=True),
        sa.Column("client_id", uuid_type, sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("status", invoice_status, nullable=False, server_default="PAID"),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False),
        sa.Column("points_redeemed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("points_value", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("amount_after_points", sa.Numeric(12, 2), nullable=False),
        sa.Column("tax_rate", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("tax_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total", sa.Numeric(12, 2), nullable=False),
        sa.Column("points_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("bonus_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("refunded_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_invoices_invoice_number", "invoices", ["invoice_number"], unique=True)
    op.create_index("ix_invoices_client_id", "invoices", ["client_id"])

    op.create_table(
        "payments",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("invoice_id", uuid_type, nullable=False),
        sa.Column("method", payment_method, nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("reference", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_payments_invoice_id", "payments", ["invoice_id"])

    op.create_table(
        "refunds",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("invoice_id", uuid_type, nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("points_reversed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_refunds_invoice_id", "refunds", ["invoice_id"])

    op.create_table(
        "loyalty_accounts",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("client_id", uuid_type, sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tier", loyalty_tier, nullable=False, server_default="SILVER"),
        *_timestamps(),
        sa.UniqueConstraint("client_id", name="uq_loyalty_accounts_client_id"),
        sa.CheckConstraint("balance >= 0", name="ck_loyalty_accounts_balance_non_negative"),
    )

    op.create_table(
        "loyalty_transactions",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("account_id", uuid_type, sa.ForeignKey("loyalty_accounts.id"), nullable=False),
        sa.Column("client_id", uuid_type, sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("type", loyalty_transaction_type, nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sale_id", uuid_type, sa.ForeignKey("sales.id"), nullable=True),
        sa.Column("invoice_id", uuid_type, sa.ForeignKey("invoices.id"), nullable=True),
        sa.Column("refund_id", uuid_type, sa.ForeignKey("refunds.id"), nullable=True),
        sa.Column("bonus_key", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("account_id", "bonus_key", name="uq_loyalty_transactions_bonus_key"),
    )
    op.create_index("ix_loyalty_transactions_account_id", "loyalty_transactions", ["account_id"])
    op.create_index("ix_loyalty_transactions_client_id", "loyalty_transactions", ["client_id"])
    op.create_index("ix_loyalty_transactions_expires_at", "loyalty_transactions", ["expires_at"])
    op.create_index("ix_loyalty_transactions_sale_id", "loyalty_transactions", ["sale_id"])
    op.create_index("ix_loyalty_transactions_invoice_id", "loyalty_transactions", ["invoice_id"])

    op.create_table(
        "recurring_series",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("client_id", uuid_type, sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("staff_id", uuid_type, sa.ForeignKey("staff_members.id"), nullable=False),
        sa.Column("service_id", uuid_type, sa.ForeignKey("salon_services.id"), nullable=False),
        sa.Column("pattern", recurrence_pattern, nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("time_of_day", sa.String(length=5), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=True),
        sa.Column("custom_weeks", sa.Integer(), nullable=True),
        sa.Column("specific_days", sa.JSON(), nullable=False),
        sa.Column("nth_week", sa.Integer(), nullable=True),
        sa.Column("end_type", recurrence_end_type, nullable=False),
        sa.Column("end_after_count", sa.Integer(), nullable=True),
        sa.Column("end_by_date", sa.Date(), nullable=True),
        sa.Column("buffer_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("occurrences_created", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_paused", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("paused_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pause_reason", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_recurring_series_client_id", "recurring_series", ["client_id"])

    op.create_table(
        "recurring_series_exceptions",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("series_id", uuid_type, nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["series_id"], ["recurring_series.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("series_id", "date", name="uq_recurring_series_exceptions_date"),
    )

    op.create_table(
        "recurring_series_audit_log",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("series_id", uuid_type, nullable=False),
        sa.Column("action", series_audit_action, nullable=False),
        sa.Column("performed_by", sa.String(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["series_id"], ["recurring_series.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_recurring_series_audit_log_series_id", "recurring_series_audit_log", ["series_id"])

    op.create_table(
        "appointments",
        sa.Column("id", uuid_type, primary_key=True),
        sa.Column("client_id", uuid_type, sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("staff_id", uuid_type, sa.ForeignKey("staff_members.id"), nullable=False),
        sa.Column("service_id", uuid_type, sa.ForeignKey("salon_services.id"), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", appointment_status, nullable=False, server_default="SCHEDULED"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("series_id", uuid_type, nullable=True),
        sa.Column("is_detached_from_series", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.ForeignKeyConstraint(["series_id"], ["recurring_series.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_appointments_client_id", "appointments", ["client_id"])
    op.create_index("ix_appointments_series_id", "appointments", ["series_id"])
    op.create_index("ix_appointments_staff_start", "appointments", ["staff_id", "start_time"])


def downgrade() -> None:
    op.drop_index("ix_appointments_staff_start", table_name="appointments")
    op.drop_index("ix_appointments_series_id", table_name="appointments")
    op.drop_index("ix_appointments_client_id", table_name="appointments")
    op.drop_table("appointments")
    op.drop_index("ix_recurring_series_audit_log_series_id", table_name="recurring_series_audit_log")
    op.drop_table("recurring_series_audit_log")
    op.drop_table("recurring_series_exceptions")
    op.drop_index("ix_recurring_series_client_id", table_name="recurring_series")
    op.drop_table("recurring_series")
    for index in ("invoice_id", "sale_id", "expires_at", "client_id", "account_id"):
        op.drop_index(f"ix_loyalty_transactions_{index}", table_name="loyalty_transactions")
    op.drop_table("loyalty_transactions")
    op.drop_table("loyalty_accounts")
    op.drop_index("ix_refunds_invoice_id", table_name="refunds")
    op.drop_table("refunds")
    op.drop_index("ix_payments_invoice_id", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_invoices_client_id", table_name="invoices")
    op.drop_index("ix_invoices_invoice_number", table_name="invoices")
    op.drop_table("invoices")
    op.drop_index("ix_sale_items_sale_id", table_name="sale_items")
    op.drop_table("sale_items")
    op.drop_index("ix_sales_client_id", table_name="sales")
    op.drop_table("sales")
    op.drop_table("products")
    op.drop_table("salon_services")
    op.drop_table("staff_members")
    op.drop_table("clients")
    op.drop_table("salon_settings")

    bind = op.get_bind()
    for enum_type in (
        series_audit_action,
        recurrence_end_type,
        recurrence_pattern,
        appointment_status,
        payment_method,
        invoice_status,
        sale_discount_type,
        sale_status,
        loyalty_transaction_type,
        loyalty_tier,
    ):
        enum_type.drop(bind, checkfirst=True)
