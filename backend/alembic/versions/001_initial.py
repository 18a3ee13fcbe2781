"""Initial referral program schema

Customers and bookings (shared with the booking system), referrals, the
per-customer credit ledger, program settings, back-office users and the
admin audit trail.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="admin"),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "customers",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(40), nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("referral_code", sa.String(32), nullable=True),
        sa.Column("total_bookings", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("total_bookings >= 0", name="ck_customer_total_bookings_positive"),
    )
    op.create_index("ix_customers_email", "customers", ["email"])
    op.create_index("ix_customers_referral_code", "customers", ["referral_code"], unique=True)

    op.create_table(
        "bookings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "customer_id",
            sa.Uuid(),
            sa.ForeignKey("customers.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("service", sa.String(100), nullable=False, server_default="standard"),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(40), nullable=False),
        sa.Column("address", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("referral_code", sa.String(32), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("actual_price", sa.Integer(), nullable=True),
        sa.Column("completed_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_bookings_customer_id", "bookings", ["customer_id"])
    op.create_index("ix_bookings_status", "bookings", ["status"])
    op.create_index("ix_booking_status_referral_code", "bookings", ["status", "referral_code"])
    op.create_index("ix_booking_referral_code_created", "bookings", ["referral_code", "created_at"])

    op.create_table(
        "referrals",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "referrer_id",
            sa.Uuid(),
            sa.ForeignKey("customers.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "referred_booking_id",
            sa.Uuid(),
            sa.ForeignKey("bookings.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "referred_customer_id",
            sa.Uuid(),
            sa.ForeignKey("customers.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("tier", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("credit_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("credited_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("referred_booking_id", name="uq_referrals_referred_booking_id"),
        sa.CheckConstraint("tier >= 1 AND tier <= 3", name="ck_referral_tier_range"),
        sa.CheckConstraint("credit_amount >= 0", name="ck_referral_credit_amount_positive"),
        sa.CheckConstraint(
            "status IN ('pending', 'completed', 'credited')", name="ck_referral_status_values"
        ),
    )
    op.create_index("ix_referrals_referrer_id", "referrals", ["referrer_id"])
    op.create_index("ix_referrals_status", "referrals", ["status"])
    op.create_index("ix_referral_referrer_status", "referrals", ["referrer_id", "status"])

    op.create_table(
        "referral_credits",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "customer_id",
            sa.Uuid(),
            sa.ForeignKey("customers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("total_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("available_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("customer_id", name="uq_referral_credits_customer_id"),
        sa.CheckConstraint("total_earned >= 0", name="ck_referral_credit_earned_positive"),
        sa.CheckConstraint("total_used >= 0", name="ck_referral_credit_used_positive"),
        sa.CheckConstraint("available_balance >= 0", name="ck_referral_credit_balance_positive"),
        sa.CheckConstraint("total_used <= total_earned", name="ck_referral_credit_used_le_earned"),
        sa.CheckConstraint(
            "available_balance = total_earned - total_used",
            name="ck_referral_credit_balance_consistent",
        ),
    )

    op.create_table(
        "referral_settings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("tier1_amount", sa.Integer(), nullable=False, server_default="1000"),
        sa.Column("tier2_amount", sa.Integer(), nullable=False, server_default="1500"),
        sa.Column("tier3_amount", sa.Integer(), nullable=False, server_default="2000"),
        sa.Column("minimum_service_price", sa.Integer(), nullable=False, server_default="5000"),
        sa.Column("fraud_detection_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("block_same_address", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("block_same_phone_number", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("block_same_ip_address", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("max_referrals_per_day", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("max_referrals_per_week", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("welcome_email_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "credit_earned_email_enabled", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "tier1_amount >= 0 AND tier2_amount >= 0 AND tier3_amount >= 0",
            name="ck_referral_settings_amounts_positive",
        ),
        sa.CheckConstraint(
            "max_referrals_per_day >= 0 AND max_referrals_per_week >= 0",
            name="ck_referral_settings_limits_positive",
        ),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("action", sa.String(50), nullable=False, index=True),
        sa.Column(
            "admin_user_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "target_customer_id",
            sa.Uuid(),
            sa.ForeignKey("customers.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("referral_settings")
    op.drop_table("referral_credits")
    op.drop_index("ix_referral_referrer_status", table_name="referrals")
    op.drop_index("ix_referrals_status", table_name="referrals")
    op.drop_index("ix_referrals_referrer_id", table_name="referrals")
    op.drop_table("referrals")
    op.drop_index("ix_booking_referral_code_created", table_name="bookings")
    op.drop_index("ix_booking_status_referral_code", table_name="bookings")
    op.drop_index("ix_bookings_status", table_name="bookings")
    op.drop_index("ix_bookings_customer_id", table_name="bookings")
    op.drop_table("bookings")
    op.drop_index("ix_customers_referral_code", table_name="customers")
    op.drop_index("ix_customers_email", table_name="customers")
    op.drop_table("customers")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
