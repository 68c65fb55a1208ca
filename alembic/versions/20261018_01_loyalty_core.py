"""Create loyalty ledger, redemption and daily offer tables.

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261018_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


UUID = sa.dialects.postgresql.UUID(as_uuid=True)

subscription_tier = sa.Enum("free", "pro", "premium", name="seller_subscription_tier")
subscription_status = sa.Enum("active", "inactive", "cancelled", "expired", name="seller_subscription_status")
hold_status = sa.Enum("reserved", "released", name="point_hold_status")
redemption_status = sa.Enum("pending", "redeemed", "cancelled", "expired", name="redemption_status")
transaction_type = sa.Enum("earn", "redeem", name="point_transaction_type")
transaction_source = sa.Enum("user_qr", "payment", "redemption", name="point_transaction_source")
claim_status = sa.Enum("ASSIGNED", "CLAIMED", "REDEEMED", "EXPIRED", name="offer_claim_status")
code_status = sa.Enum("PENDING", "REDEEMED", "EXPIRED", name="offer_code_status")


def _timestamp(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    op.create_table(
        "seller_profiles",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("shop_name", sa.String(), nullable=False),
        sa.Column("owner_name", sa.String(), nullable=True),
        sa.Column("subscription_tier", subscription_tier, nullable=False, server_default="free"),
        sa.Column("subscription_status", subscription_status, nullable=False, server_default="active"),
        sa.Column("subscription_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("monthly_scan_limit", sa.Integer(), nullable=True),
        sa.Column("reward_config", sa.JSON(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("geofence_radius_meters", sa.Float(), nullable=True),
        sa.Column("total_scans", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_points_distributed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_points_redeemed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_redemptions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("active_customers", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "seller_monthly_scans",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("seller_id", sa.String(length=64), nullable=False),
        sa.Column("period", sa.String(length=16), nullable=False),
        sa.Column("scan_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("points_distributed", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("seller_id", "period", name="uq_seller_monthly_scans_seller_period"),
    )
    op.create_index("ix_seller_monthly_scans_seller_id", "seller_monthly_scans", ["seller_id"])

    op.create_table(
        "seller_daily_offers",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("seller_id", sa.String(length=64), nullable=False),
        sa.Column("offer_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("min_spend", sa.Numeric(12, 2), nullable=True),
        sa.Column("terms", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
    )
    op.create_index("ix_seller_daily_offers_seller_id", "seller_daily_offers", ["seller_id"])

    op.create_table(
        "customer_profiles",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("phone_number", sa.String(), nullable=True),
        sa.Column("push_token", sa.String(), nullable=True),
        sa.Column("total_points_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_scans", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "customer_earn_tokens",
        sa.Column("token", sa.String(length=64), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False, unique=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        _timestamp("created_at"),
    )

    op.create_table(
        "point_balances",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("seller_id", sa.String(length=64), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("points_on_hold", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        _timestamp("created_at"),
        _timestamp("last_updated"),
        sa.UniqueConstraint("user_id", "seller_id", name="uq_point_balances_user_seller"),
        sa.CheckConstraint("points >= 0", name="ck_point_balances_points_non_negative"),
    )
    op.create_index("ix_point_balances_user_id", "point_balances", ["user_id"])
    op.create_index("ix_point_balances_seller_id", "point_balances", ["seller_id"])

    op.create_table(
        "point_holds",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("seller_id", sa.String(length=64), nullable=False),
        sa.Column("redemption_id", sa.String(length=64), nullable=False, unique=True),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("status", hold_status, nullable=False, server_default="reserved"),
        sa.Column("release_reason", sa.String(length=32), nullable=True),
        _timestamp("created_at"),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_point_holds_pair_status", "point_holds", ["user_id", "seller_id", "status"])

    op.create_table(
        "redemptions",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("seller_id", sa.String(length=64), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("offer_id", sa.String(length=64), nullable=True),
        sa.Column("offer_name", sa.String(), nullable=True),
        sa.Column("status", redemption_status, nullable=False, server_default="pending"),
        sa.Column("qr_data", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_redemptions_user_id", "redemptions", ["user_id"])
    op.create_index("ix_redemptions_seller_id", "redemptions", ["seller_id"])
    op.create_index("ix_redemptions_status_expires_at", "redemptions", ["status", "expires_at"])

    op.create_table(
        "point_transactions",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("seller_id", sa.String(length=64), nullable=False),
        sa.Column("entry_type", transaction_type, nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("base_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("bonus_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("source", transaction_source, nullable=False),
        sa.Column("redemption_id", sa.String(length=64), nullable=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        _timestamp("occurred_at"),
    )
    op.create_index("ix_point_transactions_seller_id", "point_transactions", ["seller_id"])
    op.create_index("ix_point_transactions_user_occurred", "point_transactions", ["user_id", "occurred_at"])

    op.create_table(
        "offer_claims",
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("seller_id", sa.String(length=64), nullable=False),
        sa.Column("claim_date", sa.Date(), nullable=False),
        sa.Column("offer_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("min_spend", sa.Numeric(12, 2), nullable=True),
        sa.Column("terms", sa.Text(), nullable=True),
        sa.Column("status", claim_status, nullable=False, server_default="ASSIGNED"),
        sa.Column("redeem_code", sa.String(length=32), nullable=True),
        _timestamp("created_at"),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("user_id", "seller_id", "claim_date", name="pk_offer_claims"),
    )
    op.create_index("ix_offer_claims_date_status", "offer_claims", ["claim_date", "status"])

    op.create_table(
        "offer_redemption_codes",
        sa.Column("code", sa.String(length=32), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("seller_id", sa.String(length=64), nullable=False),
        sa.Column("offer_id", sa.String(length=64), nullable=False),
        sa.Column("claim_date", sa.Date(), nullable=False),
        sa.Column("status", code_status, nullable=False, server_default="PENDING"),
        _timestamp("created_at"),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_offer_redemption_codes_claim",
        "offer_redemption_codes",
        ["user_id", "seller_id", "claim_date"],
    )


def downgrade() -> None:
    op.drop_index("ix_offer_redemption_codes_claim", table_name="offer_redemption_codes")
    op.drop_table("offer_redemption_codes")
    op.drop_index("ix_offer_claims_date_status", table_name="offer_claims")
    op.drop_table("offer_claims")
    op.drop_index("ix_point_transactions_user_occurred", table_name="point_transactions")
    op.drop_index("ix_point_transactions_seller_id", table_name="point_transactions")
    op.drop_table("point_transactions")
    op.drop_index("ix_redemptions_status_expires_at", table_name="redemptions")
    op.drop_index("ix_redemptions_seller_id", table_name="redemptions")
    op.drop_index("ix_redemptions_user_id", table_name="redemptions")
    op.drop_table("redemptions")
    op.drop_index("ix_point_holds_pair_status", table_name="point_holds")
    op.drop_table("point_holds")
    op.drop_index("ix_point_balances_seller_id", table_name="point_balances")
    op.drop_index("ix_point_balances_user_id", table_name="point_balances")
    op.drop_table("point_balances")
    op.drop_table("customer_earn_tokens")
    op.drop_table("customer_profiles")
    op.drop_index("ix_seller_daily_offers_seller_id", table_name="seller_daily_offers")
    op.drop_table("seller_daily_offers")
    op.drop_index("ix_seller_monthly_scans_seller_id", table_name="seller_monthly_scans")
    op.drop_table("seller_monthly_scans")
    op.drop_table("seller_profiles")

    bind = op.get_bind()
    for enum in (
        code_status,
        claim_status,
        transaction_source,
        transaction_type,
        redemption_status,
        hold_status,
        subscription_status,
        subscription_tier,
    ):
        enum.drop(bind, checkfirst=True)
