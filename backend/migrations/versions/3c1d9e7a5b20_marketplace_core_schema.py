"""marketplace core schema: users, catalog, orders, disputes, payouts, otp, outbox

Revision ID: 3c1d9e7a5b20
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "3c1d9e7a5b20"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(bind, table_name: str) -> bool:
    return sa.inspect(bind).has_table(table_name)


def _created_at(index: bool = False) -> sa.Column:
    return sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now(), index=index)


def upgrade():
    bind = op.get_bind()

    if not _table_exists(bind, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=120), nullable=False, server_default=""),
            sa.Column("email", sa.String(length=255), nullable=False, unique=True, index=True),
            sa.Column("phone", sa.String(length=32), nullable=True, unique=True, index=True),
            sa.Column("phone_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("phone_verified_at", sa.DateTime(), nullable=True),
            sa.Column("password_hash", sa.String(length=255), nullable=False),
            sa.Column("role", sa.String(length=32), nullable=False, server_default="buyer"),
            sa.Column("is_active_account", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("commission_rate", sa.Float(), nullable=True),
            sa.Column("store_name", sa.String(length=160), nullable=True),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if not _table_exists(bind, "user_sessions"):
        op.create_table(
            "user_sessions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, index=True),
            sa.Column("session_key", sa.String(length=64), nullable=False, unique=True, index=True),
            _created_at(),
            sa.Column("expires_at", sa.DateTime(), nullable=False, index=True),
            sa.Column("revoked_at", sa.DateTime(), nullable=True, index=True),
            sa.Column("user_agent", sa.String(length=180), nullable=True),
        )

    if not _table_exists(bind, "password_reset_tokens"):
        op.create_table(
            "password_reset_tokens",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, index=True),
            sa.Column("token_hash", sa.String(length=128), nullable=False, unique=True, index=True),
            _created_at(),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
            sa.Column("used_at", sa.DateTime(), nullable=True),
        )

    if not _table_exists(bind, "products"):
        op.create_table(
            "products",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, index=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=80), nullable=True, index=True),
            sa.Column("price", sa.Float(), nullable=False, server_default="0"),
            sa.Column("stock", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("image_url", sa.String(length=1024), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true(), index=True),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if not _table_exists(bind, "orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("buyer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, index=True),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="created", index=True),
            sa.Column("payment_status", sa.String(length=24), nullable=False, server_default="pending", index=True),
            sa.Column("payment_reference", sa.String(length=80), nullable=True, unique=True, index=True),
            sa.Column("subtotal", sa.Float(), nullable=False, server_default="0"),
            sa.Column("total", sa.Float(), nullable=False, server_default="0"),
            sa.Column("currency", sa.String(length=8), nullable=False, server_default="GHS"),
            sa.Column("shipping_address", sa.Text(), nullable=True),
            sa.Column("paid_at", sa.DateTime(), nullable=True),
            sa.Column("delivered_at", sa.DateTime(), nullable=True, index=True),
            sa.Column("disputed_at", sa.DateTime(), nullable=True),
            sa.Column("dispute_reason", sa.Text(), nullable=True),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            sa.Column("cancelled_at", sa.DateTime(), nullable=True),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if not _table_exists(bind, "order_items"):
        op.create_table(
            "order_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False, index=True),
            sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=True, index=True),
            sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, index=True),
            sa.Column("product_name", sa.String(length=200), nullable=False, server_default=""),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("unit_price", sa.Float(), nullable=False, server_default="0"),
            sa.Column("final_price", sa.Float(), nullable=False, server_default="0"),
            sa.Column("commission_rate", sa.Float(), nullable=False, server_default="0"),
            sa.Column("platform_fee", sa.Float(), nullable=False, server_default="0"),
            sa.Column("vendor_earnings", sa.Float(), nullable=False, server_default="0"),
            sa.Column("fulfillment_status", sa.String(length=32), nullable=False, server_default="pending"),
            sa.Column("fulfillment_updated_at", sa.DateTime(), nullable=True),
            _created_at(),
        )

    if not _table_exists(bind, "order_events"):
        op.create_table(
            "order_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False, index=True),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("actor_role", sa.String(length=16), nullable=False, server_default="system"),
            sa.Column("event", sa.String(length=64), nullable=False),
            sa.Column("from_status", sa.String(length=32), nullable=True),
            sa.Column("to_status", sa.String(length=32), nullable=True),
            sa.Column("note", sa.String(length=240), nullable=True),
            _created_at(),
        )

    if not _table_exists(bind, "disputes"):
        op.create_table(
            "disputes",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False, index=True),
            sa.Column("order_item_id", sa.Integer(), sa.ForeignKey("order_items.id"), nullable=True),
            sa.Column("product_id", sa.Integer(), nullable=True),
            sa.Column("buyer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, index=True),
            sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True, index=True),
            sa.Column("type", sa.String(length=24), nullable=False, server_default="other"),
            sa.Column("status", sa.String(length=24), nullable=False, server_default="open", index=True),
            sa.Column("priority", sa.String(length=16), nullable=False, server_default="medium", index=True),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("amount", sa.Float(), nullable=True),
            sa.Column("messages_json", sa.Text(), nullable=True),
            sa.Column("resolution_type", sa.String(length=24), nullable=True),
            sa.Column("resolution", sa.Text(), nullable=True),
            sa.Column("refund_amount", sa.Float(), nullable=True),
            sa.Column("refund_status", sa.String(length=24), nullable=True),
            sa.Column("refund_reference", sa.String(length=120), nullable=True),
            sa.Column("refunded_at", sa.DateTime(), nullable=True),
            sa.Column("admin_notes", sa.Text(), nullable=True),
            sa.Column("assigned_to", sa.Integer(), nullable=True),
            sa.Column("resolved_by", sa.Integer(), nullable=True),
            sa.Column("resolved_at", sa.DateTime(), nullable=True),
            sa.Column("escalated_at", sa.DateTime(), nullable=True),
            sa.Column("closed_at", sa.DateTime(), nullable=True),
            _created_at(index=True),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if not _table_exists(bind, "vendor_bank_accounts"):
        op.create_table(
            "vendor_bank_accounts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, index=True),
            sa.Column("account_type", sa.String(length=16), nullable=False, server_default="bank"),
            sa.Column("bank_code", sa.String(length=32), nullable=True),
            sa.Column("bank_name", sa.String(length=120), nullable=True),
            sa.Column("account_number", sa.String(length=32), nullable=False),
            sa.Column("account_name", sa.String(length=160), nullable=False),
            sa.Column("mobile_money_provider", sa.String(length=32), nullable=True),
            sa.Column("provider_recipient_code", sa.String(length=80), nullable=True),
            sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if not _table_exists(bind, "vendor_payouts"):
        op.create_table(
            "vendor_payouts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, index=True),
            sa.Column("bank_account_id", sa.Integer(), sa.ForeignKey("vendor_bank_accounts.id"), nullable=False, index=True),
            sa.Column("reference", sa.String(length=80), nullable=False, unique=True, index=True),
            sa.Column("amount", sa.Float(), nullable=False),
            sa.Column("currency", sa.String(length=8), nullable=False, server_default="GHS"),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="pending", index=True),
            sa.Column("transfer_code", sa.String(length=80), nullable=True),
            sa.Column("failure_reason", sa.Text(), nullable=True),
            sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("initiated_by", sa.String(length=16), nullable=False, server_default="vendor"),
            sa.Column("initiated_by_id", sa.Integer(), nullable=True),
            sa.Column("processed_at", sa.DateTime(), nullable=True),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            sa.Column("cancelled_at", sa.DateTime(), nullable=True),
            _created_at(index=True),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if not _table_exists(bind, "payout_attempts"):
        op.create_table(
            "payout_attempts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("payout_id", sa.Integer(), sa.ForeignKey("vendor_payouts.id"), nullable=False, index=True),
            sa.Column("reference", sa.String(length=80), nullable=False, unique=True, index=True),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
            sa.Column("transfer_code", sa.String(length=80), nullable=True),
            sa.Column("failure_reason", sa.Text(), nullable=True),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if not _table_exists(bind, "otp_challenges"):
        op.create_table(
            "otp_challenges",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, index=True),
            sa.Column("purpose", sa.String(length=32), nullable=False, server_default="payout"),
            sa.Column("phone", sa.String(length=32), nullable=True),
            sa.Column("otp_hash", sa.String(length=128), nullable=True),
            sa.Column("expires_at", sa.DateTime(), nullable=True),
            sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_sent_at", sa.DateTime(), nullable=True),
            sa.Column("consumed_at", sa.DateTime(), nullable=True),
            _created_at(),
            sa.UniqueConstraint("user_id", "purpose", name="uq_otp_challenges_user_purpose"),
        )

    if not _table_exists(bind, "payout_auth_tokens"):
        op.create_table(
            "payout_auth_tokens",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, index=True),
            sa.Column("token_hash", sa.String(length=128), nullable=False, unique=True, index=True),
            _created_at(),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
            sa.Column("used_at", sa.DateTime(), nullable=True),
        )

    if not _table_exists(bind, "notifications"):
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, index=True),
            sa.Column("channel", sa.String(length=32), nullable=False, server_default="in_app"),
            sa.Column("kind", sa.String(length=48), nullable=False, server_default="system"),
            sa.Column("title", sa.String(length=160), nullable=True),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("status", sa.String(length=24), nullable=False, server_default="queued", index=True),
            sa.Column("provider", sa.String(length=64), nullable=True),
            sa.Column("provider_ref", sa.String(length=120), nullable=True),
            sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_error", sa.String(length=240), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("read_at", sa.DateTime(), nullable=True),
            _created_at(index=True),
            sa.Column("sent_at", sa.DateTime(), nullable=True),
            sa.Column("meta", sa.Text(), nullable=True),
        )

    if not _table_exists(bind, "audit_logs"):
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            _created_at(index=True),
            sa.Column("actor_user_id", sa.Integer(), nullable=True, index=True),
            sa.Column("actor_role", sa.String(length=16), nullable=False, server_default="system"),
            sa.Column("action", sa.String(length=80), nullable=False, index=True),
            sa.Column("target_type", sa.String(length=40), nullable=True, index=True),
            sa.Column("target_id", sa.String(length=80), nullable=True, index=True),
            sa.Column("request_id", sa.String(length=80), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
        )

    if not _table_exists(bind, "webhook_events"):
        op.create_table(
            "webhook_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("provider", sa.String(length=32), nullable=False, server_default="paystack"),
            sa.Column("event_id", sa.String(length=128), nullable=False, unique=True),
            sa.Column("event_type", sa.String(length=64), nullable=True),
            sa.Column("reference", sa.String(length=128), nullable=True, index=True),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="received"),
            sa.Column("processed_at", sa.DateTime(), nullable=True),
            sa.Column("request_id", sa.String(length=64), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
            _created_at(),
        )


def downgrade():
    bind = op.get_bind()
    for table_name in (
        "webhook_events",
        "audit_logs",
        "notifications",
        "payout_auth_tokens",
        "otp_challenges",
        "payout_attempts",
        "vendor_payouts",
        "vendor_bank_accounts",
        "disputes",
        "order_events",
        "order_items",
        "orders",
        "products",
        "password_reset_tokens",
        "user_sessions",
        "users",
    ):
        if _table_exists(bind, table_name):
            op.drop_table(table_name)
