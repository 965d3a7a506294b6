"""checkout core initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_initial'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TS = sa.DateTime(timezone=True)
MONEY = sa.Numeric(12, 2)
PCT = sa.Numeric(5, 2)


def upgrade():
    op.create_table(
        "product",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False),
    )
    op.create_table(
        "productvariant",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("product_id", sa.Integer, sa.ForeignKey("product.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("sku", sa.String(128), nullable=True, unique=True),
        sa.Column("price", MONEY, nullable=False),
        sa.Column("stock", sa.Integer, nullable=False),
        sa.Column("discount_percent", PCT, nullable=False),
    )
    op.create_table(
        "paymentmethod",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("discount_percent", PCT, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False),
    )
    op.create_table(
        "stockreservation",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("reservation_group_id", sa.String(96), nullable=False, index=True),
        sa.Column("variant_id", sa.Integer, sa.ForeignKey("productvariant.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False, index=True),
        sa.Column("status", sa.String(16), nullable=False, index=True),
        sa.Column("reason", sa.String(32), nullable=False),
        sa.Column("order_key", sa.String(96), nullable=True, index=True),
        sa.Column("expires_at", TS, nullable=False, index=True),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("completed_at", TS, nullable=True),
        sa.Column("released_at", TS, nullable=True),
    )
    op.create_index("ix_reservation_variant_status_expiry", "stockreservation", ["variant_id", "status", "expires_at"])
    op.create_table(
        "checkoutsession",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("token", sa.String(96), nullable=False, unique=True, index=True),
        sa.Column("user_id", sa.String(128), nullable=False, index=True),
        sa.Column("company_id", sa.String(64), nullable=True),
        sa.Column("payment_method_id", sa.Integer, sa.ForeignKey("paymentmethod.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("cart_snapshot", sa.JSON, nullable=False),
        sa.Column("shipping_address", sa.JSON, nullable=False),
        sa.Column("subtotal", MONEY, nullable=False),
        sa.Column("item_discounts", MONEY, nullable=False),
        sa.Column("payment_discount", MONEY, nullable=False),
        sa.Column("discounts", MONEY, nullable=False),
        sa.Column("shipping_cost", MONEY, nullable=False),
        sa.Column("shipping_method", sa.String(32), nullable=True),
        sa.Column("free_shipping", sa.Boolean, nullable=False),
        sa.Column("total", MONEY, nullable=False),
        sa.Column("currency", sa.String(8), nullable=False),
        sa.Column("expires_at", TS, nullable=False, index=True),
        sa.Column("is_processed", sa.Boolean, nullable=False, server_default=sa.false(), index=True),
        sa.Column("payment_id", sa.String(128), nullable=True),
        sa.Column("processed_at", TS, nullable=True),
        sa.Column("cancelled_at", TS, nullable=True),
        sa.Column("expired_at", TS, nullable=True),
        sa.Column("created_at", TS, nullable=False, index=True),
        sa.Column("updated_at", TS, nullable=False),
    )
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("public_id", sa.Uuid, nullable=False, unique=True, index=True),
        sa.Column("user_id", sa.String(128), nullable=False, index=True),
        sa.Column("company_id", sa.String(64), nullable=True),
        sa.Column("payment_method_id", sa.Integer, sa.ForeignKey("paymentmethod.id", ondelete="SET NULL"), nullable=True),
        sa.Column("checkout_token", sa.String(96), nullable=False, unique=True),
        sa.Column("transaction_id", sa.String(128), nullable=True, unique=True),
        sa.Column("currency", sa.String(8), nullable=False),
        sa.Column("subtotal", MONEY, nullable=False),
        sa.Column("discounts", MONEY, nullable=False),
        sa.Column("shipping_cost", MONEY, nullable=False),
        sa.Column("shipping_method", sa.String(32), nullable=True),
        sa.Column("free_shipping", sa.Boolean, nullable=False),
        sa.Column("total", MONEY, nullable=False),
        sa.Column("items_in_order", sa.Integer, nullable=False),
        sa.Column("is_paid", sa.Boolean, nullable=False),
        sa.Column("paid_at", TS, nullable=True),
        sa.Column("payment_status", sa.String(16), nullable=False, index=True),
        sa.Column("order_status", sa.String(24), nullable=False, index=True),
        sa.Column("shipping_address", sa.JSON, nullable=False),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=False),
        sa.Column("delivered_at", TS, nullable=True),
    )
    op.create_table(
        "orderitem",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("order_id", sa.Integer, sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("product_id", sa.Integer, sa.ForeignKey("product.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("variant_id", sa.Integer, sa.ForeignKey("productvariant.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("unit_price", MONEY, nullable=False),
        sa.Column("discount_amount", MONEY, nullable=False),
        sa.Column("line_total", MONEY, nullable=False),
        sa.UniqueConstraint("order_id", "variant_id", name="uq_order_variant"),
    )
    op.create_table(
        "orderdiscount",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("order_id", sa.Integer, sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("order_item_id", sa.Integer, sa.ForeignKey("orderitem.id", ondelete="CASCADE"), nullable=True),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("percent", PCT, nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("description", sa.Text, nullable=True),
    )
    op.create_table(
        "paymentwebhookevent",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("provider", sa.String(64), nullable=False, index=True),
        sa.Column("provider_event_id", sa.String(128), nullable=False),
        sa.Column("payment_id", sa.String(128), nullable=True, index=True),
        sa.Column("payload", sa.JSON, nullable=True),
        sa.Column("status", sa.String(16), nullable=False, index=True),
        sa.Column("attempts", sa.Integer, nullable=False),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("processed_at", TS, nullable=True, index=True),
        sa.Column("created_at", TS, nullable=False),
        sa.UniqueConstraint("provider", "provider_event_id", name="uq_webhook_provider_event"),
    )


def downgrade():
    for table in ("paymentwebhookevent", "orderdiscount", "orderitem", "orders", "checkoutsession",
                  "stockreservation", "paymentmethod", "productvariant", "product"):
        op.drop_table(table)
