import enum
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, Numeric, Text, UniqueConstraint, Uuid, false
from sqlmodel import Column, SQLModel, Field, String
from uuid6 import uuid7
from checkout_core.common.utils import now
from checkout_core.schema.types import UTCDateTime


class ReservationStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    RELEASED = "RELEASED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


TERMINAL_RESERVATION_STATUSES = (
    ReservationStatus.COMPLETED.value,
    ReservationStatus.RELEASED.value,
    ReservationStatus.EXPIRED.value,
    ReservationStatus.CANCELLED.value,
)


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class OrderStatus(str, enum.Enum):
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class DiscountType(str, enum.Enum):
    VARIANT = "variant"
    PAYMENT = "payment"


class WebhookEventStatus(str, enum.Enum):
    RECEIVED = "received"
    PROCESSED = "processed"
    FAILED = "failed"
    IGNORED = "ignored"


# Catalog (owned by the storefront; the engine only decrements stock)
class Product(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str = Field(sa_column=Column(String(255), nullable=False))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))


class ProductVariant(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(sa_column=Column(Integer, ForeignKey("product.id", ondelete="CASCADE"), nullable=False, index=True))
    sku: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True, unique=True))
    price: Decimal = Field(sa_column=Column(Numeric(12, 2), nullable=False))
    stock: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    discount_percent: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(5, 2), nullable=False, default=Decimal("0")))


class PaymentMethod(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(sa_column=Column(String(64), nullable=False))
    discount_percent: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(5, 2), nullable=False, default=Decimal("0")))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))

# --------------------------------------------------------------------------------------------


class StockReservation(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    reservation_group_id: str = Field(sa_column=Column(String(96), nullable=False, index=True))
    variant_id: int = Field(sa_column=Column(Integer, ForeignKey("productvariant.id", ondelete="CASCADE"), nullable=False, index=True))
    quantity: int = Field(sa_column=Column(Integer, nullable=False))
    user_id: str = Field(sa_column=Column(String(128), nullable=False, index=True))
    status: str = Field(default=ReservationStatus.ACTIVE.value, sa_column=Column(String(16), nullable=False, index=True))
    reason: str = Field(default="checkout", sa_column=Column(String(32), nullable=False))
    order_key: Optional[str] = Field(default=None, sa_column=Column(String(96), nullable=True, index=True))
    expires_at: datetime = Field(sa_column=Column(UTCDateTime(), nullable=False, index=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime(), nullable=False, default=now))
    completed_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))
    released_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))

    __table_args__ = (
        Index("ix_reservation_variant_status_expiry", "variant_id", "status", "expires_at"),
    )


class CheckoutSession(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    token: str = Field(sa_column=Column(String(96), nullable=False, unique=True, index=True))
    user_id: str = Field(sa_column=Column(String(128), nullable=False, index=True))
    company_id: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    payment_method_id: int = Field(sa_column=Column(Integer, ForeignKey("paymentmethod.id", ondelete="RESTRICT"), nullable=False))
    cart_snapshot: List[Dict[str, Any]] = Field(sa_column=Column(JSON, nullable=False))
    shipping_address: Dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))
    subtotal: Decimal = Field(sa_column=Column(Numeric(12, 2), nullable=False))
    item_discounts: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(12, 2), nullable=False))
    payment_discount: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(12, 2), nullable=False))
    discounts: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(12, 2), nullable=False))
    shipping_cost: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(12, 2), nullable=False))
    shipping_method: Optional[str] = Field(default=None, sa_column=Column(String(32), nullable=True))
    free_shipping: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    total: Decimal = Field(sa_column=Column(Numeric(12, 2), nullable=False))
    currency: str = Field(default="ARS", sa_column=Column(String(8), nullable=False))
    expires_at: datetime = Field(sa_column=Column(UTCDateTime(), nullable=False, index=True))
    is_processed: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False, server_default=false(), index=True))
    payment_id: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    processed_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))
    cancelled_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))
    expired_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime(), nullable=False, default=now, index=True))
    updated_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime(), nullable=False, default=now, onupdate=now))


class Orders(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: UUID = Field(default_factory=uuid7, sa_column=Column(Uuid(), unique=True, index=True, nullable=False))
    user_id: str = Field(sa_column=Column(String(128), nullable=False, index=True))
    company_id: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    payment_method_id: Optional[int] = Field(default=None, sa_column=Column(Integer, ForeignKey("paymentmethod.id", ondelete="SET NULL"), nullable=True))
    checkout_token: str = Field(sa_column=Column(String(96), nullable=False, unique=True))
    transaction_id: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True, unique=True))
    currency: str = Field(default="ARS", sa_column=Column(String(8), nullable=False))
    subtotal: Decimal = Field(sa_column=Column(Numeric(12, 2), nullable=False))
    discounts: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(12, 2), nullable=False))
    shipping_cost: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(12, 2), nullable=False))
    shipping_method: Optional[str] = Field(default=None, sa_column=Column(String(32), nullable=True))
    free_shipping: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    total: Decimal = Field(sa_column=Column(Numeric(12, 2), nullable=False))
    items_in_order: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    is_paid: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    paid_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))
    payment_status: str = Field(default=PaymentStatus.PENDING.value, sa_column=Column(String(16), nullable=False, index=True))
    order_status: str = Field(default=OrderStatus.PENDING_PAYMENT.value, sa_column=Column(String(24), nullable=False, index=True))
    shipping_address: Dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime(), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime(), nullable=False, default=now, onupdate=now))
    delivered_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))


# Order --> OrderItems (1:many), frozen at session time
class OrderItem(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(sa_column=Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True))
    product_id: int = Field(sa_column=Column(Integer, ForeignKey("product.id", ondelete="RESTRICT"), nullable=False))
    variant_id: int = Field(sa_column=Column(Integer, ForeignKey("productvariant.id", ondelete="RESTRICT"), nullable=False))
    title: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True))
    quantity: int = Field(sa_column=Column(Integer, nullable=False))
    unit_price: Decimal = Field(sa_column=Column(Numeric(12, 2), nullable=False))
    discount_amount: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(12, 2), nullable=False))
    line_total: Decimal = Field(sa_column=Column(Numeric(12, 2), nullable=False))

    __table_args__ = (
        UniqueConstraint("order_id", "variant_id", name="uq_order_variant"),
    )


class OrderDiscount(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(sa_column=Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True))
    order_item_id: Optional[int] = Field(default=None, sa_column=Column(Integer, ForeignKey("orderitem.id", ondelete="CASCADE"), nullable=True))
    type: str = Field(sa_column=Column(String(16), nullable=False))
    percent: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(5, 2), nullable=False))
    amount: Decimal = Field(sa_column=Column(Numeric(12, 2), nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

# --------------------------------------------------------------------------------------------------------------------------------


class PaymentWebhookEvent(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    provider: str = Field(sa_column=Column(String(64), nullable=False, index=True))
    provider_event_id: str = Field(sa_column=Column(String(128), nullable=False))
    payment_id: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True, index=True))
    payload: Optional[dict] = Field(default=None, sa_column=Column(JSON, nullable=True))
    status: str = Field(default=WebhookEventStatus.RECEIVED.value, sa_column=Column(String(16), nullable=False, index=True))
    attempts: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    last_error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    processed_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True, index=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime(), nullable=False, default=now))

    __table_args__ = (
        UniqueConstraint("provider", "provider_event_id", name="uq_webhook_provider_event"),
    )
