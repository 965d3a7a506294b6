from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field
from checkout_core.reservations.models import Shortfall


class CheckoutItemIn(BaseModel):
    # prices are never taken from the client
    model_config = ConfigDict(extra="forbid")

    variant_id: int
    quantity: int = Field(gt=0, le=1000)


class AddressIn(BaseModel):
    first_name: str = Field(min_length=1, max_length=128)
    last_name: str = Field(min_length=1, max_length=128)
    address: str = Field(min_length=1, max_length=255)
    address2: Optional[str] = Field(default=None, max_length=255)
    postal_code: str = Field(min_length=1, max_length=16)
    city: str = Field(min_length=1, max_length=128)
    phone: str = Field(min_length=4, max_length=32)
    country: str = Field(default="AR", max_length=64)
    delivery_method: Literal["delivery", "pickup"] = "delivery"


class StartCheckoutIn(BaseModel):
    items: List[CheckoutItemIn] = Field(min_length=1)
    address: AddressIn
    payment_method_id: int


class SnapshotLine(BaseModel):
    variant_id: int
    product_id: int
    title: str
    quantity: int
    unit_price: Decimal
    discount_amount: Decimal = Decimal("0")
    discount_percent: Decimal = Decimal("0")
    discount_type: Optional[str] = None
    discount_description: Optional[str] = None

class PricedCart(BaseModel):
    lines: List[SnapshotLine]
    subtotal: Decimal
    item_discounts: Decimal
    payment_discount: Decimal
    discounts: Decimal
    shipping_cost: Decimal
    shipping_method: str
    free_shipping: bool
    total: Decimal


class StartCheckoutResult(BaseModel):
    ok: bool
    token: Optional[str] = None
    expires_at: Optional[datetime] = None
    total: Optional[Decimal] = None
    redirect_url: Optional[str] = None
    reason: Optional[str] = None
    insufficient: List[Shortfall] = []


class CheckoutSessionView(BaseModel):
    token: str
    state: str
    expires_at: datetime
    subtotal: Decimal
    discounts: Decimal
    shipping_cost: Decimal
    total: Decimal
    currency: str
    items: List[SnapshotLine]
    order_public_id: Optional[str] = None
