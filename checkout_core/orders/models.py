from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel


class FinalizeOutcome(BaseModel):
    order_id: int
    order_public_id: str
    created: bool


class OrderStatusView(BaseModel):
    order_public_id: str
    checkout_token: str
    payment_status: str
    order_status: str
    is_paid: bool
    paid_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    total: Decimal
    currency: str
    items_in_order: int
