from decimal import Decimal
from typing import Optional
from pydantic import BaseModel


class VariantInfo(BaseModel):
    variant_id: int
    product_id: int
    title: str
    sku: Optional[str] = None
    price: Decimal
    stock: int
    discount_percent: Decimal = Decimal("0")


class PaymentMethodInfo(BaseModel):
    id: int
    name: str
    discount_percent: Decimal = Decimal("0")
    is_active: bool = True
