from decimal import Decimal
from typing import Any, Dict, Optional
from pydantic import BaseModel
from checkout_core.config.settings import config_settings


class ShippingQuote(BaseModel):
    cost: Decimal
    is_free: bool
    method: str
    free_shipping_threshold: Decimal


class ShippingCalculator:
    """Flat-rate delivery with a free-shipping threshold; store pickup is always free."""

    def __init__(self, standard_cost: Optional[Decimal] = None, free_threshold: Optional[Decimal] = None):
        self.standard_cost = Decimal(standard_cost if standard_cost is not None else config_settings.SHIPPING_STANDARD_COST)
        self.free_threshold = Decimal(free_threshold if free_threshold is not None else config_settings.FREE_SHIPPING_THRESHOLD)

    def calculate_shipping(self, address: Dict[str, Any], subtotal: Decimal, discounts: Decimal = Decimal("0")) -> ShippingQuote:
        if (address or {}).get("delivery_method") == "pickup":
            return ShippingQuote(cost=Decimal("0"), is_free=True, method="pickup", free_shipping_threshold=self.free_threshold)

        effective = subtotal - discounts
        is_free = effective >= self.free_threshold
        return ShippingQuote(
            cost=Decimal("0") if is_free else self.standard_cost,
            is_free=is_free,
            method="standard",
            free_shipping_threshold=self.free_threshold,
        )
