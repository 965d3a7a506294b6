import secrets
import time
from datetime import datetime
from decimal import Decimal
from typing import Dict, Mapping
from checkout_core.catalog.models import PaymentMethodInfo, VariantInfo
from checkout_core.checkout.models import PricedCart, SnapshotLine
from checkout_core.common.utils import money
from checkout_core.schema.full_schema import CheckoutSession, DiscountType
from checkout_core.shipping.services import ShippingCalculator

HUNDRED = Decimal("100")


def generate_session_token() -> str:
    return f"session_{secrets.token_hex(16)}_{int(time.time() * 1000)}"


def price_cart(merged: Mapping[int, int], variants: Dict[int, VariantInfo], payment_method: PaymentMethodInfo,
               address: dict, shipping: ShippingCalculator) -> PricedCart:
    """Price a cart from catalog data.

    Order of application: per-unit variant discount, then the payment-method
    percent on (subtotal - item discounts), then shipping on what is left.
    """
    lines = []
    subtotal = Decimal("0")
    item_discounts = Decimal("0")

    for vid, qty in merged.items():
        info = variants[vid]
        unit_price = money(info.price)
        pct = Decimal(info.discount_percent or 0)
        unit_discount = money(unit_price * pct / HUNDRED) if pct > 0 else Decimal("0")
        line_discount = unit_discount * qty

        lines.append(SnapshotLine(
            variant_id=vid,
            product_id=info.product_id,
            title=info.title,
            quantity=qty,
            unit_price=unit_price,
            discount_amount=line_discount,
            discount_percent=pct,
            discount_type=DiscountType.VARIANT.value if line_discount > 0 else None,
            discount_description=f"{pct.normalize():f}% off {info.title}" if line_discount > 0 else None,
        ))
        subtotal += unit_price * qty
        item_discounts += line_discount

    pm_pct = Decimal(payment_method.discount_percent or 0)
    payment_discount = money((subtotal - item_discounts) * pm_pct / HUNDRED) if pm_pct > 0 else Decimal("0")
    discounts = item_discounts + payment_discount

    quote = shipping.calculate_shipping(address, subtotal, discounts)
    total = money(subtotal - discounts + quote.cost)

    return PricedCart(
        lines=lines,
        subtotal=money(subtotal),
        item_discounts=money(item_discounts),
        payment_discount=payment_discount,
        discounts=money(discounts),
        shipping_cost=money(quote.cost),
        shipping_method=quote.method,
        free_shipping=quote.is_free,
        total=total,
    )


def describe_cart(lines) -> str:
    return ", ".join(f"{ln.title} x{ln.quantity}" for ln in lines)


def session_state(cs: CheckoutSession, ts: datetime) -> str:
    if cs.is_processed:
        return "processed"
    if cs.cancelled_at is not None:
        return "cancelled"
    if cs.expired_at is not None or cs.expires_at <= ts:
        return "expired"
    return "open"


def snapshot_lines(cs: CheckoutSession):
    return [SnapshotLine.model_validate(ln) for ln in cs.cart_snapshot or []]
