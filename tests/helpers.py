from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import func, select, update
from checkout_core.common.custom_exceptions import PaymentNotFound, ProviderUnavailable
from checkout_core.payments.models import ProviderPayment
from checkout_core.payments.provider import PaymentProvider, normalize_status
from checkout_core.schema.full_schema import (
    CheckoutSession, Orders, PaymentMethod, Product, ProductVariant, StockReservation,
)

DELIVERY_ADDRESS = {
    "first_name": "Ana",
    "last_name": "Paz",
    "address": "Av. Siempre Viva 742",
    "postal_code": "1000",
    "city": "Buenos Aires",
    "phone": "1155550000",
    "country": "AR",
    "delivery_method": "delivery",
}

PICKUP_ADDRESS = {**DELIVERY_ADDRESS, "delivery_method": "pickup"}


class FakePaymentProvider(PaymentProvider):
    """In-memory gateway: payments are registered by the test, outages toggled by flags."""

    name = "fake"

    def __init__(self):
        self.payments: Dict[str, ProviderPayment] = {}
        self.checkouts = []
        self.fail_create = False
        self.unavailable = False
        self.get_calls = 0

    def add_payment(self, payment_id: str, status: str, amount, reference: Optional[str]):
        self.payments[payment_id] = ProviderPayment(
            payment_id=payment_id,
            status=normalize_status(status),
            raw_status=status,
            amount=Decimal(str(amount)),
            external_reference=reference,
        )

    async def create_checkout(self, reference: str, amount: Decimal, description: str, expires_at: datetime) -> str:
        if self.fail_create:
            raise ProviderUnavailable("gateway timeout")
        self.checkouts.append({"reference": reference, "amount": amount, "description": description})
        return f"https://pay.example.test/checkout/{reference}"

    async def get_payment(self, payment_id: str) -> ProviderPayment:
        self.get_calls += 1
        if self.unavailable:
            raise ProviderUnavailable("gateway timeout")
        if payment_id not in self.payments:
            raise PaymentNotFound(f"payment {payment_id} not found")
        return self.payments[payment_id]


async def seed_catalog(session_factory) -> Dict[str, int]:
    async with session_factory() as session:
        async with session.begin():
            lamp = Product(title="Desk Lamp")
            mug = Product(title="Ceramic Mug")
            session.add_all([lamp, mug])
            await session.flush()

            lamp_v = ProductVariant(product_id=lamp.id, sku="LAMP-1", price=Decimal("1000.00"), stock=5,
                                    discount_percent=Decimal("0"))
            mug_v = ProductVariant(product_id=mug.id, sku="MUG-1", price=Decimal("250.00"), stock=10,
                                   discount_percent=Decimal("10"))
            card = PaymentMethod(name="card", discount_percent=Decimal("0"))
            transfer = PaymentMethod(name="transfer", discount_percent=Decimal("10"))
            inactive = PaymentMethod(name="cash", discount_percent=Decimal("0"), is_active=False)
            session.add_all([lamp_v, mug_v, card, transfer, inactive])
            await session.flush()

            return {
                "lamp": lamp_v.id,
                "mug": mug_v.id,
                "card": card.id,
                "transfer": transfer.id,
                "inactive": inactive.id,
            }


async def variant_stock(session_factory, variant_id: int) -> int:
    async with session_factory() as session:
        res = await session.execute(select(ProductVariant.stock).where(ProductVariant.id == variant_id))
        return int(res.scalar_one())


async def reservation_statuses(session_factory, group_id: str):
    async with session_factory() as session:
        res = await session.execute(
            select(StockReservation.status).where(StockReservation.reservation_group_id == group_id)
        )
        return [r for r in res.scalars().all()]


async def count_orders(session_factory) -> int:
    async with session_factory() as session:
        res = await session.execute(select(func.count()).select_from(Orders))
        return int(res.scalar_one())


async def load_session(session_factory, token: str) -> CheckoutSession:
    async with session_factory() as session:
        res = await session.execute(select(CheckoutSession).where(CheckoutSession.token == token))
        return res.scalar_one()


async def age_checkout(session_factory, token: str, when: datetime):
    """Move a session and its reservations' expiry into the past."""
    async with session_factory() as session:
        async with session.begin():
            await session.execute(
                update(CheckoutSession).where(CheckoutSession.token == token).values(expires_at=when)
            )
            await session.execute(
                update(StockReservation).where(StockReservation.reservation_group_id == token).values(expires_at=when)
            )


async def set_stock(session_factory, variant_id: int, stock: int):
    async with session_factory() as session:
        async with session.begin():
            await session.execute(update(ProductVariant).where(ProductVariant.id == variant_id).values(stock=stock))
