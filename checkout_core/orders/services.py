from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from checkout_core.catalog.repository import CatalogRepository
from checkout_core.checkout import repository as checkout_repo
from checkout_core.checkout.utils import snapshot_lines
from checkout_core.common import logger
from checkout_core.common.custom_exceptions import InsufficientStock, SessionAlreadyProcessed
from checkout_core.common.utils import now
from checkout_core.orders import repository as orders_repo
from checkout_core.orders.models import FinalizeOutcome, OrderStatusView
from checkout_core.payments.models import ProviderPayment
from checkout_core.reservations import repository as reservation_store
from checkout_core.reservations import services as reservation_guard
from checkout_core.reservations.models import Shortfall
from checkout_core.schema.full_schema import (
    CheckoutSession, DiscountType, OrderDiscount, OrderItem, OrderStatus, Orders, PaymentStatus,
)


class OrderFinalizer:
    """Materializes a paid checkout session into an order, once."""

    def __init__(self, catalog: Optional[CatalogRepository] = None):
        self.catalog = catalog or CatalogRepository()

    async def _verify_stock(self, session: AsyncSession, checkout: CheckoutSession, needed: Dict[int, int]):
        ts = now()
        variants = await self.catalog.get_variants(session, needed.keys(), lock=True)
        held_by_others = await reservation_store.reserved_quantities(
            session, needed.keys(), ts, exclude_group=checkout.token,
        )
        shortfalls: List[Shortfall] = []
        for vid, qty in needed.items():
            info = variants.get(vid)
            avail = max(0, info.stock - held_by_others.get(vid, 0)) if info else 0
            if qty > avail:
                shortfalls.append(Shortfall(
                    variant_id=vid, product_title=info.title if info else None, requested=qty, available=avail,
                ))
        if shortfalls:
            raise InsufficientStock([s.model_dump() for s in shortfalls])

    async def finalize(self, session: AsyncSession, checkout: CheckoutSession, payment_id: str,
                       payment: ProviderPayment) -> FinalizeOutcome:
        """Create the order for an approved payment inside the caller's transaction.

        The order insert runs in a SAVEPOINT so a concurrent finalizer that won
        the unique transaction_id only costs this caller the savepoint; the
        existing order is returned with created=False and stock is left alone.
        """
        lines = snapshot_lines(checkout)
        needed: Dict[int, int] = {}
        for ln in lines:
            needed[ln.variant_id] = needed.get(ln.variant_id, 0) + ln.quantity

        await self._verify_stock(session, checkout, needed)

        ts = now()
        order = Orders(
            user_id=checkout.user_id,
            company_id=checkout.company_id,
            payment_method_id=checkout.payment_method_id,
            checkout_token=checkout.token,
            transaction_id=payment_id,
            currency=checkout.currency,
            subtotal=checkout.subtotal,
            discounts=checkout.discounts,
            shipping_cost=checkout.shipping_cost,
            shipping_method=checkout.shipping_method,
            free_shipping=checkout.free_shipping,
            total=checkout.total,
            items_in_order=sum(ln.quantity for ln in lines),
            is_paid=True,
            paid_at=payment.approved_at or ts,
            payment_status=PaymentStatus.APPROVED.value,
            order_status=OrderStatus.PAID.value,
            shipping_address=checkout.shipping_address,
            created_at=ts,
            updated_at=ts,
        )
        try:
            async with session.begin_nested():
                session.add(order)
                await session.flush()
        except IntegrityError:
            existing = await orders_repo.get_by_transaction_id(session, payment_id)
            if existing is not None:
                logger.info("order.finalize.duplicate", extra={"payment_id": payment_id, "order_id": existing.id})
                return FinalizeOutcome(order_id=existing.id, order_public_id=str(existing.public_id), created=False)
            # checkout_token taken by an order for another payment
            raise SessionAlreadyProcessed("checkout session already has an order")

        for ln in lines:
            item = OrderItem(
                order_id=order.id,
                product_id=ln.product_id,
                variant_id=ln.variant_id,
                title=ln.title,
                quantity=ln.quantity,
                unit_price=ln.unit_price,
                discount_amount=ln.discount_amount,
                line_total=ln.unit_price * ln.quantity - ln.discount_amount,
            )
            session.add(item)
            await session.flush()
            if ln.discount_amount > 0:
                session.add(OrderDiscount(
                    order_id=order.id,
                    order_item_id=item.id,
                    type=ln.discount_type or DiscountType.VARIANT.value,
                    percent=ln.discount_percent,
                    amount=ln.discount_amount,
                    description=ln.discount_description,
                ))

        if checkout.payment_discount and Decimal(checkout.payment_discount) > 0:
            session.add(OrderDiscount(
                order_id=order.id,
                order_item_id=None,
                type=DiscountType.PAYMENT.value,
                amount=checkout.payment_discount,
                description="payment method discount",
            ))
        await session.flush()

        for vid in sorted(needed):
            if not await self.catalog.decrement_stock(session, vid, needed[vid]):
                raise InsufficientStock([{"variant_id": vid, "requested": needed[vid]}])

        await reservation_guard.complete(session, checkout.token)

        if await checkout_repo.mark_processed(session, checkout.token, payment_id, ts) == 0:
            raise SessionAlreadyProcessed("checkout session was processed concurrently")

        logger.info("order.finalize.created",
                    extra={"order_id": order.id, "payment_id": payment_id, "session_token": checkout.token})
        return FinalizeOutcome(order_id=order.id, order_public_id=str(order.public_id), created=True)


async def get_order_status(session: AsyncSession, user_id: str, public_id: UUID) -> Optional[OrderStatusView]:
    order = await orders_repo.get_by_public_id(session, public_id)
    if order is None or order.user_id != str(user_id):
        return None
    return OrderStatusView(
        order_public_id=str(order.public_id),
        checkout_token=order.checkout_token,
        payment_status=order.payment_status,
        order_status=order.order_status,
        is_paid=order.is_paid,
        paid_at=order.paid_at,
        delivered_at=order.delivered_at,
        total=order.total,
        currency=order.currency,
        items_in_order=order.items_in_order,
    )


async def mark_order_delivered(session: AsyncSession, order_id: int) -> bool:
    """paid -> delivered. False when the order is not (or no longer) in paid state."""
    moved = await orders_repo.mark_delivered(session, order_id, now())
    if moved:
        logger.info("order.delivered", extra={"order_id": order_id})
    return moved == 1
