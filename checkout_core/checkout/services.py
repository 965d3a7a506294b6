from datetime import timedelta
from typing import Any, Dict, Optional, Sequence
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from checkout_core.catalog.repository import CatalogRepository
from checkout_core.checkout import repository as checkout_repo
from checkout_core.checkout.models import CheckoutSessionView, StartCheckoutResult
from checkout_core.checkout.utils import describe_cart, generate_session_token, price_cart, session_state, snapshot_lines
from checkout_core.common import logger
from checkout_core.common.custom_exceptions import (
    InternalStoreError, InvalidCheckoutInput, ProviderUnavailable, SessionAlreadyProcessed,
    SessionExpired, SessionNotFound,
)
from checkout_core.common.utils import now
from checkout_core.config.settings import config_settings
from checkout_core.orders import repository as orders_repo
from checkout_core.payments.provider import PaymentProvider
from checkout_core.reservations import services as reservation_guard
from checkout_core.shipping.services import ShippingCalculator


class CheckoutSessionManager:
    """Turns a cart into a priced, stock-backed checkout session and a provider redirect."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        provider: PaymentProvider,
        *,
        catalog: Optional[CatalogRepository] = None,
        shipping: Optional[ShippingCalculator] = None,
        ttl_minutes: Optional[int] = None,
        company_id: Optional[str] = None,
        currency: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.provider = provider
        self.catalog = catalog or CatalogRepository()
        self.shipping = shipping or ShippingCalculator()
        self.ttl_minutes = ttl_minutes or config_settings.RESERVATION_TTL_MINUTES
        self.company_id = company_id if company_id is not None else config_settings.DEFAULT_COMPANY_ID
        self.currency = currency or config_settings.CURRENCY

    @staticmethod
    def _validate(user_id: str, cart_items: Sequence, address: Optional[Dict[str, Any]]):
        if not user_id:
            raise InvalidCheckoutInput("user is required")
        if not cart_items:
            raise InvalidCheckoutInput("cart is empty")
        for it in cart_items:
            qty = it["quantity"] if isinstance(it, dict) else getattr(it, "quantity", 0)
            if not isinstance(qty, int) or qty <= 0:
                raise InvalidCheckoutInput("quantities must be positive integers")
        if not address:
            raise InvalidCheckoutInput("shipping address is required")

    async def start_checkout(self, user_id: str, cart_items: Sequence, address: Dict[str, Any],
                             payment_method_id: int) -> StartCheckoutResult:
        self._validate(user_id, cart_items, address)
        merged = reservation_guard.merge_lines(cart_items)
        token = generate_session_token()

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    pm = await self.catalog.get_payment_method(session, payment_method_id)
                    if pm is None or not pm.is_active:
                        raise InvalidCheckoutInput("payment method not available")

                    variants = await self.catalog.get_variants(session, merged.keys())
                    missing = [vid for vid in merged if vid not in variants]
                    if missing:
                        raise InvalidCheckoutInput("unknown variants", details={"variant_ids": missing})

                    priced = price_cart(merged, variants, pm, address, self.shipping)

                    reserved = await reservation_guard.reserve(
                        session, user_id, [{"variant_id": v, "quantity": q} for v, q in merged.items()],
                        self.ttl_minutes, reason="session", reservation_group_id=token, order_key=token,
                        catalog=self.catalog,
                    )
                    if not reserved.ok:
                        return StartCheckoutResult(ok=False, reason="insufficient_stock", insufficient=reserved.insufficient)

                    cs = await checkout_repo.insert_session(session, {
                        "token": token,
                        "user_id": str(user_id),
                        "company_id": self.company_id,
                        "payment_method_id": pm.id,
                        "cart_snapshot": [ln.model_dump(mode="json") for ln in priced.lines],
                        "shipping_address": dict(address),
                        "subtotal": priced.subtotal,
                        "item_discounts": priced.item_discounts,
                        "payment_discount": priced.payment_discount,
                        "discounts": priced.discounts,
                        "shipping_cost": priced.shipping_cost,
                        "shipping_method": priced.shipping_method,
                        "free_shipping": priced.free_shipping,
                        "total": priced.total,
                        "currency": self.currency,
                        "expires_at": reserved.expires_at,
                    })
                    expires_at = cs.expires_at
        except SQLAlchemyError as exc:
            logger.exception("checkout.start.store_error", extra={"user_id": user_id})
            raise InternalStoreError("could not open checkout session") from exc

        logger.info("checkout.session.created",
                    extra={"session_token": token, "user_id": user_id, "total": str(priced.total)})

        result = StartCheckoutResult(ok=True, token=token, expires_at=expires_at, total=priced.total)
        try:
            result.redirect_url = await self.provider.create_checkout(
                reference=token, amount=priced.total, description=describe_cart(priced.lines), expires_at=expires_at,
            )
        except ProviderUnavailable as exc:
            # session and reservations stay valid until TTL; caller can ask for a new link
            logger.warning("checkout.provider_unavailable", extra={"session_token": token, "error": str(exc)})
            result.reason = "provider_unavailable"
        return result

    async def _owned_session(self, session: AsyncSession, user_id: str, token: str):
        cs = await checkout_repo.get_by_token(session, token)
        if cs is None or cs.user_id != str(user_id):
            raise SessionNotFound("checkout session not found")
        return cs

    async def get_session(self, user_id: str, token: str) -> CheckoutSessionView:
        async with self.session_factory() as session:
            cs = await self._owned_session(session, user_id, token)
            order_public_id = None
            if cs.is_processed:
                order = await orders_repo.get_by_checkout_token(session, token)
                order_public_id = str(order.public_id) if order else None

        return CheckoutSessionView(
            token=cs.token,
            state=session_state(cs, now()),
            expires_at=cs.expires_at,
            subtotal=cs.subtotal,
            discounts=cs.discounts,
            shipping_cost=cs.shipping_cost,
            total=cs.total,
            currency=cs.currency,
            items=snapshot_lines(cs),
            order_public_id=order_public_id,
        )

    async def retry_payment_link(self, user_id: str, token: str) -> str:
        async with self.session_factory() as session:
            cs = await self._owned_session(session, user_id, token)

        state = session_state(cs, now())
        if state == "processed":
            raise SessionAlreadyProcessed("checkout session already paid")
        if state != "open":
            raise SessionExpired("checkout session is no longer open")

        redirect = await self.provider.create_checkout(
            reference=cs.token,
            amount=cs.total,
            description=describe_cart(snapshot_lines(cs)),
            expires_at=cs.expires_at,
        )
        logger.info("checkout.payment_link.renewed", extra={"session_token": token})
        return redirect
