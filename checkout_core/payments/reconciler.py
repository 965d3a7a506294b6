from decimal import Decimal
from typing import Optional
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from checkout_core.checkout import repository as checkout_repo
from checkout_core.checkout.utils import session_state
from checkout_core.common import logger
from checkout_core.common.custom_exceptions import (
    AmountMismatch, CheckoutEngineError, DuplicatePayment, InsufficientStock, PaymentNotFound,
    ProviderUnavailable, SessionExpired, SessionNotFound,
)
from checkout_core.common.utils import now
from checkout_core.config.settings import config_settings
from checkout_core.metrics.custom_instrumentator import reconcile_outcomes
from checkout_core.orders import repository as orders_repo
from checkout_core.orders.services import OrderFinalizer
from checkout_core.payments import constants as pc
from checkout_core.payments.models import ProviderPayment, ReconcileResult
from checkout_core.payments.provider import PaymentProvider
from checkout_core.reservations import services as reservation_guard
from checkout_core.schema.full_schema import Orders


def _already_processed(order: Orders) -> ReconcileResult:
    return ReconcileResult(
        ok=True,
        status=DuplicatePayment.code,
        order_id=order.id,
        order_public_id=str(order.public_id),
        message="payment already processed",
    )


def _failure(exc: CheckoutEngineError) -> ReconcileResult:
    return ReconcileResult(
        ok=False, status=exc.code, message=exc.message, retryable=exc.retryable, error_code=exc.code,
    )


class PaymentReconciler:
    """Single entry point for both confirmation paths (client confirm and provider webhook).

    Per payment id: UNRESOLVED -> PAID on approved, stays UNRESOLVED on
    pending/in_process, -> FAILED on rejected/cancelled. PAID and FAILED absorb
    every later trigger. The provider is queried outside any DB transaction;
    all session, reservation and order writes happen in one transaction that
    locks the checkout session row first.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        provider: PaymentProvider,
        *,
        finalizer: Optional[OrderFinalizer] = None,
        amount_epsilon: Optional[Decimal] = None,
    ):
        self.session_factory = session_factory
        self.provider = provider
        self.finalizer = finalizer or OrderFinalizer()
        self.amount_epsilon = amount_epsilon if amount_epsilon is not None else config_settings.AMOUNT_EPSILON

    async def reconcile(self, payment_id: str, trigger: str, expected_user_id: Optional[str] = None) -> ReconcileResult:
        payment_id = str(payment_id or "").strip()
        if not payment_id:
            result = ReconcileResult(ok=False, status="invalid_payment_id", error_code="invalid_payment_id",
                                     message="payment id is required")
        else:
            try:
                result = await self._reconcile(payment_id, trigger, expected_user_id)
            except SQLAlchemyError:
                logger.exception("reconcile.store_error", extra={"payment_id": payment_id, "trigger": trigger})
                result = ReconcileResult(ok=False, status="internal_error", error_code="internal_error",
                                         retryable=True, message="store error, retry later")

        reconcile_outcomes.labels(trigger=trigger, status=result.status).inc()
        logger.info(
            "reconcile.result",
            extra={"payment_id": payment_id, "trigger": trigger, "status": result.status,
                   "ok": result.ok, "order_id": result.order_id},
        )
        return result

    async def _reconcile(self, payment_id: str, trigger: str, expected_user_id: Optional[str]) -> ReconcileResult:
        async with self.session_factory() as session:
            existing = await orders_repo.get_by_transaction_id(session, payment_id)
        if existing is not None and existing.is_paid:
            if expected_user_id is not None and existing.user_id != str(expected_user_id):
                return ReconcileResult(ok=False, status="forbidden", error_code="forbidden",
                                       message="payment belongs to another user")
            return _already_processed(existing)

        try:
            payment = await self.provider.get_payment(payment_id)
        except (ProviderUnavailable, PaymentNotFound) as exc:
            logger.warning("reconcile.provider_error", extra={"payment_id": payment_id, "code": exc.code})
            return _failure(exc)

        if not payment.external_reference:
            return _failure(SessionNotFound("payment has no checkout reference"))

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    return await self._apply(session, payment_id, payment, expected_user_id)
        except IntegrityError:
            # another finalizer won the unique transaction_id / checkout_token
            async with self.session_factory() as session:
                winner = await orders_repo.get_by_transaction_id(session, payment_id)
            if winner is not None:
                return _already_processed(winner)
            logger.exception("reconcile.integrity_error", extra={"payment_id": payment_id})
            return ReconcileResult(ok=False, status="internal_error", error_code="internal_error", retryable=True)
        except CheckoutEngineError as exc:
            return _failure(exc)

    async def _release_and_cancel(self, session: AsyncSession, token: str) -> None:
        await reservation_guard.release(session, token)
        await checkout_repo.mark_cancelled(session, token, now())

    async def _apply(self, session: AsyncSession, payment_id: str, payment: ProviderPayment,
                     expected_user_id: Optional[str]) -> ReconcileResult:
        token = payment.external_reference
        cs = await checkout_repo.get_by_token(session, token, lock=True)
        if cs is None:
            raise SessionNotFound(f"no checkout session for reference {token}")

        if expected_user_id is not None and cs.user_id != str(expected_user_id):
            return ReconcileResult(ok=False, status="forbidden", error_code="forbidden",
                                   message="checkout session belongs to another user")

        existing = await orders_repo.get_by_transaction_id(session, payment_id)
        if existing is not None and existing.is_paid:
            return _already_processed(existing)

        if cs.is_processed:
            if cs.payment_id == payment_id:
                order = await orders_repo.get_by_checkout_token(session, token)
                if order is not None:
                    return _already_processed(order)
            return ReconcileResult(ok=False, status="session_already_processed",
                                   error_code="session_already_processed",
                                   message="checkout session was paid by another payment")

        if abs(payment.amount - cs.total) > self.amount_epsilon:
            await self._release_and_cancel(session, token)
            logger.warning(
                "reconcile.amount_mismatch",
                extra={"payment_id": payment_id, "session_token": token,
                       "paid": str(payment.amount), "expected": str(cs.total)},
            )
            return ReconcileResult(ok=False, status=AmountMismatch.code, error_code=AmountMismatch.code,
                                   message=f"paid {payment.amount} but session total is {cs.total}")

        if payment.status == pc.APPROVED:
            if cs.cancelled_at is not None:
                raise SessionExpired("checkout session was cancelled before the payment was approved")
            expired = session_state(cs, now()) == "expired"
            try:
                outcome = await self.finalizer.finalize(session, cs, payment_id, payment)
            except InsufficientStock as exc:
                if expired:
                    raise SessionExpired("checkout session expired and its stock is gone") from exc
                raise
            return ReconcileResult(
                ok=True,
                status=pc.APPROVED if outcome.created else DuplicatePayment.code,
                order_id=outcome.order_id,
                order_public_id=outcome.order_public_id,
                message="order created" if outcome.created else "payment already processed",
            )

        if payment.status in pc.WAITING_STATUSES:
            return ReconcileResult(ok=True, status=pc.PENDING, message=f"payment is {payment.status}")

        if payment.status in pc.FAILED_STATUSES:
            await self._release_and_cancel(session, token)
            return ReconcileResult(ok=False, status=payment.status, error_code=f"payment_{payment.status}",
                                   message=f"payment {payment.status}")

        logger.warning("reconcile.unknown_status",
                       extra={"payment_id": payment_id, "raw_status": payment.raw_status})
        return ReconcileResult(ok=False, status=pc.UNKNOWN, error_code="unknown_status",
                               message=f"payment status {payment.raw_status!r} requires no action")
