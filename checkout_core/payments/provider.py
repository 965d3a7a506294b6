from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
from checkout_core.common import logger
from checkout_core.common.circuit_breaker import CircuitBreaker
from checkout_core.common.custom_exceptions import PaymentNotFound, ProviderUnavailable
from checkout_core.common.retries import retry_with_circuit
from checkout_core.config.settings import config_settings
from checkout_core.payments.constants import KNOWN_STATUSES, UNKNOWN
from checkout_core.payments.models import ProviderPayment


def normalize_status(raw: Optional[str]) -> str:
    """Map a provider status onto the states the reconciler acts on.

    authorized, in_mediation, refunded and charged_back map to unknown; none of
    them creates or cancels an order.
    """
    val = (raw or "").strip().lower()
    return val if val in KNOWN_STATUSES else UNKNOWN


class PaymentProvider:
    """Interface the engine needs from a payment gateway."""

    name = "base"

    async def create_checkout(self, reference: str, amount: Decimal, description: str,
                              expires_at: datetime) -> str:
        raise NotImplementedError

    async def get_payment(self, payment_id: str) -> ProviderPayment:
        raise NotImplementedError


class MercadoPagoProvider(PaymentProvider):

    name = "mercadopago"

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        access_token: Optional[str] = None,
        public_base_url: Optional[str] = None,
        webhook_path: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        circuit: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or config_settings.PAYMENT_PROVIDER_URL).rstrip("/")
        self.access_token = access_token if access_token is not None else config_settings.PAYMENT_ACCESS_TOKEN
        self.public_base_url = (public_base_url or config_settings.PUBLIC_BASE_URL).rstrip("/")
        self.webhook_path = webhook_path or config_settings.PAYMENT_WEBHOOK_PATH
        self.timeout = timeout or config_settings.PROVIDER_TIMEOUT_SECONDS
        self.transport = transport
        self.circuit = circuit or CircuitBreaker(name="mercadopago", failure_threshold=5, recovery_timeout=30.0)

        retry = retry_with_circuit(self.circuit, attempts=max_retries or config_settings.PROVIDER_MAX_RETRIES)
        self._get_json = retry(self._get_json_once)
        self._post_json = retry(self._post_json_once)

    def _client(self) -> httpx.AsyncClient:
        headers = {"Authorization": f"Bearer {self.access_token}", "Content-Type": "application/json"}
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, headers=headers, transport=self.transport)

    async def _get_json_once(self, path: str) -> Dict[str, Any]:
        async with self._client() as client:
            resp = await client.get(path)
            resp.raise_for_status()
            return resp.json()

    async def _post_json_once(self, path: str, payload: Dict[str, Any], idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        headers = {"X-Idempotency-Key": idempotency_key} if idempotency_key else None
        async with self._client() as client:
            resp = await client.post(path, json=payload, headers=headers)
            resp.raise_for_status()
            return resp.json()

    async def create_checkout(self, reference: str, amount: Decimal, description: str,
                              expires_at: datetime) -> str:
        payload = {
            "items": [{
                "id": reference,
                "title": description[:256],
                "quantity": 1,
                "unit_price": float(amount),
                "currency_id": config_settings.CURRENCY,
            }],
            "external_reference": reference,
            "back_urls": {
                "success": f"{self.public_base_url}/orders/payment-success",
                "failure": f"{self.public_base_url}/orders/payment-failure",
                "pending": f"{self.public_base_url}/orders/payment-pending",
            },
            "auto_return": "approved",
            "expires": True,
            "expiration_date_to": expires_at.isoformat(),
            "notification_url": f"{self.public_base_url}{self.webhook_path}",
        }
        try:
            data = await self._post_json("/checkout/preferences", payload, idempotency_key=reference)
        except httpx.HTTPStatusError as exc:
            logger.error("provider.create_checkout.rejected",
                         extra={"status_code": exc.response.status_code, "reference": reference})
            raise ProviderUnavailable(f"preference rejected with {exc.response.status_code}") from exc

        redirect = data.get("init_point")
        if not redirect:
            raise ProviderUnavailable("provider returned no redirect url")
        return redirect

    async def get_payment(self, payment_id: str) -> ProviderPayment:
        try:
            data = await self._get_json(f"/v1/payments/{payment_id}")
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                raise PaymentNotFound(f"payment {payment_id} not found") from exc
            raise ProviderUnavailable(f"payment lookup failed with {exc.response.status_code}") from exc

        amount = data.get("transaction_amount")
        if amount is None:
            raise ProviderUnavailable("payment has no amount yet")

        approved_at = data.get("date_approved")
        return ProviderPayment(
            payment_id=str(data.get("id", payment_id)),
            status=normalize_status(data.get("status")),
            raw_status=data.get("status"),
            amount=Decimal(str(amount)),
            external_reference=data.get("external_reference"),
            approved_at=approved_at,
        )
