import asyncio
import json
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from checkout_core.common.circuit_breaker import CircuitBreaker, CircuitOpenError
from checkout_core.common.custom_exceptions import PaymentNotFound, ProviderUnavailable
from checkout_core.common.retries import is_recoverable_exception, retry_with_circuit
from checkout_core.payments.provider import MercadoPagoProvider, normalize_status


def _provider(handler, **kwargs):
    return MercadoPagoProvider(
        base_url="https://mp.test",
        access_token="test-token",
        public_base_url="https://shop.test",
        max_retries=kwargs.pop("max_retries", 2),
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_circuit_opens_after_threshold_and_half_opens():
    circuit = CircuitBreaker("psp", failure_threshold=2, recovery_timeout=0.05)

    await circuit.before_call()
    await circuit.after_call(False)
    await circuit.before_call()
    await circuit.after_call(False)
    assert circuit.state == "OPEN"

    with pytest.raises(CircuitOpenError):
        await circuit.before_call()

    await asyncio.sleep(0.06)
    await circuit.before_call()
    assert circuit.state == "HALF_OPEN"
    await circuit.after_call(True)
    assert circuit.state == "CLOSED"


@pytest.mark.asyncio
async def test_retry_recovers_from_transient_failure():
    calls = {"n": 0}

    @retry_with_circuit(CircuitBreaker("psp"), attempts=3, base_delay=0.001)
    async def flaky():
        calls["n"] += 1
        if calls["n"] < 3:
            raise httpx.ConnectError("refused")
        return "ok"

    assert await flaky() == "ok"
    assert calls["n"] == 3


@pytest.mark.asyncio
async def test_retry_exhaustion_and_open_circuit_surface_as_provider_unavailable():
    circuit = CircuitBreaker("psp", failure_threshold=2, recovery_timeout=60)

    @retry_with_circuit(circuit, attempts=2, base_delay=0.001)
    async def down():
        raise httpx.ReadTimeout("slow")

    with pytest.raises(ProviderUnavailable):
        await down()
    assert circuit.state == "OPEN"

    with pytest.raises(ProviderUnavailable):
        await down()


@pytest.mark.asyncio
async def test_non_transient_error_is_not_retried():
    calls = {"n": 0}

    @retry_with_circuit(CircuitBreaker("psp"), attempts=3, base_delay=0.001)
    async def broken():
        calls["n"] += 1
        raise ValueError("bad payload")

    with pytest.raises(ValueError):
        await broken()
    assert calls["n"] == 1


def test_recoverable_classification():
    req = httpx.Request("GET", "https://mp.test")
    assert is_recoverable_exception(httpx.HTTPStatusError("boom", request=req, response=httpx.Response(502, request=req)))
    assert is_recoverable_exception(httpx.HTTPStatusError("slow", request=req, response=httpx.Response(429, request=req)))
    assert not is_recoverable_exception(httpx.HTTPStatusError("nf", request=req, response=httpx.Response(404, request=req)))
    assert not is_recoverable_exception(KeyError("x"))


def test_normalize_status():
    assert normalize_status("APPROVED") == "approved"
    assert normalize_status("in_process") == "in_process"
    assert normalize_status("charged_back") == "unknown"
    assert normalize_status(None) == "unknown"


@pytest.mark.asyncio
async def test_get_payment_parses_provider_payload():
    def handler(request: httpx.Request):
        assert request.url.path == "/v1/payments/123"
        assert request.headers["authorization"] == "Bearer test-token"
        return httpx.Response(200, json={
            "id": 123,
            "status": "approved",
            "transaction_amount": 1000.5,
            "external_reference": "session_abc",
            "date_approved": "2024-05-01T10:00:00.000-03:00",
        })

    payment = await _provider(handler).get_payment("123")

    assert payment.payment_id == "123"
    assert payment.status == "approved"
    assert payment.amount == Decimal("1000.5")
    assert payment.external_reference == "session_abc"
    assert payment.approved_at.astimezone(timezone.utc) == datetime(2024, 5, 1, 13, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_get_payment_not_found_and_server_errors():
    calls = {"n": 0}

    def missing(request):
        return httpx.Response(404, json={"message": "not found"})

    def failing(request):
        calls["n"] += 1
        return httpx.Response(500, json={"message": "oops"})

    with pytest.raises(PaymentNotFound):
        await _provider(missing).get_payment("1")

    with pytest.raises(ProviderUnavailable):
        await _provider(failing).get_payment("1")
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_create_checkout_posts_preference():
    seen = {}

    def handler(request: httpx.Request):
        seen["body"] = json.loads(request.content)
        seen["idempotency"] = request.headers.get("x-idempotency-key")
        return httpx.Response(201, json={"id": "pref-1", "init_point": "https://mp.test/checkout/pref-1"})

    url = await _provider(handler).create_checkout(
        reference="session_abc", amount=Decimal("1500.00"), description="Desk Lamp x1",
        expires_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
    )

    assert url == "https://mp.test/checkout/pref-1"
    assert seen["idempotency"] == "session_abc"
    assert seen["body"]["external_reference"] == "session_abc"
    assert seen["body"]["items"][0]["unit_price"] == 1500.0
    assert seen["body"]["notification_url"].startswith("https://shop.test/")


@pytest.mark.asyncio
async def test_create_checkout_rejection_is_provider_unavailable():
    def handler(request):
        return httpx.Response(400, json={"message": "invalid items"})

    with pytest.raises(ProviderUnavailable):
        await _provider(handler).create_checkout(
            reference="session_abc", amount=Decimal("1"), description="x",
            expires_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
        )
