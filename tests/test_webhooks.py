import asyncio
import hashlib
import hmac

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from checkout_core.config.settings import config_settings
from checkout_core.payments import webhooks
from checkout_core.payments.utils import extract_payment_reference, verify_webhook_signature
from checkout_core.schema.full_schema import PaymentWebhookEvent
from tests.conftest import url_prefix
from tests.helpers import PICKUP_ADDRESS, count_orders, reservation_statuses, variant_stock

webhook_path = config_settings.PAYMENT_WEBHOOK_PATH


def _notification(payment_id, event_id="evt-1", topic="payment"):
    return {"id": event_id, "type": topic, "action": "payment.updated", "data": {"id": payment_id}}


async def _event(session_factory, event_id):
    async with session_factory() as session:
        res = await session.execute(
            select(PaymentWebhookEvent).where(PaymentWebhookEvent.provider_event_id == event_id)
        )
        return res.scalar_one()


async def _open(manager, catalog_ids, user="buyer-1"):
    started = await manager.start_checkout(
        user, [{"variant_id": catalog_ids["lamp"], "quantity": 1}], PICKUP_ADDRESS, catalog_ids["card"],
    )
    assert started.ok
    return started


def test_extract_payment_reference_body_and_query_forms():
    body_ref = extract_payment_reference(_notification("123"), {})
    assert body_ref == {"topic": "payment", "action": "payment.updated", "payment_id": "123", "event_id": "evt-1"}

    query_ref = extract_payment_reference({}, {"topic": "payment", "id": "456"})
    assert query_ref["topic"] == "payment"
    assert query_ref["payment_id"] == "456"
    assert query_ref["event_id"] is None


def test_signature_manifest():
    manifest = "id:abc123;request-id:req-9;ts:1700000000;"
    digest = hmac.new(b"whsec", manifest.encode(), hashlib.sha256).hexdigest()

    assert verify_webhook_signature("whsec", f"ts=1700000000,v1={digest}", "req-9", "ABC123")
    assert not verify_webhook_signature("whsec", f"ts=1700000001,v1={digest}", "req-9", "abc123")
    assert not verify_webhook_signature("whsec", None, "req-9", "abc123")
    assert not verify_webhook_signature("whsec", "garbage", "req-9", "abc123")


@pytest.mark.asyncio
async def test_approved_webhook_creates_order(ac_client, manager, provider, session_factory, catalog_ids):
    started = await _open(manager, catalog_ids)
    provider.add_payment("pay-1", "approved", "1000.00", started.token)

    resp = await ac_client.post(webhook_path, json=_notification("pay-1"))

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["note"] == "processed"
    assert data["status"] == "approved"
    assert await count_orders(session_factory) == 1

    ev = await _event(session_factory, "evt-1")
    assert ev.status == "processed"
    assert ev.payment_id == "pay-1"
    assert ev.processed_at is not None

    # provider redelivery of the same event
    resp = await ac_client.post(webhook_path, json=_notification("pay-1"))
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "already_processed"
    assert (await _event(session_factory, "evt-1")).attempts == 2
    assert await count_orders(session_factory) == 1


@pytest.mark.asyncio
async def test_query_form_notification(ac_client, manager, provider, session_factory, catalog_ids):
    started = await _open(manager, catalog_ids)
    provider.add_payment("777", "approved", "1000.00", started.token)

    resp = await ac_client.post(f"{webhook_path}?topic=payment&id=777")

    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "approved"


@pytest.mark.asyncio
async def test_non_payment_topic_is_acknowledged_and_ignored(ac_client, provider, session_factory):
    resp = await ac_client.post(webhook_path, json=_notification("m-1", event_id="evt-mo", topic="merchant_order"))

    assert resp.status_code == 200
    assert resp.json()["data"]["note"].startswith("ignored")
    assert provider.get_calls == 0
    assert (await _event(session_factory, "evt-mo")).status == "ignored"


@pytest.mark.asyncio
async def test_provider_outage_asks_for_redelivery(ac_client, manager, provider, session_factory, catalog_ids):
    started = await _open(manager, catalog_ids)
    provider.add_payment("pay-1", "approved", "1000.00", started.token)
    provider.unavailable = True

    resp = await ac_client.post(webhook_path, json=_notification("pay-1", event_id="evt-down"))

    assert resp.status_code == 503
    assert resp.headers["retry-after"] == "30"
    assert resp.json()["error"]["code"] == "provider_unavailable"
    ev = await _event(session_factory, "evt-down")
    assert ev.status == "failed"
    assert ev.processed_at is None
    assert await reservation_statuses(session_factory, started.token) == ["ACTIVE"]


@pytest.mark.asyncio
async def test_rejected_payment_webhook_is_final(ac_client, manager, provider, session_factory, catalog_ids):
    started = await _open(manager, catalog_ids)
    provider.add_payment("pay-x", "rejected", "1000.00", started.token)

    resp = await ac_client.post(webhook_path, json=_notification("pay-x", event_id="evt-x"))

    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "rejected"
    assert (await _event(session_factory, "evt-x")).last_error == "payment_rejected"
    assert await reservation_statuses(session_factory, started.token) == ["RELEASED"]


@pytest.mark.asyncio
async def test_invalid_signature_is_ignored(ac_client, manager, provider, session_factory, catalog_ids, monkeypatch):
    monkeypatch.setattr(config_settings, "PAYMENT_WEBHOOK_SECRET", "whsec")
    started = await _open(manager, catalog_ids)
    provider.add_payment("pay-1", "approved", "1000.00", started.token)

    resp = await ac_client.post(webhook_path, json=_notification("pay-1", event_id="evt-forged"),
                                headers={"x-signature": "ts=1,v1=deadbeef", "x-request-id": "req-1"})

    assert resp.status_code == 200
    assert resp.json()["data"]["note"] == "ignored: invalid signature"
    assert provider.get_calls == 0
    assert await count_orders(session_factory) == 0

    manifest = "id:pay-1;request-id:req-2;ts:1700000000;"
    digest = hmac.new(b"whsec", manifest.encode(), hashlib.sha256).hexdigest()
    resp = await ac_client.post(webhook_path, json=_notification("pay-1", event_id="evt-signed"),
                                headers={"x-signature": f"ts=1700000000,v1={digest}", "x-request-id": "req-2"})
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "approved"


@pytest.mark.asyncio
async def test_webhook_and_client_confirm_race(ac_client, manager, provider, session_factory, catalog_ids,
                                               buyer_headers):
    started = await _open(manager, catalog_ids)
    provider.add_payment("pay-r", "approved", "1000.00", started.token)

    hook, confirm = await asyncio.gather(
        ac_client.post(webhook_path, json=_notification("pay-r", event_id="evt-r")),
        ac_client.post(f"{url_prefix}/checkout/confirm", json={"payment_id": "pay-r"}, headers=buyer_headers),
    )

    assert hook.status_code == 200
    assert confirm.status_code == 200
    assert hook.json()["data"]["order_id"] == confirm.json()["data"]["order_id"]
    assert {hook.json()["data"]["status"], confirm.json()["data"]["status"]} == {"approved", "already_processed"}
    assert await count_orders(session_factory) == 1
    assert await variant_stock(session_factory, catalog_ids["lamp"]) == 4


@pytest.mark.asyncio
async def test_confirm_endpoint_status_codes(ac_client, manager, provider, catalog_ids, buyer_headers, other_headers):
    started = await _open(manager, catalog_ids)
    provider.add_payment("pay-mm", "approved", "999.99", started.token)
    provider.add_payment("pay-other", "approved", "1000.00", started.token)

    resp = await ac_client.post(f"{url_prefix}/checkout/confirm", json={"payment_id": "missing"}, headers=buyer_headers)
    assert resp.status_code == 404

    resp = await ac_client.post(f"{url_prefix}/checkout/confirm", json={"payment_id": "pay-other"}, headers=other_headers)
    assert resp.status_code == 403

    resp = await ac_client.post(f"{url_prefix}/checkout/confirm", json={"payment_id": "pay-mm"}, headers=buyer_headers)
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "amount_mismatch"

    provider.unavailable = True
    resp = await ac_client.post(f"{url_prefix}/checkout/confirm", json={"payment_id": "pay-other"}, headers=buyer_headers)
    assert resp.status_code == 503


@pytest.mark.asyncio
async def test_order_status_visible_to_owner_only(ac_client, manager, provider, catalog_ids, buyer_headers,
                                                  other_headers):
    started = await _open(manager, catalog_ids)
    provider.add_payment("pay-s", "approved", "1000.00", started.token)
    confirm = await ac_client.post(f"{url_prefix}/checkout/confirm", json={"payment_id": "pay-s"}, headers=buyer_headers)
    public_id = confirm.json()["data"]["order_public_id"]

    resp = await ac_client.get(f"{url_prefix}/orders/{public_id}/status", headers=buyer_headers)
    assert resp.status_code == 200
    body = resp.json()["data"]
    assert body["order_status"] == "paid"
    assert body["checkout_token"] == started.token

    resp = await ac_client.get(f"{url_prefix}/orders/{public_id}/status", headers=other_headers)
    assert resp.status_code == 404

    view = await ac_client.get(f"{url_prefix}/checkout/{started.token}", headers=buyer_headers)
    assert view.json()["data"]["state"] == "processed"
    assert view.json()["data"]["order_public_id"] == public_id


@pytest.mark.asyncio
async def test_event_log_store_error_asks_for_redelivery(ac_client, manager, provider, session_factory, catalog_ids,
                                                         monkeypatch):
    started = await _open(manager, catalog_ids)
    provider.add_payment("pay-1", "approved", "1000.00", started.token)

    async def broken_record(*args, **kwargs):
        raise OperationalError("INSERT INTO paymentwebhookevent", {}, Exception("disk I/O error"))

    monkeypatch.setattr(webhooks, "record_webhook_received", broken_record)

    resp = await ac_client.post(webhook_path, json=_notification("pay-1", event_id="evt-io"))

    assert resp.status_code == 503
    assert resp.headers["retry-after"] == "30"
    assert resp.json()["error"]["code"] == "internal_error"
    assert provider.get_calls == 0
    assert await count_orders(session_factory) == 0
