import json
from fastapi import Request, status
from sqlalchemy.exc import SQLAlchemyError
from checkout_core.common import logger
from checkout_core.common.constants import request_id_ctx
from checkout_core.common.utils import build_error, build_success, json_error, json_ok
from checkout_core.config.settings import config_settings
from checkout_core.payments.constants import TRIGGER_WEBHOOK
from checkout_core.payments.repository import mark_webhook_outcome, record_webhook_received
from checkout_core.payments.utils import extract_payment_reference, verify_webhook_signature
from checkout_core.schema.full_schema import WebhookEventStatus


async def _record(request: Request, event_key: str, payment_id, payload, status_value: str, last_error=None) -> int:
    async with request.app.state.session_factory() as session:
        async with session.begin():
            ev_id = await record_webhook_received(
                session, config_settings.PAYMENT_PROVIDER_NAME, event_key, payment_id, payload, status=status_value,
            )
            if last_error is not None or status_value != WebhookEventStatus.RECEIVED.value:
                await mark_webhook_outcome(session, ev_id, status_value, last_error)
    return ev_id


async def _finish(request: Request, ev_id: int, status_value: str, last_error=None) -> None:
    async with request.app.state.session_factory() as session:
        async with session.begin():
            await mark_webhook_outcome(session, ev_id, status_value, last_error)


def _ack(note: str, **data):
    return json_ok(build_success({"note": note, **data}, request_id=request_id_ctx.get()), status_code=200)


def _retry_later(code: str, message):
    payload = build_error(code=code, details={"message": message}, request_id=request_id_ctx.get())
    return json_error(payload, status_code=status.HTTP_503_SERVICE_UNAVAILABLE, headers={"Retry-After": "30"})


async def payment_webhook(request: Request):
    """Provider notification endpoint.

    Anything the provider should not resend is answered with 200; only
    retryable failures (provider down, store error) get a 503.
    """
    raw = await request.body()
    try:
        body = json.loads(raw) if raw else {}
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    ref = extract_payment_reference(body, request.query_params)
    try:
        return await _handle(request, body, ref)
    except SQLAlchemyError as exc:
        # the event log is unreliable right now; make the provider redeliver
        logger.error("payment_webhook.store_error", extra={"payment_id": ref["payment_id"], "error": str(exc)})
        return _retry_later("internal_error", "store error, retry later")


async def _handle(request: Request, body, ref):
    payment_id = ref["payment_id"]
    event_key = ref["event_id"] or f"{ref['topic']}:{ref['action']}:{payment_id}"

    secret = config_settings.PAYMENT_WEBHOOK_SECRET
    if secret and not verify_webhook_signature(
        secret, request.headers.get("x-signature"), request.headers.get("x-request-id"), payment_id,
    ):
        logger.error("payment_webhook.invalid_signature", extra={"payment_id": payment_id})
        await _record(request, event_key, payment_id, body, WebhookEventStatus.IGNORED.value, "invalid_signature")
        return _ack("ignored: invalid signature")

    if ref["topic"] != "payment" or not payment_id:
        logger.info("payment_webhook.ignored", extra={"topic": ref["topic"], "payment_id": payment_id})
        await _record(request, event_key, payment_id, body, WebhookEventStatus.IGNORED.value, "not a payment notification")
        return _ack("ignored: not a payment notification")

    ev_id = await _record(request, event_key, payment_id, body, WebhookEventStatus.RECEIVED.value)

    result = await request.app.state.reconciler.reconcile(payment_id, TRIGGER_WEBHOOK)

    if result.retryable:
        await _finish(request, ev_id, WebhookEventStatus.FAILED.value, result.error_code)
        return _retry_later(result.error_code or result.status, result.message)

    await _finish(request, ev_id, WebhookEventStatus.PROCESSED.value, None if result.ok else result.error_code)
    return _ack("processed", **result.model_dump(mode="json"))
