from typing import Any, Dict, Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from checkout_core.common.utils import now
from checkout_core.db.utils import insert_ignore_conflict
from checkout_core.schema.full_schema import PaymentWebhookEvent, WebhookEventStatus


async def record_webhook_received(session: AsyncSession, provider: str, provider_event_id: str,
                                  payment_id: Optional[str], payload: Optional[Dict[str, Any]],
                                  status: str = WebhookEventStatus.RECEIVED.value) -> int:
    """Insert the notification once per (provider, event id) and bump its attempt counter."""
    await insert_ignore_conflict(
        session,
        PaymentWebhookEvent,
        {
            "provider": provider,
            "provider_event_id": provider_event_id,
            "payment_id": payment_id,
            "payload": payload,
            "status": status,
            "attempts": 0,
            "created_at": now(),
        },
        ["provider", "provider_event_id"],
    )
    await session.execute(
        update(PaymentWebhookEvent)
        .where(PaymentWebhookEvent.provider == provider, PaymentWebhookEvent.provider_event_id == provider_event_id)
        .values(attempts=PaymentWebhookEvent.attempts + 1)
    )
    res = await session.execute(
        select(PaymentWebhookEvent.id)
        .where(PaymentWebhookEvent.provider == provider, PaymentWebhookEvent.provider_event_id == provider_event_id)
    )
    return int(res.scalar_one())


async def mark_webhook_outcome(session: AsyncSession, event_id: int, status: str,
                               last_error: Optional[str] = None) -> None:
    values: Dict[str, Any] = {"status": status, "last_error": last_error}
    if status in (WebhookEventStatus.PROCESSED.value, WebhookEventStatus.IGNORED.value):
        values["processed_at"] = now()
    await session.execute(
        update(PaymentWebhookEvent).where(PaymentWebhookEvent.id == event_id).values(**values)
    )
