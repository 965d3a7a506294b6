from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from checkout_core.schema.full_schema import CheckoutSession


def _open():
    return (
        CheckoutSession.is_processed.is_(False),
        CheckoutSession.cancelled_at.is_(None),
        CheckoutSession.expired_at.is_(None),
    )


async def insert_session(session: AsyncSession, values: Dict[str, Any]) -> CheckoutSession:
    cs = CheckoutSession(**values)
    session.add(cs)
    await session.flush()
    return cs


async def get_by_token(session: AsyncSession, token: str, *, lock: bool = False) -> Optional[CheckoutSession]:
    stmt = select(CheckoutSession).where(CheckoutSession.token == token)
    if lock:
        stmt = stmt.with_for_update()
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def mark_processed(session: AsyncSession, token: str, payment_id: str, ts: datetime) -> int:
    # an expired session can still be processed by an approved payment
    stmt = (
        update(CheckoutSession)
        .where(
            CheckoutSession.token == token,
            CheckoutSession.is_processed.is_(False),
            CheckoutSession.cancelled_at.is_(None),
        )
        .values(is_processed=True, processed_at=ts, payment_id=payment_id, updated_at=ts)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return int(res.rowcount or 0)


async def mark_cancelled(session: AsyncSession, token: str, ts: datetime) -> int:
    stmt = (
        update(CheckoutSession)
        .where(
            CheckoutSession.token == token,
            CheckoutSession.is_processed.is_(False),
            CheckoutSession.cancelled_at.is_(None),
        )
        .values(cancelled_at=ts, updated_at=ts)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return int(res.rowcount or 0)


async def expire_overdue(session: AsyncSession, ts: datetime) -> int:
    stmt = (
        update(CheckoutSession)
        .where(*_open(), CheckoutSession.expires_at < ts)
        .values(expired_at=ts, updated_at=ts)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return int(res.rowcount or 0)


async def delete_unprocessed_before(session: AsyncSession, cutoff: datetime) -> int:
    stmt = (
        delete(CheckoutSession)
        .where(CheckoutSession.is_processed.is_(False), CheckoutSession.created_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return int(res.rowcount or 0)


async def count_sessions(session: AsyncSession, ts: datetime) -> Dict[str, int]:
    unprocessed = CheckoutSession.is_processed.is_(False)
    live = unprocessed & CheckoutSession.cancelled_at.is_(None) & CheckoutSession.expired_at.is_(None) & (CheckoutSession.expires_at > ts)
    stmt = select(
        func.count().filter(unprocessed).label("total_open"),
        func.count().filter(live).label("active"),
        func.count().filter(CheckoutSession.is_processed.is_(True)).label("processed"),
    ).select_from(CheckoutSession)
    row = (await session.execute(stmt)).one()
    total_open = int(row.total_open or 0)
    active = int(row.active or 0)
    return {
        "total_open": total_open,
        "active": active,
        "expired": total_open - active,
        "processed": int(row.processed or 0),
    }
