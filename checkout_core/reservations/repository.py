from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy import case, delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from checkout_core.schema.full_schema import (
    ReservationStatus, StockReservation, TERMINAL_RESERVATION_STATUSES,
)

_ACTIVE = ReservationStatus.ACTIVE.value


def _active_unexpired(ts: datetime):
    return (StockReservation.status == _ACTIVE) & (StockReservation.expires_at > ts)


async def reserved_quantities(session: AsyncSession, variant_ids: Iterable[int], ts: datetime,
                              exclude_group: Optional[str] = None) -> Dict[int, int]:
    """Sum of ACTIVE, unexpired reservation quantities per variant."""
    ids = list(variant_ids)
    if not ids:
        return {}
    reserved_expr = func.coalesce(func.sum(case((_active_unexpired(ts), StockReservation.quantity), else_=0)), 0).label("reserved_qty")
    stmt = (
        select(StockReservation.variant_id, reserved_expr)
        .where(StockReservation.variant_id.in_(ids), StockReservation.status == _ACTIVE)
        .group_by(StockReservation.variant_id)
    )
    if exclude_group is not None:
        stmt = stmt.where(StockReservation.reservation_group_id != exclude_group)
    res = await session.execute(stmt)
    out = {int(v): 0 for v in ids}
    for r in res.all():
        out[int(r.variant_id)] = int(r.reserved_qty)
    return out


async def insert_reservations(session: AsyncSession, rows: List[Dict[str, Any]]) -> None:
    if not rows:
        return
    await session.execute(insert(StockReservation), rows)


async def list_group(session: AsyncSession, group_id: str) -> List[StockReservation]:
    res = await session.execute(
        select(StockReservation)
        .where(StockReservation.reservation_group_id == group_id)
        .order_by(StockReservation.variant_id)
    )
    return list(res.scalars().all())


async def transition_group(session: AsyncSession, group_id: str, to_status: ReservationStatus, ts: datetime) -> int:
    """ACTIVE -> terminal for every row of the group. Returns the number of rows moved."""
    values: Dict[str, Any] = {"status": to_status.value}
    if to_status == ReservationStatus.COMPLETED:
        values["completed_at"] = ts
    else:
        values["released_at"] = ts
    stmt = (
        update(StockReservation)
        .where(StockReservation.reservation_group_id == group_id, StockReservation.status == _ACTIVE)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return int(res.rowcount or 0)


async def expire_overdue(session: AsyncSession, ts: datetime) -> int:
    stmt = (
        update(StockReservation)
        .where(StockReservation.status == _ACTIVE, StockReservation.expires_at < ts)
        .values(status=ReservationStatus.EXPIRED.value, released_at=ts)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return int(res.rowcount or 0)


async def delete_terminal_before(session: AsyncSession, cutoff: datetime) -> int:
    stmt = (
        delete(StockReservation)
        .where(StockReservation.status.in_(TERMINAL_RESERVATION_STATUSES), StockReservation.created_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return int(res.rowcount or 0)
