from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from uuid6 import uuid7
from checkout_core.catalog.repository import CatalogRepository
from checkout_core.common import logger
from checkout_core.common.custom_exceptions import InternalStoreError
from checkout_core.common.utils import now
from checkout_core.metrics.custom_instrumentator import reservation_attempts
from checkout_core.reservations import repository as store
from checkout_core.reservations.models import ReservationLine, ReserveResult, Shortfall, TransitionResult
from checkout_core.schema.full_schema import ReservationStatus

_default_catalog = CatalogRepository()


# ---------------------------------------------------------------- availability

async def available_many(session: AsyncSession, variant_ids: Iterable[int],
                         catalog: Optional[CatalogRepository] = None,
                         ts: Optional[datetime] = None) -> Dict[int, int]:
    """On-hand stock minus live reservations, floored at zero. Unknown variants report 0."""
    catalog = catalog or _default_catalog
    ids = sorted(set(int(v) for v in variant_ids))
    ts = ts or now()
    variants = await catalog.get_variants(session, ids)
    reserved = await store.reserved_quantities(session, ids, ts)
    out: Dict[int, int] = {}
    for vid in ids:
        info = variants.get(vid)
        if info is None:
            out[vid] = 0
            continue
        out[vid] = max(0, info.stock - reserved.get(vid, 0))
    return out


async def available(session: AsyncSession, variant_id: int,
                    catalog: Optional[CatalogRepository] = None) -> int:
    res = await available_many(session, [variant_id], catalog=catalog)
    return res[int(variant_id)]


# ---------------------------------------------------------------- guard

def merge_lines(items: Sequence) -> "OrderedDict[int, int]":
    """Collapse duplicate variant lines; keeps first-seen order."""
    merged: "OrderedDict[int, int]" = OrderedDict()
    for it in items:
        if isinstance(it, ReservationLine):
            line = it
        elif isinstance(it, dict):
            line = ReservationLine.model_validate(it)
        else:
            line = ReservationLine(variant_id=it.variant_id, quantity=it.quantity)
        merged[line.variant_id] = merged.get(line.variant_id, 0) + line.quantity
    return merged


def new_group_id() -> str:
    return f"res_{uuid7().hex}"


async def reserve(session: AsyncSession, user_id: str, items: Sequence, ttl_minutes: int,
                  reason: str = "checkout", reservation_group_id: Optional[str] = None,
                  order_key: Optional[str] = None,
                  catalog: Optional[CatalogRepository] = None) -> ReserveResult:
    """Hold stock for every line or for none, inside the caller's transaction.

    Variant rows are locked in id order before availability is read, so two
    overlapping checkouts serialize on the first shared variant. A shortfall is
    a normal outcome (ok=False) and nothing is written.
    """
    catalog = catalog or _default_catalog
    merged = merge_lines(items)
    group_id = reservation_group_id or new_group_id()
    ts = now()

    try:
        variants = await catalog.get_variants(session, merged.keys(), lock=True)
        reserved = await store.reserved_quantities(session, merged.keys(), ts)

        shortfalls: List[Shortfall] = []
        for vid, qty in merged.items():
            info = variants.get(vid)
            avail = max(0, info.stock - reserved.get(vid, 0)) if info else 0
            if qty > avail:
                shortfalls.append(Shortfall(
                    variant_id=vid,
                    product_title=info.title if info else None,
                    requested=qty,
                    available=avail,
                ))

        if shortfalls:
            reservation_attempts.labels(outcome="insufficient").inc()
            logger.info(
                "reservation.reserve.insufficient",
                extra={"user_id": user_id, "shortfalls": [s.model_dump() for s in shortfalls]},
            )
            return ReserveResult(ok=False, insufficient=shortfalls)

        expires_at = ts + timedelta(minutes=ttl_minutes)
        rows = [
            {
                "reservation_group_id": group_id,
                "variant_id": vid,
                "quantity": qty,
                "user_id": str(user_id),
                "status": ReservationStatus.ACTIVE.value,
                "reason": reason,
                "order_key": order_key,
                "expires_at": expires_at,
                "created_at": ts,
            }
            for vid, qty in merged.items()
        ]
        await store.insert_reservations(session, rows)
    except SQLAlchemyError as exc:
        reservation_attempts.labels(outcome="error").inc()
        logger.exception("reservation.reserve.store_error", extra={"user_id": user_id})
        raise InternalStoreError("could not reserve stock") from exc

    reservation_attempts.labels(outcome="reserved").inc()
    logger.info(
        "reservation.reserve.ok",
        extra={"reservation_group_id": group_id, "lines": len(rows), "expires_at": expires_at},
    )
    return ReserveResult(ok=True, reservation_group_id=group_id, expires_at=expires_at)


async def _transition(session: AsyncSession, group_id: str, to_status: ReservationStatus) -> TransitionResult:
    try:
        affected = await store.transition_group(session, group_id, to_status, now())
    except SQLAlchemyError as exc:
        raise InternalStoreError(f"could not move reservations to {to_status.value}") from exc
    if affected == 0:
        logger.debug("reservation.transition.noop", extra={"reservation_group_id": group_id, "to": to_status.value})
    return TransitionResult(affected=affected)


async def release(session: AsyncSession, group_id: str) -> TransitionResult:
    return await _transition(session, group_id, ReservationStatus.RELEASED)


async def complete(session: AsyncSession, group_id: str) -> TransitionResult:
    return await _transition(session, group_id, ReservationStatus.COMPLETED)


async def cancel(session: AsyncSession, group_id: str) -> TransitionResult:
    return await _transition(session, group_id, ReservationStatus.CANCELLED)


async def expire(session: AsyncSession, group_id: str) -> TransitionResult:
    return await _transition(session, group_id, ReservationStatus.EXPIRED)
