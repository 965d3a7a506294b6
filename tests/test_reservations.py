import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from checkout_core.catalog.repository import CatalogRepository
from checkout_core.common.utils import now
from checkout_core.reservations import repository as store
from checkout_core.reservations import services as guard
from checkout_core.schema.full_schema import ReservationStatus, StockReservation
from tests.conftest import url_prefix


async def _reserve(session_factory, user_id, items, ttl=15):
    async with session_factory() as session:
        async with session.begin():
            return await guard.reserve(session, user_id, items, ttl)


async def _available(session_factory, variant_id):
    async with session_factory() as session:
        return await guard.available(session, variant_id)


async def _insert_raw(session_factory, variant_id, qty, expires_in_minutes, status="ACTIVE", group="res_manual"):
    ts = now()
    async with session_factory() as session:
        async with session.begin():
            await store.insert_reservations(session, [{
                "reservation_group_id": group,
                "variant_id": variant_id,
                "quantity": qty,
                "user_id": "someone",
                "status": status,
                "reason": "checkout",
                "expires_at": ts + timedelta(minutes=expires_in_minutes),
                "created_at": ts,
            }])


@pytest.mark.asyncio
async def test_availability_ignores_expired_and_terminal_holds(session_factory, catalog_ids):
    lamp = catalog_ids["lamp"]
    await _insert_raw(session_factory, lamp, 2, 10)
    await _insert_raw(session_factory, lamp, 2, -1, group="res_stale")
    await _insert_raw(session_factory, lamp, 1, 10, status=ReservationStatus.RELEASED.value, group="res_done")

    assert await _available(session_factory, lamp) == 3


@pytest.mark.asyncio
async def test_availability_floors_at_zero_and_unknown_variant_is_zero(session_factory, catalog_ids):
    lamp = catalog_ids["lamp"]
    await _insert_raw(session_factory, lamp, 7, 10)

    assert await _available(session_factory, lamp) == 0
    assert await _available(session_factory, 999_999) == 0


@pytest.mark.asyncio
async def test_reserve_is_all_or_nothing(session_factory, catalog_ids):
    result = await _reserve(session_factory, "buyer-1", [
        {"variant_id": catalog_ids["lamp"], "quantity": 2},
        {"variant_id": catalog_ids["mug"], "quantity": 11},
    ])

    assert result.ok is False
    assert result.reservation_group_id is None
    assert [(s.variant_id, s.requested, s.available) for s in result.insufficient] == [(catalog_ids["mug"], 11, 10)]
    assert result.insufficient[0].product_title == "Ceramic Mug"

    async with session_factory() as session:
        res = await session.execute(select(func.count()).select_from(StockReservation))
        assert res.scalar_one() == 0


@pytest.mark.asyncio
async def test_reserve_merges_duplicate_lines(session_factory, catalog_ids):
    lamp = catalog_ids["lamp"]
    result = await _reserve(session_factory, "buyer-1", [
        {"variant_id": lamp, "quantity": 2},
        {"variant_id": lamp, "quantity": 2},
    ])

    assert result.ok is True
    assert result.reservation_group_id.startswith("res_")
    async with session_factory() as session:
        rows = await store.list_group(session, result.reservation_group_id)
    assert [(r.variant_id, r.quantity, r.status) for r in rows] == [(lamp, 4, "ACTIVE")]
    assert await _available(session_factory, lamp) == 1


@pytest.mark.asyncio
async def test_concurrent_reservations_never_oversell(session_factory, catalog_ids):
    lamp = catalog_ids["lamp"]

    results = await asyncio.gather(
        _reserve(session_factory, "buyer-1", [{"variant_id": lamp, "quantity": 3}]),
        _reserve(session_factory, "buyer-2", [{"variant_id": lamp, "quantity": 3}]),
    )

    winners = [r for r in results if r.ok]
    losers = [r for r in results if not r.ok]
    assert len(winners) == 1
    assert len(losers) == 1
    assert [(s.requested, s.available) for s in losers[0].insufficient] == [(3, 2)]
    assert await _available(session_factory, lamp) == 2


@pytest.mark.asyncio
async def test_many_small_reservations_stop_at_stock(session_factory, catalog_ids):
    lamp = catalog_ids["lamp"]

    results = await asyncio.gather(*[
        _reserve(session_factory, f"buyer-{i}", [{"variant_id": lamp, "quantity": 1}]) for i in range(8)
    ])

    assert sum(1 for r in results if r.ok) == 5
    assert await _available(session_factory, lamp) == 0


@pytest.mark.asyncio
async def test_release_and_complete_race_settles_once(session_factory, catalog_ids):
    reserved = await _reserve(session_factory, "buyer-1", [
        {"variant_id": catalog_ids["lamp"], "quantity": 1},
        {"variant_id": catalog_ids["mug"], "quantity": 2},
    ])
    group = reserved.reservation_group_id

    async def run(op):
        async with session_factory() as session:
            async with session.begin():
                return await op(session, group)

    released, completed = await asyncio.gather(run(guard.release), run(guard.complete))

    assert sorted([released.affected, completed.affected]) == [0, 2]
    async with session_factory() as session:
        rows = await store.list_group(session, group)
    statuses = {r.status for r in rows}
    assert len(statuses) == 1
    assert statuses <= {"RELEASED", "COMPLETED"}


@pytest.mark.asyncio
async def test_transitions_on_settled_group_are_noops(session_factory, catalog_ids):
    reserved = await _reserve(session_factory, "buyer-1", [{"variant_id": catalog_ids["lamp"], "quantity": 1}])
    group = reserved.reservation_group_id

    async with session_factory() as session:
        async with session.begin():
            first = await guard.complete(session, group)
            again = await guard.release(session, group)
            unknown = await guard.cancel(session, "res_does_not_exist")

    assert first.affected == 1
    assert again.settled_elsewhere
    assert unknown.affected == 0


@pytest.mark.asyncio
async def test_stock_availability_endpoint(ac_client, session_factory, catalog_ids):
    await _reserve(session_factory, "buyer-1", [{"variant_id": catalog_ids["lamp"], "quantity": 2}])

    resp = await ac_client.post(f"{url_prefix}/stock/availability",
                                json={"variant_ids": [catalog_ids["lamp"], 424242]})

    assert resp.status_code == 200
    items = {it["variant_id"]: it for it in resp.json()["data"]["items"]}
    assert items[catalog_ids["lamp"]]["available"] == 3
    assert items[catalog_ids["lamp"]]["exists"] is True
    assert items[424242] == {"variant_id": 424242, "available": 0, "price": None,
                             "discount_percent": None, "exists": False}


@pytest.mark.asyncio
async def test_expire_group_and_catalog_lookup(session_factory, catalog_ids):
    reserved = await _reserve(session_factory, "buyer-1", [{"variant_id": catalog_ids["mug"], "quantity": 4}])

    async with session_factory() as session:
        async with session.begin():
            expired = await guard.expire(session, reserved.reservation_group_id)
            info = await CatalogRepository().get_variant(session, catalog_ids["mug"])
            missing = await CatalogRepository().get_variant(session, 424242)

    assert expired.affected == 1
    assert info.stock == 10
    assert info.title == "Ceramic Mug"
    assert missing is None
    assert await _available(session_factory, catalog_ids["mug"]) == 10


@pytest.mark.asyncio
async def test_cancel_returns_stock_to_the_pool(session_factory, catalog_ids):
    mug = catalog_ids["mug"]
    reserved = await _reserve(session_factory, "buyer-1", [{"variant_id": mug, "quantity": 6}])
    assert await _available(session_factory, mug) == 4

    async with session_factory() as session:
        async with session.begin():
            cancelled = await guard.cancel(session, reserved.reservation_group_id)
            repeated = await guard.cancel(session, reserved.reservation_group_id)

    assert cancelled.affected == 1
    assert repeated.affected == 0
    async with session_factory() as session:
        rows = await store.list_group(session, reserved.reservation_group_id)
    assert [r.status for r in rows] == ["CANCELLED"]
    assert rows[0].released_at is not None
    assert await _available(session_factory, mug) == 10
