from datetime import datetime
from typing import Optional
from uuid import UUID
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from checkout_core.schema.full_schema import OrderStatus, Orders


async def get_by_transaction_id(session: AsyncSession, transaction_id: str) -> Optional[Orders]:
    res = await session.execute(select(Orders).where(Orders.transaction_id == transaction_id))
    return res.scalar_one_or_none()


async def get_by_checkout_token(session: AsyncSession, token: str) -> Optional[Orders]:
    res = await session.execute(select(Orders).where(Orders.checkout_token == token))
    return res.scalar_one_or_none()


async def get_by_public_id(session: AsyncSession, public_id: UUID) -> Optional[Orders]:
    res = await session.execute(select(Orders).where(Orders.public_id == public_id))
    return res.scalar_one_or_none()


async def mark_delivered(session: AsyncSession, order_id: int, ts: datetime) -> int:
    stmt = (
        update(Orders)
        .where(
            Orders.id == order_id,
            Orders.is_paid.is_(True),
            Orders.order_status == OrderStatus.PAID.value,
        )
        .values(order_status=OrderStatus.DELIVERED.value, delivered_at=ts, updated_at=ts)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return int(res.rowcount or 0)
