from typing import Dict, Iterable, List, Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from checkout_core.catalog.models import PaymentMethodInfo, VariantInfo
from checkout_core.schema.full_schema import PaymentMethod, Product, ProductVariant


def _variant_stmt():
    return (
        select(
            ProductVariant.id, ProductVariant.product_id, ProductVariant.sku, ProductVariant.price,
            ProductVariant.stock, ProductVariant.discount_percent, Product.title,
        )
        .join(Product, Product.id == ProductVariant.product_id)
    )


def _to_info(row) -> VariantInfo:
    return VariantInfo(
        variant_id=int(row.id),
        product_id=int(row.product_id),
        title=row.title,
        sku=row.sku,
        price=row.price,
        stock=int(row.stock),
        discount_percent=row.discount_percent,
    )


class CatalogRepository:
    """Read access to the storefront catalog plus the on-hand stock decrement."""

    async def get_variant(self, session: AsyncSession, variant_id: int) -> Optional[VariantInfo]:
        res = await session.execute(_variant_stmt().where(ProductVariant.id == variant_id))
        row = res.one_or_none()
        return _to_info(row) if row else None

    async def get_variants(self, session: AsyncSession, variant_ids: Iterable[int], *, lock: bool = False) -> Dict[int, VariantInfo]:
        ids = sorted(set(int(v) for v in variant_ids))
        if not ids:
            return {}
        stmt = _variant_stmt().where(ProductVariant.id.in_(ids)).order_by(ProductVariant.id)
        if lock:
            # id order keeps concurrent checkouts from deadlocking on overlapping carts
            stmt = stmt.with_for_update(of=ProductVariant)
        res = await session.execute(stmt)
        return {int(r.id): _to_info(r) for r in res.all()}

    async def get_payment_method(self, session: AsyncSession, payment_method_id: int) -> Optional[PaymentMethodInfo]:
        res = await session.execute(select(PaymentMethod).where(PaymentMethod.id == payment_method_id))
        pm = res.scalar_one_or_none()
        if pm is None:
            return None
        return PaymentMethodInfo(id=pm.id, name=pm.name, discount_percent=pm.discount_percent, is_active=pm.is_active)

    async def decrement_stock(self, session: AsyncSession, variant_id: int, quantity: int) -> bool:
        stmt = (
            update(ProductVariant)
            .where(ProductVariant.id == variant_id, ProductVariant.stock >= quantity)
            .values(stock=ProductVariant.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        res = await session.execute(stmt)
        return (res.rowcount or 0) == 1

