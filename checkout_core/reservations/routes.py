from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from checkout_core.common.constants import request_id_ctx
from checkout_core.common.utils import build_success, json_ok
from checkout_core.db.dependencies import get_session
from checkout_core.reservations.models import AvailabilityIn
from checkout_core.reservations.services import available_many

stock_router = APIRouter()


@stock_router.post("/availability")
async def stock_availability(request: Request, body: AvailabilityIn, session: AsyncSession = Depends(get_session)):
    catalog = request.app.state.catalog
    variants = await catalog.get_variants(session, body.variant_ids)
    available = await available_many(session, body.variant_ids, catalog=catalog)

    items = []
    for vid in sorted(available):
        info = variants.get(vid)
        items.append({
            "variant_id": vid,
            "available": available[vid],
            "price": str(info.price) if info else None,
            "discount_percent": str(info.discount_percent) if info else None,
            "exists": info is not None,
        })
    return json_ok(build_success({"items": items}, request_id=request_id_ctx.get()))
