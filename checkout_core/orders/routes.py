from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from checkout_core.auth.dependencies import get_current_user
from checkout_core.common.constants import request_id_ctx
from checkout_core.common.utils import build_success, json_ok
from checkout_core.db.dependencies import get_session
from checkout_core.orders.services import get_order_status

orders_router = APIRouter()


@orders_router.get("/{order_public_id}/status")
async def order_status(order_public_id: UUID, user_id: str = Depends(get_current_user),
                       session: AsyncSession = Depends(get_session)):
    view = await get_order_status(session, user_id, order_public_id)
    if view is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="order not found")
    return json_ok(build_success(view.model_dump(mode="json"), request_id=request_id_ctx.get()))
