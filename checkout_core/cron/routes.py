from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, Request, status
from checkout_core.auth.dependencies import require_cron_token
from checkout_core.common.constants import request_id_ctx
from checkout_core.common.utils import build_success, json_ok
from checkout_core.orders import repository as orders_repo
from checkout_core.orders.services import mark_order_delivered

cron_router = APIRouter(dependencies=[Depends(require_cron_token)])


@cron_router.post("/sweep")
async def run_sweep(request: Request):
    result = await request.app.state.sweeper.sweep()
    return json_ok(build_success(result.model_dump(), request_id=request_id_ctx.get()))


@cron_router.post("/purge")
async def run_purge(request: Request, retention_days: Optional[int] = None):
    if retention_days is not None and retention_days < 1:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="retention_days must be >= 1")
    result = await request.app.state.sweeper.purge_terminal(retention_days)
    return json_ok(build_success(result.model_dump(), request_id=request_id_ctx.get()))


@cron_router.get("/session-stats")
async def session_stats(request: Request):
    stats = await request.app.state.sweeper.session_stats()
    return json_ok(build_success(stats, request_id=request_id_ctx.get()))


@cron_router.post("/orders/{order_public_id}/delivered")
async def order_delivered(request: Request, order_public_id: UUID):
    async with request.app.state.session_factory() as session:
        async with session.begin():
            order = await orders_repo.get_by_public_id(session, order_public_id)
            if order is None:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="order not found")
            moved = await mark_order_delivered(session, order.id)
    if not moved:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="order is not in paid state")
    return json_ok(build_success({"order_public_id": str(order_public_id), "order_status": "delivered"},
                                 request_id=request_id_ctx.get()))
