from fastapi import APIRouter
from checkout_core.api import version_prefix
from checkout_core.checkout.routes import checkout_router
from checkout_core.common.routes import home_router
from checkout_core.cron.routes import cron_router
from checkout_core.orders.routes import orders_router
from checkout_core.reservations.routes import stock_router


public_routers = APIRouter(prefix=version_prefix)

public_routers.include_router(checkout_router, prefix="/checkout", tags=["checkout"])
public_routers.include_router(orders_router, prefix="/orders", tags=["orders"])
public_routers.include_router(stock_router, prefix="/stock", tags=["stock"])
public_routers.include_router(home_router, tags=["home"])

#--------------------------------------------------------------------------------------------------------

internal_routers = APIRouter(prefix=f"{version_prefix}/cron", tags=["cron"])

internal_routers.include_router(cron_router)
