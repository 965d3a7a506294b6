import asyncio
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from checkout_core.api import cur_version, version_prefix
from checkout_core.api.routers import internal_routers, public_routers
from checkout_core.background_workers.expiration_sweeper import ExpirationSweeper
from checkout_core.catalog.repository import CatalogRepository
from checkout_core.checkout.services import CheckoutSessionManager
from checkout_core.common.custom_exceptions import register_all_exceptions
from checkout_core.common.logging_setup import get_logger, setup_logging, stop_logging
from checkout_core.config.settings import config_settings
from checkout_core.db.connection import async_engine, async_session
from checkout_core.metrics.custom_instrumentator import instrumentator
from checkout_core.middlewares.auth_middleware import AuthenticationMiddleware
from checkout_core.middlewares.request_id_middleware import RequestIdMiddleware
from checkout_core.orders.services import OrderFinalizer
from checkout_core.payments.provider import MercadoPagoProvider, PaymentProvider
from checkout_core.payments.reconciler import PaymentReconciler
from checkout_core.payments.webhooks import payment_webhook
from checkout_core.shipping.services import ShippingCalculator

logger = get_logger("checkout_core.main")


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    setup_logging()
    sweeper_task = None
    if app.state.sweeper_enabled:
        sweeper_task = asyncio.create_task(app.state.sweeper.run())

    try:
        yield
    finally:
        # new requests have stopped by the time shutdown runs
        if sweeper_task is not None:
            app.state.sweeper.stop()
            await sweeper_task
        if app.state.owns_engine:
            await async_engine.dispose()
        stop_logging()


def create_app(
    *,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    payment_provider: Optional[PaymentProvider] = None,
    catalog: Optional[CatalogRepository] = None,
    shipping: Optional[ShippingCalculator] = None,
    sweeper_enabled: Optional[bool] = None,
    instrument: bool = True,
):
    app = FastAPI(
        title="checkout-core",
        version=cur_version,
        lifespan=app_lifespan)

    owns_engine = session_factory is None
    if session_factory is None:
        session_factory = async_session

    catalog = catalog or CatalogRepository()
    provider = payment_provider or MercadoPagoProvider()

    app.state.session_factory = session_factory
    app.state.owns_engine = owns_engine
    app.state.catalog = catalog
    app.state.payment_provider = provider
    app.state.checkout_manager = CheckoutSessionManager(
        session_factory, provider, catalog=catalog, shipping=shipping or ShippingCalculator(),
    )
    app.state.reconciler = PaymentReconciler(session_factory, provider, finalizer=OrderFinalizer(catalog))
    app.state.sweeper = ExpirationSweeper(session_factory)
    app.state.sweeper_enabled = config_settings.SWEEPER_ENABLED if sweeper_enabled is None else sweeper_enabled

    app.include_router(public_routers)
    app.include_router(internal_routers)

    app.add_api_route(config_settings.PAYMENT_WEBHOOK_PATH, payment_webhook, methods=["POST"], name="payment_webhook")

    app.add_middleware(AuthenticationMiddleware, paths=[f"{version_prefix}/health",
                                                        f"{version_prefix}/stock",
                                                        f"{version_prefix}/cron",
                                                        config_settings.PAYMENT_WEBHOOK_PATH,
                                                        "/metrics", "/docs", "/openapi.json"])
    app.add_middleware(RequestIdMiddleware)
    register_all_exceptions(app)
    if instrument:
        instrumentator.instrument(app).expose(app, endpoint="/metrics")

    return app


app = create_app()
