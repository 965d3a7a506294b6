import os

os.environ["ENV"] = "dev"
os.environ["SWEEPER_ENABLED"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["CRON_AUTH_TOKEN"] = "cron-test-token"

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient
from sqlmodel import SQLModel

from checkout_core.auth.utils import create_access_token
from checkout_core.checkout.services import CheckoutSessionManager
from checkout_core.db.connection import build_engine, build_session_factory
from checkout_core.main import create_app
from checkout_core.payments.reconciler import PaymentReconciler
from checkout_core.schema import full_schema  # noqa: F401
from tests.helpers import FakePaymentProvider, seed_catalog

url_prefix = "/api/v1"


@pytest.fixture
async def engine(tmp_path):
    eng = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'checkout.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def catalog_ids(session_factory):
    return await seed_catalog(session_factory)


@pytest.fixture
def provider():
    return FakePaymentProvider()


@pytest.fixture
def manager(session_factory, provider):
    return CheckoutSessionManager(session_factory, provider)


@pytest.fixture
def reconciler(session_factory, provider):
    return PaymentReconciler(session_factory, provider)


@pytest.fixture
def app(session_factory, provider):
    return create_app(session_factory=session_factory, payment_provider=provider,
                      sweeper_enabled=False, instrument=False)


@pytest.fixture
async def ac_client(app):
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture
def buyer_headers():
    return auth_headers("buyer-1")


@pytest.fixture
def other_headers():
    return auth_headers("buyer-2")
