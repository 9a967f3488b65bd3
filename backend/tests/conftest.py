"""Shared fixtures for FlightPay tests.

- AnyIO is the async runner (@pytest.mark.anyio, asyncio backend).
- The payment store runs on an in-memory aiosqlite database per test.
- Gateway HTTP is mocked with respx inside each test.
"""
from typing import AsyncGenerator, List

import httpx
import pytest
from httpx import ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from flightpay.config import Settings
from flightpay.db.init_db import create_session_factory, initialize_database
from flightpay.main import create_app
from flightpay.models.payments import PaymentRecord
from flightpay.services.callback_service import CallbackProcessor
from flightpay.services.payment_lifecycle import PaymentLifecycle
from flightpay.services.payment_store import SqlAlchemyPaymentStore
from flightpay.services.paymob_client import PaymobClient

from .helpers import HMAC_SECRET, IFRAME_ID, INTEGRATION_ID, PAYMOB_BASE_URL


class RecordingSleep:
    """Stands in for asyncio.sleep and records requested delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class PaidRecorder:
    """on_paid hook that remembers every record it was called with."""

    def __init__(self) -> None:
        self.records: List[PaymentRecord] = []

    async def __call__(self, record: PaymentRecord) -> None:
        self.records.append(record)


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Force pytest-anyio to use asyncio event loop."""

    return "asyncio"


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        paymob_mode="test",
        paymob_test_api_key="test_api_key",
        paymob_test_integration_id=INTEGRATION_ID,
        paymob_test_iframe_id=IFRAME_ID,
        paymob_test_hmac_secret=HMAC_SECRET,
        paymob_base_url=PAYMOB_BASE_URL,
        reconciliation_enabled=False,
    )


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def paid_recorder() -> PaidRecorder:
    return PaidRecorder()


@pytest.fixture
async def store() -> AsyncGenerator[SqlAlchemyPaymentStore, None]:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await initialize_database(engine)
    try:
        yield SqlAlchemyPaymentStore(create_session_factory(engine))
    finally:
        await engine.dispose()


@pytest.fixture
async def paymob_client(
    test_settings: Settings, recording_sleep: RecordingSleep
) -> AsyncGenerator[PaymobClient, None]:
    client = PaymobClient(test_settings, sleep=recording_sleep)
    try:
        yield client
    finally:
        await client.close()


@pytest.fixture
def lifecycle(store: SqlAlchemyPaymentStore, paymob_client: PaymobClient, paid_recorder: PaidRecorder) -> PaymentLifecycle:
    return PaymentLifecycle(store, client=paymob_client, on_paid=paid_recorder)


@pytest.fixture
def processor(store: SqlAlchemyPaymentStore, lifecycle: PaymentLifecycle) -> CallbackProcessor:
    return CallbackProcessor(store, lifecycle, HMAC_SECRET)


@pytest.fixture
async def async_client(
    test_settings: Settings,
    paymob_client: PaymobClient,
    store: SqlAlchemyPaymentStore,
    paid_recorder: PaidRecorder,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client bound to a fully started app over the test store and gateway client."""
    app = create_app(settings=test_settings, client=paymob_client, store=store, on_paid=paid_recorder)
    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
