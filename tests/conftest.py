"""Pytest fixtures for settlement engine tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from settlement_engine.api.app import create_app
from settlement_engine.config import PollerConfig, Settings
from settlement_engine.database import make_session_factory
from settlement_engine.gateways import AchStubGateway, CardStubGateway, CommerceStubClient
from settlement_engine.models import Base
from settlement_engine.services.payloads import CommerceOrder
from settlement_engine.services.payment_store import PaymentStore

# In-memory SQLite shared across sessions through a single static connection
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Monday, 2025-03-03 12:00 UTC
START = datetime(2025, 3, 3, 12, 0, tzinfo=timezone.utc)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        self.current += delta or timedelta(**kwargs)
        return self.current


def make_settings(**overrides: Any) -> Settings:
    """Fully configured settings that never touch the environment."""
    settings = Settings(
        database_url=TEST_DATABASE_URL,
        auto_create_schema=False,
        host="127.0.0.1",
        port=8081,
        debug=False,
        log_level="INFO",
        store_name="Test Store",
        ach_gateway_tags=("ACH Bank Transfer",),
        card_gateway_tags=("Credit/Debit Card",),
        ach_client_id="client-1",
        ach_api_password="secret",
        card_api_key="key",
        card_api_secret="secret",
        commerce_store_domain="shop.example.test",
        commerce_access_token="token",
        poller_enabled=False,
        poll_interval_seconds=60,
        poll_windows="08:30,13:30,16:30",
        poll_timezone="UTC",
        hold_hours=24,
        gateway_timeout_seconds=15,
        ach_callback_enforces_hold=False,
    )
    return replace(settings, **overrides)


@pytest_asyncio.fixture(scope="function")
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> PaymentStore:
    return PaymentStore(session_factory)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def ach_gateway() -> AchStubGateway:
    return AchStubGateway()


@pytest.fixture
def card_gateway() -> CardStubGateway:
    return CardStubGateway()


@pytest.fixture
def commerce() -> CommerceStubClient:
    return CommerceStubClient()


@pytest.fixture
def poller_config() -> PollerConfig:
    return PollerConfig()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def order_factory() -> Callable[..., CommerceOrder]:
    """Build commerce order payloads; keyword overrides replace top-level fields."""

    def _make(**overrides: Any) -> CommerceOrder:
        payload: dict[str, Any] = {
            "id": 1001,
            "name": "#1001",
            "email": "jane@example.com",
            "total_price": "49.99",
            "currency": "USD",
            "payment_gateway_names": ["ACH Bank Transfer"],
            "billing_address": {
                "first_name": "Jane",
                "last_name": "Doe",
                "phone": "+1 (555) 010-2000",
                "address1": "1 Main St",
                "city": "Austin",
                "province": "TX",
                "zip": "73301",
                "country_code": "US",
            },
            "customer": {"first_name": "Janet", "last_name": "Doe", "email": "janet@example.com"},
        }
        payload.update(overrides)
        return CommerceOrder.model_validate(payload)

    return _make


@pytest.fixture
def app(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    ach_gateway: AchStubGateway,
    card_gateway: CardStubGateway,
    commerce: CommerceStubClient,
    clock: ManualClock,
) -> FastAPI:
    return create_app(
        settings,
        session_factory=session_factory,
        ach=ach_gateway,
        card=card_gateway,
        commerce=commerce,
        clock=clock,
        start_poller=False,
    )


@pytest_asyncio.fixture(scope="function")
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app without a network hop."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
