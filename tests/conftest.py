"""
Shared test fixtures for the authcore test suite.

Async throughout (aiosqlite + AsyncSession); the database is an in-memory
SQLite shared through a StaticPool and rebuilt for every test.
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest

# Ensure project root is importable
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Override environment BEFORE importing application modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CORS_ORIGINS"] = '["*"]'
os.environ["JWT_ACCESS_SECRET"] = "test-access-secret-0123456789"
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret-0123456789"
os.environ["JWT_ANONYMOUS_SECRET"] = "test-anonymous-secret-0123456789"
os.environ["OTP_TEST_MODE"] = "true"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["DB_RETRY_BASE_DELAY_MS"] = "1"

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from authcore.core.config import Settings
from authcore.core.exceptions import DeliveryFailed
from authcore.db.base import Base
from authcore.main import create_app
from authcore.schemas.token import AuthResponse
from authcore.services.container import AuthServices, build_auth_services

test_engine = create_async_engine(
    "sqlite+aiosqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def setup_db():
    """Create all tables before usage and drop after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


# ── Collaborator doubles ────────────────────────────────────────────
class FakeClock:
    """Starts at the real time so signed tokens stay valid; advance() moves it."""

    def __init__(self) -> None:
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingEventSink:
    def __init__(self) -> None:
        self.events: list = []

    def publish(self, event) -> None:
        self.events.append(event)

    @property
    def names(self) -> list[str]:
        return [event.name for event in self.events]


class FakeSmsSender:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail = False

    async def send(self, phone: str, message: str) -> None:
        if self.fail:
            raise DeliveryFailed()
        self.sent.append((phone, message))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def events() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture
def sms() -> FakeSmsSender:
    return FakeSmsSender()


@pytest.fixture
def settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


@pytest.fixture
def make_services(clock, events, sms):
    """Build services from a settings object (overrides via model_copy)."""

    def _make(settings: Settings) -> AuthServices:
        return build_auth_services(
            settings, TestingSessionLocal, sms=sms, events=events, clock=clock
        )

    return _make


@pytest.fixture
def services(make_services, settings) -> AuthServices:
    return make_services(settings)


@pytest.fixture
def login(services):
    """Run the OTP request/verify round trip for ``phone``."""

    async def _login(phone: str = "+79991234567") -> AuthResponse:
        issued = await services.otp_issuer.request_otp(phone, ip_address="10.0.0.1", user_agent="pytest")
        return await services.otp_verifier.verify_otp(
            phone, issued.code, ip_address="10.0.0.1", user_agent="pytest"
        )

    return _login


@pytest.fixture
def app_factory(clock, events, sms):
    """Build an app on the test database; ``sms_sender`` replaces the fake sender."""

    def _make(settings: Settings, sms_sender=None) -> FastAPI:
        return create_app(
            settings,
            session_factory=TestingSessionLocal,
            sms=sms_sender or sms,
            events=events,
            clock=clock,
        )

    return _make


@pytest.fixture
async def async_client(app_factory, settings) -> AsyncGenerator[AsyncClient, None]:
    """Return a httpx AsyncClient wired to a freshly built app."""
    transport = ASGITransport(app=app_factory(settings))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Return a raw database session for direct queries in tests."""
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def fetch_all():
    """Query rows through a short-lived session so nothing stale is cached."""

    async def _fetch(model, *criteria):
        async with TestingSessionLocal() as session:
            result = await session.execute(select(model).where(*criteria))
            return list(result.scalars().all())

    return _fetch
