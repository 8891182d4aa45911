"""
Pytest configuration and fixtures
"""

from typing import AsyncGenerator
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from core.config import Settings, default_source_limits
from ingestion.clients import build_source_clients
from ingestion.loaders.upsert_sink import UpsertSink
from ingestion.sync_service import SyncService
from models import Base
from tests.fakes import FakeApi

# In-memory database shared by every connection of one engine
TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture
def test_settings() -> Settings:
    """Credentials set, no request spacing, no error backoff"""
    limits = {
        name: source_limits.model_copy(update={"request_spacing_ms": 0})
        for name, source_limits in default_source_limits().items()
    }
    return Settings(
        DATABASE_URL=TEST_DATABASE_URL,
        RAWG_API_KEY="rawg-key",
        IGDB_CLIENT_ID="igdb-id",
        IGDB_CLIENT_SECRET="igdb-secret",
        TWITCH_CLIENT_ID="twitch-id",
        TWITCH_CLIENT_SECRET="twitch-secret",
        ERROR_BACKOFF_SECONDS=0.0,
        MAX_ERROR_BACKOFF_SECONDS=0.0,
        SOURCE_LIMITS=limits,
    )


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine"""
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


@pytest_asyncio.fixture(scope="function")
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with session_maker() as session:
        yield session


@pytest.fixture
def fake_api() -> FakeApi:
    return FakeApi()


@pytest_asyncio.fixture
async def http_client(fake_api) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_api)) as client:
        yield client


@pytest.fixture
def no_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def sync_service(db_session, http_client, test_settings, no_sleep) -> SyncService:
    return SyncService(db_session, http_client, test_settings, sleep=no_sleep)


@pytest.fixture
def source_clients(test_settings, http_client, no_sleep):
    return build_source_clients(test_settings, http_client, sleep=no_sleep)


@pytest.fixture
def sink(db_session) -> UpsertSink:
    return UpsertSink(db_session)
