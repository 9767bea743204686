"""Shared test fixtures.

Tests run against SQLite through aiosqlite with the schema built from the
ORM metadata. Redis is replaced by an AsyncMock so published events can be
inspected.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vitality.config import Settings
from vitality.database import close_db, get_engine, get_session_factory, init_db
from vitality.db.models import Base, User
from vitality.main import create_app
from vitality.progress.engine import ProgressEngine
from vitality.progress.events import EventPublisher
from vitality.progress.seed import seed_badges

MEMORY_URL = "sqlite+aiosqlite://"


class FakeClock:
    """Settable UTC clock for the engine."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: int = 0, hours: int = 0) -> datetime:
        self.now += timedelta(days=days, hours=hours)
        return self.now


async def _create_schema(url: str) -> async_sessionmaker[AsyncSession]:
    await init_db(url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return get_session_factory()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url=MEMORY_URL,
        log_format="console",
        conflict_max_retries=3,
        ledger_retention_days=90,
    )


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh in-memory database per test."""
    factory = await _create_schema(MEMORY_URL)
    yield factory
    await close_db()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """File-backed database, for tests that need truly separate connections."""
    factory = await _create_schema(f"sqlite+aiosqlite:///{tmp_path / 'progress.db'}")
    yield factory
    await close_db()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Direct database session for setup and assertions."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def redis_mock() -> AsyncMock:
    redis = AsyncMock()
    redis.publish = AsyncMock(return_value=1)
    return redis


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc))  # Monday


@pytest.fixture
def progress_engine(session_factory, redis_mock, test_settings, clock) -> ProgressEngine:
    return ProgressEngine(
        session_factory,
        publisher=EventPublisher(redis_mock, test_settings.events_channel),
        settings=test_settings,
        clock=clock,
    )


@pytest_asyncio.fixture
async def make_user(db_session: AsyncSession):
    """Factory: create a user with a given status and creation time."""
    counter = {"n": 0}

    async def _make(
        display_name: str | None = None,
        account_status: str = "active",
        created_at: datetime | None = None,
    ) -> User:
        counter["n"] += 1
        user = User(
            display_name=display_name or f"user{counter['n']}",
            account_status=account_status,
            created_at=created_at or datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=counter["n"]),
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest_asyncio.fixture
async def seeded_badges(db_session: AsyncSession) -> int:
    return await seed_badges(db_session)


@pytest_asyncio.fixture
async def client(progress_engine: ProgressEngine) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, wired to the test engine."""
    app = create_app()
    app.state.progress_engine = progress_engine
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
