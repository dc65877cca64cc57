"""Shared test fixtures.

Every test gets a fresh SQLite database file, so no truncation is needed
between tests.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from streetxp.config import get_settings
from streetxp.database import close_db, create_all, get_session, init_db
from streetxp.db.models import User
from streetxp.dependencies import get_redis_dep
from streetxp.main import create_app
from streetxp.progression.events import event_bus


@pytest.fixture(autouse=True)
def _isolate_settings_and_bus():
    """Reset cached settings and in-process subscribers around each test."""
    get_settings.cache_clear()
    event_bus.clear()
    yield
    event_bus.clear()
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def database(tmp_path) -> AsyncGenerator[str, None]:
    """Initialize the engine on a per-test SQLite file and create the schema."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'street.db'}"
    await init_db(url)
    await create_all()
    yield url
    await close_db()


@pytest_asyncio.fixture
async def db_session(database: str) -> AsyncGenerator[AsyncSession, None]:
    """Get a direct database session for test setup and assertions."""
    async for session in get_session():
        yield session
        break


@pytest_asyncio.fixture
async def other_session(database: str) -> AsyncGenerator[AsyncSession, None]:
    """A second, independent session for concurrency tests."""
    async for session in get_session():
        yield session
        break


@pytest.fixture
def fake_redis() -> MagicMock:
    """Redis stand-in recording pub/sub publishes."""
    redis = MagicMock()
    redis.publish = AsyncMock(return_value=1)
    redis.ping = AsyncMock(return_value=True)
    return redis


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable[..., Awaitable[User]]:
    """Factory creating committed street users."""
    counter = {"n": 0}

    async def _make(city: str | None = "Austin", **fields) -> User:
        counter["n"] += 1
        user = User(
            email=fields.pop("email", f"agent{counter['n']}@example.com"),
            full_name=fields.pop("full_name", f"Agent {counter['n']}"),
            city=city,
            **fields,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest_asyncio.fixture
async def client(database: str, fake_redis: MagicMock) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against the app, sharing the per-test database."""
    app = create_app()

    async def _redis_override() -> AsyncGenerator[object, None]:
        yield fake_redis

    app.dependency_overrides[get_redis_dep] = _redis_override

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
