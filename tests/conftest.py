"""
Shared test fixtures.

Every repository runs against an in-memory SQLite database
(aiosqlite) shared across sessions through a StaticPool.
"""

from datetime import datetime

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core.clock import MockClock
from storage.database import create_schema


@pytest.fixture
def clock():
    """Mock clock frozen at 2024-01-01 10:00 UTC."""
    return MockClock(datetime(2024, 1, 1, 10, 0, 0))


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, autoflush=False, expire_on_commit=False)


class UnreachableDatabase:
    """Session factory whose sessions fail to open, like a refused connection."""

    def __init__(self, error: Exception = None):
        self.error = error or OSError("Connection refused")
        self.attempts = 0

    def __call__(self):
        return self

    async def __aenter__(self):
        self.attempts += 1
        raise self.error

    async def __aexit__(self, exc_type, exc, tb):
        return False


@pytest.fixture
def unreachable_db():
    return UnreachableDatabase()
