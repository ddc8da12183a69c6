"""
Storage - Async Database Engine.

============================================================
PURPOSE
============================================================
Owns the async SQLAlchemy engine and session factory used by
every repository in the pipeline.

- Engine creation from environment configuration
- Transactional session scopes
- Schema creation for development and tests
- Connection verification

============================================================
CONFIGURATION
============================================================
DATABASE_URL   async URL, e.g. postgresql+asyncpg://... or
               sqlite+aiosqlite:///chat.db
DATABASE_ECHO  log SQL statements (true/false)

============================================================
"""

import os
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from storage.models.base import Base
from storage.repositories.exceptions import ConnectionError, TransactionError


logger = logging.getLogger(__name__)


DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///chat_pipeline.db"


# =============================================================
# CONFIGURATION
# =============================================================

@dataclass
class DatabaseConfig:
    """Database connection configuration."""

    url: str = DEFAULT_DATABASE_URL
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 20
    pool_recycle: int = 1800

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Load configuration from environment (and .env file)."""
        load_dotenv()

        url = os.getenv("DATABASE_URL")
        if not url:
            url = DEFAULT_DATABASE_URL
            logger.warning(f"DATABASE_URL not set, using default: {url}")
        elif url.startswith("postgresql://"):
            # Repositories are async-only
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

        return cls(
            url=url,
            echo=os.getenv("DATABASE_ECHO", "false").lower() == "true",
            pool_size=int(os.getenv("DATABASE_POOL_SIZE", "10")),
            max_overflow=int(os.getenv("DATABASE_MAX_OVERFLOW", "20")),
        )

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")


# =============================================================
# DATABASE
# =============================================================

class Database:
    """
    Async engine plus session factory.

    Usage:
        db = Database.from_config(DatabaseConfig.from_env())
        async with db.session_scope() as session:
            repo = ViolationRepository(session)
            ...
    """

    def __init__(self, engine: AsyncEngine):
        self._engine = engine
        self._session_factory = async_sessionmaker(
            bind=engine,
            autoflush=False,
            expire_on_commit=False,
        )

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> "Database":
        """Create the engine described by config."""
        logger.info(f"Creating database engine for: {config.url.split('@')[-1]}")

        kwargs = {"echo": config.echo}
        if not config.is_sqlite:
            kwargs.update(
                pool_size=config.pool_size,
                max_overflow=config.max_overflow,
                pool_recycle=config.pool_recycle,
                pool_pre_ping=True,
            )

        return cls(create_async_engine(config.url, **kwargs))

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker:
        return self._session_factory

    def session(self) -> AsyncSession:
        """
        Get a new session.

        Caller is responsible for commit/close. Prefer session_scope().
        """
        return self._session_factory()

    @asynccontextmanager
    async def session_scope(self) -> AsyncIterator[AsyncSession]:
        """
        Transactional session scope.

        Commits if the block completes, rolls back on ANY exception
        and re-raises it.
        """
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Database transaction failed, rolling back: {e}")
            await session.rollback()
            raise
        except BaseException:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def verify_connection(self) -> bool:
        """
        Verify database connection is working.

        Raises:
            ConnectionError: If the database cannot be reached
        """
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("Database connection verified successfully")
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database connection failed: {e}")
            raise ConnectionError(
                repository_name="Database",
                operation="verify_connection",
                original_error=str(e),
            ) from e

    async def dispose(self) -> None:
        """Close all pooled connections."""
        await self._engine.dispose()
        logger.info("Database engine disposed")


# =============================================================
# SCHEMA MANAGEMENT
# =============================================================

def _import_models() -> None:
    # Registers every domain table on Base.metadata
    import moderation.models  # noqa: F401
    import analytics.models  # noqa: F401
    import engagement.models  # noqa: F401
    import performance.models  # noqa: F401


async def create_schema(engine: AsyncEngine) -> None:
    """
    Create all tables defined in ORM models.

    Raises:
        TransactionError: If table creation fails
    """
    _import_models()
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Schema ready: {len(Base.metadata.tables)} tables")
    except SQLAlchemyError as e:
        logger.error(f"Schema creation failed: {e}")
        raise TransactionError(
            repository_name="Database",
            operation="create_schema",
            phase="create_all",
            original_error=str(e),
        ) from e


async def drop_schema(engine: AsyncEngine) -> None:
    """Drop all tables. Development and tests only."""
    _import_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    logger.warning("All tables dropped")

