"""
Tests for the storage layer: engine configuration, session scopes,
schema management and repository error wrapping.
"""

import pytest
import pytest_asyncio
from sqlalchemy import text

from moderation.models import ViolationRecord
from moderation.repository import ViolationRepository
from storage import Database, DatabaseConfig, create_schema, drop_schema
from storage.repositories.exceptions import ConcurrencyConflictError, DuplicateRecordError


class TestDatabaseConfig:

    def test_defaults_without_env(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setattr("storage.database.load_dotenv", lambda: None)

        config = DatabaseConfig.from_env()

        assert config.url == "sqlite+aiosqlite:///chat_pipeline.db"
        assert config.is_sqlite

    def test_plain_postgres_url_is_made_async(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://bot:secret@db/chat")
        monkeypatch.setenv("DATABASE_ECHO", "true")

        config = DatabaseConfig.from_env()

        assert config.url == "postgresql+asyncpg://bot:secret@db/chat"
        assert config.echo is True
        assert not config.is_sqlite


@pytest_asyncio.fixture
async def database(tmp_path):
    db = Database.from_config(DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'chat.db'}"))
    await create_schema(db.engine)
    yield db
    await db.dispose()


class TestDatabase:

    @pytest.mark.asyncio
    async def test_verify_connection(self, database):
        assert await database.verify_connection() is True

    @pytest.mark.asyncio
    async def test_session_scope_commits(self, database):
        async with database.session_scope() as session:
            await ViolationRepository(session).create("u1", "chan1")

        async with database.session_scope() as session:
            assert await ViolationRepository(session).get("u1", "chan1") is not None

    @pytest.mark.asyncio
    async def test_session_scope_rolls_back(self, database):
        with pytest.raises(RuntimeError):
            async with database.session_scope() as session:
                await ViolationRepository(session).create("u1", "chan1")
                raise RuntimeError("abort")

        async with database.session_scope() as session:
            assert await ViolationRepository(session).get("u1", "chan1") is None

    @pytest.mark.asyncio
    async def test_drop_schema(self, database):
        await drop_schema(database.engine)

        async with database.engine.connect() as conn:
            tables = await conn.run_sync(
                lambda sync_conn: sync_conn.execute(
                    text("SELECT name FROM sqlite_master WHERE type='table'")
                ).fetchall()
            )
        assert tables == []


class TestRepositoryErrors:

    @pytest.mark.asyncio
    async def test_duplicate_ledger_row(self, session_factory):
        async with session_factory() as session:
            repo = ViolationRepository(session)
            await repo.create("u1", "chan1")
            await repo.commit()

        async with session_factory() as session:
            with pytest.raises(DuplicateRecordError):
                await ViolationRepository(session).create("u1", "chan1")

    @pytest.mark.asyncio
    async def test_stale_version_is_a_conflict(self, database):
        session_factory = database.session_factory
        async with session_factory() as session:
            repo = ViolationRepository(session)
            await repo.create("u1", "chan1")
            await repo.commit()

        async with session_factory() as first, session_factory() as second:
            first_repo = ViolationRepository(first)
            second_repo = ViolationRepository(second)
            mine = await first_repo.get("u1", "chan1")
            theirs = await second_repo.get("u1", "chan1")

            theirs.warning_count = 1
            await second_repo.save()
            await second_repo.commit()

            mine.warning_count = 1
            with pytest.raises(ConcurrencyConflictError):
                await first_repo.save()

    @pytest.mark.asyncio
    async def test_version_increments(self, session_factory):
        async with session_factory() as session:
            repo = ViolationRepository(session)
            record = await repo.create("u1", "chan1")
            await repo.commit()
            first_version = record.version

            record.warning_count = 1
            await repo.save()
            await repo.commit()

        assert isinstance(record, ViolationRecord)
        assert record.version == first_version + 1
