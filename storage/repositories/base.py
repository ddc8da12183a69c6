"""
Base Repository Class.

============================================================
PURPOSE
============================================================
Provides common functionality for all async repositories:
- Session handling (AsyncSession injected)
- Error handling wrappers
- Common query operations
- Logging setup

============================================================
USAGE
============================================================
class ViolationRepository(BaseRepository[ViolationRecord]):
    def __init__(self, session: AsyncSession):
        super().__init__(session, ViolationRecord, "ViolationRepository")

Repositories flush but never commit unless a method says so;
transaction boundaries belong to the caller.

============================================================
"""

import logging
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import (
    IntegrityError as SQLAlchemyIntegrityError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from storage.models.base import Base
from storage.repositories.exceptions import (
    ConcurrencyConflictError,
    ConnectionError,
    DuplicateRecordError,
    QueryError,
    TransactionError,
)


T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """
    Base class for all repositories.

    ============================================================
    RESPONSIBILITIES
    ============================================================
    - Provides common add/get/query patterns
    - Wraps database errors in repository exceptions
    - Manages logging for all operations

    ============================================================
    """

    def __init__(
        self,
        session: AsyncSession,
        model_class: Type[T],
        repository_name: str
    ) -> None:
        """
        Initialize the repository.

        Args:
            session: SQLAlchemy async session (injected)
            model_class: The ORM model class this repository manages
            repository_name: Name for logging and error messages
        """
        self._session = session
        self._model_class = model_class
        self._repository_name = repository_name
        self._logger = logging.getLogger(f"repository.{repository_name}")

    @property
    def session(self) -> AsyncSession:
        """Get the current session."""
        return self._session

    @property
    def repository_name(self) -> str:
        return self._repository_name

    # =========================================================
    # PROTECTED HELPER METHODS
    # =========================================================

    def _handle_db_error(
        self,
        error: Exception,
        operation: str,
        context: Optional[dict] = None
    ) -> None:
        """
        Wrap a database error in the matching repository exception.

        Raises:
            RepositoryException: Always
        """
        context = context or {}

        if isinstance(error, StaleDataError):
            # Expected under contention; caller retries
            self._logger.warning(f"Version conflict in {operation}: {error}")
            raise ConcurrencyConflictError(
                repository_name=self._repository_name,
                operation=operation,
                original_error=str(error)
            ) from error

        self._logger.error(
            f"Database error in {operation}: {error}",
            extra={"context": context},
        )

        if isinstance(error, OperationalError):
            raise ConnectionError(
                repository_name=self._repository_name,
                operation=operation,
                original_error=str(error)
            ) from error

        if isinstance(error, SQLAlchemyIntegrityError):
            raise DuplicateRecordError(
                repository_name=self._repository_name,
                operation=operation,
                original_error=str(error.orig)
            ) from error

        raise QueryError(
            repository_name=self._repository_name,
            operation=operation,
            query_description=operation,
            original_error=str(error)
        ) from error

    async def _add(self, entity: T) -> T:
        """Add an entity to the session and flush it."""
        try:
            self._session.add(entity)
            await self._session.flush()
            self._logger.debug(f"Added entity: {entity}")
            return entity
        except SQLAlchemyError as e:
            self._handle_db_error(e, "add", {"entity": str(entity)})
            raise

    async def _flush(self, operation: str = "flush") -> None:
        """Flush pending changes, wrapping any error."""
        try:
            await self._session.flush()
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation)
            raise

    async def _get_by_id(self, record_id: Any) -> Optional[T]:
        """Get an entity by its primary key."""
        try:
            return await self._session.get(self._model_class, record_id)
        except SQLAlchemyError as e:
            self._handle_db_error(e, "get_by_id", {"id": str(record_id)})
            raise

    async def _count(self, *criteria: Any) -> int:
        """Count entities matching optional criteria."""
        try:
            stmt = select(func.count()).select_from(self._model_class)
            if criteria:
                stmt = stmt.where(*criteria)
            result = await self._session.execute(stmt)
            return result.scalar() or 0
        except SQLAlchemyError as e:
            self._handle_db_error(e, "count")
            raise

    async def _execute_query(self, stmt: Any) -> List[T]:
        """Execute a select statement and return all entities."""
        try:
            result = await self._session.execute(stmt)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self._handle_db_error(e, "query")
            raise

    async def _execute_scalar(self, stmt: Any) -> Optional[Any]:
        """Execute a select statement and return a single value or entity."""
        try:
            result = await self._session.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "query_scalar")
            raise

    async def _execute_rows(self, stmt: Any) -> List[Any]:
        """Execute a select statement and return raw rows."""
        try:
            result = await self._session.execute(stmt)
            return list(result.all())
        except SQLAlchemyError as e:
            self._handle_db_error(e, "query_rows")
            raise

    async def commit(self) -> None:
        """
        Commit the current transaction.

        Raises:
            ConcurrencyConflictError: If a versioned row changed
            TransactionError: If commit fails otherwise
        """
        try:
            await self._session.commit()
        except StaleDataError as e:
            await self._session.rollback()
            self._handle_db_error(e, "commit")
        except SQLAlchemyError as e:
            await self._session.rollback()
            raise TransactionError(
                repository_name=self._repository_name,
                operation="commit",
                phase="commit",
                original_error=str(e)
            ) from e

    async def rollback(self) -> None:
        """Rollback the current transaction."""
        try:
            await self._session.rollback()
        except SQLAlchemyError as e:
            self._logger.error(f"Rollback failed: {e}")
            raise TransactionError(
                repository_name=self._repository_name,
                operation="rollback",
                phase="rollback",
                original_error=str(e)
            ) from e
