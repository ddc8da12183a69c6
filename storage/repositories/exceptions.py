"""
Repository Layer Exceptions.

============================================================
PURPOSE
============================================================
Repositories catch SQLAlchemy/driver exceptions and re-raise
them as the exceptions below, with the repository name and
operation attached.

Components decide what a failure means for them:
- moderation retries ConcurrencyConflictError
- analytics collects errors per scope and continues
- everything else logs and drops the single record

============================================================
"""

from typing import Optional


class RepositoryException(Exception):
    """
    Base exception for all repository operations.

    Callers can catch this for generic storage error handling.
    """

    def __init__(
        self,
        message: str,
        repository_name: str,
        operation: str,
        details: Optional[dict] = None
    ) -> None:
        self.message = message
        self.repository_name = repository_name
        self.operation = operation
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        return f"[{self.repository_name}] {self.operation}: {self.message}"


class DuplicateRecordError(RepositoryException):
    """
    A unique constraint rejected an insert.

    For the violation ledger this means another writer created the
    (subject, scope) row first.
    """

    def __init__(
        self,
        repository_name: str,
        operation: str,
        original_error: str
    ) -> None:
        super().__init__(
            message=f"Duplicate record: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={"original_error": original_error}
        )


class ConcurrencyConflictError(RepositoryException):
    """
    A versioned row changed underneath an update.

    Raised when an optimistic version check fails; the caller
    should reload and retry.
    """

    def __init__(
        self,
        repository_name: str,
        operation: str,
        original_error: str
    ) -> None:
        super().__init__(
            message=f"Concurrent modification detected: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={"original_error": original_error}
        )


class ConnectionError(RepositoryException):
    """Database connection failed (timeout, pool exhaustion, ...)."""

    def __init__(
        self,
        repository_name: str,
        operation: str,
        original_error: str
    ) -> None:
        super().__init__(
            message=f"Database connection failed: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={"original_error": original_error}
        )


class QueryError(RepositoryException):
    """A query failed to execute."""

    def __init__(
        self,
        repository_name: str,
        operation: str,
        query_description: str,
        original_error: str
    ) -> None:
        super().__init__(
            message=f"Query failed ({query_description}): {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={
                "query_description": query_description,
                "original_error": original_error
            }
        )


class TransactionError(RepositoryException):
    """Commit, rollback or schema DDL failed."""

    def __init__(
        self,
        repository_name: str,
        operation: str,
        phase: str,
        original_error: str
    ) -> None:
        super().__init__(
            message=f"Transaction {phase} failed: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={"phase": phase, "original_error": original_error}
        )
        self.phase = phase
