"""
Repository Layer Package.

============================================================
ARCHITECTURE PRINCIPLES
============================================================
1. One repository per domain table (or tightly related set)
2. Session Injection: AsyncSession is injected, not created internally
3. Explicit Methods: clear method names, no generic 'execute'
4. Exception Handling: All DB errors wrapped in repository exceptions

Domain repositories live with their component:
- moderation.repository: ViolationRepository, ModerationLogRepository
- analytics.repository: AnalyticsEventRepository, RollupRepository
- engagement.repository: EngagementEventRepository
- performance.repository: PerformanceAlertRepository

============================================================
"""

from storage.repositories.base import BaseRepository
from storage.repositories.exceptions import (
    ConcurrencyConflictError,
    ConnectionError,
    DuplicateRecordError,
    QueryError,
    RepositoryException,
    TransactionError,
)

__all__ = [
    "BaseRepository",
    "ConcurrencyConflictError",
    "ConnectionError",
    "DuplicateRecordError",
    "QueryError",
    "RepositoryException",
    "TransactionError",
]
