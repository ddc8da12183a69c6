"""
Moderation - Repository.

============================================================
PURPOSE
============================================================
Data access layer for the violation ledger and the moderation
action log. Repositories flush; the engine owns commits.

============================================================
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from moderation.models import (
    ModerationActionLogRecord,
    ViolationEventRecord,
    ViolationRecord,
)
from storage.repositories.base import BaseRepository


class ViolationRepository(BaseRepository[ViolationRecord]):
    """Repository for ViolationRecord and its event history."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, ViolationRecord, "ViolationRepository")

    async def get(self, subject_id: str, scope_id: str) -> Optional[ViolationRecord]:
        """Get the ledger row for (subject, scope), history included."""
        stmt = select(ViolationRecord).where(
            ViolationRecord.subject_id == subject_id,
            ViolationRecord.scope_id == scope_id,
        )
        return await self._execute_scalar(stmt)

    async def create(self, subject_id: str, scope_id: str) -> ViolationRecord:
        """
        Insert an empty ledger row.

        Raises:
            DuplicateRecordError: Another writer created it first
        """
        record = ViolationRecord(
            subject_id=subject_id,
            scope_id=scope_id,
            warning_count=0,
            timeout_count=0,
            is_banned=False,
            events=[],
        )
        return await self._add(record)

    def append_event(
        self,
        record: ViolationRecord,
        occurred_at: datetime,
        action: str,
        offending_terms: List[str],
        message_excerpt: str,
        duration_seconds: Optional[int] = None,
    ) -> ViolationEventRecord:
        """Append a history entry (persisted on the next flush)."""
        event = ViolationEventRecord(
            occurred_at=occurred_at,
            action=action,
            offending_terms=list(offending_terms),
            message_excerpt=message_excerpt,
            duration_seconds=duration_seconds,
            success=False,
        )
        record.events.append(event)
        return event

    async def save(self, operation: str = "save") -> None:
        """
        Flush pending ledger changes.

        Raises:
            ConcurrencyConflictError: The row version moved
            DuplicateRecordError: The row was created concurrently
        """
        await self._flush(operation)

    async def list_for_scope(self, scope_id: str, limit: int = 100) -> List[ViolationRecord]:
        stmt = (
            select(ViolationRecord)
            .where(ViolationRecord.scope_id == scope_id)
            .order_by(ViolationRecord.updated_at.desc())
            .limit(limit)
        )
        return await self._execute_query(stmt)

    async def count_banned(self, scope_id: str) -> int:
        return await self._count(
            ViolationRecord.scope_id == scope_id,
            ViolationRecord.is_banned.is_(True),
        )


class ModerationLogRepository(BaseRepository[ModerationActionLogRecord]):
    """Repository for the append-only moderation action log."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, ModerationActionLogRecord, "ModerationLogRepository")

    async def add(self, entry: ModerationActionLogRecord) -> ModerationActionLogRecord:
        return await self._add(entry)

    async def get_recent(
        self,
        scope_id: str,
        limit: int = 50,
        subject_id: Optional[str] = None,
    ) -> List[ModerationActionLogRecord]:
        """Most recent entries for a scope, newest first."""
        stmt = select(ModerationActionLogRecord).where(
            ModerationActionLogRecord.scope_id == scope_id
        )
        if subject_id:
            stmt = stmt.where(ModerationActionLogRecord.subject_id == subject_id)
        stmt = stmt.order_by(ModerationActionLogRecord.created_at.desc()).limit(limit)
        return await self._execute_query(stmt)

    async def count_for_scope(self, scope_id: str, since: Optional[datetime] = None) -> int:
        criteria = [ModerationActionLogRecord.scope_id == scope_id]
        if since is not None:
            criteria.append(ModerationActionLogRecord.created_at >= since)
        return await self._count(*criteria)
