"""
Analytics - Repositories.

============================================================
REPOSITORIES
============================================================
AnalyticsEventRepository
    Append raw events; range and distinct-subject queries.

RollupRepository
    Select-then-update-or-insert of bucket rollups.

============================================================
"""

from datetime import datetime
from typing import Collection, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from analytics.models import AnalyticsRollupRecord, ChatAnalyticsEventRecord
from analytics.types import Granularity, RollupStats
from storage.repositories.base import BaseRepository


class AnalyticsEventRepository(BaseRepository[ChatAnalyticsEventRecord]):
    """Repository for raw chat analytics events."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, ChatAnalyticsEventRecord, "AnalyticsEventRepository")

    async def add(self, record: ChatAnalyticsEventRecord) -> ChatAnalyticsEventRecord:
        return await self._add(record)

    async def get_events(
        self,
        scope_id: str,
        start: datetime,
        end: datetime,
        subject_id: Optional[str] = None,
    ) -> List[ChatAnalyticsEventRecord]:
        """Events with start <= received_at < end, oldest first."""
        stmt = select(ChatAnalyticsEventRecord).where(
            ChatAnalyticsEventRecord.scope_id == scope_id,
            ChatAnalyticsEventRecord.received_at >= start,
            ChatAnalyticsEventRecord.received_at < end,
        )
        if subject_id:
            stmt = stmt.where(ChatAnalyticsEventRecord.subject_id == subject_id)
        stmt = stmt.order_by(ChatAnalyticsEventRecord.received_at)
        return await self._execute_query(stmt)

    async def get_active_scopes(self, start: datetime, end: datetime) -> List[str]:
        """Scopes with at least one event in [start, end)."""
        stmt = (
            select(ChatAnalyticsEventRecord.scope_id)
            .where(
                ChatAnalyticsEventRecord.received_at >= start,
                ChatAnalyticsEventRecord.received_at < end,
            )
            .distinct()
            .order_by(ChatAnalyticsEventRecord.scope_id)
        )
        return [row[0] for row in await self._execute_rows(stmt)]

    async def get_subjects_before(
        self,
        scope_id: str,
        before: datetime,
        subjects: Optional[Collection[str]] = None,
    ) -> List[str]:
        """
        Distinct subjects with an event in the scope strictly before
        the given instant, optionally restricted to a subject set.
        """
        stmt = select(ChatAnalyticsEventRecord.subject_id).where(
            ChatAnalyticsEventRecord.scope_id == scope_id,
            ChatAnalyticsEventRecord.received_at < before,
        )
        if subjects is not None:
            if not subjects:
                return []
            stmt = stmt.where(ChatAnalyticsEventRecord.subject_id.in_(list(subjects)))
        stmt = stmt.distinct()
        return [row[0] for row in await self._execute_rows(stmt)]


class RollupRepository(BaseRepository[AnalyticsRollupRecord]):
    """Repository for bucket rollups."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, AnalyticsRollupRecord, "RollupRepository")

    async def get(
        self,
        scope_id: str,
        granularity: Granularity,
        bucket_start: datetime,
    ) -> Optional[AnalyticsRollupRecord]:
        stmt = select(AnalyticsRollupRecord).where(
            AnalyticsRollupRecord.scope_id == scope_id,
            AnalyticsRollupRecord.granularity == granularity.value,
            AnalyticsRollupRecord.bucket_start == bucket_start,
        )
        return await self._execute_scalar(stmt)

    async def upsert(
        self,
        scope_id: str,
        granularity: Granularity,
        bucket_start: datetime,
        stats: RollupStats,
    ) -> Tuple[AnalyticsRollupRecord, bool]:
        """
        Overwrite or create the rollup for a bucket.

        Returns:
            (record, created)
        """
        record = await self.get(scope_id, granularity, bucket_start)
        created = record is None
        if created:
            record = AnalyticsRollupRecord(
                scope_id=scope_id,
                granularity=granularity.value,
                bucket_start=bucket_start,
                hour=bucket_start.hour if granularity is Granularity.HOURLY else None,
            )
            self._session.add(record)

        for key, value in stats.to_dict().items():
            setattr(record, key, value)

        await self._flush("upsert_rollup")
        return record, created

    async def list_rollups(
        self,
        scope_id: str,
        granularity: Granularity,
        start: datetime,
        end: datetime,
    ) -> List[AnalyticsRollupRecord]:
        stmt = (
            select(AnalyticsRollupRecord)
            .where(
                AnalyticsRollupRecord.scope_id == scope_id,
                AnalyticsRollupRecord.granularity == granularity.value,
                AnalyticsRollupRecord.bucket_start >= start,
                AnalyticsRollupRecord.bucket_start < end,
            )
            .order_by(AnalyticsRollupRecord.bucket_start)
        )
        return await self._execute_query(stmt)
