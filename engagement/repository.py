"""
Engagement - Repository.
"""

from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import Integer, cast, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from engagement.models import EngagementEventRecord
from engagement.types import EngagementStatistics
from storage.repositories.base import BaseRepository


class EngagementEventRepository(BaseRepository[EngagementEventRecord]):
    """Repository for engagement events."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, EngagementEventRecord, "EngagementEventRepository")

    async def add(self, record: EngagementEventRecord) -> EngagementEventRecord:
        return await self._add(record)

    async def mark_responded(
        self,
        event_id: str,
        response_text: str,
        response_delay_ms: int,
        responded_at: datetime,
    ) -> Optional[EngagementEventRecord]:
        """Record the sent response. Returns None if the event is unknown."""
        record = await self._get_by_id(event_id)
        if record is None:
            return None
        record.bot_responded = True
        record.response_text = response_text
        record.response_delay_ms = response_delay_ms
        record.responded_at = responded_at
        await self._flush("mark_responded")
        return record

    async def get_recent(self, scope_id: str, limit: int = 10) -> List[EngagementEventRecord]:
        stmt = (
            select(EngagementEventRecord)
            .where(EngagementEventRecord.scope_id == scope_id)
            .order_by(EngagementEventRecord.occurred_at.desc())
            .limit(limit)
        )
        return await self._execute_query(stmt)

    async def get_statistics(
        self,
        scope_id: str,
        start: datetime,
        end: datetime,
    ) -> EngagementStatistics:
        """Aggregate events with start <= occurred_at < end."""
        in_range = (
            EngagementEventRecord.scope_id == scope_id,
            EngagementEventRecord.occurred_at >= start,
            EngagementEventRecord.occurred_at < end,
        )

        totals_stmt = select(
            func.count(EngagementEventRecord.id),
            func.avg(EngagementEventRecord.engagement_score),
            func.max(EngagementEventRecord.engagement_score),
            func.sum(cast(EngagementEventRecord.bot_responded, Integer)),
        ).where(*in_range)
        by_type_stmt = (
            select(EngagementEventRecord.event_type, func.count(EngagementEventRecord.id))
            .where(*in_range)
            .group_by(EngagementEventRecord.event_type)
        )

        totals = await self._execute_rows(totals_stmt)
        total, average, peak, responded = totals[0] if totals else (0, None, None, None)
        total = total or 0

        by_type: Dict[str, int] = {}
        for event_type, count in await self._execute_rows(by_type_stmt):
            by_type[event_type] = count

        return EngagementStatistics(
            total_events=total,
            events_by_type=by_type,
            average_score=round(float(average), 2) if average is not None else 0.0,
            peak_score=float(peak) if peak is not None else 0.0,
            response_rate=round((responded or 0) / total, 4) if total else 0.0,
        )
