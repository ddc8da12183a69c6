"""
Performance - Repository.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from performance.models import PerformanceAlertRecord
from storage.repositories.base import BaseRepository


class PerformanceAlertRepository(BaseRepository[PerformanceAlertRecord]):
    """Repository for persisted performance alerts."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, PerformanceAlertRecord, "PerformanceAlertRepository")

    async def add(self, record: PerformanceAlertRecord) -> PerformanceAlertRecord:
        return await self._add(record)

    async def acknowledge(self, alert_id: str, acknowledged_at: datetime) -> bool:
        """Mark an alert acknowledged. False if unknown or already acknowledged."""
        record = await self._get_by_id(alert_id)
        if record is None or record.acknowledged:
            return False
        record.acknowledged = True
        record.acknowledged_at = acknowledged_at
        await self._flush("acknowledge")
        return True

    async def get_recent(
        self,
        limit: int = 10,
        scope_id: Optional[str] = None,
        unacknowledged_only: bool = False,
    ) -> List[PerformanceAlertRecord]:
        stmt = select(PerformanceAlertRecord)
        if scope_id:
            stmt = stmt.where(PerformanceAlertRecord.scope_id == scope_id)
        if unacknowledged_only:
            stmt = stmt.where(PerformanceAlertRecord.acknowledged.is_(False))
        stmt = stmt.order_by(PerformanceAlertRecord.created_at.desc()).limit(limit)
        return await self._execute_query(stmt)
