"""
Analytics - Aggregator.

============================================================
PURPOSE
============================================================
Rolls raw message events into hourly and daily buckets.

============================================================
IDEMPOTENCY
============================================================
A rollup is recomputed from raw events and overwritten on
every run for its bucket; it is never incremented. Re-running
after a partial failure is always safe.

============================================================
FAILURE SEMANTICS
============================================================
Each scope is aggregated in its own transaction. A failing
scope adds a message to the run's error list; the other
scopes are still processed.

============================================================
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import async_sessionmaker

from analytics.reduction import reduce_events
from analytics.repository import AnalyticsEventRepository, RollupRepository
from analytics.types import AggregationRunResult, Granularity, RollupStats
from core.clock import ClockProtocol, get_clock, to_naive_utc
from core.identifiers import normalize_scope, normalize_subject


logger = logging.getLogger(__name__)


class AnalyticsAggregator:
    """
    Time-bucketed analytics aggregation.

    Stateless between runs beyond what it reads and writes.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Optional[ClockProtocol] = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or get_clock()

    # =========================================================
    # RUNS
    # =========================================================

    async def aggregate(
        self,
        start: datetime,
        end: datetime,
        granularity: Granularity = Granularity.HOURLY,
        scope_id: Optional[str] = None,
    ) -> AggregationRunResult:
        """
        Aggregate every bucket in [start, end) for one scope or all
        scopes with events in the range.
        """
        start = to_naive_utc(start)
        end = to_naive_utc(end)

        logger.info(
            f"Starting {granularity.value} aggregation for "
            f"{scope_id or 'all scopes'}: {start.isoformat()} -> {end.isoformat()}"
        )

        result = AggregationRunResult()

        if scope_id:
            scopes = [normalize_scope(scope_id)]
        else:
            try:
                async with self._session_factory() as session:
                    scopes = await AnalyticsEventRepository(session).get_active_scopes(
                        granularity.bucket_start(start), end
                    )
            except Exception as e:
                logger.error(f"Failed to list scopes for aggregation: {e}", exc_info=True)
                result.errors.append(f"Error listing scopes: {e}")
                return result

        if not scopes:
            logger.info("No scopes with analytics in the requested period")
            return result

        for scope in scopes:
            try:
                created, updated = await self._aggregate_scope(scope, start, end, granularity)
            except Exception as e:
                message = f"Error aggregating scope {scope}: {e}"
                logger.error(message, exc_info=True)
                result.errors.append(message)
                continue

            result.scopes_processed += 1
            result.rollups_created += created
            result.rollups_updated += updated

        logger.info(
            f"Aggregation completed: scopes={result.scopes_processed} "
            f"created={result.rollups_created} updated={result.rollups_updated} "
            f"errors={len(result.errors)}"
        )
        return result

    async def aggregate_previous_hour(self) -> AggregationRunResult:
        """Aggregate the last completed UTC hour for all scopes."""
        end = Granularity.HOURLY.bucket_start(self._clock.now())
        return await self.aggregate(end - timedelta(hours=1), end, Granularity.HOURLY)

    async def aggregate_previous_day(self) -> AggregationRunResult:
        """Aggregate the last completed UTC day for all scopes."""
        end = Granularity.DAILY.bucket_start(self._clock.now())
        return await self.aggregate(end - timedelta(days=1), end, Granularity.DAILY)

    async def _aggregate_scope(
        self,
        scope: str,
        start: datetime,
        end: datetime,
        granularity: Granularity,
    ) -> Tuple[int, int]:
        created = 0
        updated = 0

        async with self._session_factory() as session:
            events_repo = AnalyticsEventRepository(session)
            rollups = RollupRepository(session)

            for bucket_start in granularity.buckets(start, end):
                outcome = await self._aggregate_bucket(
                    events_repo, rollups, scope, bucket_start, granularity
                )
                if outcome is True:
                    created += 1
                elif outcome is False:
                    updated += 1

            await rollups.commit()

        return created, updated

    async def _aggregate_bucket(
        self,
        events_repo: AnalyticsEventRepository,
        rollups: RollupRepository,
        scope: str,
        bucket_start: datetime,
        granularity: Granularity,
    ) -> Optional[bool]:
        """
        Recompute one bucket.

        Returns True if created, False if updated, None if the
        bucket had no events.
        """
        bucket_end = bucket_start + granularity.length
        events = await events_repo.get_events(scope, bucket_start, bucket_end)
        if not events:
            return None

        subjects = {event.subject_id for event in events}
        prior = await events_repo.get_subjects_before(scope, bucket_start, subjects)
        stats = reduce_events(events, prior)

        _, created = await rollups.upsert(scope, granularity, bucket_start, stats)
        logger.debug(
            f"Rollup {'created' if created else 'updated'}: {scope} "
            f"{granularity.value} {bucket_start.isoformat()} total={stats.total_messages}"
        )
        return created

    async def aggregate_bucket(
        self,
        scope_id: str,
        bucket_start: datetime,
        granularity: Granularity = Granularity.HOURLY,
    ) -> Optional[RollupStats]:
        """
        Recompute a single bucket.

        Raises:
            RepositoryException: If reading or writing fails
        """
        scope = normalize_scope(scope_id)
        bucket_start = granularity.bucket_start(bucket_start)

        async with self._session_factory() as session:
            events_repo = AnalyticsEventRepository(session)
            rollups = RollupRepository(session)
            outcome = await self._aggregate_bucket(
                events_repo, rollups, scope, bucket_start, granularity
            )
            if outcome is None:
                return None
            await rollups.commit()
            record = await rollups.get(scope, granularity, bucket_start)

        return _stats_from_record(record)

    # =========================================================
    # QUERIES
    # =========================================================

    async def get_rollups(
        self,
        scope_id: str,
        start: datetime,
        end: datetime,
        granularity: Granularity = Granularity.HOURLY,
    ) -> List[Dict[str, Any]]:
        """Stored rollups for a scope with bucket_start in [start, end)."""
        scope = normalize_scope(scope_id)
        async with self._session_factory() as session:
            records = await RollupRepository(session).list_rollups(
                scope, granularity, to_naive_utc(start), to_naive_utc(end)
            )

        return [
            {
                "scope_id": record.scope_id,
                "granularity": record.granularity,
                "bucket_start": record.bucket_start.isoformat(),
                "hour": record.hour,
                **_stats_from_record(record).to_dict(),
            }
            for record in records
        ]

    async def get_channel_statistics(
        self,
        scope_id: str,
        start: datetime,
        end: datetime,
    ) -> Dict[str, Any]:
        """Statistics for any range, reduced directly from raw events."""
        scope = normalize_scope(scope_id)
        start = to_naive_utc(start)
        end = to_naive_utc(end)

        async with self._session_factory() as session:
            repo = AnalyticsEventRepository(session)
            events = await repo.get_events(scope, start, end)
            subjects = {event.subject_id for event in events}
            prior = await repo.get_subjects_before(scope, start, subjects)

        stats = reduce_events(events, prior)
        return {
            "scope_id": scope,
            "start": start.isoformat(),
            "end": end.isoformat(),
            **stats.to_dict(),
        }

    async def get_user_statistics(
        self,
        scope_id: str,
        subject_id: str,
        start: datetime,
        end: datetime,
    ) -> Dict[str, Any]:
        """Statistics for one subject in a scope, with first/last seen."""
        scope = normalize_scope(scope_id)
        subject = normalize_subject(subject_id)

        async with self._session_factory() as session:
            events = await AnalyticsEventRepository(session).get_events(
                scope, to_naive_utc(start), to_naive_utc(end), subject_id=subject
            )

        stats = reduce_events(events)
        return {
            "scope_id": scope,
            "subject_id": subject,
            "display_name": events[-1].display_name if events else "",
            "first_seen": events[0].received_at.isoformat() if events else None,
            "last_seen": events[-1].received_at.isoformat() if events else None,
            **stats.to_dict(),
        }


def _stats_from_record(record: Any) -> RollupStats:
    return RollupStats(
        total_messages=record.total_messages,
        successful_messages=record.successful_messages,
        failed_messages=record.failed_messages,
        unique_users=record.unique_users,
        command_counts=dict(record.command_counts or {}),
        question_count=record.question_count,
        avg_processing_time_ms=record.avg_processing_time_ms,
        avg_response_time_ms=record.avg_response_time_ms,
        cache_hit_rate=record.cache_hit_rate,
        rate_limit_hits=record.rate_limit_hits,
        api_errors=record.api_errors,
        moderation_actions=record.moderation_actions,
        other_errors=record.other_errors,
        new_users=record.new_users,
        returning_users=record.returning_users,
    )
