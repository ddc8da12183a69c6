"""
Pipeline - Aggregation Scheduler.

============================================================
PURPOSE
============================================================
Triggers analytics rollups on a fixed cadence.

- Hourly rollup of the previous hour at minute 5
- Daily rollup of the previous day on the first run after
  midnight UTC

The delay until the next run is computed from the pipeline
clock; the task is owned by the scheduler and cancelled by
stop().

============================================================
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from analytics.aggregator import AnalyticsAggregator
from analytics.types import AggregationRunResult
from core.clock import ClockProtocol, get_clock, start_of_hour


logger = logging.getLogger(__name__)


DEFAULT_RUN_MINUTE = 5


class AggregationScheduler:
    """Background task running hourly and daily rollups."""

    def __init__(
        self,
        aggregator: AnalyticsAggregator,
        clock: Optional[ClockProtocol] = None,
        run_minute: int = DEFAULT_RUN_MINUTE,
    ):
        if not 0 <= run_minute < 60:
            raise ValueError(f"run_minute must be within 0..59, got {run_minute}")
        self._aggregator = aggregator
        self._clock = clock or get_clock()
        self._run_minute = run_minute
        self._task: Optional[asyncio.Task] = None
        self._last_run: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def last_run(self) -> Optional[datetime]:
        return self._last_run

    def next_run_at(self, now: Optional[datetime] = None) -> datetime:
        """Next HH:<run_minute> strictly after now."""
        now = now or self._clock.now()
        candidate = start_of_hour(now) + timedelta(minutes=self._run_minute)
        if candidate <= now:
            candidate += timedelta(hours=1)
        return candidate

    async def run_due(self, now: Optional[datetime] = None) -> List[AggregationRunResult]:
        """
        Run the rollups due at `now`.

        The hourly rollup always runs; the daily rollup runs when
        `now` falls in the midnight hour.
        """
        now = now or self._clock.now()
        results = []

        hourly = await self._aggregator.aggregate_previous_hour()
        results.append(hourly)
        logger.info(f"Scheduled hourly aggregation: {hourly.to_dict()}")

        if now.hour == 0:
            daily = await self._aggregator.aggregate_previous_day()
            results.append(daily)
            logger.info(f"Scheduled daily aggregation: {daily.to_dict()}")

        self._last_run = now
        return results

    async def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="aggregation-scheduler")
        logger.info(f"Aggregation scheduler started (minute {self._run_minute})")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Aggregation scheduler stopped")

    async def _run(self) -> None:
        while True:
            now = self._clock.now()
            delay = (self.next_run_at(now) - now).total_seconds()
            await asyncio.sleep(delay)
            try:
                await self.run_due()
            except Exception as e:
                logger.error(f"Scheduled aggregation failed: {e}", exc_info=True)
