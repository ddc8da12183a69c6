"""
Performance Monitor.

============================================================
PURPOSE
============================================================
Records operation timings, error rates and cache hit rates,
classifies each sample against warning/critical thresholds and
raises de-duplicated alerts.

- Ring of the most recent samples (default 1000)
- Ring of the most recent alerts (default 100)
- Alert cooldown per (metric type, scope, severity)
- Timing wrappers that record and re-raise

============================================================
CLASSIFICATION
============================================================
value >= critical -> critical
value >= warning  -> warning
otherwise         -> normal

Cache hit rate is compared as a miss rate (1 - value) against
the complementary ceilings of the configured floors.

============================================================
REPORTS
============================================================
generate_performance_report() reads the in-memory rings.
generate_report() recomputes from persisted analytics events.
Both return PerformanceStats.

============================================================
"""

import asyncio
import logging
import time
import uuid
from collections import deque
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Awaitable, Callable, Deque, Dict, List, Optional, Set, Tuple, TypeVar

from sqlalchemy.ext.asyncio import async_sessionmaker

from analytics.reduction import average_positive, round_half_up
from analytics.repository import AnalyticsEventRepository
from core.clock import ClockProtocol, get_clock
from core.exceptions import ConfigurationError
from core.identifiers import normalize_scope
from performance.alerting import AlertHandler
from performance.config import PerformanceConfig, PerformanceThresholds, ThresholdPair
from performance.types import (
    AlertType,
    MetricType,
    PerformanceAlert,
    PerformanceMetric,
    PerformanceStats,
    ThresholdLevel,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


class PerformanceMonitor:
    """
    In-process performance monitor.

    Process-local: rings and cooldowns are not shared between
    instances. Handlers are notified in background tasks so
    record_metric() stays synchronous.
    """

    def __init__(
        self,
        config: Optional[PerformanceConfig] = None,
        clock: Optional[ClockProtocol] = None,
        session_factory: Optional[async_sessionmaker] = None,
        handlers: Optional[List[AlertHandler]] = None,
    ):
        self._config = config or PerformanceConfig()
        self._thresholds = self._config.thresholds
        self._clock = clock or get_clock()
        self._session_factory = session_factory
        self._handlers: List[AlertHandler] = list(handlers or [])

        self._metrics: Deque[PerformanceMetric] = deque(maxlen=self._config.max_metrics)
        self._alerts: Deque[PerformanceAlert] = deque(maxlen=self._config.max_alerts)
        self._last_alert_times: Dict[Tuple[str, str, str], float] = {}
        self._notify_tasks: Set[asyncio.Task] = set()

    # --------------------------------------------------------
    # HANDLERS
    # --------------------------------------------------------

    def add_handler(self, handler: AlertHandler) -> None:
        self._handlers.append(handler)

    def remove_handler(self, handler: AlertHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    # --------------------------------------------------------
    # THRESHOLDS
    # --------------------------------------------------------

    def update_thresholds(self, **pairs: ThresholdPair) -> None:
        """
        Replace thresholds for the named metrics.

        Example: update_thresholds(db_query_time=ThresholdPair(250, 1000))
        """
        try:
            self._thresholds = self._thresholds.updated(**pairs)
        except TypeError as e:
            raise ConfigurationError(
                f"Unknown performance threshold: {e}",
                config_key=",".join(sorted(pairs)),
            )
        logger.info(f"Performance thresholds updated: {sorted(pairs)}")

    def get_thresholds(self) -> PerformanceThresholds:
        return self._thresholds

    def classify(self, metric_type: MetricType, value: float) -> ThresholdLevel:
        """Classify a sample against the current thresholds."""
        ceilings = self._thresholds.ceilings_for(metric_type)
        if ceilings is None:
            return ThresholdLevel.NORMAL

        compared = 1 - value if metric_type == MetricType.CACHE_HIT_RATE else value
        if compared >= ceilings.critical:
            return ThresholdLevel.CRITICAL
        if compared >= ceilings.warning:
            return ThresholdLevel.WARNING
        return ThresholdLevel.NORMAL

    def _threshold_value(self, metric_type: MetricType, level: ThresholdLevel) -> float:
        """Configured threshold as the operator wrote it (floors for cache hit rate)."""
        if metric_type == MetricType.CACHE_HIT_RATE:
            pair = self._thresholds.cache_hit_rate
        else:
            pair = self._thresholds.ceilings_for(metric_type)
        return pair.critical if level == ThresholdLevel.CRITICAL else pair.warning

    # --------------------------------------------------------
    # RECORDING
    # --------------------------------------------------------

    def record_metric(
        self,
        operation: str,
        metric_type: MetricType,
        value: float,
        scope_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PerformanceMetric:
        """
        Record one sample.

        Returns:
            The stored PerformanceMetric with its threshold level
        """
        metric_type = MetricType(metric_type)
        level = self.classify(metric_type, value)
        metric = PerformanceMetric(
            timestamp=self._clock.now(),
            operation=operation,
            metric_type=metric_type,
            value=value,
            level=level,
            scope_id=normalize_scope(scope_id) if scope_id else None,
            metadata=dict(metadata or {}),
        )
        self._metrics.append(metric)

        if level == ThresholdLevel.NORMAL:
            logger.debug(
                f"Performance metric recorded: {operation} {metric_type.value}={value}"
            )
            return metric

        threshold = self._threshold_value(metric_type, level)
        context = {
            "operation": operation,
            "metric_type": metric_type.value,
            "value": value,
            "threshold_value": threshold,
            "scope_id": metric.scope_id,
        }
        if level == ThresholdLevel.CRITICAL:
            logger.error(
                f"Performance metric critical threshold exceeded: {operation} "
                f"{metric_type.value}={value} (threshold {threshold})",
                extra={"context": context},
            )
        else:
            logger.warning(
                f"Performance metric warning threshold exceeded: {operation} "
                f"{metric_type.value}={value} (threshold {threshold})",
                extra={"context": context},
            )

        self._check_and_alert(metric)
        return metric

    def record_response_time(self, operation: str, value_ms: float, scope_id: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None) -> PerformanceMetric:
        return self.record_metric(operation, MetricType.RESPONSE_TIME, value_ms, scope_id, metadata)

    def record_ai_response_time(self, operation: str, value_ms: float, scope_id: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None) -> PerformanceMetric:
        return self.record_metric(operation, MetricType.AI_RESPONSE_TIME, value_ms, scope_id, metadata)

    def record_db_query_time(self, operation: str, value_ms: float, scope_id: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None) -> PerformanceMetric:
        return self.record_metric(operation, MetricType.DB_QUERY_TIME, value_ms, scope_id, metadata)

    def record_api_call_time(self, operation: str, value_ms: float, scope_id: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None) -> PerformanceMetric:
        return self.record_metric(operation, MetricType.API_CALL_TIME, value_ms, scope_id, metadata)

    def record_error_rate(self, operation: str, rate: float, scope_id: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None) -> PerformanceMetric:
        return self.record_metric(operation, MetricType.ERROR_RATE, rate, scope_id, metadata)

    def record_cache_hit_rate(self, operation: str, rate: float, scope_id: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None) -> PerformanceMetric:
        return self.record_metric(operation, MetricType.CACHE_HIT_RATE, rate, scope_id, metadata)

    # --------------------------------------------------------
    # TIMING WRAPPERS
    # --------------------------------------------------------

    @asynccontextmanager
    async def measure_operation(
        self,
        operation: str,
        metric_type: MetricType = MetricType.RESPONSE_TIME,
        scope_id: Optional[str] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """
        Time the enclosed block and record it.

        The yielded dict is merged into the sample metadata. The
        original exception propagates after recording.
        """
        metadata: Dict[str, Any] = {}
        started = time.perf_counter()
        try:
            yield metadata
        except Exception as e:
            elapsed_ms = (time.perf_counter() - started) * 1000
            metadata.update({"success": False, "error": str(e)})
            self.record_metric(operation, metric_type, elapsed_ms, scope_id, metadata)
            raise
        elapsed_ms = (time.perf_counter() - started) * 1000
        metadata.setdefault("success", True)
        self.record_metric(operation, metric_type, elapsed_ms, scope_id, metadata)

    async def track_database_query(
        self,
        operation: str,
        query: Callable[[], Awaitable[T]],
        scope_id: Optional[str] = None,
    ) -> T:
        """Await query(), recording its duration as a DB query sample."""
        async with self.measure_operation(operation, MetricType.DB_QUERY_TIME, scope_id):
            return await query()

    async def track_api_call(
        self,
        api_name: str,
        call: Callable[[], Awaitable[T]],
        scope_id: Optional[str] = None,
    ) -> T:
        """Await call(), recording its duration as an API call sample."""
        async with self.measure_operation(api_name, MetricType.API_CALL_TIME, scope_id):
            return await call()

    # --------------------------------------------------------
    # RATE ANALYSIS
    # --------------------------------------------------------

    def analyze_error_rate(
        self,
        scope_id: str,
        total_messages: int,
        failed_messages: int,
        window_seconds: float = 60.0,
    ) -> Optional[PerformanceMetric]:
        """Record failed/total as an error rate sample. None when total is 0."""
        if total_messages <= 0:
            return None
        return self.record_error_rate(
            f"error_rate_analysis_{scope_id}",
            failed_messages / total_messages,
            scope_id,
            {
                "total_messages": total_messages,
                "failed_messages": failed_messages,
                "window_seconds": window_seconds,
            },
        )

    def analyze_cache_performance(
        self,
        scope_id: str,
        cache_hits: int,
        total_requests: int,
        window_seconds: float = 60.0,
    ) -> Optional[PerformanceMetric]:
        """Record hits/requests as a cache hit rate sample. None when no requests."""
        if total_requests <= 0:
            return None
        return self.record_cache_hit_rate(
            f"cache_performance_analysis_{scope_id}",
            cache_hits / total_requests,
            scope_id,
            {
                "cache_hits": cache_hits,
                "total_requests": total_requests,
                "window_seconds": window_seconds,
            },
        )

    # --------------------------------------------------------
    # ALERTS
    # --------------------------------------------------------

    def _check_and_alert(self, metric: PerformanceMetric) -> Optional[PerformanceAlert]:
        key = (metric.metric_type.value, metric.scope_id or "global", metric.level.value)
        now = self._clock.timestamp()
        last = self._last_alert_times.get(key)
        if last is not None and now - last < self._config.alert_cooldown_seconds:
            logger.debug(f"Alert suppressed by cooldown: {key}")
            return None

        unit = "ms" if metric.metric_type.is_latency else ""
        threshold = self._threshold_value(metric.metric_type, metric.level)
        alert = PerformanceAlert(
            alert_id=f"alert-{uuid.uuid4().hex}",
            timestamp=self._clock.now(),
            alert_type=(
                AlertType.ERROR_RATE_HIGH
                if metric.metric_type == MetricType.ERROR_RATE
                else AlertType.THRESHOLD_EXCEEDED
            ),
            severity=metric.level,
            message=(
                f"{metric.operation} {metric.metric_type.value} exceeded "
                f"{metric.level.value} threshold: {metric.value}{unit} "
                f"(threshold: {threshold}{unit})"
            ),
            scope_id=metric.scope_id,
            metrics=[metric],
            metadata=dict(metric.metadata),
        )
        self._alerts.append(alert)
        self._last_alert_times[key] = now

        log = logger.error if alert.severity == ThresholdLevel.CRITICAL else logger.warning
        log(
            f"Performance alert [{alert.severity.value}]: {alert.message}",
            extra={"context": {"alert_id": alert.alert_id, "scope_id": alert.scope_id}},
        )

        self._dispatch(lambda handler: handler.notify(alert))
        return alert

    def _dispatch(self, call: Callable[[AlertHandler], Awaitable[bool]]) -> None:
        """Run handler calls in background tasks on the running loop."""
        if not self._handlers:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, alert handlers not notified")
            return

        for handler in list(self._handlers):
            task = loop.create_task(self._run_handler(handler, call))
            self._notify_tasks.add(task)
            task.add_done_callback(self._notify_tasks.discard)

    async def _run_handler(
        self,
        handler: AlertHandler,
        call: Callable[[AlertHandler], Awaitable[bool]],
    ) -> None:
        try:
            ok = await call(handler)
            if not ok:
                logger.warning(f"Alert handler {type(handler).__name__} reported failure")
        except Exception as e:
            logger.error(f"Alert handler {type(handler).__name__} error: {e}", exc_info=True)

    def get_recent_alerts(self, count: int = 10, scope_id: Optional[str] = None) -> List[PerformanceAlert]:
        """Newest first."""
        alerts = self._filter_scope(self._alerts, scope_id)
        return sorted(alerts, key=lambda a: a.timestamp, reverse=True)[:count]

    def get_unacknowledged_alerts(self, scope_id: Optional[str] = None) -> List[PerformanceAlert]:
        alerts = [a for a in self._filter_scope(self._alerts, scope_id) if not a.acknowledged]
        return sorted(alerts, key=lambda a: a.timestamp, reverse=True)

    def acknowledge_alert(self, alert_id: str) -> bool:
        """Acknowledge one alert. False if unknown or already acknowledged."""
        for alert in self._alerts:
            if alert.alert_id == alert_id:
                if alert.acknowledged:
                    return False
                self._acknowledge(alert, self._clock.now())
                return True
        return False

    def acknowledge_all_alerts(self, scope_id: Optional[str] = None) -> int:
        """Acknowledge every open alert (optionally for one scope). Returns the count."""
        now = self._clock.now()
        count = 0
        for alert in self._filter_scope(self._alerts, scope_id):
            if not alert.acknowledged:
                self._acknowledge(alert, now)
                count += 1
        return count

    def _acknowledge(self, alert: PerformanceAlert, when: datetime) -> None:
        alert.acknowledged = True
        alert.acknowledged_at = when
        logger.info(f"Performance alert acknowledged: {alert.alert_id}")
        self._dispatch(lambda handler: handler.acknowledged(alert))

    # --------------------------------------------------------
    # METRICS HISTORY
    # --------------------------------------------------------

    def get_recent_metrics(self, count: int = 100, scope_id: Optional[str] = None) -> List[PerformanceMetric]:
        """Newest first."""
        metrics = self._filter_scope(self._metrics, scope_id)
        return sorted(metrics, key=lambda m: m.timestamp, reverse=True)[:count]

    def clear_old_data(self, older_than_seconds: float = 86400.0) -> None:
        """Drop samples and alerts older than the cutoff and reset cooldowns."""
        cutoff = self._clock.now() - timedelta(seconds=older_than_seconds)
        kept_metrics = [m for m in self._metrics if m.timestamp >= cutoff]
        kept_alerts = [a for a in self._alerts if a.timestamp >= cutoff]
        self._metrics.clear()
        self._metrics.extend(kept_metrics)
        self._alerts.clear()
        self._alerts.extend(kept_alerts)
        self._last_alert_times.clear()

    @staticmethod
    def _filter_scope(items, scope_id: Optional[str]) -> list:
        if not scope_id:
            return list(items)
        scope = normalize_scope(scope_id)
        return [item for item in items if item.scope_id == scope]

    # --------------------------------------------------------
    # REPORTS
    # --------------------------------------------------------

    def get_performance_stats(
        self,
        start: datetime,
        end: datetime,
        scope_id: Optional[str] = None,
    ) -> PerformanceStats:
        """Statistics over in-memory samples with start <= timestamp <= end."""
        metrics = [
            m for m in self._filter_scope(self._metrics, scope_id)
            if start <= m.timestamp <= end
        ]
        alerts = [
            a for a in self._filter_scope(self._alerts, scope_id)
            if start <= a.timestamp <= end
        ]

        def values(metric_type: MetricType) -> List[float]:
            return [m.value for m in metrics if m.metric_type == metric_type]

        def mean(samples: List[float]) -> float:
            return sum(samples) / len(samples) if samples else 0.0

        return PerformanceStats(
            start=start,
            end=end,
            scope_id=scope_id,
            total_operations=len(metrics),
            avg_response_time=round_half_up(mean(values(MetricType.RESPONSE_TIME))),
            avg_ai_response_time=round_half_up(mean(values(MetricType.AI_RESPONSE_TIME))),
            avg_db_query_time=round_half_up(mean(values(MetricType.DB_QUERY_TIME))),
            error_rate=mean(values(MetricType.ERROR_RATE)),
            cache_hit_rate=mean(values(MetricType.CACHE_HIT_RATE)),
            warning_violations=sum(1 for m in metrics if m.level == ThresholdLevel.WARNING),
            critical_violations=sum(1 for m in metrics if m.level == ThresholdLevel.CRITICAL),
            alerts=alerts,
        )

    def generate_performance_report(self, scope_id: Optional[str] = None, days: int = 1) -> PerformanceStats:
        """In-memory report for the last N days."""
        end = self._clock.now()
        return self.get_performance_stats(end - timedelta(days=days), end, scope_id)

    async def generate_report(
        self,
        scope_id: str,
        start: datetime,
        end: datetime,
    ) -> PerformanceStats:
        """
        Historical report recomputed from persisted analytics events.

        Raises:
            ConfigurationError: No session factory configured
            RepositoryException: Query failed (logged and re-raised)
        """
        if self._session_factory is None:
            raise ConfigurationError("generate_report requires a session factory")

        scope = normalize_scope(scope_id)
        try:
            async with self._session_factory() as session:
                repo = AnalyticsEventRepository(session)
                # inclusive end
                events = await repo.get_events(scope, start, end + timedelta(microseconds=1))
        except Exception as e:
            logger.error(
                f"Error generating performance report for {scope}: {e}",
                extra={"context": {"scope_id": scope, "start": start.isoformat(), "end": end.isoformat()}},
            )
            raise

        alerts = [
            a for a in self._alerts
            if a.scope_id == scope and start <= a.timestamp <= end
        ]
        stats = PerformanceStats(start=start, end=end, scope_id=scope, alerts=alerts)
        if not events:
            return stats

        total = len(events)
        failed = sum(1 for e in events if not e.success)
        error_rate = failed / total
        ai_ceilings = self._thresholds.ai_response_time
        error_ceilings = self._thresholds.error_rate

        stats.total_operations = total
        stats.avg_response_time = average_positive(e.total_time_ms for e in events)
        stats.avg_ai_response_time = average_positive(e.ai_response_time_ms for e in events)
        stats.error_rate = error_rate
        stats.cache_hit_rate = sum(1 for e in events if e.cache_hit) / total
        stats.warning_violations = (
            sum(1 for e in events if e.ai_response_time_ms >= ai_ceilings.warning)
            + (1 if error_rate >= error_ceilings.warning else 0)
        )
        stats.critical_violations = (
            sum(1 for e in events if e.ai_response_time_ms >= ai_ceilings.critical)
            + (1 if error_rate >= error_ceilings.critical else 0)
        )
        return stats

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def wait_for_notifications(self) -> None:
        """Wait for in-flight handler notifications."""
        if self._notify_tasks:
            await asyncio.gather(*list(self._notify_tasks), return_exceptions=True)

    async def stop(self) -> None:
        """Flush pending notifications and close handlers."""
        await self.wait_for_notifications()
        for handler in self._handlers:
            await handler.close()
