"""
Tests for the Performance Monitor.

============================================================
PURPOSE
============================================================
- Threshold classification (cache hit rate inverted)
- Alert creation, cooldown and acknowledgement
- Handler notification (background tasks)
- Timing wrappers record and re-raise
- In-memory and historical reports

============================================================
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from analytics import AnalyticsRecorder, MessageEvent
from core.exceptions import ConfigurationError
from performance import (
    AlertHandler,
    AlertType,
    MetricType,
    PerformanceConfig,
    PerformanceMonitor,
    PersistingAlertHandler,
    ThresholdLevel,
    ThresholdPair,
    WebhookAlertNotifier,
)
from performance.repository import PerformanceAlertRepository


@pytest.fixture
def monitor(clock):
    return PerformanceMonitor(clock=clock)


@pytest.fixture
def handler():
    mock = AsyncMock(spec=AlertHandler)
    mock.notify.return_value = True
    mock.acknowledged.return_value = True
    return mock


# ============================================================
# CLASSIFICATION
# ============================================================

class TestClassification:

    @pytest.mark.parametrize("metric_type,value,level", [
        (MetricType.RESPONSE_TIME, 1999, ThresholdLevel.NORMAL),
        (MetricType.RESPONSE_TIME, 2000, ThresholdLevel.WARNING),
        (MetricType.RESPONSE_TIME, 5000, ThresholdLevel.CRITICAL),
        (MetricType.AI_RESPONSE_TIME, 3500, ThresholdLevel.WARNING),
        (MetricType.DB_QUERY_TIME, 2500, ThresholdLevel.CRITICAL),
        (MetricType.API_CALL_TIME, 2100, ThresholdLevel.WARNING),
        (MetricType.ERROR_RATE, 0.05, ThresholdLevel.NORMAL),
        (MetricType.ERROR_RATE, 0.15, ThresholdLevel.WARNING),
        (MetricType.ERROR_RATE, 0.25, ThresholdLevel.CRITICAL),
    ])
    def test_ceilings(self, monitor, metric_type, value, level):
        assert monitor.classify(metric_type, value) == level

    @pytest.mark.parametrize("hit_rate,level", [
        (0.9, ThresholdLevel.NORMAL),
        (0.25, ThresholdLevel.NORMAL),
        (0.15, ThresholdLevel.WARNING),
        (0.05, ThresholdLevel.CRITICAL),
    ])
    def test_cache_hit_rate_is_a_floor(self, monitor, hit_rate, level):
        assert monitor.classify(MetricType.CACHE_HIT_RATE, hit_rate) == level

    def test_update_thresholds(self, monitor):
        monitor.update_thresholds(db_query_time=ThresholdPair(100, 200))

        assert monitor.classify(MetricType.DB_QUERY_TIME, 150) == ThresholdLevel.WARNING
        assert monitor.get_thresholds().db_query_time.critical == 200

    def test_unknown_threshold_is_configuration_error(self, monitor):
        with pytest.raises(ConfigurationError):
            monitor.update_thresholds(queue_depth=ThresholdPair(1, 2))

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("PERF_RESPONSE_TIME_WARNING_MS", "1000")
        monkeypatch.setenv("PERF_ERROR_RATE_CRITICAL", "0.5")
        monkeypatch.setenv("PERF_ALERT_COOLDOWN_SECONDS", "oops")

        config = PerformanceConfig.from_env()

        assert config.thresholds.response_time == ThresholdPair(1000, 5000)
        assert config.thresholds.error_rate == ThresholdPair(0.1, 0.5)
        assert config.alert_cooldown_seconds == 60.0


# ============================================================
# RECORDING AND ALERTS
# ============================================================

class TestAlerts:

    def test_normal_sample_raises_no_alert(self, monitor):
        metric = monitor.record_response_time("handle_message", 150, "chan1")

        assert metric.level == ThresholdLevel.NORMAL
        assert metric.scope_id == "chan1"
        assert monitor.get_recent_alerts() == []

    def test_critical_sample_raises_alert(self, monitor):
        monitor.record_response_time("handle_message", 6000, "#Chan1")

        alerts = monitor.get_recent_alerts()
        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.alert_id.startswith("alert-")
        assert alert.severity == ThresholdLevel.CRITICAL
        assert alert.alert_type == AlertType.THRESHOLD_EXCEEDED
        assert alert.scope_id == "chan1"
        assert alert.message == (
            "handle_message response_time exceeded critical threshold: "
            "6000ms (threshold: 5000ms)"
        )

    def test_error_rate_alert_type_and_unit(self, monitor):
        monitor.record_error_rate("errors", 0.3)

        alert = monitor.get_recent_alerts()[0]
        assert alert.alert_type == AlertType.ERROR_RATE_HIGH
        assert alert.message.endswith("0.3 (threshold: 0.2)")

    def test_cooldown_suppresses_same_key(self, monitor, clock):
        monitor.record_response_time("op", 6000, "chan1")
        monitor.record_response_time("op", 7000, "chan1")
        assert len(monitor.get_recent_alerts()) == 1

        clock.advance(seconds=60)
        monitor.record_response_time("op", 7000, "chan1")
        assert len(monitor.get_recent_alerts()) == 2

    def test_cooldown_key_includes_scope_and_severity(self, monitor):
        monitor.record_response_time("op", 6000, "chan1")
        monitor.record_response_time("op", 6000, "chan2")
        monitor.record_response_time("op", 3000, "chan1")
        monitor.record_db_query_time("op", 3000, "chan1")

        assert len(monitor.get_recent_alerts()) == 4

    def test_rings_are_bounded(self, clock):
        monitor = PerformanceMonitor(
            PerformanceConfig(max_metrics=5, max_alerts=2, alert_cooldown_seconds=0),
            clock=clock,
        )
        for index in range(10):
            monitor.record_response_time("op", 6000 + index)

        assert len(monitor.get_recent_metrics(count=100)) == 5
        assert len(monitor.get_recent_alerts(count=100)) == 2

    def test_acknowledge(self, monitor):
        monitor.record_response_time("op", 6000, "chan1")
        monitor.record_response_time("op", 6000, "chan2")
        alert_id = monitor.get_recent_alerts(scope_id="chan1")[0].alert_id

        assert monitor.acknowledge_alert(alert_id) is True
        assert monitor.acknowledge_alert(alert_id) is False
        assert monitor.acknowledge_alert("alert-unknown") is False

        open_alerts = monitor.get_unacknowledged_alerts()
        assert [a.scope_id for a in open_alerts] == ["chan2"]
        assert monitor.acknowledge_all_alerts() == 1
        assert monitor.get_unacknowledged_alerts() == []

    def test_clear_old_data_resets_cooldowns(self, monitor, clock):
        monitor.record_response_time("op", 6000, "chan1")
        clock.advance(hours=2)
        monitor.record_response_time("op", 100, "chan1")

        monitor.clear_old_data(older_than_seconds=3600)

        assert len(monitor.get_recent_metrics()) == 1
        assert monitor.get_recent_alerts() == []

        monitor.record_response_time("op", 6000, "chan1")
        assert len(monitor.get_recent_alerts()) == 1

    def test_rate_analysis(self, monitor):
        assert monitor.analyze_error_rate("chan1", 0, 0) is None
        assert monitor.analyze_cache_performance("chan1", 0, 0) is None

        error = monitor.analyze_error_rate("chan1", 10, 3)
        cache = monitor.analyze_cache_performance("chan1", 1, 10)

        assert error.operation == "error_rate_analysis_chan1"
        assert error.value == pytest.approx(0.3)
        assert error.level == ThresholdLevel.CRITICAL
        assert cache.operation == "cache_performance_analysis_chan1"
        assert cache.level == ThresholdLevel.CRITICAL


class TestHandlers:

    @pytest.mark.asyncio
    async def test_handlers_notified_in_background(self, clock, handler):
        monitor = PerformanceMonitor(clock=clock, handlers=[handler])

        monitor.record_response_time("op", 6000)
        await monitor.wait_for_notifications()

        handler.notify.assert_awaited_once()
        alert = handler.notify.await_args.args[0]
        assert alert.severity == ThresholdLevel.CRITICAL

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_affect_others(self, clock, handler):
        broken = AsyncMock(spec=AlertHandler)
        broken.notify.side_effect = RuntimeError("pager down")
        monitor = PerformanceMonitor(clock=clock, handlers=[broken, handler])

        monitor.record_response_time("op", 6000)
        await monitor.wait_for_notifications()

        handler.notify.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_acknowledgement_is_forwarded(self, clock, handler):
        monitor = PerformanceMonitor(clock=clock, handlers=[handler])
        monitor.record_response_time("op", 6000)
        alert_id = monitor.get_recent_alerts()[0].alert_id

        monitor.acknowledge_alert(alert_id)
        await monitor.wait_for_notifications()

        handler.acknowledged.assert_awaited_once()

    def test_without_event_loop_handlers_are_skipped(self, clock, handler):
        monitor = PerformanceMonitor(clock=clock, handlers=[handler])

        monitor.record_response_time("op", 6000)

        handler.notify.assert_not_called()
        assert len(monitor.get_recent_alerts()) == 1

    @pytest.mark.asyncio
    async def test_stop_closes_handlers(self, clock, handler):
        monitor = PerformanceMonitor(clock=clock)
        monitor.add_handler(handler)
        await monitor.stop()
        handler.close.assert_awaited_once()

        monitor.remove_handler(handler)
        monitor.record_response_time("op", 6000)
        await monitor.wait_for_notifications()
        handler.notify.assert_not_called()

    @pytest.mark.asyncio
    async def test_persisting_handler(self, clock, session_factory):
        monitor = PerformanceMonitor(
            clock=clock, handlers=[PersistingAlertHandler(session_factory)]
        )
        monitor.record_response_time("op", 6000, "chan1")
        await monitor.wait_for_notifications()

        alert_id = monitor.get_recent_alerts()[0].alert_id
        monitor.acknowledge_alert(alert_id)
        await monitor.wait_for_notifications()

        async with session_factory() as session:
            records = await PerformanceAlertRepository(session).get_recent(scope_id="chan1")

        assert len(records) == 1
        assert records[0].id == alert_id
        assert records[0].acknowledged is True
        assert records[0].metrics[0]["value"] == 6000

    @pytest.mark.asyncio
    async def test_webhook_skips_warnings_when_critical_only(self, monitor):
        notifier = WebhookAlertNotifier(
            "http://localhost:9/hook", min_severity=ThresholdLevel.CRITICAL
        )
        monitor.record_response_time("op", 3000)

        assert await notifier.notify(monitor.get_recent_alerts()[0]) is True
        await notifier.close()


# ============================================================
# TIMING WRAPPERS
# ============================================================

class TestTimingWrappers:

    @pytest.mark.asyncio
    async def test_measure_operation_records_success(self, monitor):
        async with monitor.measure_operation("work", scope_id="chan1") as metadata:
            metadata["rows"] = 3

        metric = monitor.get_recent_metrics()[0]
        assert metric.operation == "work"
        assert metric.metric_type == MetricType.RESPONSE_TIME
        assert metric.metadata == {"rows": 3, "success": True}

    @pytest.mark.asyncio
    async def test_measure_operation_reraises(self, monitor):
        with pytest.raises(ValueError):
            async with monitor.measure_operation("work"):
                raise ValueError("bad input")

        metric = monitor.get_recent_metrics()[0]
        assert metric.metadata == {"success": False, "error": "bad input"}

    @pytest.mark.asyncio
    async def test_track_database_query(self, monitor):
        query = AsyncMock(return_value=[1, 2])

        assert await monitor.track_database_query("load", query) == [1, 2]
        assert monitor.get_recent_metrics()[0].metric_type == MetricType.DB_QUERY_TIME

    @pytest.mark.asyncio
    async def test_track_api_call_reraises(self, monitor):
        call = AsyncMock(side_effect=TimeoutError("slow"))

        with pytest.raises(TimeoutError):
            await monitor.track_api_call("ai", call, "chan1")

        metric = monitor.get_recent_metrics()[0]
        assert metric.metric_type == MetricType.API_CALL_TIME
        assert metric.metadata["success"] is False


# ============================================================
# REPORTS
# ============================================================

class TestReports:

    def test_in_memory_report(self, monitor, clock):
        monitor.record_response_time("op", 100, "chan1")
        monitor.record_response_time("op", 201, "chan1")
        monitor.record_ai_response_time("ai", 3500, "chan1")
        monitor.record_cache_hit_rate("cache", 0.5, "chan1")
        monitor.record_response_time("op", 9999, "chan2")

        report = monitor.generate_performance_report("chan1")

        assert report.total_operations == 4
        assert report.avg_response_time == 151
        assert report.avg_ai_response_time == 3500
        assert report.cache_hit_rate == 0.5
        assert report.warning_violations == 1
        assert report.critical_violations == 0
        assert len(report.alerts) == 1

    def test_report_window(self, monitor, clock):
        monitor.record_response_time("op", 100)
        clock.advance(days=2)
        monitor.record_response_time("op", 300)

        assert monitor.generate_performance_report(days=1).total_operations == 1

    @pytest.mark.asyncio
    async def test_historical_report_requires_storage(self, monitor, clock):
        with pytest.raises(ConfigurationError):
            await monitor.generate_report("chan1", clock.now(), clock.now())

    @pytest.mark.asyncio
    async def test_historical_report(self, clock, session_factory):
        recorder = AnalyticsRecorder(session_factory, clock=clock)
        start = clock.now()
        samples = [(1000, 500, True, True), (4000, 4200, True, False), (9000, 8500, False, False)]
        for total_ms, ai_ms, success, cache_hit in samples:
            await recorder.log_message_event(MessageEvent(
                scope_id="chan1",
                subject_id="u1",
                total_time_ms=total_ms,
                ai_response_time_ms=ai_ms,
                success=success,
                cache_hit=cache_hit,
                received_at=start,
            ))
        monitor = PerformanceMonitor(clock=clock, session_factory=session_factory)

        report = await monitor.generate_report("chan1", start, start)

        assert report.total_operations == 3
        assert report.avg_response_time == 4667
        assert report.avg_ai_response_time == 4400
        assert report.error_rate == pytest.approx(1 / 3)
        assert report.cache_hit_rate == pytest.approx(1 / 3)
        assert report.warning_violations == 3
        assert report.critical_violations == 2

    @pytest.mark.asyncio
    async def test_historical_report_without_events(self, clock, session_factory):
        monitor = PerformanceMonitor(clock=clock, session_factory=session_factory)

        report = await monitor.generate_report(
            "chan1", clock.now(), clock.now() + timedelta(hours=1)
        )

        assert report.total_operations == 0
        assert report.error_rate == 0.0
