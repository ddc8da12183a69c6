"""
Performance - Configuration.

============================================================
DEFAULT THRESHOLDS (warning / critical)
============================================================
- Response time:     2000 / 5000 ms
- AI response time:  3000 / 8000 ms
- DB query time:      500 / 2000 ms
- API call time:     uses response time thresholds
- Error rate:         0.1 / 0.2
- Cache hit rate:     0.2 / 0.1 (floors: lower is worse)

============================================================
"""

import os
import logging
from dataclasses import dataclass, field, replace
from typing import Optional

from performance.types import MetricType


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThresholdPair:
    """Warning and critical thresholds for one metric."""

    warning: float
    critical: float


@dataclass
class PerformanceThresholds:
    """Thresholds per metric type."""

    response_time: ThresholdPair = field(default_factory=lambda: ThresholdPair(2000, 5000))
    ai_response_time: ThresholdPair = field(default_factory=lambda: ThresholdPair(3000, 8000))
    db_query_time: ThresholdPair = field(default_factory=lambda: ThresholdPair(500, 2000))
    error_rate: ThresholdPair = field(default_factory=lambda: ThresholdPair(0.1, 0.2))

    cache_hit_rate: ThresholdPair = field(default_factory=lambda: ThresholdPair(0.2, 0.1))
    """Floors. Converted to miss-rate ceilings for comparison."""

    def ceilings_for(self, metric_type: MetricType) -> Optional[ThresholdPair]:
        """
        Ceilings for the >= comparison.

        For cache hit rate these apply to the miss rate (1 - value).
        """
        if metric_type == MetricType.RESPONSE_TIME:
            return self.response_time
        if metric_type == MetricType.AI_RESPONSE_TIME:
            return self.ai_response_time
        if metric_type == MetricType.DB_QUERY_TIME:
            return self.db_query_time
        if metric_type == MetricType.API_CALL_TIME:
            return self.response_time
        if metric_type == MetricType.ERROR_RATE:
            return self.error_rate
        if metric_type == MetricType.CACHE_HIT_RATE:
            return ThresholdPair(
                warning=1 - self.cache_hit_rate.warning,
                critical=1 - self.cache_hit_rate.critical,
            )
        return None

    def updated(self, **pairs: ThresholdPair) -> "PerformanceThresholds":
        return replace(self, **pairs)


@dataclass
class PerformanceConfig:
    """Performance monitor configuration."""

    thresholds: PerformanceThresholds = field(default_factory=PerformanceThresholds)

    max_metrics: int = 1000
    """Samples kept in memory."""

    max_alerts: int = 100
    """Alerts kept in memory."""

    alert_cooldown_seconds: float = 60.0
    """Suppress repeats of the same (metric type, scope, severity)."""

    @classmethod
    def from_env(cls) -> "PerformanceConfig":
        """Load configuration from environment variables."""
        defaults = PerformanceThresholds()
        thresholds = PerformanceThresholds(
            response_time=_env_pair("PERF_RESPONSE_TIME", defaults.response_time),
            ai_response_time=_env_pair("PERF_AI_RESPONSE_TIME", defaults.ai_response_time),
            db_query_time=_env_pair("PERF_DB_QUERY_TIME", defaults.db_query_time),
            error_rate=_env_pair("PERF_ERROR_RATE", defaults.error_rate, suffix=""),
            cache_hit_rate=_env_pair("PERF_CACHE_HIT_RATE", defaults.cache_hit_rate, suffix=""),
        )
        return cls(
            thresholds=thresholds,
            max_metrics=int(_env_float("PERF_MAX_METRICS", 1000)),
            max_alerts=int(_env_float("PERF_MAX_ALERTS", 100)),
            alert_cooldown_seconds=_env_float("PERF_ALERT_COOLDOWN_SECONDS", 60.0),
        )


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Invalid number for {key}={value!r}, using default {default}")
        return default


def _env_pair(prefix: str, default: ThresholdPair, suffix: str = "_MS") -> ThresholdPair:
    """Read <prefix>_WARNING<suffix> and <prefix>_CRITICAL<suffix>."""
    return ThresholdPair(
        warning=_env_float(f"{prefix}_WARNING{suffix}", default.warning),
        critical=_env_float(f"{prefix}_CRITICAL{suffix}", default.critical),
    )
