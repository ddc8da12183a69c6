"""
Analytics Package.

Per-message telemetry and its hourly/daily rollups.

Components:
- AnalyticsRecorder: writes raw events
- reduce_events: pure reduction shared by every statistics view
- AnalyticsAggregator: idempotent bucket rollups and range queries
"""

from analytics.aggregator import AnalyticsAggregator
from analytics.recorder import AnalyticsRecorder
from analytics.reduction import reduce_events
from analytics.types import (
    AggregationRunResult,
    Granularity,
    MessageEvent,
    MessageType,
    RollupStats,
)

__all__ = [
    "AnalyticsAggregator",
    "AnalyticsRecorder",
    "reduce_events",
    "AggregationRunResult",
    "Granularity",
    "MessageEvent",
    "MessageType",
    "RollupStats",
]
