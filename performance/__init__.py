"""
Performance Package.

Threshold-based performance monitoring with de-duplicated alerts.
"""

from performance.alerting import AlertHandler, PersistingAlertHandler, WebhookAlertNotifier
from performance.config import PerformanceConfig, PerformanceThresholds, ThresholdPair
from performance.monitor import PerformanceMonitor
from performance.types import (
    AlertType,
    MetricType,
    PerformanceAlert,
    PerformanceMetric,
    PerformanceStats,
    ThresholdLevel,
)

__all__ = [
    "AlertHandler",
    "PersistingAlertHandler",
    "WebhookAlertNotifier",
    "PerformanceConfig",
    "PerformanceThresholds",
    "ThresholdPair",
    "PerformanceMonitor",
    "AlertType",
    "MetricType",
    "PerformanceAlert",
    "PerformanceMetric",
    "PerformanceStats",
    "ThresholdLevel",
]
