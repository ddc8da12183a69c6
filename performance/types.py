"""
Performance - Type Definitions.

============================================================
PURPOSE
============================================================
Metric samples, threshold levels, alerts and report shapes
for the performance monitor.

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class MetricType(str, Enum):
    """Kinds of performance samples."""

    RESPONSE_TIME = "response_time"
    AI_RESPONSE_TIME = "ai_response_time"
    DB_QUERY_TIME = "db_query_time"
    API_CALL_TIME = "api_call_time"
    ERROR_RATE = "error_rate"
    CACHE_HIT_RATE = "cache_hit_rate"

    @property
    def is_latency(self) -> bool:
        return self in (
            MetricType.RESPONSE_TIME,
            MetricType.AI_RESPONSE_TIME,
            MetricType.DB_QUERY_TIME,
            MetricType.API_CALL_TIME,
        )


class ThresholdLevel(str, Enum):
    """Classification of a sample against its thresholds."""

    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertType(str, Enum):
    THRESHOLD_EXCEEDED = "threshold_exceeded"
    ERROR_RATE_HIGH = "error_rate_high"
    PERFORMANCE_DEGRADATION = "performance_degradation"
    ANOMALY_DETECTED = "anomaly_detected"


@dataclass
class PerformanceMetric:
    """One recorded sample."""

    timestamp: datetime
    operation: str
    metric_type: MetricType
    value: float
    level: ThresholdLevel
    scope_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "operation": self.operation,
            "metric_type": self.metric_type.value,
            "value": self.value,
            "level": self.level.value,
            "scope_id": self.scope_id,
            "metadata": dict(self.metadata),
        }


@dataclass
class PerformanceAlert:
    """
    An alert raised when a sample crosses a threshold outside
    of cooldown. Mutated only by acknowledgement.
    """

    alert_id: str
    timestamp: datetime
    alert_type: AlertType
    severity: ThresholdLevel
    message: str
    scope_id: Optional[str] = None
    metrics: List[PerformanceMetric] = field(default_factory=list)
    acknowledged: bool = False
    acknowledged_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "timestamp": self.timestamp.isoformat(),
            "alert_type": self.alert_type.value,
            "severity": self.severity.value,
            "message": self.message,
            "scope_id": self.scope_id,
            "metrics": [m.to_dict() for m in self.metrics],
            "acknowledged": self.acknowledged,
            "acknowledged_at": (
                self.acknowledged_at.isoformat() if self.acknowledged_at else None
            ),
            "metadata": dict(self.metadata),
        }


@dataclass
class PerformanceStats:
    """Performance report for a period (in-memory or historical)."""

    start: datetime
    end: datetime
    scope_id: Optional[str] = None
    total_operations: int = 0
    avg_response_time: int = 0
    avg_ai_response_time: int = 0
    avg_db_query_time: int = 0
    error_rate: float = 0.0
    cache_hit_rate: float = 0.0
    warning_violations: int = 0
    critical_violations: int = 0
    alerts: List[PerformanceAlert] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scope_id": self.scope_id,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "total_operations": self.total_operations,
            "avg_response_time": self.avg_response_time,
            "avg_ai_response_time": self.avg_ai_response_time,
            "avg_db_query_time": self.avg_db_query_time,
            "error_rate": self.error_rate,
            "cache_hit_rate": self.cache_hit_rate,
            "threshold_violations": {
                "warning": self.warning_violations,
                "critical": self.critical_violations,
            },
            "alerts": [a.to_dict() for a in self.alerts],
        }
