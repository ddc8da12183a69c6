"""
Analytics - Type Definitions.

============================================================
PURPOSE
============================================================
Types for per-message telemetry and its time-bucketed rollups.

- MessageEvent: input to the recorder, one per processed message
- RollupStats: result of reducing events (one bucket or any range)
- AggregationRunResult: outcome of one aggregation run

============================================================
BUCKETS
============================================================
Hourly buckets align to UTC hour boundaries, daily buckets to
UTC midnight. All datetimes are naive UTC.

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from core.clock import start_of_day, start_of_hour


class MessageType(str, Enum):
    """Classification of an inbound chat message."""

    COMMAND = "command"
    QUESTION = "question"
    OTHER = "other"


ERROR_RATE_LIMIT = "rate_limit"
ERROR_API = "api_error"


class Granularity(str, Enum):
    """Rollup bucket size."""

    HOURLY = "hourly"
    DAILY = "daily"

    @property
    def length(self) -> timedelta:
        return timedelta(hours=1) if self is Granularity.HOURLY else timedelta(days=1)

    def bucket_start(self, value: datetime) -> datetime:
        """Start of the bucket containing value."""
        if self is Granularity.HOURLY:
            return start_of_hour(value)
        return start_of_day(value)

    def buckets(self, start: datetime, end: datetime) -> List[datetime]:
        """Bucket starts covering [start, end)."""
        result = []
        current = self.bucket_start(start)
        while current < end:
            result.append(current)
            current = current + self.length
        return result


@dataclass
class MessageEvent:
    """
    Telemetry for one processed message.

    DB and external API timings are tracked separately by the
    performance monitor.
    """

    scope_id: str
    subject_id: str
    display_name: str = ""
    message_type: MessageType = MessageType.OTHER
    command: Optional[str] = None

    question_length: int = 0
    response_length: int = 0

    processing_time_ms: int = 0
    ai_response_time_ms: int = 0
    total_time_ms: int = 0

    cache_hit: bool = False
    success: bool = True
    error_type: Optional[str] = None
    error_message: Optional[str] = None

    was_moderated: bool = False
    moderation_action: Optional[str] = None

    received_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None


@dataclass
class RollupStats:
    """Statistics computed from a set of raw events."""

    total_messages: int = 0
    successful_messages: int = 0
    failed_messages: int = 0
    unique_users: int = 0
    command_counts: Dict[str, int] = field(default_factory=dict)
    question_count: int = 0
    avg_processing_time_ms: int = 0
    avg_response_time_ms: int = 0
    cache_hit_rate: float = 0.0
    rate_limit_hits: int = 0
    api_errors: int = 0
    moderation_actions: int = 0
    other_errors: int = 0
    new_users: int = 0
    returning_users: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_messages": self.total_messages,
            "successful_messages": self.successful_messages,
            "failed_messages": self.failed_messages,
            "unique_users": self.unique_users,
            "command_counts": dict(self.command_counts),
            "question_count": self.question_count,
            "avg_processing_time_ms": self.avg_processing_time_ms,
            "avg_response_time_ms": self.avg_response_time_ms,
            "cache_hit_rate": self.cache_hit_rate,
            "rate_limit_hits": self.rate_limit_hits,
            "api_errors": self.api_errors,
            "moderation_actions": self.moderation_actions,
            "other_errors": self.other_errors,
            "new_users": self.new_users,
            "returning_users": self.returning_users,
        }


@dataclass
class AggregationRunResult:
    """Outcome of an aggregation run across scopes."""

    scopes_processed: int = 0
    rollups_created: int = 0
    rollups_updated: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scopes_processed": self.scopes_processed,
            "rollups_created": self.rollups_created,
            "rollups_updated": self.rollups_updated,
            "errors": list(self.errors),
        }
