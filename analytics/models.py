"""
Analytics - ORM Models.

============================================================
TABLES
============================================================
chat_analytics_events
    One immutable row per processed message. The only input
    to aggregation.

analytics_rollups
    One row per (scope, granularity, bucket_start). A derived
    materialisation: recomputed and overwritten on every run
    for its bucket.

============================================================
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)

from core.clock import utcnow
from storage.models.base import Base, TimestampMixin, new_id


class ChatAnalyticsEventRecord(Base):
    """Raw per-message telemetry. Never updated."""

    __tablename__ = "chat_analytics_events"

    id = Column(String(36), primary_key=True, default=new_id)

    message_id = Column(String(255), nullable=False, unique=True)
    """Generated unique id: msg_<scope>_<subject>_<epoch ms>_<random>."""

    scope_id = Column(String(128), nullable=False)
    subject_id = Column(String(128), nullable=False)
    display_name = Column(String(128), nullable=False, default="")

    message_type = Column(String(16), nullable=False)
    """command, question or other."""

    command = Column(String(64), nullable=True)

    question_length = Column(Integer, nullable=False, default=0)
    response_length = Column(Integer, nullable=False, default=0)

    # Timings (ms)
    processing_time_ms = Column(Integer, nullable=False, default=0)
    ai_response_time_ms = Column(Integer, nullable=False, default=0)
    total_time_ms = Column(Integer, nullable=False, default=0)

    cache_hit = Column(Boolean, nullable=False, default=False)
    success = Column(Boolean, nullable=False, default=True)
    error_type = Column(String(64), nullable=True)
    error_message = Column(Text, nullable=True)

    was_moderated = Column(Boolean, nullable=False, default=False)
    moderation_action = Column(String(16), nullable=True)

    received_at = Column(DateTime, nullable=False, default=utcnow)
    processed_at = Column(DateTime, nullable=False, default=utcnow)
    responded_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_analytics_scope_received", "scope_id", "received_at"),
        Index("idx_analytics_scope_subject", "scope_id", "subject_id"),
    )


class AnalyticsRollupRecord(Base, TimestampMixin):
    """Bucketed statistics for one scope."""

    __tablename__ = "analytics_rollups"

    id = Column(String(36), primary_key=True, default=new_id)

    scope_id = Column(String(128), nullable=False)
    granularity = Column(String(16), nullable=False)
    """hourly or daily."""

    bucket_start = Column(DateTime, nullable=False)
    hour = Column(Integer, nullable=True)
    """0-23 for hourly buckets, NULL for daily."""

    # Counts
    total_messages = Column(Integer, nullable=False, default=0)
    successful_messages = Column(Integer, nullable=False, default=0)
    failed_messages = Column(Integer, nullable=False, default=0)
    unique_users = Column(Integer, nullable=False, default=0)
    command_counts = Column(JSON, nullable=False, default=dict)
    question_count = Column(Integer, nullable=False, default=0)

    # Performance
    avg_processing_time_ms = Column(Integer, nullable=False, default=0)
    avg_response_time_ms = Column(Integer, nullable=False, default=0)
    cache_hit_rate = Column(Float, nullable=False, default=0.0)

    # Errors
    rate_limit_hits = Column(Integer, nullable=False, default=0)
    api_errors = Column(Integer, nullable=False, default=0)
    moderation_actions = Column(Integer, nullable=False, default=0)
    other_errors = Column(Integer, nullable=False, default=0)

    # Users
    new_users = Column(Integer, nullable=False, default=0)
    returning_users = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint(
            "scope_id", "granularity", "bucket_start", name="uq_rollup_scope_bucket"
        ),
        Index("idx_rollup_scope_granularity", "scope_id", "granularity", "bucket_start"),
    )
