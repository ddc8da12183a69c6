"""
Performance - ORM Models.
"""

from sqlalchemy import Boolean, Column, DateTime, Index, JSON, String, Text

from core.clock import utcnow
from storage.models.base import Base


class PerformanceAlertRecord(Base):
    """
    Persisted performance alert.

    Created when the monitor raises an alert; only the
    acknowledgement fields are ever updated.
    """

    __tablename__ = "performance_alerts"

    id = Column(String(64), primary_key=True)
    """Alert id assigned by the monitor."""

    created_at = Column(DateTime, nullable=False, default=utcnow)
    scope_id = Column(String(128), nullable=True)

    alert_type = Column(String(32), nullable=False)
    severity = Column(String(16), nullable=False)
    """warning or critical."""

    message = Column(Text, nullable=False)
    metrics = Column(JSON, nullable=False, default=list)
    """Triggering metric snapshots."""

    metadata_json = Column("metadata", JSON, nullable=False, default=dict)

    acknowledged = Column(Boolean, nullable=False, default=False)
    acknowledged_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_perf_alert_time", "created_at"),
        Index("idx_perf_alert_scope", "scope_id", "created_at"),
    )
