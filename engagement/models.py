"""
Engagement - ORM Models.

One row per detected engagement event. Updated once when the
contextual response is sent.
"""

from sqlalchemy import Boolean, Column, DateTime, Float, Index, Integer, String, Text

from core.clock import utcnow
from storage.models.base import Base, new_id


class EngagementEventRecord(Base):
    """Persisted engagement event."""

    __tablename__ = "engagement_events"

    id = Column(String(36), primary_key=True, default=new_id)

    scope_id = Column(String(128), nullable=False)
    event_type = Column(String(32), nullable=False)
    """subscription, gift_subscription, raid, follow, cheer, hype_moment."""

    event_source = Column(String(32), nullable=False)
    """chat_velocity or webhook."""

    occurred_at = Column(DateTime, nullable=False, default=utcnow)
    detected_at = Column(DateTime, nullable=False, default=utcnow)

    subject_id = Column(String(128), nullable=True)
    display_name = Column(String(128), nullable=True)

    # Event-specific attributes
    months = Column(Integer, nullable=True)
    tier = Column(String(16), nullable=True)
    gift_count = Column(Integer, nullable=True)
    viewer_count = Column(Integer, nullable=True)
    bits = Column(Integer, nullable=True)
    message_velocity = Column(Float, nullable=True)

    chat_activity = Column(Integer, nullable=False, default=0)
    engagement_score = Column(Float, nullable=False, default=0.0)

    # Response
    bot_responded = Column(Boolean, nullable=False, default=False)
    response_text = Column(Text, nullable=True)
    response_delay_ms = Column(Integer, nullable=True)
    responded_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_engagement_scope_time", "scope_id", "occurred_at"),
        Index("idx_engagement_type", "event_type"),
    )
