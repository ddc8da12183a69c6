"""
Engagement - Type Definitions.

============================================================
PURPOSE
============================================================
Types for engagement detection: hype moments derived from
chat velocity and discrete high-value stream events
(subscriptions, gifts, raids, cheers, follows).

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class EngagementEventType(str, Enum):
    """Kinds of engagement events."""

    SUBSCRIPTION = "subscription"
    GIFT_SUBSCRIPTION = "gift_subscription"
    RAID = "raid"
    FOLLOW = "follow"
    CHEER = "cheer"
    HYPE_MOMENT = "hype_moment"


class EventSource(str, Enum):
    """Where an engagement event came from."""

    CHAT_VELOCITY = "chat_velocity"
    WEBHOOK = "webhook"


@dataclass
class EngagementDetection:
    """
    A detected engagement event.

    Created once per event; response fields are filled in when
    the contextual response is sent.
    """

    event_id: str
    scope_id: str
    event_type: EngagementEventType
    source: EventSource
    occurred_at: datetime

    subject_id: Optional[str] = None
    display_name: Optional[str] = None

    # Event-specific attributes
    months: Optional[int] = None
    tier: Optional[str] = None
    gift_count: Optional[int] = None
    viewer_count: Optional[int] = None
    bits: Optional[int] = None
    message_velocity: Optional[float] = None

    chat_activity: int = 0
    engagement_score: float = 0.0

    responded: bool = False
    response_text: Optional[str] = None
    response_delay_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "scope_id": self.scope_id,
            "event_type": self.event_type.value,
            "source": self.source.value,
            "occurred_at": self.occurred_at.isoformat(),
            "subject_id": self.subject_id,
            "display_name": self.display_name,
            "months": self.months,
            "tier": self.tier,
            "gift_count": self.gift_count,
            "viewer_count": self.viewer_count,
            "bits": self.bits,
            "message_velocity": self.message_velocity,
            "chat_activity": self.chat_activity,
            "engagement_score": self.engagement_score,
            "responded": self.responded,
            "response_text": self.response_text,
            "response_delay_ms": self.response_delay_ms,
        }


@dataclass
class EngagementStatistics:
    """Aggregate over engagement events in a date range."""

    total_events: int = 0
    events_by_type: Dict[str, int] = field(default_factory=dict)
    average_score: float = 0.0
    peak_score: float = 0.0
    response_rate: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_events": self.total_events,
            "events_by_type": dict(self.events_by_type),
            "average_score": self.average_score,
            "peak_score": self.peak_score,
            "response_rate": self.response_rate,
        }
