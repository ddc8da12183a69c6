"""
Engagement Package.

Real-time engagement detection: chat velocity, hype moments,
scored stream events and contextual responses.
"""

from engagement.config import EngagementConfig
from engagement.responder import ContextualResponder
from engagement.templates import ResponseTemplates
from engagement.tracker import EngagementTracker
from engagement.types import (
    EngagementDetection,
    EngagementEventType,
    EngagementStatistics,
    EventSource,
)

__all__ = [
    "EngagementConfig",
    "ContextualResponder",
    "ResponseTemplates",
    "EngagementTracker",
    "EngagementDetection",
    "EngagementEventType",
    "EngagementStatistics",
    "EventSource",
]
