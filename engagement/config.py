"""
Engagement - Configuration.

============================================================
DEFAULTS
============================================================
- Window: 60s of message timestamps per scope
- Hype threshold: 20 messages/minute
- Hype cooldown: 5 minutes per scope
- Score: base 10 x type multiplier x magnitude, capped at 100
- Auto-respond after 2s
- History cleanup every 10 minutes

============================================================
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Dict

from engagement.types import EngagementEventType


logger = logging.getLogger(__name__)


MAX_ENGAGEMENT_SCORE = 100.0


def _default_multipliers() -> Dict[EngagementEventType, float]:
    return {
        EngagementEventType.SUBSCRIPTION: 5.0,
        EngagementEventType.GIFT_SUBSCRIPTION: 5.0,
        EngagementEventType.RAID: 4.0,
        EngagementEventType.FOLLOW: 1.0,
        EngagementEventType.HYPE_MOMENT: 2.0,
        EngagementEventType.CHEER: 1.5,
    }


@dataclass
class EngagementConfig:
    """Engagement tracker configuration."""

    hype_threshold: float = 20.0
    """Messages per minute at which a hype moment is raised."""

    window_seconds: float = 60.0
    """Sliding window length for velocity."""

    cooldown_seconds: float = 300.0
    """Minimum time between hype moments in one scope."""

    base_score: float = 10.0

    multipliers: Dict[EngagementEventType, float] = field(default_factory=_default_multipliers)
    """Per-type score multipliers."""

    auto_respond: bool = True
    """Post a contextual chat message for each event."""

    response_delay_seconds: float = 2.0
    """Delay before the contextual message is sent."""

    cleanup_interval_seconds: float = 600.0
    """How often stale history is discarded."""

    def multiplier_for(self, event_type: EngagementEventType) -> float:
        return self.multipliers.get(event_type, 1.0)

    @classmethod
    def from_env(cls) -> "EngagementConfig":
        """Load configuration from environment variables."""
        return cls(
            hype_threshold=_env_float("ENGAGEMENT_HYPE_THRESHOLD", 20.0),
            window_seconds=_env_float("ENGAGEMENT_WINDOW_SECONDS", 60.0),
            cooldown_seconds=_env_float("ENGAGEMENT_COOLDOWN_SECONDS", 300.0),
            auto_respond=os.getenv("ENGAGEMENT_AUTO_RESPOND", "true").lower() == "true",
            response_delay_seconds=_env_float("ENGAGEMENT_RESPONSE_DELAY_SECONDS", 2.0),
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
