"""
Engagement - Contextual Response Templates.

Messages vary with the size of the event (resub months, gift
count, raid size, cheer amount, chat velocity) so the same event
type does not always produce the same text.
"""

import random
from typing import Dict, List, Optional

from engagement.types import EngagementDetection, EngagementEventType


TEMPLATES: Dict[str, List[str]] = {
    "subscription_new": [
        "Welcome to the squad, {name}! Thanks for subscribing! Let's game!",
        "{name} just joined the squad! Thanks for the sub!",
    ],
    "subscription_resub": [
        "Thank you {name} for {months} months of support! Your loyalty means everything!",
        "{months} months! {name} has been here through it all. Thank you!",
    ],
    "gift_single": [
        "{name} just gifted a sub! Spread the love!",
    ],
    "gift_multiple": [
        "{name} just gifted {gift_count} subs! The community is growing!",
        "{gift_count} gifted subs from {name}! What a legend!",
    ],
    "raid_small": [
        "{name} is raiding with {viewers} viewers! Welcome, raiders!",
    ],
    "raid_large": [
        "RAID INCOMING! {viewers} raiders from {name}! Let's show them some love!",
        "{viewers} raiders just arrived with {name}! Welcome everyone!",
    ],
    "follow": [
        "Welcome to the stream, {name}! Thanks for the follow!",
        "Thanks for the follow, {name}! Glad to have you here!",
    ],
    "hype_normal": [
        "Chat is popping off! Love the energy!",
        "The energy in here is amazing right now!",
    ],
    "hype_extreme": [
        "CHAT IS ON FIRE! {velocity} messages/min! Keep the energy going!",
    ],
    "cheer_small": [
        "{name} just cheered {bits} bits!",
    ],
    "cheer_medium": [
        "{name} just cheered {bits} bits! Thank you!",
    ],
    "cheer_large": [
        "{name} just cheered {bits} bits! Absolutely legendary!",
    ],
}

LARGE_RAID_VIEWERS = 10
EXTREME_HYPE_VELOCITY = 30
MEDIUM_CHEER_BITS = 100
LARGE_CHEER_BITS = 1000


class ResponseTemplates:
    """Picks and renders a contextual message for an event."""

    def __init__(
        self,
        templates: Optional[Dict[str, List[str]]] = None,
        rng: Optional[random.Random] = None,
    ):
        self._templates = templates or TEMPLATES
        self._rng = rng or random.Random()

    @staticmethod
    def template_key(event: EngagementDetection) -> Optional[str]:
        """Template group for the event, chosen by magnitude."""
        if event.event_type == EngagementEventType.SUBSCRIPTION:
            return "subscription_resub" if (event.months or 0) > 1 else "subscription_new"

        if event.event_type == EngagementEventType.GIFT_SUBSCRIPTION:
            return "gift_multiple" if (event.gift_count or 0) > 1 else "gift_single"

        if event.event_type == EngagementEventType.RAID:
            return "raid_large" if (event.viewer_count or 0) > LARGE_RAID_VIEWERS else "raid_small"

        if event.event_type == EngagementEventType.FOLLOW:
            return "follow"

        if event.event_type == EngagementEventType.HYPE_MOMENT:
            velocity = event.message_velocity or 0
            return "hype_extreme" if velocity > EXTREME_HYPE_VELOCITY else "hype_normal"

        if event.event_type == EngagementEventType.CHEER:
            bits = event.bits or 0
            if bits >= LARGE_CHEER_BITS:
                return "cheer_large"
            if bits >= MEDIUM_CHEER_BITS:
                return "cheer_medium"
            return "cheer_small"

        return None

    def render(self, event: EngagementDetection) -> Optional[str]:
        """Message for the event, or None when no response applies."""
        key = self.template_key(event)
        choices = self._templates.get(key) if key else None
        if not choices:
            return None

        template = self._rng.choice(choices)
        return template.format(
            name=event.display_name or event.subject_id or "someone",
            months=event.months or 1,
            gift_count=event.gift_count or 1,
            viewers=event.viewer_count if event.viewer_count is not None else "some",
            velocity=round(event.message_velocity or 0),
            bits=event.bits or 0,
        )
