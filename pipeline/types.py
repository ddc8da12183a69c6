"""
Pipeline - Type Definitions.

============================================================
PURPOSE
============================================================
Inbound chat messages, the AI responder collaborator and the
per-message outcome returned to the host.

============================================================
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from analytics.types import MessageType
from engagement.types import EngagementDetection
from moderation.types import ModerationResult, ViolationOutcome


COMMAND_PREFIX = "!"


@dataclass
class ChatMessage:
    """One inbound chat message from the transport."""

    scope_id: str
    subject_id: str
    text: str
    display_name: str = ""
    is_self: bool = False
    received_at: Optional[datetime] = None

    @property
    def message_type(self) -> MessageType:
        """'!' prefix is a command, a '?' anywhere a question."""
        stripped = self.text.strip()
        if stripped.startswith(COMMAND_PREFIX):
            return MessageType.COMMAND
        if "?" in stripped:
            return MessageType.QUESTION
        return MessageType.OTHER

    @property
    def command(self) -> Optional[str]:
        if self.message_type != MessageType.COMMAND:
            return None
        name = self.text.strip()[len(COMMAND_PREFIX):].split(maxsplit=1)
        return name[0].lower() if name else None


@dataclass
class AIReply:
    """Text produced by the AI responder."""

    text: str
    cache_hit: bool = False


class AIResponder(ABC):
    """
    Generates the bot's answer to a message.

    Raise ResponderError (core.exceptions) with
    context={"error_type": ...} to classify a failure, e.g.
    "rate_limit" for upstream throttling.
    """

    @abstractmethod
    async def generate(self, message: ChatMessage) -> AIReply:
        pass


@dataclass
class PipelineResult:
    """What happened to one message."""

    processed: bool
    reason: str = ""
    reply: Optional[str] = None
    moderation: Optional[ModerationResult] = None
    violation: Optional[ViolationOutcome] = None
    ai_moderation: Optional[ModerationResult] = None
    hype: Optional[EngagementDetection] = None
    message_id: Optional[str] = None
    error_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "reason": self.reason,
            "reply": self.reply,
            "moderation": self.moderation.to_dict() if self.moderation else None,
            "violation": self.violation.to_dict() if self.violation else None,
            "ai_flagged": bool(self.ai_moderation and self.ai_moderation.is_offensive),
            "hype": self.hype.to_dict() if self.hype else None,
            "message_id": self.message_id,
            "error_type": self.error_type,
        }
