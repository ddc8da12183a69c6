"""
Moderation - Type Definitions.

============================================================
PURPOSE
============================================================
Type definitions for the moderation decision engine.

The engine decides whether a chat message (or a response the
bot itself generated) may be processed and, on a violation,
which enforcement action comes next for that subject in that
scope.

============================================================
ESCALATION STATES (per subject x scope)
============================================================
clean -> warned -> timed-out (escalating) -> banned (terminal)

Transitions happen only when a new violation is recorded.
Violation counts never decay.

============================================================
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


# ============================================================
# ENUMS
# ============================================================

class ModerationAction(str, Enum):
    """Enforcement actions, ordered by strength for escalation."""

    WARNING = "warning"
    TIMEOUT = "timeout"
    BAN = "ban"
    KICK = "kick"
    UNBAN = "unban"

    @property
    def strength(self) -> int:
        """Relative strength used to compare escalation steps."""
        return _ACTION_STRENGTH[self]


_ACTION_STRENGTH = {
    ModerationAction.UNBAN: 0,
    ModerationAction.WARNING: 1,
    ModerationAction.TIMEOUT: 2,
    ModerationAction.KICK: 3,
    ModerationAction.BAN: 4,
}


class ViolationType(str, Enum):
    """What kind of content triggered the action."""

    OFFENSIVE_CONTENT = "offensive_content"
    AI_INAPPROPRIATE = "ai_inappropriate"
    OTHER = "other"


# ============================================================
# RESULTS
# ============================================================

@dataclass
class ClassifierVerdict:
    """Result returned by a content classifier collaborator."""

    is_offensive: bool
    offending_terms: List[str] = field(default_factory=list)


@dataclass
class ModerationResult:
    """
    Result of checking a piece of text.

    should_process is False only when the text is offensive.
    A failed check is reported as clean with should_process=True.
    """

    is_offensive: bool
    offending_terms: List[str] = field(default_factory=list)
    should_process: bool = True
    reason: Optional[str] = None

    @classmethod
    def clean(cls, reason: Optional[str] = None) -> "ModerationResult":
        return cls(is_offensive=False, should_process=True, reason=reason)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_offensive": self.is_offensive,
            "offending_terms": list(self.offending_terms),
            "should_process": self.should_process,
            "reason": self.reason,
        }


@dataclass
class ViolationOutcome:
    """
    Result of handle_violation().

    success reports whether the enforcement call itself succeeded.
    rejected is set when the request could not be evaluated at all
    (invalid scope or configuration); nothing was enforced then.
    """

    action: Optional[ModerationAction]
    success: bool
    total_violations: int = 0
    duration_seconds: Optional[int] = None
    reason: Optional[str] = None
    rejected: bool = False
    already_banned: bool = False

    @classmethod
    def rejected_result(cls, reason: str) -> "ViolationOutcome":
        return cls(action=None, success=False, reason=reason, rejected=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value if self.action else None,
            "success": self.success,
            "total_violations": self.total_violations,
            "duration_seconds": self.duration_seconds,
            "reason": self.reason,
            "rejected": self.rejected,
            "already_banned": self.already_banned,
        }


@dataclass
class BanStatus:
    """Ban state of a subject in a scope."""

    is_banned: bool
    is_permanent: bool = False
    banned_at: Optional[datetime] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_banned": self.is_banned,
            "is_permanent": self.is_permanent,
            "banned_at": self.banned_at.isoformat() if self.banned_at else None,
            "reason": self.reason,
        }


@dataclass
class ViolationEntry:
    """One violation in a subject's history."""

    occurred_at: datetime
    offending_terms: List[str]
    message_excerpt: str
    action: ModerationAction
    duration_seconds: Optional[int] = None
    success: bool = False


@dataclass
class ViolationSummary:
    """Read-only view of a violation ledger row."""

    subject_id: str
    scope_id: str
    warning_count: int
    timeout_count: int
    is_banned: bool
    banned_at: Optional[datetime]
    last_timeout_at: Optional[datetime]
    last_timeout_duration: Optional[int]
    history: List[ViolationEntry] = field(default_factory=list)
