"""
Moderation Package.

Progressive-violation moderation: content checks, escalation
ladder, violation ledger and audit log.

Components:
- ModerationEngine: checks and violation handling
- ModerationConfig / EscalationLadder / ModerationConfigResolver
- ContentClassifier adapters (word list, HTTP, caching)
- EnforcementChannel: interface for the chat transport
"""

from moderation.classifier import (
    CachingClassifier,
    ContentClassifier,
    HttpContentClassifier,
    WordListClassifier,
)
from moderation.config import (
    EscalationLadder,
    EscalationStep,
    ModerationConfig,
    ModerationConfigResolver,
    get_default_config,
)
from moderation.enforcement import EnforcementChannel
from moderation.engine import SAFE_FALLBACK_RESPONSE, ModerationEngine
from moderation.types import (
    BanStatus,
    ClassifierVerdict,
    ModerationAction,
    ModerationResult,
    ViolationOutcome,
    ViolationSummary,
    ViolationType,
)

__all__ = [
    "CachingClassifier",
    "ContentClassifier",
    "HttpContentClassifier",
    "WordListClassifier",
    "EscalationLadder",
    "EscalationStep",
    "ModerationConfig",
    "ModerationConfigResolver",
    "get_default_config",
    "EnforcementChannel",
    "SAFE_FALLBACK_RESPONSE",
    "ModerationEngine",
    "BanStatus",
    "ClassifierVerdict",
    "ModerationAction",
    "ModerationResult",
    "ViolationOutcome",
    "ViolationSummary",
    "ViolationType",
]
