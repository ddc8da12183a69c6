"""
Core Module Package.

This package contains the core infrastructure components
that all other modules depend on.

Components:
- clock: Unified time abstraction (naive UTC)
- exceptions: Custom exception hierarchy
- identifiers: Scope/subject normalisation
- locks: Keyed async locks (single-writer per key)
"""

from .clock import ClockProtocol, SystemClock, MockClock, get_clock, utcnow
from .exceptions import (
    PipelineException,
    ConfigurationError,
    InvalidConfigError,
    CollaboratorError,
    ClassifierError,
    EnforcementError,
    ResponderError,
)
from .identifiers import DIRECT_MESSAGE_SCOPE, normalize_scope, normalize_subject
from .locks import KeyedLock

__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "get_clock",
    "utcnow",
    "PipelineException",
    "ConfigurationError",
    "InvalidConfigError",
    "CollaboratorError",
    "ClassifierError",
    "EnforcementError",
    "ResponderError",
    "DIRECT_MESSAGE_SCOPE",
    "normalize_scope",
    "normalize_subject",
    "KeyedLock",
]
