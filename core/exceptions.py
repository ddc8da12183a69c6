"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines the custom exceptions for the chat moderation and
engagement-analytics pipeline.

- Provides clear exception hierarchy
- Enables specific error handling (fail-open vs fail-loud)
- Includes context for structured logging

============================================================
EXCEPTION HIERARCHY
============================================================
PipelineException (base)
├── ConfigurationError
│   └── InvalidConfigError
├── CollaboratorError
│   ├── ClassifierError
│   ├── EnforcementError
│   └── ResponderError

============================================================
FAILURE POLICY
============================================================
- Classifier failures: fail OPEN (message is processed)
- Enforcement failures: reported in return value, never raised
- Persistence failures: logged, single record aborted
  (storage.repositories.exceptions)
- Configuration errors: surfaced to caller as rejected result

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for alerting."""

    LOW = "low"
    """Minor issue, informational."""

    MEDIUM = "medium"
    """Moderate issue, requires attention."""

    HIGH = "high"
    """Serious issue, may impact operations."""

    CRITICAL = "critical"
    """Critical issue, requires immediate action."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class PipelineException(Exception):
    """
    Base exception for all pipeline errors.

    All exceptions carry:
    - severity: for alerting
    - context: for debugging
    - recoverable: for error handling decisions
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM
    default_recoverable: bool = True

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.recoverable = recoverable if recoverable is not None else self.default_recoverable
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/storage."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(PipelineException):
    """Error in configuration (invalid scope, bad ladder, ...)."""

    default_severity = Severity.HIGH
    default_recoverable = False

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        actual_value: Optional[Any] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if config_key:
            context["config_key"] = config_key
        if actual_value is not None:
            context["actual_value"] = str(actual_value)[:100]

        super().__init__(message, context=context, **kwargs)


class InvalidConfigError(ConfigurationError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, reason: str):
        super().__init__(
            message=f"Invalid configuration for {key}: {reason}",
            config_key=key,
            actual_value=value,
            context={"reason": reason},
        )


# ============================================================
# EXTERNAL COLLABORATOR ERRORS
# ============================================================

class CollaboratorError(PipelineException):
    """An external collaborator (classifier, chat transport, ...) failed."""

    default_severity = Severity.MEDIUM
    default_recoverable = True

    def __init__(
        self,
        message: str,
        collaborator: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})
        if collaborator:
            context["collaborator"] = collaborator
        super().__init__(message, context=context, **kwargs)


class ClassifierError(CollaboratorError):
    """Content classifier call failed."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, collaborator="classifier", **kwargs)


class EnforcementError(CollaboratorError):
    """Enforcement channel call failed."""

    def __init__(self, message: str, action: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if action:
            context["action"] = action
        super().__init__(message, collaborator="enforcement", context=context, **kwargs)


class ResponderError(CollaboratorError):
    """AI responder or chat transport failed to produce or post a message."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, collaborator="responder", **kwargs)

