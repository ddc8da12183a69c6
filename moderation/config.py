"""
Moderation - Configuration.

============================================================
PURPOSE
============================================================
Per-scope moderation configuration and the escalation ladder.

============================================================
ESCALATION LADDER
============================================================
An explicit list of steps, one per violation number:

    violation 1 -> steps[0]
    violation 2 -> steps[1]
    ...
    violation >= max_violations_before_ban -> BAN
    violations past the last step -> repeat the last step

Default (from_durations(0, 300, 1800, 3600), ban at 5):
    warning, timeout 5m, timeout 30m, timeout 1h, ban

============================================================
RESOLUTION ORDER
============================================================
1. Explicit per-scope override
2. Async loader collaborator (e.g. channel settings store)
3. Global default

============================================================
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from core.exceptions import ConfigurationError, InvalidConfigError
from core.identifiers import normalize_scope
from moderation.types import ModerationAction


logger = logging.getLogger(__name__)


# ============================================================
# ESCALATION LADDER
# ============================================================

@dataclass(frozen=True)
class EscalationStep:
    """One rung of the escalation ladder."""

    action: ModerationAction
    duration_seconds: Optional[int] = None
    """Timeout length; only meaningful for TIMEOUT steps."""


@dataclass(frozen=True)
class EscalationLadder:
    """Ordered escalation steps."""

    steps: tuple = ()

    @classmethod
    def from_durations(
        cls,
        first: int = 0,
        second: int = 300,
        third: int = 1800,
        fourth: int = 3600,
    ) -> "EscalationLadder":
        """
        Build the classic four-step ladder from timeout durations.

        A zero first duration means the first violation is a warning.
        """
        first_step = (
            EscalationStep(ModerationAction.WARNING)
            if first == 0
            else EscalationStep(ModerationAction.TIMEOUT, first)
        )
        return cls(steps=(
            first_step,
            EscalationStep(ModerationAction.TIMEOUT, second),
            EscalationStep(ModerationAction.TIMEOUT, third),
            EscalationStep(ModerationAction.TIMEOUT, fourth),
        ))

    def step_for(self, violation_number: int) -> EscalationStep:
        """Step for the given 1-based violation number (ban not applied)."""
        index = min(max(violation_number, 1), len(self.steps)) - 1
        return self.steps[index]

    def durations(self) -> List[Optional[int]]:
        return [step.duration_seconds for step in self.steps]


# ============================================================
# MODERATION CONFIG
# ============================================================

@dataclass
class ModerationConfig:
    """
    Moderation settings for one scope (or the global default).

    Loaded per scope at decision time; never mutated by the engine.
    """

    enabled: bool = True
    """Whether user messages are checked at all."""

    strict_mode: bool = False
    """Forwarded to classifiers that support a stricter word list."""

    check_ai_responses: bool = True
    """Whether bot-generated responses are checked before sending."""

    ladder: EscalationLadder = field(default_factory=EscalationLadder.from_durations)
    """Escalation steps for violations 1..N."""

    max_violations_before_ban: int = 5
    """Violation number at which the subject is banned."""

    log_all_actions: bool = True
    """Write an immutable action log entry for every action."""

    def action_for(self, total_violations: int) -> EscalationStep:
        """
        Resolve the step for the given violation count.

        The ban threshold takes precedence over the ladder.
        """
        if total_violations >= self.max_violations_before_ban:
            return EscalationStep(ModerationAction.BAN)
        return self.ladder.step_for(total_violations)

    def validate(self) -> None:
        """
        Validate configuration.

        Raises:
            InvalidConfigError: If any value is unusable
        """
        if not self.ladder.steps:
            raise InvalidConfigError("ladder", [], "escalation ladder has no steps")

        for index, step in enumerate(self.ladder.steps):
            if step.action == ModerationAction.TIMEOUT:
                if not step.duration_seconds or step.duration_seconds <= 0:
                    raise InvalidConfigError(
                        f"ladder[{index}]",
                        step.duration_seconds,
                        "timeout step requires a positive duration",
                    )
            elif step.duration_seconds is not None and step.duration_seconds < 0:
                raise InvalidConfigError(
                    f"ladder[{index}]", step.duration_seconds, "negative duration"
                )

        if self.max_violations_before_ban < 1:
            raise InvalidConfigError(
                "max_violations_before_ban",
                self.max_violations_before_ban,
                "must be at least 1",
            )

    @classmethod
    def from_env(cls) -> "ModerationConfig":
        """Load the global default from environment variables."""
        defaults = EscalationLadder.from_durations().durations()
        first = _env_int("MODERATION_TIMEOUT_FIRST", 0)

        return cls(
            enabled=_env_bool("MODERATION_ENABLED", True),
            strict_mode=_env_bool("MODERATION_STRICT_MODE", False),
            check_ai_responses=_env_bool("MODERATION_CHECK_AI_RESPONSES", True),
            ladder=EscalationLadder.from_durations(
                first=first,
                second=_env_int("MODERATION_TIMEOUT_SECOND", defaults[1]),
                third=_env_int("MODERATION_TIMEOUT_THIRD", defaults[2]),
                fourth=_env_int("MODERATION_TIMEOUT_FOURTH", defaults[3]),
            ),
            max_violations_before_ban=_env_int("MODERATION_MAX_VIOLATIONS", 5),
            log_all_actions=_env_bool("MODERATION_LOG_ALL", True),
        )


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Invalid integer for {key}={value!r}, using default {default}")
        return default


def get_default_config() -> ModerationConfig:
    """Get default moderation configuration."""
    return ModerationConfig()


# ============================================================
# PER-SCOPE RESOLUTION
# ============================================================

ConfigLoader = Callable[[str], Awaitable[Optional[ModerationConfig]]]


class ModerationConfigResolver:
    """
    Resolves the ModerationConfig for a scope.

    Loader failures fall back to the default. Invalid configs
    and empty scope ids raise ConfigurationError.
    """

    def __init__(
        self,
        default: Optional[ModerationConfig] = None,
        overrides: Optional[Dict[str, ModerationConfig]] = None,
        loader: Optional[ConfigLoader] = None,
    ):
        self._default = default or get_default_config()
        self._overrides: Dict[str, ModerationConfig] = {}
        self._loader = loader

        for scope_id, config in (overrides or {}).items():
            self.set_override(scope_id, config)

    @property
    def default(self) -> ModerationConfig:
        return self._default

    def set_override(self, scope_id: str, config: ModerationConfig) -> None:
        config.validate()
        self._overrides[normalize_scope(scope_id)] = config

    def clear_override(self, scope_id: str) -> None:
        self._overrides.pop(normalize_scope(scope_id), None)

    async def resolve(self, scope_id: str) -> ModerationConfig:
        """
        Get the config for a scope.

        Raises:
            ConfigurationError: Empty scope id or invalid config
        """
        scope = normalize_scope(scope_id)
        if not scope:
            raise ConfigurationError("Scope id is required", config_key="scope_id")

        config = self._overrides.get(scope)

        if config is None and self._loader is not None:
            try:
                config = await self._loader(scope)
            except Exception as e:
                logger.error(f"Config loader failed for {scope}, using default: {e}")
                config = None

        if config is None:
            config = self._default

        config.validate()
        return config
