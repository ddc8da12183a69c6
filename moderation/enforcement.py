"""
Moderation - Enforcement Channel.

The chat transport applies warnings, timeouts and bans. This
module defines the interface the engine calls; transports
(Twitch, Discord, ...) implement it in the host process.

Each call returns True on success. Transports may raise
EnforcementError for failures they can describe. Scopes without timeout/ban
primitives (direct messages) report supports_enforcement() False
and the engine falls back to warnings only.
"""

from abc import ABC, abstractmethod

from core.identifiers import DIRECT_MESSAGE_SCOPE


class EnforcementChannel(ABC):
    """Interface for applying moderation actions."""

    def supports_enforcement(self, scope_id: str) -> bool:
        """Whether timeout/ban can be applied in this scope."""
        return scope_id != DIRECT_MESSAGE_SCOPE

    @abstractmethod
    async def warn(self, subject_id: str, scope_id: str, message: str) -> bool:
        pass

    @abstractmethod
    async def timeout(
        self,
        subject_id: str,
        scope_id: str,
        duration_seconds: int,
        reason: str,
    ) -> bool:
        pass

    @abstractmethod
    async def ban(self, subject_id: str, scope_id: str, reason: str) -> bool:
        pass

    @abstractmethod
    async def unban(self, subject_id: str, scope_id: str) -> bool:
        pass
