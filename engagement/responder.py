"""
Engagement - Contextual Responder.

Interface to the chat transport for posting bot messages.
"""

from abc import ABC, abstractmethod


class ContextualResponder(ABC):
    """Posts a chat message to a scope."""

    @abstractmethod
    async def send(self, scope_id: str, text: str) -> bool:
        """Send text to the scope. Returns True on success."""
        pass
