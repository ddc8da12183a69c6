"""
Core Module - Identifier Normalisation.

Scope ids (channels, guilds) and subject ids (users) arrive from
chat transports in several spellings ("#Channel", " User ").
Every component keys its state by the normalised form.
"""

from typing import Optional


DIRECT_MESSAGE_SCOPE = "dm"
"""Scope id used for direct-message contexts (no enforcement primitive)."""


def normalize_scope(scope_id: Optional[str]) -> str:
    """Drop a leading '#', lower-case and trim a channel/guild id."""
    if not scope_id:
        return ""
    value = scope_id.strip()
    if value.startswith("#"):
        value = value[1:]
    return value.strip().lower()


def normalize_subject(subject_id: Optional[str]) -> str:
    """Lower-case and trim a user id."""
    if not subject_id:
        return ""
    return subject_id.strip().lower()


def truncate(text: Optional[str], limit: int) -> str:
    """Trim text for logs and audit records."""
    if not text:
        return ""
    return text[:limit]
