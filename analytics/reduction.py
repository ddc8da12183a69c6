"""
Analytics - Event Reduction.

Pure reduction of raw message events into RollupStats. Used for
bucket rollups, arbitrary-range channel statistics and historical
performance reports, so every view computes fields the same way.

Events may be ORM rows or MessageEvent instances; only attribute
access is used.
"""

import math
from typing import Any, Collection, Dict, Iterable, Set

from analytics.types import ERROR_API, ERROR_RATE_LIMIT, MessageType, RollupStats


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def average_positive(samples: Iterable[Any]) -> int:
    """Mean of the positive samples, rounded; 0 when there are none."""
    values = [s for s in samples if s is not None and s > 0]
    if not values:
        return 0
    return round_half_up(sum(values) / len(values))


def reduce_events(
    events: Collection[Any],
    prior_subjects: Collection[str] = (),
) -> RollupStats:
    """
    Reduce events into statistics.

    Args:
        events: Raw events in the period
        prior_subjects: Subjects seen in the same scope strictly
            before the period; they count as returning users

    Returns:
        RollupStats (all zero for no events)
    """
    total = len(events)
    if total == 0:
        return RollupStats()

    successful = sum(1 for e in events if e.success)
    cache_hits = sum(1 for e in events if e.cache_hit)

    command_counts: Dict[str, int] = {}
    for event in events:
        if event.command:
            command_counts[event.command] = command_counts.get(event.command, 0) + 1

    rate_limit_hits = sum(1 for e in events if e.error_type == ERROR_RATE_LIMIT)
    api_errors = sum(1 for e in events if e.error_type == ERROR_API)
    moderation_actions = sum(1 for e in events if e.was_moderated)
    other_errors = sum(
        1 for e in events
        if not e.success
        and e.error_type not in (ERROR_RATE_LIMIT, ERROR_API)
        and not e.was_moderated
    )

    subjects: Set[str] = {e.subject_id for e in events}
    prior: Set[str] = set(prior_subjects)
    returning = len(subjects & prior)

    return RollupStats(
        total_messages=total,
        successful_messages=successful,
        failed_messages=total - successful,
        unique_users=len(subjects),
        command_counts=dict(sorted(command_counts.items())),
        question_count=sum(1 for e in events if _message_type(e) == MessageType.QUESTION.value),
        avg_processing_time_ms=average_positive(e.processing_time_ms for e in events),
        avg_response_time_ms=average_positive(e.ai_response_time_ms for e in events),
        cache_hit_rate=cache_hits / total,
        rate_limit_hits=rate_limit_hits,
        api_errors=api_errors,
        moderation_actions=moderation_actions,
        other_errors=other_errors,
        new_users=len(subjects) - returning,
        returning_users=returning,
    )


def _message_type(event: Any) -> str:
    value = event.message_type
    return value.value if isinstance(value, MessageType) else value
