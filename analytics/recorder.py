"""
Analytics - Event Recorder.

Persists one RawAnalyticsEvent per processed message. Recording
never raises: analytics failures must not break message handling.
"""

import logging
import secrets
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from analytics.models import ChatAnalyticsEventRecord
from analytics.repository import AnalyticsEventRepository
from analytics.types import MessageEvent, MessageType
from core.clock import ClockProtocol, get_clock, to_naive_utc
from core.identifiers import normalize_scope, normalize_subject, truncate


logger = logging.getLogger(__name__)


ERROR_MESSAGE_LIMIT = 500


def generate_message_id(scope_id: str, subject_id: str, received_at: datetime) -> str:
    """msg_<scope>_<subject>_<epoch ms>_<random>"""
    epoch_ms = int(received_at.replace(tzinfo=timezone.utc).timestamp() * 1000)
    return f"msg_{scope_id}_{subject_id}_{epoch_ms}_{secrets.token_hex(5)}"


class AnalyticsRecorder:
    """Writes raw analytics events."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Optional[ClockProtocol] = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or get_clock()

    async def log_message_event(self, event: MessageEvent) -> Optional[str]:
        """
        Normalise and persist an event.

        Returns:
            The generated message id, or None if recording failed
        """
        scope = normalize_scope(event.scope_id)
        subject = normalize_subject(event.subject_id)
        if not scope or not subject:
            logger.error(f"Analytics event missing scope or subject: {scope!r}/{subject!r}")
            return None

        received_at = to_naive_utc(event.received_at) if event.received_at else self._clock.now()
        message_id = generate_message_id(scope, subject, received_at)

        message_type = event.message_type
        if isinstance(message_type, MessageType):
            message_type = message_type.value

        record = ChatAnalyticsEventRecord(
            message_id=message_id,
            scope_id=scope,
            subject_id=subject,
            display_name=(event.display_name or "").strip(),
            message_type=message_type,
            command=event.command.strip() if event.command else None,
            question_length=event.question_length,
            response_length=event.response_length,
            processing_time_ms=event.processing_time_ms,
            ai_response_time_ms=event.ai_response_time_ms,
            total_time_ms=event.total_time_ms,
            cache_hit=event.cache_hit,
            success=event.success,
            error_type=event.error_type.strip() if event.error_type else None,
            error_message=truncate(event.error_message, ERROR_MESSAGE_LIMIT) or None,
            was_moderated=event.was_moderated,
            moderation_action=event.moderation_action,
            received_at=received_at,
            processed_at=(
                to_naive_utc(event.processed_at) if event.processed_at else received_at
            ),
            responded_at=to_naive_utc(event.responded_at) if event.responded_at else None,
        )

        try:
            async with self._session_factory() as session:
                repo = AnalyticsEventRepository(session)
                await repo.add(record)
                await repo.commit()
        except Exception as e:
            logger.error(
                f"Error logging analytics event for {subject} in {scope}: {e}",
                extra={"context": {"message_id": message_id}},
                exc_info=True,
            )
            return None

        logger.debug(
            f"Analytics event logged: {message_id} type={message_type} success={event.success}"
        )
        return message_id
