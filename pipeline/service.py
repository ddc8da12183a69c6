"""
Pipeline - Chat Pipeline.

============================================================
PURPOSE
============================================================
Host wiring for one inbound chat message:

    observe -> judge -> act -> summarize

1. Ignore the bot's own messages
2. Engagement bookkeeping (chat velocity, hype moments)
3. Ban check (fails open)
4. Content check; offensive messages go to violation handling
5. AI responder call, timed as an API call
6. AI response check with safe fallback
7. Reply through the responder
8. One analytics event per processed message, timing samples

============================================================
LIFECYCLE
============================================================
start() / stop() own every background task: cache sweeps and
the cache summary, engagement cleanup, scheduled aggregation
and pending alert notifications.

============================================================
"""

import logging
import time
from typing import Optional

from analytics.recorder import AnalyticsRecorder
from analytics.types import ERROR_API, MessageEvent
from cache.manager import CacheManager
from core.clock import ClockProtocol, get_clock
from core.exceptions import ResponderError
from core.identifiers import normalize_scope, normalize_subject
from engagement.responder import ContextualResponder
from engagement.tracker import EngagementTracker
from moderation.engine import ModerationEngine
from performance.monitor import PerformanceMonitor
from pipeline.scheduler import AggregationScheduler
from pipeline.types import AIResponder, ChatMessage, PipelineResult


logger = logging.getLogger(__name__)


ERROR_MODERATED = "moderated"
ERROR_SEND_FAILED = "send_failed"
ERROR_INTERNAL = "internal_error"


class ChatPipeline:
    """
    Per-message orchestration over the pipeline components.

    Usage:
        pipeline = ChatPipeline(moderation, engagement, recorder, monitor, ai, responder)
        await pipeline.start()
        result = await pipeline.handle_message(ChatMessage("chan", "user", "hi?"))
        await pipeline.stop()
    """

    def __init__(
        self,
        moderation: ModerationEngine,
        engagement: EngagementTracker,
        recorder: AnalyticsRecorder,
        monitor: PerformanceMonitor,
        ai_responder: AIResponder,
        responder: ContextualResponder,
        cache_manager: Optional[CacheManager] = None,
        scheduler: Optional[AggregationScheduler] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._moderation = moderation
        self._engagement = engagement
        self._recorder = recorder
        self._monitor = monitor
        self._ai = ai_responder
        self._responder = responder
        self._cache_manager = cache_manager
        self._scheduler = scheduler
        self._clock = clock or get_clock()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================
    # LIFECYCLE
    # =========================================================

    async def start(self) -> None:
        if self._running:
            return
        if self._cache_manager is not None:
            await self._cache_manager.start()
        await self._engagement.start()
        if self._scheduler is not None:
            await self._scheduler.start()
        self._running = True
        logger.info("Chat pipeline started")

    async def stop(self) -> None:
        """Stop every background task owned by the pipeline."""
        if self._scheduler is not None:
            await self._scheduler.stop()
        await self._engagement.stop()
        if self._cache_manager is not None:
            await self._cache_manager.stop()
        await self._monitor.stop()
        self._running = False
        logger.info("Chat pipeline stopped")

    # =========================================================
    # MESSAGE HANDLING
    # =========================================================

    async def handle_message(self, message: ChatMessage) -> PipelineResult:
        """
        Run one message through the pipeline.

        Never raises for collaborator failures; the result and the
        analytics event describe what happened.
        """
        if message.is_self:
            return PipelineResult(processed=False, reason="Own message")

        scope = normalize_scope(message.scope_id)
        subject = normalize_subject(message.subject_id)
        if not scope or not subject:
            logger.error(f"Message rejected: missing scope or subject ({scope!r}/{subject!r})")
            return PipelineResult(processed=False, reason="Scope and subject are required")

        received_at = message.received_at or self._clock.now()
        started = time.perf_counter()

        hype = await self._engagement.track_message(scope)

        if await self._moderation.is_banned(subject, scope):
            logger.debug(f"Ignoring message from banned {subject} in {scope}")
            return PipelineResult(processed=False, reason="Subject is banned", hype=hype)

        check = await self._moderation.check_message_content(message.text, subject, scope)
        if not check.should_process:
            outcome = await self._moderation.handle_violation(
                subject, scope, check, message.text
            )
            event = self._event(message, scope, subject, received_at, started)
            event.success = False
            event.error_type = ERROR_MODERATED
            event.was_moderated = True
            event.moderation_action = outcome.action.value if outcome.action else None
            message_id = await self._summarize(event)
            return PipelineResult(
                processed=False,
                reason=check.reason,
                moderation=check,
                violation=outcome,
                hype=hype,
                message_id=message_id,
                error_type=ERROR_MODERATED,
            )

        event = self._event(message, scope, subject, received_at, started)
        result = PipelineResult(processed=True, moderation=check, hype=hype)

        ai_started = time.perf_counter()
        try:
            reply = await self._monitor.track_api_call(
                "ai_responder", lambda: self._ai.generate(message), scope
            )
        except ResponderError as e:
            error_type = e.context.get("error_type", ERROR_API)
            logger.error(f"AI responder failed for {subject} in {scope}: {e.message}")
            return await self._fail(event, result, started, ai_started, error_type, e.message)
        except Exception as e:
            logger.error(f"AI responder error for {subject} in {scope}: {e}", exc_info=True)
            return await self._fail(event, result, started, ai_started, ERROR_INTERNAL, str(e))

        event.ai_response_time_ms = _elapsed_ms(ai_started)
        event.cache_hit = reply.cache_hit
        self._monitor.record_ai_response_time("ai_responder", event.ai_response_time_ms, scope)

        text, ai_check = await self._moderation.sanitize_ai_response(reply.text, subject, scope)
        result.ai_moderation = ai_check
        event.processing_time_ms = _elapsed_ms(started)

        sent = await self._send(scope, text)
        event.responded_at = self._clock.now()
        event.response_length = len(text)
        if sent:
            result.reply = text
        else:
            event.success = False
            event.error_type = ERROR_SEND_FAILED
            result.error_type = ERROR_SEND_FAILED
            result.reason = "Reply could not be sent"

        event.total_time_ms = _elapsed_ms(started)
        self._monitor.record_response_time("handle_message", event.total_time_ms, scope)
        result.message_id = await self._summarize(event)
        return result

    async def _send(self, scope: str, text: str) -> bool:
        try:
            return bool(await self._responder.send(scope, text))
        except ResponderError as e:
            logger.error(f"Reply to {scope} failed: {e.message}")
        except Exception as e:
            logger.error(f"Reply to {scope} failed: {e}", exc_info=True)
        return False

    async def _fail(
        self,
        event: MessageEvent,
        result: PipelineResult,
        started: float,
        ai_started: float,
        error_type: str,
        error_message: str,
    ) -> PipelineResult:
        event.success = False
        event.error_type = error_type
        event.error_message = error_message
        event.ai_response_time_ms = _elapsed_ms(ai_started)
        event.processing_time_ms = _elapsed_ms(started)
        event.total_time_ms = event.processing_time_ms
        self._monitor.record_response_time(
            "handle_message", event.total_time_ms, event.scope_id, {"success": False}
        )
        result.error_type = error_type
        result.reason = "AI responder failed"
        result.message_id = await self._summarize(event)
        return result

    def _event(
        self,
        message: ChatMessage,
        scope: str,
        subject: str,
        received_at,
        started: float,
    ) -> MessageEvent:
        return MessageEvent(
            scope_id=scope,
            subject_id=subject,
            display_name=message.display_name,
            message_type=message.message_type,
            command=message.command,
            question_length=len(message.text),
            processing_time_ms=_elapsed_ms(started),
            total_time_ms=_elapsed_ms(started),
            received_at=received_at,
        )

    async def _summarize(self, event: MessageEvent) -> Optional[str]:
        event.processed_at = self._clock.now()
        return await self._recorder.log_message_event(event)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
