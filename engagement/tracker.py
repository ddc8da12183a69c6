"""
Engagement - Tracker.

============================================================
PURPOSE
============================================================
Observes chat activity and stream events, raises engagement
events and schedules contextual responses.

- Sliding window of message timestamps per scope
- Velocity in messages per minute
- Hype moments with a per-scope cooldown
- Scoring of discrete events (subs, gifts, raids, cheers, follows)
- Delayed contextual responses as tracked tasks
- Periodic cleanup of stale history

============================================================
CONCURRENCY
============================================================
Window append, prune and the hype check run without any await
in between, so the cooperative event loop needs no lock.
Persistence and responses happen afterwards.

============================================================
"""

import asyncio
import logging
import uuid
from collections import deque
from datetime import datetime
from typing import Deque, Dict, List, Optional, Set

from sqlalchemy.ext.asyncio import async_sessionmaker

from core.clock import ClockProtocol, get_clock
from core.identifiers import normalize_scope, normalize_subject
from engagement.config import MAX_ENGAGEMENT_SCORE, EngagementConfig
from engagement.models import EngagementEventRecord
from engagement.repository import EngagementEventRepository
from engagement.responder import ContextualResponder
from engagement.templates import ResponseTemplates
from engagement.types import (
    EngagementDetection,
    EngagementEventType,
    EngagementStatistics,
    EventSource,
)


logger = logging.getLogger(__name__)


class EngagementTracker:
    """
    Engagement detector.

    Usage:
        tracker = EngagementTracker(db.session_factory, responder)
        await tracker.start()
        await tracker.track_message("channel")
        await tracker.handle_raid("channel", "raider", viewer_count=42)
        await tracker.stop()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        responder: Optional[ContextualResponder] = None,
        config: Optional[EngagementConfig] = None,
        templates: Optional[ResponseTemplates] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._session_factory = session_factory
        self._responder = responder
        self._config = config or EngagementConfig()
        self._templates = templates or ResponseTemplates()
        self._clock = clock or get_clock()

        self._history: Dict[str, Deque[float]] = {}
        self._last_hype: Dict[str, float] = {}

        self._response_tasks: Set[asyncio.Task] = set()
        self._cleanup_task: Optional[asyncio.Task] = None

    @property
    def config(self) -> EngagementConfig:
        return self._config

    @property
    def tracked_scopes(self) -> List[str]:
        return list(self._history.keys())

    @property
    def pending_responses(self) -> int:
        return len(self._response_tasks)

    # =========================================================
    # CHAT VELOCITY
    # =========================================================

    async def track_message(
        self,
        scope_id: str,
        is_self: bool = False,
    ) -> Optional[EngagementDetection]:
        """
        Record an inbound message and check for a hype moment.

        Returns the hype moment if one was raised.
        """
        if is_self:
            return None

        scope = normalize_scope(scope_id)
        if not scope:
            return None

        now = self._clock.timestamp()
        history = self._history.setdefault(scope, deque())
        history.append(now)
        self._prune(history, now - self._config.window_seconds)

        velocity = self._velocity(history, now)
        if velocity < self._config.hype_threshold:
            return None

        last = self._last_hype.get(scope)
        if last is not None and now - last < self._config.cooldown_seconds:
            return None

        self._last_hype[scope] = now

        detection = self._new_detection(
            scope,
            EngagementEventType.HYPE_MOMENT,
            EventSource.CHAT_VELOCITY,
            magnitude=velocity,
            message_velocity=velocity,
        )
        logger.info(
            f"Hype moment in {scope}: velocity={velocity}/min "
            f"score={detection.engagement_score}"
        )
        await self._emit(detection)
        return detection

    def get_velocity(self, scope_id: str) -> float:
        """Messages per minute currently in the window."""
        history = self._history.get(normalize_scope(scope_id))
        if not history:
            return 0.0
        return self._velocity(history, self._clock.timestamp())

    def _velocity(self, history: Deque[float], now: float) -> float:
        cutoff = now - self._config.window_seconds
        in_window = sum(1 for ts in history if ts >= cutoff)
        return round(in_window / self._config.window_seconds * 60, 2)

    @staticmethod
    def _prune(history: Deque[float], cutoff: float) -> None:
        while history and history[0] < cutoff:
            history.popleft()

    # =========================================================
    # DISCRETE EVENTS
    # =========================================================

    async def handle_subscription(
        self,
        scope_id: str,
        subject_id: str,
        display_name: Optional[str] = None,
        months: int = 1,
        tier: str = "1000",
    ) -> EngagementDetection:
        detection = self._new_detection(
            normalize_scope(scope_id),
            EngagementEventType.SUBSCRIPTION,
            subject_id=subject_id,
            display_name=display_name,
            months=months,
            tier=tier,
        )
        await self._emit(detection)
        return detection

    async def handle_gift_subscription(
        self,
        scope_id: str,
        subject_id: str,
        display_name: Optional[str] = None,
        gift_count: int = 1,
        tier: str = "1000",
    ) -> EngagementDetection:
        detection = self._new_detection(
            normalize_scope(scope_id),
            EngagementEventType.GIFT_SUBSCRIPTION,
            magnitude=max(1, gift_count),
            subject_id=subject_id,
            display_name=display_name,
            gift_count=gift_count,
            tier=tier,
        )
        await self._emit(detection)
        return detection

    async def handle_raid(
        self,
        scope_id: str,
        subject_id: str,
        display_name: Optional[str] = None,
        viewer_count: int = 0,
    ) -> EngagementDetection:
        detection = self._new_detection(
            normalize_scope(scope_id),
            EngagementEventType.RAID,
            magnitude=1 + max(0, viewer_count) / 100,
            subject_id=subject_id,
            display_name=display_name,
            viewer_count=viewer_count,
        )
        await self._emit(detection)
        return detection

    async def handle_follow(
        self,
        scope_id: str,
        subject_id: str,
        display_name: Optional[str] = None,
    ) -> EngagementDetection:
        detection = self._new_detection(
            normalize_scope(scope_id),
            EngagementEventType.FOLLOW,
            subject_id=subject_id,
            display_name=display_name,
        )
        await self._emit(detection)
        return detection

    async def handle_cheer(
        self,
        scope_id: str,
        subject_id: str,
        bits: int,
        display_name: Optional[str] = None,
    ) -> EngagementDetection:
        detection = self._new_detection(
            normalize_scope(scope_id),
            EngagementEventType.CHEER,
            magnitude=max(1.0, bits / 100),
            subject_id=subject_id,
            display_name=display_name,
            bits=bits,
        )
        await self._emit(detection)
        return detection

    def calculate_score(self, event_type: EngagementEventType, magnitude: float = 1.0) -> float:
        """base x type multiplier x magnitude, capped at 100."""
        score = self._config.base_score * self._config.multiplier_for(event_type) * magnitude
        return round(min(MAX_ENGAGEMENT_SCORE, score), 2)

    def _new_detection(
        self,
        scope: str,
        event_type: EngagementEventType,
        source: EventSource = EventSource.WEBHOOK,
        magnitude: float = 1.0,
        subject_id: Optional[str] = None,
        **attributes,
    ) -> EngagementDetection:
        return EngagementDetection(
            event_id=str(uuid.uuid4()),
            scope_id=scope,
            event_type=event_type,
            source=source,
            occurred_at=self._clock.now(),
            subject_id=normalize_subject(subject_id) if subject_id else None,
            chat_activity=round(self.get_velocity(scope)),
            engagement_score=self.calculate_score(event_type, magnitude),
            **attributes,
        )

    # =========================================================
    # PERSISTENCE AND RESPONSES
    # =========================================================

    async def _emit(self, detection: EngagementDetection) -> None:
        """Persist the event and schedule its response."""
        await self._persist(detection)

        if self._config.auto_respond and self._responder is not None:
            task = asyncio.create_task(
                self._respond_later(detection),
                name=f"engagement-response-{detection.event_id}",
            )
            self._response_tasks.add(task)
            task.add_done_callback(self._response_tasks.discard)

    async def _persist(self, detection: EngagementDetection) -> None:
        record = EngagementEventRecord(
            id=detection.event_id,
            scope_id=detection.scope_id,
            event_type=detection.event_type.value,
            event_source=detection.source.value,
            occurred_at=detection.occurred_at,
            detected_at=detection.occurred_at,
            subject_id=detection.subject_id,
            display_name=detection.display_name,
            months=detection.months,
            tier=detection.tier,
            gift_count=detection.gift_count,
            viewer_count=detection.viewer_count,
            bits=detection.bits,
            message_velocity=detection.message_velocity,
            chat_activity=detection.chat_activity,
            engagement_score=detection.engagement_score,
            bot_responded=False,
        )
        try:
            async with self._session_factory() as session:
                repo = EngagementEventRepository(session)
                await repo.add(record)
                await repo.commit()
            logger.info(
                f"Engagement event recorded: {detection.event_type.value} in "
                f"{detection.scope_id} (score={detection.engagement_score})"
            )
        except Exception as e:
            logger.error(
                f"Failed to record engagement event in {detection.scope_id}: {e}",
                extra={"context": {"event_type": detection.event_type.value}},
                exc_info=True,
            )

    async def _respond_later(self, detection: EngagementDetection) -> None:
        await asyncio.sleep(self._config.response_delay_seconds)
        await self.respond(detection)

    async def respond(self, detection: EngagementDetection) -> bool:
        """Send the contextual response now and record it."""
        if self._responder is None:
            return False

        text = self._templates.render(detection)
        if not text:
            return False

        try:
            sent = await self._responder.send(detection.scope_id, text)
        except Exception as e:
            logger.error(f"Contextual response failed in {detection.scope_id}: {e}")
            return False

        if not sent:
            logger.warning(f"Contextual response not delivered in {detection.scope_id}")
            return False

        now = self._clock.now()
        delay_ms = int((now - detection.occurred_at).total_seconds() * 1000)
        detection.responded = True
        detection.response_text = text
        detection.response_delay_ms = delay_ms

        try:
            async with self._session_factory() as session:
                repo = EngagementEventRepository(session)
                await repo.mark_responded(detection.event_id, text, delay_ms, now)
                await repo.commit()
        except Exception as e:
            logger.error(f"Failed to record response for {detection.event_id}: {e}", exc_info=True)

        logger.info(f"Contextual response sent in {detection.scope_id}: {text[:100]!r}")
        return True

    # =========================================================
    # CLEANUP
    # =========================================================

    def cleanup(self) -> int:
        """
        Drop timestamps older than twice the window and empty scopes.

        Returns:
            Number of scopes removed
        """
        now = self._clock.timestamp()
        cutoff = now - 2 * self._config.window_seconds

        removed = 0
        for scope in list(self._history.keys()):
            history = self._history[scope]
            self._prune(history, cutoff)
            if not history:
                del self._history[scope]
                removed += 1

        for scope, last in list(self._last_hype.items()):
            if scope not in self._history and now - last >= self._config.cooldown_seconds:
                del self._last_hype[scope]

        if removed:
            logger.debug(f"Engagement cleanup removed {removed} idle scopes")
        return removed

    @property
    def is_running(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

    async def start(self) -> None:
        """Start the periodic cleanup task."""
        if self.is_running:
            return
        self._cleanup_task = asyncio.create_task(
            self._cleanup_loop(), name="engagement-cleanup"
        )
        logger.info("Engagement tracker started")

    async def stop(self) -> None:
        """Stop cleanup and cancel pending responses."""
        tasks = list(self._response_tasks)
        if self._cleanup_task is not None:
            tasks.append(self._cleanup_task)

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._response_tasks.clear()
        self._cleanup_task = None
        logger.info("Engagement tracker stopped")

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.cleanup_interval_seconds)
            self.cleanup()

    # =========================================================
    # QUERIES
    # =========================================================

    async def get_statistics(
        self,
        scope_id: str,
        start: datetime,
        end: datetime,
    ) -> EngagementStatistics:
        """Event statistics for a scope over [start, end)."""
        scope = normalize_scope(scope_id)
        try:
            async with self._session_factory() as session:
                return await EngagementEventRepository(session).get_statistics(scope, start, end)
        except Exception as e:
            logger.error(f"Engagement statistics failed for {scope}: {e}", exc_info=True)
            return EngagementStatistics()

    async def get_recent_events(self, scope_id: str, limit: int = 10) -> List[EngagementDetection]:
        scope = normalize_scope(scope_id)
        try:
            async with self._session_factory() as session:
                records = await EngagementEventRepository(session).get_recent(scope, limit)
        except Exception as e:
            logger.error(f"Failed to fetch engagement events for {scope}: {e}", exc_info=True)
            return []

        return [
            EngagementDetection(
                event_id=record.id,
                scope_id=record.scope_id,
                event_type=EngagementEventType(record.event_type),
                source=EventSource(record.event_source),
                occurred_at=record.occurred_at,
                subject_id=record.subject_id,
                display_name=record.display_name,
                months=record.months,
                tier=record.tier,
                gift_count=record.gift_count,
                viewer_count=record.viewer_count,
                bits=record.bits,
                message_velocity=record.message_velocity,
                chat_activity=record.chat_activity,
                engagement_score=record.engagement_score,
                responded=record.bot_responded,
                response_text=record.response_text,
                response_delay_ms=record.response_delay_ms,
            )
            for record in records
        ]
