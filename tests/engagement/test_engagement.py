"""
Tests for the Engagement Tracker.

Covers velocity windows, hype detection with cooldown, event
scoring, contextual responses and statistics.
"""

import random
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from engagement import (
    ContextualResponder,
    EngagementConfig,
    EngagementEventType,
    EngagementTracker,
    EventSource,
    ResponseTemplates,
)
from engagement.types import EngagementDetection


@pytest.fixture
def responder():
    mock = AsyncMock(spec=ContextualResponder)
    mock.send.return_value = True
    return mock


@pytest.fixture
def tracker(session_factory, responder, clock):
    config = EngagementConfig(auto_respond=False)
    return EngagementTracker(session_factory, responder, config=config, clock=clock)


async def send_messages(tracker, scope, count):
    detections = []
    for _ in range(count):
        detection = await tracker.track_message(scope)
        if detection is not None:
            detections.append(detection)
    return detections


# ============================================================
# VELOCITY
# ============================================================

class TestVelocity:

    @pytest.mark.asyncio
    async def test_velocity_counts_window(self, tracker, clock):
        await send_messages(tracker, "chan1", 10)
        assert tracker.get_velocity("#Chan1") == 10.0

        clock.advance(seconds=61)
        assert tracker.get_velocity("chan1") == 0.0

    @pytest.mark.asyncio
    async def test_message_at_window_edge_is_kept(self, tracker, clock):
        await send_messages(tracker, "chan1", 19)
        clock.advance(seconds=60)

        detections = await send_messages(tracker, "chan1", 1)

        assert len(detections) == 1
        assert detections[0].message_velocity == 20.0

    @pytest.mark.asyncio
    async def test_own_messages_are_ignored(self, tracker):
        assert await tracker.track_message("chan1", is_self=True) is None
        assert tracker.get_velocity("chan1") == 0.0

    @pytest.mark.asyncio
    async def test_empty_scope_is_ignored(self, tracker):
        assert await tracker.track_message("#") is None
        assert tracker.tracked_scopes == []


# ============================================================
# HYPE MOMENTS
# ============================================================

class TestHypeMoments:

    @pytest.mark.asyncio
    async def test_hype_at_threshold(self, tracker):
        detections = await send_messages(tracker, "chan1", 20)

        assert len(detections) == 1
        hype = detections[0]
        assert hype.event_type == EngagementEventType.HYPE_MOMENT
        assert hype.source == EventSource.CHAT_VELOCITY
        assert hype.engagement_score == 100.0

    @pytest.mark.asyncio
    async def test_cooldown_suppresses_repeat(self, tracker, clock):
        await send_messages(tracker, "chan1", 20)

        assert await send_messages(tracker, "chan1", 30) == []

        clock.advance(seconds=300)
        detections = await send_messages(tracker, "chan1", 20)
        assert len(detections) == 1

    @pytest.mark.asyncio
    async def test_cooldown_is_per_scope(self, tracker):
        await send_messages(tracker, "chan1", 20)
        detections = await send_messages(tracker, "chan2", 20)

        assert len(detections) == 1
        assert detections[0].scope_id == "chan2"

    @pytest.mark.asyncio
    async def test_hype_is_persisted(self, tracker):
        await send_messages(tracker, "chan1", 20)

        events = await tracker.get_recent_events("chan1")

        assert len(events) == 1
        assert events[0].event_type == EngagementEventType.HYPE_MOMENT
        assert events[0].message_velocity == 20.0


# ============================================================
# SCORING
# ============================================================

class TestScoring:

    @pytest.mark.asyncio
    async def test_subscription_score(self, tracker):
        detection = await tracker.handle_subscription("chan1", "Alice", months=3)

        assert detection.engagement_score == 50.0
        assert detection.subject_id == "alice"
        assert detection.months == 3

    @pytest.mark.asyncio
    async def test_gift_score_is_capped(self, tracker):
        detection = await tracker.handle_gift_subscription("chan1", "bob", gift_count=5)
        assert detection.engagement_score == 100.0

    @pytest.mark.asyncio
    async def test_raid_score_scales_with_viewers(self, tracker):
        detection = await tracker.handle_raid("chan1", "raider", viewer_count=42)
        assert detection.engagement_score == 56.8

    @pytest.mark.asyncio
    async def test_cheer_score_scales_with_bits(self, tracker):
        small = await tracker.handle_cheer("chan1", "c1", bits=50)
        large = await tracker.handle_cheer("chan1", "c2", bits=500)

        assert small.engagement_score == 15.0
        assert large.engagement_score == 75.0

    @pytest.mark.asyncio
    async def test_follow_score(self, tracker):
        detection = await tracker.handle_follow("chan1", "newbie")
        assert detection.engagement_score == 10.0

    @pytest.mark.asyncio
    async def test_custom_multiplier(self, session_factory, clock):
        config = EngagementConfig(multipliers={EngagementEventType.FOLLOW: 3.0})
        tracker = EngagementTracker(session_factory, config=config, clock=clock)

        assert tracker.calculate_score(EngagementEventType.FOLLOW) == 30.0
        assert tracker.calculate_score(EngagementEventType.RAID) == 10.0

    @pytest.mark.asyncio
    async def test_chat_activity_is_attached(self, tracker):
        await send_messages(tracker, "chan1", 5)
        detection = await tracker.handle_follow("chan1", "newbie")
        assert detection.chat_activity == 5


# ============================================================
# RESPONSES
# ============================================================

class TestResponses:

    @pytest.mark.asyncio
    async def test_respond_sends_and_records(self, tracker, responder, clock):
        detection = await tracker.handle_raid("chan1", "raider", "Raider", viewer_count=5)
        clock.advance(seconds=2)

        assert await tracker.respond(detection) is True

        responder.send.assert_awaited_once_with(
            "chan1", "Raider is raiding with 5 viewers! Welcome, raiders!"
        )
        events = await tracker.get_recent_events("chan1")
        assert events[0].responded is True
        assert events[0].response_delay_ms == 2000

    @pytest.mark.asyncio
    async def test_failed_send_is_not_recorded(self, tracker, responder):
        responder.send.return_value = False
        detection = await tracker.handle_follow("chan1", "newbie")

        assert await tracker.respond(detection) is False
        events = await tracker.get_recent_events("chan1")
        assert events[0].responded is False

    @pytest.mark.asyncio
    async def test_responder_exception_is_contained(self, tracker, responder):
        responder.send.side_effect = RuntimeError("chat offline")
        detection = await tracker.handle_follow("chan1", "newbie")

        assert await tracker.respond(detection) is False

    @pytest.mark.asyncio
    async def test_auto_respond_schedules_task(self, session_factory, responder, clock):
        config = EngagementConfig(response_delay_seconds=0)
        tracker = EngagementTracker(session_factory, responder, config=config, clock=clock)

        await tracker.handle_follow("chan1", "newbie")
        assert tracker.pending_responses == 1

        await tracker.stop()
        assert tracker.pending_responses == 0


class TestTemplates:

    def _event(self, event_type, **attributes):
        return EngagementDetection(
            event_id="e1",
            scope_id="chan1",
            event_type=event_type,
            source=EventSource.WEBHOOK,
            occurred_at=datetime(2024, 1, 1),
            display_name="Alice",
            **attributes,
        )

    @pytest.mark.parametrize("event_type,attributes,key", [
        (EngagementEventType.SUBSCRIPTION, {"months": 1}, "subscription_new"),
        (EngagementEventType.SUBSCRIPTION, {"months": 12}, "subscription_resub"),
        (EngagementEventType.GIFT_SUBSCRIPTION, {"gift_count": 10}, "gift_multiple"),
        (EngagementEventType.RAID, {"viewer_count": 100}, "raid_large"),
        (EngagementEventType.HYPE_MOMENT, {"message_velocity": 45.0}, "hype_extreme"),
        (EngagementEventType.CHEER, {"bits": 1000}, "cheer_large"),
        (EngagementEventType.CHEER, {"bits": 250}, "cheer_medium"),
    ])
    def test_template_key_by_magnitude(self, event_type, attributes, key):
        assert ResponseTemplates.template_key(self._event(event_type, **attributes)) == key

    def test_render_fills_placeholders(self):
        templates = ResponseTemplates(rng=random.Random(7))
        text = templates.render(self._event(EngagementEventType.CHEER, bits=1500))
        assert text == "Alice just cheered 1500 bits! Absolutely legendary!"


# ============================================================
# CLEANUP AND STATISTICS
# ============================================================

class TestCleanup:

    @pytest.mark.asyncio
    async def test_idle_scopes_are_removed(self, tracker, clock):
        await send_messages(tracker, "chan1", 3)
        clock.advance(seconds=121)

        assert tracker.cleanup() == 1
        assert tracker.tracked_scopes == []

    @pytest.mark.asyncio
    async def test_cooldown_survives_cleanup(self, tracker, clock):
        await send_messages(tracker, "chan1", 20)
        clock.advance(seconds=121)
        tracker.cleanup()

        assert await send_messages(tracker, "chan1", 20) == []

    @pytest.mark.asyncio
    async def test_start_and_stop(self, tracker):
        await tracker.start()
        assert tracker.is_running
        await tracker.stop()
        assert not tracker.is_running


class TestStatistics:

    @pytest.mark.asyncio
    async def test_statistics_over_range(self, tracker, clock):
        start = clock.now()
        await tracker.handle_follow("chan1", "a")
        detection = await tracker.handle_subscription("chan1", "b")
        await tracker.respond(detection)
        clock.advance(hours=2)
        await tracker.handle_follow("chan1", "late")

        stats = await tracker.get_statistics("chan1", start, start + timedelta(hours=1))

        assert stats.total_events == 2
        assert stats.events_by_type == {"follow": 1, "subscription": 1}
        assert stats.average_score == 30.0
        assert stats.peak_score == 50.0
        assert stats.response_rate == 0.5

    @pytest.mark.asyncio
    async def test_empty_range(self, tracker, clock):
        stats = await tracker.get_statistics("chan1", clock.now(), clock.now())
        assert stats.total_events == 0
        assert stats.response_rate == 0.0


class TestDatabaseOutage:

    @pytest.fixture
    def offline_tracker(self, unreachable_db, responder, clock):
        return EngagementTracker(
            unreachable_db, responder, config=EngagementConfig(auto_respond=False), clock=clock
        )

    @pytest.mark.asyncio
    async def test_discrete_event_is_still_scored(self, offline_tracker):
        detection = await offline_tracker.handle_follow("chan1", "newbie")
        assert detection.engagement_score == 10.0

    @pytest.mark.asyncio
    async def test_hype_is_still_detected(self, offline_tracker):
        detections = await send_messages(offline_tracker, "chan1", 20)
        assert len(detections) == 1

    @pytest.mark.asyncio
    async def test_response_is_sent_without_bookkeeping(self, offline_tracker, responder):
        detection = await offline_tracker.handle_follow("chan1", "newbie")

        assert await offline_tracker.respond(detection) is True
        responder.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_queries_fall_back(self, offline_tracker, clock):
        assert await offline_tracker.get_recent_events("chan1") == []
        stats = await offline_tracker.get_statistics("chan1", clock.now(), clock.now())
        assert stats.total_events == 0
