"""
Tests for the Analytics Recorder and Aggregator.

============================================================
PURPOSE
============================================================
- Raw event recording and message ids
- Pure reduction (averages, error buckets, returning users)
- Idempotent hourly/daily rollups
- Per-scope error isolation
- Range and per-user statistics

============================================================
"""

from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from analytics import (
    AnalyticsAggregator,
    AnalyticsRecorder,
    Granularity,
    MessageEvent,
    MessageType,
    reduce_events,
)
from analytics.reduction import average_positive, round_half_up
from analytics.repository import AnalyticsEventRepository, RollupRepository
from storage.repositories.exceptions import QueryError


HOUR = datetime(2024, 1, 1, 10, 0)


@pytest.fixture
def recorder(session_factory, clock):
    return AnalyticsRecorder(session_factory, clock=clock)


@pytest.fixture
def aggregator(session_factory, clock):
    return AnalyticsAggregator(session_factory, clock=clock)


def make_event(subject="u1", at=HOUR, scope="chan1", **fields):
    return MessageEvent(scope_id=scope, subject_id=subject, received_at=at, **fields)


async def record_example_hour(recorder):
    """Ten messages in the 10:00 hour; u1 was already seen at 09:30."""
    await recorder.log_message_event(make_event("u1", HOUR - timedelta(minutes=30)))

    subjects = ["u1", "u2", "u3", "u4", "u1", "u2", "u3", "u1", "u2", "u1"]
    for index, subject in enumerate(subjects):
        await recorder.log_message_event(make_event(
            subject,
            HOUR + timedelta(minutes=index * 5),
            success=index < 8,
            cache_hit=index < 3,
            error_type="api_error" if index == 8 else ("rate_limit" if index == 9 else None),
            processing_time_ms=100,
            ai_response_time_ms=400,
        ))


# ============================================================
# RECORDER
# ============================================================

class TestRecorder:

    @pytest.mark.asyncio
    async def test_message_id_format(self, recorder):
        message_id = await recorder.log_message_event(make_event("User1", scope="#Chan1"))

        assert message_id.startswith("msg_chan1_user1_1704103200000_")
        assert len(message_id.rsplit("_", 1)[1]) == 10

    @pytest.mark.asyncio
    async def test_message_ids_are_unique(self, recorder):
        first = await recorder.log_message_event(make_event())
        second = await recorder.log_message_event(make_event())
        assert first != second

    @pytest.mark.asyncio
    async def test_missing_subject_is_not_recorded(self, recorder):
        assert await recorder.log_message_event(make_event(subject=" ")) is None

    @pytest.mark.asyncio
    async def test_fields_are_normalised(self, recorder, session_factory):
        await recorder.log_message_event(make_event(
            "u1",
            display_name="  Alice ",
            message_type=MessageType.COMMAND,
            command=" help ",
            error_message="x" * 600,
            success=False,
            error_type=" api_error ",
        ))

        async with session_factory() as session:
            events = await AnalyticsEventRepository(session).get_events(
                "chan1", HOUR, HOUR + timedelta(hours=1)
            )

        event = events[0]
        assert event.display_name == "Alice"
        assert event.message_type == "command"
        assert event.command == "help"
        assert event.error_type == "api_error"
        assert len(event.error_message) == 500
        assert event.processed_at == HOUR

    @pytest.mark.asyncio
    async def test_storage_failure_returns_none(self, recorder):
        error = QueryError("AnalyticsEventRepository", "add", "add", "disk full")
        with patch.object(AnalyticsEventRepository, "add", side_effect=error):
            assert await recorder.log_message_event(make_event()) is None

    @pytest.mark.asyncio
    async def test_unreachable_database_returns_none(self, unreachable_db, clock):
        recorder = AnalyticsRecorder(unreachable_db, clock=clock)

        assert await recorder.log_message_event(make_event()) is None
        assert unreachable_db.attempts == 1


# ============================================================
# REDUCTION
# ============================================================

def event(subject="u1", **fields):
    defaults = dict(
        subject_id=subject,
        success=True,
        cache_hit=False,
        command=None,
        error_type=None,
        was_moderated=False,
        message_type="other",
        processing_time_ms=0,
        ai_response_time_ms=0,
    )
    defaults.update(fields)
    return SimpleNamespace(**defaults)


class TestReduction:

    def test_no_events_is_all_zero(self):
        stats = reduce_events([])
        assert stats.total_messages == 0
        assert stats.cache_hit_rate == 0.0

    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(1.5) == 2
        assert round_half_up(2.49) == 2

    def test_average_ignores_non_positive(self):
        assert average_positive([0, 100, 201, None, -5]) == 151
        assert average_positive([0, 0]) == 0

    def test_error_buckets(self):
        stats = reduce_events([
            event(success=False, error_type="rate_limit"),
            event(success=False, error_type="api_error"),
            event(success=False, error_type="moderated", was_moderated=True),
            event(success=False, error_type="send_failed"),
            event(),
        ])

        assert stats.failed_messages == 4
        assert stats.rate_limit_hits == 1
        assert stats.api_errors == 1
        assert stats.moderation_actions == 1
        assert stats.other_errors == 1

    def test_commands_and_questions(self):
        stats = reduce_events([
            event(message_type="command", command="help"),
            event(message_type="command", command="help"),
            event(message_type="command", command="about"),
            event(message_type=MessageType.QUESTION),
        ])

        assert stats.command_counts == {"about": 1, "help": 2}
        assert stats.question_count == 1

    def test_returning_users(self):
        stats = reduce_events(
            [event("u1"), event("u2"), event("u1")],
            prior_subjects=["u1", "u9"],
        )

        assert stats.unique_users == 2
        assert stats.returning_users == 1
        assert stats.new_users == 1


# ============================================================
# AGGREGATION
# ============================================================

class TestHourlyRollup:

    @pytest.mark.asyncio
    async def test_example_hour(self, recorder, aggregator):
        await record_example_hour(recorder)

        stats = await aggregator.aggregate_bucket("chan1", HOUR)

        assert stats.total_messages == 10
        assert stats.successful_messages == 8
        assert stats.failed_messages == 2
        assert stats.unique_users == 4
        assert stats.cache_hit_rate == pytest.approx(0.3)
        assert stats.new_users == 3
        assert stats.returning_users == 1
        assert stats.api_errors == 1
        assert stats.rate_limit_hits == 1
        assert stats.avg_processing_time_ms == 100
        assert stats.avg_response_time_ms == 400

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, recorder, aggregator):
        await record_example_hour(recorder)
        end = HOUR + timedelta(hours=1)

        first = await aggregator.aggregate(HOUR, end, scope_id="chan1")
        second = await aggregator.aggregate(HOUR, end, scope_id="chan1")

        assert (first.rollups_created, first.rollups_updated) == (1, 0)
        assert (second.rollups_created, second.rollups_updated) == (0, 1)

        rollups = await aggregator.get_rollups("chan1", HOUR, end)
        assert len(rollups) == 1
        assert rollups[0]["total_messages"] == 10
        assert rollups[0]["hour"] == 10

    @pytest.mark.asyncio
    async def test_late_events_overwrite_rollup(self, recorder, aggregator):
        await record_example_hour(recorder)
        await aggregator.aggregate_bucket("chan1", HOUR)

        await recorder.log_message_event(make_event("u5", HOUR + timedelta(minutes=59)))
        stats = await aggregator.aggregate_bucket("chan1", HOUR)

        assert stats.total_messages == 11
        assert stats.unique_users == 5

    @pytest.mark.asyncio
    async def test_empty_bucket_creates_nothing(self, aggregator):
        assert await aggregator.aggregate_bucket("chan1", HOUR) is None

        result = await aggregator.aggregate(HOUR, HOUR + timedelta(hours=1), scope_id="chan1")
        assert result.scopes_processed == 1
        assert result.rollups_created == 0

    @pytest.mark.asyncio
    async def test_all_scopes_with_events(self, recorder, aggregator):
        await recorder.log_message_event(make_event(scope="chan1"))
        await recorder.log_message_event(make_event(scope="chan2"))

        result = await aggregator.aggregate(HOUR, HOUR + timedelta(hours=1))

        assert result.scopes_processed == 2
        assert result.rollups_created == 2
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_failing_scope_does_not_stop_others(self, recorder, aggregator):
        await recorder.log_message_event(make_event(scope="chan1"))
        await recorder.log_message_event(make_event(scope="chan2"))

        original = AnalyticsEventRepository.get_events

        async def get_events(self, scope_id, start, end, subject_id=None):
            if scope_id == "chan1":
                raise QueryError("AnalyticsEventRepository", "query", "events", "boom")
            return await original(self, scope_id, start, end, subject_id)

        with patch.object(AnalyticsEventRepository, "get_events", get_events):
            result = await aggregator.aggregate(HOUR, HOUR + timedelta(hours=1))

        assert result.scopes_processed == 1
        assert result.rollups_created == 1
        assert len(result.errors) == 1
        assert "chan1" in result.errors[0]

    @pytest.mark.asyncio
    async def test_driver_timeout_in_one_scope_does_not_stop_others(self, recorder, aggregator):
        await recorder.log_message_event(make_event(scope="chan_a"))
        await recorder.log_message_event(make_event(scope="chan_b"))

        original = AnalyticsAggregator._aggregate_scope

        async def aggregate_scope(self, scope, start, end, granularity):
            if scope == "chan_a":
                raise TimeoutError("statement timeout")
            return await original(self, scope, start, end, granularity)

        with patch.object(AnalyticsAggregator, "_aggregate_scope", aggregate_scope):
            result = await aggregator.aggregate(HOUR, HOUR + timedelta(hours=1))

        assert result.scopes_processed == 1
        assert result.rollups_created == 1
        assert result.errors == ["Error aggregating scope chan_a: statement timeout"]

    @pytest.mark.asyncio
    async def test_unreachable_database_is_reported(self, unreachable_db, clock):
        aggregator = AnalyticsAggregator(unreachable_db, clock=clock)

        result = await aggregator.aggregate(HOUR, HOUR + timedelta(hours=1))

        assert result.scopes_processed == 0
        assert result.errors == ["Error listing scopes: Connection refused"]

    @pytest.mark.asyncio
    async def test_previous_hour(self, recorder, aggregator, clock):
        await recorder.log_message_event(make_event(at=HOUR + timedelta(minutes=15)))
        clock.set_time(HOUR + timedelta(hours=1, minutes=5))

        result = await aggregator.aggregate_previous_hour()

        assert result.rollups_created == 1

    @pytest.mark.asyncio
    async def test_multi_bucket_range(self, recorder, aggregator, session_factory):
        await recorder.log_message_event(make_event(at=HOUR))
        await recorder.log_message_event(make_event(at=HOUR + timedelta(hours=2)))

        result = await aggregator.aggregate(HOUR, HOUR + timedelta(hours=3), scope_id="chan1")

        assert result.rollups_created == 2
        async with session_factory() as session:
            rollup = await RollupRepository(session).get(
                "chan1", Granularity.HOURLY, HOUR + timedelta(hours=2)
            )
        assert rollup.returning_users == 1


class TestDailyRollup:

    @pytest.mark.asyncio
    async def test_previous_day(self, recorder, aggregator, clock):
        await recorder.log_message_event(make_event(at=HOUR))
        await recorder.log_message_event(make_event("u2", at=HOUR + timedelta(hours=5)))
        clock.set_time(datetime(2024, 1, 2, 0, 5))

        result = await aggregator.aggregate_previous_day()
        rollups = await aggregator.get_rollups(
            "chan1", datetime(2024, 1, 1), datetime(2024, 1, 2), Granularity.DAILY
        )

        assert result.rollups_created == 1
        assert rollups[0]["hour"] is None
        assert rollups[0]["total_messages"] == 2
        assert rollups[0]["unique_users"] == 2


# ============================================================
# RANGE QUERIES
# ============================================================

class TestStatisticsQueries:

    @pytest.mark.asyncio
    async def test_channel_statistics(self, recorder, aggregator):
        await record_example_hour(recorder)

        stats = await aggregator.get_channel_statistics(
            "#Chan1", HOUR, HOUR + timedelta(hours=1)
        )

        assert stats["scope_id"] == "chan1"
        assert stats["total_messages"] == 10
        assert stats["returning_users"] == 1

    @pytest.mark.asyncio
    async def test_user_statistics(self, recorder, aggregator):
        await record_example_hour(recorder)

        stats = await aggregator.get_user_statistics(
            "chan1", "U1", HOUR - timedelta(hours=1), HOUR + timedelta(hours=1)
        )

        assert stats["subject_id"] == "u1"
        assert stats["total_messages"] == 5
        assert stats["first_seen"] == (HOUR - timedelta(minutes=30)).isoformat()
        assert stats["last_seen"] == (HOUR + timedelta(minutes=45)).isoformat()

    @pytest.mark.asyncio
    async def test_user_without_events(self, aggregator):
        stats = await aggregator.get_user_statistics(
            "chan1", "ghost", HOUR, HOUR + timedelta(hours=1)
        )
        assert stats["total_messages"] == 0
        assert stats["first_seen"] is None


class TestGranularity:

    def test_hourly_buckets(self):
        buckets = Granularity.HOURLY.buckets(
            datetime(2024, 1, 1, 10, 30), datetime(2024, 1, 1, 13)
        )
        assert buckets == [
            datetime(2024, 1, 1, 10),
            datetime(2024, 1, 1, 11),
            datetime(2024, 1, 1, 12),
        ]

    def test_daily_bucket_start(self):
        assert Granularity.DAILY.bucket_start(datetime(2024, 1, 1, 23, 59)) == datetime(2024, 1, 1)
