"""
Unit tests for ScheduleTrigger.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from liverelay.database.models import DEFAULT_LIVE_LIMIT_KEY, StreamStatus
from liverelay.scheduling.trigger import ScheduleTrigger, TriggerBranch
from liverelay.streaming.supervisor import StartOutcome, StartResult


def jakarta(day, hour, minute=0, second=0):
    """March 2026 wall-clock time in Asia/Jakarta (UTC+7) as a UTC instant."""
    return datetime(2026, 3, day, hour, minute, second, tzinfo=timezone.utc) - timedelta(hours=7)


class RecordingStart:
    def __init__(self, outcome=StartOutcome.STARTED):
        self.calls = []
        self.outcome = outcome

    async def __call__(self, stream_id, *, trigger):
        self.calls.append((stream_id, trigger))
        return StartResult(stream_id, self.outcome)


@pytest.fixture
def start():
    return RecordingStart()


@pytest.fixture
def trigger(store, start):
    return ScheduleTrigger(store, start, timezone="Asia/Jakarta", fire_window_minutes=5)


async def daily_stream(make_stream, **fields):
    values = {
        "video_id": None,
        "schedule_type": "daily",
        "recurring_time": "09:00",
        "status": "scheduled",
    }
    values.update(fields)
    return await make_stream(**values)


@pytest.mark.unit
class TestDueInstant:
    @pytest.mark.asyncio
    async def test_fire_branch(self, trigger, store, user, make_stream):
        stream = await daily_stream(make_stream)

        due = trigger.due_instant(await store.get(stream.id), jakarta(2, 9, 2))

        assert due.instant == jakarta(2, 9, 0)
        assert due.branch is TriggerBranch.FIRE

    @pytest.mark.asyncio
    async def test_overdue_branch_same_day(self, trigger, store, user, make_stream):
        stream = await daily_stream(make_stream)

        due = trigger.due_instant(await store.get(stream.id), jakarta(2, 14, 0))

        assert due.branch is TriggerBranch.OVERDUE

    @pytest.mark.asyncio
    async def test_before_slot_not_due(self, trigger, store, user, make_stream):
        stream = await daily_stream(make_stream)

        assert trigger.due_instant(await store.get(stream.id), jakarta(2, 8, 59)) is None

    @pytest.mark.asyncio
    async def test_weekly_other_day_not_due(self, trigger, store, user, make_stream):
        # 2026-03-02 is a Monday (1)
        stream = await daily_stream(make_stream, schedule_type="weekly", schedule_days=[3])

        assert trigger.due_instant(await store.get(stream.id), jakarta(2, 9, 1)) is None

    @pytest.mark.asyncio
    async def test_disabled_recurrence_not_due(self, trigger, store, user, make_stream):
        stream = await daily_stream(make_stream, recurring_enabled=False)

        assert trigger.due_instant(await store.get(stream.id), jakarta(2, 9, 1)) is None

    @pytest.mark.asyncio
    async def test_schedule_set_after_slot_waits(self, trigger, store, user, make_stream):
        stream = await daily_stream(make_stream, schedule_set_at=jakarta(2, 10, 0))

        assert trigger.due_instant(await store.get(stream.id), jakarta(2, 10, 30)) is None
        assert trigger.due_instant(await store.get(stream.id), jakarta(3, 9, 1)) is not None

    @pytest.mark.asyncio
    async def test_schedule_set_inside_window_still_fires(self, trigger, store, user, make_stream):
        stream = await daily_stream(make_stream, schedule_set_at=jakarta(2, 9, 3))

        due = trigger.due_instant(await store.get(stream.id), jakarta(2, 9, 4))

        assert due is not None

    @pytest.mark.asyncio
    async def test_once_future_not_due(self, trigger, store, user, make_stream):
        stream = await make_stream(video_id=None, status="scheduled", schedule_time=jakarta(2, 20, 0))

        assert trigger.due_instant(await store.get(stream.id), jakarta(2, 12, 0)) is None

    @pytest.mark.asyncio
    async def test_non_scheduled_not_due(self, trigger, store, user, make_stream):
        stream = await daily_stream(make_stream, status="offline")

        assert trigger.due_instant(await store.get(stream.id), jakarta(2, 9, 1)) is None


@pytest.mark.unit
class TestTick:
    @pytest.mark.asyncio
    async def test_fires_due_stream(self, trigger, start, user, make_stream):
        stream = await daily_stream(make_stream)

        report = await trigger.tick(jakarta(2, 9, 0, 30))

        assert report.started == [stream.id]
        assert start.calls == [(stream.id, "schedule:fire")]

    @pytest.mark.asyncio
    async def test_instant_fires_once(self, trigger, start, user, make_stream):
        await daily_stream(make_stream)

        await trigger.tick(jakarta(2, 9, 0, 30))
        await trigger.tick(jakarta(2, 9, 1, 30))
        await trigger.tick(jakarta(2, 15, 0))

        assert len(start.calls) == 1

    @pytest.mark.asyncio
    async def test_next_day_fires_again(self, trigger, start, user, make_stream):
        await daily_stream(make_stream)

        await trigger.tick(jakarta(2, 9, 0, 30))
        await trigger.tick(jakarta(3, 9, 0, 30))

        assert len(start.calls) == 2

    @pytest.mark.asyncio
    async def test_overdue_start_logged_as_late(self, trigger, start, user, make_stream):
        stream = await daily_stream(make_stream)

        await trigger.tick(jakarta(2, 11, 0))

        assert start.calls == [(stream.id, "schedule:overdue")]

    @pytest.mark.asyncio
    async def test_once_stream_today_fires(self, trigger, start, user, make_stream):
        stream = await make_stream(video_id=None, status="scheduled", schedule_time=jakarta(2, 9, 0))

        report = await trigger.tick(jakarta(2, 9, 1))

        assert report.started == [stream.id]

    @pytest.mark.asyncio
    async def test_once_stream_from_earlier_day_expires(self, trigger, start, store, user, make_stream):
        stream = await make_stream(video_id=None, status="scheduled", schedule_time=jakarta(1, 22, 0))

        report = await trigger.tick(jakarta(2, 9, 0))

        assert report.expired == [stream.id]
        assert start.calls == []
        updated = await store.get(stream.id)
        assert updated.status == "offline"
        assert updated.schedule_time is None

    @pytest.mark.asyncio
    async def test_refused_start_is_retried_next_tick(self, store, user, make_stream):
        refusing = RecordingStart(StartOutcome.LIMIT_REACHED)
        trigger = ScheduleTrigger(store, refusing)
        stream = await daily_stream(make_stream)

        first = await trigger.tick(jakarta(2, 9, 0, 30))
        refusing.outcome = StartOutcome.STARTED
        second = await trigger.tick(jakarta(2, 9, 1, 30))
        third = await trigger.tick(jakarta(2, 9, 2, 30))

        assert first.refused == [stream.id]
        assert second.started == [stream.id]
        assert third.started == []
        assert len(refusing.calls) == 2
        assert (await store.get(stream.id)).last_triggered_at == jakarta(2, 9)

    @pytest.mark.asyncio
    async def test_failed_start_releases_claim(self, store, user, make_stream):
        async def broken_start(stream_id, *, trigger):
            raise RuntimeError("boom")

        trigger = ScheduleTrigger(store, broken_start)
        stream = await daily_stream(make_stream)

        report = await trigger.tick(jakarta(2, 9, 0, 30))

        assert report.errors == [stream.id]
        assert (await store.get(stream.id)).last_triggered_at is None

    @pytest.mark.asyncio
    async def test_concurrent_ticks_start_once(self, trigger, start, user, make_stream):
        await daily_stream(make_stream)

        await asyncio.gather(trigger.tick(jakarta(2, 9, 0, 30)), trigger.tick(jakarta(2, 9, 0, 31)))

        assert len(start.calls) == 1

    @pytest.mark.asyncio
    async def test_status(self, trigger, user):
        await trigger.tick(jakarta(2, 9, 0))

        status = trigger.get_status()
        assert status["ticks"] == 1
        assert status["timezone"] == "Asia/Jakarta"


@pytest.mark.unit
class TestWithSupervisor:
    @pytest.mark.asyncio
    async def test_limit_one_two_due_streams(self, supervisor, store, video, make_stream):
        await store.set_setting(DEFAULT_LIVE_LIMIT_KEY, "1")
        first = await make_stream(schedule_type="daily", recurring_time="09:00", status="scheduled")
        second = await make_stream(
            title="Second", schedule_type="daily", recurring_time="09:00", status="scheduled"
        )
        trigger = ScheduleTrigger(store, supervisor.start)

        report = await trigger.tick(jakarta(2, 9, 0, 30))

        assert len(report.started) == 1
        assert len(report.refused) == 1
        statuses = sorted([(await store.get(first.id)).status, (await store.get(second.id)).status])
        assert statuses == ["live", "scheduled"]
        assert supervisor.count_active("user-1") == 1

    @pytest.mark.asyncio
    async def test_daily_stream_runs_each_day(self, supervisor, store, video, make_stream):
        stream = await make_stream(schedule_type="daily", recurring_time="09:00", status="scheduled")
        trigger = ScheduleTrigger(store, supervisor.start)

        await trigger.tick(jakarta(2, 9, 0, 30))
        assert (await store.get(stream.id)).status == "live"

        await supervisor.stop(stream.id, reason="duration")
        assert (await store.get(stream.id)).status == "scheduled"

        second = await trigger.tick(jakarta(2, 9, 3))
        assert second.started == []
        assert not supervisor.is_active(stream.id)

        third = await trigger.tick(jakarta(3, 9, 0, 30))
        assert third.started == [stream.id]
        assert (await store.get(stream.id)).status == StreamStatus.LIVE.value

    @pytest.mark.asyncio
    async def test_once_stream_starts_when_limit_frees_up(self, supervisor, store, video, make_stream):
        await store.set_setting(DEFAULT_LIVE_LIMIT_KEY, "1")
        blocker = await make_stream(title="Blocker")
        await supervisor.start(blocker.id)
        once = await make_stream(
            title="Launch", schedule_type="once", schedule_time=jakarta(2, 9), status="scheduled"
        )
        trigger = ScheduleTrigger(store, supervisor.start)

        first = await trigger.tick(jakarta(2, 9, 0, 30))
        assert first.refused == [once.id]
        assert (await store.get(once.id)).status == "scheduled"

        await supervisor.stop(blocker.id)
        second = await trigger.tick(jakarta(2, 9, 1, 30))

        assert second.started == [once.id]
        assert (await store.get(once.id)).status == StreamStatus.LIVE.value
