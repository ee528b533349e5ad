"""
Unit tests for the end-of-run status rules.
"""

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from liverelay.database.models import StreamStatus
from liverelay.streaming.status import clears_schedule_time, has_active_schedule, status_after_end


def make_stream(schedule_type=None, recurring_enabled=True, schedule_time=None):
    return SimpleNamespace(
        schedule_type=schedule_type,
        recurring_enabled=recurring_enabled,
        schedule_time=schedule_time,
        is_recurring=schedule_type in ("daily", "weekly"),
    )


@pytest.mark.unit
class TestStatusAfterEnd:
    @pytest.mark.parametrize(
        "stream,expected",
        [
            (make_stream("daily"), StreamStatus.SCHEDULED),
            (make_stream("weekly"), StreamStatus.SCHEDULED),
            (make_stream("daily", recurring_enabled=False), StreamStatus.OFFLINE),
            (make_stream("once", schedule_time=datetime(2026, 3, 2, tzinfo=timezone.utc)), StreamStatus.OFFLINE),
            (make_stream(), StreamStatus.OFFLINE),
        ],
    )
    def test_status(self, stream, expected):
        assert status_after_end(stream) is expected

    def test_once_clears_schedule_time(self):
        assert clears_schedule_time(make_stream("once"))
        assert not clears_schedule_time(make_stream("daily"))


@pytest.mark.unit
class TestHasActiveSchedule:
    def test_recurring_follows_enabled_flag(self):
        assert has_active_schedule(make_stream("daily"))
        assert not has_active_schedule(make_stream("weekly", recurring_enabled=False))

    def test_once_needs_time(self):
        assert has_active_schedule(make_stream("once", schedule_time=datetime(2026, 3, 2, tzinfo=timezone.utc)))
        assert not has_active_schedule(make_stream("once"))

    def test_unscheduled_stream(self):
        assert not has_active_schedule(make_stream())
