"""
Unit tests for schedule listings.
"""

from datetime import datetime
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest

from liverelay.scheduling.views import group_by_schedule_type, todays_schedule, upcoming

JAKARTA = ZoneInfo("Asia/Jakarta")


def stream(stream_id, schedule_type="daily", **fields):
    values = {
        "id": stream_id,
        "title": stream_id.title(),
        "schedule_type": schedule_type,
        "status": "scheduled",
        "schedule_time": None,
        "recurring_time": "09:00",
        "schedule_days": None,
        "recurring_enabled": True,
    }
    values.update(fields)
    return SimpleNamespace(**values)


@pytest.fixture
def now():
    return datetime(2026, 3, 2, 12, 0, tzinfo=JAKARTA)  # Monday


@pytest.mark.unit
class TestGrouping:
    def test_every_bucket_present(self):
        groups = group_by_schedule_type([stream("a"), stream("b", "weekly")])

        assert set(groups) == {"once", "daily", "weekly"}
        assert [s.id for s in groups["daily"]] == ["a"]
        assert groups["once"] == []


@pytest.mark.unit
class TestTodaysSchedule:
    def test_includes_past_and_future_slots(self, now):
        streams = [
            stream("evening", recurring_time="20:00"),
            stream("morning", recurring_time="07:30"),
            stream("monday", "weekly", recurring_time="10:00", schedule_days=[1]),
            stream("friday", "weekly", recurring_time="10:00", schedule_days=[5]),
            stream("once", "once", schedule_time=datetime(2026, 3, 2, 15, 0, tzinfo=JAKARTA)),
            stream("tomorrow", "once", schedule_time=datetime(2026, 3, 3, 15, 0, tzinfo=JAKARTA)),
            stream("paused", recurring_enabled=False),
        ]

        entries = todays_schedule(streams, now, JAKARTA)

        assert [entry.stream_id for entry in entries] == ["morning", "monday", "once", "evening"]
        assert entries[0].to_dict(JAKARTA)["run_at_local"] == "2026-03-02 07:30"


@pytest.mark.unit
class TestUpcoming:
    def test_sorted_by_next_run(self, now):
        streams = [
            stream("daily", recurring_time="09:00"),  # passed today, tomorrow 09:00
            stream("tonight", recurring_time="21:00"),
            stream("wednesday", "weekly", recurring_time="08:00", schedule_days=[3]),
            stream("past", "once", schedule_time=datetime(2026, 3, 1, 9, 0, tzinfo=JAKARTA)),
        ]

        entries = upcoming(streams, now, JAKARTA)

        assert [entry.stream_id for entry in entries] == ["tonight", "daily", "wednesday"]
        assert entries[1].run_at == datetime(2026, 3, 3, 9, 0, tzinfo=JAKARTA)
