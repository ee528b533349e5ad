"""
Read-only scheduling views for the presentation layer.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional
from zoneinfo import ZoneInfo

from liverelay.database.models import ScheduleType, Stream
from liverelay.scheduling.recurrence import (
    is_valid_time,
    next_run,
    occurrence_on,
    parse_recurring_time,
    sunday_based_weekday,
)


@dataclass
class ScheduleEntry:
    stream_id: str
    title: str
    schedule_type: str
    status: str
    run_at: Optional[datetime]

    def to_dict(self, tz: ZoneInfo) -> dict[str, Any]:
        return {
            "stream_id": self.stream_id,
            "title": self.title,
            "schedule_type": self.schedule_type,
            "status": self.status,
            "run_at": self.run_at.isoformat() if self.run_at else None,
            "run_at_local": self.run_at.astimezone(tz).strftime("%Y-%m-%d %H:%M") if self.run_at else None,
        }


def group_by_schedule_type(streams: Iterable[Stream]) -> dict[str, list[Stream]]:
    """Streams bucketed by once/daily/weekly, every bucket present."""
    groups: dict[str, list[Stream]] = {kind.value: [] for kind in ScheduleType}
    for stream in streams:
        groups.setdefault(stream.schedule_type, []).append(stream)
    return groups


def todays_schedule(streams: Iterable[Stream], now: datetime, tz: ZoneInfo) -> list[ScheduleEntry]:
    """
    Every start that falls on today's local date, past or upcoming.

    Sorted by start instant.
    """
    today = now.astimezone(tz).date()
    entries = []
    for stream in streams:
        run_at = None
        if stream.schedule_type == ScheduleType.ONCE.value:
            if stream.schedule_time is not None and stream.schedule_time.astimezone(tz).date() == today:
                run_at = stream.schedule_time
        elif stream.recurring_enabled and is_valid_time(stream.recurring_time):
            if stream.schedule_type == ScheduleType.DAILY.value or sunday_based_weekday(today) in (
                stream.schedule_days or []
            ):
                run_at = occurrence_on(today, parse_recurring_time(stream.recurring_time), tz)
        if run_at is not None:
            entries.append(ScheduleEntry(stream.id, stream.title, stream.schedule_type, stream.status, run_at))
    return sorted(entries, key=lambda entry: entry.run_at)


def upcoming(streams: Iterable[Stream], now: datetime, tz: ZoneInfo) -> list[ScheduleEntry]:
    """Next run of every stream that has one, soonest first."""
    entries = []
    for stream in streams:
        run_at = next_run(stream, now, tz)
        if run_at is not None:
            entries.append(ScheduleEntry(stream.id, stream.title, stream.schedule_type, stream.status, run_at))
    return sorted(entries, key=lambda entry: entry.run_at)
