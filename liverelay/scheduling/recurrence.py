"""
Recurring schedule math.

All wall-clock reasoning happens in one reference timezone (config
`scheduling.timezone`). Instants going in and out are aware datetimes.

Weekdays use the stored convention 0=Sunday .. 6=Saturday.
"""

import re
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional, Sequence, Union
from zoneinfo import ZoneInfo

from liverelay.database.models import ScheduleType, Stream
from liverelay.errors import ValidationError

TIME_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")

DAY_INDEX = {
    "sunday": 0,
    "monday": 1,
    "tuesday": 2,
    "wednesday": 3,
    "thursday": 4,
    "friday": 5,
    "saturday": 6,
}

DAY_NAMES = {
    "en": ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"],
    "id": ["Minggu", "Senin", "Selasa", "Rabu", "Kamis", "Jumat", "Sabtu"],
}

MONTH_NAMES = {
    "en": [
        "January", "February", "March", "April", "May", "June",
        "July", "August", "September", "October", "November", "December",
    ],
    "id": [
        "Januari", "Februari", "Maret", "April", "Mei", "Juni",
        "Juli", "Agustus", "September", "Oktober", "November", "Desember",
    ],
}


def sunday_based_weekday(day: date) -> int:
    """date.weekday() is Monday=0; schedules count from Sunday=0."""
    return (day.weekday() + 1) % 7


def is_valid_time(value: Optional[str]) -> bool:
    return isinstance(value, str) and TIME_PATTERN.match(value) is not None


def parse_recurring_time(value: str) -> time:
    """Parse "HH:MM" (hour may be one digit)."""
    match = TIME_PATTERN.match(value or "")
    if match is None:
        raise ValidationError("Recurring time must be in HH:MM format", field="recurring_time")
    return time(int(match.group(1)), int(match.group(2)))


def parse_schedule_days(days: Iterable[Union[int, str]]) -> list[int]:
    """
    Normalize weekdays to sorted unique ints (0=Sunday).

    Accepts ints, numeric strings and English day names.
    """
    result = set()
    invalid = []
    for day in days:
        if isinstance(day, bool):
            invalid.append(str(day))
        elif isinstance(day, int):
            if 0 <= day <= 6:
                result.add(day)
            else:
                invalid.append(str(day))
        elif isinstance(day, str):
            key = day.strip().lower()
            if key.isdigit() and 0 <= int(key) <= 6:
                result.add(int(key))
            elif key in DAY_INDEX:
                result.add(DAY_INDEX[key])
            else:
                invalid.append(day)
        else:
            invalid.append(repr(day))
    if invalid:
        raise ValidationError(f"Invalid days: {', '.join(invalid)}", field="schedule_days")
    return sorted(result)


def validate_schedule(
    schedule_type: str,
    schedule_time: Optional[datetime] = None,
    recurring_time: Optional[str] = None,
    schedule_days: Optional[Sequence[Union[int, str]]] = None,
    recurring_enabled: bool = True,
    duration_minutes: Optional[int] = None,
) -> Optional[list[int]]:
    """
    Reject malformed schedules.

    Returns:
        Normalized weekday list for weekly schedules, else None

    Raises:
        ValidationError: describing the first problem found
    """
    try:
        kind = ScheduleType(schedule_type)
    except ValueError:
        raise ValidationError("Schedule type must be once, daily or weekly", field="schedule_type")

    if duration_minutes is not None and duration_minutes < 0:
        raise ValidationError("Duration cannot be negative", field="duration_minutes")

    if kind is ScheduleType.ONCE:
        if schedule_time is not None and schedule_time.tzinfo is None:
            raise ValidationError("Schedule time must be timezone-aware", field="schedule_time")
        return None

    if not recurring_enabled:
        return parse_schedule_days(schedule_days or []) if kind is ScheduleType.WEEKLY else None

    if not recurring_time:
        raise ValidationError("Recurring time is required", field="recurring_time")
    parse_recurring_time(recurring_time)

    if kind is ScheduleType.WEEKLY:
        days = parse_schedule_days(schedule_days or [])
        if not days:
            raise ValidationError("Weekly schedule requires at least one day selected", field="schedule_days")
        return days
    return None


def occurrence_on(day: date, at: time, tz: ZoneInfo) -> datetime:
    """The instant of wall-clock `at` on `day` in `tz`."""
    return datetime.combine(day, at, tzinfo=tz)


def _matches(day: date, weekdays: Optional[Sequence[int]]) -> bool:
    return weekdays is None or sunday_based_weekday(day) in weekdays


def next_occurrence(
    at: time,
    now: datetime,
    tz: ZoneInfo,
    weekdays: Optional[Sequence[int]] = None,
) -> Optional[datetime]:
    """
    Smallest instant strictly after `now` at wall-clock `at`.

    With `weekdays`, only those days qualify; an empty set never matches.
    """
    if weekdays is not None and not weekdays:
        return None
    local_today = now.astimezone(tz).date()
    # 8 days covers "same weekday next week" when today's slot has passed
    for offset in range(8):
        day = local_today + timedelta(days=offset)
        if not _matches(day, weekdays):
            continue
        candidate = occurrence_on(day, at, tz)
        if candidate > now:
            return candidate
    return None


def next_daily_run(recurring_time: str, now: datetime, tz: ZoneInfo) -> datetime:
    return next_occurrence(parse_recurring_time(recurring_time), now, tz)


def next_weekly_run(
    recurring_time: str,
    days: Sequence[Union[int, str]],
    now: datetime,
    tz: ZoneInfo,
) -> Optional[datetime]:
    return next_occurrence(parse_recurring_time(recurring_time), now, tz, parse_schedule_days(days))


def latest_occurrence_today(stream: Stream, now: datetime, tz: ZoneInfo) -> Optional[datetime]:
    """
    Today's scheduled instant of a recurring stream if it is not in the future.

    "Today" is the local date in `tz`; nothing from an earlier day is
    returned, which bounds how late a missed occurrence may still fire.
    """
    if not stream.is_recurring or not is_valid_time(stream.recurring_time):
        return None
    today = now.astimezone(tz).date()
    weekdays = None
    if stream.schedule_type == ScheduleType.WEEKLY.value:
        weekdays = stream.schedule_days or []
        if not _matches(today, weekdays):
            return None
    instant = occurrence_on(today, parse_recurring_time(stream.recurring_time), tz)
    return instant if instant <= now else None


def next_run(stream: Stream, now: datetime, tz: ZoneInfo) -> Optional[datetime]:
    """
    Next start of a stream after `now`.

    Once-type streams return their schedule_time while it is still ahead.
    Recurring streams with recurrence disabled have no next run.
    """
    if stream.schedule_type == ScheduleType.ONCE.value:
        if stream.schedule_time is not None and stream.schedule_time > now:
            return stream.schedule_time
        return None
    if not stream.recurring_enabled or not is_valid_time(stream.recurring_time):
        return None
    at = parse_recurring_time(stream.recurring_time)
    if stream.schedule_type == ScheduleType.WEEKLY.value:
        return next_occurrence(at, now, tz, stream.schedule_days or [])
    return next_occurrence(at, now, tz)


def is_schedule_missed(next_run_at: Optional[datetime], now: datetime) -> bool:
    return next_run_at is not None and next_run_at < now


def replace_title_placeholders(template: Optional[str], when: datetime, tz: ZoneInfo, locale: str = "id") -> str:
    """
    Fill date placeholders of a broadcast title.

    Supported: {date} {time} {day} {month} {year} {datetime} {iso}
    {DD} {MM} {YYYY} {HH} {mm}
    """
    if not template:
        return template or ""

    local = when.astimezone(tz)
    day_names = DAY_NAMES.get(locale, DAY_NAMES["en"])
    month_names = MONTH_NAMES.get(locale, MONTH_NAMES["en"])

    dd = f"{local.day:02d}"
    mm = f"{local.month:02d}"
    yyyy = str(local.year)
    hh = f"{local.hour:02d}"
    mi = f"{local.minute:02d}"

    replacements = {
        "{date}": f"{dd}/{mm}/{yyyy}",
        "{time}": f"{hh}:{mi}",
        "{day}": day_names[sunday_based_weekday(local.date())],
        "{month}": month_names[local.month - 1],
        "{year}": yyyy,
        "{datetime}": f"{dd}/{mm}/{yyyy} {hh}:{mi}",
        "{iso}": local.date().isoformat(),
        "{DD}": dd,
        "{MM}": mm,
        "{YYYY}": yyyy,
        "{HH}": hh,
        "{mm}": mi,
    }

    result = template
    for placeholder, value in replacements.items():
        result = result.replace(placeholder, value)
    return result
