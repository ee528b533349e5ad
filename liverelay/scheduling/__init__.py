"""
LiveRelay Scheduling Module

- ScheduleTrigger: starts scheduled streams when they are due
- DurationEnforcer: stops live streams after their configured run time
- recurrence: once/daily/weekly schedule math in the reference timezone
- views: schedule listings for the API
"""

from liverelay.scheduling.duration import DurationEnforcer, DurationTimer
from liverelay.scheduling.recurrence import (
    is_valid_time,
    next_daily_run,
    next_occurrence,
    next_run,
    next_weekly_run,
    parse_recurring_time,
    parse_schedule_days,
    replace_title_placeholders,
    validate_schedule,
)
from liverelay.scheduling.trigger import DueStream, ScheduleTrigger, TickReport, TriggerBranch
from liverelay.scheduling.views import ScheduleEntry, group_by_schedule_type, todays_schedule, upcoming

__all__ = [
    "DueStream",
    "DurationEnforcer",
    "DurationTimer",
    "ScheduleEntry",
    "ScheduleTrigger",
    "TickReport",
    "TriggerBranch",
    "group_by_schedule_type",
    "is_valid_time",
    "next_daily_run",
    "next_occurrence",
    "next_run",
    "next_weekly_run",
    "parse_recurring_time",
    "parse_schedule_days",
    "replace_title_placeholders",
    "todays_schedule",
    "upcoming",
    "validate_schedule",
]
