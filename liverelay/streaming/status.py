"""
Where a stream goes when a live run ends.

Every transition path (manual stop, duration stop, unexpected exit,
reconciliation) asks these functions instead of re-deriving the rule.
"""

from liverelay.database.models import ScheduleType, Stream, StreamStatus


def status_after_end(stream: Stream) -> StreamStatus:
    """
    Status after a live run ends for any reason.

    Recurring streams with recurrence enabled wait for their next
    occurrence; everything else goes offline.
    """
    if stream.is_recurring and stream.recurring_enabled:
        return StreamStatus.SCHEDULED
    return StreamStatus.OFFLINE


def clears_schedule_time(stream: Stream) -> bool:
    """A once-type schedule is consumed when its run ends or is cancelled."""
    return stream.schedule_type == ScheduleType.ONCE.value


def has_active_schedule(stream: Stream) -> bool:
    """Whether the stream may sit in `scheduled`."""
    if stream.is_recurring:
        return bool(stream.recurring_enabled)
    return stream.schedule_time is not None
