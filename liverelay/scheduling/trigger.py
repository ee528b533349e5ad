"""
Schedule trigger.

Polls scheduled streams and starts the ones that are due. A scheduled
instant fires at most once: before starting, the instant is claimed with a
conditional write of `last_triggered_at`, so overlapping or repeated ticks
(clock jitter, slow polls) cannot start it twice. A refused start
releases the claim, so the same instant is tried again on later ticks.

Branches:
- fire: now is within `fire_window_minutes` after the instant
- overdue: the window passed without a fire (server was down, a tick was
  late); still fires, but only on the same calendar day in the reference
  timezone
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

from liverelay.database.models import ScheduleType, Stream, StreamStatus, utcnow
from liverelay.database.store import StreamRecordStore
from liverelay.scheduling.recurrence import latest_occurrence_today

logger = logging.getLogger(__name__)

StartFunc = Callable[..., Awaitable[Any]]


class TriggerBranch(str, Enum):
    FIRE = "fire"
    OVERDUE = "overdue"


@dataclass
class DueStream:
    stream: Stream
    instant: datetime
    branch: TriggerBranch


@dataclass
class TickReport:
    """What one poll did."""

    checked: int = 0
    due: int = 0
    started: list[str] = field(default_factory=list)
    refused: list[str] = field(default_factory=list)
    expired: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked": self.checked,
            "due": self.due,
            "started": self.started,
            "refused": self.refused,
            "expired": self.expired,
            "errors": self.errors,
        }


class ScheduleTrigger:
    """
    Finds due streams and asks the supervisor to start them.

    Args:
        store: Source of scheduled streams and the trigger claim
        start_stream: Coroutine function `(stream_id, *, trigger)` returning
            a StartResult, normally ProcessSupervisor.start
        timezone: Reference timezone for recurring wall-clock times
        fire_window_minutes: Length of the fire branch after an instant
    """

    def __init__(
        self,
        store: StreamRecordStore,
        start_stream: StartFunc,
        timezone: str = "Asia/Jakarta",
        fire_window_minutes: int = 5,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._start_stream = start_stream
        self.tz = ZoneInfo(timezone)
        self._window = timedelta(minutes=fire_window_minutes)
        self._clock = clock
        self._ticks = 0
        self._last_tick_at: Optional[datetime] = None

    def _same_local_day(self, a: datetime, b: datetime) -> bool:
        return a.astimezone(self.tz).date() == b.astimezone(self.tz).date()

    def due_instant(self, stream: Stream, now: datetime) -> Optional[DueStream]:
        """The instant a scheduled stream should fire for now, if any."""
        if stream.status != StreamStatus.SCHEDULED.value:
            return None

        if stream.schedule_type == ScheduleType.ONCE.value:
            instant = stream.schedule_time
            if instant is None or instant > now or not self._same_local_day(instant, now):
                return None
        else:
            if not stream.recurring_enabled:
                return None
            instant = latest_occurrence_today(stream, now, self.tz)
            if instant is None:
                return None
            # A schedule configured after today's slot waits for the next one
            if stream.schedule_set_at is not None and instant < stream.schedule_set_at - self._window:
                return None

        if stream.last_triggered_at is not None and stream.last_triggered_at >= instant:
            return None

        branch = TriggerBranch.FIRE if now - instant <= self._window else TriggerBranch.OVERDUE
        return DueStream(stream, instant, branch)

    def is_expired(self, stream: Stream, now: datetime) -> bool:
        """A once-type instant from an earlier day that never fired."""
        return (
            stream.status == StreamStatus.SCHEDULED.value
            and stream.schedule_type == ScheduleType.ONCE.value
            and stream.schedule_time is not None
            and stream.schedule_time < now
            and not self._same_local_day(stream.schedule_time, now)
        )

    async def tick(self, now: Optional[datetime] = None) -> TickReport:
        """Run one poll. Never raises for a single stream's failure."""
        now = now or self._clock()
        self._ticks += 1
        self._last_tick_at = now
        report = TickReport()

        streams = await self._store.list_scheduled()
        report.checked = len(streams)

        due: list[DueStream] = []
        for stream in streams:
            try:
                if self.is_expired(stream, now):
                    await self._expire(stream)
                    report.expired.append(stream.id)
                    continue
                item = self.due_instant(stream, now)
                if item is not None:
                    due.append(item)
            except Exception as e:
                logger.error(f"Could not evaluate schedule of stream {stream.id}: {e}", exc_info=True)
                report.errors.append(stream.id)

        report.due = len(due)
        if not due:
            return report

        results = await asyncio.gather(*(self._fire(item) for item in due), return_exceptions=True)
        for item, result in zip(due, results):
            if isinstance(result, BaseException):
                logger.error(f"Scheduled start of stream {item.stream.id} failed: {result}", exc_info=result)
                report.errors.append(item.stream.id)
            elif result is None:
                continue
            elif getattr(result, "success", False):
                report.started.append(item.stream.id)
            else:
                report.refused.append(item.stream.id)
        return report

    async def _fire(self, item: DueStream) -> Optional[Any]:
        stream = item.stream
        if not await self._store.mark_triggered(stream.id, item.instant):
            logger.debug(f"Stream {stream.id} already triggered for {item.instant.isoformat()}")
            return None

        local = item.instant.astimezone(self.tz)
        if item.branch is TriggerBranch.OVERDUE:
            logger.warning(
                f"Stream '{stream.title}' ({stream.id}) missed its {local:%H:%M} slot, starting late"
            )
        else:
            logger.info(f"Triggering stream '{stream.title}' ({stream.id}) for {local:%Y-%m-%d %H:%M %Z}")

        try:
            result = await self._start_stream(stream.id, trigger=f"schedule:{item.branch.value}")
        except Exception:
            await self._store.release_trigger(stream.id, item.instant, stream.last_triggered_at)
            raise

        if result.success:
            logger.info(f"Scheduled stream {stream.id} is live")
        elif result.already_live:
            logger.info(f"Scheduled stream {stream.id} was already live")
        else:
            await self._store.release_trigger(stream.id, item.instant, stream.last_triggered_at)
            logger.warning(
                f"Scheduled stream {stream.id} not started ({result.outcome.value}): {result.error}; "
                f"will retry on the next tick"
            )
        return result

    async def _expire(self, stream: Stream) -> None:
        logger.warning(
            f"Once-type stream '{stream.title}' ({stream.id}) missed its day "
            f"({stream.schedule_time.isoformat()}), going offline"
        )
        await self._store.update_status(stream.id, StreamStatus.OFFLINE, clear_schedule_time=True)

    def get_status(self) -> dict[str, Any]:
        return {
            "timezone": str(self.tz),
            "fire_window_minutes": self._window.total_seconds() / 60,
            "ticks": self._ticks,
            "last_tick_at": self._last_tick_at.isoformat() if self._last_tick_at else None,
        }
