"""
Duration enforcement.

Arms one deferred stop per live stream at `start_time + duration`. A timer
carries a token and the supervisor generation of the run it belongs to:
a timer that was replaced, cancelled, or whose run already ended never
stops anything.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from liverelay.database.models import utcnow
from liverelay.database.store import StreamRecordStore

logger = logging.getLogger(__name__)

StopFunc = Callable[..., Awaitable[Any]]


@dataclass
class DurationTimer:
    stream_id: str
    token: int
    generation: Optional[int]
    started_at: datetime
    ends_at: datetime
    task: Optional[asyncio.Task] = None


class DurationEnforcer:
    """
    Stops streams once their configured run time has elapsed.

    Args:
        stop_stream: Coroutine function `(stream_id, *, reason, generation)`,
            normally ProcessSupervisor.stop
        store: Used by the periodic overdue check
        force_stop_buffer_seconds: Grace added before the overdue check acts
    """

    def __init__(
        self,
        stop_stream: StopFunc,
        store: StreamRecordStore,
        force_stop_buffer_seconds: float = 30,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._stop_stream = stop_stream
        self._store = store
        self._buffer = timedelta(seconds=force_stop_buffer_seconds)
        self._clock = clock
        self._timers: dict[str, DurationTimer] = {}
        self._tokens = itertools.count(1)

    def arm(
        self,
        stream_id: str,
        started_at: datetime,
        duration_minutes: Optional[int],
        generation: Optional[int] = None,
    ) -> Optional[DurationTimer]:
        """Schedule the stop; replaces any timer the stream already had."""
        self.cancel(stream_id)
        if not duration_minutes or duration_minutes <= 0:
            return None

        ends_at = started_at + timedelta(minutes=duration_minutes)
        delay = max(0.0, (ends_at - self._clock()).total_seconds())
        timer = DurationTimer(
            stream_id=stream_id,
            token=next(self._tokens),
            generation=generation,
            started_at=started_at,
            ends_at=ends_at,
        )
        timer.task = asyncio.create_task(self._fire_after(timer, delay))
        self._timers[stream_id] = timer
        logger.info(f"Stream {stream_id} will stop at {ends_at.isoformat()} ({duration_minutes} min)")
        return timer

    def cancel(self, stream_id: str) -> bool:
        """Cancel the pending stop of a stream. Returns True if one existed."""
        timer = self._timers.pop(stream_id, None)
        if timer is None:
            return False
        if timer.task is not None and not timer.task.done() and timer.task is not asyncio.current_task():
            timer.task.cancel()
        logger.debug(f"Duration timer for stream {stream_id} cancelled")
        return True

    def rearm(self, stream_id: str, duration_minutes: Optional[int]) -> Optional[DurationTimer]:
        """Re-arm after an edit, keeping the original start time and run."""
        timer = self._timers.get(stream_id)
        if timer is None:
            return None
        return self.arm(stream_id, timer.started_at, duration_minutes, timer.generation)

    async def _fire_after(self, timer: DurationTimer, delay: float) -> None:
        await asyncio.sleep(delay)
        current = self._timers.get(timer.stream_id)
        if current is None or current.token != timer.token:
            return
        # Unregister first so the stop notification cannot cancel this task
        del self._timers[timer.stream_id]
        logger.info(f"Duration elapsed for stream {timer.stream_id}, stopping")
        try:
            await self._stop_stream(timer.stream_id, reason="duration", generation=timer.generation)
        except Exception as e:
            logger.error(f"Duration stop of stream {timer.stream_id} failed: {e}", exc_info=True)

    # Listener hooks for ProcessSupervisor

    def handle_started(self, event: Any) -> None:
        stream = event.stream
        self.arm(stream.id, stream.start_time or self._clock(), stream.duration_minutes, event.generation)

    def handle_stopped(self, event: Any) -> None:
        self.cancel(event.stream.id)

    # Queries

    def is_armed(self, stream_id: str) -> bool:
        return stream_id in self._timers

    def expected_end(self, stream_id: str) -> Optional[datetime]:
        timer = self._timers.get(stream_id)
        return timer.ends_at if timer else None

    def remaining(self, stream_id: str) -> Optional[float]:
        """Seconds until the stop, None when no timer is armed."""
        timer = self._timers.get(stream_id)
        if timer is None:
            return None
        return max(0.0, (timer.ends_at - self._clock()).total_seconds())

    async def enforce_overdue(self) -> list[str]:
        """
        Stop live streams that outlived their duration.

        Backstop for timers lost to a restart; runs periodically.
        """
        now = self._clock()
        stopped = []
        for stream in await self._store.list_live():
            if not stream.duration_minutes or stream.start_time is None:
                continue
            deadline = stream.start_time + timedelta(minutes=stream.duration_minutes) + self._buffer
            if now < deadline:
                continue
            overdue = (now - deadline).total_seconds()
            logger.warning(f"Stream {stream.id} exceeded its duration by {overdue:.0f}s, force stopping")
            try:
                await self._stop_stream(stream.id, reason="duration")
                stopped.append(stream.id)
            except Exception as e:
                logger.error(f"Force stop of stream {stream.id} failed: {e}", exc_info=True)
        return stopped

    def shutdown(self) -> None:
        for stream_id in list(self._timers):
            self.cancel(stream_id)
