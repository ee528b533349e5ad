"""
Stream operations that span several components.

Schedule edits and deletion touch the record, the running encoder, the
duration timer and any pending replay unlist; this module keeps that
sequence in one place.
"""

import logging
from datetime import datetime
from typing import Optional, Sequence, Union

from liverelay.database.models import Stream, StreamStatus
from liverelay.database.store import StreamRecordStore
from liverelay.errors import ValidationError
from liverelay.scheduling.duration import DurationEnforcer
from liverelay.scheduling.recurrence import validate_schedule
from liverelay.streaming.supervisor import ProcessSupervisor
from liverelay.youtube.unlist import UnlistRetryService

logger = logging.getLogger(__name__)


class StreamController:
    def __init__(
        self,
        store: StreamRecordStore,
        supervisor: ProcessSupervisor,
        duration: DurationEnforcer,
        unlist: Optional[UnlistRetryService] = None,
    ):
        self._store = store
        self._supervisor = supervisor
        self._duration = duration
        self._unlist = unlist

    async def update_schedule(
        self,
        stream_id: str,
        schedule_type: str,
        schedule_time: Optional[datetime] = None,
        recurring_time: Optional[str] = None,
        schedule_days: Optional[Sequence[Union[int, str]]] = None,
        recurring_enabled: bool = True,
        duration_minutes: Optional[int] = None,
    ) -> Stream:
        """
        Validate and store a new schedule.

        A live stream keeps running; its duration timer is re-armed against
        the new duration (or cancelled when the duration was removed).

        Raises:
            ValidationError: malformed schedule or unknown stream
        """
        days = validate_schedule(
            schedule_type,
            schedule_time=schedule_time,
            recurring_time=recurring_time,
            schedule_days=schedule_days,
            recurring_enabled=recurring_enabled,
            duration_minutes=duration_minutes,
        )
        stream = await self._store.configure_schedule(
            stream_id,
            schedule_type=schedule_type,
            schedule_time=schedule_time,
            recurring_time=recurring_time,
            schedule_days=days,
            recurring_enabled=recurring_enabled,
            duration_minutes=duration_minutes,
        )
        if stream is None:
            raise ValidationError("Stream not found", field="stream_id")

        if stream.status == StreamStatus.LIVE.value:
            if duration_minutes:
                if self._duration.rearm(stream_id, duration_minutes) is None and stream.start_time:
                    process = self._supervisor.get_process(stream_id)
                    self._duration.arm(
                        stream_id,
                        stream.start_time,
                        duration_minutes,
                        process.generation if process else None,
                    )
            else:
                self._duration.cancel(stream_id)

        logger.info(f"Schedule of stream {stream_id} set to {schedule_type} (status {stream.status})")
        return stream

    async def delete_stream(self, stream_id: str) -> bool:
        """Stop, disarm and delete a stream. False when it did not exist."""
        stream = await self._store.get(stream_id)
        if stream is None:
            return False

        if self._supervisor.is_active(stream_id) or stream.status == StreamStatus.LIVE.value:
            await self._supervisor.stop(stream_id, reason="deleted")
        self._duration.cancel(stream_id)
        if self._unlist is not None and stream.youtube_broadcast_id:
            self._unlist.cancel_unlist(stream.youtube_broadcast_id)

        deleted = await self._store.delete(stream_id)
        self._supervisor.forget(stream_id)
        if deleted:
            logger.info(f"Stream {stream_id} deleted")
        return deleted
