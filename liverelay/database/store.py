"""
Stream record store.

Thin async repository over the Stream table and the records the stream
coordinator reads (users, media, credentials, settings). The Stream row is
the single source of truth for `status`; every transition goes through
`update_status` so no two writers leave inconsistent final state.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator, Optional, Sequence

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from liverelay.database.models import (
    DEFAULT_LIVE_LIMIT_KEY,
    Audio,
    Playlist,
    Stream,
    StreamHistory,
    StreamStatus,
    SystemSetting,
    User,
    Video,
    YouTubeCredential,
    utcnow,
)

logger = logging.getLogger(__name__)

# Sessions shorter than this are start failures, not history
MIN_HISTORY_SECONDS = 1


class StreamRecordStore:
    """Persistence collaborator for streams and their related records."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session that commits on success and rolls back on error."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    # ------------------------------------------------------------------
    # Streams
    # ------------------------------------------------------------------

    async def add(self, stream: Stream) -> Stream:
        async with self.session() as session:
            session.add(stream)
        return stream

    async def get(self, stream_id: str) -> Optional[Stream]:
        async with self.session() as session:
            return await session.get(Stream, stream_id)

    async def list_streams(
        self,
        user_id: Optional[str] = None,
        status: Optional[StreamStatus] = None,
        schedule_type: Optional[str] = None,
    ) -> Sequence[Stream]:
        """Streams filtered by owner, status and schedule type."""
        stmt = select(Stream).order_by(Stream.created_at)
        if user_id is not None:
            stmt = stmt.where(Stream.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Stream.status == StreamStatus(status).value)
        if schedule_type is not None:
            stmt = stmt.where(Stream.schedule_type == schedule_type)
        async with self.session() as session:
            result = await session.execute(stmt)
            return result.scalars().all()

    async def list_scheduled(self) -> Sequence[Stream]:
        """Streams waiting for the trigger."""
        return await self.list_streams(status=StreamStatus.SCHEDULED)

    async def list_live(self) -> Sequence[Stream]:
        return await self.list_streams(status=StreamStatus.LIVE)

    async def update_status(
        self,
        stream_id: str,
        status: StreamStatus,
        *,
        clear_schedule_time: bool = False,
        now: Optional[datetime] = None,
    ) -> Optional[Stream]:
        """
        Write a status transition.

        live sets start_time; leaving live sets end_time; scheduled clears
        start_time so the next run starts from a clean slate.

        Returns:
            The updated stream, or None if it no longer exists
        """
        status = StreamStatus(status)
        now = now or utcnow()
        async with self.session() as session:
            stream = await session.get(Stream, stream_id)
            if stream is None:
                logger.warning(f"Status update for unknown stream {stream_id} ignored")
                return None

            previous = stream.status
            stream.status = status.value
            stream.status_updated_at = now

            if status is StreamStatus.LIVE:
                stream.start_time = now
                stream.end_time = None
            else:
                if previous == StreamStatus.LIVE.value:
                    stream.end_time = now
                if status is StreamStatus.SCHEDULED:
                    stream.start_time = None

            if clear_schedule_time:
                stream.schedule_time = None

        if previous != status.value:
            logger.info(f"Stream {stream_id} status: {previous} -> {status.value}")
        return stream

    async def mark_triggered(self, stream_id: str, instant: datetime) -> bool:
        """
        Persist that the scheduled `instant` of a stream has fired.

        Conditional update: it only succeeds while the stream is still
        scheduled and has not fired for this instant (or a later one).

        Returns:
            True if this call claimed the instant
        """
        stmt = (
            update(Stream)
            .where(Stream.id == stream_id)
            .where(Stream.status == StreamStatus.SCHEDULED.value)
            .where(or_(Stream.last_triggered_at.is_(None), Stream.last_triggered_at < instant))
            .values(last_triggered_at=instant)
            .execution_options(synchronize_session=False)
        )
        async with self.session() as session:
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def release_trigger(
        self, stream_id: str, instant: datetime, previous: Optional[datetime]
    ) -> bool:
        """
        Undo a `mark_triggered` claim whose start was refused.

        Only rolls back while `last_triggered_at` still equals `instant`, so
        a claim taken by a later instant is left alone.

        Returns:
            True if the claim was released
        """
        stmt = (
            update(Stream)
            .where(Stream.id == stream_id)
            .where(Stream.last_triggered_at == instant)
            .values(last_triggered_at=previous)
            .execution_options(synchronize_session=False)
        )
        async with self.session() as session:
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def configure_schedule(
        self,
        stream_id: str,
        *,
        now: Optional[datetime] = None,
        **fields: Any,
    ) -> Optional[Stream]:
        """
        Update schedule fields of a stream.

        Accepts schedule_type, schedule_time, recurring_time, schedule_days,
        recurring_enabled and duration_minutes. A stream that is not live
        becomes `scheduled` when the new schedule is active, else `offline`.
        """
        allowed = {
            "schedule_type",
            "schedule_time",
            "recurring_time",
            "schedule_days",
            "recurring_enabled",
            "duration_minutes",
        }
        unknown = set(fields) - allowed
        if unknown:
            raise TypeError(f"Unknown schedule fields: {sorted(unknown)}")

        # liverelay.streaming imports this module
        from liverelay.streaming.status import has_active_schedule

        now = now or utcnow()
        async with self.session() as session:
            stream = await session.get(Stream, stream_id)
            if stream is None:
                return None
            for key, value in fields.items():
                setattr(stream, key, value)
            stream.schedule_set_at = now

            if stream.status != StreamStatus.LIVE.value:
                new_status = StreamStatus.SCHEDULED if has_active_schedule(stream) else StreamStatus.OFFLINE
                if stream.status != new_status.value:
                    stream.status = new_status.value
                    stream.status_updated_at = now
        return stream

    async def set_broadcast_status(self, stream_id: str, lifecycle_status: Optional[str]) -> None:
        stmt = (
            update(Stream)
            .where(Stream.id == stream_id)
            .values(youtube_lifecycle_status=lifecycle_status)
            .execution_options(synchronize_session=False)
        )
        async with self.session() as session:
            await session.execute(stmt)

    async def delete(self, stream_id: str) -> bool:
        async with self.session() as session:
            result = await session.execute(delete(Stream).where(Stream.id == stream_id))
            return result.rowcount > 0

    async def record_history(
        self,
        stream: Stream,
        started_at: datetime,
        ended_at: datetime,
        end_reason: Optional[str] = None,
    ) -> Optional[StreamHistory]:
        """Append a finished session; sessions under a second are skipped."""
        duration = int((ended_at - started_at).total_seconds())
        if duration < MIN_HISTORY_SECONDS:
            return None
        entry = StreamHistory(
            stream_id=stream.id,
            user_id=stream.user_id,
            title=stream.title,
            platform=stream.platform,
            schedule_type=stream.schedule_type,
            start_time=started_at,
            end_time=ended_at,
            duration_seconds=duration,
            end_reason=end_reason,
        )
        async with self.session() as session:
            session.add(entry)
        return entry

    async def list_history(self, stream_id: str) -> Sequence[StreamHistory]:
        stmt = (
            select(StreamHistory)
            .where(StreamHistory.stream_id == stream_id)
            .order_by(StreamHistory.start_time)
        )
        async with self.session() as session:
            result = await session.execute(stmt)
            return result.scalars().all()

    # ------------------------------------------------------------------
    # Related records
    # ------------------------------------------------------------------

    async def get_user(self, user_id: str) -> Optional[User]:
        async with self.session() as session:
            return await session.get(User, user_id)

    async def get_default_live_limit(self) -> Optional[int]:
        """System default live limit from settings, None when unset or invalid."""
        async with self.session() as session:
            setting = await session.get(SystemSetting, DEFAULT_LIVE_LIMIT_KEY)
        if setting is None or setting.value in (None, ""):
            return None
        try:
            return int(setting.value)
        except ValueError:
            logger.warning(f"Ignoring non-numeric {DEFAULT_LIVE_LIMIT_KEY}: {setting.value!r}")
            return None

    async def set_setting(self, key: str, value: Optional[str]) -> None:
        async with self.session() as session:
            await session.merge(SystemSetting(key=key, value=value))

    async def get_video(self, video_id: str) -> Optional[Video]:
        async with self.session() as session:
            return await session.get(Video, video_id)

    async def get_audio(self, audio_id: str) -> Optional[Audio]:
        async with self.session() as session:
            return await session.get(Audio, audio_id)

    async def get_playlist_videos(self, playlist_id: str) -> Optional[tuple[Playlist, list[Video]]]:
        """Playlist with its videos in position order, None if missing."""
        async with self.session() as session:
            playlist = await session.get(Playlist, playlist_id)
            if playlist is None:
                return None
            video_ids = [item.video_id for item in playlist.items]
            if not video_ids:
                return playlist, []
            result = await session.execute(select(Video).where(Video.id.in_(video_ids)))
            by_id = {video.id: video for video in result.scalars().all()}
        return playlist, [by_id[vid] for vid in video_ids if vid in by_id]

    async def get_primary_credential(self, user_id: str) -> Optional[YouTubeCredential]:
        """Primary YouTube credential of a user, else the oldest one."""
        stmt = (
            select(YouTubeCredential)
            .where(YouTubeCredential.user_id == user_id)
            .order_by(YouTubeCredential.is_primary.desc(), YouTubeCredential.created_at)
            .limit(1)
        )
        async with self.session() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def count_streams(self, user_id: str, status: Optional[StreamStatus] = None) -> int:
        stmt = select(func.count()).select_from(Stream).where(Stream.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Stream.status == StreamStatus(status).value)
        async with self.session() as session:
            return (await session.execute(stmt)).scalar_one()
