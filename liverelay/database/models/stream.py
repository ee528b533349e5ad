"""
Stream Database Models

A Stream relays one piece of stored media to one RTMP target, either on
demand or on a once/daily/weekly schedule.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from liverelay.database.models.base import Base, TimestampMixin, UTCDateTime


def _new_id() -> str:
    return str(uuid.uuid4())


class StreamStatus(str, Enum):
    """Persisted stream status."""
    OFFLINE = "offline"
    SCHEDULED = "scheduled"
    LIVE = "live"


class ScheduleType(str, Enum):
    """How a stream is scheduled."""
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"


class MediaType(str, Enum):
    """What the stream plays."""
    VIDEO = "video"
    PLAYLIST = "playlist"


class BroadcastLifecycle(str, Enum):
    """YouTube liveBroadcast lifeCycleStatus values we mirror."""
    CREATED = "created"
    READY = "ready"
    TESTING = "testing"
    LIVE = "live"
    COMPLETE = "complete"
    REVOKED = "revoked"


class Stream(Base, TimestampMixin):
    """
    Stream model.

    `status` is only written through StreamRecordStore.update_status.
    """

    __tablename__ = "streams"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)

    # Target
    platform: Mapped[str | None] = mapped_column(String(50), nullable=True)
    rtmp_url: Mapped[str] = mapped_column(String(500), nullable=False)
    stream_key: Mapped[str] = mapped_column(String(255), nullable=False)

    # Media
    media_type: Mapped[str] = mapped_column(String(20), default=MediaType.VIDEO.value, nullable=False)
    video_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("videos.id"), nullable=True)
    audio_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("audios.id"), nullable=True)
    playlist_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("playlists.id"), nullable=True)
    loop_video: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Encoding (only used when use_advanced_settings, otherwise -c copy)
    use_advanced_settings: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    bitrate: Mapped[int] = mapped_column(Integer, default=2500, nullable=False)  # kbps
    resolution: Mapped[str | None] = mapped_column(String(20), nullable=True)  # "1280x720"
    fps: Mapped[int] = mapped_column(Integer, default=30, nullable=False)

    # Schedule
    schedule_type: Mapped[str] = mapped_column(String(10), default=ScheduleType.ONCE.value, nullable=False)
    schedule_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    recurring_time: Mapped[str | None] = mapped_column(String(5), nullable=True)  # "HH:MM"
    schedule_days: Mapped[list[int] | None] = mapped_column(JSON, nullable=True)  # 0=Sunday..6=Saturday
    recurring_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    schedule_set_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_triggered_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Runtime state
    status: Mapped[str] = mapped_column(String(20), default=StreamStatus.OFFLINE.value, index=True, nullable=False)
    status_updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    start_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # YouTube broadcast mirror
    youtube_broadcast_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    youtube_lifecycle_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    youtube_enable_auto_start: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    youtube_enable_auto_stop: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    youtube_unlist_replay_on_end: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @property
    def is_recurring(self) -> bool:
        return self.schedule_type in (ScheduleType.DAILY.value, ScheduleType.WEEKLY.value)

    @property
    def target_url(self) -> str:
        """Full ingest URL: rtmp_url/stream_key."""
        return f"{self.rtmp_url.rstrip('/')}/{self.stream_key}"

    def __repr__(self) -> str:
        return f"<Stream {self.id} '{self.title}' {self.status}>"


class StreamHistory(Base):
    """One finished live session."""

    __tablename__ = "stream_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    stream_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    platform: Mapped[str | None] = mapped_column(String(50), nullable=True)
    schedule_type: Mapped[str | None] = mapped_column(String(10), nullable=True)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    end_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
