"""
LiveRelay Database Models

SQLAlchemy models for:
- Streams, their schedules and finished-session history
- Users and system settings (live limits)
- Video/Audio/Playlist media metadata
- YouTube credentials
- Rotation indexes for thumbnails and titles
"""

from liverelay.database.models.base import Base, TimestampMixin, UTCDateTime, utcnow
from liverelay.database.models.media import Audio, Playlist, PlaylistItem, Video
from liverelay.database.models.rotation import RotationIndex, RotationKind
from liverelay.database.models.stream import (
    BroadcastLifecycle,
    MediaType,
    ScheduleType,
    Stream,
    StreamHistory,
    StreamStatus,
)
from liverelay.database.models.user import DEFAULT_LIVE_LIMIT_KEY, SystemSetting, User, UserRole
from liverelay.database.models.youtube import YouTubeCredential

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "UTCDateTime",
    "utcnow",
    # Streams
    "Stream",
    "StreamHistory",
    "StreamStatus",
    "ScheduleType",
    "MediaType",
    "BroadcastLifecycle",
    # Users
    "User",
    "UserRole",
    "SystemSetting",
    "DEFAULT_LIVE_LIMIT_KEY",
    # Media
    "Video",
    "Audio",
    "Playlist",
    "PlaylistItem",
    # YouTube
    "YouTubeCredential",
    # Rotation
    "RotationIndex",
    "RotationKind",
]
