"""
LiveRelay Database Module

Provides SQLAlchemy models, the async engine and the stream record store.
"""

from liverelay.database.connection import (
    close_db,
    create_engine_for_url,
    create_session_factory,
    get_db,
    get_session,
    get_session_factory,
    init_db,
)
from liverelay.database.models import (
    # Base
    Base,
    # Streams
    BroadcastLifecycle,
    MediaType,
    ScheduleType,
    Stream,
    StreamHistory,
    StreamStatus,
    # Users
    SystemSetting,
    User,
    UserRole,
    # Media
    Audio,
    Playlist,
    PlaylistItem,
    Video,
    # YouTube
    YouTubeCredential,
    # Rotation
    RotationIndex,
    RotationKind,
)
from liverelay.database.store import StreamRecordStore

__all__ = [
    # Connection
    "close_db",
    "create_engine_for_url",
    "create_session_factory",
    "get_db",
    "get_session",
    "get_session_factory",
    "init_db",
    # Store
    "StreamRecordStore",
    # Models
    "Base",
    "BroadcastLifecycle",
    "MediaType",
    "ScheduleType",
    "Stream",
    "StreamHistory",
    "StreamStatus",
    "SystemSetting",
    "User",
    "UserRole",
    "Audio",
    "Playlist",
    "PlaylistItem",
    "Video",
    "YouTubeCredential",
    "RotationIndex",
    "RotationKind",
]
