"""
Media metadata models.

Files live under the configured media root; only their metadata is stored.
"""

import uuid

from sqlalchemy import Boolean, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from liverelay.database.models.base import Base, TimestampMixin


def _new_id() -> str:
    return str(uuid.uuid4())


class Video(Base, TimestampMixin):
    __tablename__ = "videos"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    filepath: Mapped[str] = mapped_column(String(1000), nullable=False)
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)  # seconds
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)


class Audio(Base, TimestampMixin):
    __tablename__ = "audios"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    filepath: Mapped[str] = mapped_column(String(1000), nullable=False)
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)


class Playlist(Base, TimestampMixin):
    """Ordered set of videos streamed back to back."""

    __tablename__ = "playlists"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    shuffle: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    items: Mapped[list["PlaylistItem"]] = relationship(
        "PlaylistItem",
        order_by="PlaylistItem.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class PlaylistItem(Base):
    __tablename__ = "playlist_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    playlist_id: Mapped[str] = mapped_column(String(36), ForeignKey("playlists.id", ondelete="CASCADE"), nullable=False)
    video_id: Mapped[str] = mapped_column(String(36), ForeignKey("videos.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
