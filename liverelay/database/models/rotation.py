"""
Rotation index model.

One counter per (user, kind, folder), shared by every stream key of that
user, so broadcasts created one after another never repeat an item.
"""

from enum import Enum

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from liverelay.database.models.base import Base, TimestampMixin


class RotationKind(str, Enum):
    THUMBNAIL = "thumbnail"
    TITLE = "title"


class RotationIndex(Base, TimestampMixin):
    __tablename__ = "rotation_indexes"
    __table_args__ = (UniqueConstraint("user_id", "kind", "folder", name="uq_rotation_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), default=RotationKind.THUMBNAIL.value, nullable=False)
    folder: Mapped[str] = mapped_column(String(255), default="", nullable=False)  # "" = root folder
    current_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
