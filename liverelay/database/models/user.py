"""
User and system setting models.

Account management lives elsewhere; only the fields the live limit needs
are modelled here.
"""

import uuid
from enum import Enum

from sqlalchemy import BigInteger, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from liverelay.database.models.base import Base, TimestampMixin


class UserRole(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"


class User(Base, TimestampMixin):
    """A tenant owning streams and media."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    role: Mapped[str] = mapped_column(String(20), default=UserRole.MEMBER.value, nullable=False)

    # None or 0 means "use the system default"
    live_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    storage_limit: Mapped[int | None] = mapped_column(BigInteger, nullable=True)  # bytes

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


class SystemSetting(Base):
    """Key/value application settings editable at runtime."""

    __tablename__ = "system_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)


DEFAULT_LIVE_LIMIT_KEY = "default_live_limit"
