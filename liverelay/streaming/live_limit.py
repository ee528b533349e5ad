"""
Per-user concurrent live stream limit.

The active count comes from the process supervisor's confirmed-running
set, never from `status=live` rows, so a crash that left a stale row
behind cannot lock a user out. Nothing is cached: every decision reads
the limit and the count fresh.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from liverelay.database.store import StreamRecordStore
from liverelay.errors import ResourceLimitError

logger = logging.getLogger(__name__)


@dataclass
class LiveLimitInfo:
    """Result of a live limit check."""

    user_id: str
    can_start: bool
    active_streams: int
    effective_limit: Optional[int]  # None = unlimited
    is_admin: bool = False
    is_custom_limit: bool = False
    custom_limit: Optional[int] = None
    default_limit: Optional[int] = None
    message: Optional[str] = None

    @property
    def display_limit(self) -> str:
        return "Unlimited" if self.effective_limit is None else str(self.effective_limit)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "can_start": self.can_start,
            "active_streams": self.active_streams,
            "effective_limit": self.effective_limit,
            "display_limit": self.display_limit,
            "is_admin": self.is_admin,
            "is_custom_limit": self.is_custom_limit,
            "custom_limit": self.custom_limit,
            "default_limit": self.default_limit,
            "message": self.message,
        }


def can_start(active_streams: int, effective_limit: Optional[int]) -> bool:
    """False iff a limit is set and already reached."""
    return effective_limit is None or active_streams < effective_limit


def _positive(value: Optional[int]) -> Optional[int]:
    return value if value is not None and value > 0 else None


class LiveLimitGuard:
    """
    Decides whether a user may start one more concurrent stream.

    Args:
        store: Reads the user's override and the stored system default
        active_counter: Number of confirmed-running streams of a user
        fallback_default: System default when no setting is stored
    """

    def __init__(
        self,
        store: StreamRecordStore,
        active_counter: Callable[[str], int],
        fallback_default: Optional[int] = None,
    ):
        self._store = store
        self._active_counter = active_counter
        self._fallback_default = _positive(fallback_default)

    async def get_default_limit(self) -> Optional[int]:
        stored = _positive(await self._store.get_default_live_limit())
        return stored if stored is not None else self._fallback_default

    async def validate_and_get_info(self, user_id: str) -> LiveLimitInfo:
        """Effective limit and current active count for a user."""
        user = await self._store.get_user(user_id)
        default_limit = await self.get_default_limit()
        active = self._active_counter(user_id)

        if user is not None and user.is_admin:
            return LiveLimitInfo(
                user_id=user_id,
                can_start=True,
                active_streams=active,
                effective_limit=None,
                is_admin=True,
                default_limit=default_limit,
            )

        custom_limit = _positive(user.live_limit) if user is not None else None
        effective_limit = custom_limit if custom_limit is not None else default_limit
        allowed = can_start(active, effective_limit)

        message = None
        if not allowed:
            message = (
                f"Live limit reached: {active} of {effective_limit} concurrent "
                f"stream{'s' if effective_limit != 1 else ''} already running"
            )

        return LiveLimitInfo(
            user_id=user_id,
            can_start=allowed,
            active_streams=active,
            effective_limit=effective_limit,
            is_custom_limit=custom_limit is not None,
            custom_limit=custom_limit,
            default_limit=default_limit,
            message=message,
        )

    async def ensure_can_start(self, user_id: str) -> LiveLimitInfo:
        """
        Raise ResourceLimitError when the user is at their limit.

        Raises:
            ResourceLimitError: carrying the active count and effective limit
        """
        info = await self.validate_and_get_info(user_id)
        if not info.can_start:
            raise ResourceLimitError(info.active_streams, info.effective_limit, info.message)
        return info
