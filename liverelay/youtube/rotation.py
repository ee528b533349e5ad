"""
Sequential rotation of broadcast titles and thumbnails.

The index is global per (user, kind, folder): every stream key of a user
draws from the same counter, so consecutive broadcasts never reuse an item
until the folder wraps around. Only broadcast creation advances it; edits
and pinned selections read it without moving it.
"""

import asyncio
import logging
import mimetypes
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Sequence, TypeVar
from zoneinfo import ZoneInfo

from sqlalchemy import select

from liverelay.database.models import RotationIndex, RotationKind
from liverelay.database.store import StreamRecordStore
from liverelay.scheduling.recurrence import replace_title_placeholders
from liverelay.youtube.client import BroadcastDraft, YouTubeClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}


def select_sequential(items: Sequence[T], current_index: int) -> tuple[Optional[T], int]:
    """Item at `current_index` (wrapping) and the index to store next."""
    if not items:
        return None, current_index
    return items[current_index % len(items)], current_index + 1


def list_folder_items(directory: Path) -> list[Path]:
    """Image files of a folder, sorted by name. Missing folders are empty."""
    directory = Path(directory)
    if not directory.is_dir():
        return []
    return sorted(
        (path for path in directory.iterdir() if path.is_file() and path.suffix.lower() in IMAGE_EXTENSIONS),
        key=lambda path: path.name.lower(),
    )


@dataclass
class RotationPick:
    selected: Optional[object]
    index: int
    next_index: int
    pinned: bool = False


class RotationIndexStore:
    """Persisted rotation counters."""

    def __init__(self, store: StreamRecordStore):
        self._store = store
        self._locks: dict[tuple[str, str, str], asyncio.Lock] = {}

    @staticmethod
    def get_sequential(
        user_id: str,
        folder: Optional[str],
        current_index: int,
        items: Sequence[T],
    ) -> tuple[Optional[T], int]:
        selected, next_index = select_sequential(items, current_index)
        logger.debug(
            f"Rotation for user {user_id} folder '{folder or 'root'}': "
            f"index {current_index} of {len(items)} item(s)"
        )
        return selected, next_index

    def _lock_for(self, key: tuple[str, str, str]) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    async def get_index(self, user_id: str, folder: Optional[str], kind: RotationKind = RotationKind.THUMBNAIL) -> int:
        stmt = select(RotationIndex.current_index).where(
            RotationIndex.user_id == user_id,
            RotationIndex.kind == RotationKind(kind).value,
            RotationIndex.folder == (folder or ""),
        )
        async with self._store.session() as session:
            value = (await session.execute(stmt)).scalar_one_or_none()
        return value or 0

    async def set_index(self, user_id: str, folder: Optional[str], kind: RotationKind, value: int) -> None:
        stmt = select(RotationIndex).where(
            RotationIndex.user_id == user_id,
            RotationIndex.kind == RotationKind(kind).value,
            RotationIndex.folder == (folder or ""),
        )
        async with self._store.session() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                session.add(
                    RotationIndex(
                        user_id=user_id,
                        kind=RotationKind(kind).value,
                        folder=folder or "",
                        current_index=value,
                    )
                )
            else:
                row.current_index = value

    async def peek(
        self,
        user_id: str,
        folder: Optional[str],
        items: Sequence[T],
        kind: RotationKind = RotationKind.THUMBNAIL,
        pinned: Optional[T] = None,
    ) -> RotationPick:
        """The item creation would pick now, without advancing."""
        index = await self.get_index(user_id, folder, kind)
        if pinned is not None:
            return RotationPick(pinned, index, index, pinned=True)
        selected, next_index = self.get_sequential(user_id, folder, index, items)
        return RotationPick(selected, index, next_index)

    async def next_for_creation(
        self,
        user_id: str,
        folder: Optional[str],
        items: Sequence[T],
        kind: RotationKind = RotationKind.THUMBNAIL,
        pinned: Optional[T] = None,
    ) -> RotationPick:
        """Select for a new broadcast and advance the counter, atomically per key."""
        if pinned is not None:
            index = await self.get_index(user_id, folder, kind)
            logger.info(f"Using pinned {RotationKind(kind).value}, rotation index stays at {index}")
            return RotationPick(pinned, index, index, pinned=True)

        key = (user_id, RotationKind(kind).value, folder or "")
        async with self._lock_for(key):
            index = await self.get_index(user_id, folder, kind)
            selected, next_index = self.get_sequential(user_id, folder, index, items)
            if selected is not None:
                await self.set_index(user_id, folder, kind, next_index)
                logger.info(
                    f"{RotationKind(kind).value.capitalize()} rotation for folder '{folder or 'root'}': "
                    f"{index} -> {next_index}"
                )
        return RotationPick(selected, index, next_index if selected is not None else index)


@dataclass
class BroadcastTemplate:
    """What a new broadcast is made of."""

    user_id: str
    title: str = ""
    titles: list[str] = field(default_factory=list)  # rotated when non-empty
    title_folder: Optional[str] = None
    pinned_title: Optional[str] = None
    description: str = ""
    privacy_status: str = "unlisted"
    tags: list[str] = field(default_factory=list)
    thumbnail_folder: Optional[str] = None
    pinned_thumbnail: Optional[Path] = None
    enable_auto_start: bool = True
    enable_auto_stop: bool = True


@dataclass
class PlannedBroadcast:
    draft: BroadcastDraft
    thumbnail: Optional[Path] = None


class BroadcastPlanner:
    """
    Composes broadcast drafts from templates.

    `create` advances the rotation counters, `edit` only previews them.
    """

    def __init__(self, rotation: RotationIndexStore, thumbnail_root: Path, timezone: str = "Asia/Jakarta"):
        self._rotation = rotation
        self._thumbnail_root = Path(thumbnail_root)
        self.tz = ZoneInfo(timezone)

    def _thumbnail_items(self, template: BroadcastTemplate) -> list[Path]:
        folder = self._thumbnail_root / template.user_id
        if template.thumbnail_folder:
            folder = folder / template.thumbnail_folder
        return list_folder_items(folder)

    def _draft(self, template: BroadcastTemplate, title: Optional[str], start: datetime) -> BroadcastDraft:
        return BroadcastDraft(
            title=replace_title_placeholders(title or template.title or "Live", start, self.tz),
            scheduled_start=start,
            description=template.description,
            privacy_status=template.privacy_status,
            enable_auto_start=template.enable_auto_start,
            enable_auto_stop=template.enable_auto_stop,
            tags=list(template.tags),
        )

    async def create(self, template: BroadcastTemplate, start: datetime) -> PlannedBroadcast:
        title = await self._rotation.next_for_creation(
            template.user_id, template.title_folder, template.titles, RotationKind.TITLE, template.pinned_title
        )
        thumbnail = await self._rotation.next_for_creation(
            template.user_id,
            template.thumbnail_folder,
            self._thumbnail_items(template),
            RotationKind.THUMBNAIL,
            template.pinned_thumbnail,
        )
        return PlannedBroadcast(self._draft(template, title.selected, start), thumbnail.selected)

    async def edit(self, template: BroadcastTemplate, start: datetime) -> PlannedBroadcast:
        title = await self._rotation.peek(
            template.user_id, template.title_folder, template.titles, RotationKind.TITLE, template.pinned_title
        )
        thumbnail = await self._rotation.peek(
            template.user_id,
            template.thumbnail_folder,
            self._thumbnail_items(template),
            RotationKind.THUMBNAIL,
            template.pinned_thumbnail,
        )
        return PlannedBroadcast(self._draft(template, title.selected, start), thumbnail.selected)

    async def publish(self, client: YouTubeClient, access_token: str, planned: PlannedBroadcast) -> dict[str, Any]:
        """Create the broadcast on YouTube and upload its thumbnail."""
        broadcast = await client.create_broadcast(access_token, planned.draft)
        if planned.thumbnail is not None and broadcast.get("id"):
            mime = mimetypes.guess_type(planned.thumbnail.name)[0] or "image/jpeg"
            await client.set_thumbnail(access_token, broadcast["id"], planned.thumbnail.read_bytes(), mime)
        return broadcast
