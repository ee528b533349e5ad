"""
Deferred replay unlisting.

After a broadcast ends its replay is usually not ready for a privacy change
right away. Each request becomes one background job that waits, tries, and
retries a fixed number of times on transient trouble. Jobs are keyed by
video id; a second request for a video that is already pending is ignored.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from liverelay.config import UnlistConfig
from liverelay.database.models import Stream, utcnow
from liverelay.errors import PermanentAPIError, TransientAPIError
from liverelay.youtube.client import UnlistOutcome, YouTubeClient
from liverelay.youtube.credentials import CredentialProvider

logger = logging.getLogger(__name__)


@dataclass
class PendingUnlist:
    video_id: str
    user_id: str
    registered_at: datetime
    next_attempt_at: datetime
    retry_count: int = 0
    last_error: Optional[str] = None
    task: Optional[asyncio.Task] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "video_id": self.video_id,
            "user_id": self.user_id,
            "retry_count": self.retry_count,
            "registered_at": self.registered_at.isoformat(),
            "next_attempt_at": self.next_attempt_at.isoformat(),
            "last_error": self.last_error,
        }


class UnlistRetryService:
    """
    Unlists ended broadcasts with bounded retries.

    Args:
        client: YouTube client performing the unlist
        credentials: Source of access tokens per user
        config: Delays, retry count and TTL
    """

    def __init__(
        self,
        client: YouTubeClient,
        credentials: CredentialProvider,
        config: Optional[UnlistConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._client = client
        self._credentials = credentials
        self._config = config or UnlistConfig()
        self._clock = clock
        self._pending: dict[str, PendingUnlist] = {}
        self._sweep_task: Optional[asyncio.Task] = None

        self._succeeded = 0
        self._given_up = 0

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_pending(self, video_id: str) -> bool:
        return video_id in self._pending

    def get_pending(self) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self._pending.values()]

    def schedule_unlist(self, video_id: str, user_id: str, initial_delay: Optional[float] = None) -> bool:
        """
        Register an unlist job.

        Returns:
            False if the video already has a pending job
        """
        if not video_id:
            return False
        if video_id in self._pending:
            logger.debug(f"Unlist of video {video_id} already pending")
            return False

        delay = self._config.initial_delay_seconds if initial_delay is None else initial_delay
        now = self._clock()
        entry = PendingUnlist(
            video_id=video_id,
            user_id=user_id,
            registered_at=now,
            next_attempt_at=now + timedelta(seconds=delay),
        )
        self._pending[video_id] = entry
        entry.task = asyncio.create_task(self._run(entry, delay))
        logger.info(f"Scheduled unlist of video {video_id} in {delay:.0f}s")
        return True

    def handle_stream_end(self, stream: Stream) -> bool:
        """Schedule the unlist of a stream's broadcast if the stream asks for it."""
        if not stream.youtube_unlist_replay_on_end or not stream.youtube_broadcast_id:
            return False
        return self.schedule_unlist(stream.youtube_broadcast_id, stream.user_id)

    def cancel_unlist(self, video_id: str) -> bool:
        entry = self._pending.pop(video_id, None)
        if entry is None:
            return False
        if entry.task is not None and not entry.task.done() and entry.task is not asyncio.current_task():
            entry.task.cancel()
        logger.info(f"Cancelled pending unlist of video {video_id}")
        return True

    def _finish(self, entry: PendingUnlist) -> None:
        if self._pending.get(entry.video_id) is entry:
            del self._pending[entry.video_id]

    async def _attempt(self, entry: PendingUnlist) -> UnlistOutcome:
        token = await self._credentials.access_token(entry.user_id)
        return await self._client.unlist_video(token, entry.video_id)

    async def _run(self, entry: PendingUnlist, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            while self._pending.get(entry.video_id) is entry:
                try:
                    outcome = await self._attempt(entry)
                except PermanentAPIError as e:
                    logger.error(f"Unlist of video {entry.video_id} failed permanently: {e}")
                    self._given_up += 1
                    return
                except TransientAPIError as e:
                    outcome = None
                    entry.last_error = str(e)
                    logger.warning(f"Unlist of video {entry.video_id} failed: {e}")

                if outcome is UnlistOutcome.UNLISTED or outcome is UnlistOutcome.ALREADY_UNLISTED:
                    self._succeeded += 1
                    logger.info(f"Video {entry.video_id} unlisted ({outcome.value})")
                    return

                if outcome is UnlistOutcome.PROCESSING:
                    entry.last_error = "video still processing"

                if entry.retry_count >= self._config.max_retries:
                    logger.error(
                        f"Giving up unlisting video {entry.video_id} after "
                        f"{entry.retry_count} retries: {entry.last_error}"
                    )
                    self._given_up += 1
                    return

                entry.retry_count += 1
                entry.next_attempt_at = self._clock() + timedelta(seconds=self._config.retry_delay_seconds)
                logger.info(
                    f"Retrying unlist of video {entry.video_id} in {self._config.retry_delay_seconds}s "
                    f"({entry.retry_count}/{self._config.max_retries})"
                )
                await asyncio.sleep(self._config.retry_delay_seconds)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error unlisting video {entry.video_id}: {e}", exc_info=True)
            self._given_up += 1
        finally:
            self._finish(entry)

    def sweep(self) -> list[str]:
        """Drop jobs older than the TTL, whatever state they are in."""
        cutoff = self._clock() - timedelta(seconds=self._config.ttl_seconds)
        expired = [video_id for video_id, entry in self._pending.items() if entry.registered_at < cutoff]
        for video_id in expired:
            logger.warning(f"Unlist of video {video_id} exceeded its time to live, dropping")
            self.cancel_unlist(video_id)
        return expired

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.sweep_interval_seconds)
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Unlist sweep failed: {e}", exc_info=True)

    def start(self) -> None:
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def drain(self) -> None:
        """Wait for every in-flight job to finish."""
        tasks = [entry.task for entry in self._pending.values() if entry.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            await asyncio.gather(self._sweep_task, return_exceptions=True)
            self._sweep_task = None
        tasks = [entry.task for entry in self._pending.values() if entry.task is not None]
        for video_id in list(self._pending):
            self.cancel_unlist(video_id)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def get_stats(self) -> dict[str, Any]:
        return {
            "pending": self.pending_count,
            "succeeded": self._succeeded,
            "given_up": self._given_up,
        }
