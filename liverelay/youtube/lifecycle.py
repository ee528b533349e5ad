"""
Broadcast lifecycle sync.

Mirrors local stream start/stop onto the linked YouTube broadcast. The
reactions run as background tasks so a slow API never holds up the
supervisor; their failures are logged and dropped.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from liverelay.database.models import BroadcastLifecycle, Stream, StreamStatus
from liverelay.database.store import StreamRecordStore
from liverelay.errors import APIErrorType, ExternalAPIError
from liverelay.youtube.client import YouTubeClient
from liverelay.youtube.credentials import CredentialProvider
from liverelay.youtube.unlist import UnlistRetryService

logger = logging.getLogger(__name__)

StopFunc = Callable[..., Awaitable[Any]]

ENDED_STATES = {BroadcastLifecycle.COMPLETE.value, BroadcastLifecycle.REVOKED.value}


class BroadcastLifecycleSync:
    """
    Listener pair for ProcessSupervisor plus a periodic remote status sync.

    Args:
        store: Stream records, for broadcast status writes
        client: YouTube client
        credentials: Access token source
        unlist: Service that unlists replays after the stream ends
        stop_stream: Coroutine function `(stream_id, *, reason)` used when
            the remote broadcast ended first
    """

    def __init__(
        self,
        store: StreamRecordStore,
        client: YouTubeClient,
        credentials: CredentialProvider,
        unlist: UnlistRetryService,
        stop_stream: Optional[StopFunc] = None,
    ):
        self._store = store
        self._client = client
        self._credentials = credentials
        self._unlist = unlist
        self._stop_stream = stop_stream
        self._tasks: set[asyncio.Task] = set()

    def _spawn(self, coro: Awaitable[None], name: str) -> asyncio.Task:
        task = asyncio.create_task(self._guarded(coro, name))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @staticmethod
    async def _guarded(coro: Awaitable[None], name: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except ExternalAPIError as e:
            logger.error(f"{name} failed: {e}")
        except Exception as e:
            logger.error(f"{name} failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Supervisor listeners
    # ------------------------------------------------------------------

    def handle_started(self, event: Any) -> None:
        stream: Stream = event.stream
        if not stream.youtube_broadcast_id:
            return
        # A broadcast that is live again must not be unlisted by an earlier job
        self._unlist.cancel_unlist(stream.youtube_broadcast_id)
        if stream.youtube_enable_auto_start:
            self._spawn(self._go_live(stream), f"Broadcast start for stream {stream.id}")

    def handle_stopped(self, event: Any) -> None:
        stream: Stream = event.stream
        if not event.was_live or not stream.youtube_broadcast_id:
            return
        self._unlist.cancel_unlist(stream.youtube_broadcast_id)
        if stream.youtube_enable_auto_stop or stream.youtube_unlist_replay_on_end:
            self._spawn(self._end(stream), f"Broadcast end for stream {stream.id}")

    async def _transition(self, stream: Stream, target: BroadcastLifecycle) -> None:
        token = await self._credentials.access_token(stream.user_id)
        try:
            status = await self._client.transition_broadcast(token, stream.youtube_broadcast_id, target.value)
        except ExternalAPIError as e:
            if e.error_type is not APIErrorType.REDUNDANT_TRANSITION:
                raise
            logger.info(f"Broadcast {stream.youtube_broadcast_id} already {target.value}")
            status = target.value
        await self._store.set_broadcast_status(stream.id, status or target.value)
        logger.info(f"Broadcast {stream.youtube_broadcast_id} of stream {stream.id} -> {target.value}")

    async def _go_live(self, stream: Stream) -> None:
        await self._transition(stream, BroadcastLifecycle.LIVE)

    async def _end(self, stream: Stream) -> None:
        try:
            if stream.youtube_enable_auto_stop:
                await self._transition(stream, BroadcastLifecycle.COMPLETE)
        finally:
            self._unlist.handle_stream_end(stream)

    # ------------------------------------------------------------------
    # Remote status
    # ------------------------------------------------------------------

    async def sync_status(self, stream_id: str) -> Optional[str]:
        """
        Read the remote lifecycle status of a stream's broadcast.

        A broadcast that ended remotely while the stream is still live here
        stops the local stream.
        """
        stream = await self._store.get(stream_id)
        if stream is None or not stream.youtube_broadcast_id:
            return None

        token = await self._credentials.access_token(stream.user_id)
        status = await self._client.get_broadcast_status(token, stream.youtube_broadcast_id)
        if status is None:
            logger.warning(f"Broadcast {stream.youtube_broadcast_id} of stream {stream_id} not found")
            return None

        if status != stream.youtube_lifecycle_status:
            await self._store.set_broadcast_status(stream_id, status)

        if status in ENDED_STATES and stream.status == StreamStatus.LIVE.value and self._stop_stream:
            logger.warning(f"Broadcast of stream {stream_id} is {status} on YouTube, stopping the stream")
            await self._stop_stream(stream_id, reason=f"broadcast {status}")
        return status

    async def sync_live_broadcasts(self) -> dict[str, Optional[str]]:
        """sync_status for every live stream with a broadcast."""
        results: dict[str, Optional[str]] = {}
        for stream in await self._store.list_live():
            if not stream.youtube_broadcast_id:
                continue
            try:
                results[stream.id] = await self.sync_status(stream.id)
            except ExternalAPIError as e:
                logger.warning(f"Broadcast sync for stream {stream.id} failed: {e}")
                results[stream.id] = None
        return results

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.drain()
