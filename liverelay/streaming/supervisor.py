"""
FFmpeg process supervisor.

Spawns, monitors and terminates the encoder process of each stream and is
the only component that knows whether a stream is *actually* running.

Ordering rules:
- start/stop/exit handling of one stream are serialized by a per-stream lock
- the live limit check and the registration of the new process happen under
  a per-user lock, so two near-simultaneous starts cannot both pass the gate
- every status transition goes through StreamRecordStore.update_status with
  the target status from `status_after_end`
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from liverelay.config import FFmpegConfig
from liverelay.database.models import Stream, StreamStatus, utcnow
from liverelay.database.store import StreamRecordStore
from liverelay.errors import ProcessError, ResourceLimitError, ValidationError
from liverelay.streaming.command_builder import FFmpegCommandBuilder
from liverelay.streaming.live_limit import LiveLimitGuard, LiveLimitInfo
from liverelay.streaming.status import clears_schedule_time, status_after_end

logger = logging.getLogger(__name__)

SpawnFunc = Callable[..., Awaitable[asyncio.subprocess.Process]]


class StartOutcome(str, Enum):
    """Why a start request ended the way it did."""

    STARTED = "started"
    ALREADY_LIVE = "already_live"
    LIMIT_REACHED = "limit_reached"
    VALIDATION_ERROR = "validation_error"
    PROCESS_ERROR = "process_error"
    NOT_FOUND = "not_found"


@dataclass
class StartResult:
    stream_id: str
    outcome: StartOutcome
    error: Optional[str] = None
    pid: Optional[int] = None
    live_limit: Optional[LiveLimitInfo] = None

    @property
    def success(self) -> bool:
        return self.outcome is StartOutcome.STARTED

    @property
    def already_live(self) -> bool:
        return self.outcome is StartOutcome.ALREADY_LIVE

    @property
    def limit_reached(self) -> bool:
        return self.outcome is StartOutcome.LIMIT_REACHED

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "stream_id": self.stream_id,
            "success": self.success,
            "outcome": self.outcome.value,
            "error": self.error,
            "pid": self.pid,
        }
        if self.live_limit is not None:
            data["active_streams"] = self.live_limit.active_streams
            data["effective_limit"] = self.live_limit.effective_limit
        return data


@dataclass
class StopResult:
    stream_id: str
    success: bool
    had_process: bool = False
    status: Optional[StreamStatus] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "stream_id": self.stream_id,
            "success": self.success,
            "had_process": self.had_process,
            "status": self.status.value if self.status else None,
            "error": self.error,
        }


@dataclass
class StreamStarted:
    """Passed to on_stream_started listeners."""

    stream: Stream
    generation: int
    trigger: str


@dataclass
class StreamStopped:
    """Passed to on_stream_stopped listeners."""

    stream: Stream
    reason: str
    was_live: bool
    exit_code: Optional[int] = None


Listener = Callable[[Any], Union[Awaitable[None], None]]


@dataclass
class StreamProcess:
    """A running encoder process owned by the supervisor."""

    stream_id: str
    user_id: str
    process: asyncio.subprocess.Process
    command: list[str]
    generation: int
    spawned_at: datetime
    started_at: Optional[datetime] = None  # set once startup is confirmed
    stopping: bool = False
    stop_reason: Optional[str] = None
    reader_task: Optional[asyncio.Task] = None
    watcher_task: Optional[asyncio.Task] = None

    @property
    def pid(self) -> Optional[int]:
        return getattr(self.process, "pid", None)

    @property
    def is_running(self) -> bool:
        return self.process.returncode is None

    def to_dict(self, now: datetime) -> dict[str, Any]:
        return {
            "stream_id": self.stream_id,
            "user_id": self.user_id,
            "pid": self.pid,
            "generation": self.generation,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "uptime_seconds": (now - self.started_at).total_seconds() if self.started_at else 0,
            "stopping": self.stopping,
        }


class ProcessSupervisor:
    """
    Owns every encoder process.

    Usage:
        supervisor = ProcessSupervisor(store, builder, config.ffmpeg)
        supervisor.on_stream_started(duration.handle_started)
        result = await supervisor.start(stream_id)
        ...
        await supervisor.stop(stream_id)
    """

    def __init__(
        self,
        store: StreamRecordStore,
        command_builder: FFmpegCommandBuilder,
        ffmpeg_config: FFmpegConfig,
        default_live_limit: Optional[int] = None,
        spawn: Optional[SpawnFunc] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._builder = command_builder
        self._config = ffmpeg_config
        self._spawn = spawn or asyncio.create_subprocess_exec
        self._clock = clock

        self.live_limit = LiveLimitGuard(store, self.count_active, default_live_limit)

        self._processes: dict[str, StreamProcess] = {}
        self._logs: dict[str, deque[str]] = {}
        self._stream_locks: dict[str, asyncio.Lock] = {}
        self._user_locks: dict[str, asyncio.Lock] = {}
        self._generation = 0

        self._started_listeners: list[Listener] = []
        self._stopped_listeners: list[Listener] = []

        # Metrics
        self._starts = 0
        self._failed_starts = 0
        self._crashes = 0
        self._kills = 0

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def on_stream_started(self, callback: Listener) -> None:
        """Register a callback receiving StreamStarted after a confirmed start."""
        self._started_listeners.append(callback)

    def on_stream_stopped(self, callback: Listener) -> None:
        """Register a callback receiving StreamStopped after any stop or exit."""
        self._stopped_listeners.append(callback)

    async def _notify(self, listeners: list[Listener], event: Any) -> None:
        for callback in listeners:
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback(event)
                else:
                    result = callback(event)
                    if asyncio.iscoroutine(result):
                        await result
            except Exception as e:
                logger.error(f"Stream listener {getattr(callback, '__qualname__', callback)} failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_active(self, stream_id: str) -> bool:
        return stream_id in self._processes

    def active_stream_ids(self, user_id: Optional[str] = None) -> list[str]:
        return [
            stream_id
            for stream_id, handle in self._processes.items()
            if user_id is None or handle.user_id == user_id
        ]

    def count_active(self, user_id: str) -> int:
        """Confirmed or starting processes of a user."""
        return sum(1 for handle in self._processes.values() if handle.user_id == user_id)

    def get_process(self, stream_id: str) -> Optional[StreamProcess]:
        return self._processes.get(stream_id)

    def get_logs(self, stream_id: str) -> list[str]:
        return list(self._logs.get(stream_id, ()))

    def clear_logs(self, stream_id: str) -> None:
        self._logs.pop(stream_id, None)

    def get_stats(self) -> dict[str, Any]:
        now = self._clock()
        return {
            "active": len(self._processes),
            "starts": self._starts,
            "failed_starts": self._failed_starts,
            "crashes": self._crashes,
            "kills": self._kills,
            "processes": [handle.to_dict(now) for handle in self._processes.values()],
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_for(self, stream_id: str) -> asyncio.Lock:
        return self._stream_locks.setdefault(stream_id, asyncio.Lock())

    def _user_lock_for(self, user_id: str) -> asyncio.Lock:
        return self._user_locks.setdefault(user_id, asyncio.Lock())

    def _log(self, stream_id: str, line: str) -> None:
        buffer = self._logs.get(stream_id)
        if buffer is None:
            buffer = deque(maxlen=self._config.log_buffer_lines)
            self._logs[stream_id] = buffer
        buffer.append(f"[{self._clock().strftime('%Y-%m-%d %H:%M:%S')}] {line}")

    async def _read_output(self, handle: StreamProcess) -> None:
        """Copy encoder stderr into the stream's log buffer."""
        stderr = getattr(handle.process, "stderr", None)
        if stderr is None:
            return
        try:
            while True:
                raw = await stderr.readline()
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").rstrip()
                if line:
                    self._log(handle.stream_id, line)
        except asyncio.CancelledError:
            raise
        except (ValueError, OSError) as e:
            logger.debug(f"Output reader for {handle.stream_id} ended: {e}")

    async def _confirm_startup(self, handle: StreamProcess) -> bool:
        """True unless the process exits within the confirmation window."""
        timeout = self._config.startup_confirm_seconds
        if timeout <= 0:
            return handle.is_running
        try:
            await asyncio.wait_for(handle.process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return True
        return False

    async def _terminate(self, handle: StreamProcess) -> None:
        """SIGTERM, bounded grace period, then SIGKILL."""
        process = handle.process
        if process.returncode is None:
            try:
                process.terminate()
                try:
                    await asyncio.wait_for(process.wait(), timeout=self._config.stop_timeout)
                except asyncio.TimeoutError:
                    logger.warning(
                        f"Encoder for stream {handle.stream_id} ignored SIGTERM "
                        f"for {self._config.stop_timeout}s, killing"
                    )
                    process.kill()
                    self._kills += 1
                    await process.wait()
            except ProcessLookupError:
                pass

        if handle.reader_task and not handle.reader_task.done():
            handle.reader_task.cancel()

    async def _record_end(self, stream: Stream, handle: StreamProcess, ended_at: datetime, reason: str) -> None:
        if handle.started_at is None:
            return
        try:
            await self._store.record_history(stream, handle.started_at, ended_at, reason)
        except Exception as e:
            logger.error(f"Could not save history for stream {stream.id}: {e}")

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def start(self, stream_id: str, *, trigger: str = "manual") -> StartResult:
        """
        Start the encoder for a stream.

        Idempotent: an already running stream returns ALREADY_LIVE and no
        second process is spawned. The status is only flipped to live once
        the process has survived the startup confirmation window.
        """
        async with self._lock_for(stream_id):
            if self.is_active(stream_id):
                return StartResult(stream_id, StartOutcome.ALREADY_LIVE, error="Stream is already live")

            stream = await self._store.get(stream_id)
            if stream is None:
                return StartResult(stream_id, StartOutcome.NOT_FOUND, error="Stream not found")

            async with self._user_lock_for(stream.user_id):
                try:
                    info = await self.live_limit.ensure_can_start(stream.user_id)
                except ResourceLimitError as e:
                    logger.warning(f"Stream {stream_id} not started ({trigger}): {e.message}")
                    self._log(stream_id, f"Start refused: {e.message}")
                    refused = LiveLimitInfo(
                        user_id=stream.user_id,
                        can_start=False,
                        active_streams=e.active_streams,
                        effective_limit=e.effective_limit,
                        message=e.message,
                    )
                    return StartResult(stream_id, StartOutcome.LIMIT_REACHED, error=e.message, live_limit=refused)

                try:
                    command = await self._builder.build(stream)
                except ValidationError as e:
                    logger.warning(f"Stream {stream_id} not started ({trigger}): {e.message}")
                    self._log(stream_id, f"Start refused: {e.message}")
                    return StartResult(stream_id, StartOutcome.VALIDATION_ERROR, error=e.message, live_limit=info)

                try:
                    process = await self._spawn(
                        *command,
                        stdin=asyncio.subprocess.DEVNULL,
                        stdout=asyncio.subprocess.DEVNULL,
                        stderr=asyncio.subprocess.PIPE,
                    )
                except (OSError, ValueError) as e:
                    error = ProcessError(f"Failed to spawn encoder: {e}")
                    logger.error(f"Stream {stream_id}: {error.message}")
                    self._log(stream_id, error.message)
                    self._failed_starts += 1
                    self._builder.cleanup(stream_id)
                    return StartResult(stream_id, StartOutcome.PROCESS_ERROR, error=error.message, live_limit=info)

                self._generation += 1
                handle = StreamProcess(
                    stream_id=stream_id,
                    user_id=stream.user_id,
                    process=process,
                    command=command,
                    generation=self._generation,
                    spawned_at=self._clock(),
                )
                self._processes[stream_id] = handle

            handle.reader_task = asyncio.create_task(self._read_output(handle))
            self._log(stream_id, f"Starting encoder ({trigger}), pid {handle.pid}")
            logger.info(f"Spawned encoder for stream {stream_id} (pid {handle.pid}, trigger {trigger})")

            if not await self._confirm_startup(handle):
                self._processes.pop(stream_id, None)
                if handle.reader_task:
                    await asyncio.gather(handle.reader_task, return_exceptions=True)
                error = ProcessError(
                    f"Encoder exited during startup with code {handle.process.returncode}",
                    exit_code=handle.process.returncode,
                    output=self.get_logs(stream_id)[-5:],
                )
                logger.error(f"Stream {stream_id}: {error.message}")
                self._log(stream_id, error.message)
                self._failed_starts += 1
                self._builder.cleanup(stream_id)
                detail = f"{error.message}: {' | '.join(error.output)}" if error.output else error.message
                return StartResult(stream_id, StartOutcome.PROCESS_ERROR, error=detail, live_limit=info)

            now = self._clock()
            handle.started_at = now
            updated = await self._store.update_status(stream_id, StreamStatus.LIVE, now=now)
            handle.watcher_task = asyncio.create_task(self._watch(handle))
            self._starts += 1
            self._log(stream_id, "Stream is live")

        if updated is not None:
            await self._notify(self._started_listeners, StreamStarted(updated, handle.generation, trigger))
        return StartResult(stream_id, StartOutcome.STARTED, pid=handle.pid, live_limit=info)

    # ------------------------------------------------------------------
    # Exit handling
    # ------------------------------------------------------------------

    async def _watch(self, handle: StreamProcess) -> None:
        exit_code = await handle.process.wait()
        try:
            await self._handle_exit(handle, exit_code)
        except Exception as e:
            logger.error(f"Exit handling for stream {handle.stream_id} failed: {e}", exc_info=True)

    async def _handle_exit(self, handle: StreamProcess, exit_code: Optional[int]) -> None:
        """The encoder ended on its own (media finished, -t reached, crash)."""
        stream_id = handle.stream_id
        async with self._lock_for(stream_id):
            if handle.stopping or self._processes.get(stream_id) is not handle:
                return
            del self._processes[stream_id]
            if handle.reader_task:
                await asyncio.gather(handle.reader_task, return_exceptions=True)

            now = self._clock()
            if exit_code == 0:
                reason = "completed"
                self._log(stream_id, "Encoder finished")
                logger.info(f"Encoder for stream {stream_id} finished")
            else:
                reason = f"exited with code {exit_code}"
                self._crashes += 1
                self._log(stream_id, f"Encoder {reason}")
                logger.error(f"Encoder for stream {stream_id} {reason}")

            stream = await self._store.get(stream_id)
            updated = None
            if stream is not None:
                updated = await self._store.update_status(
                    stream_id,
                    status_after_end(stream),
                    clear_schedule_time=clears_schedule_time(stream),
                    now=now,
                )
                await self._record_end(stream, handle, now, reason)
            self._builder.cleanup(stream_id)

        if updated is not None:
            await self._notify(
                self._stopped_listeners,
                StreamStopped(updated, reason=reason, was_live=True, exit_code=exit_code),
            )

    # ------------------------------------------------------------------
    # Stop
    # ------------------------------------------------------------------

    async def stop(
        self,
        stream_id: str,
        *,
        reason: str = "manual",
        generation: Optional[int] = None,
    ) -> StopResult:
        """
        Stop a stream and set its resulting status.

        The status is written whether or not a process was running, so a
        row left `live` by a crash is always repaired. When `generation` is
        given the stop only applies to that particular start; a stop aimed
        at an older run is ignored.
        """
        async with self._lock_for(stream_id):
            handle = self._processes.get(stream_id)
            if generation is not None and (handle is None or handle.generation != generation):
                logger.info(f"Ignoring stale {reason} stop for stream {stream_id} (generation {generation})")
                return StopResult(stream_id, success=False, error="Stale stop request ignored")

            stream = await self._store.get(stream_id)
            if stream is None and handle is None:
                return StopResult(stream_id, success=False, error="Stream not found")

            exit_code = None
            if handle is not None:
                handle.stopping = True
                handle.stop_reason = reason
                self._log(stream_id, f"Stopping encoder ({reason})")
                await self._terminate(handle)
                exit_code = handle.process.returncode
                self._processes.pop(stream_id, None)
                logger.info(f"Stopped encoder for stream {stream_id} ({reason})")

            was_live = handle is not None or (stream is not None and stream.status == StreamStatus.LIVE.value)
            now = self._clock()
            updated = None
            new_status = None
            if stream is not None:
                new_status = status_after_end(stream)
                updated = await self._store.update_status(
                    stream_id,
                    new_status,
                    clear_schedule_time=clears_schedule_time(stream),
                    now=now,
                )
                if handle is not None:
                    await self._record_end(stream, handle, now, reason)
            self._builder.cleanup(stream_id)

        if updated is not None:
            await self._notify(
                self._stopped_listeners,
                StreamStopped(updated, reason=reason, was_live=was_live, exit_code=exit_code),
            )
        return StopResult(stream_id, success=True, had_process=handle is not None, status=new_status)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def reconcile(self) -> list[str]:
        """
        Repair `live` rows with no process behind them.

        Happens after an unclean shutdown. Returns the repaired stream ids.
        """
        repaired = []
        for stream in await self._store.list_live():
            if self.is_active(stream.id):
                continue
            async with self._lock_for(stream.id):
                if self.is_active(stream.id):
                    continue
                fresh = await self._store.get(stream.id)
                if fresh is None or fresh.status != StreamStatus.LIVE.value:
                    continue
                updated = await self._store.update_status(
                    stream.id,
                    status_after_end(fresh),
                    clear_schedule_time=clears_schedule_time(fresh),
                )
            logger.warning(f"Stream {stream.id} was marked live without a running encoder; reset")
            repaired.append(stream.id)
            if updated is not None:
                await self._notify(
                    self._stopped_listeners,
                    StreamStopped(updated, reason="orphaned", was_live=True),
                )
        return repaired

    def forget(self, stream_id: str) -> None:
        """Drop log buffer and lock of a stream that no longer exists."""
        self._logs.pop(stream_id, None)
        lock = self._stream_locks.get(stream_id)
        if lock is not None and not lock.locked():
            del self._stream_locks[stream_id]

    async def shutdown(self) -> None:
        """Stop every running stream."""
        stream_ids = list(self._processes)
        if stream_ids:
            logger.info(f"Stopping {len(stream_ids)} running stream(s)")
        for stream_id in stream_ids:
            try:
                await self.stop(stream_id, reason="shutdown")
            except Exception as e:
                logger.error(f"Error stopping stream {stream_id} during shutdown: {e}")
