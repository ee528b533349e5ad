"""
Component wiring.

Builds the supervisor, trigger, duration enforcer and YouTube services
around one StreamRecordStore, connects the supervisor's start/stop
notifications and registers the periodic jobs.
"""

import logging
from pathlib import Path
from typing import Any, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from liverelay.config import LiveRelayConfig
from liverelay.database.store import StreamRecordStore
from liverelay.scheduling.duration import DurationEnforcer
from liverelay.scheduling.trigger import ScheduleTrigger
from liverelay.streaming.command_builder import FFmpegCommandBuilder
from liverelay.streaming.controller import StreamController
from liverelay.streaming.supervisor import ProcessSupervisor, SpawnFunc
from liverelay.tasks.scheduler import TaskScheduler
from liverelay.youtube.client import YouTubeClient
from liverelay.youtube.credentials import CredentialProvider
from liverelay.youtube.lifecycle import BroadcastLifecycleSync
from liverelay.youtube.rotation import BroadcastPlanner, RotationIndexStore
from liverelay.youtube.unlist import UnlistRetryService

logger = logging.getLogger(__name__)


class RelayRuntime:
    """
    Every long-lived component of a running LiveRelay instance.

    Args:
        config: Loaded configuration
        session_factory: Database session factory from init_db
        spawn: Process spawner override (tests)
        http_client: httpx client override for the YouTube API (tests)
    """

    def __init__(
        self,
        config: LiveRelayConfig,
        session_factory: async_sessionmaker[AsyncSession],
        spawn: Optional[SpawnFunc] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.store = StreamRecordStore(session_factory)

        self.command_builder = FFmpegCommandBuilder(self.store, config.ffmpeg)
        self.supervisor = ProcessSupervisor(
            self.store,
            self.command_builder,
            config.ffmpeg,
            default_live_limit=config.live_limit.default_limit,
            spawn=spawn,
        )
        self.duration = DurationEnforcer(
            self.supervisor.stop,
            self.store,
            force_stop_buffer_seconds=config.scheduling.force_stop_buffer_seconds,
        )
        self.trigger = ScheduleTrigger(
            self.store,
            self.supervisor.start,
            timezone=config.scheduling.timezone,
            fire_window_minutes=config.scheduling.fire_window_minutes,
        )

        self.youtube = YouTubeClient(config.youtube, http_client=http_client)
        self.credentials = CredentialProvider(self.store, self.youtube)
        self.unlist = UnlistRetryService(self.youtube, self.credentials, config.unlist)
        self.lifecycle = BroadcastLifecycleSync(
            self.store,
            self.youtube,
            self.credentials,
            self.unlist,
            stop_stream=self.supervisor.stop,
        )
        self.rotation = RotationIndexStore(self.store)
        self.planner = BroadcastPlanner(
            self.rotation,
            Path(config.ffmpeg.media_root) / "thumbnails",
            timezone=config.scheduling.timezone,
        )
        self.controller = StreamController(self.store, self.supervisor, self.duration, self.unlist)

        # Duration first so a stop never races a freshly armed timer
        self.supervisor.on_stream_started(self.duration.handle_started)
        self.supervisor.on_stream_started(self.lifecycle.handle_started)
        self.supervisor.on_stream_stopped(self.duration.handle_stopped)
        self.supervisor.on_stream_stopped(self.lifecycle.handle_stopped)

        self.scheduler = TaskScheduler()
        self._register_jobs()

    def _register_jobs(self) -> None:
        scheduling = self.config.scheduling
        if scheduling.enabled:
            self.scheduler.add_task(
                "schedule_trigger", self.trigger.tick, scheduling.poll_interval_seconds, run_immediately=True
            )
        self.scheduler.add_task("duration_backstop", self.duration.enforce_overdue, scheduling.duration_check_seconds)
        self.scheduler.add_task(
            "reconcile_live", self.supervisor.reconcile, scheduling.reconcile_interval_seconds, run_immediately=True
        )
        self.scheduler.add_task(
            "broadcast_sync", self.lifecycle.sync_live_broadcasts, scheduling.broadcast_sync_interval_seconds
        )

    async def start(self) -> None:
        self.unlist.start()
        await self.scheduler.start()
        logger.info(f"LiveRelay runtime started (timezone {self.config.scheduling.timezone})")

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.supervisor.shutdown()
        self.duration.shutdown()
        await self.lifecycle.shutdown()
        await self.unlist.shutdown()
        await self.youtube.close()
        logger.info("LiveRelay runtime stopped")

    def get_status(self) -> dict[str, Any]:
        return {
            "supervisor": self.supervisor.get_stats(),
            "trigger": self.trigger.get_status(),
            "scheduler": self.scheduler.get_status(),
            "unlist": self.unlist.get_stats(),
        }
