"""
Periodic job runner for the relay's background work.

Runs the schedule trigger, duration backstop, orphan reconciliation and
broadcast sync on fixed intervals. A job never overlaps itself: while one
run is in flight the next is skipped rather than queued.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from liverelay.database.models import utcnow

logger = logging.getLogger(__name__)


@dataclass
class PeriodicJob:
    """A registered job and its run state."""

    name: str
    func: Callable
    interval_seconds: float

    # Loop-clock deadlines
    next_due: float = 0.0

    last_run: Optional[datetime] = None
    last_error: Optional[str] = None
    run_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0
    current: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self.current is not None and not self.current.done()

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "interval_seconds": self.interval_seconds,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_error": self.last_error,
            "run_count": self.run_count,
            "failure_count": self.failure_count,
            "skipped_count": self.skipped_count,
            "is_running": self.is_running,
        }


class TaskScheduler:
    """
    Interval scheduler on the running event loop.

    Usage:
        scheduler = TaskScheduler()
        scheduler.add_task("schedule_trigger", trigger.tick, 60, run_immediately=True)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(self, resolution_seconds: float = 1.0):
        self._jobs: dict[str, PeriodicJob] = {}
        self._resolution = resolution_seconds
        self._running = False
        self._loop_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def add_task(
        self,
        name: str,
        func: Callable,
        interval_seconds: float,
        run_immediately: bool = False,
    ) -> None:
        """
        Register a job.

        Args:
            name: Unique job name; re-adding replaces the job
            func: Coroutine function or plain callable taking no arguments
            interval_seconds: Time between run starts
            run_immediately: First run on the first scheduler pass
        """
        if interval_seconds <= 0:
            raise ValueError(f"Interval of task {name} must be positive")
        job = PeriodicJob(name=name, func=func, interval_seconds=interval_seconds)
        if self._running:
            now = asyncio.get_running_loop().time()
            job.next_due = now if run_immediately else now + interval_seconds
        else:
            job.next_due = 0.0 if run_immediately else -1.0
        self._jobs[name] = job
        logger.info(f"Scheduled task added: {name} (every {interval_seconds}s)")

    def remove_task(self, name: str) -> bool:
        job = self._jobs.pop(name, None)
        if job is None:
            return False
        if job.is_running:
            job.current.cancel()
        logger.info(f"Scheduled task removed: {name}")
        return True

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        now = asyncio.get_running_loop().time()
        for job in self._jobs.values():
            # -1 marks "first run after one interval"
            job.next_due = now + job.interval_seconds if job.next_due < 0 else now
        self._loop_task = asyncio.create_task(self._loop())
        logger.info("Task scheduler started")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        pending = [self._loop_task] if self._loop_task else []
        for job in self._jobs.values():
            if job.is_running:
                job.current.cancel()
                pending.append(job.current)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._loop_task = None
        logger.info("Task scheduler stopped")

    async def run_task(self, name: str) -> bool:
        """Run a job now, outside its interval. False if unknown or already running."""
        job = self._jobs.get(name)
        if job is None or job.is_running:
            return False
        job.current = asyncio.current_task()
        try:
            await self._execute(job)
        finally:
            job.current = None
        return True

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "tasks": [job.to_dict() for job in self._jobs.values()],
        }

    async def _loop(self) -> None:
        loop = asyncio.get_running_loop()
        while self._running:
            now = loop.time()
            for job in list(self._jobs.values()):
                if job.next_due > now:
                    continue
                job.next_due = now + job.interval_seconds
                if job.is_running:
                    job.skipped_count += 1
                    logger.warning(f"Scheduled task {job.name} still running, skipping this run")
                    continue
                job.current = asyncio.create_task(self._execute(job))
            await asyncio.sleep(self._resolution)

    async def _execute(self, job: PeriodicJob) -> None:
        job.last_run = utcnow()
        try:
            logger.debug(f"Running scheduled task: {job.name}")
            result = job.func()
            if asyncio.iscoroutine(result):
                await result
            job.run_count += 1
            job.last_error = None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            job.failure_count += 1
            job.last_error = str(e)
            logger.error(f"Scheduled task failed: {job.name}: {e}", exc_info=True)
