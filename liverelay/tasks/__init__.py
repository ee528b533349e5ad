"""
LiveRelay background jobs.
"""

from liverelay.tasks.scheduler import PeriodicJob, TaskScheduler

__all__ = [
    "PeriodicJob",
    "TaskScheduler",
]
