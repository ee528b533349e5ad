"""
LiveRelay Streaming Module

Encoder processes and the rules around them.

Components:
- ProcessSupervisor: spawns, watches and stops one FFmpeg relay per stream
- FFmpegCommandBuilder: media resolution and FFmpeg arguments
- LiveLimitGuard: per-user concurrent live stream limit
- StreamController: schedule edits and deletion across components
"""

from liverelay.streaming.command_builder import FFmpegCommandBuilder
from liverelay.streaming.controller import StreamController
from liverelay.streaming.live_limit import LiveLimitGuard, LiveLimitInfo
from liverelay.streaming.status import clears_schedule_time, has_active_schedule, status_after_end
from liverelay.streaming.supervisor import (
    ProcessSupervisor,
    StartOutcome,
    StartResult,
    StopResult,
    StreamProcess,
    StreamStarted,
    StreamStopped,
)

__all__ = [
    "FFmpegCommandBuilder",
    "LiveLimitGuard",
    "LiveLimitInfo",
    "ProcessSupervisor",
    "StartOutcome",
    "StartResult",
    "StopResult",
    "StreamController",
    "StreamProcess",
    "StreamStarted",
    "StreamStopped",
    "clears_schedule_time",
    "has_active_schedule",
    "status_after_end",
]
