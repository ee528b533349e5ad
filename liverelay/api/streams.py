"""Stream control API endpoints"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..api.schemas import ScheduleUpdate
from ..database.models import Stream, utcnow
from ..errors import ValidationError
from ..runtime import RelayRuntime
from ..scheduling.recurrence import next_run
from ..scheduling.views import group_by_schedule_type, todays_schedule, upcoming

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Streams"])


def get_runtime(request: Request) -> RelayRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Runtime not started")
    return runtime


async def _get_stream_or_404(runtime: RelayRuntime, stream_id: str) -> Stream:
    stream = await runtime.store.get(stream_id)
    if stream is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Stream not found")
    return stream


def stream_to_response(stream: Stream) -> dict[str, Any]:
    """Stream fields shown to clients (no stream key)."""
    return {
        "id": stream.id,
        "user_id": stream.user_id,
        "title": stream.title,
        "platform": stream.platform,
        "status": stream.status,
        "schedule_type": stream.schedule_type,
        "schedule_time": stream.schedule_time.isoformat() if stream.schedule_time else None,
        "recurring_time": stream.recurring_time,
        "schedule_days": stream.schedule_days or [],
        "recurring_enabled": stream.recurring_enabled,
        "duration_minutes": stream.duration_minutes,
        "start_time": stream.start_time.isoformat() if stream.start_time else None,
        "end_time": stream.end_time.isoformat() if stream.end_time else None,
        "broadcast_status": stream.youtube_lifecycle_status,
    }


@router.get("/streams/{stream_id}/status")
async def get_stream_status(stream_id: str, runtime: RelayRuntime = Depends(get_runtime)) -> dict[str, Any]:
    """Live state of a stream.

    Args:
        stream_id: Stream ID

    Returns:
        dict: Record status, whether an encoder runs, time left and next run
    """
    stream = await _get_stream_or_404(runtime, stream_id)
    now = utcnow()
    next_run_at = next_run(stream, now, runtime.trigger.tz)
    expected_end = runtime.duration.expected_end(stream_id)
    process = runtime.supervisor.get_process(stream_id)
    return {
        "stream_id": stream.id,
        "status": stream.status,
        "is_active": runtime.supervisor.is_active(stream_id),
        "pid": process.pid if process else None,
        "broadcast_status": stream.youtube_lifecycle_status,
        "start_time": stream.start_time.isoformat() if stream.start_time else None,
        "remaining_seconds": runtime.duration.remaining(stream_id),
        "expected_end": expected_end.isoformat() if expected_end else None,
        "next_run": next_run_at.isoformat() if next_run_at else None,
    }


@router.get("/streams/{stream_id}/logs")
async def get_stream_logs(stream_id: str, runtime: RelayRuntime = Depends(get_runtime)) -> dict[str, Any]:
    await _get_stream_or_404(runtime, stream_id)
    return {"stream_id": stream_id, "logs": runtime.supervisor.get_logs(stream_id)}


@router.post("/streams/{stream_id}/start")
async def start_stream(stream_id: str, runtime: RelayRuntime = Depends(get_runtime)) -> dict[str, Any]:
    """Start a stream now.

    Raises:
        HTTPException: 404 unknown stream, 409 already live, 429 live limit
            reached, 400 invalid media or target, 500 encoder failed to start
    """
    result = await runtime.supervisor.start(stream_id, trigger="manual")
    if result.success:
        return result.to_dict()

    codes = {
        "not_found": status.HTTP_404_NOT_FOUND,
        "already_live": status.HTTP_409_CONFLICT,
        "limit_reached": status.HTTP_429_TOO_MANY_REQUESTS,
        "validation_error": status.HTTP_400_BAD_REQUEST,
        "process_error": status.HTTP_500_INTERNAL_SERVER_ERROR,
    }
    raise HTTPException(status_code=codes[result.outcome.value], detail=result.to_dict())


@router.post("/streams/{stream_id}/stop")
async def stop_stream(stream_id: str, runtime: RelayRuntime = Depends(get_runtime)) -> dict[str, Any]:
    result = await runtime.supervisor.stop(stream_id, reason="manual")
    if not result.success:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=result.error)
    return result.to_dict()


@router.put("/streams/{stream_id}/schedule")
async def update_stream_schedule(
    stream_id: str,
    body: ScheduleUpdate,
    runtime: RelayRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    try:
        stream = await runtime.controller.update_schedule(stream_id, **body.model_dump())
    except ValidationError as e:
        code = status.HTTP_404_NOT_FOUND if e.field == "stream_id" else status.HTTP_400_BAD_REQUEST
        raise HTTPException(status_code=code, detail={"message": e.message, "field": e.field})
    return stream_to_response(stream)


@router.delete("/streams/{stream_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_stream(stream_id: str, runtime: RelayRuntime = Depends(get_runtime)) -> None:
    if not await runtime.controller.delete_stream(stream_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Stream not found")


@router.get("/schedules")
async def get_schedules(
    user_id: Optional[str] = None,
    runtime: RelayRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    """Streams grouped by schedule type, upcoming runs and today's plan."""
    streams = await runtime.store.list_streams(user_id=user_id)
    tz = runtime.trigger.tz
    now = utcnow()
    return {
        "timezone": str(tz),
        "groups": {
            kind: [stream_to_response(stream) for stream in members]
            for kind, members in group_by_schedule_type(streams).items()
        },
        "upcoming": [entry.to_dict(tz) for entry in upcoming(streams, now, tz)],
        "today": [entry.to_dict(tz) for entry in todays_schedule(streams, now, tz)],
    }


@router.get("/users/{user_id}/live-limit")
async def get_live_limit(user_id: str, runtime: RelayRuntime = Depends(get_runtime)) -> dict[str, Any]:
    info = await runtime.supervisor.live_limit.validate_and_get_info(user_id)
    return info.to_dict()


@router.get("/unlist/pending")
async def get_pending_unlists(runtime: RelayRuntime = Depends(get_runtime)) -> dict[str, Any]:
    return {"count": runtime.unlist.pending_count, "pending": runtime.unlist.get_pending()}
