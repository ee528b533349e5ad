"""Health check API endpoint for LiveRelay"""

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Request

from .. import __version__
from ..config import get_config
from ..database.models import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])


async def check_ffmpeg(ffmpeg_path: str) -> dict[str, Any]:
    """Check FFmpeg installation and version."""
    try:
        process = await asyncio.create_subprocess_exec(
            ffmpeg_path,
            "-version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        stdout, _ = await asyncio.wait_for(process.communicate(), timeout=5)
    except FileNotFoundError:
        return {"status": "error", "error": f"FFmpeg not found: {ffmpeg_path}"}
    except asyncio.TimeoutError:
        process.kill()
        return {"status": "error", "error": "FFmpeg check timed out"}
    except OSError as e:
        return {"status": "error", "error": str(e)}

    if process.returncode != 0:
        return {"status": "error", "error": "FFmpeg returned non-zero exit code"}
    return {
        "status": "ok",
        "version": stdout.decode("utf-8", errors="replace").split("\n")[0],
        "path": ffmpeg_path,
    }


@router.get("")
async def health_check(request: Request) -> dict[str, Any]:
    """
    Basic health check endpoint.

    Returns:
        dict: Health status, version and runtime counters
    """
    runtime = getattr(request.app.state, "runtime", None)
    return {
        "status": "healthy" if runtime is not None else "starting",
        "version": __version__,
        "timestamp": utcnow().isoformat(),
        "runtime": runtime.get_status() if runtime is not None else None,
    }


@router.get("/detailed")
async def detailed_health_check(request: Request) -> dict[str, Any]:
    """Health plus an FFmpeg availability probe."""
    config = get_config()
    result = await health_check(request)
    result["ffmpeg"] = await check_ffmpeg(config.ffmpeg.path)
    result["scheduling"] = {
        "enabled": config.scheduling.enabled,
        "timezone": config.scheduling.timezone,
    }
    return result
