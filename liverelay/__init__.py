"""
LiveRelay - scheduled live relays of stored media to RTMP ingest endpoints.

Coordinates per-user streams:
- ffmpeg encoder processes, supervised and bounded by duration
- once/daily/weekly schedule triggers
- YouTube broadcast lifecycle mirroring and replay unlisting
"""

__version__ = "1.0.0"
__author__ = "LiveRelay Contributors"
__license__ = "MIT"

from liverelay.config import get_config, load_config

__all__ = [
    "__version__",
    "get_config",
    "load_config",
]
