"""
Configuration management for LiveRelay.

Handles loading, validation, and access to application configuration.
"""

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

# Global configuration instance
_config: Optional["LiveRelayConfig"] = None


class ServerConfig(BaseModel):
    """Server configuration."""
    host: str = "0.0.0.0"
    port: int = 8420
    debug: bool = False
    log_level: str = "INFO"


class DatabaseConfig(BaseModel):
    """Database configuration."""
    url: str = "sqlite:///./liverelay.db"
    echo: bool = False


class FFmpegConfig(BaseModel):
    """FFmpeg configuration."""
    path: str = "ffmpeg"
    log_level: str = "warning"  # passed through as -loglevel
    media_root: str = "./media"  # Video/Audio filepaths are relative to this
    work_dir: str = "./temp"  # concat lists for playlist streams
    stop_timeout: float = 2.0  # grace period between SIGTERM and SIGKILL
    startup_confirm_seconds: float = 2.0
    log_buffer_lines: int = 50
    preset: str = "veryfast"
    audio_bitrate: str = "128k"


class SchedulingConfig(BaseModel):
    """Schedule trigger and duration enforcement settings."""
    enabled: bool = True
    timezone: str = "Asia/Jakarta"
    poll_interval_seconds: int = 60
    fire_window_minutes: int = 5
    duration_check_seconds: int = 60
    force_stop_buffer_seconds: int = 30
    reconcile_interval_seconds: int = 300
    broadcast_sync_interval_seconds: int = 900

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value


class LiveLimitConfig(BaseModel):
    """Fallback concurrent stream limit when no system setting is stored."""
    default_limit: Optional[int] = None


class YouTubeConfig(BaseModel):
    """YouTube Data API settings."""
    api_base_url: str = "https://www.googleapis.com/youtube/v3"
    upload_base_url: str = "https://www.googleapis.com/upload/youtube/v3"
    token_url: str = "https://oauth2.googleapis.com/token"
    timeout_seconds: float = 30.0
    max_retries: int = 2
    backoff_base: float = 1.0
    backoff_max: float = 10.0


class UnlistConfig(BaseModel):
    """Replay unlist retry settings."""
    initial_delay_seconds: float = 60.0
    retry_delay_seconds: float = 30.0
    max_retries: int = 5
    ttl_seconds: float = 600.0
    sweep_interval_seconds: float = 60.0


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    file: str = "logs/liverelay.log"
    max_size: str = "10MB"
    backup_count: int = 5
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @property
    def max_bytes(self) -> int:
        """max_size parsed into bytes ("10MB", "512KB" or a plain number)."""
        size = self.max_size.strip().upper()
        for suffix, factor in (("GB", 1024 ** 3), ("MB", 1024 ** 2), ("KB", 1024)):
            if size.endswith(suffix):
                return int(float(size[: -len(suffix)]) * factor)
        return int(size)


class LiveRelayConfig(BaseModel):
    """Main LiveRelay configuration."""
    server: ServerConfig = Field(default_factory=ServerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    ffmpeg: FFmpegConfig = Field(default_factory=FFmpegConfig)
    scheduling: SchedulingConfig = Field(default_factory=SchedulingConfig)
    live_limit: LiveLimitConfig = Field(default_factory=LiveLimitConfig)
    youtube: YouTubeConfig = Field(default_factory=YouTubeConfig)
    unlist: UnlistConfig = Field(default_factory=UnlistConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(config_path: Optional[str] = None) -> LiveRelayConfig:
    """
    Load configuration from file.

    Args:
        config_path: Path to config file. Defaults to config.yaml in the
            working directory, then ~/.liverelay/config.yaml.

    Returns:
        Loaded and validated configuration.
    """
    global _config

    if config_path is None:
        possible_paths = [
            Path("config.yaml"),
            Path.home() / ".liverelay" / "config.yaml",
        ]
        for path in possible_paths:
            if path.exists():
                config_path = str(path)
                break

    config_data: dict[str, Any] = {}

    if config_path and Path(config_path).exists():
        with open(config_path) as f:
            config_data = yaml.safe_load(f) or {}

    env_overrides = _get_env_overrides()
    _deep_merge(config_data, env_overrides)

    _config = LiveRelayConfig(**config_data)
    return _config


def get_config() -> LiveRelayConfig:
    """
    Get the current configuration.

    Returns:
        Current configuration (loads default if not yet loaded).
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> LiveRelayConfig:
    """Drop the cached configuration and load it from disk again."""
    global _config
    _config = None
    return load_config()


def _get_env_overrides() -> dict[str, Any]:
    """Get configuration overrides from environment variables."""
    overrides: dict[str, Any] = {}

    env_map = {
        "LIVERELAY_HOST": ("server", "host"),
        "LIVERELAY_PORT": ("server", "port"),
        "LIVERELAY_DEBUG": ("server", "debug"),
        "LIVERELAY_DATABASE_URL": ("database", "url"),
        "LIVERELAY_FFMPEG_PATH": ("ffmpeg", "path"),
        "LIVERELAY_MEDIA_ROOT": ("ffmpeg", "media_root"),
        "LIVERELAY_TIMEZONE": ("scheduling", "timezone"),
        "LIVERELAY_SCHEDULER_ENABLED": ("scheduling", "enabled"),
        "LIVERELAY_DEFAULT_LIVE_LIMIT": ("live_limit", "default_limit"),
        "LIVERELAY_LOG_LEVEL": ("logging", "level"),
    }

    for env_var, path in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            _set_nested(overrides, path, _parse_env_value(value))

    return overrides


def _parse_env_value(value: str) -> Any:
    """Parse environment variable value to appropriate type."""
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    return value


def _set_nested(d: dict[str, Any], path: tuple[str, ...], value: Any) -> None:
    """Set a nested dictionary value from a path tuple."""
    for key in path[:-1]:
        d = d.setdefault(key, {})
    d[path[-1]] = value


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> None:
    """Deep merge override into base dictionary."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


class _ConfigProxy:
    """
    Proxy object that provides lazy access to configuration.

    Allows modules to import `config` directly:
        from liverelay.config import config
        config.scheduling.timezone
    """

    def __getattr__(self, name: str) -> Any:
        return getattr(get_config(), name)

    def __repr__(self) -> str:
        return f"<ConfigProxy for {get_config()}>"


config = _ConfigProxy()
