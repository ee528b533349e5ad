"""Logging setup for LiveRelay with rotating file and console output"""

import logging
import logging.handlers
import sys
from pathlib import Path

from liverelay.config import LoggingConfig


def setup_logging(
    log_level: str = "INFO",
    log_file_name: str | None = None,
    log_to_console: bool = True,
    log_to_file: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    log_format: str | None = None,
    log_directory: Path | None = None,
) -> logging.Logger:
    """
    Set up logging for the LiveRelay application.

    Writes to stdout and to a size-rotated file. Encoder output is not
    routed here; it lives in the per-stream log buffers of the supervisor.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file_name: Path to log file (absolute, relative, or bare name)
        log_to_console: Whether to log to console
        log_to_file: Whether to log to file
        max_bytes: Maximum size of log file before rotation
        backup_count: Number of rotated files to keep
        log_format: Custom format string for the file handler
        log_directory: Override log directory (defaults to logs/)

    Returns:
        Configured root logger
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    if log_directory is not None:
        log_dir = log_directory
    elif log_file_name and (Path(log_file_name).is_absolute() or "/" in log_file_name):
        log_dir = Path(log_file_name).parent
        log_file_name = Path(log_file_name).name
    else:
        log_dir = Path("logs")

    if log_file_name is None:
        log_file_name = "liverelay.log"

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    file_formatter = logging.Formatter(
        log_format or "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    console_formatter = logging.Formatter(
        "%(asctime)s - %(levelname)s - %(message)s", datefmt="%H:%M:%S"
    )

    if log_to_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(console_formatter)
        root_logger.addHandler(console_handler)

    log_file_path = log_dir / log_file_name
    if log_to_file:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_file_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

    # Chatty per-request loggers from the HTTP stack
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))
    logging.getLogger("httpcore").setLevel(max(numeric_level, logging.WARNING))

    root_logger.info("=" * 60)
    root_logger.info(f"LiveRelay logging initialized - Level: {log_level}")
    if log_to_file:
        root_logger.info(f"Log file: {log_file_path} (max {max_bytes / (1024 * 1024):.1f} MB, {backup_count} backups)")
    root_logger.info("=" * 60)

    return root_logger


def setup_logging_from_config(logging_config: LoggingConfig) -> logging.Logger:
    """Configure logging from the `logging` section of the app config."""
    return setup_logging(
        log_level=logging_config.level,
        log_file_name=logging_config.file,
        max_bytes=logging_config.max_bytes,
        backup_count=logging_config.backup_count,
        log_format=logging_config.format,
    )

