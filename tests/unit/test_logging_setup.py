"""
Unit tests for logging setup.
"""

import logging.handlers

import pytest

from liverelay.config import LoggingConfig
from liverelay.utils.logging_setup import setup_logging, setup_logging_from_config


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.mark.unit
class TestSetupLogging:
    def test_writes_rotating_file(self, temp_dir):
        root = setup_logging(log_level="DEBUG", log_file_name="relay.log", log_directory=temp_dir, log_to_console=False)

        logging.getLogger("liverelay.test").warning("encoder restarted")
        for handler in root.handlers:
            handler.flush()

        assert root.level == logging.DEBUG
        assert [type(h) for h in root.handlers] == [logging.handlers.RotatingFileHandler]
        assert "encoder restarted" in (temp_dir / "relay.log").read_text()

    def test_file_path_with_directory(self, temp_dir):
        setup_logging(log_file_name=str(temp_dir / "logs" / "app.log"), log_to_console=False)

        assert (temp_dir / "logs" / "app.log").exists()

    def test_http_client_loggers_quieted(self, temp_dir):
        setup_logging(log_level="DEBUG", log_directory=temp_dir, log_to_console=False)

        assert logging.getLogger("httpx").level == logging.WARNING

    def test_from_config(self, temp_dir):
        config = LoggingConfig(level="WARNING", file=str(temp_dir / "cfg.log"), max_size="1MB", backup_count=2)

        root = setup_logging_from_config(config)

        handler = next(h for h in root.handlers if isinstance(h, logging.handlers.RotatingFileHandler))
        assert handler.maxBytes == 1024 * 1024
        assert handler.backupCount == 2
        assert root.level == logging.WARNING
