"""Tests for logging configuration and console helpers."""

import json
import logging
import logging.handlers
from pathlib import Path
from unittest.mock import patch

import structlog

from watch_process import logging as wlog
from watch_process.config import Config


def test_configure_writes_json_log_file(tmp_path: Path):
    """Events land in the log file as JSON with bound context."""
    with (
        patch.object(Config, "state_dir", new_callable=lambda: property(lambda s: tmp_path)),
        patch.object(
            Config, "log_path", new_callable=lambda: property(lambda s: tmp_path / "daemon.log")
        ),
    ):
        config = Config()
        wlog.configure(config)

        structlog.contextvars.bind_contextvars(hostname="web1")
        try:
            structlog.get_logger().info("tick_completed", emitted=3)
        finally:
            structlog.contextvars.unbind_contextvars("hostname")

        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = (tmp_path / "daemon.log").read_text().splitlines()

    entry = json.loads(lines[-1])
    assert entry["event"] == "tick_completed"
    assert entry["emitted"] == 3
    assert entry["hostname"] == "web1"
    assert entry["level"] == "info"


def test_configure_without_log_file(tmp_path: Path):
    with patch.object(Config, "state_dir", new_callable=lambda: property(lambda s: tmp_path / "s")):
        wlog.configure(Config(), log_file=False, level=logging.WARNING)

    handlers = logging.getLogger().handlers
    assert len(handlers) == 1
    assert not isinstance(handlers[0], logging.handlers.RotatingFileHandler)
    assert not (tmp_path / "s").exists()


def test_console_helpers_write_to_stderr(capsys):
    wlog.config_invalid("'tag' is required")
    wlog.already_running(4242)

    captured = capsys.readouterr()
    assert captured.out == ""
    assert "Invalid configuration" in captured.err
    assert "4242" in captured.err
