"""Tests for logger.py: setup_logging() and JsonFormatter.

Covers:
- CLI mode logging (stderr handler)
- Scheduled mode logging (file handler)
- Debug level override
- Environment variable LOG_LEVEL handling
- JSON formatter output
- Third-party logger silencing

Strategy: Mock logging.basicConfig to verify setup_logging passes correct args,
since pytest's log capture plugin interferes with actual basicConfig calls.
"""

import json
import logging
import sys
from unittest.mock import patch

from workitem_sync.logger import JsonFormatter, setup_logging


def _close_file_handlers(handlers):
    for h in handlers:
        if isinstance(h, logging.FileHandler):
            h.close()


# ---------------------------------------------------------------------------
# setup_logging tests
# ---------------------------------------------------------------------------


class TestSetupLogging:
    """Tests for setup_logging()."""

    @patch("workitem_sync.logger.logging.basicConfig")
    def test_cli_mode_logs_to_stderr(self, mock_basic):
        """CLI mode passes StreamHandler(stderr) to basicConfig."""
        setup_logging(mode="cli")

        mock_basic.assert_called_once()
        handlers = mock_basic.call_args[1]["handlers"]
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.StreamHandler)
        assert handlers[0].stream is sys.stderr

    @patch("workitem_sync.logger.logging.basicConfig")
    def test_scheduled_mode_logs_to_file(self, mock_basic, tmp_path):
        """Scheduled mode writes only to the log file."""
        log_file = str(tmp_path / "sync.log")
        setup_logging(mode="scheduled", log_file=log_file)

        handlers = mock_basic.call_args[1]["handlers"]
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.FileHandler)
        assert handlers[0].baseFilename == log_file
        _close_file_handlers(handlers)

    @patch("workitem_sync.logger.logging.basicConfig")
    def test_scheduled_mode_log_file_from_env(
        self, mock_basic, tmp_path, monkeypatch
    ):
        log_file = str(tmp_path / "env.log")
        monkeypatch.setenv("LOG_FILE", log_file)
        setup_logging(mode="scheduled")

        handlers = mock_basic.call_args[1]["handlers"]
        assert handlers[0].baseFilename == log_file
        _close_file_handlers(handlers)

    @patch("workitem_sync.logger.logging.basicConfig")
    def test_debug_overrides_level(self, mock_basic):
        """debug=True passes DEBUG level to basicConfig."""
        setup_logging(mode="cli", debug=True)

        assert mock_basic.call_args[1]["level"] == logging.DEBUG

    @patch("workitem_sync.logger.logging.basicConfig")
    def test_env_log_level_honored(self, mock_basic, monkeypatch):
        """LOG_LEVEL env var is reflected in basicConfig level."""
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(mode="cli")

        assert mock_basic.call_args[1]["level"] == logging.ERROR

    @patch("workitem_sync.logger.logging.basicConfig")
    def test_debug_beats_env(self, mock_basic, monkeypatch):
        """debug=True overrides LOG_LEVEL env var."""
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(mode="cli", debug=True)

        assert mock_basic.call_args[1]["level"] == logging.DEBUG

    @patch("workitem_sync.logger.logging.basicConfig")
    def test_cli_mode_with_log_file(self, mock_basic, tmp_path):
        """CLI mode with log_file creates both stderr and file handlers."""
        setup_logging(mode="cli", log_file=str(tmp_path / "cli.log"))

        handlers = mock_basic.call_args[1]["handlers"]
        stream_handlers = [
            h
            for h in handlers
            if isinstance(h, logging.StreamHandler)
            and not isinstance(h, logging.FileHandler)
        ]
        file_handlers = [
            h for h in handlers if isinstance(h, logging.FileHandler)
        ]
        assert len(stream_handlers) == 1
        assert len(file_handlers) == 1
        _close_file_handlers(handlers)

    @patch("workitem_sync.logger.logging.basicConfig")
    def test_json_format_uses_json_formatter(self, mock_basic):
        """debug_format='json' sets JsonFormatter on handlers."""
        setup_logging(mode="cli", debug_format="json")

        handlers = mock_basic.call_args[1]["handlers"]
        assert all(isinstance(h.formatter, JsonFormatter) for h in handlers)

    @patch("workitem_sync.logger.logging.basicConfig")
    def test_third_party_silenced(self, _mock_basic):
        """Non-DEBUG mode silences urllib3/requests loggers."""
        setup_logging(mode="cli")

        assert logging.getLogger("urllib3").level == logging.WARNING
        assert logging.getLogger("requests").level == logging.WARNING

    @patch("workitem_sync.logger.logging.basicConfig")
    def test_scheduled_default_level_is_warning(
        self, mock_basic, tmp_path, monkeypatch
    ):
        """Scheduled mode defaults to WARNING level."""
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        setup_logging(mode="scheduled", log_file=str(tmp_path / "s.log"))

        assert mock_basic.call_args[1]["level"] == logging.WARNING
        _close_file_handlers(mock_basic.call_args[1]["handlers"])

    @patch("workitem_sync.logger.logging.basicConfig")
    def test_cli_default_level_is_info(self, mock_basic, monkeypatch):
        """CLI mode defaults to INFO level."""
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        setup_logging(mode="cli")

        assert mock_basic.call_args[1]["level"] == logging.INFO


# ---------------------------------------------------------------------------
# JsonFormatter tests
# ---------------------------------------------------------------------------


def _record(msg, args=(), level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="workitem_sync.sync.engine",
        level=level,
        pathname="engine.py",
        lineno=1,
        msg=msg,
        args=args,
        exc_info=exc_info,
    )


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_basic_output(self):
        """Formatted output is valid JSON with required keys."""
        formatter = JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S")

        data = json.loads(formatter.format(_record("Synced %d items", (3,))))

        assert "ts" in data
        assert data["level"] == "INFO"
        assert data["logger"] == "workitem_sync.sync.engine"
        assert data["msg"] == "Synced 3 items"

    def test_includes_exception(self):
        """Exception info is included in 'exc' key."""
        formatter = JsonFormatter()
        try:
            raise ValueError("test error")
        except ValueError:
            exc_info = sys.exc_info()

        data = json.loads(
            formatter.format(
                _record("failed", level=logging.ERROR, exc_info=exc_info)
            )
        )

        assert "ValueError" in data["exc"]
        assert "test error" in data["exc"]

    def test_single_line_output(self):
        """Output is a single line (no embedded newlines in JSON)."""
        output = JsonFormatter().format(_record("line one\nline two"))

        assert "\n" not in output
        assert json.loads(output)["msg"] == "line one\nline two"
