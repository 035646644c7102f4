"""Tests for logger.py: setup_logging() and JsonFormatter.

Covers:
- CLI and server mode handlers (stderr, optional file copy)
- Debug level override and LOG_LEVEL / config level handling
- JSON formatter output
- Third-party logger silencing

Strategy: Mock logging.basicConfig to verify setup_logging passes correct args,
since pytest's log capture plugin interferes with actual basicConfig calls.
"""

import json
import logging
import sys
from unittest.mock import patch

from itinerary_sync.logger import JsonFormatter, setup_logging


def _record(msg="Hello %s", args=("world",), exc_info=None, level=logging.INFO):
    return logging.LogRecord(
        name="itinerary_sync.sync.engine",
        level=level,
        pathname="engine.py",
        lineno=1,
        msg=msg,
        args=args,
        exc_info=exc_info,
    )


# ---------------------------------------------------------------------------
# setup_logging tests
# ---------------------------------------------------------------------------


@patch("itinerary_sync.logger.logging.basicConfig")
class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_cli_mode_logs_to_stderr(self, mock_basic):
        """CLI mode logs to stderr without logger names."""
        setup_logging(mode="cli")

        mock_basic.assert_called_once()
        handlers = mock_basic.call_args[1]["handlers"]
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.StreamHandler)
        assert handlers[0].stream is sys.stderr
        assert "%(name)s" not in handlers[0].formatter._fmt

    def test_server_mode_includes_logger_names(self, mock_basic):
        """Server mode includes the logger name."""
        setup_logging(mode="server")

        handler = mock_basic.call_args[1]["handlers"][0]
        assert "%(name)s" in handler.formatter._fmt

    def test_log_file_adds_file_handler(self, mock_basic, tmp_path):
        """A log file adds a second handler."""
        log_file = str(tmp_path / "sync.log")
        setup_logging(mode="cli", log_file=log_file)

        handlers = mock_basic.call_args[1]["handlers"]
        file_handlers = [h for h in handlers if isinstance(h, logging.FileHandler)]
        assert len(handlers) == 2
        assert file_handlers[0].baseFilename == log_file
        for h in file_handlers:
            h.close()

    def test_default_level_is_info(self, mock_basic, monkeypatch):
        """INFO is the default level."""
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        setup_logging(mode="cli")
        assert mock_basic.call_args[1]["level"] == logging.INFO

    def test_config_level_used_when_env_unset(self, mock_basic, monkeypatch):
        """The configured level applies without LOG_LEVEL."""
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        setup_logging(mode="cli", level="warning")
        assert mock_basic.call_args[1]["level"] == logging.WARNING

    def test_env_log_level_beats_config(self, mock_basic, monkeypatch):
        """LOG_LEVEL wins over the configured level."""
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(mode="cli", level="DEBUG")
        assert mock_basic.call_args[1]["level"] == logging.ERROR

    def test_debug_beats_env(self, mock_basic, monkeypatch):
        """debug=True wins over LOG_LEVEL."""
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(mode="cli", debug=True)
        assert mock_basic.call_args[1]["level"] == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self, mock_basic, monkeypatch):
        """An unknown level name falls back to INFO."""
        monkeypatch.setenv("LOG_LEVEL", "CHATTY")
        setup_logging(mode="cli")
        assert mock_basic.call_args[1]["level"] == logging.INFO

    def test_json_format_uses_json_formatter(self, mock_basic):
        """The json format installs JsonFormatter on every handler."""
        setup_logging(mode="server", debug_format="json")

        handlers = mock_basic.call_args[1]["handlers"]
        assert all(isinstance(h.formatter, JsonFormatter) for h in handlers)

    def test_third_party_silenced(self, _mock_basic, monkeypatch):
        """Noisy third-party loggers are raised to WARNING."""
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        setup_logging(mode="server")

        for name in ("urllib3", "httpx", "httpcore", "uvicorn.access"):
            assert logging.getLogger(name).level == logging.WARNING


# ---------------------------------------------------------------------------
# JsonFormatter tests
# ---------------------------------------------------------------------------


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_basic_output(self):
        """A record becomes one JSON object."""
        data = json.loads(JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S").format(_record()))

        assert "ts" in data
        assert data["level"] == "INFO"
        assert data["logger"] == "itinerary_sync.sync.engine"
        assert data["msg"] == "Hello world"
        assert "exc" not in data

    def test_includes_exception(self):
        """Tracebacks are embedded on one line."""
        try:
            raise ValueError("disk full")
        except ValueError:
            exc_info = sys.exc_info()

        output = JsonFormatter().format(
            _record("Commit failed", (), exc_info, logging.ERROR)
        )
        data = json.loads(output)

        assert "ValueError" in data["exc"]
        assert "disk full" in data["exc"]
        assert "\n" not in output
