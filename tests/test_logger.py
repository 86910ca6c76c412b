"""Tests for logger.py -- setup_logging() and JsonFormatter.

Covers:
- CLI mode logging (stderr handler, optional file handler)
- Service mode logging (file handler only)
- Level resolution: debug flag, LOG_LEVEL env, config level, mode default
- JSON formatter output
- charset_normalizer silencing

Strategy: Mock logging.basicConfig to verify setup_logging passes correct args,
since pytest's log capture plugin interferes with actual basicConfig calls.
"""

import json
import logging
import sys
from unittest.mock import patch

import pytest

from kindling_sync.logger import DEFAULT_LOG_FILE, JsonFormatter, setup_logging


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.delenv("LOG_FILE", raising=False)


def _close(handlers):
    for h in handlers:
        if isinstance(h, logging.FileHandler):
            h.close()


# ---------------------------------------------------------------------------
# setup_logging tests
# ---------------------------------------------------------------------------


class TestSetupLogging:
    """Tests for setup_logging()."""

    @patch("kindling_sync.logger.logging.basicConfig")
    def test_cli_mode_logs_to_stderr(self, mock_basic):
        """CLI mode passes StreamHandler(stderr) to basicConfig."""
        setup_logging(mode="cli")

        mock_basic.assert_called_once()
        handlers = mock_basic.call_args[1]["handlers"]
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.StreamHandler)
        assert handlers[0].stream is sys.stderr

    @patch("kindling_sync.logger.logging.basicConfig")
    def test_cli_mode_with_log_file(self, mock_basic, tmp_path):
        """CLI mode with log_file adds a file handler after stderr."""
        log_file = str(tmp_path / "cli.log")
        setup_logging(mode="cli", log_file=log_file)

        handlers = mock_basic.call_args[1]["handlers"]
        assert not isinstance(handlers[0], logging.FileHandler)
        assert isinstance(handlers[1], logging.FileHandler)
        assert handlers[1].baseFilename == log_file
        _close(handlers)

    @patch("kindling_sync.logger.logging.basicConfig")
    def test_service_mode_logs_to_file(self, mock_basic, tmp_path):
        """Service mode writes only to the given file."""
        log_file = str(tmp_path / "service.log")
        setup_logging(mode="service", log_file=log_file)

        handlers = mock_basic.call_args[1]["handlers"]
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.FileHandler)
        assert handlers[0].baseFilename == log_file
        _close(handlers)

    @patch("kindling_sync.logger.logging.FileHandler")
    @patch("kindling_sync.logger.logging.basicConfig")
    def test_service_mode_default_log_file(self, _mock_basic, mock_file):
        """Service mode defaults to /tmp/kindling-sync.log."""
        setup_logging(mode="service")

        assert mock_file.call_args[0][0] == DEFAULT_LOG_FILE

    @patch("kindling_sync.logger.logging.basicConfig")
    def test_service_mode_env_log_file(self, mock_basic, monkeypatch, tmp_path):
        """LOG_FILE env var is used when no log_file is passed."""
        log_file = str(tmp_path / "env.log")
        monkeypatch.setenv("LOG_FILE", log_file)
        setup_logging(mode="service")

        handlers = mock_basic.call_args[1]["handlers"]
        assert handlers[0].baseFilename == log_file
        _close(handlers)

    @patch("kindling_sync.logger.logging.basicConfig")
    def test_cli_default_level_is_info(self, mock_basic):
        setup_logging(mode="cli")
        assert mock_basic.call_args[1]["level"] == logging.INFO

    @patch("kindling_sync.logger.logging.basicConfig")
    def test_service_default_level_is_warning(self, mock_basic, tmp_path):
        setup_logging(mode="service", log_file=str(tmp_path / "s.log"))

        kwargs = mock_basic.call_args[1]
        assert kwargs["level"] == logging.WARNING
        _close(kwargs["handlers"])

    @patch("kindling_sync.logger.logging.basicConfig")
    def test_config_level_used(self, mock_basic):
        """A level from the config file applies when LOG_LEVEL is unset."""
        setup_logging(mode="cli", level="error")
        assert mock_basic.call_args[1]["level"] == logging.ERROR

    @patch("kindling_sync.logger.logging.basicConfig")
    def test_env_log_level_beats_config(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "WARNING")
        setup_logging(mode="cli", level="ERROR")
        assert mock_basic.call_args[1]["level"] == logging.WARNING

    @patch("kindling_sync.logger.logging.basicConfig")
    def test_debug_beats_env(self, mock_basic, monkeypatch):
        """debug=True overrides LOG_LEVEL env var."""
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(mode="cli", debug=True)
        assert mock_basic.call_args[1]["level"] == logging.DEBUG

    @patch("kindling_sync.logger.logging.basicConfig")
    def test_unknown_level_falls_back_to_info(self, mock_basic):
        setup_logging(mode="cli", level="chatty")
        assert mock_basic.call_args[1]["level"] == logging.INFO

    @patch("kindling_sync.logger.logging.basicConfig")
    def test_json_format_uses_json_formatter(self, mock_basic):
        """debug_format='json' sets JsonFormatter on handlers."""
        setup_logging(mode="cli", debug_format="json")

        handlers = mock_basic.call_args[1]["handlers"]
        assert all(isinstance(h.formatter, JsonFormatter) for h in handlers)

    @patch("kindling_sync.logger.logging.basicConfig")
    def test_charset_normalizer_silenced(self, _mock_basic):
        """Non-DEBUG mode quiets charset detection."""
        logging.getLogger("charset_normalizer").setLevel(logging.NOTSET)
        setup_logging(mode="cli")
        assert logging.getLogger("charset_normalizer").level == logging.WARNING

    @patch("kindling_sync.logger.logging.basicConfig")
    def test_charset_normalizer_left_alone_in_debug(self, _mock_basic):
        logging.getLogger("charset_normalizer").setLevel(logging.NOTSET)
        setup_logging(mode="cli", debug=True)
        assert logging.getLogger("charset_normalizer").level == logging.NOTSET


# ---------------------------------------------------------------------------
# JsonFormatter tests
# ---------------------------------------------------------------------------


def _record(msg="Hello %s", args=("world",), exc_info=None):
    return logging.LogRecord(
        name="kindling_sync.test",
        level=logging.INFO,
        pathname="test.py",
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
        data = json.loads(formatter.format(_record()))

        assert "ts" in data
        assert data["level"] == "INFO"
        assert data["logger"] == "kindling_sync.test"
        assert data["msg"] == "Hello world"
        assert "exc" not in data

    def test_includes_exception(self):
        """Exception info is included in 'exc' key."""
        formatter = JsonFormatter()
        try:
            raise ValueError("bad outline")
        except ValueError:
            exc_info = sys.exc_info()

        data = json.loads(formatter.format(_record("failed", (), exc_info)))

        assert "ValueError" in data["exc"]
        assert "bad outline" in data["exc"]

    def test_single_line_output(self):
        formatter = JsonFormatter()
        output = formatter.format(_record("line one\nline two", ()))

        assert "\n" not in output
        assert json.loads(output)["msg"] == "line one\nline two"
