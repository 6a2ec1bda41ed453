"""Test logging configuration."""

import io
import json
import logging
import sys
from pathlib import Path

import pytest
import structlog
from structlog.testing import LogCapture

from funnelctl.common.logging import (
    get_logger,
    level_from_verbosity,
    redact_secrets,
    setup_logging,
)


class TestLogging:
    """Test logging functionality."""

    def setup_method(self) -> None:
        """Setup before each test - reset logging configuration."""
        structlog.reset_defaults()
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

    def teardown_method(self) -> None:
        setup_logging(level="WARNING")

    def test_setup_logging_with_level(self) -> None:
        """Test logging setup with custom level."""
        setup_logging(level="DEBUG")

        assert logging.getLogger().level == logging.DEBUG

    def test_console_handler_uses_stderr(self) -> None:
        """Test that logs never go to stdout."""
        setup_logging()

        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert handlers[0].stream is sys.stderr

    def test_setup_logging_json_format(self) -> None:
        """Test logging setup with JSON format."""
        setup_logging(json_format=True)
        logger = get_logger("test")

        cap = LogCapture()
        structlog.configure(processors=[cap])

        logger.info("tunnel active", url="https://node.example.ts.net/app")

        assert len(cap.entries) == 1
        assert cap.entries[0]["event"] == "tunnel active"
        assert cap.entries[0]["url"] == "https://node.example.ts.net/app"

    def test_secrets_masked_in_output(self) -> None:
        """Test that credentials never reach the rendered log line."""
        buf = io.StringIO()
        setup_logging(json_format=True, stream=buf)

        get_logger("funnelctl.tests.redaction").warning("auth failed", password="hunter2")

        record = json.loads(buf.getvalue().strip())
        assert record["event"] == "auth failed"
        assert record["password"] == "********"
        assert "hunter2" not in buf.getvalue()

    def test_setup_logging_with_file(self, tmp_path: Path) -> None:
        """Test logging setup with file output."""
        log_file = tmp_path / "funnelctl.log"
        setup_logging(log_file=str(log_file))

        logging.getLogger("test_file").info("test message")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "test message" in log_file.read_text()

    def test_get_logger(self) -> None:
        """Test getting a logger instance."""
        setup_logging()
        logger = get_logger("test_module")

        assert hasattr(logger, "info")
        assert hasattr(logger, "warning")


class TestRedactSecrets:
    """Test the secret-masking processor"""

    def test_masks_credential_keys(self):
        """Test that password-like fields never reach the renderer"""
        event = {"event": "connecting", "password": "hunter2", "Authorization": "Basic abc"}

        result = redact_secrets(None, "info", event)

        assert result["password"] == "********"
        assert result["Authorization"] == "********"
        assert result["event"] == "connecting"

    def test_leaves_other_keys(self):
        """Test that ordinary context is untouched"""
        event = {"event": "applied", "path": "/app", "session_id": "abc"}

        assert redact_secrets(None, "info", dict(event)) == event

    def test_empty_secret(self):
        """Test masking of empty values"""
        assert redact_secrets(None, "info", {"event": "x", "token": ""})["token"] == "<None>"


class TestLevelFromVerbosity:
    """Test -v mapping and the FUNNELCTL_LOG override"""

    @pytest.mark.parametrize("verbose,level", [(0, "ERROR"), (1, "INFO"), (2, "DEBUG"), (5, "DEBUG")])
    def test_verbosity(self, verbose, level):
        """Test the default mapping"""
        assert level_from_verbosity(verbose) == level

    def test_env_override(self, monkeypatch):
        """Test that FUNNELCTL_LOG wins over -v"""
        monkeypatch.setenv("FUNNELCTL_LOG", "warning")

        assert level_from_verbosity(2) == "WARNING"

    def test_invalid_env(self, monkeypatch):
        """Test that unknown level names are rejected"""
        monkeypatch.setenv("FUNNELCTL_LOG", "loud")

        with pytest.raises(ValueError, match="FUNNELCTL_LOG"):
            level_from_verbosity(0)
