"""Unit tests for structured logging."""

import io
import json
import logging
from unittest.mock import patch

import pytest
import structlog
from structlog.testing import LogCapture

from fingerprint.audit.redaction import REDACTED
from fingerprint.config.settings import Environment, Settings
from fingerprint.core.logging import (
    LogContext,
    add_environment_info,
    get_logger,
    redact_event,
    setup_logging,
)

PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


@pytest.fixture
def logging_settings(mock_settings: Settings):
    """Patch the settings seen by the logging module."""
    with patch("fingerprint.core.logging.get_settings", return_value=mock_settings):
        yield mock_settings


class TestAddEnvironmentInfo:
    """Tests for add_environment_info processor."""

    def test_adds_environment(self, mock_settings: Settings) -> None:
        """Test environment is added to event dict."""
        settings = mock_settings.model_copy(update={"environment": Environment.PRODUCTION})

        with patch("fingerprint.core.logging.get_settings", return_value=settings):
            result = add_environment_info(None, "info", {})

        assert result["environment"] == "production"


class TestRedactEvent:
    """Tests for the redaction processor."""

    def test_sensitive_fields(self) -> None:
        """Test values under sensitive names are replaced."""
        result = redact_event(None, "info", {"event": "vault_login", "token": "s.abc"})

        assert result == {"event": "vault_login", "token": REDACTED}

    def test_secret_shaped_text(self) -> None:
        """Test key material is scrubbed from free text."""
        result = redact_event(None, "error", {"event": "bad_key", "error": f"invalid {PRIVATE_KEY}"})

        assert result["error"] == f"invalid {REDACTED}"

    def test_public_hash_kept(self) -> None:
        """Test transaction hashes survive."""
        tx_hash = "0x" + "ab" * 32

        assert redact_event(None, "info", {"tx_hash": tx_hash})["tx_hash"] == tx_hash

    def test_internal_keys_untouched(self) -> None:
        """Test processor bookkeeping passes through unchanged."""
        exc_info = (ValueError, ValueError("x"), None)
        record = object()

        result = redact_event(None, "error", {"exc_info": exc_info, "_record": record})

        assert result["exc_info"] is exc_info
        assert result["_record"] is record


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_level_from_settings(self, logging_settings: Settings) -> None:
        """Test the root level follows LOG_LEVEL."""
        setup_logging()

        assert logging.getLogger().level == logging.DEBUG

    def test_custom_level(self, logging_settings: Settings) -> None:
        """Test an explicit level overrides settings."""
        setup_logging(log_level="WARNING")

        assert logging.getLogger().level == logging.WARNING

    def test_noisy_loggers_quieted(self, logging_settings: Settings) -> None:
        """Test HTTP, Vault and web3 libraries log at WARNING and above."""
        setup_logging(log_level="DEBUG")

        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("hvac").level == logging.WARNING
        assert logging.getLogger("web3").level == logging.WARNING

    def test_json_output(self, logging_settings: Settings) -> None:
        """Test JSON events carry context and environment, without secrets."""
        stream = io.StringIO()
        setup_logging(json_format=True, stream=stream)

        get_logger("test").info("key_rotated", key_id="wallet-1", private_key=PRIVATE_KEY)

        event = json.loads(stream.getvalue().strip())
        assert event["event"] == "key_rotated"
        assert event["key_id"] == "wallet-1"
        assert event["environment"] == "development"
        assert event["private_key"] == REDACTED
        assert event["level"] == "info"

    def test_level_filtering(self, logging_settings: Settings) -> None:
        """Test events below the configured level are dropped."""
        stream = io.StringIO()
        setup_logging(log_level="WARNING", json_format=True, stream=stream)

        get_logger("test").info("dropped")
        get_logger("test").warning("kept")

        lines = stream.getvalue().strip().splitlines()
        assert [json.loads(line)["event"] for line in lines] == ["kept"]

    def test_stdlib_routed(self, logging_settings: Settings) -> None:
        """Test standard library records are rendered with the same pipeline."""
        stream = io.StringIO()
        setup_logging(json_format=True, stream=stream)

        logging.getLogger("hvac.adapters").warning("vault sealed")

        event = json.loads(stream.getvalue().strip())
        assert event["event"] == "vault sealed"
        assert event["logger"] == "hvac.adapters"


class TestGetLogger:
    """Tests for get_logger function."""

    def test_get_logger_with_name(self) -> None:
        """Test getting logger with specific name."""
        assert get_logger("fingerprint.keys") is not None

    def test_get_logger_without_name(self) -> None:
        """Test getting logger without name."""
        assert get_logger() is not None


class TestLogContext:
    """Tests for LogContext context manager."""

    def test_binds_values(self) -> None:
        """Test values are bound inside the block and removed after."""
        structlog.contextvars.clear_contextvars()

        with LogContext(key_type="wallet", command="rotate"):
            ctx = structlog.contextvars.get_contextvars()
            assert ctx == {"key_type": "wallet", "command": "rotate"}

        assert structlog.contextvars.get_contextvars() == {}

    def test_events_carry_context(self) -> None:
        """Test bound values reach log events."""
        capture = LogCapture()
        structlog.configure(processors=[structlog.contextvars.merge_contextvars, capture])
        structlog.contextvars.clear_contextvars()

        with LogContext(key_type="signing"):
            get_logger("test").info("key_read")

        assert capture.entries == [
            {"event": "key_read", "key_type": "signing", "log_level": "info"}
        ]
