"""Pytest fixtures for AI Fingerprint tests."""

from collections.abc import Generator
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
import structlog
from pydantic import SecretStr

from fingerprint.audit.logger import AuditLogger
from fingerprint.config.settings import Environment, Settings, get_settings
from fingerprint.keys.config import (
    EncryptedFileKeyProviderConfig,
    EnvKeyProviderConfig,
    KeyProviderFactoryConfig,
)

TEST_CONTRACT = "0x5FbDB2315678afecb367f032d93F642f64180aa3"


# =============================================================================
# Structlog Configuration Fixture
# =============================================================================


@pytest.fixture(scope="function", autouse=True)
def reset_structlog_after_test():
    """Reset structlog configuration after each test.

    This ensures tests that modify structlog global state
    don't affect other tests.
    """
    yield
    # Reset structlog to default configuration after each test
    structlog.reset_defaults()
    # Re-apply minimal configuration for consistent behavior
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Generator[None, None, None]:
    """Drop cached settings so environment changes take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture
def key_directory(tmp_path: Path) -> Path:
    """Directory for encrypted key files."""
    return tmp_path / "keys"


@pytest.fixture
def mock_settings(tmp_path: Path, key_directory: Path) -> Settings:
    """Create development settings rooted in a temporary directory."""
    return Settings(
        _env_file=None,
        environment=Environment.DEVELOPMENT,
        log_level="DEBUG",
        master_key_password=SecretStr("test-master-password"),
        key_directory=key_directory,
        audit_log_path=tmp_path / "logs" / "audit.log",
        contract_address=TEST_CONTRACT,
    )


@pytest.fixture
def patch_settings(mock_settings: Settings) -> Generator[Settings, None, None]:
    """Patch get_settings to return mock settings."""
    with patch("fingerprint.config.settings.get_settings", return_value=mock_settings):
        yield mock_settings


# =============================================================================
# Key providers
# =============================================================================


@pytest.fixture
def file_config(key_directory: Path) -> EncryptedFileKeyProviderConfig:
    """Encrypted file provider configuration with a password-derived master key."""
    return EncryptedFileKeyProviderConfig(
        key_directory=key_directory,
        master_key_password="test-master-password",
    )


@pytest.fixture
def factory_config(file_config: EncryptedFileKeyProviderConfig) -> KeyProviderFactoryConfig:
    """Factory configuration using the temporary key directory."""
    return KeyProviderFactoryConfig(
        env=EnvKeyProviderConfig(prefix="FPTEST_KEY_"),
        encrypted_file=file_config,
    )


@pytest.fixture
def audit_mock() -> AsyncMock:
    """Audit logger double recording every call."""
    return AsyncMock(spec=AuditLogger)
