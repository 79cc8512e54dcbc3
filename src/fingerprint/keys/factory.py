"""Key provider factory.

This module builds key providers from configuration and keeps one
instance per backend kind for the lifetime of the factory.
"""

import asyncio
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

from fingerprint.core.logging import get_logger
from fingerprint.keys.config import (
    KeyProviderFactoryConfig,
    KeyProviderType,
    merge_config,
)
from fingerprint.keys.encrypted_file import EncryptedFileKeyProvider, ensure_key_directory
from fingerprint.keys.environment import EnvKeyProvider
from fingerprint.keys.protocol import (
    BackendUnavailableError,
    KeyProvider,
    ProviderConfigurationError,
)
from fingerprint.keys.vault import VaultKeyProvider

if TYPE_CHECKING:
    from fingerprint.audit.logger import AuditLogger

logger = get_logger(__name__)

DEFAULT_KEY_DIRECTORY = Path("~/.fingerprint/keys")

_SUB_CONFIGS = {
    KeyProviderType.ENV: "env",
    KeyProviderType.ENCRYPTED_FILE: "encrypted_file",
    KeyProviderType.VAULT: "vault",
}


def default_factory_config() -> KeyProviderFactoryConfig:
    """Factory configuration with keys under ``~/.fingerprint/keys``."""
    config = KeyProviderFactoryConfig()
    config.encrypted_file = replace(config.encrypted_file, key_directory=DEFAULT_KEY_DIRECTORY)
    return config


class KeyProviderFactory:
    """Builds and caches key providers, one per backend kind.

    Example:
        factory = KeyProviderFactory()
        provider = await factory.get_provider(KeyProviderType.ENCRYPTED_FILE)
        await factory.update_config(encrypted_file={"master_key_password": "..."})
    """

    def __init__(
        self,
        config: KeyProviderFactoryConfig | None = None,
        audit_logger: "AuditLogger | None" = None,
    ):
        """Initialize the factory.

        Args:
            config: Backend configuration (defaults to ``default_factory_config()``)
            audit_logger: Audit logger handed to every provider built
        """
        self._config = config or default_factory_config()
        self._audit_logger = audit_logger
        self._providers: dict[KeyProviderType, KeyProvider] = {}
        self._lock = asyncio.Lock()

    @property
    def config(self) -> KeyProviderFactoryConfig:
        """Current configuration."""
        return self._config

    async def get_provider(self, kind: KeyProviderType | str | None = None) -> KeyProvider:
        """Get the provider for a backend kind, building it on first use.

        Args:
            kind: Backend kind (defaults to the configured default)

        Returns:
            The cached provider instance

        Raises:
            ProviderConfigurationError: If the backend is misconfigured
        """
        kind = KeyProviderType(kind) if kind is not None else self._config.default_provider
        async with self._lock:
            provider = self._providers.get(kind)
            if provider is None:
                provider = self._create(kind)
                self._providers[kind] = provider
                logger.info("key_provider_created", provider=kind.value)
            return provider

    def _create(self, kind: KeyProviderType) -> KeyProvider:
        if kind is KeyProviderType.ENV:
            return EnvKeyProvider(self._config.env, audit_logger=self._audit_logger)

        if kind is KeyProviderType.ENCRYPTED_FILE:
            try:
                ensure_key_directory(Path(self._config.encrypted_file.key_directory))
            except OSError as e:
                raise BackendUnavailableError(kind.value, e) from e
            return EncryptedFileKeyProvider(
                self._config.encrypted_file, audit_logger=self._audit_logger
            )

        if kind is KeyProviderType.VAULT:
            if not self._config.vault.url:
                raise ProviderConfigurationError("Vault provider requires a URL")
            return VaultKeyProvider(self._config.vault, audit_logger=self._audit_logger)

        raise ProviderConfigurationError(f"Unknown key provider type: {kind}")

    async def update_config(self, **changes: Any) -> None:
        """Merge configuration changes and drop providers they affect.

        Sub-configs are merged field by field, so
        ``update_config(vault={"url": "..."})`` keeps the other vault fields.

        Raises:
            ValueError: If a field name is unknown
        """
        async with self._lock:
            previous = self._config
            self._config = merge_config(previous, changes)

            for kind, attr in _SUB_CONFIGS.items():
                if getattr(previous, attr) == getattr(self._config, attr):
                    continue
                provider = self._providers.pop(kind, None)
                if provider is not None:
                    await provider.close()
                    logger.info("key_provider_invalidated", provider=kind.value)

    async def close(self) -> None:
        """Close every cached provider."""
        async with self._lock:
            providers = list(self._providers.values())
            self._providers.clear()
        for provider in providers:
            await provider.close()
        logger.debug("key_provider_factory_closed", count=len(providers))
