"""Key management for AI Fingerprint.

Key providers store secrets in one of three backends (environment,
encrypted files, HashiCorp Vault). The KeyManager maps key types onto
providers and is the entry point application code should use.

Usage:
    from fingerprint.keys import KeyManager, KeyProviderFactory, KeyType

    manager = KeyManager(KeyProviderFactory())
    await manager.initialize(master_password="...")
    private_key = await manager.get_key(KeyType.WALLET)
"""

from .base import BaseKeyProvider, validate_key_id
from .config import (
    EncryptedFileKeyProviderConfig,
    EnvKeyProviderConfig,
    KeyProviderFactoryConfig,
    KeyProviderOptions,
    KeyProviderType,
    VaultKeyProviderConfig,
    merge_config,
)
from .encrypted_file import EncryptedFileKeyProvider
from .environment import EnvKeyProvider
from .factory import DEFAULT_KEY_DIRECTORY, KeyProviderFactory, default_factory_config
from .manager import KeyManager
from .protocol import (
    BackendNotImplementedError,
    BackendUnavailableError,
    CorruptKeyRecordError,
    KeyAccessDeniedError,
    KeyDecryptionError,
    KeyExpiredError,
    KeyNotFoundError,
    KeyProvider,
    KeyProviderError,
    KeyValidationError,
    ProviderConfigurationError,
)
from .types import KeyMetadata, KeyType
from .vault import VaultKeyProvider

__all__ = [
    # Protocol
    "KeyProvider",
    "BaseKeyProvider",
    "validate_key_id",
    # Types
    "KeyMetadata",
    "KeyType",
    # Configuration
    "KeyProviderType",
    "KeyProviderOptions",
    "EnvKeyProviderConfig",
    "EncryptedFileKeyProviderConfig",
    "VaultKeyProviderConfig",
    "KeyProviderFactoryConfig",
    "merge_config",
    # Providers
    "EnvKeyProvider",
    "EncryptedFileKeyProvider",
    "VaultKeyProvider",
    # Factory and manager
    "DEFAULT_KEY_DIRECTORY",
    "KeyProviderFactory",
    "default_factory_config",
    "KeyManager",
    # Exceptions
    "KeyProviderError",
    "KeyNotFoundError",
    "KeyExpiredError",
    "KeyDecryptionError",
    "CorruptKeyRecordError",
    "BackendUnavailableError",
    "KeyAccessDeniedError",
    "KeyValidationError",
    "BackendNotImplementedError",
    "ProviderConfigurationError",
]
