"""Key provider protocol and error taxonomy.

This module defines the abstract protocol that all key storage
backends must follow, and the exceptions they raise.
"""

from datetime import datetime
from typing import Protocol, runtime_checkable

from fingerprint.keys.types import KeyMetadata
from fingerprint.utils.exceptions import ConfigurationError, FingerprintError


@runtime_checkable
class KeyProvider(Protocol):
    """Protocol for key storage backends.

    All providers must implement this protocol to ensure consistent
    behavior across backends (environment, encrypted files, Vault).
    Secret values are opaque strings and are never logged.
    """

    async def get_key(self, key_id: str) -> str:
        """Retrieve a secret.

        If auto-rotation is enabled and the key is due, the key is rotated
        first and the secret is read from the new key.

        Args:
            key_id: Identifier of the key

        Returns:
            The secret value

        Raises:
            KeyNotFoundError: If the key does not exist
            KeyExpiredError: If the key has expired and expiration is enforced
            KeyDecryptionError: If the stored secret cannot be decrypted
            BackendUnavailableError: If the store cannot be reached
        """
        ...

    async def store_key(
        self,
        secret: str,
        *,
        key_id: str | None = None,
        expires_at: datetime | None = None,
        rotation_due: datetime | None = None,
        tags: dict[str, str] | None = None,
    ) -> str:
        """Store a secret with metadata.

        Args:
            secret: Secret value to store
            key_id: Optional identifier (generated if omitted)
            expires_at: Optional expiration time
            rotation_due: Optional scheduled rotation time
            tags: Optional annotations

        Returns:
            The key ID

        Raises:
            KeyValidationError: If the secret or metadata is malformed
            BackendUnavailableError: If the store cannot be written
        """
        ...

    async def list_keys(self) -> list[KeyMetadata]:
        """List metadata for every stored key (never secret values).

        Returns:
            List of metadata, empty if no keys exist
        """
        ...

    async def delete_key(self, key_id: str) -> bool:
        """Delete a key.

        Args:
            key_id: Identifier of the key

        Returns:
            True if deleted, False if not found
        """
        ...

    async def rotate_key(self, key_id: str, *, new_secret: str | None = None) -> str:
        """Rotate a key to a new identifier.

        Without ``new_secret`` the current secret is re-stored under the
        new identifier; with it, the new key holds the supplied value.

        Args:
            key_id: Key to rotate
            new_secret: Optional replacement secret value

        Returns:
            The new key ID

        Raises:
            KeyNotFoundError: If the key does not exist
        """
        ...

    async def get_key_metadata(self, key_id: str) -> KeyMetadata:
        """Get metadata for a key.

        Raises:
            KeyNotFoundError: If the key does not exist
        """
        ...

    async def health_check(self) -> bool:
        """Check if the backend is healthy."""
        ...

    async def close(self) -> None:
        """Close connections and cleanup resources."""
        ...


class KeyProviderError(FingerprintError):
    """Base exception for key storage errors."""

    pass


class KeyNotFoundError(KeyProviderError):
    """Raised when a key is not found."""

    def __init__(self, key_id: str):
        self.key_id = key_id
        super().__init__(f"Key not found: {key_id}")


class KeyExpiredError(KeyProviderError):
    """Raised when reading a key past its expiration time."""

    def __init__(self, key_id: str, expired_at: datetime | None = None):
        self.key_id = key_id
        self.expired_at = expired_at
        when = f" at {expired_at.isoformat()}" if expired_at else ""
        super().__init__(f"Key expired{when}: {key_id}")


class KeyDecryptionError(KeyProviderError):
    """Raised when a stored key cannot be decrypted (wrong key or tampered data)."""

    def __init__(self, key_id: str, cause: Exception | None = None, message: str | None = None):
        self.key_id = key_id
        self.cause = cause
        super().__init__(message or f"Failed to decrypt key: {key_id}")


class CorruptKeyRecordError(KeyDecryptionError):
    """Raised when a stored key record cannot be parsed."""

    def __init__(self, key_id: str, cause: Exception | None = None):
        super().__init__(key_id, cause, f"Corrupt key record: {key_id}")


class BackendUnavailableError(KeyProviderError):
    """Raised when the key store cannot be reached or written."""

    def __init__(self, backend: str, cause: Exception | None = None):
        self.backend = backend
        self.cause = cause
        super().__init__(f"Key backend unavailable: {backend}")


class KeyAccessDeniedError(KeyProviderError):
    """Raised when the backend refuses access to a key."""

    def __init__(self, key_id: str, cause: Exception | None = None):
        self.key_id = key_id
        self.cause = cause
        super().__init__(f"Access denied to key: {key_id}")


class KeyValidationError(KeyProviderError):
    """Raised when a secret or its metadata fails validation."""

    pass


class BackendNotImplementedError(KeyProviderError):
    """Raised when a backend feature has no integration yet."""

    def __init__(self, backend: str, feature: str):
        self.backend = backend
        self.feature = feature
        super().__init__(f"{backend} backend does not implement {feature}")


class ProviderConfigurationError(KeyProviderError, ConfigurationError):
    """Raised when a provider is requested without the configuration it needs."""

    pass
