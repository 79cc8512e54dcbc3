"""Key provider configuration.

This module provides configuration for the key storage backends,
including backend selection and per-backend options.
"""

from dataclasses import dataclass, field, fields, replace
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from fingerprint.core.encryption import DEFAULT_SALT


class KeyProviderType(str, Enum):
    """Supported key storage backends."""

    ENV = "env"
    ENCRYPTED_FILE = "encrypted-file"
    VAULT = "vault"


@dataclass(frozen=True, slots=True)
class KeyProviderOptions:
    """Behavior shared by all key providers.

    Attributes:
        auto_rotate: Rotate keys on read once their rotation time has passed
        enforce_expiration: Refuse to read keys past their expiration time
        audit_access: Track last access time and access count on reads
        rotation_interval: Schedule the next rotation this long after a rotation
    """

    auto_rotate: bool = False
    enforce_expiration: bool = True
    audit_access: bool = True
    rotation_interval: timedelta | None = None


@dataclass(frozen=True, slots=True)
class EnvKeyProviderConfig:
    """Configuration for the environment-seeded provider (development/testing).

    Attributes:
        prefix: Environment variable prefix
        options: Shared provider options
    """

    prefix: str = "KEY_"
    options: KeyProviderOptions = field(default_factory=KeyProviderOptions)


@dataclass(frozen=True, slots=True)
class EncryptedFileKeyProviderConfig:
    """Configuration for the encrypted file provider.

    The master key is taken from ``master_key`` if set, otherwise derived
    from ``master_key_password`` and ``salt``. With neither, a random key is
    generated and kept in ``<key_directory>/.master.key``.

    Attributes:
        key_directory: Directory holding one ``.key`` file per key
        master_key: Raw 32-byte key or its hex encoding
        master_key_password: Password to derive the master key from
        salt: PBKDF2 salt for password derivation
        options: Shared provider options
    """

    key_directory: Path = Path("./keys")
    master_key: bytes | str | None = field(default=None, repr=False)
    master_key_password: str | None = field(default=None, repr=False)
    salt: bytes = DEFAULT_SALT
    options: KeyProviderOptions = field(default_factory=KeyProviderOptions)


@dataclass(frozen=True, slots=True)
class VaultKeyProviderConfig:
    """Configuration for HashiCorp Vault backend.

    Attributes:
        url: Vault server URL
        token: Vault token (for token auth)
        key_prefix: Path prefix namespacing all keys
        mount_point: KV v2 secrets engine mount point
        namespace: Vault namespace (enterprise feature)
        auth_method: Authentication method
        role_id: AppRole role ID
        secret_id: AppRole secret ID
        tls_verify: Whether to verify TLS certificates
        ca_cert: Path to CA certificate
        client_cert: Path to client certificate
        client_key: Path to client key
        timeout: Request timeout in seconds
        options: Shared provider options
    """

    url: str = ""
    token: str | None = field(default=None, repr=False)
    key_prefix: str = "fingerprint/"
    mount_point: str = "secret"
    namespace: str | None = None
    auth_method: Literal["token", "approle", "kubernetes", "aws", "gcp"] = "token"
    role_id: str | None = None
    secret_id: str | None = field(default=None, repr=False)
    tls_verify: bool = True
    ca_cert: str | None = None
    client_cert: str | None = None
    client_key: str | None = None
    timeout: int = 30
    options: KeyProviderOptions = field(default_factory=KeyProviderOptions)


@dataclass
class KeyProviderFactoryConfig:
    """Main configuration for key provider construction.

    Attributes:
        default_provider: Backend used when none is requested explicitly
        env: Environment provider configuration
        encrypted_file: Encrypted file provider configuration
        vault: Vault provider configuration
    """

    default_provider: KeyProviderType = KeyProviderType.ENV
    env: EnvKeyProviderConfig = field(default_factory=EnvKeyProviderConfig)
    encrypted_file: EncryptedFileKeyProviderConfig = field(
        default_factory=EncryptedFileKeyProviderConfig
    )
    vault: VaultKeyProviderConfig = field(default_factory=VaultKeyProviderConfig)


def merge_config(current: Any, changes: dict[str, Any]) -> Any:
    """Merge a dict of changes into a frozen config dataclass.

    Nested dataclass fields are merged recursively when the change is a dict;
    keys the dataclass does not define are rejected.

    Args:
        current: Existing dataclass instance
        changes: Field values to change

    Returns:
        New dataclass instance

    Raises:
        ValueError: If a key is not a field of the dataclass
    """
    known = {f.name for f in fields(current)}
    unknown = set(changes) - known
    if unknown:
        raise ValueError(
            f"Unknown {type(current).__name__} fields: {', '.join(sorted(unknown))}"
        )

    updates: dict[str, Any] = {}
    for name, value in changes.items():
        existing = getattr(current, name)
        if isinstance(value, dict) and hasattr(existing, "__dataclass_fields__"):
            updates[name] = merge_config(existing, value)
        else:
            updates[name] = value
    return replace(current, **updates)
