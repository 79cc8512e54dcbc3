"""Environment-seeded key provider for development and testing.

Keys are read from environment variables at startup and kept in an
in-memory store. Writes never touch the process environment. Nothing is
encrypted: this backend offers no confidentiality beyond OS process
isolation and must not be used in production.
"""

import os
from collections.abc import Mapping
from typing import TYPE_CHECKING

from fingerprint.config.settings import Settings
from fingerprint.core.logging import get_logger
from fingerprint.keys.base import BaseKeyProvider, StoredRecord
from fingerprint.keys.config import EnvKeyProviderConfig
from fingerprint.keys.types import KEY_ID_PATTERN, KeyMetadata

if TYPE_CHECKING:
    from fingerprint.audit.logger import AuditLogger

logger = get_logger(__name__)

# Application settings such as KEY_DIRECTORY share the default prefix
RESERVED_ENV_NAMES = frozenset(name.upper() for name in Settings.model_fields)


class EnvKeyProvider(BaseKeyProvider):
    """Key provider backed by an in-memory store seeded from the environment.

    Environment variable naming convention:
    - {prefix}{KEY_ID}
    - e.g., KEY_default_api_key=sk-... is readable as key "default_api_key"

    Variables set after construction are picked up lazily on a cache miss.

    Example:
        provider = EnvKeyProvider()
        secret = await provider.get_key("default_api_key")
    """

    backend_name = "env"

    def __init__(
        self,
        config: EnvKeyProviderConfig | None = None,
        audit_logger: "AuditLogger | None" = None,
        environ: Mapping[str, str] | None = None,
    ):
        """Initialize the environment key provider.

        Args:
            config: Configuration for the environment provider
            audit_logger: Optional audit logger
            environ: Environment mapping to read (defaults to os.environ)
        """
        self.config = config or EnvKeyProviderConfig()
        super().__init__(self.config.options, audit_logger)
        self._environ = environ if environ is not None else os.environ
        self._secrets: dict[str, str] = {}
        self._metadata: dict[str, KeyMetadata] = {}

        logger.warning(
            "env_key_provider_insecure",
            message=(
                "Environment key provider stores secrets unencrypted in process memory; "
                "use it for development and testing only"
            ),
            prefix=self.config.prefix,
        )
        self._load_from_env()

    def _env_var_name(self, key_id: str) -> str:
        return f"{self.config.prefix}{key_id}"

    def _load_from_env(self) -> None:
        """Seed the store from environment variables matching the prefix."""
        prefix = self.config.prefix
        for name, value in self._environ.items():
            if not name.startswith(prefix) or not value or name.upper() in RESERVED_ENV_NAMES:
                continue
            key_id = name[len(prefix) :]
            if not KEY_ID_PATTERN.match(key_id):
                continue
            self._seed(key_id, value)
        logger.debug("env_keys_loaded", count=len(self._secrets))

    def _seed(self, key_id: str, value: str) -> None:
        self._secrets[key_id] = value
        self._metadata[key_id] = KeyMetadata(key_id=key_id, tags={"source": "environment"})

    def _check_environment(self, key_id: str) -> None:
        """Pick up a variable set after construction."""
        name = self._env_var_name(key_id)
        if key_id in self._deleted_ids or name.upper() in RESERVED_ENV_NAMES:
            return
        value = self._environ.get(name)
        if value:
            self._seed(key_id, value)
            logger.debug("env_key_loaded_lazily", key_id=key_id)

    async def _load_record(self, key_id: str) -> StoredRecord | None:
        if key_id not in self._metadata:
            self._check_environment(key_id)
        metadata = self._metadata.get(key_id)
        if metadata is None:
            return None
        return StoredRecord(metadata=metadata, payload=self._secrets[key_id])

    async def _reveal(self, record: StoredRecord) -> str:
        return record.payload

    async def _write_record(self, secret: str, metadata: KeyMetadata) -> None:
        self._secrets[metadata.key_id] = secret
        self._metadata[metadata.key_id] = metadata

    async def _write_metadata(self, metadata: KeyMetadata) -> None:
        if metadata.key_id in self._secrets:
            self._metadata[metadata.key_id] = metadata

    async def _remove_record(self, key_id: str) -> bool:
        if key_id not in self._metadata:
            self._check_environment(key_id)
        if key_id not in self._metadata:
            return False
        del self._metadata[key_id]
        del self._secrets[key_id]
        return True

    async def _list_metadata(self) -> list[KeyMetadata]:
        return list(self._metadata.values())
