"""HashiCorp Vault key provider.

Secrets live in a KV v2 engine under ``<mount_point>/<key_prefix><key_id>``
as ``{"value": <secret>}``. Key metadata is kept in the secret's custom
metadata so listing never reads secret values.
"""

from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any, TypeVar

import hvac
from hvac import exceptions as hvac_exceptions

from fingerprint.audit.types import AuditEventType, LogLevel
from fingerprint.core.logging import get_logger
from fingerprint.keys.base import BaseKeyProvider, StoredRecord
from fingerprint.keys.config import VaultKeyProviderConfig
from fingerprint.keys.protocol import (
    BackendNotImplementedError,
    BackendUnavailableError,
    CorruptKeyRecordError,
    KeyAccessDeniedError,
    KeyNotFoundError,
    ProviderConfigurationError,
)
from fingerprint.keys.types import KeyMetadata, utc_now

if TYPE_CHECKING:
    from fingerprint.audit.logger import AuditLogger

logger = get_logger(__name__)

T = TypeVar("T")

SUPPORTED_AUTH_METHODS = ("token", "approle")
TAG_PREFIX = "tag."
_METADATA_FIELDS = ("keyId", "createdAt", "expiresAt", "rotationDue", "lastAccessed", "accessCount")


def to_custom_metadata(metadata: KeyMetadata) -> dict[str, str]:
    """Flatten key metadata into Vault custom metadata (string map)."""
    data = metadata.to_dict()
    custom = {name: str(data[name]) for name in _METADATA_FIELDS if data.get(name) is not None}
    for name, value in metadata.tags.items():
        custom[f"{TAG_PREFIX}{name}"] = value
    return custom


def from_custom_metadata(custom: dict[str, str]) -> KeyMetadata:
    """Rebuild key metadata from Vault custom metadata.

    Raises:
        KeyError: If keyId is missing
        ValueError: If a field is malformed
    """
    data: dict[str, Any] = {name: custom[name] for name in _METADATA_FIELDS if name in custom}
    data["tags"] = {
        name[len(TAG_PREFIX) :]: value
        for name, value in custom.items()
        if name.startswith(TAG_PREFIX)
    }
    return KeyMetadata.from_dict(data)


class VaultKeyProvider(BaseKeyProvider):
    """Key provider backed by HashiCorp Vault's KV v2 secrets engine.

    Supports token and AppRole authentication. hvac is synchronous, so
    every call runs in the default executor.

    Example:
        provider = VaultKeyProvider(
            VaultKeyProviderConfig(
                url="https://vault.example.com:8200",
                token="s.xxxxxxx",
            )
        )
        secret = await provider.get_key("wallet")
    """

    backend_name = "vault"

    def __init__(
        self,
        config: VaultKeyProviderConfig,
        audit_logger: "AuditLogger | None" = None,
        client: Any | None = None,
    ):
        """Initialize the Vault key provider.

        Args:
            config: Vault configuration
            audit_logger: Optional audit logger
            client: Pre-built hvac client (skips connection setup)

        Raises:
            ProviderConfigurationError: If the URL or credentials are missing
            BackendNotImplementedError: If the auth method is not supported
        """
        if not config.url:
            raise ProviderConfigurationError("Vault provider requires a URL")
        if config.auth_method not in SUPPORTED_AUTH_METHODS:
            raise BackendNotImplementedError(self.backend_name, f"{config.auth_method} auth")
        if config.auth_method == "approle" and not (config.role_id and config.secret_id):
            raise ProviderConfigurationError("AppRole auth requires role_id and secret_id")

        self.config = config
        super().__init__(config.options, audit_logger)
        self._client = client

    async def _get_client(self) -> Any:
        if self._client is None:
            self._client = await self._run_blocking(self._connect)
            logger.info("vault_connected", url=self.config.url, auth_method=self.config.auth_method)
        return self._client

    def _connect(self) -> Any:
        config = self.config
        client = hvac.Client(
            url=config.url,
            token=config.token if config.auth_method == "token" else None,
            namespace=config.namespace,
            verify=config.ca_cert or config.tls_verify,
            cert=(config.client_cert, config.client_key) if config.client_cert else None,
            timeout=config.timeout,
        )
        try:
            if config.auth_method == "approle":
                client.auth.approle.login(role_id=config.role_id, secret_id=config.secret_id)
        except hvac_exceptions.Forbidden as e:
            raise KeyAccessDeniedError("*", e) from e
        except (hvac_exceptions.VaultError, OSError) as e:
            raise BackendUnavailableError(self.backend_name, e) from e
        return client

    def _path(self, key_id: str) -> str:
        return f"{self.config.key_prefix}{key_id}"

    async def _call(self, key_id: str, func: Callable[[Any], T]) -> T:
        """Run an hvac call against the client, mapping transport errors.

        InvalidPath propagates so callers can decide what "missing" means.
        """
        client = await self._get_client()
        try:
            return await self._run_blocking(func, client)
        except hvac_exceptions.InvalidPath:
            raise
        except hvac_exceptions.Forbidden as e:
            logger.warning("vault_access_denied", key_id=key_id)
            raise KeyAccessDeniedError(key_id, e) from e
        except (hvac_exceptions.VaultError, OSError) as e:
            logger.error("vault_request_failed", key_id=key_id, error=str(e))
            raise BackendUnavailableError(self.backend_name, e) from e

    # ----------------------------------------------------------------
    # Storage primitives
    # ----------------------------------------------------------------

    async def _load_record(self, key_id: str) -> StoredRecord | None:
        path = self._path(key_id)
        mount = self.config.mount_point
        try:
            response = await self._call(
                key_id,
                lambda c: c.secrets.kv.v2.read_secret_metadata(path=path, mount_point=mount),
            )
        except hvac_exceptions.InvalidPath:
            return None
        if not response:
            return None

        data = response.get("data") or {}
        custom = data.get("custom_metadata") or {}
        try:
            if custom:
                metadata = from_custom_metadata(custom)
            else:
                # Written outside this provider, no key metadata attached
                metadata = KeyMetadata(key_id=key_id, created_at=_vault_time(data))
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptKeyRecordError(key_id, e) from e
        return StoredRecord(metadata=metadata)

    async def _reveal(self, record: StoredRecord) -> str:
        key_id = record.metadata.key_id
        path = self._path(key_id)
        mount = self.config.mount_point
        try:
            response = await self._call(
                key_id,
                lambda c: c.secrets.kv.v2.read_secret_version(
                    path=path, mount_point=mount, raise_on_deleted_version=True
                ),
            )
        except hvac_exceptions.InvalidPath as e:
            raise KeyNotFoundError(key_id) from e

        try:
            value = response["data"]["data"]["value"]
        except (KeyError, TypeError) as e:
            raise CorruptKeyRecordError(key_id, e) from e
        if not isinstance(value, str):
            raise CorruptKeyRecordError(key_id)
        return value

    async def _write_record(self, secret: str, metadata: KeyMetadata) -> None:
        path = self._path(metadata.key_id)
        mount = self.config.mount_point
        # cas=0 only writes if the path does not exist yet
        await self._call(
            metadata.key_id,
            lambda c: c.secrets.kv.v2.create_or_update_secret(
                path=path, secret={"value": secret}, cas=0, mount_point=mount
            ),
        )
        await self._write_metadata(metadata)

    async def _write_metadata(self, metadata: KeyMetadata) -> None:
        path = self._path(metadata.key_id)
        mount = self.config.mount_point
        custom = to_custom_metadata(metadata)
        try:
            await self._call(
                metadata.key_id,
                lambda c: c.secrets.kv.v2.update_metadata(
                    path=path, custom_metadata=custom, mount_point=mount
                ),
            )
        except hvac_exceptions.InvalidPath as e:
            raise KeyNotFoundError(metadata.key_id) from e

    async def _remove_record(self, key_id: str) -> bool:
        if await self._load_record(key_id) is None:
            return False
        path = self._path(key_id)
        mount = self.config.mount_point
        try:
            await self._call(
                key_id,
                lambda c: c.secrets.kv.v2.delete_metadata_and_all_versions(
                    path=path, mount_point=mount
                ),
            )
        except hvac_exceptions.InvalidPath:
            return False
        return True

    async def _list_metadata(self) -> list[KeyMetadata]:
        prefix = self.config.key_prefix
        mount = self.config.mount_point
        try:
            response = await self._call(
                prefix,
                lambda c: c.secrets.kv.v2.list_secrets(path=prefix, mount_point=mount),
            )
        except hvac_exceptions.InvalidPath:
            return []

        names = ((response or {}).get("data") or {}).get("keys") or []
        found: list[KeyMetadata] = []
        for name in names:
            if name.endswith("/"):
                continue
            try:
                record = await self._load_record(name)
            except CorruptKeyRecordError as e:
                logger.warning("vault_key_unreadable", key_id=name, error=str(e.cause or e))
                await self._report(
                    LogLevel.WARNING,
                    AuditEventType.KEY_ACCESS,
                    "Skipped unreadable key record while listing keys",
                    name,
                    "failure",
                    {"error": str(e.cause or e)},
                )
                continue
            if record is not None:
                found.append(record.metadata)
        return found

    async def health_check(self) -> bool:
        """Check that Vault is reachable and the client is authenticated."""
        try:
            client = await self._get_client()
            return bool(await self._run_blocking(client.is_authenticated))
        except (BackendUnavailableError, KeyAccessDeniedError, hvac_exceptions.VaultError, OSError):
            return False

    async def close(self) -> None:
        """Drop the client and its HTTP session."""
        if self._client is not None:
            adapter = getattr(self._client, "adapter", None)
            if adapter is not None:
                adapter.close()
            self._client = None
            logger.info("vault_disconnected", url=self.config.url)


def _vault_time(data: dict[str, Any]) -> datetime:
    created = data.get("created_time")
    if not created:
        return utc_now()
    return datetime.fromisoformat(str(created).replace("Z", "+00:00"))
