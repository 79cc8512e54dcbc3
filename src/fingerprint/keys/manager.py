"""Key manager facade.

Routes each key type to a storage backend, resolves default key IDs, and
records every key operation in the audit log.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any

from fingerprint.audit.types import AuditEventType, LogLevel
from fingerprint.config.settings import Environment, Settings, get_settings
from fingerprint.core.logging import get_logger
from fingerprint.keys.config import KeyProviderType
from fingerprint.keys.factory import KeyProviderFactory
from fingerprint.keys.protocol import KeyProvider
from fingerprint.keys.types import TAG_KEY_TYPE, KeyMetadata, KeyType

if TYPE_CHECKING:
    from fingerprint.audit.logger import AuditLogger

logger = get_logger(__name__)

DEFAULT_ACTOR = "system"


def _default_bindings() -> dict[KeyType, KeyProviderType | KeyProvider]:
    return {
        KeyType.DEPLOYMENT: KeyProviderType.ENV,
        KeyType.WALLET: KeyProviderType.ENCRYPTED_FILE,
        KeyType.SIGNING: KeyProviderType.ENCRYPTED_FILE,
        KeyType.API: KeyProviderType.ENV,
    }


class KeyManager:
    """Facade for key access by key type.

    Default backend bindings:
    - DEPLOYMENT, API: environment provider
    - WALLET, SIGNING: encrypted file provider (Vault in production)

    Example:
        manager = KeyManager(KeyProviderFactory(), audit_logger)
        await manager.initialize(master_password="...", environment="development")
        private_key = await manager.get_key(KeyType.WALLET)
    """

    def __init__(
        self,
        factory: KeyProviderFactory,
        audit_logger: "AuditLogger | None" = None,
        settings: Settings | None = None,
    ):
        """Initialize the key manager.

        Args:
            factory: Provider factory
            audit_logger: Audit logger for key operations
            settings: Settings used for defaults (defaults to get_settings())
        """
        self.factory = factory
        self.audit_logger = audit_logger
        self.settings = settings or get_settings()
        self._bindings = _default_bindings()

    async def initialize(
        self,
        master_password: str | None = None,
        environment: Environment | str = Environment.DEVELOPMENT,
    ) -> None:
        """Configure backends for an environment.

        In production WALLET and SIGNING keys move to Vault. Elsewhere the
        encrypted file backend is configured from settings, with an explicit
        ``master_password`` taking precedence over MASTER_KEY_PASSWORD.

        Args:
            master_password: Password for the encrypted file backend
            environment: Execution environment
        """
        environment = Environment(environment)
        settings = self.settings

        if environment is Environment.PRODUCTION:
            self._bindings[KeyType.WALLET] = KeyProviderType.VAULT
            self._bindings[KeyType.SIGNING] = KeyProviderType.VAULT
            await self.factory.update_config(
                vault={
                    "url": settings.vault_url or "",
                    "token": settings.get_secret_value("vault_token"),
                    "key_prefix": settings.vault_key_prefix,
                    "mount_point": settings.vault_mount_point,
                }
            )
        else:
            await self.factory.update_config(
                env={"prefix": settings.key_env_prefix},
                encrypted_file={
                    "key_directory": settings.key_directory,
                    "master_key_password": (
                        master_password or settings.get_secret_value("master_key_password")
                    ),
                    "master_key": settings.get_secret_value("master_key"),
                },
            )

        bindings = {key_type.value: self._binding_name(key_type) for key_type in KeyType}
        logger.info("key_manager_initialized", environment=environment.value, bindings=bindings)
        if self.audit_logger is not None:
            await self.audit_logger.log(
                LogLevel.INFO,
                AuditEventType.CONFIGURATION_CHANGE,
                "Key manager initialized",
                DEFAULT_ACTOR,
                details={"environment": environment.value, "bindings": bindings},
            )

    def set_provider_for_key_type(
        self, key_type: KeyType, provider: KeyProviderType | KeyProvider
    ) -> None:
        """Bind a key type to a backend kind or to a concrete provider."""
        if isinstance(provider, (KeyProviderType, str)):
            provider = KeyProviderType(provider)
        self._bindings[KeyType(key_type)] = provider
        logger.debug(
            "key_type_provider_set",
            key_type=KeyType(key_type).value,
            provider=self._binding_name(KeyType(key_type)),
        )

    def _binding_name(self, key_type: KeyType) -> str:
        binding = self._bindings[key_type]
        value = getattr(binding, "value", None)
        return value if isinstance(value, str) else type(binding).__name__

    async def get_provider(self, key_type: KeyType) -> KeyProvider:
        """Resolve the provider bound to a key type."""
        binding = self._bindings[KeyType(key_type)]
        if isinstance(binding, str):
            return await self.factory.get_provider(binding)
        return binding

    def get_default_key_id(self, key_type: KeyType) -> str:
        """Default key ID for a key type, from settings or ``default_<type>_key``."""
        key_type = KeyType(key_type)
        configured: str | None = getattr(self.settings, f"{key_type.value}_key_id", None)
        return configured or f"default_{key_type.value}_key"

    # ----------------------------------------------------------------
    # Key operations
    # ----------------------------------------------------------------

    async def get_key(
        self,
        key_type: KeyType,
        key_id: str | None = None,
        *,
        actor: str = DEFAULT_ACTOR,
    ) -> str:
        """Get a secret by type, using the type's default key ID if none is given.

        Raises:
            KeyProviderError: Any backend error, after it has been audited
        """
        key_type = KeyType(key_type)
        key_id = key_id or self.get_default_key_id(key_type)
        provider = await self.get_provider(key_type)
        try:
            secret = await provider.get_key(key_id)
        except Exception as e:
            await self._audit_failure(AuditEventType.KEY_ACCESS, "key_read", key_type, key_id, actor, e)
            raise
        await self._audit(AuditEventType.KEY_ACCESS, "key_read", key_type, key_id, actor)
        return secret

    async def store_key(
        self,
        key_type: KeyType,
        secret: str,
        *,
        key_id: str | None = None,
        expires_at: datetime | None = None,
        rotation_due: datetime | None = None,
        tags: dict[str, str] | None = None,
        actor: str = DEFAULT_ACTOR,
    ) -> str:
        """Store a secret, tagging it with its key type unless the caller already did.

        Returns:
            The key ID
        """
        key_type = KeyType(key_type)
        tags = dict(tags or {})
        tags.setdefault(TAG_KEY_TYPE, key_type.value)
        provider = await self.get_provider(key_type)
        target = key_id or "<generated>"
        try:
            new_key_id = await provider.store_key(
                secret,
                key_id=key_id,
                expires_at=expires_at,
                rotation_due=rotation_due,
                tags=tags,
            )
        except Exception as e:
            await self._audit_failure(AuditEventType.KEY_CREATION, "key_store", key_type, target, actor, e)
            raise
        await self._audit(AuditEventType.KEY_CREATION, "key_store", key_type, new_key_id, actor)
        return new_key_id

    async def list_keys(self, key_type: KeyType, *, actor: str = DEFAULT_ACTOR) -> list[KeyMetadata]:
        """List keys tagged with a type, plus keys carrying no type tag."""
        key_type = KeyType(key_type)
        provider = await self.get_provider(key_type)
        try:
            all_keys = await provider.list_keys()
        except Exception as e:
            await self._audit_failure(AuditEventType.KEY_ACCESS, "key_list", key_type, None, actor, e)
            raise
        keys = [m for m in all_keys if m.key_type in (None, "", key_type.value)]
        await self._audit(
            AuditEventType.KEY_ACCESS, "key_list", key_type, None, actor, {"count": len(keys)}
        )
        return keys

    async def delete_key(self, key_type: KeyType, key_id: str, *, actor: str = DEFAULT_ACTOR) -> bool:
        """Delete a key.

        Returns:
            True if deleted, False if not found
        """
        key_type = KeyType(key_type)
        provider = await self.get_provider(key_type)
        try:
            deleted = await provider.delete_key(key_id)
        except Exception as e:
            await self._audit_failure(AuditEventType.KEY_DELETION, "key_delete", key_type, key_id, actor, e)
            raise
        await self._audit(
            AuditEventType.KEY_DELETION, "key_delete", key_type, key_id, actor, {"deleted": deleted}
        )
        return deleted

    async def rotate_key(
        self,
        key_type: KeyType,
        key_id: str | None = None,
        new_secret: str | None = None,
        *,
        actor: str = DEFAULT_ACTOR,
    ) -> str:
        """Rotate a key, using the type's default key ID if none is given.

        Returns:
            The new key ID
        """
        key_type = KeyType(key_type)
        key_id = key_id or self.get_default_key_id(key_type)
        provider = await self.get_provider(key_type)
        try:
            new_key_id = await provider.rotate_key(key_id, new_secret=new_secret)
        except Exception as e:
            await self._audit_failure(AuditEventType.KEY_ROTATION, "key_rotate", key_type, key_id, actor, e)
            raise
        await self._audit(
            AuditEventType.KEY_ROTATION,
            "key_rotate",
            key_type,
            key_id,
            actor,
            {"newKeyId": new_key_id, "rekeyed": new_secret is not None},
        )
        return new_key_id

    async def get_key_metadata(
        self,
        key_type: KeyType,
        key_id: str | None = None,
        *,
        actor: str = DEFAULT_ACTOR,
    ) -> KeyMetadata:
        """Get key metadata, using the type's default key ID if none is given."""
        key_type = KeyType(key_type)
        key_id = key_id or self.get_default_key_id(key_type)
        provider = await self.get_provider(key_type)
        try:
            metadata = await provider.get_key_metadata(key_id)
        except Exception as e:
            await self._audit_failure(AuditEventType.KEY_ACCESS, "key_metadata", key_type, key_id, actor, e)
            raise
        await self._audit(AuditEventType.KEY_ACCESS, "key_metadata", key_type, key_id, actor)
        return metadata

    # ----------------------------------------------------------------
    # Auditing
    # ----------------------------------------------------------------

    async def _audit(
        self,
        event_type: AuditEventType,
        operation: str,
        key_type: KeyType,
        key_id: str | None,
        actor: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        if self.audit_logger is None:
            return
        await self.audit_logger.log(
            LogLevel.INFO,
            event_type,
            operation,
            actor,
            target=key_id,
            result="success",
            details={"keyType": key_type.value, **(details or {})},
        )

    async def _audit_failure(
        self,
        event_type: AuditEventType,
        operation: str,
        key_type: KeyType,
        key_id: str | None,
        actor: str,
        error: Exception,
    ) -> None:
        logger.warning(
            "key_operation_failed",
            operation=operation,
            key_type=key_type.value,
            key_id=key_id,
            error_type=type(error).__name__,
        )
        if self.audit_logger is None:
            return
        await self.audit_logger.log(
            LogLevel.WARNING,
            event_type,
            operation,
            actor,
            target=key_id,
            result="failure",
            details={"keyType": key_type.value, "error": str(error), "errorType": type(error).__name__},
        )

    async def close(self) -> None:
        """Close every provider built by the factory."""
        await self.factory.close()
