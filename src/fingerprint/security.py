"""Security bootstrap.

Builds the audit logger, key provider factory and key manager once at
startup and hands them out as a single ``SecurityContext``.
"""

from dataclasses import dataclass

from fingerprint.audit.logger import AuditLogger, AuditLoggerOptions
from fingerprint.config.settings import Settings, get_settings
from fingerprint.core.logging import get_logger, setup_logging
from fingerprint.keys.factory import KeyProviderFactory
from fingerprint.keys.manager import KeyManager

logger = get_logger(__name__)


@dataclass
class SecurityContext:
    """Long-lived security components shared by the application.

    Attributes:
        settings: Settings the context was built from
        factory: Key provider factory
        audit_logger: Audit logger
        key_manager: Key manager, initialized for ``settings.environment``
    """

    settings: Settings
    factory: KeyProviderFactory
    audit_logger: AuditLogger
    key_manager: KeyManager

    async def close(self) -> None:
        """Close key providers, then the audit sinks."""
        await self.key_manager.close()
        await self.audit_logger.close()
        logger.info("security_context_closed")


async def initialize_security(
    settings: Settings | None = None,
    *,
    master_password: str | None = None,
    configure_logging: bool = True,
) -> SecurityContext:
    """Build and initialize the security components.

    Production sends audit events to the file and remote sinks; every other
    environment logs them to the console. Log encryption is enabled once the
    key manager is available to supply its key.

    Args:
        settings: Settings to use (defaults to get_settings())
        master_password: Password for the encrypted file backend, overriding
            MASTER_KEY_PASSWORD
        configure_logging: Call setup_logging() before anything else

    Returns:
        Initialized SecurityContext

    Raises:
        ConfigurationError: If a backend is misconfigured
        KeyProviderError: If the log encryption key cannot be loaded

    Example:
        context = await initialize_security()
        try:
            key = await context.key_manager.get_key(KeyType.SIGNING)
        finally:
            await context.close()
    """
    settings = settings or get_settings()
    if configure_logging:
        setup_logging()

    audit_logger = AuditLogger(AuditLoggerOptions.from_settings(settings))
    factory = KeyProviderFactory(audit_logger=audit_logger)
    key_manager = KeyManager(factory, audit_logger=audit_logger, settings=settings)

    try:
        await key_manager.initialize(
            master_password=master_password, environment=settings.environment
        )
        audit_logger.set_key_manager(key_manager)
        if settings.encrypt_audit_logs:
            await audit_logger.enable_encryption()
        await audit_logger.start()
    except Exception:
        await key_manager.close()
        await audit_logger.close()
        raise

    logger.info(
        "security_initialized",
        environment=settings.environment.value,
        audit_encryption=audit_logger.encryption_enabled,
    )
    return SecurityContext(
        settings=settings,
        factory=factory,
        audit_logger=audit_logger,
        key_manager=key_manager,
    )
