"""Audit logger for security-relevant operations.

Every key access, rotation, deletion, signature and transaction passes
through ``AuditLogger.log``, which filters by level, redacts secrets and
fans the entry out to the enabled sinks.
"""

import secrets
import time
import traceback
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx

from fingerprint.audit.redaction import REDACTED, redact_secrets, sanitize_for_log
from fingerprint.audit.sinks import AuditSink, ConsoleSink, FileSink, RemoteSink
from fingerprint.audit.types import AuditEventType, AuditLogEntry, AuditResult, LogLevel
from fingerprint.config.settings import Settings, get_settings
from fingerprint.core.encryption import Encryptor, key_from_hex
from fingerprint.core.logging import get_logger
from fingerprint.keys.types import KeyType

if TYPE_CHECKING:
    from fingerprint.keys.manager import KeyManager

logger = get_logger(__name__)

AUDIT_ACTOR = "audit-logger"
_STACK_LEVELS = (LogLevel.WARNING, LogLevel.ERROR, LogLevel.CRITICAL)


@dataclass(frozen=True, slots=True)
class AuditLoggerOptions:
    """Audit logger configuration.

    Attributes:
        enable_console_logging: Emit entries through structlog
        enable_file_logging: Append entries to ``log_file_path``
        log_file_path: JSON-lines audit file
        enable_remote_logging: POST entries to ``remote_log_endpoint``
        remote_log_endpoint: Collector URL
        remote_log_api_key: Sent as the X-API-Key header
        min_log_level: Entries below this level are dropped
        include_stack_trace: Attach the call stack to WARNING and above
        log_rotation_size_mb: Rotate the audit file past this size
        encrypt_logs: Encrypt file entries with the key ``encryption_key_id``
        encryption_key_id: API-type key holding the 32-byte hex log key
    """

    enable_console_logging: bool = True
    enable_file_logging: bool = False
    log_file_path: Path = Path("./logs/audit.log")
    enable_remote_logging: bool = False
    remote_log_endpoint: str | None = None
    remote_log_api_key: str | None = field(default=None, repr=False)
    min_log_level: LogLevel = LogLevel.INFO
    include_stack_trace: bool = True
    log_rotation_size_mb: int = 10
    encrypt_logs: bool = False
    encryption_key_id: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "AuditLoggerOptions":
        """Environment-aware defaults: console in development, file in production."""
        settings = settings or get_settings()
        production = settings.is_production
        return cls(
            enable_console_logging=not production,
            enable_file_logging=production,
            log_file_path=settings.audit_log_path,
            enable_remote_logging=settings.enable_remote_logging,
            remote_log_endpoint=settings.remote_log_endpoint,
            remote_log_api_key=settings.get_secret_value("remote_log_api_key"),
            include_stack_trace=not production,
            encrypt_logs=settings.encrypt_audit_logs,
            encryption_key_id=settings.audit_encryption_key_id,
        )

    def to_safe_dict(self) -> dict[str, Any]:
        """Options as plain values with the API key redacted."""
        data = asdict(self)
        data["log_file_path"] = str(self.log_file_path)
        data["min_log_level"] = self.min_log_level.value
        if self.remote_log_api_key:
            data["remote_log_api_key"] = REDACTED
        return data


def _generate_session_id() -> str:
    return f"{int(time.time() * 1000)}-{secrets.token_hex(6)}"


class AuditLogger:
    """Leveled, redacted audit trail with console, file and remote sinks.

    Example:
        audit = AuditLogger(AuditLoggerOptions.from_settings())
        await audit.start()
        await audit.log_key_access(KeyType.WALLET, "wallet-1", actor="cli")
    """

    def __init__(
        self,
        options: AuditLoggerOptions | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the audit logger.

        Args:
            options: Logger configuration
            http_client: HTTP client for the remote sink (created if omitted)
        """
        self.options = options or AuditLoggerOptions()
        self.session_id = _generate_session_id()
        self._http_client = http_client
        self._key_manager: "KeyManager | None" = None
        self._encryptor: Encryptor | None = None
        self._sinks: list[AuditSink] = self._build_sinks()

    def _build_sinks(self) -> list[AuditSink]:
        opts = self.options
        sinks: list[AuditSink] = []
        if opts.enable_console_logging:
            sinks.append(ConsoleSink())
        if opts.enable_file_logging:
            sinks.append(
                FileSink(
                    opts.log_file_path,
                    max_bytes=opts.log_rotation_size_mb * 1024 * 1024,
                    encryptor=self._active_encryptor,
                )
            )
        if opts.enable_remote_logging:
            if opts.remote_log_endpoint:
                sinks.append(
                    RemoteSink(
                        opts.remote_log_endpoint,
                        api_key=opts.remote_log_api_key,
                        client=self._http_client,
                    )
                )
            else:
                logger.warning("audit_remote_endpoint_missing")
        return sinks

    def _active_encryptor(self) -> Encryptor | None:
        return self._encryptor if self.options.encrypt_logs else None

    @property
    def encryption_enabled(self) -> bool:
        """Whether file entries are currently encrypted."""
        return self._active_encryptor() is not None

    async def start(self) -> None:
        """Record the logger's initial configuration."""
        await self.log(
            LogLevel.INFO,
            AuditEventType.CONFIGURATION_CHANGE,
            "Audit logger initialized",
            AUDIT_ACTOR,
            details={"options": self.options.to_safe_dict()},
        )

    async def update_options(self, **changes: Any) -> None:
        """Change options, rebuild sinks and record the old and new values.

        Raises:
            ValueError: If an option name is unknown
        """
        known = {f.name for f in fields(AuditLoggerOptions)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown audit logger options: {', '.join(sorted(unknown))}")

        old = self.options
        self.options = replace(old, **changes)
        if old.encryption_key_id != self.options.encryption_key_id:
            self._encryptor = None

        previous_sinks = self._sinks
        self._sinks = self._build_sinks()
        for sink in previous_sinks:
            await sink.close()

        await self.log(
            LogLevel.INFO,
            AuditEventType.CONFIGURATION_CHANGE,
            "Audit logger options updated",
            AUDIT_ACTOR,
            details={
                "oldOptions": old.to_safe_dict(),
                "newOptions": self.options.to_safe_dict(),
            },
        )

    def set_key_manager(self, key_manager: "KeyManager") -> None:
        """Attach the key manager used to fetch the log encryption key."""
        self._key_manager = key_manager

    async def enable_encryption(self) -> bool:
        """Load the log encryption key through the key manager.

        Returns:
            True if file entries are now encrypted, False if encryption is
            not configured

        Raises:
            KeyProviderError: If the key cannot be read
            EncryptionKeyError: If the key is not 32 bytes of hex
        """
        if not self.options.encrypt_logs:
            return False
        if self._encryptor is not None:
            return True
        if self._key_manager is None or not self.options.encryption_key_id:
            logger.warning(
                "audit_encryption_unavailable",
                has_key_manager=self._key_manager is not None,
                encryption_key_id=self.options.encryption_key_id,
            )
            return False

        key_hex = await self._key_manager.get_key(
            KeyType.API, self.options.encryption_key_id, actor=AUDIT_ACTOR
        )
        self._encryptor = Encryptor(key_from_hex(key_hex))
        logger.info("audit_encryption_enabled", encryption_key_id=self.options.encryption_key_id)
        return True

    async def log(
        self,
        level: LogLevel | str,
        event_type: AuditEventType | str,
        operation: str,
        actor: str,
        target: str | None = None,
        result: AuditResult = "success",
        details: dict[str, Any] | None = None,
    ) -> AuditLogEntry | None:
        """Record an audit event.

        Args:
            level: Severity
            event_type: Event category
            operation: Description of the operation
            actor: Identity performing the operation
            target: Optional target (key ID, contract address)
            result: Outcome
            details: Optional structured details

        Returns:
            The entry as dispatched, or None if below the minimum level
        """
        level = LogLevel(level)
        if level.rank < self.options.min_log_level.rank:
            return None

        clean_details = sanitize_for_log(details) if details is not None else None
        if self.options.include_stack_trace and level in _STACK_LEVELS:
            stack = "".join(traceback.format_stack()[:-1])
            clean_details = {**(clean_details or {}), "stackTrace": redact_secrets(stack)}

        entry = AuditLogEntry(
            level=level,
            event_type=AuditEventType(event_type),
            operation=redact_secrets(operation),
            actor=actor,
            result=result,
            session_id=self.session_id,
            target=redact_secrets(target) if target is not None else None,
            details=clean_details,
        )

        for sink in self._sinks:
            try:
                await sink.write(entry)
            except Exception as e:
                logger.error("audit_sink_failed", sink=type(sink).__name__, error=str(e))
        return entry

    async def log_key_access(
        self,
        key_type: KeyType | str,
        key_id: str,
        actor: str,
        operation: str = "key_read",
        success: bool = True,
    ) -> AuditLogEntry | None:
        """Record a key access."""
        return await self.log(
            LogLevel.INFO if success else LogLevel.WARNING,
            AuditEventType.KEY_ACCESS,
            operation,
            actor,
            target=key_id,
            result="success" if success else "failure",
            details={"keyType": KeyType(key_type).value},
        )

    async def log_blockchain_transaction(
        self,
        operation: str,
        actor: str,
        contract_address: str,
        chain_id: int,
        tx_hash: str | None = None,
        success: bool = True,
        details: dict[str, Any] | None = None,
    ) -> AuditLogEntry | None:
        """Record a contract transaction targeting ``contract_address``."""
        return await self.log(
            LogLevel.INFO if success else LogLevel.WARNING,
            AuditEventType.BLOCKCHAIN_TRANSACTION,
            operation,
            actor,
            target=contract_address,
            result="success" if success else "failure",
            details={"chainId": chain_id, "txHash": tx_hash, **(details or {})},
        )

    async def log_signature_event(
        self,
        is_generation: bool,
        operation: str,
        actor: str,
        data_type: str,
        success: bool = True,
        details: dict[str, Any] | None = None,
    ) -> AuditLogEntry | None:
        """Record a signature generation or verification over ``data_type``."""
        return await self.log(
            LogLevel.INFO if success else LogLevel.WARNING,
            (
                AuditEventType.SIGNATURE_GENERATION
                if is_generation
                else AuditEventType.SIGNATURE_VERIFICATION
            ),
            operation,
            actor,
            target=data_type,
            result="success" if success else "failure",
            details=details,
        )

    async def close(self) -> None:
        """Close every sink."""
        for sink in self._sinks:
            await sink.close()
