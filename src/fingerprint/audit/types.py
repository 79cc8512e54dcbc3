"""Audit event types and entry structure."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

AuditResult = Literal["success", "failure"]


class LogLevel(str, Enum):
    """Severity of an audit event, lowest first."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Numeric order used for minimum-level filtering."""
        return _LEVEL_ORDER.index(self)


_LEVEL_ORDER = list(LogLevel)


class AuditEventType(str, Enum):
    """Categories of security-relevant events."""

    KEY_ACCESS = "key_access"
    KEY_CREATION = "key_creation"
    KEY_ROTATION = "key_rotation"
    KEY_DELETION = "key_deletion"
    BLOCKCHAIN_TRANSACTION = "blockchain_transaction"
    SIGNATURE_GENERATION = "signature_generation"
    SIGNATURE_VERIFICATION = "signature_verification"
    CONTRACT_INTERACTION = "contract_interaction"
    WALLET_CONNECTION = "wallet_connection"
    CONFIGURATION_CHANGE = "configuration_change"
    ADMIN_ACTION = "admin_action"


@dataclass(frozen=True, slots=True)
class AuditLogEntry:
    """Immutable audit record.

    Attributes:
        level: Severity level
        event_type: Event category
        operation: Free-text description of the operation
        actor: Identity performing the operation (address or logical name)
        result: Outcome of the operation
        session_id: Identifier of the logger session that produced the entry
        target: Optional target (key ID, contract address)
        details: Optional structured details (already redacted)
        source: Where the entry originated
        timestamp: When the entry was created
    """

    level: LogLevel
    event_type: AuditEventType
    operation: str
    actor: str
    result: AuditResult
    session_id: str
    target: str | None = None
    details: dict[str, Any] | None = None
    source: Literal["server", "client"] = "server"
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON shape written by every sink."""
        data: dict[str, Any] = {
            "timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
            "level": self.level.value,
            "eventType": self.event_type.value,
            "operation": self.operation,
            "actor": self.actor,
            "result": self.result,
            "sessionId": self.session_id,
            "source": self.source,
        }
        if self.target is not None:
            data["target"] = self.target
        if self.details is not None:
            data["details"] = self.details
        return data
