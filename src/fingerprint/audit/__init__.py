"""Audit logging for security-relevant operations."""

from .logger import AuditLogger, AuditLoggerOptions
from .redaction import REDACTED, is_sensitive_field, redact_secrets, sanitize_for_log
from .sinks import AuditSink, ConsoleSink, FileSink, RemoteSink
from .types import AuditEventType, AuditLogEntry, AuditResult, LogLevel

__all__ = [
    # Logger
    "AuditLogger",
    "AuditLoggerOptions",
    # Types
    "AuditEventType",
    "AuditLogEntry",
    "AuditResult",
    "LogLevel",
    # Sinks
    "AuditSink",
    "ConsoleSink",
    "FileSink",
    "RemoteSink",
    # Redaction
    "REDACTED",
    "is_sensitive_field",
    "redact_secrets",
    "sanitize_for_log",
]
