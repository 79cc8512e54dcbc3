"""Core services and utilities for AI Fingerprint."""

from .encryption import (
    DecryptionError,
    EncryptedPayload,
    EncryptionError,
    EncryptionKeyError,
    Encryptor,
    derive_key_from_password,
    generate_key,
    key_from_hex,
)
from .logging import LogContext, get_logger, setup_logging

__all__ = [
    # Encryption
    "DecryptionError",
    "EncryptedPayload",
    "EncryptionError",
    "EncryptionKeyError",
    "Encryptor",
    "derive_key_from_password",
    "generate_key",
    "key_from_hex",
    # Logging
    "LogContext",
    "get_logger",
    "setup_logging",
]
