"""Fingerprint registry client and EIP-712 signing."""

from .eip712 import (
    AGENT_FINGERPRINT_TYPES,
    create_agent_fingerprint_message,
    create_agent_fingerprint_typed_data,
    create_eip712_domain,
    hash_agent_fingerprint,
    sign_agent_fingerprint,
    validate_agent_fingerprint_message,
    verify_agent_fingerprint_signature,
)
from .errors import (
    BlockchainError,
    EIP712Error,
    EIP712SigningError,
    EIP712ValidationError,
    NotConnectedError,
    TransactionFailedError,
    UnsupportedFeatureError,
)
from .service import SecureBlockchainService
from .types import AgentInfo, BlockchainConfig, FingerprintRecord, RevocationData, SignatureData

__all__ = [
    # Service
    "SecureBlockchainService",
    # Types
    "AgentInfo",
    "BlockchainConfig",
    "FingerprintRecord",
    "RevocationData",
    "SignatureData",
    # EIP-712
    "AGENT_FINGERPRINT_TYPES",
    "create_agent_fingerprint_message",
    "create_agent_fingerprint_typed_data",
    "create_eip712_domain",
    "hash_agent_fingerprint",
    "sign_agent_fingerprint",
    "validate_agent_fingerprint_message",
    "verify_agent_fingerprint_signature",
    # Errors
    "BlockchainError",
    "EIP712Error",
    "EIP712SigningError",
    "EIP712ValidationError",
    "NotConnectedError",
    "TransactionFailedError",
    "UnsupportedFeatureError",
]
