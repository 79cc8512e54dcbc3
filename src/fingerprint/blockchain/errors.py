"""Exceptions for EIP-712 signing and contract interaction."""

from fingerprint.utils.exceptions import FingerprintError


class EIP712Error(FingerprintError):
    """Base exception for EIP-712 typed-data operations.

    Attributes:
        code: Stable error code for programmatic handling
    """

    code = "EIP712_ERROR"

    def __init__(self, message: str, code: str | None = None):
        if code is not None:
            self.code = code
        super().__init__(message)

    def __str__(self) -> str:
        return f"[{self.code}] {super().__str__()}"


class EIP712ValidationError(EIP712Error):
    """Raised when a domain or message fails validation."""

    code = "EIP712_VALIDATION_ERROR"

    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors = errors or [message]
        super().__init__(message)


class EIP712SigningError(EIP712Error):
    """Raised when typed data cannot be signed."""

    code = "EIP712_SIGNING_ERROR"

    def __init__(self, message: str, cause: Exception | None = None):
        self.cause = cause
        super().__init__(message)


class BlockchainError(FingerprintError):
    """Base exception for fingerprint registry interaction."""

    pass


class NotConnectedError(BlockchainError):
    """Raised when the RPC node is unreachable or no wallet is connected."""

    def __init__(self, message: str = "Not connected to blockchain"):
        super().__init__(message)


class UnsupportedFeatureError(BlockchainError):
    """Raised when the deployed contract lacks a feature."""

    def __init__(self, feature: str):
        self.feature = feature
        super().__init__(
            f"The deployed contract does not support {feature}; this requires a contract upgrade"
        )


class TransactionFailedError(BlockchainError):
    """Raised when a transaction is mined with a failed status."""

    def __init__(self, tx_hash: str, operation: str):
        self.tx_hash = tx_hash
        self.operation = operation
        super().__init__(f"Transaction for {operation} failed: {tx_hash}")
