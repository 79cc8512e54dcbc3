"""AI Fingerprint: key management, audit logging and EIP-712 signing."""

__version__ = "0.1.0"
