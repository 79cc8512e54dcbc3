"""Custom exceptions for AI Fingerprint."""


class FingerprintError(Exception):
    """Base exception for all AI Fingerprint errors."""

    pass


class ConfigurationError(FingerprintError):
    """Error in configuration or settings."""

    pass
