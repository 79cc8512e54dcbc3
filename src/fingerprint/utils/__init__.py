"""Utility modules for AI Fingerprint."""

from fingerprint.utils.exceptions import ConfigurationError, FingerprintError

__all__ = [
    "FingerprintError",
    "ConfigurationError",
]
