"""Configuration module for AI Fingerprint."""

from fingerprint.config.settings import Environment, Settings, get_settings

__all__ = ["Environment", "Settings", "get_settings"]
