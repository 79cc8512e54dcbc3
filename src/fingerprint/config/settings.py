"""Application settings loaded from environment variables."""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environments."""

    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application Configuration
    environment: Environment = Environment.DEVELOPMENT
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # Local key storage
    master_key_password: SecretStr | None = None
    master_key: SecretStr | None = None
    key_directory: Path = Path("./keys")
    key_env_prefix: str = "KEY_"

    # Vault (production key storage)
    vault_url: str | None = None
    vault_token: SecretStr | None = None
    vault_mount_point: str = "secret"
    vault_key_prefix: str = "fingerprint/"

    # Default key identifiers per key type
    deployment_key_id: str | None = None
    wallet_key_id: str | None = None
    signing_key_id: str | None = None
    api_key_id: str | None = None

    # Audit logging
    audit_log_path: Path = Path("./logs/audit.log")
    enable_remote_logging: bool = False
    remote_log_endpoint: str | None = None
    remote_log_api_key: SecretStr | None = None
    encrypt_audit_logs: bool = False
    audit_encryption_key_id: str | None = None

    # Blockchain
    rpc_url: str = "http://127.0.0.1:8545"
    chain_id: int = 31337
    contract_address: str | None = None

    @property
    def is_production(self) -> bool:
        """Whether the application runs in the production environment."""
        return self.environment == Environment.PRODUCTION

    def get_secret_value(self, name: str) -> str | None:
        """Get the plain value of a SecretStr setting, or None if unset."""
        value: SecretStr | None = getattr(self, name)
        if value is None:
            return None
        return value.get_secret_value() or None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
