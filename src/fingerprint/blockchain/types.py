"""Data types for the fingerprint registry."""

from dataclasses import dataclass

from fingerprint.config.settings import Settings, get_settings
from fingerprint.utils.exceptions import ConfigurationError


@dataclass(frozen=True, slots=True)
class AgentInfo:
    """Identity of an AI agent.

    Attributes:
        id: Agent identifier
        name: Display name
        provider: Organization providing the agent
        version: Agent version
        fingerprint_hash: Registry hash, once generated
    """

    id: str
    name: str
    provider: str
    version: str
    fingerprint_hash: str | None = None


@dataclass(frozen=True, slots=True)
class FingerprintRecord:
    """A fingerprint as stored in the registry contract."""

    id: str
    name: str
    provider: str
    version: str
    fingerprint_hash: str
    created_at: int
    revoked: bool | None = None
    revoked_at: int | None = None
    revoked_by: str | None = None


@dataclass(frozen=True, slots=True)
class SignatureData:
    """An EIP-712 signature over an agent fingerprint message."""

    signature: str
    signer_address: str
    timestamp: int


@dataclass(frozen=True, slots=True)
class RevocationData:
    """Revocation state of a fingerprint."""

    revoked: bool
    revoked_at: int
    revoked_by: str


@dataclass(frozen=True, slots=True)
class BlockchainConfig:
    """Connection details for the fingerprint registry.

    Attributes:
        network_url: JSON-RPC endpoint
        chain_id: Chain the contract is deployed on
        contract_address: Registry contract address
    """

    network_url: str
    chain_id: int
    contract_address: str

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "BlockchainConfig":
        """Build from RPC_URL, CHAIN_ID and CONTRACT_ADDRESS.

        Raises:
            ConfigurationError: If no contract address is configured
        """
        settings = settings or get_settings()
        if not settings.contract_address:
            raise ConfigurationError("CONTRACT_ADDRESS is not configured")
        return cls(
            network_url=settings.rpc_url,
            chain_id=settings.chain_id,
            contract_address=settings.contract_address,
        )
