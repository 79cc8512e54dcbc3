"""EIP-712 typed data for agent fingerprints.

The domain is ``AIFingerprint`` version ``1`` bound to a chain and the
registry contract; the primary type is ``AgentFingerprint``.
"""

import re
import time
from typing import Any

from eth_account import Account
from eth_account.messages import SignableMessage, encode_typed_data
from eth_utils import is_address, keccak, to_checksum_address

from fingerprint.blockchain.errors import EIP712SigningError, EIP712ValidationError
from fingerprint.blockchain.types import AgentInfo
from fingerprint.core.logging import get_logger

logger = get_logger(__name__)

EIP712_DOMAIN_NAME = "AIFingerprint"
EIP712_DOMAIN_VERSION = "1"
PRIMARY_TYPE = "AgentFingerprint"

AGENT_FINGERPRINT_TYPES: dict[str, list[dict[str, str]]] = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    PRIMARY_TYPE: [
        {"name": "id", "type": "string"},
        {"name": "name", "type": "string"},
        {"name": "provider", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "timestamp", "type": "uint256"},
    ],
}

# Tolerated clock skew and maximum age for message timestamps
MAX_FUTURE_SKEW_SECONDS = 120
MAX_MESSAGE_AGE_SECONDS = 365 * 24 * 60 * 60

_SIGNATURE_PATTERN = re.compile(r"^0x[0-9a-fA-F]{130}$")
_MESSAGE_FIELDS = ("id", "name", "provider", "version")


def is_valid_eip712_signature(signature: str) -> bool:
    """Whether a string has the shape of a 65-byte hex signature."""
    return isinstance(signature, str) and bool(_SIGNATURE_PATTERN.match(signature))


def create_eip712_domain(chain_id: int, contract_address: str) -> dict[str, Any]:
    """Create the EIP-712 domain for a chain and registry contract.

    Raises:
        EIP712ValidationError: If the chain ID or address is invalid
    """
    if isinstance(chain_id, bool) or not isinstance(chain_id, int) or chain_id <= 0:
        raise EIP712ValidationError(f"Chain ID must be a positive integer, got {chain_id!r}")
    if not isinstance(contract_address, str) or not is_address(contract_address):
        raise EIP712ValidationError(f"Invalid contract address: {contract_address!r}")
    return {
        "name": EIP712_DOMAIN_NAME,
        "version": EIP712_DOMAIN_VERSION,
        "chainId": chain_id,
        "verifyingContract": to_checksum_address(contract_address),
    }


def create_agent_fingerprint_message(
    agent: AgentInfo, timestamp: int | None = None
) -> dict[str, Any]:
    """Create an ``AgentFingerprint`` message, stamped with the current time by default.

    Raises:
        EIP712ValidationError: If a field is empty or the timestamp is negative
    """
    message: dict[str, Any] = {
        "id": agent.id,
        "name": agent.name,
        "provider": agent.provider,
        "version": agent.version,
        "timestamp": int(time.time()) if timestamp is None else timestamp,
    }
    _check_message(message)
    return message


def _check_message(message: dict[str, Any]) -> None:
    errors = [
        f"Agent {name} cannot be empty"
        for name in _MESSAGE_FIELDS
        if not isinstance(message.get(name), str) or not message[name].strip()
    ]
    timestamp = message.get("timestamp")
    if isinstance(timestamp, bool) or not isinstance(timestamp, int) or timestamp < 0:
        errors.append("Timestamp must be a non-negative integer")
    if errors:
        raise EIP712ValidationError("; ".join(errors), errors)


def validate_agent_fingerprint_message(
    message: dict[str, Any], now: int | None = None
) -> list[str]:
    """Check a message for freshness as well as shape.

    Returns:
        Error messages, empty if the message is acceptable
    """
    try:
        _check_message(message)
    except EIP712ValidationError as e:
        return e.errors

    now = int(time.time()) if now is None else now
    errors: list[str] = []
    if message["timestamp"] > now + MAX_FUTURE_SKEW_SECONDS:
        errors.append("Timestamp is too far in the future")
    if message["timestamp"] < now - MAX_MESSAGE_AGE_SECONDS:
        errors.append("Timestamp is too old")
    return errors


def create_agent_fingerprint_typed_data(
    chain_id: int,
    contract_address: str,
    agent: AgentInfo,
    timestamp: int | None = None,
) -> dict[str, Any]:
    """Create the complete typed-data structure for an agent."""
    return {
        "types": AGENT_FINGERPRINT_TYPES,
        "primaryType": PRIMARY_TYPE,
        "domain": create_eip712_domain(chain_id, contract_address),
        "message": create_agent_fingerprint_message(agent, timestamp),
    }


def _signable(domain: dict[str, Any], message: dict[str, Any]) -> SignableMessage:
    _check_message(message)
    return encode_typed_data(
        full_message={
            "types": AGENT_FINGERPRINT_TYPES,
            "primaryType": PRIMARY_TYPE,
            "domain": domain,
            "message": message,
        }
    )


def hash_agent_fingerprint(domain: dict[str, Any], message: dict[str, Any]) -> str:
    """EIP-712 digest of a message, as 0x-prefixed hex."""
    signable = _signable(domain, message)
    digest = keccak(b"\x19" + signable.version + signable.header + signable.body)
    return "0x" + digest.hex()


def sign_agent_fingerprint(
    private_key: str, domain: dict[str, Any], message: dict[str, Any]
) -> str:
    """Sign a message with a private key.

    Returns:
        0x-prefixed 65-byte signature

    Raises:
        EIP712ValidationError: If the message is malformed
        EIP712SigningError: If the key cannot sign
    """
    signable = _signable(domain, message)
    try:
        signed = Account.sign_message(signable, private_key=private_key)
    except (ValueError, TypeError) as e:
        # The key itself must not appear in the message
        raise EIP712SigningError("Failed to sign agent fingerprint", e) from None
    return "0x" + bytes(signed.signature).hex()


def verify_agent_fingerprint_signature(
    signature: str, domain: dict[str, Any], message: dict[str, Any]
) -> str | None:
    """Recover the signer of a message.

    Returns:
        Checksummed signer address, or None if the signature is invalid
    """
    if not is_valid_eip712_signature(signature):
        logger.debug("eip712_signature_malformed")
        return None
    try:
        return Account.recover_message(_signable(domain, message), signature=signature)
    except Exception as e:
        logger.warning("eip712_verification_failed", error=str(e))
        return None
