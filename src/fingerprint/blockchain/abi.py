"""ABI of the fingerprint registry contract."""

from typing import Any


def _param(name: str, type_: str) -> dict[str, str]:
    return {"name": name, "type": type_, "internalType": type_}


_HASH_INPUT = [_param("fingerprintHash", "string")]

_AGENT_OUTPUTS = [
    _param("isVerified", "bool"),
    _param("id", "string"),
    _param("name", "string"),
    _param("provider", "string"),
    _param("version", "string"),
    _param("createdAt", "uint256"),
]

FINGERPRINT_REGISTRY_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "registerFingerprint",
        "stateMutability": "nonpayable",
        "inputs": [
            _param("id", "string"),
            _param("name", "string"),
            _param("provider", "string"),
            _param("version", "string"),
            _param("fingerprintHash", "string"),
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "verifyFingerprint",
        "stateMutability": "view",
        "inputs": _HASH_INPUT,
        "outputs": _AGENT_OUTPUTS,
    },
    {
        "type": "function",
        "name": "revokeFingerprint",
        "stateMutability": "nonpayable",
        "inputs": _HASH_INPUT,
        "outputs": [],
    },
    {
        "type": "function",
        "name": "isRevoked",
        "stateMutability": "view",
        "inputs": _HASH_INPUT,
        "outputs": [
            _param("revoked", "bool"),
            _param("revokedAt", "uint256"),
            _param("revokedBy", "address"),
        ],
    },
    {
        "type": "function",
        "name": "verifyFingerprintExtended",
        "stateMutability": "view",
        "inputs": _HASH_INPUT,
        "outputs": [
            *_AGENT_OUTPUTS,
            _param("revoked", "bool"),
            _param("revokedAt", "uint256"),
        ],
    },
]

# Probe argument for capability checks
ZERO_HASH = "0x" + "0" * 64
