"""Secret redaction for audit entries.

Redact likely secrets before anything reaches an audit sink: values under
sensitive field names are replaced outright, and free text is scrubbed of
strings shaped like private keys or API tokens.
"""

import re
from typing import Any

REDACTED = "[REDACTED]"

_REDACTION_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # Generic key/value
    (re.compile(r"(?i)(api[_-]?key|secret|password|token)\s*[:=]\s*[^\s\"',]+"), REDACTED),
    # OpenAI / Anthropic style API keys
    (re.compile(r"sk-[a-zA-Z0-9_-]{20,}"), REDACTED),
    # JWT
    (re.compile(r"eyJ[a-zA-Z0-9_-]+\.eyJ[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+"), REDACTED),
    # Private key or raw 32-byte key, hex with or without 0x
    (re.compile(r"(?<![a-fA-F0-9x])(?:0x)?[a-fA-F0-9]{64}(?![a-fA-F0-9])"), REDACTED),
]

_SENSITIVE_FIELD_NAMES = {
    "apikey",
    "secret",
    "secretid",
    "password",
    "token",
    "privatekey",
    "masterkey",
    "seed",
    "mnemonic",
    "auth",
    "authorization",
}

_SENSITIVE_SUFFIXES = ("apikey", "password", "secret", "token", "privatekey")

# Public 32-byte identifiers that share the shape of a private key
_PUBLIC_HASH_FIELDS = {
    "txhash",
    "transactionhash",
    "blockhash",
    "fingerprinthash",
    "hash",
    "messagehash",
}


def _normalize(name: Any) -> str:
    return str(name).lower().replace("_", "").replace("-", "")


def is_sensitive_field(name: Any) -> bool:
    """Whether a field name is known to carry a secret."""
    normalized = _normalize(name)
    return normalized in _SENSITIVE_FIELD_NAMES or normalized.endswith(_SENSITIVE_SUFFIXES)


def redact_secrets(text: str) -> str:
    """Replace secret-shaped substrings with the redaction placeholder."""
    out = text
    for pattern, repl in _REDACTION_PATTERNS:
        out = pattern.sub(repl, out)
    return out


def sanitize_for_log(data: dict[str, Any]) -> dict[str, Any]:
    """Return a redacted copy of a details mapping."""

    def _walk(obj: Any, field: Any = None) -> Any:
        if isinstance(obj, dict):
            new: dict[str, Any] = {}
            for k, v in obj.items():
                if is_sensitive_field(k):
                    new[k] = REDACTED if v not in (None, "") else v
                else:
                    new[k] = _walk(v, k)
            return new
        if isinstance(obj, (list, tuple)):
            return [_walk(v, field) for v in obj]
        if isinstance(obj, str):
            if field is not None and _normalize(field) in _PUBLIC_HASH_FIELDS:
                return obj
            return redact_secrets(obj)
        return obj

    return _walk(data)
