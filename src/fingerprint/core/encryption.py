"""Encryption utilities for key material at rest.

Provides AES-256-GCM encryption with a detached IV and authentication tag,
the layout used by encrypted key files and encrypted audit log lines.

Usage:
    from fingerprint.core.encryption import Encryptor, derive_key_from_password

    key, salt = derive_key_from_password("correct-password", b"fingerprint-salt")
    encryptor = Encryptor(key)

    sealed = encryptor.encrypt_parts(b"0xabc...123")
    plaintext = encryptor.decrypt_parts(sealed)

    # Hex envelope for JSON storage
    envelope = sealed.to_hex()
    plaintext = encryptor.decrypt_parts(EncryptedPayload.from_hex(envelope))
"""

import binascii
import hashlib
import secrets
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from fingerprint.utils.exceptions import FingerprintError


class EncryptionError(FingerprintError):
    """Raised when encryption or decryption fails."""

    pass


class EncryptionKeyError(EncryptionError):
    """Raised when encryption key is missing or invalid."""

    pass


class DecryptionError(EncryptionError):
    """Raised when decryption fails (wrong key, corrupted data, etc.)."""

    pass


# Constants
IV_SIZE = 16  # 128-bit IV, one fresh IV per encryption
TAG_SIZE = 16  # GCM authentication tag
KEY_SIZE = 32  # 256 bits for AES-256
PBKDF2_ITERATIONS = 100_000
DEFAULT_SALT = b"fingerprint-salt"


@dataclass(frozen=True, slots=True)
class EncryptedPayload:
    """AES-GCM output with its IV and authentication tag kept apart.

    Attributes:
        ciphertext: Encrypted bytes without the tag
        iv: Initialization vector used for this encryption
        auth_tag: GCM authentication tag
    """

    ciphertext: bytes
    iv: bytes
    auth_tag: bytes

    def to_hex(self) -> dict[str, str]:
        """Serialize to the hex envelope used in key files."""
        return {
            "encryptedData": self.ciphertext.hex(),
            "iv": self.iv.hex(),
            "authTag": self.auth_tag.hex(),
        }

    @classmethod
    def from_hex(cls, envelope: dict[str, str]) -> "EncryptedPayload":
        """Parse a hex envelope.

        Raises:
            DecryptionError: If a field is missing or not valid hex
        """
        try:
            return cls(
                ciphertext=bytes.fromhex(envelope["encryptedData"]),
                iv=bytes.fromhex(envelope["iv"]),
                auth_tag=bytes.fromhex(envelope["authTag"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DecryptionError(f"Malformed encrypted envelope: {e}") from e


class Encryptor:
    """AES-256-GCM encryptor for key material.

    Uses authenticated encryption to provide both confidentiality and integrity.

    Attributes:
        _aesgcm: The AESGCM cipher instance
    """

    def __init__(self, key: bytes):
        """Initialize encryptor with a key.

        Args:
            key: 32-byte (256-bit) encryption key

        Raises:
            EncryptionKeyError: If key is not 32 bytes
        """
        if len(key) != KEY_SIZE:
            raise EncryptionKeyError(f"Encryption key must be {KEY_SIZE} bytes, got {len(key)}")
        self._aesgcm = AESGCM(key)

    def encrypt_parts(
        self, plaintext: bytes, associated_data: bytes | None = None
    ) -> EncryptedPayload:
        """Encrypt data using AES-256-GCM with a fresh random IV.

        Args:
            plaintext: Data to encrypt
            associated_data: Optional additional authenticated data (AAD)

        Returns:
            EncryptedPayload with ciphertext, IV and tag

        Raises:
            EncryptionError: If encryption fails
        """
        try:
            iv = secrets.token_bytes(IV_SIZE)
            sealed = self._aesgcm.encrypt(iv, plaintext, associated_data)
        except Exception as e:
            raise EncryptionError(f"Encryption failed: {e}") from e
        return EncryptedPayload(
            ciphertext=sealed[:-TAG_SIZE],
            iv=iv,
            auth_tag=sealed[-TAG_SIZE:],
        )

    def decrypt_parts(
        self, payload: EncryptedPayload, associated_data: bytes | None = None
    ) -> bytes:
        """Decrypt an EncryptedPayload.

        Args:
            payload: Ciphertext, IV and tag produced by encrypt_parts
            associated_data: Optional AAD that was used during encryption

        Returns:
            Decrypted plaintext

        Raises:
            DecryptionError: If decryption fails (wrong key, tampered data, etc.)
        """
        if len(payload.auth_tag) != TAG_SIZE:
            raise DecryptionError("Authentication tag has wrong length")
        if not payload.iv:
            raise DecryptionError("Missing initialization vector")

        try:
            return self._aesgcm.decrypt(
                payload.iv, payload.ciphertext + payload.auth_tag, associated_data
            )
        except InvalidTag as e:
            raise DecryptionError("Decryption failed: authentication tag mismatch") from e
        except Exception as e:
            raise DecryptionError(f"Decryption failed: {e}") from e

    def encrypt_string(self, plaintext: str) -> dict[str, str]:
        """Encrypt a string into a hex envelope."""
        return self.encrypt_parts(plaintext.encode("utf-8")).to_hex()

    def decrypt_string(self, envelope: dict[str, str]) -> str:
        """Decrypt a hex envelope back into a string."""
        plaintext = self.decrypt_parts(EncryptedPayload.from_hex(envelope))
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted data is not valid UTF-8") from e


def derive_key_from_password(
    password: str,
    salt: bytes | None = None,
    iterations: int = PBKDF2_ITERATIONS,
) -> tuple[bytes, bytes]:
    """Derive an encryption key from a password using PBKDF2.

    The derivation is deterministic for a given (password, salt) pair, so the
    same password always unlocks previously stored keys.

    Args:
        password: Password to derive key from
        salt: Optional salt (generated if not provided)
        iterations: PBKDF2 iteration count

    Returns:
        Tuple of (key, salt) where key is 32 bytes

    Raises:
        EncryptionKeyError: If the password is empty
    """
    if not password:
        raise EncryptionKeyError("Password must not be empty")
    if salt is None:
        salt = secrets.token_bytes(16)

    key = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt,
        iterations=iterations,
        dklen=KEY_SIZE,
    )
    return key, salt


def generate_key() -> bytes:
    """Generate a new random 256-bit encryption key.

    Returns:
        32-byte random key suitable for AES-256
    """
    return secrets.token_bytes(KEY_SIZE)


def key_from_hex(key_string: str) -> bytes:
    """Convert a hex string (optionally 0x-prefixed) to key bytes.

    Args:
        key_string: 64 hex characters

    Returns:
        32-byte encryption key

    Raises:
        EncryptionKeyError: If key string is invalid
    """
    cleaned = key_string[2:] if key_string.startswith("0x") else key_string
    try:
        key = binascii.unhexlify(cleaned)
    except (binascii.Error, ValueError) as e:
        raise EncryptionKeyError("Key must be hex encoded") from e
    if len(key) != KEY_SIZE:
        raise EncryptionKeyError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")
    return key
