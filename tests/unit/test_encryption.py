"""Unit tests for encryption utilities."""

import pytest

from fingerprint.core.encryption import (
    IV_SIZE,
    KEY_SIZE,
    TAG_SIZE,
    DecryptionError,
    EncryptedPayload,
    EncryptionKeyError,
    Encryptor,
    derive_key_from_password,
    generate_key,
    key_from_hex,
)


class TestEncryptor:
    """Tests for Encryptor class."""

    @pytest.fixture
    def key(self) -> bytes:
        """Generate a test encryption key."""
        return generate_key()

    @pytest.fixture
    def encryptor(self, key: bytes) -> Encryptor:
        """Create an Encryptor instance."""
        return Encryptor(key)

    def test_init_with_invalid_key_length(self):
        """Test encryptor rejects invalid key lengths."""
        with pytest.raises(EncryptionKeyError, match="must be 32 bytes"):
            Encryptor(b"short_key")

        with pytest.raises(EncryptionKeyError, match="must be 32 bytes"):
            Encryptor(b"x" * 64)

    def test_encrypt_parts_layout(self, encryptor: Encryptor):
        """Test IV and tag are detached from the ciphertext."""
        sealed = encryptor.encrypt_parts(b"0xdeadbeef")

        assert len(sealed.iv) == IV_SIZE
        assert len(sealed.auth_tag) == TAG_SIZE
        assert len(sealed.ciphertext) == len(b"0xdeadbeef")
        assert encryptor.decrypt_parts(sealed) == b"0xdeadbeef"

    def test_fresh_iv_per_encryption(self, encryptor: Encryptor):
        """Test that encrypting the same data twice uses different IVs."""
        first = encryptor.encrypt_parts(b"same data")
        second = encryptor.encrypt_parts(b"same data")

        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext

    def test_decrypt_with_wrong_key_fails(self, key: bytes):
        """Test decryption with wrong key fails."""
        sealed = Encryptor(key).encrypt_parts(b"Secret data")

        with pytest.raises(DecryptionError, match="authentication tag mismatch"):
            Encryptor(generate_key()).decrypt_parts(sealed)

    def test_decrypt_with_tampered_ciphertext_fails(self, encryptor: Encryptor):
        """Test decryption of modified ciphertext fails."""
        sealed = encryptor.encrypt_parts(b"Original data")
        flipped = bytes([sealed.ciphertext[0] ^ 0xFF]) + sealed.ciphertext[1:]
        tampered = EncryptedPayload(ciphertext=flipped, iv=sealed.iv, auth_tag=sealed.auth_tag)

        with pytest.raises(DecryptionError):
            encryptor.decrypt_parts(tampered)

    def test_decrypt_rejects_short_tag(self, encryptor: Encryptor):
        """Test a truncated tag is rejected before decryption."""
        sealed = encryptor.encrypt_parts(b"data")
        truncated = EncryptedPayload(sealed.ciphertext, sealed.iv, sealed.auth_tag[:8])

        with pytest.raises(DecryptionError, match="wrong length"):
            encryptor.decrypt_parts(truncated)

    def test_associated_data_must_match(self, encryptor: Encryptor):
        """Test AAD is authenticated."""
        sealed = encryptor.encrypt_parts(b"data", associated_data=b"wallet-1")

        assert encryptor.decrypt_parts(sealed, associated_data=b"wallet-1") == b"data"
        with pytest.raises(DecryptionError):
            encryptor.decrypt_parts(sealed, associated_data=b"wallet-2")

    def test_encrypt_string_envelope(self, encryptor: Encryptor):
        """Test string encryption produces the hex envelope."""
        envelope = encryptor.encrypt_string("héllo wörld")

        assert set(envelope) == {"encryptedData", "iv", "authTag"}
        assert len(bytes.fromhex(envelope["iv"])) == IV_SIZE
        assert encryptor.decrypt_string(envelope) == "héllo wörld"


class TestEncryptedPayload:
    """Tests for the hex envelope."""

    def test_from_hex_missing_field(self):
        """Test an envelope without a tag is rejected."""
        with pytest.raises(DecryptionError, match="Malformed"):
            EncryptedPayload.from_hex({"encryptedData": "00", "iv": "00"})

    def test_from_hex_invalid_hex(self):
        """Test non-hex fields are rejected."""
        with pytest.raises(DecryptionError):
            EncryptedPayload.from_hex({"encryptedData": "zz", "iv": "00", "authTag": "00"})


class TestKeyDerivation:
    """Tests for key derivation functions."""

    def test_derive_key_is_deterministic(self):
        """Test same password and salt yields same key."""
        key1, _ = derive_key_from_password("test_password", b"fixed-salt")
        key2, _ = derive_key_from_password("test_password", b"fixed-salt")

        assert key1 == key2
        assert len(key1) == KEY_SIZE

    def test_different_passwords_different_keys(self):
        """Test different passwords produce different keys."""
        key1, _ = derive_key_from_password("password1", b"fixed-salt")
        key2, _ = derive_key_from_password("password2", b"fixed-salt")

        assert key1 != key2

    def test_random_salt_when_omitted(self):
        """Test a salt is generated if none is given."""
        _, salt1 = derive_key_from_password("password")
        _, salt2 = derive_key_from_password("password")

        assert salt1 != salt2

    def test_empty_password_rejected(self):
        """Test an empty password cannot derive a key."""
        with pytest.raises(EncryptionKeyError):
            derive_key_from_password("")


class TestKeyFromHex:
    """Tests for hex key parsing."""

    def test_plain_and_prefixed_hex(self):
        """Test keys with and without 0x parse identically."""
        key = generate_key()

        assert key_from_hex(key.hex()) == key
        assert key_from_hex("0x" + key.hex()) == key

    def test_wrong_length(self):
        """Test a 16-byte key is rejected."""
        with pytest.raises(EncryptionKeyError, match="32 bytes"):
            key_from_hex("00" * 16)

    def test_not_hex(self):
        """Test a non-hex string is rejected."""
        with pytest.raises(EncryptionKeyError, match="hex"):
            key_from_hex("not-a-key")
