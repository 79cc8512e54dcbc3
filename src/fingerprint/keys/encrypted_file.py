"""Encrypted file key provider.

Each key is stored as one JSON envelope ``<key_directory>/<key_id>.key``
holding the AES-256-GCM ciphertext, IV and authentication tag (hex) next to
the key's metadata. Files are replaced atomically and created owner-only.
"""

import contextlib
import json
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any

from fingerprint.audit.types import AuditEventType, LogLevel
from fingerprint.core.encryption import (
    KEY_SIZE,
    DecryptionError,
    EncryptedPayload,
    EncryptionKeyError,
    Encryptor,
    derive_key_from_password,
    generate_key,
    key_from_hex,
)
from fingerprint.core.logging import get_logger
from fingerprint.keys.base import BaseKeyProvider, StoredRecord
from fingerprint.keys.config import EncryptedFileKeyProviderConfig
from fingerprint.keys.protocol import (
    BackendUnavailableError,
    CorruptKeyRecordError,
    KeyDecryptionError,
    KeyNotFoundError,
    ProviderConfigurationError,
)
from fingerprint.keys.types import KeyMetadata

if TYPE_CHECKING:
    from fingerprint.audit.logger import AuditLogger

logger = get_logger(__name__)

KEY_FILE_SUFFIX = ".key"
MASTER_KEY_FILE = ".master.key"
DIRECTORY_MODE = 0o700
FILE_MODE = 0o600


def ensure_key_directory(directory: Path) -> Path:
    """Create a key directory with owner-only permissions if it is missing.

    Existing directories keep their permissions.

    Raises:
        OSError: If the directory cannot be created
    """
    directory = directory.expanduser()
    if not directory.exists():
        directory.mkdir(mode=DIRECTORY_MODE, parents=True, exist_ok=True)
        with contextlib.suppress(OSError):
            os.chmod(directory, DIRECTORY_MODE)
        logger.info("key_directory_created", path=str(directory))
    return directory


class EncryptedFileKeyProvider(BaseKeyProvider):
    """Key provider storing AES-256-GCM encrypted JSON files on local disk.

    The master key is resolved once, on first use:
    1. ``config.master_key`` (raw 32 bytes or 64 hex characters)
    2. PBKDF2 derivation from ``config.master_key_password`` and ``config.salt``
    3. ``<key_directory>/.master.key``, generated on first run

    There is no cross-process locking: rotating the same key from two
    processes at once is a data race and must be coordinated externally.

    Example:
        provider = EncryptedFileKeyProvider(
            EncryptedFileKeyProviderConfig(
                key_directory=Path("./keys"),
                master_key_password="correct-password",
            )
        )
        key_id = await provider.store_key("0xabc...123", key_id="wallet-1")
        secret = await provider.get_key("wallet-1")
    """

    backend_name = "encrypted-file"

    def __init__(
        self,
        config: EncryptedFileKeyProviderConfig | None = None,
        audit_logger: "AuditLogger | None" = None,
    ):
        """Initialize the encrypted file provider.

        Args:
            config: Provider configuration
            audit_logger: Optional audit logger
        """
        self.config = config or EncryptedFileKeyProviderConfig()
        super().__init__(self.config.options, audit_logger)
        self.key_directory = Path(self.config.key_directory).expanduser()
        self._encryptor: Encryptor | None = None
        # key_id -> (mtime_ns, metadata), mirrors files already parsed
        self._metadata_cache: dict[str, tuple[int, KeyMetadata]] = {}

    # ----------------------------------------------------------------
    # Master key
    # ----------------------------------------------------------------

    async def _get_encryptor(self) -> Encryptor:
        if self._encryptor is None:
            self._encryptor = await self._run_blocking(self._build_encryptor)
        return self._encryptor

    def _build_encryptor(self) -> Encryptor:
        try:
            ensure_key_directory(self.key_directory)
        except OSError as e:
            raise BackendUnavailableError(self.backend_name, e) from e
        return Encryptor(self._resolve_master_key())

    def _resolve_master_key(self) -> bytes:
        master_key = self.config.master_key
        if master_key:
            if isinstance(master_key, bytes):
                if len(master_key) != KEY_SIZE:
                    raise ProviderConfigurationError(
                        f"Master key must be {KEY_SIZE} bytes, got {len(master_key)}"
                    )
                return master_key
            try:
                return key_from_hex(master_key)
            except EncryptionKeyError as e:
                raise ProviderConfigurationError(f"Invalid master key: {e}") from e

        if self.config.master_key_password:
            key, _ = derive_key_from_password(self.config.master_key_password, self.config.salt)
            return key

        return self._load_or_create_master_key_file()

    def _load_or_create_master_key_file(self) -> bytes:
        path = self.key_directory / MASTER_KEY_FILE
        if path.exists():
            key = path.read_bytes()
            if len(key) != KEY_SIZE:
                raise ProviderConfigurationError(f"Master key file is corrupt: {path}")
            return key

        key = generate_key()
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, FILE_MODE)
        with os.fdopen(fd, "wb") as fh:
            fh.write(key)
        logger.warning(
            "master_key_generated",
            path=str(path),
            message=(
                "No master key or password configured; generated a random master key. "
                "Protect this file: anyone who can read it can decrypt every stored key"
            ),
        )
        return key

    # ----------------------------------------------------------------
    # File helpers
    # ----------------------------------------------------------------

    def _key_path(self, key_id: str) -> Path:
        return self.key_directory / f"{key_id}{KEY_FILE_SUFFIX}"

    def _atomic_write(self, path: Path, content: str) -> None:
        """Write a file so readers see either the old or the new content."""
        fd, tmp_name = tempfile.mkstemp(
            dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(content)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp_name, FILE_MODE)
            os.replace(tmp_name, path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
            raise

    @staticmethod
    def _parse_envelope(key_id: str, raw: bytes) -> tuple[dict[str, Any], KeyMetadata]:
        try:
            envelope = json.loads(raw.decode("utf-8"))
            if not isinstance(envelope, dict):
                raise ValueError("envelope must be an object")
            metadata = KeyMetadata.from_dict(envelope["metadata"])
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptKeyRecordError(key_id, e) from e
        return envelope, metadata

    async def _read_envelope(self, key_id: str) -> tuple[dict[str, Any], KeyMetadata] | None:
        path = self._key_path(key_id)
        try:
            raw = await self._run_blocking(path.read_bytes)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise BackendUnavailableError(self.backend_name, e) from e
        return self._parse_envelope(key_id, raw)

    async def _write_envelope(self, key_id: str, envelope: dict[str, Any]) -> None:
        path = self._key_path(key_id)
        try:
            await self._run_blocking(self._atomic_write, path, json.dumps(envelope, indent=2))
        except OSError as e:
            raise BackendUnavailableError(self.backend_name, e) from e
        self._metadata_cache.pop(key_id, None)

    # ----------------------------------------------------------------
    # Storage primitives
    # ----------------------------------------------------------------

    async def _load_record(self, key_id: str) -> StoredRecord | None:
        loaded = await self._read_envelope(key_id)
        if loaded is None:
            return None
        envelope, metadata = loaded
        return StoredRecord(metadata=metadata, payload=envelope)

    async def _reveal(self, record: StoredRecord) -> str:
        key_id = record.metadata.key_id
        encryptor = await self._get_encryptor()
        try:
            payload = EncryptedPayload.from_hex(record.payload)
            return encryptor.decrypt_parts(payload).decode("utf-8")
        except (DecryptionError, UnicodeDecodeError) as e:
            logger.warning("key_decryption_failed", key_id=key_id)
            raise KeyDecryptionError(key_id, e) from e

    async def _write_record(self, secret: str, metadata: KeyMetadata) -> None:
        encryptor = await self._get_encryptor()
        payload = encryptor.encrypt_parts(secret.encode("utf-8"))
        await self._write_envelope(
            metadata.key_id, {**payload.to_hex(), "metadata": metadata.to_dict()}
        )

    async def _write_metadata(self, metadata: KeyMetadata) -> None:
        loaded = await self._read_envelope(metadata.key_id)
        if loaded is None:
            raise KeyNotFoundError(metadata.key_id)
        envelope, _ = loaded
        envelope["metadata"] = metadata.to_dict()
        await self._write_envelope(metadata.key_id, envelope)

    async def _remove_record(self, key_id: str) -> bool:
        try:
            await self._run_blocking(self._key_path(key_id).unlink)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise BackendUnavailableError(self.backend_name, e) from e
        self._metadata_cache.pop(key_id, None)
        return True

    async def _list_metadata(self) -> list[KeyMetadata]:
        try:
            found, corrupt = await self._run_blocking(self._scan_directory)
        except OSError as e:
            raise BackendUnavailableError(self.backend_name, e) from e

        for file_name, error in corrupt:
            logger.warning("key_file_unreadable", file=file_name, error=error)
            await self._report(
                LogLevel.WARNING,
                AuditEventType.KEY_ACCESS,
                "Skipped unreadable key file while listing keys",
                file_name,
                "failure",
                {"error": error},
            )
        return found

    def _scan_directory(self) -> tuple[list[KeyMetadata], list[tuple[str, str]]]:
        """Parse metadata of every key file, collecting unreadable ones."""
        if not self.key_directory.is_dir():
            return [], []

        found: list[KeyMetadata] = []
        corrupt: list[tuple[str, str]] = []
        seen: set[str] = set()

        for path in sorted(self.key_directory.iterdir()):
            if path.name.startswith(".") or path.suffix != KEY_FILE_SUFFIX:
                continue
            key_id = path.stem
            seen.add(key_id)
            try:
                mtime_ns = path.stat().st_mtime_ns
                cached = self._metadata_cache.get(key_id)
                if cached is not None and cached[0] == mtime_ns:
                    found.append(cached[1])
                    continue
                _, metadata = self._parse_envelope(key_id, path.read_bytes())
            except (OSError, CorruptKeyRecordError) as e:
                corrupt.append((path.name, str(e.__cause__ or e)))
                continue
            self._metadata_cache[key_id] = (mtime_ns, metadata)
            found.append(metadata)

        for stale in set(self._metadata_cache) - seen:
            del self._metadata_cache[stale]
        return found, corrupt

    async def _rotation_key_id(self, metadata: KeyMetadata, rotation_count: int) -> str:
        """Name rotated keys ``<base>-<n>``, where base is the original key ID."""
        base = metadata.key_id
        suffix = f"-{metadata.rotation_count}"
        if metadata.rotation_count > 0 and base.endswith(suffix):
            base = base[: -len(suffix)]

        count = rotation_count
        candidate = f"{base}-{count}"
        while candidate in self._deleted_ids or self._key_path(candidate).exists():
            count += 1
            candidate = f"{base}-{count}"
        return candidate

    async def health_check(self) -> bool:
        """Check that the key directory is usable."""
        try:
            await self._get_encryptor()
        except (BackendUnavailableError, ProviderConfigurationError):
            return False
        return os.access(self.key_directory, os.W_OK)
