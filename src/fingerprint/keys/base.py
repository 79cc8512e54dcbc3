"""Shared behavior for key providers.

Every backend stores records differently but applies the same policy on
top of them: expiration checks, auto-rotation, access accounting, rotation
lineage, and ID validation. That policy lives here; subclasses implement
the storage primitives.
"""

import asyncio
import functools
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, TypeVar

from fingerprint.audit.types import AuditEventType, LogLevel
from fingerprint.core.logging import get_logger
from fingerprint.keys.config import KeyProviderOptions
from fingerprint.keys.protocol import (
    KeyExpiredError,
    KeyNotFoundError,
    KeyProviderError,
    KeyValidationError,
)
from fingerprint.keys.types import (
    KEY_ID_PATTERN,
    TAG_PREVIOUS_KEY_ID,
    TAG_ROTATED,
    TAG_ROTATED_AT,
    TAG_ROTATED_TO,
    TAG_ROTATION_COUNT,
    KeyMetadata,
    as_utc,
    utc_now,
)

if TYPE_CHECKING:
    from fingerprint.audit.logger import AuditLogger

logger = get_logger(__name__)

T = TypeVar("T")

_LINEAGE_MARKERS = (TAG_ROTATED, TAG_ROTATED_AT, TAG_ROTATED_TO)


@dataclass(frozen=True, slots=True)
class StoredRecord:
    """A key record as loaded from a backend, before the secret is revealed.

    Attributes:
        metadata: Parsed metadata
        payload: Backend-specific secret material (plaintext, ciphertext, or None
            when the secret must be fetched separately)
    """

    metadata: KeyMetadata
    payload: Any = None


def validate_key_id(key_id: str) -> str:
    """Validate a key identifier.

    IDs double as file names and Vault paths, so they are restricted to
    letters, digits, ``.``, ``_`` and ``-`` and may not start with a dot.

    Raises:
        KeyValidationError: If the ID is malformed
    """
    if not isinstance(key_id, str) or not KEY_ID_PATTERN.match(key_id):
        raise KeyValidationError(f"Invalid key ID: {key_id!r}")
    return key_id


def _validate_tags(tags: dict[str, str] | None) -> dict[str, str]:
    if tags is None:
        return {}
    if not isinstance(tags, dict):
        raise KeyValidationError("tags must be a mapping of strings")
    for name, value in tags.items():
        if not isinstance(name, str) or not isinstance(value, str):
            raise KeyValidationError(f"Tag {name!r} must map a string to a string")
    return dict(tags)


class BaseKeyProvider(ABC):
    """Base class implementing the KeyProvider protocol on top of storage primitives.

    Subclasses provide ``_load_record``, ``_reveal``, ``_write_record``,
    ``_write_metadata``, ``_remove_record`` and ``_list_metadata``.
    """

    backend_name: str = "base"

    def __init__(
        self,
        options: KeyProviderOptions | None = None,
        audit_logger: "AuditLogger | None" = None,
    ):
        """Initialize shared provider state.

        Args:
            options: Provider behavior options
            audit_logger: Optional audit logger for provider-level events
        """
        self.options = options or KeyProviderOptions()
        self._audit_logger = audit_logger
        self._deleted_ids: set[str] = set()

    # ----------------------------------------------------------------
    # Storage primitives
    # ----------------------------------------------------------------

    @abstractmethod
    async def _load_record(self, key_id: str) -> StoredRecord | None:
        """Load a record, or None if the key does not exist."""

    @abstractmethod
    async def _reveal(self, record: StoredRecord) -> str:
        """Produce the plaintext secret for a loaded record."""

    @abstractmethod
    async def _write_record(self, secret: str, metadata: KeyMetadata) -> None:
        """Persist a new record."""

    @abstractmethod
    async def _write_metadata(self, metadata: KeyMetadata) -> None:
        """Persist updated metadata for an existing record."""

    @abstractmethod
    async def _remove_record(self, key_id: str) -> bool:
        """Remove a record; False if it did not exist."""

    @abstractmethod
    async def _list_metadata(self) -> list[KeyMetadata]:
        """Metadata for every stored record."""

    def _generate_key_id(self) -> str:
        return str(uuid.uuid4())

    async def _rotation_key_id(self, metadata: KeyMetadata, rotation_count: int) -> str:
        """Pick the identifier for the next key in a rotation chain."""
        return self._generate_key_id()

    # ----------------------------------------------------------------
    # KeyProvider protocol
    # ----------------------------------------------------------------

    async def get_key(self, key_id: str) -> str:
        """Retrieve a secret, applying expiration, rotation and access policy.

        Args:
            key_id: Identifier of the key

        Returns:
            The secret value (from the rotated key if auto-rotation happened)

        Raises:
            KeyNotFoundError: If the key does not exist
            KeyExpiredError: If the key has expired and expiration is enforced
        """
        return await self._get_key(key_id, visited=set())

    async def _get_key(self, key_id: str, visited: set[str]) -> str:
        visited.add(key_id)
        record = await self._require_record(key_id)
        metadata = record.metadata
        now = utc_now()

        if self.options.enforce_expiration and metadata.is_expired(now):
            logger.warning("key_expired", backend=self.backend_name, key_id=key_id)
            await self._report(
                LogLevel.WARNING,
                AuditEventType.KEY_ACCESS,
                "Rejected read of expired key",
                key_id,
                "failure",
                {"expiresAt": metadata.to_dict().get("expiresAt")},
            )
            raise KeyExpiredError(key_id, metadata.expires_at)

        if self.options.auto_rotate and metadata.is_rotation_due(now):
            target = await self._auto_rotate(metadata)
            if target is not None and target not in visited:
                return await self._get_key(target, visited)

        secret = await self._reveal(record)

        if self.options.audit_access:
            await self._write_metadata(metadata.with_access(now))

        return secret

    async def _auto_rotate(self, metadata: KeyMetadata) -> str | None:
        """Rotate a key that is due, returning the ID reads should move to.

        Already-rotated keys redirect to their successor while it exists.
        A missing successor or a failed rotation is logged and reported, and
        the caller keeps serving the current key.
        """
        if metadata.is_rotated and metadata.rotated_to:
            if await self._load_record(metadata.rotated_to) is not None:
                return metadata.rotated_to
            logger.warning(
                "key_successor_missing",
                backend=self.backend_name,
                key_id=metadata.key_id,
                rotated_to=metadata.rotated_to,
            )
            await self._report(
                LogLevel.WARNING,
                AuditEventType.KEY_ROTATION,
                "Rotated key successor is missing",
                metadata.key_id,
                "failure",
                {"rotatedTo": metadata.rotated_to},
            )
            return None

        try:
            new_key_id = await self.rotate_key(metadata.key_id)
        except KeyProviderError as e:
            logger.warning(
                "key_auto_rotation_failed",
                backend=self.backend_name,
                key_id=metadata.key_id,
                error=str(e),
            )
            await self._report(
                LogLevel.WARNING,
                AuditEventType.KEY_ROTATION,
                "Automatic key rotation failed",
                metadata.key_id,
                "failure",
                {"error": type(e).__name__},
            )
            return None

        logger.warning(
            "key_auto_rotated",
            backend=self.backend_name,
            key_id=metadata.key_id,
            new_key_id=new_key_id,
        )
        await self._report(
            LogLevel.INFO,
            AuditEventType.KEY_ROTATION,
            "Key auto-rotated due to rotation policy",
            metadata.key_id,
            "success",
            {"newKeyId": new_key_id},
        )
        return new_key_id

    async def store_key(
        self,
        secret: str,
        *,
        key_id: str | None = None,
        expires_at: datetime | None = None,
        rotation_due: datetime | None = None,
        tags: dict[str, str] | None = None,
    ) -> str:
        """Store a secret with metadata.

        Args:
            secret: Secret value to store
            key_id: Optional identifier (generated if omitted)
            expires_at: Optional expiration time
            rotation_due: Optional scheduled rotation time
            tags: Optional annotations

        Returns:
            The key ID

        Raises:
            KeyValidationError: If the input is malformed or the ID is taken
        """
        metadata = KeyMetadata(
            key_id=key_id if key_id is not None else self._generate_key_id(),
            created_at=utc_now(),
            expires_at=as_utc(expires_at),
            rotation_due=as_utc(rotation_due),
            tags=_validate_tags(tags),
        )
        await self._create(secret, metadata)
        return metadata.key_id

    async def _create(self, secret: str, metadata: KeyMetadata) -> None:
        if not isinstance(secret, str) or not secret:
            raise KeyValidationError("Secret must be a non-empty string")
        validate_key_id(metadata.key_id)
        if metadata.key_id in self._deleted_ids:
            raise KeyValidationError(
                f"Key ID {metadata.key_id} was deleted and cannot be reused"
            )
        if await self._load_record(metadata.key_id) is not None:
            raise KeyValidationError(f"Key ID already exists: {metadata.key_id}")

        await self._write_record(secret, metadata)
        logger.debug("key_stored", backend=self.backend_name, key_id=metadata.key_id)

    async def list_keys(self) -> list[KeyMetadata]:
        """List metadata for every stored key."""
        return await self._list_metadata()

    async def delete_key(self, key_id: str) -> bool:
        """Delete a key.

        Returns:
            True if deleted, False if not found
        """
        validate_key_id(key_id)
        removed = await self._remove_record(key_id)
        if removed:
            self._deleted_ids.add(key_id)
            logger.info("key_deleted", backend=self.backend_name, key_id=key_id)
        return removed

    async def rotate_key(self, key_id: str, *, new_secret: str | None = None) -> str:
        """Rotate a key to a new identifier.

        A key that was already rotated is not branched: the rotation applies
        to the newest key in its chain.

        Args:
            key_id: Key to rotate
            new_secret: Optional replacement secret value

        Returns:
            The new key ID

        Raises:
            KeyNotFoundError: If the key does not exist
            KeyExpiredError: If reusing the secret of an expired key
        """
        record = await self._chain_head(await self._require_record(key_id))
        current = record.metadata
        now = utc_now()

        if new_secret is None:
            if self.options.enforce_expiration and current.is_expired(now):
                raise KeyExpiredError(current.key_id, current.expires_at)
            secret = await self._reveal(record)
        else:
            secret = new_secret

        rotation_count = current.rotation_count + 1
        new_key_id = await self._rotation_key_id(current, rotation_count)

        inherited = {k: v for k, v in current.tags.items() if k not in _LINEAGE_MARKERS}
        new_metadata = KeyMetadata(
            key_id=new_key_id,
            created_at=now,
            rotation_due=(
                now + self.options.rotation_interval if self.options.rotation_interval else None
            ),
            tags={
                **inherited,
                TAG_ROTATION_COUNT: str(rotation_count),
                TAG_PREVIOUS_KEY_ID: current.key_id,
            },
        )

        await self._create(secret, new_metadata)
        await self._write_metadata(current.mark_rotated(new_key_id, now))

        logger.info(
            "key_rotated",
            backend=self.backend_name,
            key_id=current.key_id,
            new_key_id=new_key_id,
            rekeyed=new_secret is not None,
        )
        return new_key_id

    async def get_key_metadata(self, key_id: str) -> KeyMetadata:
        """Get metadata for a key.

        Raises:
            KeyNotFoundError: If the key does not exist
        """
        record = await self._require_record(key_id)
        return record.metadata

    async def health_check(self) -> bool:
        """Check if the backend is healthy."""
        return True

    async def close(self) -> None:
        """Cleanup resources."""
        return None

    # ----------------------------------------------------------------
    # Helpers
    # ----------------------------------------------------------------

    async def _require_record(self, key_id: str) -> StoredRecord:
        validate_key_id(key_id)
        record = await self._load_record(key_id)
        if record is None:
            raise KeyNotFoundError(key_id)
        return record

    async def _chain_head(self, record: StoredRecord) -> StoredRecord:
        """Follow rotatedTo links to the newest existing key."""
        seen = {record.metadata.key_id}
        while record.metadata.is_rotated and record.metadata.rotated_to:
            next_id = record.metadata.rotated_to
            if next_id in seen:
                break
            successor = await self._load_record(next_id)
            if successor is None:
                break
            seen.add(next_id)
            record = successor
        return record

    async def _run_blocking(self, func: Callable[..., T], *args: Any) -> T:
        """Run a blocking call in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    async def _report(
        self,
        level: LogLevel,
        event_type: AuditEventType,
        operation: str,
        target: str | None,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        if self._audit_logger is None:
            return
        await self._audit_logger.log(
            level,
            event_type,
            operation,
            actor=f"provider:{self.backend_name}",
            target=target,
            result=result,  # type: ignore[arg-type]
            details={"backend": self.backend_name, **(details or {})},
        )
