"""Key types and metadata structures.

This module defines the key taxonomy and the metadata record kept
alongside every stored secret.
"""

import re
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

KEY_ID_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9._-]*$")

# Rotation lineage tags
TAG_KEY_TYPE = "keyType"
TAG_ROTATED = "rotated"
TAG_ROTATED_AT = "rotatedAt"
TAG_ROTATED_TO = "rotatedTo"
TAG_PREVIOUS_KEY_ID = "previousKeyId"
TAG_ROTATION_COUNT = "rotationCount"


class KeyType(str, Enum):
    """Closed set of key categories managed by the KeyManager."""

    DEPLOYMENT = "deployment"
    WALLET = "wallet"
    SIGNING = "signing"
    API = "api"


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize a datetime to UTC, treating naive values as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _format_ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _parse_ts(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return as_utc(parsed)


@dataclass(frozen=True, slots=True)
class KeyMetadata:
    """Metadata about a stored key, independent of its value.

    Attributes:
        key_id: Identifier, unique within a backend's namespace
        created_at: When the key was stored (never changes)
        expires_at: After this time the key is unusable for reads
        rotation_due: After this time reads trigger auto-rotation (if enabled)
        last_accessed: Time of the most recent successful read
        access_count: Number of successful reads
        tags: Free-form annotations (key type, rotation lineage, description)
    """

    key_id: str
    created_at: datetime = field(default_factory=utc_now)
    expires_at: datetime | None = None
    rotation_due: datetime | None = None
    last_accessed: datetime | None = None
    access_count: int = 0
    tags: dict[str, str] = field(default_factory=dict)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Whether the key is past its expiration time."""
        return self.expires_at is not None and self.expires_at < (now or utc_now())

    def is_rotation_due(self, now: datetime | None = None) -> bool:
        """Whether the key is past its scheduled rotation time."""
        return self.rotation_due is not None and self.rotation_due < (now or utc_now())

    @property
    def is_rotated(self) -> bool:
        """Whether this key has been superseded by a rotation."""
        return self.tags.get(TAG_ROTATED) == "true"

    @property
    def rotated_to(self) -> str | None:
        """Key ID that replaced this key, if rotated."""
        return self.tags.get(TAG_ROTATED_TO)

    @property
    def rotation_count(self) -> int:
        """Number of rotations in this key's lineage."""
        try:
            return int(self.tags.get(TAG_ROTATION_COUNT, "0"))
        except ValueError:
            return 0

    @property
    def key_type(self) -> str | None:
        """Key type tag, if present."""
        return self.tags.get(TAG_KEY_TYPE)

    def with_access(self, now: datetime | None = None) -> "KeyMetadata":
        """Return a copy recording one more successful read."""
        return replace(
            self,
            last_accessed=now or utc_now(),
            access_count=self.access_count + 1,
        )

    def with_tags(self, **tags: str) -> "KeyMetadata":
        """Return a copy with additional tags merged in."""
        return replace(self, tags={**self.tags, **tags})

    def mark_rotated(self, new_key_id: str, now: datetime | None = None) -> "KeyMetadata":
        """Return a copy pointing forward to the key that replaced it."""
        return self.with_tags(
            **{
                TAG_ROTATED: "true",
                TAG_ROTATED_AT: _format_ts(now or utc_now()) or "",
                TAG_ROTATED_TO: new_key_id,
            }
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON shape stored alongside the key."""
        data: dict[str, Any] = {
            "keyId": self.key_id,
            "createdAt": _format_ts(self.created_at),
            "tags": dict(self.tags),
            "accessCount": self.access_count,
        }
        if self.expires_at is not None:
            data["expiresAt"] = _format_ts(self.expires_at)
        if self.rotation_due is not None:
            data["rotationDue"] = _format_ts(self.rotation_due)
        if self.last_accessed is not None:
            data["lastAccessed"] = _format_ts(self.last_accessed)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "KeyMetadata":
        """Parse the stored JSON shape.

        Raises:
            KeyError: If keyId is missing
            ValueError: If a field has the wrong type or format
        """
        if not isinstance(data, dict):
            raise ValueError("metadata must be an object")
        key_id = data["keyId"]
        if not isinstance(key_id, str) or not key_id:
            raise ValueError("keyId must be a non-empty string")
        tags = data.get("tags") or {}
        if not isinstance(tags, dict):
            raise ValueError("tags must be an object")
        created_at = _parse_ts(data.get("createdAt")) or utc_now()
        return cls(
            key_id=key_id,
            created_at=created_at,
            expires_at=_parse_ts(data.get("expiresAt")),
            rotation_due=_parse_ts(data.get("rotationDue")),
            last_accessed=_parse_ts(data.get("lastAccessed")),
            access_count=int(data.get("accessCount") or 0),
            tags={str(k): str(v) for k, v in tags.items()},
        )
