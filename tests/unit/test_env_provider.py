"""Tests for the environment-seeded key provider."""

import os
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from fingerprint.audit.types import AuditEventType, LogLevel
from fingerprint.keys.config import EnvKeyProviderConfig, KeyProviderOptions
from fingerprint.keys.environment import EnvKeyProvider
from fingerprint.keys.protocol import (
    KeyExpiredError,
    KeyNotFoundError,
    KeyProvider,
    KeyValidationError,
)
from fingerprint.keys.types import utc_now

PREFIX = "FPTEST_KEY_"


@pytest.fixture
def provider() -> EnvKeyProvider:
    """Provider reading a private environment mapping."""
    return EnvKeyProvider(
        EnvKeyProviderConfig(prefix=PREFIX),
        environ={f"{PREFIX}seeded": "seed-secret", "UNRELATED": "x"},
    )


class TestEnvKeyProvider:
    """Tests for EnvKeyProvider."""

    def test_satisfies_protocol(self, provider: EnvKeyProvider) -> None:
        """Test the provider implements KeyProvider."""
        assert isinstance(provider, KeyProvider)

    @pytest.mark.asyncio
    async def test_seeded_from_environment(self, provider: EnvKeyProvider) -> None:
        """Test prefixed variables are readable by key ID."""
        assert await provider.get_key("seeded") == "seed-secret"

        keys = await provider.list_keys()
        assert [m.key_id for m in keys] == ["seeded"]
        assert keys[0].tags == {"source": "environment"}

    @pytest.mark.asyncio
    async def test_store_and_get(self, provider: EnvKeyProvider) -> None:
        """Test a stored secret round-trips with its metadata."""
        expires = utc_now() + timedelta(days=1)
        key_id = await provider.store_key(
            "0xabc", key_id="wallet", expires_at=expires, tags={"keyType": "wallet"}
        )

        assert key_id == "wallet"
        assert await provider.get_key("wallet") == "0xabc"
        metadata = await provider.get_key_metadata("wallet")
        assert metadata.expires_at == expires
        assert metadata.tags == {"keyType": "wallet"}

    @pytest.mark.asyncio
    async def test_generated_key_id(self, provider: EnvKeyProvider) -> None:
        """Test an ID is generated when none is given."""
        key_id = await provider.store_key("secret")

        assert key_id
        assert await provider.get_key(key_id) == "secret"

    @pytest.mark.asyncio
    async def test_store_never_touches_os_environ(self) -> None:
        """Test writes stay in memory."""
        with patch.dict(os.environ, {}, clear=False):
            before = dict(os.environ)
            provider = EnvKeyProvider(EnvKeyProviderConfig(prefix=PREFIX))
            await provider.store_key("in-memory", key_id="mem")

            assert dict(os.environ) == before
            assert f"{PREFIX}mem" not in os.environ

    @pytest.mark.asyncio
    async def test_picks_up_late_variables(self) -> None:
        """Test a variable set after construction is found on first read."""
        environ: dict[str, str] = {}
        provider = EnvKeyProvider(EnvKeyProviderConfig(prefix=PREFIX), environ=environ)
        environ[f"{PREFIX}late"] = "late-secret"

        assert await provider.get_key("late") == "late-secret"

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, provider: EnvKeyProvider) -> None:
        """Test storing over an existing key fails."""
        with pytest.raises(KeyValidationError, match="already exists"):
            await provider.store_key("other", key_id="seeded")

    @pytest.mark.asyncio
    async def test_empty_secret_rejected(self, provider: EnvKeyProvider) -> None:
        """Test empty secrets are rejected."""
        with pytest.raises(KeyValidationError):
            await provider.store_key("", key_id="empty")

    @pytest.mark.asyncio
    async def test_non_string_tags_rejected(self, provider: EnvKeyProvider) -> None:
        """Test tag values must be strings."""
        with pytest.raises(KeyValidationError):
            await provider.store_key("secret", tags={"count": 1})  # type: ignore[dict-item]

    @pytest.mark.asyncio
    async def test_missing_key(self, provider: EnvKeyProvider) -> None:
        """Test reading an unknown key."""
        with pytest.raises(KeyNotFoundError):
            await provider.get_key("missing")

    @pytest.mark.asyncio
    async def test_access_accounting(self, provider: EnvKeyProvider) -> None:
        """Test each read bumps the access count."""
        await provider.get_key("seeded")
        await provider.get_key("seeded")

        metadata = await provider.get_key_metadata("seeded")
        assert metadata.access_count == 2
        assert metadata.last_accessed is not None

    @pytest.mark.asyncio
    async def test_access_accounting_disabled(self) -> None:
        """Test reads leave metadata alone when access auditing is off."""
        provider = EnvKeyProvider(
            EnvKeyProviderConfig(prefix=PREFIX, options=KeyProviderOptions(audit_access=False)),
            environ={f"{PREFIX}k": "v"},
        )
        await provider.get_key("k")

        assert (await provider.get_key_metadata("k")).access_count == 0


class TestExpiration:
    """Tests for expiration enforcement."""

    @pytest.mark.asyncio
    async def test_expired_key_rejected_and_reported(self) -> None:
        """Test expired reads fail and are audited at WARNING."""
        audit = AsyncMock()
        provider = EnvKeyProvider(
            EnvKeyProviderConfig(prefix=PREFIX), audit_logger=audit, environ={}
        )
        await provider.store_key("old", key_id="old", expires_at=utc_now() - timedelta(seconds=5))

        with pytest.raises(KeyExpiredError) as exc_info:
            await provider.get_key("old")

        assert exc_info.value.key_id == "old"
        args = audit.log.await_args.args
        assert args[0] == LogLevel.WARNING
        assert args[1] == AuditEventType.KEY_ACCESS
        assert audit.log.await_args.kwargs["result"] == "failure"

    @pytest.mark.asyncio
    async def test_expired_key_readable_when_not_enforced(self) -> None:
        """Test enforcement can be switched off."""
        provider = EnvKeyProvider(
            EnvKeyProviderConfig(
                prefix=PREFIX, options=KeyProviderOptions(enforce_expiration=False)
            ),
            environ={},
        )
        await provider.store_key("old", key_id="old", expires_at=utc_now() - timedelta(days=1))

        assert await provider.get_key("old") == "old"


class TestReservedNames:
    """Tests for settings variables sharing the key prefix."""

    @pytest.mark.asyncio
    async def test_settings_not_seeded(self) -> None:
        """Test KEY_DIRECTORY and KEY_ENV_PREFIX are not read as keys."""
        provider = EnvKeyProvider(
            EnvKeyProviderConfig(prefix="KEY_"),
            environ={"KEY_DIRECTORY": "/srv/keys", "KEY_ENV_PREFIX": "X_", "KEY_wallet": "w"},
        )

        assert [m.key_id for m in await provider.list_keys()] == ["wallet"]
        with pytest.raises(KeyNotFoundError):
            await provider.get_key("DIRECTORY")

    @pytest.mark.asyncio
    async def test_settings_not_loaded_lazily(self) -> None:
        """Test settings set after construction are not picked up either."""
        environ: dict[str, str] = {}
        provider = EnvKeyProvider(EnvKeyProviderConfig(prefix="KEY_"), environ=environ)
        environ["KEY_ENV_PREFIX"] = "X_"

        with pytest.raises(KeyNotFoundError):
            await provider.get_key("ENV_PREFIX")


class TestDeletion:
    """Tests for key deletion."""

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, provider: EnvKeyProvider) -> None:
        """Test the first delete returns True and later ones False."""
        assert await provider.delete_key("seeded") is True
        assert await provider.delete_key("seeded") is False

        with pytest.raises(KeyNotFoundError):
            await provider.get_key("seeded")

    @pytest.mark.asyncio
    async def test_delete_never_stored(self, provider: EnvKeyProvider) -> None:
        """Test deleting an unknown key reports False."""
        assert await provider.delete_key("never-stored") is False

    @pytest.mark.asyncio
    async def test_deleted_id_not_reseeded(self, provider: EnvKeyProvider) -> None:
        """Test a deleted environment key is not picked up again."""
        await provider.delete_key("seeded")

        assert await provider.list_keys() == []
        with pytest.raises(KeyNotFoundError):
            await provider.get_key("seeded")

    @pytest.mark.asyncio
    async def test_deleted_id_cannot_be_reused(self, provider: EnvKeyProvider) -> None:
        """Test a deleted ID stays retired."""
        await provider.delete_key("seeded")

        with pytest.raises(KeyValidationError, match="deleted"):
            await provider.store_key("new", key_id="seeded")


class TestRotation:
    """Tests for rotation lineage."""

    @pytest.mark.asyncio
    async def test_rotate_keeps_secret_and_links_keys(self, provider: EnvKeyProvider) -> None:
        """Test rotation copies the secret to a new ID and marks the old one."""
        await provider.store_key("0xabc", key_id="wallet", tags={"keyType": "wallet"})

        new_id = await provider.rotate_key("wallet")

        assert new_id != "wallet"
        assert await provider.get_key(new_id) == "0xabc"
        old = await provider.get_key_metadata("wallet")
        new = await provider.get_key_metadata(new_id)
        assert old.rotated_to == new_id
        assert old.is_rotated
        assert new.tags["previousKeyId"] == "wallet"
        assert new.tags["rotationCount"] == "1"
        assert new.tags["keyType"] == "wallet"
        assert not new.is_rotated

    @pytest.mark.asyncio
    async def test_rotate_with_new_secret(self, provider: EnvKeyProvider) -> None:
        """Test re-keying stores the replacement secret."""
        await provider.store_key("old-secret", key_id="api")

        new_id = await provider.rotate_key("api", new_secret="new-secret")

        assert await provider.get_key(new_id) == "new-secret"
        assert await provider.get_key("api") == "old-secret"

    @pytest.mark.asyncio
    async def test_rotating_rotated_key_extends_chain(self, provider: EnvKeyProvider) -> None:
        """Test a second rotation of the original applies to the chain head."""
        await provider.store_key("s", key_id="chain")
        first = await provider.rotate_key("chain")
        second = await provider.rotate_key("chain")

        head = await provider.get_key_metadata(second)
        assert head.tags["previousKeyId"] == first
        assert head.tags["rotationCount"] == "2"

    @pytest.mark.asyncio
    async def test_rotate_expired_key_fails(self, provider: EnvKeyProvider) -> None:
        """Test an expired secret is not carried forward."""
        await provider.store_key("s", key_id="old", expires_at=utc_now() - timedelta(days=1))

        with pytest.raises(KeyExpiredError):
            await provider.rotate_key("old")

    @pytest.mark.asyncio
    async def test_rotation_interval_schedules_next_rotation(self) -> None:
        """Test the rotated key gets a rotation_due when an interval is set."""
        provider = EnvKeyProvider(
            EnvKeyProviderConfig(
                prefix=PREFIX,
                options=KeyProviderOptions(rotation_interval=timedelta(days=30)),
            ),
            environ={},
        )
        await provider.store_key("s", key_id="k")
        new_id = await provider.rotate_key("k")

        metadata = await provider.get_key_metadata(new_id)
        assert metadata.rotation_due is not None
        assert metadata.rotation_due > utc_now() + timedelta(days=29)


class TestAutoRotation:
    """Tests for rotation on read."""

    @pytest.fixture
    def auto_provider(self) -> EnvKeyProvider:
        """Provider with auto-rotation enabled."""
        return EnvKeyProvider(
            EnvKeyProviderConfig(prefix=PREFIX, options=KeyProviderOptions(auto_rotate=True)),
            environ={},
        )

    @pytest.mark.asyncio
    async def test_due_key_rotates_on_read(self, auto_provider: EnvKeyProvider) -> None:
        """Test reading a due key rotates it and reads from the new key."""
        await auto_provider.store_key(
            "secret", key_id="due", rotation_due=utc_now() - timedelta(minutes=1)
        )

        assert await auto_provider.get_key("due") == "secret"

        old = await auto_provider.get_key_metadata("due")
        assert old.is_rotated
        new = await auto_provider.get_key_metadata(old.rotated_to)
        assert new.access_count == 1
        assert old.access_count == 0

    @pytest.mark.asyncio
    async def test_rotated_key_redirects(self, auto_provider: EnvKeyProvider) -> None:
        """Test later reads of the old ID follow the rotation link."""
        await auto_provider.store_key(
            "secret", key_id="due", rotation_due=utc_now() - timedelta(minutes=1)
        )
        await auto_provider.get_key("due")
        await auto_provider.get_key("due")

        keys = await auto_provider.list_keys()
        assert len(keys) == 2

    @pytest.mark.asyncio
    async def test_failed_rotation_serves_current_key(
        self, auto_provider: EnvKeyProvider
    ) -> None:
        """Test a rotation failure does not mask the read."""
        await auto_provider.store_key(
            "secret", key_id="due", rotation_due=utc_now() - timedelta(minutes=1)
        )

        with patch.object(
            auto_provider, "rotate_key", side_effect=KeyValidationError("boom")
        ):
            assert await auto_provider.get_key("due") == "secret"

        assert not (await auto_provider.get_key_metadata("due")).is_rotated

    @pytest.mark.asyncio
    async def test_missing_successor_serves_current_key(self) -> None:
        """Test a rotated key whose successor was deleted is still readable."""
        audit = AsyncMock()
        provider = EnvKeyProvider(
            EnvKeyProviderConfig(prefix=PREFIX, options=KeyProviderOptions(auto_rotate=True)),
            audit_logger=audit,
            environ={},
        )
        await provider.store_key("s3cret", key_id="a", rotation_due=utc_now() - timedelta(days=1))
        await provider.get_key("a")
        successor = (await provider.get_key_metadata("a")).rotated_to
        await provider.delete_key(successor)
        audit.log.reset_mock()

        assert await provider.get_key("a") == "s3cret"

        audit.log.assert_awaited_once()
        level, event_type, operation = audit.log.await_args.args
        assert level == LogLevel.WARNING
        assert event_type == AuditEventType.KEY_ROTATION
        assert operation == "Rotated key successor is missing"
        assert audit.log.await_args.kwargs["details"]["rotatedTo"] == successor
