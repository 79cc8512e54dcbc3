"""fingerprint.cli

Key management command line tool (``fingerprint-keys``).

Subcommands list, add, delete and rotate keys of one key type, and migrate
a ``PRIVATE_KEY`` environment variable into managed storage. Prompts happen
before any key backend is touched; ``--json`` gives machine-readable output.
"""

import argparse
import asyncio
import getpass
import json
import os
import secrets
import sys
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any

from eth_account import Account

from fingerprint.config.settings import Settings, get_settings
from fingerprint.core.logging import LogContext, setup_logging
from fingerprint.keys.config import KeyProviderType
from fingerprint.keys.manager import KeyManager
from fingerprint.keys.types import KeyMetadata, KeyType, utc_now
from fingerprint.security import initialize_security
from fingerprint.utils.exceptions import FingerprintError

CLI_ACTOR = "cli"
MIGRATED_KEY_ID = "migrated_deployment_key"
GENERATABLE_TYPES = (KeyType.WALLET, KeyType.DEPLOYMENT)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fingerprint-keys",
        description="Manage AI Fingerprint wallet, signing, deployment and API keys.",
    )
    parser.add_argument(
        "--type",
        choices=[t.value for t in KeyType],
        default=KeyType.WALLET.value,
        help="Key type to operate on (default: wallet).",
    )
    parser.add_argument(
        "--provider",
        choices=[p.value for p in KeyProviderType],
        default=None,
        help="Storage backend for the key type (default: encrypted-file outside production).",
    )
    parser.add_argument("--json", action="store_true", help="Print JSON output.")

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("list", help="List keys of the selected type")

    p_add = sub.add_parser("add", help="Store a new key")
    p_add.add_argument("--key-id", default=None, help="Key ID (generated if omitted).")
    p_add.add_argument("--description", default=None, help="Description tag.")
    p_add.add_argument(
        "--expires-in-days",
        type=int,
        default=0,
        help="Expire the key after this many days (0 for never).",
    )
    p_add.add_argument(
        "--generate",
        action="store_true",
        help="Generate a new private key instead of prompting (wallet and deployment only).",
    )

    p_delete = sub.add_parser("delete", help="Delete a key")
    p_delete.add_argument("key_id", help="Key to delete.")
    p_delete.add_argument("--yes", action="store_true", help="Skip confirmation.")

    p_rotate = sub.add_parser("rotate", help="Rotate a key to a new ID")
    p_rotate.add_argument("key_id", nargs="?", default=None, help="Key to rotate (default key if omitted).")
    p_rotate.add_argument("--yes", action="store_true", help="Skip confirmation.")

    p_migrate = sub.add_parser(
        "migrate", help="Move PRIVATE_KEY from the environment into deployment key storage"
    )
    p_migrate.add_argument("--yes", action="store_true", help="Skip confirmation.")

    return parser


def generate_private_key() -> str:
    """New random 32-byte private key as 0x-prefixed hex."""
    return "0x" + secrets.token_hex(32)


def _print_json(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _fail(error: Exception, *, as_json: bool) -> int:
    if as_json:
        _print_json({"ok": False, "error": str(error), "errorType": type(error).__name__})
    else:
        print(f"error: {error}", file=sys.stderr)
    return 1


def _format_ts(metadata: KeyMetadata, name: str, empty: str) -> str:
    value = getattr(metadata, name)
    return value.strftime("%Y-%m-%d %H:%M:%S") if value is not None else empty


async def cmd_keys_list(*, manager: KeyManager, key_type: KeyType, as_json: bool = False) -> int:
    keys = await manager.list_keys(key_type, actor=CLI_ACTOR)

    if as_json:
        _print_json({"keyType": key_type.value, "keys": [m.to_dict() for m in keys]})
        return 0

    if not keys:
        print(f"No {key_type.value} keys found.")
        return 0

    print(f"{'ID':<40} {'Created':<20} {'Expires':<20} Tags")
    print("-" * 100)
    for m in keys:
        tags = ",".join(f"{k}={v}" for k, v in m.tags.items())
        created = _format_ts(m, "created_at", "N/A")
        expires = _format_ts(m, "expires_at", "Never")
        print(f"{m.key_id:<40} {created:<20} {expires:<20} {tags}")
    return 0


async def cmd_keys_add(
    *,
    manager: KeyManager,
    key_type: KeyType,
    secret: str,
    key_id: str | None = None,
    description: str | None = None,
    expires_in_days: int = 0,
    as_json: bool = False,
) -> int:
    expires_at = utc_now() + timedelta(days=expires_in_days) if expires_in_days > 0 else None
    stored_id = await manager.store_key(
        key_type,
        secret,
        key_id=key_id,
        expires_at=expires_at,
        tags={"description": description or "Added via CLI"},
        actor=CLI_ACTOR,
    )

    if as_json:
        _print_json({"ok": True, "keyType": key_type.value, "keyId": stored_id})
        return 0
    print(f"Key stored successfully with ID: {stored_id}")
    return 0


async def cmd_keys_delete(
    *, manager: KeyManager, key_type: KeyType, key_id: str, as_json: bool = False
) -> int:
    deleted = await manager.delete_key(key_type, key_id, actor=CLI_ACTOR)

    if as_json:
        _print_json({"ok": True, "keyId": key_id, "deleted": deleted})
        return 0
    if deleted:
        print(f"Key {key_id} deleted successfully.")
    else:
        print(f"Key {key_id} not found.")
    return 0


async def cmd_keys_rotate(
    *,
    manager: KeyManager,
    key_type: KeyType,
    key_id: str | None = None,
    as_json: bool = False,
) -> int:
    key_id = key_id or manager.get_default_key_id(key_type)
    new_key_id = await manager.rotate_key(key_type, key_id, actor=CLI_ACTOR)

    if as_json:
        _print_json({"ok": True, "keyId": key_id, "newKeyId": new_key_id})
        return 0
    print(f"Key {key_id} rotated successfully. New key ID: {new_key_id}")
    return 0


async def cmd_keys_migrate(*, manager: KeyManager, private_key: str, as_json: bool = False) -> int:
    key_id = await manager.store_key(
        KeyType.DEPLOYMENT,
        private_key,
        key_id=MIGRATED_KEY_ID,
        tags={
            "description": "Migrated from environment variable",
            "source": "PRIVATE_KEY",
            "migratedAt": utc_now().isoformat().replace("+00:00", "Z"),
        },
        actor=CLI_ACTOR,
    )

    if as_json:
        _print_json({"ok": True, "keyType": KeyType.DEPLOYMENT.value, "keyId": key_id})
        return 0
    print(f"PRIVATE_KEY migrated to secure storage with ID: {key_id}")
    print("Remove PRIVATE_KEY from your environment and .env files.")
    return 0


def _confirm(prompt: str) -> bool:
    raw = input(f"{prompt} (y/n): ").strip().lower()
    return raw in ("y", "yes")


def _master_password(settings: Settings) -> str | None:
    """Prompt for the master password when nothing in the environment provides one."""
    if settings.is_production:
        return None
    if settings.get_secret_value("master_key_password") or settings.get_secret_value("master_key"):
        return None
    return getpass.getpass("Enter master key password: ") or None


def _collect_input(args: argparse.Namespace, key_type: KeyType) -> int | None:
    """Gather prompted values onto ``args``; a return value ends the command early."""
    if args.command == "add":
        if args.generate:
            if key_type not in GENERATABLE_TYPES:
                print("error: --generate is only supported for wallet and deployment keys", file=sys.stderr)
                return 2
            args.secret = generate_private_key()
            if not args.json:
                print(f"Generated new key for address {Account.from_key(args.secret).address}")
        else:
            args.secret = getpass.getpass("Enter the key: ")
            if not args.secret:
                print("error: key cannot be empty", file=sys.stderr)
                return 1

    elif args.command in ("delete", "rotate"):
        target = args.key_id or "the default key"
        if not args.yes and not _confirm(f"Are you sure you want to {args.command} {target}?"):
            print("Operation cancelled.")
            return 0

    elif args.command == "migrate":
        args.private_key = os.environ.get("PRIVATE_KEY")
        if not args.private_key:
            print("No PRIVATE_KEY found in environment.")
            return 0
        if not args.yes and not _confirm("Migrate PRIVATE_KEY to secure storage?"):
            print("Operation cancelled.")
            return 0

    return None


def _command(args: argparse.Namespace, manager: KeyManager, key_type: KeyType) -> Awaitable[int]:
    dispatch: dict[str, Callable[[], Awaitable[int]]] = {
        "list": lambda: cmd_keys_list(manager=manager, key_type=key_type, as_json=args.json),
        "add": lambda: cmd_keys_add(
            manager=manager,
            key_type=key_type,
            secret=args.secret,
            key_id=args.key_id,
            description=args.description,
            expires_in_days=args.expires_in_days,
            as_json=args.json,
        ),
        "delete": lambda: cmd_keys_delete(
            manager=manager, key_type=key_type, key_id=args.key_id, as_json=args.json
        ),
        "rotate": lambda: cmd_keys_rotate(
            manager=manager, key_type=key_type, key_id=args.key_id, as_json=args.json
        ),
        "migrate": lambda: cmd_keys_migrate(
            manager=manager, private_key=args.private_key, as_json=args.json
        ),
    }
    return dispatch[args.command]()


async def _run(
    args: argparse.Namespace,
    key_type: KeyType,
    settings: Settings,
    master_password: str | None,
) -> int:
    try:
        context = await initialize_security(
            settings, master_password=master_password, configure_logging=False
        )
    except FingerprintError as e:
        return _fail(e, as_json=args.json)

    try:
        # The environment backend does not outlive the process
        provider = args.provider or (
            None if settings.is_production else KeyProviderType.ENCRYPTED_FILE.value
        )
        if provider is not None:
            context.key_manager.set_provider_for_key_type(key_type, KeyProviderType(provider))
        with LogContext(command=args.command, key_type=key_type.value):
            return await _command(args, context.key_manager, key_type)
    except FingerprintError as e:
        return _fail(e, as_json=args.json)
    finally:
        await context.close()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 2

    key_type = KeyType.DEPLOYMENT if args.command == "migrate" else KeyType(args.type)
    settings = get_settings()
    setup_logging(log_level="WARNING", json_format=False)

    try:
        early = _collect_input(args, key_type)
        if early is not None:
            return early
        master_password = _master_password(settings)
        return asyncio.run(_run(args, key_type, settings, master_password))
    except (KeyboardInterrupt, EOFError):
        print("\nOperation cancelled.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
