"""Audit log destinations.

Each sink receives fully built, redacted entries. Sinks report their own
failures through the application logger and never raise into the caller.
"""

import asyncio
import json
import os
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

import httpx
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fingerprint.audit.types import AuditLogEntry
from fingerprint.core.encryption import EncryptionError, Encryptor
from fingerprint.core.logging import get_logger

logger = get_logger(__name__)

# Event name emitted by the console sink
AUDIT_EVENT = "audit_event"


class AuditSink(Protocol):
    """Destination for audit entries."""

    async def write(self, entry: AuditLogEntry) -> None:
        """Deliver one entry. Must not raise."""
        ...

    async def close(self) -> None:
        """Release resources."""
        ...


class ConsoleSink:
    """Emit audit entries as structlog events at the matching level."""

    def __init__(self, logger_name: str = "fingerprint.audit.trail"):
        self._logger = get_logger(logger_name)

    async def write(self, entry: AuditLogEntry) -> None:
        emit = getattr(self._logger, entry.level.value)
        emit(
            AUDIT_EVENT,
            event_type=entry.event_type.value,
            operation=entry.operation,
            actor=entry.actor,
            target=entry.target,
            result=entry.result,
            session_id=entry.session_id,
            details=entry.details,
        )

    async def close(self) -> None:
        return None


class FileSink:
    """Append audit entries to a JSON-lines file, rotating it by size.

    When an encryptor is available each line holds the AES-GCM envelope
    (``{"encryptedData", "iv", "authTag"}``) of the serialized entry.
    Rotated files are renamed ``<stem>-<UTC timestamp><suffix>``.
    """

    def __init__(
        self,
        path: Path,
        max_bytes: int,
        encryptor: Callable[[], Encryptor | None] | None = None,
    ):
        """Initialize the file sink.

        Args:
            path: Log file path
            max_bytes: Rotate once the file would grow past this size
            encryptor: Callable returning the active encryptor, if any
        """
        self.path = Path(path)
        self.max_bytes = max_bytes
        self._encryptor = encryptor or (lambda: None)
        self._lock = asyncio.Lock()

    def _serialize(self, entry: AuditLogEntry) -> str:
        line = json.dumps(entry.to_dict(), default=str)
        encryptor = self._encryptor()
        if encryptor is not None:
            line = json.dumps(encryptor.encrypt_string(line))
        return line + "\n"

    def _append(self, line: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.path.exists() and self.path.stat().st_size + len(line) > self.max_bytes:
            self._rotate()
        with open(self.path, "a", encoding="utf-8") as fh:
            fh.write(line)

    def _rotate(self) -> None:
        stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S%fZ")
        rotated = self.path.with_name(f"{self.path.stem}-{stamp}{self.path.suffix}")
        os.replace(self.path, rotated)
        logger.info("audit_log_rotated", path=str(self.path), rotated_to=str(rotated))

    async def write(self, entry: AuditLogEntry) -> None:
        try:
            line = self._serialize(entry)
            async with self._lock:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, self._append, line)
        except (OSError, EncryptionError, TypeError, ValueError) as e:
            logger.error("audit_file_write_failed", path=str(self.path), error=str(e))

    async def close(self) -> None:
        return None


class RemoteSink:
    """POST audit entries as JSON to a collector endpoint.

    Requests carry the ``X-API-Key`` header and are retried with
    exponential backoff on transport errors and 5xx responses.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        max_attempts: int = 3,
        timeout: float = 10.0,
    ):
        """Initialize the remote sink.

        Args:
            endpoint: Collector URL
            api_key: Value for the X-API-Key header
            client: Pre-built HTTP client (the sink closes only clients it created)
            max_attempts: Delivery attempts per entry
            timeout: Request timeout in seconds
        """
        self.endpoint = endpoint
        self._api_key = api_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self.max_attempts = max_attempts

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["X-API-Key"] = self._api_key
        return headers

    async def _send(self, entry: AuditLogEntry) -> None:
        response = await self._client.post(
            self.endpoint, json=entry.to_dict(), headers=self._headers()
        )
        if response.status_code >= 500:
            response.raise_for_status()
        if response.status_code >= 400:
            logger.warning(
                "audit_remote_rejected",
                endpoint=self.endpoint,
                status_code=response.status_code,
            )

    async def write(self, entry: AuditLogEntry) -> None:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
            retry=retry_if_exception_type(httpx.HTTPError),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._send(entry)
        except RetryError as e:
            logger.error(
                "audit_remote_send_failed",
                endpoint=self.endpoint,
                attempts=self.max_attempts,
                error=str(e.last_attempt.exception()),
            )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
