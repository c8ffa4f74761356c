# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
HTTP blob transport for the PocketSync sync API.

Talks to the routes registered by pocketsync.integrations.fastapi:

    POST {prefix}/upload            JSON {blob, storageKey, metadata}
    GET  {prefix}/download?storageKey=...

HTTP failures are mapped onto the NetworkError family so the pipeline can
classify them without knowing about HTTP.
"""

import base64
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
import structlog

from pocketsync.crypto.kdf import storage_key_hash
from pocketsync.exceptions import (
    BackupNotFound,
    NetworkError,
    QuotaExceeded,
    RateLimited,
)
from pocketsync.models import EncryptedBackup, to_millis

logger = structlog.get_logger()

DEFAULT_RETRY_AFTER = 60


def _retry_after(response: httpx.Response) -> int:
    value = response.headers.get("Retry-After")
    try:
        return max(0, int(value)) if value is not None else DEFAULT_RETRY_AFTER
    except ValueError:
        return DEFAULT_RETRY_AFTER


def _raise_for_status(response: httpx.Response, operation: str) -> None:
    """Map a non-2xx response to a NetworkError subclass."""
    status = response.status_code
    if status < 300:
        return

    details = {"status": status, "operation": operation}

    if status == 404:
        raise BackupNotFound("No backup found for this passphrase", details=details)
    if status == 413:
        raise QuotaExceeded("Backup exceeds the remote size limit", details=details)
    if status == 429:
        raise RateLimited(retry_after=_retry_after(response), details=details)
    if status == 503:
        raise NetworkError("Sync service is temporarily unavailable", details=details)
    raise NetworkError(f"Sync service returned HTTP {status}", details=details)


class HttpTransport:
    """
    BlobTransport over the PocketSync HTTP API.

    Args:
        base_url: Server root, e.g. "https://sync.example.com"
        prefix: Route prefix the server registered its routes under
        timeout: Per-request timeout in seconds
        client: Pre-configured httpx.AsyncClient (not closed by this class)
    """

    def __init__(
        self,
        base_url: str = "",
        prefix: str = "/api/sync",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url
        self.prefix = prefix.rstrip("/")
        self.timeout = timeout
        self._client = client

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout) as client:
            yield client

    async def upload(self, backup: EncryptedBackup, storage_key: str) -> None:
        body = {
            "blob": base64.b64encode(backup.to_bytes()).decode("ascii"),
            "storageKey": storage_key,
            "metadata": {
                "size": backup.size_bytes,
                "createdAt": to_millis(backup.created_at),
                "schemaVersion": backup.schema_version,
            },
        }

        try:
            async with self._session() as client:
                response = await client.post(f"{self.prefix}/upload", json=body)
        except httpx.TimeoutException as e:
            raise NetworkError("Upload timed out", details={"operation": "upload"}) from e
        except httpx.HTTPError as e:
            raise NetworkError(
                "Could not reach the sync service",
                details={"operation": "upload", "error_type": type(e).__name__},
            ) from e

        _raise_for_status(response, "upload")

        logger.info(
            "blob_uploaded",
            storage_key_hash=storage_key_hash(storage_key),
            size=backup.size_bytes,
        )

    async def download(self, storage_key: str) -> EncryptedBackup:
        try:
            async with self._session() as client:
                response = await client.get(
                    f"{self.prefix}/download",
                    params={"storageKey": storage_key},
                )
        except httpx.TimeoutException as e:
            raise NetworkError("Download timed out", details={"operation": "download"}) from e
        except httpx.HTTPError as e:
            raise NetworkError(
                "Could not reach the sync service",
                details={"operation": "download", "error_type": type(e).__name__},
            ) from e

        _raise_for_status(response, "download")

        logger.info(
            "blob_downloaded",
            storage_key_hash=storage_key_hash(storage_key),
            size=len(response.content),
        )

        return EncryptedBackup.from_bytes(response.content)
