# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Filesystem blob store for the sync server.

Every upload is kept as its own version, {storage_key}-{epoch_ms}.blob, and
downloads serve the newest one. Retention cleanup deletes old versions but
always keeps the most recent backup of every storage key.
"""

import os
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List

import aiofiles
import structlog

from pocketsync.models import from_millis, to_millis, utc_now

logger = structlog.get_logger()

BLOB_SUFFIX = ".blob"
DEFAULT_RETENTION_DAYS = 90


@dataclass(frozen=True)
class StoredBlob:
    """One stored version."""

    storage_key: str
    path: Path
    uploaded_at: datetime
    size: int

    @property
    def version_id(self) -> str:
        return self.path.name


@dataclass
class CleanupResult:
    """Result of a retention cleanup run."""

    deleted_count: int = 0
    preserved_count: int = 0
    total_scanned: int = 0
    errors: List[str] = field(default_factory=list)


def _parse_name(path: Path) -> tuple[str, int] | None:
    """Split '{storage_key}-{ms}.blob' into its parts."""
    stem = path.name[: -len(BLOB_SUFFIX)]
    storage_key, sep, millis = stem.rpartition("-")
    if not sep or not millis.isdigit():
        return None
    return storage_key, int(millis)


class FileBlobStore:
    """
    Versioned blob storage in a local directory.

    Args:
        root: Directory the blobs are written to
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def _scan(self, storage_key: str | None = None) -> List[StoredBlob]:
        if not self.root.exists():
            return []

        pattern = f"{storage_key}-*{BLOB_SUFFIX}" if storage_key else f"*{BLOB_SUFFIX}"
        blobs: List[StoredBlob] = []

        for path in self.root.glob(pattern):
            parsed = _parse_name(path)
            if parsed is None:
                continue
            key, millis = parsed
            if storage_key is not None and key != storage_key:
                continue
            blobs.append(
                StoredBlob(
                    storage_key=key,
                    path=path,
                    uploaded_at=from_millis(millis),
                    size=path.stat().st_size,
                )
            )

        return sorted(blobs, key=lambda b: b.uploaded_at)

    async def put(
        self,
        storage_key: str,
        data: bytes,
        uploaded_at: datetime | None = None,
    ) -> StoredBlob:
        """
        Store a new version for storage_key.

        The file is written atomically (write to temp, then rename).
        """
        self.root.mkdir(parents=True, exist_ok=True)

        millis = to_millis(uploaded_at or utc_now())
        path = self.root / f"{storage_key}-{millis}{BLOB_SUFFIX}"
        while path.exists():
            millis += 1
            path = self.root / f"{storage_key}-{millis}{BLOB_SUFFIX}"

        temp_path = path.with_suffix(".tmp")
        async with aiofiles.open(temp_path, "wb") as f:
            await f.write(data)
        os.replace(temp_path, path)

        logger.debug("server_blob_stored", storage_key_hash=storage_key[:8], size=len(data))

        return StoredBlob(
            storage_key=storage_key,
            path=path,
            uploaded_at=from_millis(millis),
            size=len(data),
        )

    def versions(self, storage_key: str) -> List[StoredBlob]:
        """All stored versions for storage_key, oldest first."""
        return self._scan(storage_key)

    async def latest(self, storage_key: str) -> tuple[StoredBlob, bytes] | None:
        """
        Newest version for storage_key and its contents.

        Returns:
            (StoredBlob, data), or None if nothing is stored
        """
        versions = self._scan(storage_key)
        if not versions:
            return None

        newest = versions[-1]
        async with aiofiles.open(newest.path, "rb") as f:
            data = await f.read()
        return newest, data

    async def cleanup(
        self,
        max_age_days: int = DEFAULT_RETENTION_DAYS,
        now: datetime | None = None,
    ) -> CleanupResult:
        """
        Delete versions older than max_age_days.

        The most recent version of each storage key is always kept,
        however old it is.
        """
        cutoff = (now or utc_now()) - timedelta(days=max_age_days)
        result = CleanupResult()

        by_key: Dict[str, List[StoredBlob]] = defaultdict(list)
        for blob in self._scan():
            by_key[blob.storage_key].append(blob)
            result.total_scanned += 1

        for storage_key, blobs in by_key.items():
            newest_first = sorted(blobs, key=lambda b: b.uploaded_at, reverse=True)
            result.preserved_count += 1

            for blob in newest_first[1:]:
                if blob.uploaded_at >= cutoff:
                    result.preserved_count += 1
                    continue
                try:
                    blob.path.unlink()
                    result.deleted_count += 1
                    logger.debug(
                        "server_blob_deleted",
                        storage_key_hash=storage_key[:8],
                        version_id=blob.version_id,
                        size=blob.size,
                    )
                except OSError as e:
                    result.errors.append(f"Failed to delete {blob.version_id}: {e}")
                    logger.error(
                        "server_blob_delete_failed",
                        version_id=blob.version_id,
                        error=str(e),
                    )

        logger.info(
            "server_cleanup_complete",
            deleted=result.deleted_count,
            preserved=result.preserved_count,
            scanned=result.total_scanned,
            errors=len(result.errors),
        )

        return result
