# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
PocketSync Safety Snapshots - Local copies taken before a restore.

Before a restore replaces local data, the current data is written here so
the restore can be rolled back. Snapshots are plain codec files (the data
is already on this device, unencrypted) named by ULID, and only the newest
few are kept.
"""

import os
from pathlib import Path
from typing import List

import aiofiles
import structlog
from ulid import ULID

from pocketsync.codec import CODEC_FORMAT_VERSION, decode_async, encode_async
from pocketsync.exceptions import LocalWriteError, PocketSyncError
from pocketsync.models import BackupSnapshot, Tables, utc_now

logger = structlog.get_logger()

SNAPSHOT_SUFFIX = ".snap"


class SnapshotNotFound(PocketSyncError):
    """Raised when a safety snapshot id does not exist."""

    pass


class LocalSnapshotVault:
    """
    Directory of pre-restore safety snapshots.

    Args:
        path: Directory holding the snapshot files
        keep: Number of newest snapshots kept after each save
        compression_level: zstd level for snapshot files
    """

    def __init__(self, path: Path, keep: int = 3, compression_level: int = 10):
        self.path = Path(path)
        self.keep = keep
        self.compression_level = compression_level

    def _snapshot_path(self, snapshot_id: str) -> Path:
        # Ids are ULIDs; reject anything else before touching the filesystem
        try:
            ULID.from_str(snapshot_id)
        except ValueError:
            raise SnapshotNotFound(
                "Unknown safety snapshot",
                details={"snapshot_id": snapshot_id},
            )
        return self.path / f"{snapshot_id}{SNAPSHOT_SUFFIX}"

    def list_snapshots(self) -> List[str]:
        """Snapshot ids, oldest first."""
        if not self.path.exists():
            return []
        return sorted(p.stem for p in self.path.glob(f"*{SNAPSHOT_SUFFIX}"))

    def _next_id(self) -> str:
        new_id = ULID()
        existing = self.list_snapshots()
        # Keep ids strictly increasing when several saves share a millisecond
        if existing and str(new_id) <= existing[-1]:
            new_id = ULID.from_int(int(ULID.from_str(existing[-1])) + 1)
        return str(new_id)

    async def save(self, tables: Tables, schema_version: int | None = None) -> str:
        """
        Write a snapshot of tables and prune old ones.

        The file is written atomically (write to temp, then rename).

        Returns:
            Snapshot id (ULID)

        Raises:
            LocalWriteError: The snapshot could not be written
        """
        snapshot = BackupSnapshot(
            version=CODEC_FORMAT_VERSION,
            created_at=utc_now(),
            tables=tables,
            schema_version=schema_version,
        )

        try:
            self.path.mkdir(parents=True, exist_ok=True)
            snapshot_id = self._next_id()
            encoded = await encode_async(snapshot, compress=True, level=self.compression_level)

            snapshot_path = self.path / f"{snapshot_id}{SNAPSHOT_SUFFIX}"
            temp_path = snapshot_path.with_suffix(".tmp")

            async with aiofiles.open(temp_path, "wb") as f:
                await f.write(encoded)

            os.replace(temp_path, snapshot_path)

        except OSError as e:
            raise LocalWriteError(
                "Could not save a safety copy of local data",
                details={"error_type": type(e).__name__},
            ) from e

        logger.info(
            "safety_snapshot_saved",
            snapshot_id=snapshot_id,
            size=len(encoded),
        )

        await self.prune()
        return snapshot_id

    async def load(self, snapshot_id: str) -> BackupSnapshot:
        """
        Read a snapshot back.

        Raises:
            SnapshotNotFound: No snapshot with that id
        """
        snapshot_path = self._snapshot_path(snapshot_id)
        try:
            async with aiofiles.open(snapshot_path, "rb") as f:
                data = await f.read()
        except FileNotFoundError:
            raise SnapshotNotFound(
                "Unknown safety snapshot",
                details={"snapshot_id": snapshot_id},
            )

        return await decode_async(data)

    async def delete(self, snapshot_id: str) -> bool:
        """
        Delete a snapshot.

        Returns:
            True if a file was removed
        """
        snapshot_path = self._snapshot_path(snapshot_id)
        try:
            snapshot_path.unlink()
        except FileNotFoundError:
            return False

        logger.debug("safety_snapshot_deleted", snapshot_id=snapshot_id)
        return True

    async def prune(self) -> int:
        """
        Delete all but the newest `keep` snapshots.

        Returns:
            Number of snapshots deleted
        """
        snapshot_ids = self.list_snapshots()
        excess = snapshot_ids[:-self.keep] if len(snapshot_ids) > self.keep else []

        for snapshot_id in excess:
            try:
                (self.path / f"{snapshot_id}{SNAPSHOT_SUFFIX}").unlink()
            except OSError as e:
                logger.warning(
                    "safety_snapshot_prune_failed",
                    snapshot_id=snapshot_id,
                    error=str(e),
                )

        if excess:
            logger.debug("safety_snapshots_pruned", deleted=len(excess))

        return len(excess)
