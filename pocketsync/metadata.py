# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
PocketSync Sync Metadata - Local record of backup and restore outcomes.

One row per profile in the sync_metadata table. Every write is a single
UPSERT committed in its own transaction, so a record is never left half
updated. A failed upload never moves the last successful sync timestamp,
which is what the conflict check compares remote backups against.
"""

from datetime import datetime
from pathlib import Path
from typing import Callable

import aiosqlite
import structlog

from pocketsync.exceptions import PocketSyncError
from pocketsync.models import SyncMetadata, utc_now

logger = structlog.get_logger()

_COLUMNS = (
    "profile_id",
    "last_sync_timestamp",
    "last_sync_success",
    "blob_size_bytes",
    "storage_key_hash",
    "error_message",
    "last_successful_sync_timestamp",
    "last_restore_timestamp",
    "last_restore_success",
    "restored_blob_size",
    "restored_backup_timestamp",
    "restore_error_message",
)


async def init_metadata_db(db_path: Path) -> None:
    """
    Initialize the sync metadata schema.

    Creates the table if it doesn't exist. This is idempotent.

    Args:
        db_path: Path to the SQLite database file
    """
    try:
        async with aiosqlite.connect(db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS sync_metadata (
                    profile_id TEXT PRIMARY KEY,
                    last_sync_timestamp TEXT,
                    last_sync_success INTEGER NOT NULL DEFAULT 0,
                    blob_size_bytes INTEGER NOT NULL DEFAULT 0,
                    storage_key_hash TEXT NOT NULL DEFAULT '',
                    error_message TEXT,
                    last_successful_sync_timestamp TEXT,
                    last_restore_timestamp TEXT,
                    last_restore_success INTEGER,
                    restored_blob_size INTEGER,
                    restored_backup_timestamp TEXT,
                    restore_error_message TEXT
                )
            """)
            await db.commit()

        logger.info("metadata_db_initialized", db_path=str(db_path))

    except aiosqlite.Error as e:
        raise PocketSyncError(
            f"Failed to initialize sync metadata database: {e}",
            details={"db_path": str(db_path)},
        ) from e


def _iso(moment: datetime | None) -> str | None:
    return moment.isoformat() if moment is not None else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_metadata(row: tuple) -> SyncMetadata:
    return SyncMetadata(
        profile_id=row[0],
        last_sync_timestamp=_parse(row[1]),
        last_sync_success=bool(row[2]),
        blob_size_bytes=row[3],
        storage_key_hash=row[4],
        error_message=row[5],
        last_successful_sync_timestamp=_parse(row[6]),
        last_restore_timestamp=_parse(row[7]),
        last_restore_success=None if row[8] is None else bool(row[8]),
        restored_blob_size=row[9],
        restored_backup_timestamp=_parse(row[10]),
        restore_error_message=row[11],
    )


class SyncMetadataStore:
    """
    Sync metadata for one profile, persisted in SQLite.

    Args:
        db_path: Path to the SQLite database file
        profile_id: Profile whose row this store reads and writes
        clock: Source of "now" for attempt timestamps
    """

    def __init__(
        self,
        db_path: Path,
        profile_id: str,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db_path = Path(db_path)
        self.profile_id = profile_id
        self._clock = clock
        self._initialized = False

    async def _ensure_schema(self) -> None:
        if not self._initialized:
            await init_metadata_db(self.db_path)
            self._initialized = True

    async def _write(self, sql: str, params: tuple) -> None:
        await self._ensure_schema()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(sql, params)
            await db.commit()

    async def read(self) -> SyncMetadata | None:
        """
        Read the current record.

        Returns:
            SyncMetadata, or None if nothing was ever recorded
        """
        await self._ensure_schema()
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                f"SELECT {', '.join(_COLUMNS)} FROM sync_metadata WHERE profile_id = ?",
                (self.profile_id,),
            ) as cursor:
                row = await cursor.fetchone()

        return _row_to_metadata(row) if row else None

    async def record_sync_outcome(
        self,
        success: bool,
        size_bytes: int | None = None,
        error: str | None = None,
        *,
        storage_key_hash: str | None = None,
        backup_created_at: datetime | None = None,
    ) -> None:
        """
        Record the outcome of an upload attempt.

        On success the last successful sync timestamp moves to the uploaded
        backup's creation time. On failure only the attempt timestamp, the
        success flag and the error message change.

        Args:
            success: Whether the upload completed
            size_bytes: Size of the uploaded blob (success only)
            error: User-facing error message (failure only)
            storage_key_hash: Display prefix of the storage key
            backup_created_at: created_at of the uploaded backup
        """
        now = self._clock()

        if success:
            await self._write(
                """
                INSERT INTO sync_metadata (
                    profile_id, last_sync_timestamp, last_sync_success,
                    blob_size_bytes, storage_key_hash, error_message,
                    last_successful_sync_timestamp
                )
                VALUES (?, ?, 1, ?, ?, NULL, ?)
                ON CONFLICT(profile_id) DO UPDATE SET
                    last_sync_timestamp = excluded.last_sync_timestamp,
                    last_sync_success = 1,
                    blob_size_bytes = excluded.blob_size_bytes,
                    storage_key_hash = excluded.storage_key_hash,
                    error_message = NULL,
                    last_successful_sync_timestamp = excluded.last_successful_sync_timestamp
                """,
                (
                    self.profile_id,
                    _iso(now),
                    size_bytes or 0,
                    storage_key_hash or "",
                    _iso(backup_created_at or now),
                ),
            )
            logger.info(
                "sync_outcome_recorded",
                profile_id=self.profile_id,
                success=True,
                size_bytes=size_bytes,
            )
        else:
            await self._write(
                """
                INSERT INTO sync_metadata (
                    profile_id, last_sync_timestamp, last_sync_success, error_message
                )
                VALUES (?, ?, 0, ?)
                ON CONFLICT(profile_id) DO UPDATE SET
                    last_sync_timestamp = excluded.last_sync_timestamp,
                    last_sync_success = 0,
                    error_message = excluded.error_message
                """,
                (self.profile_id, _iso(now), error),
            )
            logger.warning(
                "sync_outcome_recorded",
                profile_id=self.profile_id,
                success=False,
            )

    async def record_restore_outcome(
        self,
        success: bool,
        error: str | None = None,
        *,
        blob_size: int | None = None,
        backup_created_at: datetime | None = None,
    ) -> None:
        """
        Record the outcome of a restore attempt.

        Upload fields are never touched. A failed restore keeps the
        previously restored backup's size and timestamp.
        """
        now = self._clock()

        if success:
            await self._write(
                """
                INSERT INTO sync_metadata (
                    profile_id, last_restore_timestamp, last_restore_success,
                    restored_blob_size, restored_backup_timestamp, restore_error_message
                )
                VALUES (?, ?, 1, ?, ?, NULL)
                ON CONFLICT(profile_id) DO UPDATE SET
                    last_restore_timestamp = excluded.last_restore_timestamp,
                    last_restore_success = 1,
                    restored_blob_size = excluded.restored_blob_size,
                    restored_backup_timestamp = excluded.restored_backup_timestamp,
                    restore_error_message = NULL
                """,
                (self.profile_id, _iso(now), blob_size, _iso(backup_created_at)),
            )
        else:
            await self._write(
                """
                INSERT INTO sync_metadata (
                    profile_id, last_restore_timestamp, last_restore_success,
                    restore_error_message
                )
                VALUES (?, ?, 0, ?)
                ON CONFLICT(profile_id) DO UPDATE SET
                    last_restore_timestamp = excluded.last_restore_timestamp,
                    last_restore_success = 0,
                    restore_error_message = excluded.restore_error_message
                """,
                (self.profile_id, _iso(now), error),
            )

        logger.info(
            "restore_outcome_recorded",
            profile_id=self.profile_id,
            success=success,
        )

    async def clear(self) -> None:
        """Delete this profile's record."""
        await self._write(
            "DELETE FROM sync_metadata WHERE profile_id = ?",
            (self.profile_id,),
        )
        logger.info("sync_metadata_cleared", profile_id=self.profile_id)
