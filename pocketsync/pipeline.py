# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
PocketSync Backup Pipeline - Orchestrates backup and restore runs.

Upload path:   export -> encrypt -> upload
Restore path:  download -> decrypt -> restore

Every failure is recorded in the sync metadata (with a user-facing message)
before a classified PocketSyncError is re-raised. Only one run per profile
may be in flight at a time. Derived keys are wiped when a run ends, however
it ends.
"""

import asyncio
from contextlib import contextmanager
from enum import Enum
from typing import Awaitable, Iterator, Optional, Set, TypeVar

import structlog

from pocketsync.codec import CODEC_FORMAT_VERSION, decode_async, encode_async
from pocketsync.config import SyncConfig
from pocketsync.crypto.engine import open_backup, seal_backup
from pocketsync.crypto.kdf import (
    derive_key_async,
    derive_storage_key_async,
    generate_salt,
    storage_key_hash,
)
from pocketsync.crypto.passphrase import ensure_usable_passphrase
from pocketsync.errors import describe_restore_failure, describe_upload_failure
from pocketsync.exceptions import (
    AuthenticationFailed,
    BackupNotFound,
    ConcurrentOperationInProgress,
    ExportError,
    LocalWriteError,
    MalformedBackup,
    NetworkError,
    PocketSyncError,
    QuotaExceeded,
    UnsupportedVersion,
)
from pocketsync.guard import ConflictGuard
from pocketsync.metadata import SyncMetadataStore
from pocketsync.models import (
    BackupReceipt,
    BackupSnapshot,
    ConflictStatus,
    EncryptedBackup,
    ProgressStage,
    RestoreReceipt,
    Tables,
    utc_now,
)
from pocketsync.progress import ProgressCallback, ProgressTracker
from pocketsync.snapshots import LocalSnapshotVault
from pocketsync.store import DomainStore
from pocketsync.transport.base import BlobTransport

logger = structlog.get_logger()

T = TypeVar("T")

# Profiles with a backup or restore in flight (process-wide)
_active_profiles: Set[str] = set()


class PipelineState(str, Enum):
    """Where the latest run is (or where it stopped)."""

    IDLE = "idle"
    EXPORTING = "exporting"
    ENCRYPTING = "encrypting"
    UPLOADING = "uploading"
    DOWNLOADING = "downloading"
    DECRYPTING = "decrypting"
    RESTORING = "restoring"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def _classify(exc: Exception, state: PipelineState) -> PocketSyncError:
    """Map any exception to a PocketSyncError based on where it happened."""
    if isinstance(exc, PocketSyncError):
        return exc

    details = {"error_type": type(exc).__name__, "state": state.value}

    if state == PipelineState.EXPORTING:
        return ExportError("Could not read local data", details=details)
    if state in (PipelineState.UPLOADING, PipelineState.DOWNLOADING):
        return NetworkError("Remote storage request failed", details=details)
    if state == PipelineState.DECRYPTING:
        return MalformedBackup("Backup could not be read", details=details)
    if state == PipelineState.RESTORING:
        return LocalWriteError("Could not write restored data", details=details)
    return PocketSyncError("Unexpected sync failure", details=details)


class BackupPipeline:
    """
    Backup and restore for one local profile.

    The object is reusable across runs; `state` reflects the latest run.

    Args:
        config: Engine configuration (profile, KDF cost, timeouts)
        store: Local domain data
        transport: Remote blob storage
        metadata: Sync metadata (defaults to config.metadata_db_path)
        snapshots: Safety snapshot vault (defaults to config.snapshot_dir)
    """

    def __init__(
        self,
        config: SyncConfig,
        store: DomainStore,
        transport: BlobTransport,
        metadata: SyncMetadataStore | None = None,
        snapshots: LocalSnapshotVault | None = None,
    ):
        self.config = config
        self.store = store
        self.transport = transport
        self.metadata = metadata or SyncMetadataStore(
            config.metadata_db_path, config.profile_id
        )
        self.snapshots = snapshots or LocalSnapshotVault(
            config.snapshot_dir,
            keep=config.keep_safety_snapshots,
            compression_level=config.compression_level,
        )
        self.guard = ConflictGuard(
            transport,
            self.metadata,
            kdf_iterations=config.kdf_iterations,
            timeout=config.network_timeout_seconds,
        )
        self.state = PipelineState.IDLE

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        profile_id = self.config.profile_id
        if profile_id in _active_profiles:
            logger.warning("sync_operation_rejected", profile_id=profile_id)
            raise ConcurrentOperationInProgress(
                "Another backup or restore is already running",
                details={"profile_id": profile_id},
            )
        _active_profiles.add(profile_id)
        try:
            yield
        finally:
            _active_profiles.discard(profile_id)

    async def _remote(self, call: Awaitable[T], operation: str) -> T:
        """Run a transport call under the configured timeout."""
        try:
            return await asyncio.wait_for(call, timeout=self.config.network_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise NetworkError(
                f"Remote {operation} timed out",
                details={
                    "operation": operation,
                    "timeout_seconds": self.config.network_timeout_seconds,
                },
            ) from e

    async def check_age(self, passphrase: str) -> ConflictStatus:
        """
        Check whether the cloud holds a newer backup than this device.

        Advisory; never raises for remote problems.
        """
        return await self.guard.check_age(passphrase)

    async def create_backup(
        self,
        passphrase: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BackupReceipt:
        """
        Export, encrypt and upload local data.

        Args:
            passphrase: Backup passphrase (never stored)
            on_progress: Optional progress sink

        Returns:
            BackupReceipt for the uploaded backup

        Raises:
            ConcurrentOperationInProgress: A run for this profile is in flight
            PocketSyncError: Any classified failure (already recorded)
        """
        with self._exclusive():
            tracker = ProgressTracker(on_progress)
            key = None
            self.state = PipelineState.IDLE

            try:
                ensure_usable_passphrase(passphrase)

                self.state = PipelineState.EXPORTING
                tracker.start(ProgressStage.EXPORT, "Reading local data")
                tables = await self.store.export_snapshot()
                tracker.complete("Local data read")

                self.state = PipelineState.ENCRYPTING
                tracker.start(ProgressStage.ENCRYPT, "Deriving encryption key")
                created_at = utc_now()
                salt = generate_salt()
                storage_key = await derive_storage_key_async(
                    passphrase, self.config.kdf_iterations
                )
                key = await derive_key_async(passphrase, salt, self.config.kdf_iterations)

                tracker.advance(40, "Compressing backup")
                encoded = await encode_async(
                    BackupSnapshot(
                        version=CODEC_FORMAT_VERSION,
                        created_at=created_at,
                        tables=tables,
                        schema_version=self.store.schema_version,
                    ),
                    compress=self.config.compress_backups,
                    level=self.config.compression_level,
                )

                tracker.advance(70, "Encrypting backup")
                backup = seal_backup(encoded, key, salt, created_at)
                key.wipe()
                del encoded
                tracker.complete("Backup encrypted")

                if backup.size_bytes > self.config.max_blob_bytes:
                    raise QuotaExceeded(
                        "Backup exceeds the remote size limit",
                        details={
                            "size_bytes": backup.size_bytes,
                            "max_blob_bytes": self.config.max_blob_bytes,
                        },
                    )

                self.state = PipelineState.UPLOADING
                tracker.start(ProgressStage.UPLOAD, "Uploading backup")
                await self._remote(self.transport.upload(backup, storage_key), "upload")
                tracker.complete("Backup uploaded")

            except asyncio.CancelledError:
                self.state = PipelineState.FAILED
                tracker.halt()
                raise

            except Exception as e:
                failed_in = self.state
                self.state = PipelineState.FAILED
                tracker.halt()
                error = _classify(e, failed_in)

                logger.error(
                    "backup_failed",
                    profile_id=self.config.profile_id,
                    state=failed_in.value,
                    error_type=type(error).__name__,
                )
                await self.metadata.record_sync_outcome(
                    False, error=describe_upload_failure(error)
                )

                if error is e:
                    raise
                raise error from e

            finally:
                if key is not None:
                    key.wipe()
                tracker.close()

            key_hash = storage_key_hash(storage_key)
            await self.metadata.record_sync_outcome(
                True,
                backup.size_bytes,
                storage_key_hash=key_hash,
                backup_created_at=created_at,
            )
            self.state = PipelineState.SUCCEEDED

            logger.info(
                "backup_complete",
                profile_id=self.config.profile_id,
                size=backup.size_bytes,
                storage_key_hash=key_hash,
            )

            return BackupReceipt(
                size_bytes=backup.size_bytes,
                created_at=created_at,
                storage_key_hash=key_hash,
            )

    async def restore_backup(
        self,
        passphrase: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RestoreReceipt:
        """
        Download, decrypt and import the remote backup.

        Current local data is saved as a safety snapshot before the import.
        If the import fails, local data is left as it was and the snapshot id
        is included in the LocalWriteError details.

        Raises:
            ConcurrentOperationInProgress: A run for this profile is in flight
            AuthenticationFailed: Wrong passphrase, no backup or corrupted backup
            UnsupportedVersion: Backup written by a newer format
            LocalWriteError: Backup was valid but could not be applied
            PocketSyncError: Any other classified failure (already recorded)
        """
        with self._exclusive():
            tracker = ProgressTracker(on_progress)
            key = None
            self.state = PipelineState.IDLE

            try:
                ensure_usable_passphrase(passphrase)

                self.state = PipelineState.DOWNLOADING
                tracker.start(ProgressStage.DOWNLOAD, "Locating backup")
                storage_key = await derive_storage_key_async(
                    passphrase, self.config.kdf_iterations
                )
                tracker.advance(20, "Downloading backup")
                backup = await self._download(storage_key)
                tracker.complete("Backup downloaded")

                self.state = PipelineState.DECRYPTING
                tracker.start(ProgressStage.DECRYPT, "Deriving decryption key")
                key = await derive_key_async(passphrase, backup.salt, self.config.kdf_iterations)

                tracker.advance(50, "Decrypting backup")
                plaintext = open_backup(backup, key)
                key.wipe()

                tracker.advance(80, "Checking backup")
                snapshot = await decode_async(plaintext)
                del plaintext
                self._check_schema(snapshot)
                tracker.complete("Backup verified")

                self.state = PipelineState.RESTORING
                tracker.start(ProgressStage.RESTORE, "Saving a safety copy of local data")
                snapshot_id = await self._save_safety_snapshot()

                tracker.advance(30, "Restoring data")
                await self._import(snapshot.tables, snapshot_id)
                tracker.complete("Restore complete")

            except asyncio.CancelledError:
                self.state = PipelineState.FAILED
                tracker.halt()
                raise

            except Exception as e:
                failed_in = self.state
                self.state = PipelineState.FAILED
                tracker.halt()
                error = _classify(e, failed_in)

                logger.error(
                    "restore_failed",
                    profile_id=self.config.profile_id,
                    state=failed_in.value,
                    error_type=type(error).__name__,
                )
                await self.metadata.record_restore_outcome(
                    False, describe_restore_failure(error)
                )

                if error is e:
                    raise
                raise error from e

            finally:
                if key is not None:
                    key.wipe()
                tracker.close()

            await self.metadata.record_restore_outcome(
                True,
                blob_size=backup.size_bytes,
                backup_created_at=snapshot.created_at,
            )
            self.state = PipelineState.SUCCEEDED

            records = sum(len(rows) for rows in snapshot.tables.values())
            logger.info(
                "restore_complete",
                profile_id=self.config.profile_id,
                tables=len(snapshot.tables),
                records=records,
                safety_snapshot_id=snapshot_id,
            )

            return RestoreReceipt(
                size_bytes=backup.size_bytes,
                backup_created_at=snapshot.created_at,
                tables_restored=len(snapshot.tables),
                records_restored=records,
                safety_snapshot_id=snapshot_id,
            )

    async def _download(self, storage_key: str) -> EncryptedBackup:
        """
        Fetch the envelope stored under a passphrase-derived key.

        A wrong passphrase points at a key with nothing behind it, so a missing
        blob and an unreadable envelope are reported like a tag failure.
        """
        try:
            return await self._remote(self.transport.download(storage_key), "download")
        except (BackupNotFound, MalformedBackup):
            raise AuthenticationFailed() from None

    def _check_schema(self, snapshot: BackupSnapshot) -> None:
        """Reject backups from a newer domain schema than the local store."""
        if (
            snapshot.schema_version is not None
            and snapshot.schema_version > self.store.schema_version
        ):
            raise UnsupportedVersion(
                found=snapshot.schema_version,
                supported=self.store.schema_version,
            )

    async def _save_safety_snapshot(self) -> str:
        try:
            current = await self.store.export_snapshot()
            return await self.snapshots.save(current, schema_version=self.store.schema_version)
        except Exception as e:
            raise LocalWriteError(
                "Could not save a safety copy of local data",
                details={"error_type": type(e).__name__},
            ) from e

    async def _import(self, tables: Tables, snapshot_id: str) -> None:
        try:
            await self.store.import_snapshot(tables)
        except Exception as e:
            raise LocalWriteError(
                "Could not write restored data",
                details={"error_type": type(e).__name__, "safety_snapshot_id": snapshot_id},
            ) from e

    async def rollback_restore(self, snapshot_id: str) -> int:
        """
        Put back the local data saved before a restore.

        Args:
            snapshot_id: Id from RestoreReceipt or LocalWriteError details

        Returns:
            Number of records restored
        """
        with self._exclusive():
            snapshot = await self.snapshots.load(snapshot_id)
            try:
                await self.store.import_snapshot(snapshot.tables)
            except Exception as e:
                raise LocalWriteError(
                    "Could not roll back to the safety copy",
                    details={"error_type": type(e).__name__, "safety_snapshot_id": snapshot_id},
                ) from e

        records = sum(len(rows) for rows in snapshot.tables.values())
        logger.info(
            "restore_rolled_back",
            profile_id=self.config.profile_id,
            safety_snapshot_id=snapshot_id,
            records=records,
        )
        return records
