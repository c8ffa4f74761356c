# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
PocketSync Conflict Guard - Pre-upload check for a newer cloud backup.

The backup timestamp lives inside the encrypted payload, so the probe
downloads and fully decrypts the remote backup. The check is advisory and
fails open: if the remote copy cannot be fetched or read, the upload is not
blocked. It never retries on its own.
"""

import asyncio
import math

import structlog

from pocketsync.codec import decode_async
from pocketsync.crypto.engine import open_backup
from pocketsync.crypto.kdf import derive_key_async, derive_storage_key_async
from pocketsync.errors import explain_cloud_newer, explain_unsynced_cloud_backup
from pocketsync.exceptions import (
    AuthenticationFailed,
    BackupNotFound,
    CodecError,
    DerivationError,
)
from pocketsync.metadata import SyncMetadataStore
from pocketsync.models import ConflictStatus, ProbeError, ProbeFailure
from pocketsync.transport.base import BlobTransport

logger = structlog.get_logger()


class ConflictGuard:
    """
    Compares the remote backup against this device's last-known-good sync.

    Args:
        transport: Where the remote backup lives
        metadata: This profile's sync metadata
        kdf_iterations: PBKDF2 iteration count
        timeout: Upper bound for the download, in seconds
    """

    def __init__(
        self,
        transport: BlobTransport,
        metadata: SyncMetadataStore,
        kdf_iterations: int,
        timeout: float,
    ):
        self.transport = transport
        self.metadata = metadata
        self.kdf_iterations = kdf_iterations
        self.timeout = timeout

    async def probe(self, passphrase: str) -> ConflictStatus | ProbeError:
        """
        Fetch and read the remote backup for passphrase.

        Returns:
            ConflictStatus when the remote state is known (including "no
            backup"), ProbeError when it could not be determined
        """
        try:
            storage_key = await derive_storage_key_async(passphrase, self.kdf_iterations)
        except DerivationError as e:
            return ProbeError(ProbeFailure.DERIVATION, e.message)

        try:
            backup = await asyncio.wait_for(
                self.transport.download(storage_key), timeout=self.timeout
            )
        except BackupNotFound:
            return ConflictStatus(cloud_is_newer=False, cloud_exists=False)
        except CodecError as e:
            return ProbeError(ProbeFailure.UNREADABLE, e.message)
        except asyncio.TimeoutError:
            return ProbeError(ProbeFailure.NETWORK, "Timed out checking cloud backup")
        except Exception as e:
            logger.warning("conflict_probe_download_failed", error_type=type(e).__name__)
            return ProbeError(ProbeFailure.NETWORK, "Could not reach cloud backup")

        try:
            key = await derive_key_async(passphrase, backup.salt, self.kdf_iterations)
        except DerivationError as e:
            return ProbeError(ProbeFailure.DERIVATION, e.message)

        plaintext = None
        try:
            with key:
                plaintext = open_backup(backup, key)
            snapshot = await decode_async(plaintext)
        except AuthenticationFailed as e:
            return ProbeError(ProbeFailure.UNDECRYPTABLE, e.message)
        except CodecError as e:
            return ProbeError(ProbeFailure.UNREADABLE, e.message)
        finally:
            del plaintext

        try:
            local = await self.metadata.read()
        except Exception as e:
            logger.warning("conflict_probe_metadata_failed", error_type=type(e).__name__)
            return ProbeError(ProbeFailure.LOCAL_STATE, "Could not read local sync state")

        last_known_good = local.last_known_good if local else None

        if last_known_good is None:
            return ConflictStatus(
                cloud_is_newer=True,
                cloud_exists=True,
                cloud_timestamp=snapshot.created_at,
                warning_message=explain_unsynced_cloud_backup(),
            )

        if snapshot.created_at > last_known_good:
            hours = math.floor((snapshot.created_at - last_known_good).total_seconds() / 3600)
            return ConflictStatus(
                cloud_is_newer=True,
                cloud_exists=True,
                cloud_timestamp=snapshot.created_at,
                warning_message=explain_cloud_newer(hours),
            )

        return ConflictStatus(
            cloud_is_newer=False,
            cloud_exists=True,
            cloud_timestamp=snapshot.created_at,
        )

    async def check_age(self, passphrase: str) -> ConflictStatus:
        """
        Advisory check run before an upload.

        Never raises for remote problems: a probe failure is reported as
        "cloud is not newer" so the upload can go ahead.
        """
        result = await self.probe(passphrase)

        if isinstance(result, ProbeError):
            logger.warning("conflict_probe_failed_open", reason=result.reason.value)
            return ConflictStatus(cloud_is_newer=False)

        logger.info(
            "conflict_probe_complete",
            cloud_exists=result.cloud_exists,
            cloud_is_newer=result.cloud_is_newer,
        )
        return result
