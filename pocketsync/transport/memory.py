# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
In-process blob transport.

Keeps every uploaded version per storage key, so it can stand in for the
remote store in tests and single-machine setups.
"""

from collections import defaultdict
from typing import Dict, List

import structlog

from pocketsync.exceptions import BackupNotFound
from pocketsync.models import EncryptedBackup

logger = structlog.get_logger()


class InMemoryTransport:
    """BlobTransport holding serialized envelopes in a dict."""

    def __init__(self) -> None:
        self._versions: Dict[str, List[bytes]] = defaultdict(list)
        self.upload_count = 0
        self.download_count = 0

    async def upload(self, backup: EncryptedBackup, storage_key: str) -> None:
        self._versions[storage_key].append(backup.to_bytes())
        self.upload_count += 1
        logger.debug("blob_stored", size=backup.size_bytes, versions=len(self._versions[storage_key]))

    async def download(self, storage_key: str) -> EncryptedBackup:
        self.download_count += 1
        versions = self._versions.get(storage_key)
        if not versions:
            raise BackupNotFound("No backup found for this passphrase")
        return EncryptedBackup.from_bytes(versions[-1])

    def versions(self, storage_key: str) -> List[bytes]:
        """Raw envelopes stored under storage_key, oldest first."""
        return list(self._versions.get(storage_key, []))

    def put_raw(self, storage_key: str, blob: bytes) -> None:
        """Store arbitrary bytes as the latest version (corruption tests)."""
        self._versions[storage_key].append(blob)
