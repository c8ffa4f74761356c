# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Remote blob transport interface.

A transport stores and fetches opaque EncryptedBackup blobs by storage key.
It never sees plaintext or key material.
"""

import re
from typing import Protocol, runtime_checkable

from pocketsync.models import EncryptedBackup

# Storage keys are 64 lowercase hex characters
STORAGE_KEY_PATTERN = re.compile(r"[0-9a-f]{64}")


def is_valid_storage_key(storage_key: str) -> bool:
    return isinstance(storage_key, str) and STORAGE_KEY_PATTERN.fullmatch(storage_key) is not None


@runtime_checkable
class BlobTransport(Protocol):
    """Where encrypted backups live."""

    async def upload(self, backup: EncryptedBackup, storage_key: str) -> None:
        """
        Store backup as the latest version for storage_key.

        Raises:
            NetworkError: Any transport failure (or a subclass of it)
        """
        ...

    async def download(self, storage_key: str) -> EncryptedBackup:
        """
        Fetch the latest backup for storage_key.

        Raises:
            BackupNotFound: Nothing stored under storage_key
            NetworkError: Any other transport failure
        """
        ...
