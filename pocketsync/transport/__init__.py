# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Transports - Where encrypted backups are stored remotely.

HttpTransport and S3Transport import their client libraries at module
level; import them from their own modules.
"""

from pocketsync.transport.base import (
    BlobTransport,
    STORAGE_KEY_PATTERN,
    is_valid_storage_key,
)

from pocketsync.transport.memory import InMemoryTransport

__all__ = [
    "BlobTransport",
    "STORAGE_KEY_PATTERN",
    "is_valid_storage_key",
    "InMemoryTransport",
]
