# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Framework Integrations - Sync API server for FastAPI applications.
"""

from pocketsync.integrations.blobstore import (
    CleanupResult,
    FileBlobStore,
    StoredBlob,
)

from pocketsync.integrations.fastapi import (
    SlidingWindowLimiter,
    bearer_token_checker,
    register_sync_routes,
)

__all__ = [
    # Blob storage
    "CleanupResult",
    "FileBlobStore",
    "StoredBlob",
    # FastAPI
    "SlidingWindowLimiter",
    "bearer_token_checker",
    "register_sync_routes",
]
