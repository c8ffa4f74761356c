# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
PocketSync FastAPI Integration - The server side of the sync API.

Endpoints (under a configurable prefix, default /api/sync):
- POST /upload    store an encrypted blob (10 per hour per storage key)
- GET  /download  latest blob for a storage key (5 per minute per key)
- GET  /cleanup   retention job, bearer-token protected

The server only ever handles opaque encrypted blobs and storage keys; it
never sees passphrases or plaintext.
"""

import base64
import binascii
import math
import secrets
import time
from collections import defaultdict, deque
from email.utils import format_datetime
from typing import Callable, Deque, Dict, Tuple

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from pocketsync.config import DEFAULT_MAX_BLOB_BYTES
from pocketsync.integrations.blobstore import DEFAULT_RETENTION_DAYS, FileBlobStore
from pocketsync.models import utc_now
from pocketsync.transport.base import is_valid_storage_key

logger = structlog.get_logger()

# Security
security = HTTPBearer(auto_error=False)

UPLOADS_PER_HOUR = 10
DOWNLOADS_PER_MINUTE = 5


class SlidingWindowLimiter:
    """
    In-memory sliding-window rate limiter keyed by storage key.

    Args:
        limit: Requests allowed per window
        window_seconds: Window length
        clock: Monotonic time source
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)

    def hit(self, key: str) -> Tuple[bool, int]:
        """
        Count a request for key.

        Returns:
            (allowed, retry_after_seconds); retry_after is 0 when allowed
        """
        now = self._clock()
        hits = self._hits[key]

        while hits and hits[0] <= now - self.window_seconds:
            hits.popleft()

        if len(hits) >= self.limit:
            retry_after = max(1, math.ceil(hits[0] + self.window_seconds - now))
            return False, retry_after

        hits.append(now)
        return True, 0


def _error_response(
    status: int,
    code: str,
    message: str,
    operation: str,
    headers: Dict[str, str] | None = None,
) -> JSONResponse:
    logger.warning("sync_api_error", operation=operation, code=code, status=status)
    return JSONResponse(
        status_code=status,
        content={
            "error": code,
            "code": code,
            "message": message,
            "timestamp": utc_now().isoformat(),
        },
        headers=headers,
    )


def _rate_limited(
    limiter: SlidingWindowLimiter,
    retry_after: int,
    operation: str,
    noun: str,
) -> JSONResponse:
    return _error_response(
        429,
        "RATE_LIMIT_EXCEEDED",
        f"Too many {noun}. Please try again later.",
        operation,
        headers={
            "Retry-After": str(retry_after),
            "X-RateLimit-Limit": str(limiter.limit),
            "X-RateLimit-Remaining": "0",
        },
    )


def bearer_token_checker(token: str | None) -> Callable:
    """
    Build a dependency that requires `Authorization: Bearer <token>`.

    With no token configured every request is rejected.
    """

    async def verify_token(
        credentials: HTTPAuthorizationCredentials | None = Depends(security),
    ) -> bool:
        if not token or not credentials:
            raise HTTPException(status_code=401, detail="Unauthorized")

        if not secrets.compare_digest(credentials.credentials, token):
            raise HTTPException(status_code=401, detail="Unauthorized")

        return True

    return verify_token


def register_sync_routes(
    app: FastAPI,
    blob_store: FileBlobStore,
    prefix: str = "/api/sync",
    cleanup_token: str | None = None,
    max_blob_bytes: int = DEFAULT_MAX_BLOB_BYTES,
    retention_days: int = DEFAULT_RETENTION_DAYS,
    upload_limiter: SlidingWindowLimiter | None = None,
    download_limiter: SlidingWindowLimiter | None = None,
) -> None:
    """
    Register the sync API endpoints on a FastAPI app.

    Args:
        app: FastAPI application
        blob_store: Where uploaded blobs are kept
        prefix: URL prefix for endpoints (default: /api/sync)
        cleanup_token: Bearer token for the cleanup job
        max_blob_bytes: Largest accepted upload
        retention_days: Age after which old versions are cleaned up
        upload_limiter: Defaults to 10 uploads per hour per key
        download_limiter: Defaults to 5 downloads per minute per key
    """
    upload_limiter = upload_limiter or SlidingWindowLimiter(UPLOADS_PER_HOUR, 3600)
    download_limiter = download_limiter or SlidingWindowLimiter(DOWNLOADS_PER_MINUTE, 60)
    verify_cleanup_token = bearer_token_checker(cleanup_token)

    @app.post(f"{prefix}/upload")
    async def upload_blob(request: Request) -> Response:
        """
        Store an encrypted backup blob.

        Body: {"blob": base64, "storageKey": 64 hex chars, "metadata": {...}}
        """
        try:
            body = await request.json()
        except ValueError:
            return _error_response(400, "INVALID_REQUEST", "Invalid JSON in request body", "upload")

        if not isinstance(body, dict):
            return _error_response(400, "INVALID_REQUEST", "Request body must be an object", "upload")

        blob = body.get("blob")
        storage_key = body.get("storageKey")
        metadata = body.get("metadata")

        if not blob or not storage_key or metadata is None:
            return _error_response(
                400,
                "INVALID_REQUEST",
                "Missing required fields: blob, storageKey, metadata",
                "upload",
            )

        if not is_valid_storage_key(storage_key):
            return _error_response(
                400,
                "INVALID_REQUEST",
                "Storage key must be 64 lowercase hex characters",
                "upload",
            )

        allowed, retry_after = upload_limiter.hit(storage_key)
        if not allowed:
            return _rate_limited(upload_limiter, retry_after, "upload", "uploads")

        try:
            data = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError, TypeError):
            return _error_response(
                400,
                "INVALID_REQUEST",
                "Blob data must be valid base64",
                "upload",
            )

        if len(data) > max_blob_bytes:
            return _error_response(
                413,
                "PAYLOAD_TOO_LARGE",
                f"Backup exceeds size limit. Size: {len(data) / 1024 / 1024:.2f}MB",
                "upload",
            )

        try:
            stored = await blob_store.put(storage_key, data)
        except OSError as e:
            logger.error("server_blob_store_failed", error_type=type(e).__name__)
            return _error_response(
                503,
                "UPLOAD_FAILED",
                "Failed to store backup. Please try again.",
                "upload",
            )

        logger.info(
            "server_upload_complete",
            storage_key_hash=storage_key[:8],
            size=stored.size,
        )

        return JSONResponse(
            {
                "success": True,
                "uploadedAt": stored.uploaded_at.isoformat(),
                "blobSize": stored.size,
                "storageKeyHash": storage_key[:8],
                "versionId": stored.version_id,
            }
        )

    @app.get(f"{prefix}/download")
    async def download_blob(storageKey: str | None = None) -> Response:
        """
        Return the newest blob for a storage key as application/octet-stream.
        """
        if not storageKey:
            return _error_response(
                400,
                "INVALID_REQUEST",
                "Missing required query parameter: storageKey",
                "download",
            )

        if not is_valid_storage_key(storageKey):
            return _error_response(
                400,
                "INVALID_REQUEST",
                "Storage key must be 64 lowercase hex characters",
                "download",
            )

        allowed, retry_after = download_limiter.hit(storageKey)
        if not allowed:
            return _rate_limited(download_limiter, retry_after, "download", "downloads")

        found = await blob_store.latest(storageKey)
        if found is None:
            return _error_response(
                404,
                "NOT_FOUND",
                "No backup found for this passphrase.",
                "download",
            )

        stored, data = found

        logger.info(
            "server_download_complete",
            storage_key_hash=storageKey[:8],
            size=len(data),
        )

        return Response(
            content=data,
            media_type="application/octet-stream",
            headers={
                "Last-Modified": format_datetime(stored.uploaded_at, usegmt=True),
                "Cache-Control": "no-store",
            },
        )

    @app.api_route(
        f"{prefix}/cleanup",
        methods=["GET", "POST"],
        dependencies=[Depends(verify_cleanup_token)],
    )
    async def cleanup_blobs() -> dict:
        """
        Delete old backup versions, keeping the newest per storage key.
        """
        started = time.monotonic()
        result = await blob_store.cleanup(max_age_days=retention_days)

        response = {
            "success": True,
            "deletedCount": result.deleted_count,
            "preservedCount": result.preserved_count,
            "totalScanned": result.total_scanned,
            "duration": round((time.monotonic() - started) * 1000),
            "timestamp": utc_now().isoformat(),
        }
        if result.errors:
            response["errors"] = result.errors
        return response
