# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3 blob transport.

Stores each user's latest envelope at {prefix}{storage_key}.blob. Bucket
versioning, if enabled, keeps the older uploads.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import structlog
from botocore.exceptions import BotoCoreError, ClientError

from pocketsync.crypto.kdf import storage_key_hash
from pocketsync.exceptions import BackupNotFound, NetworkError, QuotaExceeded
from pocketsync.models import EncryptedBackup, to_millis

logger = structlog.get_logger()

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}


class S3Transport:
    """
    BlobTransport backed by an S3 bucket.

    Args:
        bucket: Bucket name
        prefix: Key prefix for backup blobs
        region: AWS region
        session: aiobotocore session (created on demand if omitted)
        client: Already-open S3 client; when given, used as-is
    """

    def __init__(
        self,
        bucket: str,
        prefix: str = "pocketsync/",
        region: str = "us-east-1",
        session: Any = None,
        client: Any = None,
    ):
        self.bucket = bucket
        self.prefix = prefix
        self.region = region
        self._session = session
        self._client = client

    def object_key(self, storage_key: str) -> str:
        return f"{self.prefix}{storage_key}.blob"

    @asynccontextmanager
    async def _s3(self) -> AsyncIterator[Any]:
        if self._client is not None:
            yield self._client
            return

        if self._session is None:
            from aiobotocore.session import get_session

            self._session = get_session()

        async with self._session.create_client("s3", region_name=self.region) as client:
            yield client

    async def upload(self, backup: EncryptedBackup, storage_key: str) -> None:
        key = self.object_key(storage_key)
        try:
            async with self._s3() as s3:
                await s3.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=backup.to_bytes(),
                    ContentType="application/octet-stream",
                    Metadata={
                        "created-at": str(to_millis(backup.created_at)),
                        "schema-version": str(backup.schema_version),
                    },
                )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code == "EntityTooLarge":
                raise QuotaExceeded(
                    "Backup exceeds the remote size limit",
                    details={"code": code},
                ) from e
            raise NetworkError(
                "S3 upload failed",
                details={"operation": "upload", "code": code},
            ) from e
        except BotoCoreError as e:
            raise NetworkError(
                "Could not reach S3",
                details={"operation": "upload", "error_type": type(e).__name__},
            ) from e

        logger.info(
            "blob_uploaded",
            storage_key_hash=storage_key_hash(storage_key),
            size=backup.size_bytes,
            bucket=self.bucket,
        )

    async def download(self, storage_key: str) -> EncryptedBackup:
        key = self.object_key(storage_key)
        try:
            async with self._s3() as s3:
                response = await s3.get_object(Bucket=self.bucket, Key=key)
                data = await response["Body"].read()
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in _NOT_FOUND_CODES:
                raise BackupNotFound(
                    "No backup found for this passphrase",
                    details={"code": code},
                ) from e
            raise NetworkError(
                "S3 download failed",
                details={"operation": "download", "code": code},
            ) from e
        except BotoCoreError as e:
            raise NetworkError(
                "Could not reach S3",
                details={"operation": "download", "error_type": type(e).__name__},
            ) from e

        logger.info(
            "blob_downloaded",
            storage_key_hash=storage_key_hash(storage_key),
            size=len(data),
            bucket=self.bucket,
        )

        return EncryptedBackup.from_bytes(data)
