# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
PocketSync Backup Codec - Snapshot serialization for backups.

Layout of an encoded snapshot:

    MAGIC "PSNP" | u16 format_version | u8 flags | body

The body is compact JSON, zstd-compressed when FLAG_COMPRESSED is set.
Magic and format version are checked before the body is decompressed or
parsed, so a backup written by a newer app is rejected without touching it.

Timestamps travel as Unix epoch milliseconds.
"""

import asyncio
import json
import struct
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import structlog
import zstandard as zstd

from pocketsync.exceptions import CodecError, MalformedBackup, UnsupportedVersion
from pocketsync.models import BackupSnapshot, from_millis, to_millis

logger = structlog.get_logger()

# Thread pool for CPU-bound compression of large snapshots
_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="pocketsync-codec")

CODEC_MAGIC = b"PSNP"
CODEC_FORMAT_VERSION = 1

FLAG_COMPRESSED = 0x01
_KNOWN_FLAGS = FLAG_COMPRESSED

DEFAULT_ZSTD_LEVEL = 10

# Payloads above this size are (de)compressed off the event loop
_OFFLOAD_THRESHOLD = 1024 * 1024

# magic | u16 format_version | u8 flags
_HEADER = struct.Struct(">4sHB")

# Tables every complete export is expected to carry
CRITICAL_TABLES = ("flares", "symptoms", "medications", "triggers", "foods")


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def encode(
    snapshot: BackupSnapshot,
    compress: bool = True,
    level: int = DEFAULT_ZSTD_LEVEL,
) -> bytes:
    """
    Serialize a snapshot into the versioned codec format.

    Key order of tables and records is preserved as given.

    Args:
        snapshot: Snapshot to encode
        compress: Whether to zstd-compress the body
        level: zstd compression level (1-22)

    Returns:
        Encoded bytes

    Raises:
        CodecError: Snapshot holds values JSON cannot represent
    """
    if snapshot.version != CODEC_FORMAT_VERSION:
        raise CodecError(
            f"Cannot encode snapshot version {snapshot.version}",
            details={"version": snapshot.version, "supported": CODEC_FORMAT_VERSION},
        )

    payload = {
        "version": snapshot.version,
        "timestamp": to_millis(snapshot.created_at),
        "schemaVersion": snapshot.schema_version,
        "data": snapshot.tables,
    }

    try:
        body = json.dumps(
            payload,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        ).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise CodecError(
            "Snapshot contains values that cannot be serialized",
            details={"error_type": type(e).__name__},
        ) from e

    flags = 0
    raw_size = len(body)
    if compress:
        body = zstd.ZstdCompressor(level=level).compress(body)
        flags |= FLAG_COMPRESSED

    logger.debug(
        "snapshot_encoded",
        tables=len(snapshot.tables),
        raw_size=raw_size,
        encoded_size=len(body) + _HEADER.size,
        compressed=compress,
    )

    return _HEADER.pack(CODEC_MAGIC, CODEC_FORMAT_VERSION, flags) + body


def read_format_version(data: bytes) -> int:
    """
    Read the format version from an encoded snapshot header.

    Raises:
        MalformedBackup: Bad magic or truncated header
    """
    if len(data) < _HEADER.size or data[:4] != CODEC_MAGIC:
        raise MalformedBackup(
            "Backup payload has an invalid header",
            details={"size": len(data)},
        )
    _, version, _ = _HEADER.unpack_from(data)
    return version


def decode(data: bytes) -> BackupSnapshot:
    """
    Parse an encoded snapshot.

    Raises:
        MalformedBackup: Bad header, corrupt body or invalid structure
        UnsupportedVersion: Format version other than CODEC_FORMAT_VERSION
    """
    version = read_format_version(data)
    if version != CODEC_FORMAT_VERSION:
        raise UnsupportedVersion(found=version, supported=CODEC_FORMAT_VERSION)

    _, _, flags = _HEADER.unpack_from(data)
    if flags & ~_KNOWN_FLAGS:
        raise MalformedBackup(
            "Backup payload uses unknown flags",
            details={"flags": flags},
        )

    body = bytes(data[_HEADER.size:])
    if flags & FLAG_COMPRESSED:
        try:
            body = zstd.ZstdDecompressor().decompress(body)
        except zstd.ZstdError as e:
            raise MalformedBackup("Backup payload could not be decompressed") from e

    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedBackup("Backup payload is not valid JSON") from e

    snapshot = _validate_payload(payload, version)

    logger.debug(
        "snapshot_decoded",
        tables=len(snapshot.tables),
        encoded_size=len(data),
    )

    return snapshot


def _validate_payload(payload: Any, header_version: int) -> BackupSnapshot:
    """Check the decoded JSON structure and build a BackupSnapshot."""
    if not isinstance(payload, dict):
        raise MalformedBackup("Backup payload must be an object")

    version = payload.get("version")
    if not _is_int(version) or version != header_version:
        raise MalformedBackup(
            "Backup payload version does not match its header",
            details={"header_version": header_version},
        )

    timestamp = payload.get("timestamp")
    if not _is_int(timestamp) or timestamp < 0:
        raise MalformedBackup("Backup payload has an invalid timestamp")

    schema_version = payload.get("schemaVersion")
    if schema_version is not None and not _is_int(schema_version):
        raise MalformedBackup("Backup payload has an invalid schema version")

    tables = payload.get("data")
    if not isinstance(tables, dict):
        raise MalformedBackup("Backup payload is missing its data section")

    for name, records in tables.items():
        if not isinstance(records, list) or not all(isinstance(r, dict) for r in records):
            raise MalformedBackup(
                "Backup table is not a list of records",
                details={"table": name},
            )

    missing = [name for name in CRITICAL_TABLES if name not in tables]
    if missing:
        logger.warning("backup_missing_tables", missing=missing)

    return BackupSnapshot(
        version=version,
        created_at=from_millis(timestamp),
        tables=tables,
        schema_version=schema_version,
    )


async def encode_async(
    snapshot: BackupSnapshot,
    compress: bool = True,
    level: int = DEFAULT_ZSTD_LEVEL,
) -> bytes:
    """
    encode() that moves large snapshots to the thread pool.

    The size estimate counts records, since the JSON does not exist yet.
    """
    records = sum(len(rows) for rows in snapshot.tables.values())
    if records > 5_000:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(_executor, encode, snapshot, compress, level)
    return encode(snapshot, compress, level)


async def decode_async(data: bytes) -> BackupSnapshot:
    """decode() that moves large payloads to the thread pool."""
    if len(data) > _OFFLOAD_THRESHOLD:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(_executor, decode, data)
    return decode(data)
