# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup Codec Tests for PocketSync.

Covers the versioned snapshot format: exact round trips, version gating
before the body is touched, and structural validation of decoded payloads.
"""

import json
import struct
from datetime import datetime, UTC

import pytest
import zstandard as zstd

from pocketsync.codec import (
    CODEC_FORMAT_VERSION,
    CODEC_MAGIC,
    FLAG_COMPRESSED,
    decode,
    decode_async,
    encode,
    encode_async,
    read_format_version,
)
from pocketsync.exceptions import CodecError, MalformedBackup, UnsupportedVersion
from pocketsync.models import BackupSnapshot


def _frame(payload: dict, version: int = CODEC_FORMAT_VERSION, flags: int = 0) -> bytes:
    body = json.dumps(payload).encode("utf-8")
    if flags & FLAG_COMPRESSED:
        body = zstd.ZstdCompressor().compress(body)
    return struct.pack(">4sHB", CODEC_MAGIC, version, flags) + body


def test_round_trip_is_exact(sample_snapshot: BackupSnapshot):
    decoded = decode(encode(sample_snapshot))

    assert decoded == sample_snapshot


def test_round_trip_without_compression(sample_snapshot: BackupSnapshot):
    data = encode(sample_snapshot, compress=False)

    assert data[6] == 0
    assert decode(data) == sample_snapshot


def test_key_order_is_preserved():
    snapshot = BackupSnapshot(
        version=CODEC_FORMAT_VERSION,
        created_at=datetime(2026, 1, 2, tzinfo=UTC),
        tables={
            "zeta": [{"z": 1, "a": 2}],
            "alpha": [{"m": 1, "b": 2}],
        },
    )

    decoded = decode(encode(snapshot))

    assert list(decoded.tables) == ["zeta", "alpha"]
    assert list(decoded.tables["zeta"][0]) == ["z", "a"]


def test_unicode_and_nested_values_survive():
    snapshot = BackupSnapshot(
        version=CODEC_FORMAT_VERSION,
        created_at=datetime(2026, 1, 2, tzinfo=UTC),
        tables={"symptoms": [{"notes": "douleur légère 🌡", "scores": [1, 2.5, None]}]},
        schema_version=3,
    )

    assert decode(encode(snapshot)) == snapshot


def test_non_json_values_fail_at_encode_time():
    snapshot = BackupSnapshot(
        version=CODEC_FORMAT_VERSION,
        created_at=datetime(2026, 1, 2, tzinfo=UTC),
        tables={"flares": [{"when": datetime(2026, 1, 1, tzinfo=UTC)}]},
    )

    with pytest.raises(CodecError):
        encode(snapshot)


def test_encode_refuses_foreign_snapshot_version(sample_snapshot: BackupSnapshot):
    snapshot = BackupSnapshot(
        version=CODEC_FORMAT_VERSION + 1,
        created_at=sample_snapshot.created_at,
        tables=sample_snapshot.tables,
    )

    with pytest.raises(CodecError):
        encode(snapshot)


def test_header_carries_magic_and_version(sample_snapshot: BackupSnapshot):
    data = encode(sample_snapshot)

    assert data[:4] == CODEC_MAGIC
    assert read_format_version(data) == CODEC_FORMAT_VERSION


def test_future_version_rejected_before_body_is_read():
    """An unsupported version is reported even when the body is garbage."""
    data = struct.pack(">4sHB", CODEC_MAGIC, CODEC_FORMAT_VERSION + 1, FLAG_COMPRESSED) + b"garbage"

    with pytest.raises(UnsupportedVersion) as exc_info:
        decode(data)

    assert exc_info.value.found == CODEC_FORMAT_VERSION + 1


def test_bad_magic_is_malformed():
    with pytest.raises(MalformedBackup):
        decode(b"NOPE" + b"\x00" * 10)


def test_truncated_header_is_malformed():
    with pytest.raises(MalformedBackup):
        decode(CODEC_MAGIC + b"\x00")


def test_corrupt_compressed_body_is_malformed():
    data = struct.pack(">4sHB", CODEC_MAGIC, CODEC_FORMAT_VERSION, FLAG_COMPRESSED) + b"not zstd"

    with pytest.raises(MalformedBackup):
        decode(data)


def test_unknown_flags_are_malformed():
    data = _frame({"version": 1, "timestamp": 0, "data": {}}, flags=0x80)

    with pytest.raises(MalformedBackup):
        decode(data)


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"version": 2, "timestamp": 0, "data": {}},
        {"version": 1, "timestamp": "yesterday", "data": {}},
        {"version": 1, "timestamp": 0},
        {"version": 1, "timestamp": 0, "data": {"flares": {"id": 1}}},
        {"version": 1, "timestamp": 0, "data": {"flares": [1, 2]}},
        {"version": True, "timestamp": 0, "data": {}},
    ],
)
def test_structurally_invalid_payloads_are_malformed(payload):
    with pytest.raises(MalformedBackup):
        decode(_frame(payload))


def test_missing_well_known_tables_still_decode():
    data = _frame({"version": 1, "timestamp": 1_700_000_000_000, "data": {"flares": []}})

    snapshot = decode(data)

    assert snapshot.tables == {"flares": []}
    assert snapshot.schema_version is None


@pytest.mark.asyncio
async def test_async_variants_match_sync(sample_snapshot: BackupSnapshot):
    data = await encode_async(sample_snapshot, level=3)

    assert await decode_async(data) == sample_snapshot
    assert decode(data) == sample_snapshot
