# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Safety Snapshot Tests for PocketSync.

Pre-restore snapshots are the only way back after a restore, so they must
load exactly what was saved and pruning must only ever remove the oldest.
"""

from pathlib import Path

import pytest

from pocketsync.snapshots import SNAPSHOT_SUFFIX, LocalSnapshotVault, SnapshotNotFound


@pytest.mark.asyncio
async def test_save_then_load_returns_same_tables(temp_dir: Path, sample_tables: dict):
    vault = LocalSnapshotVault(temp_dir / "snapshots", compression_level=3)

    snapshot_id = await vault.save(sample_tables, schema_version=2)
    snapshot = await vault.load(snapshot_id)

    assert snapshot.tables == sample_tables
    assert snapshot.schema_version == 2
    assert vault.list_snapshots() == [snapshot_id]


@pytest.mark.asyncio
async def test_no_temp_files_left_behind(temp_dir: Path, sample_tables: dict):
    vault = LocalSnapshotVault(temp_dir / "snapshots")

    await vault.save(sample_tables)

    files = list((temp_dir / "snapshots").iterdir())
    assert len(files) == 1
    assert files[0].suffix == SNAPSHOT_SUFFIX


@pytest.mark.asyncio
async def test_ids_increase_even_within_one_millisecond(temp_dir: Path):
    vault = LocalSnapshotVault(temp_dir / "snapshots", keep=10)

    ids = [await vault.save({"notes": [{"n": i}]}) for i in range(5)]

    assert ids == sorted(ids)
    assert len(set(ids)) == 5


@pytest.mark.asyncio
async def test_prune_keeps_newest(temp_dir: Path):
    vault = LocalSnapshotVault(temp_dir / "snapshots", keep=3)

    ids = [await vault.save({"notes": [{"n": i}]}) for i in range(5)]

    assert vault.list_snapshots() == ids[-3:]
    assert (await vault.load(ids[-1])).tables == {"notes": [{"n": 4}]}


@pytest.mark.asyncio
async def test_delete_snapshot(temp_dir: Path):
    vault = LocalSnapshotVault(temp_dir / "snapshots")
    snapshot_id = await vault.save({"notes": []})

    assert await vault.delete(snapshot_id) is True
    assert await vault.delete(snapshot_id) is False
    assert vault.list_snapshots() == []


@pytest.mark.asyncio
async def test_unknown_snapshot_raises(temp_dir: Path):
    vault = LocalSnapshotVault(temp_dir / "snapshots")

    with pytest.raises(SnapshotNotFound):
        await vault.load("01J0000000000000000000000A")


@pytest.mark.parametrize("snapshot_id", ["../../etc/passwd", "not-a-ulid", ""])
@pytest.mark.asyncio
async def test_non_ulid_ids_are_rejected(temp_dir: Path, snapshot_id: str):
    vault = LocalSnapshotVault(temp_dir / "snapshots")

    with pytest.raises(SnapshotNotFound):
        await vault.load(snapshot_id)


def test_empty_vault_lists_nothing(temp_dir: Path):
    assert LocalSnapshotVault(temp_dir / "missing").list_snapshots() == []
