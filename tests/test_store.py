# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Local Store Tests for PocketSync.

These tests verify that exports round-trip in order and that an import is
all or nothing.
"""

from datetime import datetime, UTC
from pathlib import Path

import pytest

from pocketsync.exceptions import LocalWriteError
from pocketsync.store import DomainStore, SQLiteDomainStore


@pytest.mark.asyncio
async def test_export_preserves_table_and_record_order(temp_dir: Path):
    store = SQLiteDomainStore(temp_dir / "store.db")
    await store.add_records("zeta", [{"id": 2}, {"id": 1}])
    await store.add_records("alpha", [{"id": "a"}])
    await store.add_records("zeta", [{"id": 0}])

    tables = await store.export_snapshot()

    assert list(tables) == ["zeta", "alpha"]
    assert tables["zeta"] == [{"id": 2}, {"id": 1}, {"id": 0}]


@pytest.mark.asyncio
async def test_empty_store_exports_nothing(temp_dir: Path):
    store = SQLiteDomainStore(temp_dir / "store.db")

    assert await store.export_snapshot() == {}


@pytest.mark.asyncio
async def test_import_replaces_everything(local_store: SQLiteDomainStore):
    await local_store.import_snapshot({"notes": [{"id": "n1"}], "flares": []})

    assert await local_store.export_snapshot() == {"notes": [{"id": "n1"}], "flares": []}


@pytest.mark.asyncio
async def test_failed_import_changes_nothing(
    local_store: SQLiteDomainStore,
    sample_tables: dict,
):
    """CRITICAL: A failing import must leave the previous data in place."""
    bad = {
        "notes": [{"id": "n1"}],
        "flares": [{"when": datetime(2026, 1, 1, tzinfo=UTC)}],
    }

    with pytest.raises(LocalWriteError):
        await local_store.import_snapshot(bad)

    assert await local_store.export_snapshot() == sample_tables


def test_sqlite_store_satisfies_protocol(temp_dir: Path):
    assert isinstance(SQLiteDomainStore(temp_dir / "store.db"), DomainStore)
