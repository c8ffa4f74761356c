# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for PocketSync tests.

Provides temporary directories, a fast-KDF configuration, a populated local
store and a ready-to-use pipeline backed by the in-memory transport.
"""

import copy
import tempfile
from datetime import datetime, UTC
from pathlib import Path
from typing import Generator

import pytest
import pytest_asyncio

from pocketsync.codec import CODEC_FORMAT_VERSION
from pocketsync.config import MIN_KDF_ITERATIONS, SyncConfig
from pocketsync.metadata import SyncMetadataStore
from pocketsync.models import BackupSnapshot
from pocketsync.pipeline import BackupPipeline
from pocketsync.store import SQLiteDomainStore
from pocketsync.transport.memory import InMemoryTransport

SAMPLE_TABLES = {
    "flares": [
        {"id": "f1", "region": "left-knee", "severity": 7, "active": True},
        {"id": "f2", "region": "lower-back", "severity": 4, "active": False},
    ],
    "symptoms": [
        {"id": "s1", "name": "fatigue", "intensity": 5, "notes": "after lunch"},
    ],
    "medications": [
        {"id": "m1", "name": "ibuprofen", "dose_mg": 400, "taken": ["08:00", "20:00"]},
    ],
    "triggers": [{"id": "t1", "name": "stress"}],
    "foods": [{"id": "fd1", "name": "dairy", "tags": {"lactose": True}}],
}


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_config(temp_dir: Path) -> SyncConfig:
    """Configuration with the cheapest accepted KDF cost."""
    data_dir = temp_dir / "data"
    data_dir.mkdir()
    return SyncConfig(
        profile_id="test-profile",
        data_dir=data_dir,
        kdf_iterations=MIN_KDF_ITERATIONS,
        network_timeout_seconds=5.0,
        compression_level=3,
    )


@pytest.fixture
def sample_tables() -> dict:
    """The records every populated store starts with."""
    return copy.deepcopy(SAMPLE_TABLES)


@pytest.fixture
def sample_snapshot() -> BackupSnapshot:
    """A realistic snapshot with every well-known table."""
    return BackupSnapshot(
        version=CODEC_FORMAT_VERSION,
        created_at=datetime(2026, 3, 14, 9, 26, 53, 589000, tzinfo=UTC),
        tables=SAMPLE_TABLES,
        schema_version=1,
    )


@pytest_asyncio.fixture
async def local_store(test_config: SyncConfig) -> SQLiteDomainStore:
    """Local store populated with SAMPLE_TABLES."""
    store = SQLiteDomainStore(test_config.store_db_path)
    await store.initialize()
    for table, records in SAMPLE_TABLES.items():
        await store.add_records(table, records)
    return store


@pytest.fixture
def memory_transport() -> InMemoryTransport:
    return InMemoryTransport()


@pytest.fixture
def metadata_store(test_config: SyncConfig) -> SyncMetadataStore:
    return SyncMetadataStore(test_config.metadata_db_path, test_config.profile_id)


@pytest_asyncio.fixture
async def pipeline(
    test_config: SyncConfig,
    local_store: SQLiteDomainStore,
    memory_transport: InMemoryTransport,
    metadata_store: SyncMetadataStore,
) -> BackupPipeline:
    """Pipeline wired to the populated store and the in-memory transport."""
    return BackupPipeline(
        test_config,
        local_store,
        memory_transport,
        metadata=metadata_store,
    )
