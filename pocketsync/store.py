# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
PocketSync Local Store - The domain data a backup captures.

The pipeline only depends on the DomainStore protocol. SQLiteDomainStore is
the bundled implementation: each record is one JSON row, and table and
record order are kept exactly as written so exports round-trip unchanged.
"""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Protocol, runtime_checkable

import aiosqlite
import structlog

from pocketsync.exceptions import ExportError, LocalWriteError
from pocketsync.models import Tables

logger = structlog.get_logger()


@runtime_checkable
class DomainStore(Protocol):
    """Local data source and sink for backups."""

    schema_version: int

    async def export_snapshot(self) -> Tables:
        """Return every domain table as a list of records."""
        ...

    async def import_snapshot(self, tables: Tables) -> None:
        """Replace all local data with tables. All or nothing."""
        ...


class SQLiteDomainStore:
    """
    DomainStore backed by a single SQLite file.

    Args:
        db_path: Path to the SQLite database file
        schema_version: Version of the app's domain schema
    """

    def __init__(self, db_path: Path, schema_version: int = 1):
        self.db_path = Path(db_path)
        self.schema_version = schema_version
        self._initialized = False

    async def initialize(self) -> None:
        """Create the store tables. Idempotent."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS domain_tables (
                    name TEXT PRIMARY KEY,
                    ordinal INTEGER NOT NULL
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS domain_records (
                    table_name TEXT NOT NULL,
                    ordinal INTEGER NOT NULL,
                    payload TEXT NOT NULL,
                    PRIMARY KEY (table_name, ordinal),
                    FOREIGN KEY (table_name) REFERENCES domain_tables(name)
                )
            """)
            await db.commit()

        self._initialized = True
        logger.debug("domain_store_initialized", db_path=str(self.db_path))

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    async def add_records(self, table: str, records: Iterable[Dict[str, Any]]) -> int:
        """
        Append records to a table, creating the table if needed.

        Returns:
            Number of records written
        """
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT COALESCE(MAX(ordinal) + 1, 0) FROM domain_tables"
            ) as cursor:
                next_table = (await cursor.fetchone())[0]
            await db.execute(
                "INSERT OR IGNORE INTO domain_tables (name, ordinal) VALUES (?, ?)",
                (table, next_table),
            )

            async with db.execute(
                "SELECT COALESCE(MAX(ordinal) + 1, 0) FROM domain_records WHERE table_name = ?",
                (table,),
            ) as cursor:
                start = (await cursor.fetchone())[0]

            rows = [
                (table, start + i, json.dumps(record, ensure_ascii=False))
                for i, record in enumerate(records)
            ]
            await db.executemany(
                "INSERT INTO domain_records (table_name, ordinal, payload) VALUES (?, ?, ?)",
                rows,
            )
            await db.commit()

        return len(rows)

    async def export_snapshot(self) -> Tables:
        """
        Read every table in creation order.

        Raises:
            ExportError: The database could not be read
        """
        try:
            await self._ensure_initialized()
            tables: Tables = {}

            async with aiosqlite.connect(self.db_path) as db:
                async with db.execute(
                    "SELECT name FROM domain_tables ORDER BY ordinal"
                ) as cursor:
                    async for row in cursor:
                        tables[row[0]] = []

                async with db.execute(
                    """
                    SELECT r.table_name, r.payload
                    FROM domain_records r
                    JOIN domain_tables t ON t.name = r.table_name
                    ORDER BY t.ordinal, r.ordinal
                    """
                ) as cursor:
                    async for row in cursor:
                        tables[row[0]].append(json.loads(row[1]))

        except (aiosqlite.Error, json.JSONDecodeError) as e:
            raise ExportError(
                "Could not read local data",
                details={"error_type": type(e).__name__},
            ) from e

        logger.debug(
            "domain_store_exported",
            tables=len(tables),
            records=sum(len(rows) for rows in tables.values()),
        )
        return tables

    async def import_snapshot(self, tables: Tables) -> None:
        """
        Replace all local data with tables inside one transaction.

        Raises:
            LocalWriteError: Nothing was changed
        """
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path, isolation_level=None) as db:
            await db.execute("BEGIN")
            try:
                await db.execute("DELETE FROM domain_records")
                await db.execute("DELETE FROM domain_tables")

                for table_ordinal, (name, records) in enumerate(tables.items()):
                    await db.execute(
                        "INSERT INTO domain_tables (name, ordinal) VALUES (?, ?)",
                        (name, table_ordinal),
                    )
                    await db.executemany(
                        "INSERT INTO domain_records (table_name, ordinal, payload) VALUES (?, ?, ?)",
                        [
                            (name, i, json.dumps(record, ensure_ascii=False))
                            for i, record in enumerate(records)
                        ],
                    )

                await db.execute("COMMIT")

            except (aiosqlite.Error, TypeError, ValueError) as e:
                await db.execute("ROLLBACK")
                raise LocalWriteError(
                    "Could not write restored data",
                    details={"error_type": type(e).__name__},
                ) from e

        logger.info(
            "domain_store_imported",
            tables=len(tables),
            records=sum(len(rows) for rows in tables.values()),
        )
