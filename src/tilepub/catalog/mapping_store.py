"""Dedup mapping store: which regions were already published, under which content id.

A row keyed by (country_code, region_id) is the only record that an
extract was published. Batch upserts run in one transaction so a batch
is either fully recorded or not at all.
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Sequence, Tuple

from tilepub.catalog.database import SQLiteDatabase
from tilepub.exceptions import MappingStoreError
from tilepub.models.region import PlaceKind

logger = logging.getLogger(__name__)

Mapping = Tuple[str, int, str, int]


@dataclass(frozen=True)
class MappingRecord:
    """A persisted dedup mapping row."""

    country_code: str
    region_id: int
    content_id: str
    file_size: int
    upload_time: datetime | None


class MappingStore:
    """SQLite table of (country, region) -> content id for one place kind."""

    def __init__(self, db_path: str | Path, kind: PlaceKind = PlaceKind.LOCALITY):
        self.kind = kind
        self.table = kind.mapping_table
        self.id_column = kind.id_column
        self.db = SQLiteDatabase(db_path)

    async def init_schema(self) -> None:
        """Create the mapping table and lookup index if they don't exist."""
        table, id_column = self.table, self.id_column

        def create(conn: sqlite3.Connection) -> None:
            with conn:
                conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        country_code TEXT NOT NULL,
                        {id_column} INTEGER NOT NULL,
                        cid TEXT NOT NULL,
                        upload_time DATETIME DEFAULT CURRENT_TIMESTAMP,
                        file_size INTEGER,
                        PRIMARY KEY (country_code, {id_column})
                    )
                    """
                )
                conn.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_{table}_lookup "
                    f"ON {table}(country_code, {id_column})"
                )

        try:
            await self.db.run(create)
        except sqlite3.Error as e:
            raise MappingStoreError(f"Failed to create {table}: {e}") from e

        logger.info("Mapping store ready", extra={"db_path": str(self.db.path), "table": table})

    async def has_mapping(self, country_code: str, region_id: int) -> bool:
        sql = f"SELECT 1 FROM {self.table} WHERE country_code = ? AND {self.id_column} = ? LIMIT 1"

        def query(conn: sqlite3.Connection) -> bool:
            return conn.execute(sql, (country_code, int(region_id))).fetchone() is not None

        try:
            return await self.db.run(query)
        except sqlite3.Error as e:
            raise MappingStoreError(f"Mapping lookup failed: {e}") from e

    async def get_mapping(self, country_code: str, region_id: int) -> MappingRecord | None:
        sql = (
            f"SELECT country_code, {self.id_column}, cid, file_size, upload_time "
            f"FROM {self.table} WHERE country_code = ? AND {self.id_column} = ?"
        )

        def query(conn: sqlite3.Connection):
            return conn.execute(sql, (country_code, int(region_id))).fetchone()

        try:
            row = await self.db.run(query)
        except sqlite3.Error as e:
            raise MappingStoreError(f"Mapping lookup failed: {e}") from e

        if row is None:
            return None
        upload_time = datetime.fromisoformat(row[4]) if row[4] else None
        return MappingRecord(row[0], row[1], row[2], row[3], upload_time)

    async def batch_upsert_mappings(self, mappings: Sequence[Mapping]) -> None:
        """Insert or replace every mapping in one transaction.

        Raises:
            MappingStoreError: If any row fails; nothing is persisted then
        """
        rows = [(c, int(r), cid, int(size)) for c, r, cid, size in mappings]
        if not rows:
            return

        sql = (
            f"INSERT OR REPLACE INTO {self.table} "
            f"(country_code, {self.id_column}, cid, file_size, upload_time) "
            "VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)"
        )

        def upsert(conn: sqlite3.Connection) -> None:
            with conn:
                conn.executemany(sql, rows)

        try:
            await self.db.run(upsert)
        except sqlite3.Error as e:
            logger.error(
                "Batch mapping upsert failed",
                extra={"table": self.table, "rows": len(rows), "error": str(e)},
            )
            raise MappingStoreError(f"Batch upsert of {len(rows)} mappings failed: {e}") from e

        logger.debug("Upserted mappings", extra={"table": self.table, "rows": len(rows)})

    async def mapping_stats(self) -> Tuple[int, int]:
        """Return (total_mappings, distinct_countries)."""
        sql = f"SELECT COUNT(*), COUNT(DISTINCT country_code) FROM {self.table}"

        def query(conn: sqlite3.Connection) -> Tuple[int, int]:
            total, countries = conn.execute(sql).fetchone()
            return int(total), int(countries)

        try:
            return await self.db.run(query)
        except sqlite3.Error as e:
            raise MappingStoreError(f"Mapping stats query failed: {e}") from e

    def close(self) -> None:
        self.db.close()
