"""Read-only region catalog backed by a WhosOnFirst SQLite distribution."""

import logging
import sqlite3
from pathlib import Path
from typing import Iterable

from tilepub.catalog.database import SQLiteDatabase
from tilepub.exceptions import CatalogError, CatalogMissingError
from tilepub.models.region import PlaceKind, Region

logger = logging.getLogger(__name__)

REGION_COLUMNS = (
    "id, name, country, placetype, latitude, longitude, "
    "min_longitude, min_latitude, max_longitude, max_latitude"
)

# Rows usable for extraction need a name, a centroid and a full bbox
_COMPLETE_ROW_CONDITIONS = [
    "is_current = 1",
    "is_deprecated = 0",
    "name IS NOT NULL",
    "name != ''",
    "latitude IS NOT NULL",
    "longitude IS NOT NULL",
    "min_longitude IS NOT NULL",
    "min_latitude IS NOT NULL",
    "max_longitude IS NOT NULL",
    "max_latitude IS NOT NULL",
]


class CatalogClient:
    """Region lookups against the `spr` table for one place kind."""

    def __init__(self, db_path: str | Path, kind: PlaceKind = PlaceKind.LOCALITY):
        db_path = Path(db_path)
        if not db_path.exists():
            raise CatalogMissingError(f"Catalog database not found: {db_path}")
        self.kind = kind
        self.db = SQLiteDatabase(db_path, read_only=True)
        self._placetype_clause = "placetype IN ({})".format(
            ",".join(f"'{p}'" for p in kind.placetypes)
        )

        logger.info(
            "Initialized catalog",
            extra={"db_path": str(db_path), "place_kind": kind.value},
        )

    async def _query(self, sql: str, params: Iterable = ()) -> list[tuple]:
        def execute(conn: sqlite3.Connection) -> list[tuple]:
            return conn.execute(sql, tuple(params)).fetchall()

        try:
            return await self.db.run(execute)
        except sqlite3.Error as e:
            logger.error("Catalog query failed", extra={"error": str(e)})
            raise CatalogError(f"Catalog query failed: {e}") from e

    async def get_regions(self, country_code: str) -> list[Region]:
        """All extractable regions of one country, ordered by id."""
        conditions = [self._placetype_clause, *_COMPLETE_ROW_CONDITIONS, "country = ?"]
        sql = f"SELECT {REGION_COLUMNS} FROM spr WHERE {' AND '.join(conditions)} ORDER BY id"
        rows = await self._query(sql, (country_code,))
        return [Region.from_row(row) for row in rows]

    async def get_region_count(self, country_code: str) -> int:
        conditions = [self._placetype_clause, "is_current = 1", "is_deprecated = 0", "country = ?"]
        sql = f"SELECT COUNT(*) FROM spr WHERE {' AND '.join(conditions)}"
        rows = await self._query(sql, (country_code,))
        return int(rows[0][0])

    async def get_region(self, region_id: int) -> Region | None:
        sql = (
            f"SELECT {REGION_COLUMNS} FROM spr "
            f"WHERE id = ? AND {self._placetype_clause} AND is_current = 1 AND is_deprecated = 0"
        )
        rows = await self._query(sql, (region_id,))
        return Region.from_row(rows[0]) if rows else None

    async def get_regions_by_ids(self, region_ids: Iterable[int]) -> list[Region]:
        ids = list(dict.fromkeys(int(i) for i in region_ids))
        if not ids:
            return []

        regions: list[Region] = []
        # Stay under SQLITE_MAX_VARIABLE_NUMBER on old builds
        for start in range(0, len(ids), 500):
            chunk = ids[start:start + 500]
            placeholders = ",".join("?" for _ in chunk)
            sql = (
                f"SELECT {REGION_COLUMNS} FROM spr "
                f"WHERE id IN ({placeholders}) AND {self._placetype_clause} "
                f"AND is_current = 1 AND is_deprecated = 0 ORDER BY id"
            )
            rows = await self._query(sql, chunk)
            regions.extend(Region.from_row(row) for row in rows)
        return regions

    async def get_all_countries(self) -> list[str]:
        """Distinct country codes that have at least one region of this kind."""
        sql = (
            f"SELECT DISTINCT country FROM spr WHERE {self._placetype_clause} "
            "AND is_current = 1 AND is_deprecated = 0 "
            "AND country IS NOT NULL AND country != '' ORDER BY country"
        )
        rows = await self._query(sql)
        return [row[0] for row in rows]

    def close(self) -> None:
        self.db.close()
