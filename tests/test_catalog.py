"""Tests for the region catalog client."""

import sqlite3

import pytest

from tilepub.catalog.client import CatalogClient
from tilepub.exceptions import CatalogError, CatalogMissingError
from tilepub.models.region import PlaceKind


class TestCatalogClient:
    """Tests for CatalogClient against a temporary spr table."""

    def test_missing_database(self, tmp_path):
        with pytest.raises(CatalogMissingError):
            CatalogClient(tmp_path / "missing.db")

    @pytest.mark.asyncio
    async def test_get_regions_returns_only_complete_current_rows(self, catalog):
        regions = await catalog.get_regions("ZZ")

        assert [r.id for r in regions] == [1, 2, 3]
        assert all(r.country == "ZZ" and r.placetype == "locality" for r in regions)

    @pytest.mark.asyncio
    async def test_region_bbox(self, catalog):
        region = await catalog.get_region(10)

        assert region is not None
        assert region.bbox == "-10.5,40.25,-9.75,41.0"

    @pytest.mark.asyncio
    async def test_get_region_count(self, catalog):
        # Counts current, non-deprecated rows including ones without a bbox
        assert await catalog.get_region_count("ZZ") == 4
        assert await catalog.get_region_count("XX") == 0

    @pytest.mark.asyncio
    async def test_get_region_unknown_or_other_kind(self, catalog):
        assert await catalog.get_region(999) is None
        assert await catalog.get_region(100) is None

    @pytest.mark.asyncio
    async def test_get_regions_by_ids(self, catalog):
        regions = await catalog.get_regions_by_ids([10, 2, 2, 999])

        assert [r.id for r in regions] == [2, 10]
        assert await catalog.get_regions_by_ids([]) == []

    @pytest.mark.asyncio
    async def test_get_all_countries(self, catalog):
        assert await catalog.get_all_countries() == ["YY", "ZZ"]

    @pytest.mark.asyncio
    async def test_area_kind_uses_region_and_county(self, catalog_path):
        areas = CatalogClient(catalog_path, PlaceKind.AREA)
        try:
            assert [r.id for r in await areas.get_regions("ZZ")] == [100]
            assert (await areas.get_region(101)).placetype == "county"
            assert await areas.get_region(1) is None
        finally:
            areas.close()

    @pytest.mark.asyncio
    async def test_query_errors_are_wrapped(self, tmp_path):
        path = tmp_path / "empty.db"
        path.write_bytes(b"")
        client = CatalogClient(path)
        try:
            with pytest.raises(CatalogError):
                await client.get_regions("ZZ")
        finally:
            client.close()

    def test_catalog_is_read_only(self, catalog):
        with pytest.raises(sqlite3.OperationalError):
            catalog.db._conn.execute("DELETE FROM spr")
