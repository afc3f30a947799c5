"""Tests for the extraction scheduler using a stand-in extraction tool."""

from unittest.mock import patch

import pytest

from tilepub.exceptions import (
    CatalogError,
    ExtractionIncompleteError,
    RegionExtractionError,
    SourceNotConfiguredError,
    SourceNotFoundError,
)
from tilepub.services.extraction import PARTIAL_DIR_NAME, ExtractionScheduler, resolve_source


@pytest.fixture
def output_dir(tmp_path):
    return tmp_path / "extracts"


def make_scheduler(catalog, output_dir, planet_file, fake_tool, **kwargs) -> ExtractionScheduler:
    return ExtractionScheduler(
        catalog=catalog,
        output_dir=output_dir,
        planet_location=str(planet_file),
        tool_command=fake_tool.command,
        max_concurrent=kwargs.pop("max_concurrent", 2),
        **kwargs,
    )


class TestResolveSource:
    """Tests for resolve_source."""

    def test_unset(self):
        with pytest.raises(SourceNotConfiguredError):
            resolve_source("")
        with pytest.raises(SourceNotConfiguredError):
            resolve_source(None)

    def test_missing_local_file(self, tmp_path):
        with pytest.raises(SourceNotFoundError):
            resolve_source(str(tmp_path / "planet.pmtiles"))

    def test_local_file(self, planet_file):
        source = resolve_source(str(planet_file))
        assert not source.is_remote
        assert str(source) == str(planet_file)

    def test_remote_url(self):
        source = resolve_source("https://build.protomaps.com/20251018.pmtiles")
        assert source.is_remote


class TestExtractionScheduler:
    """Tests for ExtractionScheduler."""

    @pytest.mark.asyncio
    async def test_skips_existing_and_seeds_progress(self, catalog, output_dir, planet_file, fake_tool):
        existing = output_dir / "ZZ" / "1.pmtiles"
        existing.parent.mkdir(parents=True)
        existing.write_bytes(b"already here")
        progress = []
        scheduler = make_scheduler(
            catalog,
            output_dir,
            planet_file,
            fake_tool,
            progress_callback=lambda country, done, total: progress.append((country, done, total)),
        )

        report = await scheduler.extract_regions(["ZZ"])

        assert len(fake_tool.invocations) == 2
        assert sorted(p.name for p in (output_dir / "ZZ").glob("*.pmtiles")) == [
            "1.pmtiles",
            "2.pmtiles",
            "3.pmtiles",
        ]
        assert existing.read_bytes() == b"already here"
        assert sorted(progress) == [("ZZ", 2, 3), ("ZZ", 3, 3)]

        result = report.countries["ZZ"]
        assert result.already_complete == 1
        assert result.extracted == 2
        assert result.succeeded
        assert report.failed_countries == []

    @pytest.mark.asyncio
    async def test_tool_invocation_arguments(self, catalog, output_dir, planet_file, fake_tool):
        scheduler = make_scheduler(catalog, output_dir, planet_file, fake_tool)

        await scheduler.extract_regions(["YY"])

        [invocation] = fake_tool.invocations
        command, source, output, bbox = invocation
        assert command == "extract"
        assert source == str(planet_file)
        assert output.endswith(f"YY/{PARTIAL_DIR_NAME}/10.pmtiles")
        assert bbox == "--bbox=-10.5,40.25,-9.75,41.0"
        assert (output_dir / "YY" / "10.pmtiles").exists()

    @pytest.mark.asyncio
    async def test_region_failure_does_not_stop_siblings(self, catalog, output_dir, planet_file, fake_tool):
        fake_tool.fail_for(2)
        scheduler = make_scheduler(catalog, output_dir, planet_file, fake_tool)

        with pytest.raises(ExtractionIncompleteError) as exc_info:
            await scheduler.extract_regions(["ZZ", "YY"])

        report = exc_info.value.report
        assert report.failed_countries == ["ZZ"]
        assert report.countries["ZZ"].failed_region_ids == [2]
        assert report.countries["ZZ"].extracted == 2
        # The next country still ran
        assert report.countries["YY"].succeeded
        assert (output_dir / "ZZ" / "1.pmtiles").exists()
        assert (output_dir / "ZZ" / "3.pmtiles").exists()
        assert not (output_dir / "ZZ" / "2.pmtiles").exists()
        assert not (output_dir / "ZZ" / PARTIAL_DIR_NAME / "2.pmtiles").exists()

    @pytest.mark.asyncio
    async def test_missing_output_is_a_failure(self, catalog, output_dir, planet_file, fake_tool):
        fake_tool.write_nothing_for(10)
        scheduler = make_scheduler(catalog, output_dir, planet_file, fake_tool)

        with pytest.raises(ExtractionIncompleteError) as exc_info:
            await scheduler.extract_regions(["YY"])

        assert exc_info.value.report.countries["YY"].failed_region_ids == [10]
        assert not (output_dir / "YY" / "10.pmtiles").exists()

    @pytest.mark.asyncio
    async def test_undersized_output_is_not_moved_into_place(self, catalog, output_dir, planet_file, fake_tool):
        scheduler = make_scheduler(catalog, output_dir, planet_file, fake_tool, min_extract_bytes=1024)

        with pytest.raises(ExtractionIncompleteError):
            await scheduler.extract_regions(["YY"])

        assert not (output_dir / "YY" / "10.pmtiles").exists()
        assert not (output_dir / "YY" / PARTIAL_DIR_NAME / "10.pmtiles").exists()

    @pytest.mark.asyncio
    async def test_launch_failure(self, catalog, output_dir, planet_file, tmp_path):
        scheduler = ExtractionScheduler(
            catalog=catalog,
            output_dir=output_dir,
            planet_location=str(planet_file),
            tool_command=[str(tmp_path / "no-such-tool")],
        )
        region = await catalog.get_region(10)

        with pytest.raises(RegionExtractionError, match="failed to launch"):
            await scheduler.extract_region(region, resolve_source(str(planet_file)))

    @pytest.mark.asyncio
    async def test_unconfigured_source_fails_before_scheduling(self, catalog, output_dir, fake_tool):
        scheduler = ExtractionScheduler(
            catalog=catalog,
            output_dir=output_dir,
            planet_location="",
            tool_command=fake_tool.command,
        )

        with pytest.raises(SourceNotConfiguredError):
            await scheduler.extract_regions(["ZZ"])
        assert fake_tool.invocations == []

    @pytest.mark.asyncio
    async def test_unknown_country_is_not_a_failure(self, catalog, output_dir, planet_file, fake_tool):
        scheduler = make_scheduler(catalog, output_dir, planet_file, fake_tool)

        report = await scheduler.extract_regions(["XX"])

        assert report.countries["XX"].total == 0
        assert fake_tool.invocations == []

    @pytest.mark.asyncio
    async def test_extract_regions_by_ids_groups_by_country(self, catalog, output_dir, planet_file, fake_tool):
        scheduler = make_scheduler(catalog, output_dir, planet_file, fake_tool)

        report = await scheduler.extract_regions_by_ids([3, 10, 999])

        assert set(report.countries) == {"ZZ", "YY"}
        assert (output_dir / "ZZ" / "3.pmtiles").exists()
        assert (output_dir / "YY" / "10.pmtiles").exists()
        assert not (output_dir / "ZZ" / "1.pmtiles").exists()
        assert len(fake_tool.invocations) == 2

    @pytest.mark.asyncio
    async def test_count_extracts(self, catalog, output_dir, planet_file, fake_tool):
        scheduler = make_scheduler(catalog, output_dir, planet_file, fake_tool)
        await scheduler.extract_regions(["ZZ"])

        assert scheduler.count_extracts("ZZ") == 3
        assert scheduler.count_extracts_batch(["ZZ", "YY"]) == {"ZZ": 3, "YY": 0}

    def test_rejects_zero_concurrency(self, catalog, output_dir):
        with pytest.raises(ValueError):
            ExtractionScheduler(catalog, output_dir, "planet.pmtiles", max_concurrent=0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_concurrent,overlap_expected", [(1, False), (3, True)])
    async def test_worker_pool_bounds_running_extractions(
        self, catalog, output_dir, planet_file, fake_tool, max_concurrent, overlap_expected
    ):
        fake_tool.run_slowly(0.5)
        scheduler = make_scheduler(catalog, output_dir, planet_file, fake_tool, max_concurrent=max_concurrent)

        report = await scheduler.extract_regions(["ZZ"])

        assert report.countries["ZZ"].extracted == 3
        assert fake_tool.overlapped is overlap_expected

    @pytest.mark.asyncio
    async def test_catalog_failure_only_fails_that_country(self, catalog, output_dir, planet_file, fake_tool):
        get_regions = catalog.get_regions

        async def flaky_get_regions(country_code):
            if country_code == "ZZ":
                raise CatalogError("database is locked")
            return await get_regions(country_code)

        scheduler = make_scheduler(catalog, output_dir, planet_file, fake_tool)

        with patch.object(catalog, "get_regions", side_effect=flaky_get_regions):
            with pytest.raises(ExtractionIncompleteError) as exc_info:
                await scheduler.extract_regions(["ZZ", "YY"])

        report = exc_info.value.report
        assert report.failed_countries == ["ZZ"]
        assert "database is locked" in report.countries["ZZ"].error
        assert report.countries["YY"].succeeded
        assert (output_dir / "YY" / "10.pmtiles").exists()
        assert not (output_dir / "ZZ").exists()
