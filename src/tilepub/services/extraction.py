"""Per-region extraction from the planet PMTiles source.

Countries are processed one after another. Inside a country every
missing extract becomes a task, and a semaphore caps how many
extraction subprocesses run at once. A region that fails is logged and
counted; it never cancels its siblings.
"""

import asyncio
import logging
import os
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

from tilepub.catalog.client import CatalogClient
from tilepub.core.logging import country_context
from tilepub.exceptions import (
    CatalogError,
    ExtractionIncompleteError,
    RegionExtractionError,
    SourceNotConfiguredError,
    SourceNotFoundError,
)
from tilepub.models.region import Region

logger = logging.getLogger(__name__)

PARTIAL_DIR_NAME = ".partial"

# Called with (country_code, completed, total) after each finished region
ExtractionProgressCallback = Callable[[str, int, int], None]


@dataclass(frozen=True)
class PlanetSource:
    """Where the extraction tool reads the planet from."""

    location: str
    is_remote: bool

    def __str__(self) -> str:
        return self.location


def resolve_source(location: str | None) -> PlanetSource:
    """Turn PLANET_PMTILES_LOCATION into a PlanetSource.

    Raises:
        SourceNotConfiguredError: If no location is set
        SourceNotFoundError: If a local path does not exist
    """
    if not location:
        raise SourceNotConfiguredError()

    if location.startswith(("http://", "https://")):
        logger.info("Using remote PMTiles source", extra={"location": location})
        return PlanetSource(location=location, is_remote=True)

    path = Path(location)
    if not path.exists():
        raise SourceNotFoundError(str(path))
    logger.info("Using local PMTiles file", extra={"location": str(path)})
    return PlanetSource(location=str(path), is_remote=False)


class ProgressCounter:
    """Completed-region counter for one country.

    Starts at the number of extracts that already existed so observers
    see overall progress, not just this run's work.
    """

    def __init__(
        self,
        country_code: str,
        total: int,
        initial: int = 0,
        callback: Optional[ExtractionProgressCallback] = None,
    ):
        self.country_code = country_code
        self.total = total
        self.completed = initial
        self._callback = callback

    def increment(self) -> int:
        self.completed += 1
        if self._callback:
            self._callback(self.country_code, self.completed, self.total)
        return self.completed


@dataclass
class CountryExtractionResult:
    country_code: str
    total: int = 0
    already_complete: int = 0
    extracted: int = 0
    failed_region_ids: list[int] = field(default_factory=list)
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and not self.failed_region_ids


@dataclass
class ExtractionReport:
    """Outcome of one extraction run across countries."""

    countries: dict[str, CountryExtractionResult] = field(default_factory=dict)

    @property
    def failed_countries(self) -> list[str]:
        return [code for code, result in self.countries.items() if not result.succeeded]

    @property
    def total_extracted(self) -> int:
        return sum(r.extracted for r in self.countries.values())

    @property
    def total_failed(self) -> int:
        return sum(len(r.failed_region_ids) for r in self.countries.values())


class ExtractionScheduler:
    """Runs the extraction tool for every region that has no extract yet."""

    def __init__(
        self,
        catalog: CatalogClient,
        output_dir: str | Path,
        planet_location: str | None,
        tool_command: Sequence[str] = ("pmtiles",),
        max_concurrent: int = 4,
        extension: str = "pmtiles",
        min_extract_bytes: int = 1,
        progress_callback: Optional[ExtractionProgressCallback] = None,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.catalog = catalog
        self.output_dir = Path(output_dir)
        self.planet_location = planet_location
        self.tool_command = list(tool_command)
        self.max_concurrent = max_concurrent
        self.extension = extension.lstrip(".")
        self.min_extract_bytes = min_extract_bytes
        self.progress_callback = progress_callback

    def get_country_dir(self, country_code: str) -> Path:
        return self.output_dir / country_code

    def get_output_path(self, region: Region) -> Path:
        return self.get_country_dir(region.country) / f"{region.id}.{self.extension}"

    async def extract_regions(self, country_codes: Iterable[str]) -> ExtractionReport:
        """Extract every missing region of each country.

        Raises:
            SourceNotConfiguredError, SourceNotFoundError: Before any work starts
            ExtractionIncompleteError: After all countries ran, if any failed
        """
        source = resolve_source(self.planet_location)
        report = ExtractionReport()

        for country_code in country_codes:
            report.countries[country_code] = await self._extract_country(country_code, source)

        return self._finish(report)

    async def extract_regions_by_ids(self, region_ids: Iterable[int]) -> ExtractionReport:
        """Extract specific regions, grouped and scheduled by country."""
        source = resolve_source(self.planet_location)
        region_ids = list(region_ids)
        regions = await self.catalog.get_regions_by_ids(region_ids)

        missing = set(region_ids) - {r.id for r in regions}
        if missing:
            logger.warning(
                "Region ids not found in catalog",
                extra={"region_ids": sorted(missing)},
            )

        by_country: dict[str, list[Region]] = defaultdict(list)
        for region in regions:
            by_country[region.country].append(region)

        report = ExtractionReport()
        for country_code, country_regions in by_country.items():
            report.countries[country_code] = await self._extract_country(
                country_code, source, country_regions
            )

        return self._finish(report)

    def _finish(self, report: ExtractionReport) -> ExtractionReport:
        logger.info(
            "Extraction run finished",
            extra={
                "countries": len(report.countries),
                "extracted": report.total_extracted,
                "failed": report.total_failed,
            },
        )
        if report.failed_countries:
            raise ExtractionIncompleteError(report)
        return report

    async def _extract_country(
        self,
        country_code: str,
        source: PlanetSource,
        regions: list[Region] | None = None,
    ) -> CountryExtractionResult:
        token = country_context.set(country_code)
        result = CountryExtractionResult(country_code=country_code)
        try:
            logger.info(f"Processing country: {country_code}")

            if regions is None:
                try:
                    regions = await self.catalog.get_regions(country_code)
                except CatalogError as e:
                    logger.error(
                        "Could not load regions for country",
                        extra={"error": str(e)},
                    )
                    result.error = str(e)
                    return result

            result.total = len(regions)
            if not regions:
                logger.info(f"No regions found for country: {country_code}")
                return result

            country_dir = self.get_country_dir(country_code)
            country_dir.mkdir(parents=True, exist_ok=True)

            pending = [r for r in regions if not self.get_output_path(r).exists()]
            result.already_complete = len(regions) - len(pending)

            if not pending:
                logger.info(f"All {len(regions)} regions already exist for country: {country_code}")
                return result

            logger.info(
                f"Progress: {result.already_complete}/{len(regions)} regions already exist, "
                f"{len(pending)} remaining to extract"
            )

            counter = ProgressCounter(
                country_code, len(regions), result.already_complete, self.progress_callback
            )
            semaphore = asyncio.Semaphore(self.max_concurrent)
            outcomes = await asyncio.gather(
                *(self._extract_region(region, source, semaphore, counter) for region in pending),
                return_exceptions=True,
            )

            for region, outcome in zip(pending, outcomes):
                if outcome is None:
                    result.extracted += 1
                    continue
                if isinstance(outcome, RegionExtractionError):
                    logger.error(str(outcome), extra={"region_id": region.id})
                else:
                    logger.error(
                        f"Extraction task for region {region.id} raised unexpectedly",
                        exc_info=outcome,
                        extra={"region_id": region.id},
                    )
                result.failed_region_ids.append(region.id)

            if result.failed_region_ids:
                result.error = (
                    f"{len(result.failed_region_ids)} of {len(pending)} extractions failed"
                )
                logger.error(
                    f"Some extraction tasks failed for country: {country_code}",
                    extra={"failed": len(result.failed_region_ids), "extracted": result.extracted},
                )
            return result
        finally:
            country_context.reset(token)

    async def _extract_region(
        self,
        region: Region,
        source: PlanetSource,
        semaphore: asyncio.Semaphore,
        counter: ProgressCounter,
    ) -> None:
        async with semaphore:
            await self.extract_region(region, source)
        completed = counter.increment()
        logger.info(
            f"Progress: {completed}/{counter.total} regions extracted for {region.country}",
            extra={"region_id": region.id},
        )

    async def extract_region(self, region: Region, source: PlanetSource) -> Path:
        """Run the tool for one region and move its output into place.

        The tool writes into the country's .partial directory; the file
        is renamed to its final path only after a clean exit, so a final
        path that exists always holds a complete extract.

        Raises:
            RegionExtractionError: On launch failure, non-zero exit or missing output
        """
        output_path = self.get_output_path(region)
        partial_path = output_path.parent / PARTIAL_DIR_NAME / output_path.name

        try:
            partial_path.parent.mkdir(parents=True, exist_ok=True)
            partial_path.unlink(missing_ok=True)
        except OSError as e:
            raise RegionExtractionError(region.id, f"cannot prepare {partial_path}: {e}") from e

        cmd = [
            *self.tool_command,
            "extract",
            str(source),
            str(partial_path),
            f"--bbox={region.bbox}",
        ]
        logger.info(
            f"Extracting region {region.id} ({region.name})",
            extra={"region_id": region.id, "bbox": region.bbox},
        )

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise RegionExtractionError(region.id, f"failed to launch {cmd[0]}: {e}") from e

        try:
            _, stderr = await process.communicate()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            partial_path.unlink(missing_ok=True)
            raise

        if process.returncode != 0:
            partial_path.unlink(missing_ok=True)
            detail = stderr.decode(errors="replace").strip() or f"exit code {process.returncode}"
            raise RegionExtractionError(region.id, detail)

        if not partial_path.exists() or partial_path.stat().st_size < self.min_extract_bytes:
            partial_path.unlink(missing_ok=True)
            raise RegionExtractionError(region.id, "Output file not created")

        try:
            os.replace(partial_path, output_path)
        except OSError as e:
            partial_path.unlink(missing_ok=True)
            raise RegionExtractionError(region.id, f"cannot move output into place: {e}") from e

        logger.info("Successfully created file", extra={"region_id": region.id, "path": str(output_path)})
        return output_path

    def count_extracts(self, country_code: str) -> int:
        """Number of finished extract files for a country."""
        country_dir = self.get_country_dir(country_code)
        if not country_dir.is_dir():
            return 0
        return sum(1 for p in country_dir.glob(f"*.{self.extension}") if p.is_file())

    def count_extracts_batch(self, country_codes: Iterable[str]) -> dict[str, int]:
        return {code: self.count_extracts(code) for code in country_codes}
