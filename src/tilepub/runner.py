"""End-to-end run: extraction followed by publishing."""

import logging
from dataclasses import dataclass, field

from tilepub.catalog.mapping_store import MappingStore
from tilepub.core.config import Settings
from tilepub.exceptions import ExtractionIncompleteError
from tilepub.models.upload import ScanSummary, UploadStats
from tilepub.services.countries import CountryService
from tilepub.services.extraction import ExtractionReport, ExtractionScheduler
from tilepub.services.publisher import PublishPipeline
from tilepub.storage.base import ContentStore

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """What a pipeline run did."""

    extraction: ExtractionReport | None = None
    scan: ScanSummary | None = None
    stats: UploadStats = field(default_factory=UploadStats)
    total_mappings: int = 0
    mapped_countries: int = 0


def log_startup_info(settings: Settings, skip_extract: bool, region_ids: list[int]) -> None:
    logger.info("=== tilepub starting ===")
    logger.info(f"WhosOnFirst DB: {settings.WHOSONFIRST_DB_PATH}")
    logger.info(f"Mappings DB: {settings.CID_DB_PATH}")
    logger.info(f"Extracts Dir: {settings.EXTRACTS_DIR}")
    logger.info(f"Place Kind: {settings.PLACE_KIND}")
    logger.info(f"Planet PMTiles: {settings.PLANET_PMTILES_LOCATION or '<not set>'}")
    logger.info(f"Storage Backend: {settings.STORAGE_BACKEND}")
    logger.info(f"Max Concurrent Extractions: {settings.MAX_CONCURRENT_EXTRACTIONS}")
    logger.info(f"Target Countries: {settings.target_countries or 'ALL'}")
    if region_ids:
        logger.info(f"Region IDs: {region_ids}")
    logger.info(f"Skip Extract: {skip_extract}")
    logger.info("========================")


def log_final_stats(stats: UploadStats) -> None:
    logger.info("=== Final Statistics ===")
    logger.info(f"Total Uploaded: {stats.total_uploaded}")
    logger.info(f"Total Failed: {stats.total_failed}")
    logger.info(f"Total Bytes: {stats.total_bytes_uploaded} bytes")
    logger.info("========================")


class PipelineRunner:
    """Runs extraction (unless skipped) and then the publish pipeline.

    Extraction failures are logged and the run continues with whatever
    extracts exist. Missing source configuration and batch commit
    failures propagate.
    """

    def __init__(
        self,
        settings: Settings,
        content_store: ContentStore,
        mapping_store: MappingStore,
        country_service: CountryService,
        scheduler: ExtractionScheduler,
        publisher: PublishPipeline,
        region_ids: list[int] | None = None,
        skip_extract: bool = False,
    ):
        self.settings = settings
        self.content_store = content_store
        self.mapping_store = mapping_store
        self.country_service = country_service
        self.scheduler = scheduler
        self.publisher = publisher
        self.region_ids = list(region_ids or [])
        self.skip_extract = skip_extract

    async def run(self) -> RunResult:
        result = RunResult()
        log_startup_info(self.settings, self.skip_extract, self.region_ids)

        status = await self.content_store.status()
        logger.info(
            f"Content store status: {status.value}",
            extra={"backend": self.content_store.get_backend_name()},
        )

        if self.skip_extract:
            logger.info("Skipping PMTiles extraction (--no-extract flag set)")
        else:
            result.extraction = await self._run_extraction()

        logger.info("Publishing extracts to content store")
        try:
            result.scan = await self.publisher.publish_all()
        finally:
            result.stats = await self.publisher.get_stats()
            log_final_stats(result.stats)

        result.total_mappings, result.mapped_countries = await self.mapping_store.mapping_stats()
        logger.info(
            f"Mapping store holds {result.total_mappings} mappings across "
            f"{result.mapped_countries} countries"
        )
        return result

    async def _run_extraction(self) -> ExtractionReport | None:
        logger.info("Extracting PMTiles from planet file")
        try:
            if self.region_ids:
                logger.info(f"Processing {len(self.region_ids)} specific region IDs")
                return await self.scheduler.extract_regions_by_ids(self.region_ids)

            countries = await self.country_service.get_countries_to_process(
                self.settings.target_countries
            )
            logger.info(f"Processing {len(countries)} countries")
            return await self.scheduler.extract_regions(countries)
        except ExtractionIncompleteError as e:
            logger.error(f"Failed to extract PMTiles: {e}")
            logger.warning("Continuing with existing PMTiles if available")
            return e.report
