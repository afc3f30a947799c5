"""Command line entry point."""

import argparse
import asyncio
import logging
import sys

from tilepub.bootstrap import (
    ensure_catalog_present,
    ensure_directories,
    ensure_planet_present,
    ensure_required_tools,
    validate_config,
)
from tilepub.catalog.client import CatalogClient
from tilepub.catalog.mapping_store import MappingStore
from tilepub.core.config import Settings, load_settings
from tilepub.core.logging import setup_logging
from tilepub.exceptions import TilepubError
from tilepub.models.region import PlaceKind
from tilepub.runner import PipelineRunner
from tilepub.services.countries import CountryService, load_country_names
from tilepub.services.extraction import ExtractionScheduler
from tilepub.services.publisher import PublishPipeline
from tilepub.storage.factory import get_content_store

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tilepub",
        description="Extract per-region PMTiles from a planet file and publish them to a content store",
    )
    parser.add_argument("--non-interactive", action="store_true", help="Run without prompts")
    parser.add_argument("--no-download", action="store_true", help="Skip downloading data files")
    parser.add_argument("--no-extract", action="store_true", help="Skip extraction, only publish")
    parser.add_argument("-c", "--config", metavar="FILE", default=None, help="Env file to read instead of .env")
    parser.add_argument(
        "--kind",
        choices=[k.value for k in PlaceKind],
        default=None,
        help="Place kind to process (overrides PLACE_KIND)",
    )
    parser.add_argument(
        "--countries",
        metavar="CODES",
        default=None,
        help="Comma-separated country codes (overrides TARGET_COUNTRIES)",
    )
    parser.add_argument(
        "--region-ids",
        metavar="IDS",
        default=None,
        help="Comma-separated region ids to extract (overrides REGION_IDS and TARGET_COUNTRIES)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("-q", "--quiet", action="store_true", help="Quiet mode (errors only)")
    return parser


def get_log_level(args: argparse.Namespace) -> str | None:
    if args.quiet:
        return "ERROR"
    if args.verbose:
        return "DEBUG"
    return None


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Copy settings with CLI flags taking precedence over the environment."""
    updates = {}
    if args.kind is not None:
        updates["PLACE_KIND"] = args.kind
    if args.countries is not None:
        updates["TARGET_COUNTRIES"] = args.countries
    if args.region_ids is not None:
        updates["REGION_IDS"] = args.region_ids
    return settings.model_copy(update=updates) if updates else settings


async def run(args: argparse.Namespace) -> int:
    """Run the pipeline; returns the process exit code."""
    settings = apply_overrides(load_settings(args.config), args)
    setup_logging(get_log_level(args) or settings.LOG_LEVEL, settings.LOG_FORMAT)

    catalog = None
    mapping_store = None
    content_store = None
    try:
        ensure_directories(settings)
        if not args.no_extract:
            ensure_required_tools(settings)
        await ensure_catalog_present(
            settings,
            allow_download=not args.no_download,
            interactive=not args.non_interactive,
        )
        if not args.no_extract:
            await ensure_planet_present(settings, allow_download=not args.no_download)
        validate_config(settings)

        kind = PlaceKind(settings.PLACE_KIND)
        catalog = CatalogClient(settings.WHOSONFIRST_DB_PATH, kind)
        mapping_store = MappingStore(settings.CID_DB_PATH, kind)
        await mapping_store.init_schema()
        content_store = get_content_store(settings)

        country_service = CountryService(catalog, load_country_names(settings.COUNTRY_NAMES_PATH))
        scheduler = ExtractionScheduler(
            catalog=catalog,
            output_dir=settings.EXTRACTS_DIR,
            planet_location=settings.PLANET_PMTILES_LOCATION,
            tool_command=settings.pmtiles_command,
            max_concurrent=settings.MAX_CONCURRENT_EXTRACTIONS,
            extension=settings.EXTRACT_EXTENSION,
            min_extract_bytes=settings.MIN_EXTRACT_BYTES,
        )
        publisher = PublishPipeline(
            catalog=catalog,
            mapping_store=mapping_store,
            content_store=content_store,
            output_dir=settings.EXTRACTS_DIR,
            extension=settings.EXTRACT_EXTENSION,
            batch_size=settings.UPLOAD_BATCH_SIZE,
            capacity=settings.UPLOAD_QUEUE_CAPACITY,
        )
        runner = PipelineRunner(
            settings=settings,
            content_store=content_store,
            mapping_store=mapping_store,
            country_service=country_service,
            scheduler=scheduler,
            publisher=publisher,
            region_ids=settings.region_ids,
            skip_extract=args.no_extract,
        )
        await runner.run()
    except (TilepubError, ValueError, OSError) as e:
        logger.error(f"Fatal error: {e}", exc_info=logger.isEnabledFor(logging.DEBUG))
        return 1
    finally:
        if content_store is not None:
            await content_store.close()
        if mapping_store is not None:
            mapping_store.close()
        if catalog is not None:
            catalog.close()

    return 0


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    try:
        exit_code = asyncio.run(run(args))
    except KeyboardInterrupt:
        exit_code = 130
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
