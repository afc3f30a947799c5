"""Startup checks and one-time data preparation."""

import asyncio
import bz2
import logging
import os
import shutil
from pathlib import Path
from typing import Callable

from tilepub.core.config import Settings
from tilepub.exceptions import CatalogMissingError, ConfigurationError, ToolNotFoundError
from tilepub.models.region import PlaceKind
from tilepub.services.downloader import ResumableDownloader

logger = logging.getLogger(__name__)

DECOMPRESS_CHUNK_SIZE = 4 * 1024 * 1024


def build_downloader(settings: Settings) -> ResumableDownloader:
    return ResumableDownloader(
        max_attempts=settings.DOWNLOAD_MAX_ATTEMPTS,
        retry_delay=settings.DOWNLOAD_RETRY_DELAY_SECONDS,
        timeout=settings.DOWNLOAD_TIMEOUT,
    )


def ensure_directories(settings: Settings) -> None:
    """Create the extracts directory and the parents of local data files."""
    logger.info("Ensuring required directories exist")

    directories = [
        Path(settings.EXTRACTS_DIR),
        Path(settings.CID_DB_PATH).parent,
        Path(settings.WHOSONFIRST_DB_PATH).parent,
    ]
    if settings.PLANET_PMTILES_LOCATION and not settings.planet_is_remote:
        directories.append(Path(settings.PLANET_PMTILES_LOCATION).parent)
    if settings.STORAGE_BACKEND.lower() == "local":
        directories.append(Path(settings.STORAGE_DATA_DIR))

    for directory in directories:
        if not directory.exists():
            directory.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created directory: {directory}")


def ensure_required_tools(settings: Settings) -> None:
    """Check that the extraction tool can be found.

    Raises:
        ToolNotFoundError: If the command is empty or not on PATH
    """
    logger.info("Ensuring required tools are present")
    command = settings.pmtiles_command
    if not command:
        raise ToolNotFoundError("PMTILES_CMD is empty")
    if shutil.which(command[0]) is None:
        raise ToolNotFoundError(f"Required tool not found on PATH: {command[0]}")
    logger.info("All required tools are present", extra={"tool": command[0]})


def decompress_bz2(compressed_path: Path, destination: Path) -> Path:
    """Decompress a .bz2 file next to it and remove the archive.

    Output goes to a temporary name first so a crash never leaves a
    truncated database at the final path.
    """
    tmp_path = destination.with_name(f"{destination.name}.tmp")
    try:
        with bz2.open(compressed_path, "rb") as src, open(tmp_path, "wb") as dst:
            shutil.copyfileobj(src, dst, DECOMPRESS_CHUNK_SIZE)
        os.replace(tmp_path, destination)
    finally:
        tmp_path.unlink(missing_ok=True)

    compressed_path.unlink()
    logger.info(
        "Decompressed database",
        extra={"destination": str(destination), "size_bytes": destination.stat().st_size},
    )
    return destination


async def ensure_catalog_present(
    settings: Settings,
    allow_download: bool = True,
    interactive: bool = True,
    downloader: ResumableDownloader | None = None,
    prompt: Callable[[str], str] = input,
) -> Path:
    """Make sure the WhosOnFirst database exists locally.

    Uses the database if present, else decompresses a previously
    downloaded archive, else downloads the archive. With downloads
    disabled the user is asked, unless running non-interactively.

    Raises:
        CatalogMissingError: If the database is absent and was not fetched
        DownloadError: If the download failed
    """
    database_path = Path(settings.WHOSONFIRST_DB_PATH)
    compressed_path = database_path.with_name(f"{database_path.name}.bz2")

    if database_path.exists():
        logger.info("WhosOnFirst database already present", extra={"db_path": str(database_path)})
        return database_path

    if compressed_path.exists():
        logger.info("Compressed database found, decompressing")
        return await asyncio.to_thread(decompress_bz2, compressed_path, database_path)

    logger.info("WhosOnFirst database not found")

    should_download = allow_download
    if not should_download and interactive:
        answer = await asyncio.to_thread(
            prompt, "Do you want to download the WhosOnFirst database? This may take a while. (y/n) "
        )
        should_download = answer.strip().lower() == "y"

    if not should_download:
        logger.info("Database download skipped")
        raise CatalogMissingError(f"WhosOnFirst database not found: {database_path}")

    downloader = downloader or build_downloader(settings)
    logger.info("Downloading WhosOnFirst database", extra={"url": settings.WHOSONFIRST_DB_URL})
    await downloader.download(settings.WHOSONFIRST_DB_URL, compressed_path)
    return await asyncio.to_thread(decompress_bz2, compressed_path, database_path)


async def ensure_planet_present(
    settings: Settings,
    allow_download: bool = True,
    downloader: ResumableDownloader | None = None,
) -> None:
    """Download the planet file to its local location when it is missing.

    Remote locations are read in place by the extraction tool and need
    nothing here.
    """
    location = settings.PLANET_PMTILES_LOCATION
    if not location or settings.planet_is_remote:
        return

    planet_path = Path(location)
    if planet_path.exists():
        return

    if not settings.PLANET_PMTILES_URL:
        logger.warning(
            "Planet PMTiles file missing and PLANET_PMTILES_URL not set",
            extra={"location": location},
        )
        return

    if not allow_download:
        logger.info("Skipping planet download (--no-download flag set)")
        return

    downloader = downloader or build_downloader(settings)
    logger.info("Downloading planet PMTiles", extra={"url": settings.PLANET_PMTILES_URL})
    await downloader.download(settings.PLANET_PMTILES_URL, planet_path)


def validate_config(settings: Settings) -> None:
    """Check settings that would otherwise fail deep inside a run.

    Raises:
        ConfigurationError: On the first invalid setting
    """
    logger.info("Validating configuration")

    if not Path(settings.WHOSONFIRST_DB_PATH).exists():
        raise ConfigurationError(f"WhosOnFirst database not found: {settings.WHOSONFIRST_DB_PATH}")

    try:
        PlaceKind(settings.PLACE_KIND)
    except ValueError:
        raise ConfigurationError(
            f"PLACE_KIND must be one of {[k.value for k in PlaceKind]}, got {settings.PLACE_KIND!r}"
        ) from None

    try:
        settings.region_ids
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    if settings.MAX_CONCURRENT_EXTRACTIONS < 1:
        raise ConfigurationError("MAX_CONCURRENT_EXTRACTIONS must be at least 1")
    if settings.UPLOAD_BATCH_SIZE < 1:
        raise ConfigurationError("UPLOAD_BATCH_SIZE must be at least 1")
    if settings.UPLOAD_QUEUE_CAPACITY < settings.UPLOAD_BATCH_SIZE:
        raise ConfigurationError("UPLOAD_QUEUE_CAPACITY must be >= UPLOAD_BATCH_SIZE")
    if settings.STORAGE_BACKEND.lower() not in ("local", "http", "gcs"):
        raise ConfigurationError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND!r}")

    logger.info("Configuration validated successfully")
