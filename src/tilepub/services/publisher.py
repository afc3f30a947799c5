"""Publish pipeline: reconcile extracts on disk with the dedup mapping store.

The scanner walks <output_dir>/<country>/<region_id>.<ext>, enqueues
every extract without a mapping row and flushes the queue in batches.
A batch uploads all of its files concurrently, then records the
successes in one transaction. Statistics move only after that
transaction commits.
"""

import asyncio
import logging
from pathlib import Path

from tilepub.catalog.client import CatalogClient
from tilepub.catalog.mapping_store import MappingStore
from tilepub.core.logging import country_context
from tilepub.exceptions import (
    BatchCommitError,
    CatalogError,
    MalformedExtractNameError,
    MappingStoreError,
    UploadQueueError,
)
from tilepub.models.upload import CompletedUpload, PendingUpload, ScanSummary, UploadQueue, UploadStats
from tilepub.storage.base import ContentStore

logger = logging.getLogger(__name__)


def parse_region_id(file_path: Path) -> int:
    """Region id encoded in an extract's file stem.

    Raises:
        MalformedExtractNameError: If the stem is not a non-negative integer
    """
    stem = file_path.stem
    if not (stem.isascii() and stem.isdigit()):
        raise MalformedExtractNameError(file_path)
    return int(stem)


class PublishPipeline:
    """Uploads unpublished extracts and records their content ids."""

    def __init__(
        self,
        catalog: CatalogClient,
        mapping_store: MappingStore,
        content_store: ContentStore,
        output_dir: str | Path,
        extension: str = "pmtiles",
        batch_size: int = 10,
        capacity: int = 100,
    ):
        self.catalog = catalog
        self.mapping_store = mapping_store
        self.content_store = content_store
        self.output_dir = Path(output_dir)
        self.extension = extension.lstrip(".")
        self.upload_queue = UploadQueue(batch_size=batch_size, capacity=capacity)
        self.stats = UploadStats()
        self._queue_lock = asyncio.Lock()
        self._stats_lock = asyncio.Lock()

    async def publish_all(self) -> ScanSummary:
        """Scan every country directory and publish what is missing.

        Returns:
            What the scan found

        Raises:
            BatchCommitError: If a batch's mappings could not be persisted
        """
        summary = ScanSummary()
        logger.info(
            "Scanning filesystem for extracts",
            extra={"output_dir": str(self.output_dir), "extension": self.extension},
        )

        if not self.output_dir.is_dir():
            logger.warning("Extracts directory not found", extra={"output_dir": str(self.output_dir)})
            return summary

        for country_path in sorted(self.output_dir.iterdir()):
            if not country_path.is_dir() or country_path.name.startswith("."):
                continue
            await self._scan_country(country_path, summary)

        while True:
            async with self._queue_lock:
                remaining = len(self.upload_queue)
            if not remaining:
                break
            logger.info("Processing remaining uploads in queue", extra={"queued": remaining})
            await self._process_upload_queue()

        stats = await self.get_stats()
        logger.info(
            "Filesystem scan completed",
            extra={
                "files_found": summary.files_found,
                "enqueued": summary.enqueued,
                "already_published": summary.already_published,
                "malformed_names": summary.malformed_names,
                "unknown_regions": summary.unknown_regions,
                "total_uploaded": stats.total_uploaded,
                "total_failed": stats.total_failed,
                "total_bytes_uploaded": stats.total_bytes_uploaded,
            },
        )
        return summary

    async def _scan_country(self, country_path: Path, summary: ScanSummary) -> None:
        country_code = country_path.name
        token = country_context.set(country_code)
        try:
            logger.info(f"Scanning country directory: {country_code}")
            summary.countries.add(country_code)
            files_found = 0
            enqueued = 0

            for file_path in sorted(country_path.glob(f"*.{self.extension}")):
                if not file_path.is_file():
                    continue
                files_found += 1
                summary.files_found += 1

                try:
                    region_id = parse_region_id(file_path)
                except MalformedExtractNameError as e:
                    logger.error(str(e), extra={"file_path": str(file_path)})
                    summary.malformed_names += 1
                    continue

                if await self._process_file(file_path, country_code, region_id, summary):
                    enqueued += 1

            logger.info(f"Country {country_code}: {files_found} files found, {enqueued} enqueued")
        finally:
            country_context.reset(token)

    async def _process_file(
        self, file_path: Path, country_code: str, region_id: int, summary: ScanSummary
    ) -> bool:
        try:
            region = await self.catalog.get_region(region_id)
        except CatalogError as e:
            logger.error(
                f"Catalog error checking region {region_id}",
                extra={"region_id": region_id, "error": str(e)},
            )
            summary.catalog_errors += 1
            return False

        if region is None:
            logger.warning(
                f"Region {region_id} found in filesystem but not in catalog, skipping",
                extra={"region_id": region_id},
            )
            summary.unknown_regions += 1
            return False

        if await self.mapping_store.has_mapping(country_code, region_id):
            logger.debug(f"Region {region_id} already published, skipping")
            summary.already_published += 1
            return False

        pending = PendingUpload(country_code=country_code, region_id=region_id, file_path=file_path)
        async with self._queue_lock:
            try:
                self.upload_queue.add(pending)
            except UploadQueueError as e:
                logger.warning(f"Failed to add upload to queue: {e}", extra={"region_id": region_id})
                summary.rejected += 1
                return False
            batch_ready = self.upload_queue.is_full()

        summary.enqueued += 1
        if batch_ready:
            await self._process_upload_queue()
        return True

    async def _process_upload_queue(self) -> None:
        async with self._queue_lock:
            batch = self.upload_queue.take_batch()
        if not batch:
            return

        logger.info(f"Processing batch of {len(batch)} uploads")
        results = await asyncio.gather(
            *(self._upload_single_file(pending) for pending in batch),
            return_exceptions=True,
        )

        completed: list[CompletedUpload] = []
        failed = 0
        for pending, result in zip(batch, results):
            if isinstance(result, CompletedUpload):
                completed.append(result)
                continue
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
            logger.error(
                f"Upload failed for region {pending.region_id}: {result}",
                extra={"country_code": pending.country_code, "region_id": pending.region_id},
            )
            failed += 1

        if completed:
            try:
                await self.mapping_store.batch_upsert_mappings([u.as_mapping() for u in completed])
            except MappingStoreError as e:
                raise BatchCommitError(
                    f"Failed to record {len(completed)} uploads: {e}"
                ) from e
            logger.info(f"Updated {len(completed)} content id mappings in database")

        async with self._stats_lock:
            for upload in completed:
                self.stats.increment_uploaded(upload.file_size)
            for _ in range(failed):
                self.stats.increment_failed()

        logger.info(f"Batch completed: {len(completed)} successful, {failed} failed")

    async def _upload_single_file(self, pending: PendingUpload) -> CompletedUpload:
        file_size = (await asyncio.to_thread(pending.file_path.stat)).st_size
        logger.info(
            f"Uploading region {pending.region_id} from country {pending.country_code} ({file_size} bytes)"
        )

        result = await self.content_store.put(pending.file_path)

        logger.info(
            f"Successfully uploaded region {pending.region_id}",
            extra={"region_id": pending.region_id, "content_id": result.content_id},
        )
        return CompletedUpload(
            country_code=pending.country_code,
            region_id=pending.region_id,
            content_id=result.content_id,
            file_size=file_size,
        )

    async def get_stats(self) -> UploadStats:
        async with self._stats_lock:
            return self.stats.snapshot()
