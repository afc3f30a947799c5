"""Upload queue and statistics records."""

from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Deque, Set, Tuple

from tilepub.exceptions import DuplicateUploadError, QueueFullError


@dataclass(frozen=True)
class PendingUpload:
    """An extract found on disk that has no dedup mapping yet."""

    country_code: str
    region_id: int
    file_path: Path

    @property
    def key(self) -> Tuple[str, int]:
        return (self.country_code, self.region_id)


@dataclass(frozen=True)
class CompletedUpload:
    """An extract that reached the content store."""

    country_code: str
    region_id: int
    content_id: str
    file_size: int

    def as_mapping(self) -> Tuple[str, int, str, int]:
        """Row tuple for MappingStore.batch_upsert_mappings."""
        return (self.country_code, self.region_id, self.content_id, self.file_size)


class UploadQueue:
    """Bounded FIFO of pending uploads.

    batch_size is the flush threshold, capacity the hard ceiling. The
    queue never holds more than capacity items and never holds the
    same (country, region) twice.
    """

    def __init__(self, batch_size: int = 10, capacity: int = 100):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if capacity < batch_size:
            raise ValueError("capacity must be >= batch_size")
        self.batch_size = batch_size
        self.capacity = capacity
        self._items: Deque[PendingUpload] = deque()
        self._keys: Set[Tuple[str, int]] = set()

    def __len__(self) -> int:
        return len(self._items)

    def is_empty(self) -> bool:
        return not self._items

    def is_full(self) -> bool:
        """Whether the queue reached its batch trigger size."""
        return len(self._items) >= self.batch_size

    def at_capacity(self) -> bool:
        return len(self._items) >= self.capacity

    def contains(self, country_code: str, region_id: int) -> bool:
        return (country_code, region_id) in self._keys

    def add(self, upload: PendingUpload) -> None:
        """Append an upload.

        Raises:
            QueueFullError: If the queue is at hard capacity
            DuplicateUploadError: If the region is already queued
        """
        if self.at_capacity():
            raise QueueFullError(
                f"Upload queue at capacity ({self.capacity}), drain before adding"
            )
        if upload.key in self._keys:
            raise DuplicateUploadError(
                f"Region {upload.region_id} ({upload.country_code}) already queued"
            )
        self._items.append(upload)
        self._keys.add(upload.key)

    def take_batch(self) -> list[PendingUpload]:
        """Remove and return up to batch_size uploads in FIFO order."""
        batch = []
        while self._items and len(batch) < self.batch_size:
            upload = self._items.popleft()
            self._keys.discard(upload.key)
            batch.append(upload)
        return batch


@dataclass
class UploadStats:
    """Running totals for a publish run. Only ever incremented."""

    total_uploaded: int = 0
    total_failed: int = 0
    total_bytes_uploaded: int = 0

    def increment_uploaded(self, file_size: int) -> None:
        self.total_uploaded += 1
        self.total_bytes_uploaded += file_size

    def increment_failed(self) -> None:
        self.total_failed += 1

    def snapshot(self) -> "UploadStats":
        return UploadStats(
            total_uploaded=self.total_uploaded,
            total_failed=self.total_failed,
            total_bytes_uploaded=self.total_bytes_uploaded,
        )


@dataclass
class ScanSummary:
    """What the filesystem scan saw during one publish run."""

    files_found: int = 0
    enqueued: int = 0
    already_published: int = 0
    unknown_regions: int = 0
    malformed_names: int = 0
    rejected: int = 0
    catalog_errors: int = 0
    countries: Set[str] = field(default_factory=set)
