"""Abstract content store interface."""

import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

# Called with (bytes_sent, total_bytes)
ProgressCallback = Callable[[int, int], None]

CHUNK_SIZE = 1024 * 1024


class StoreStatus(str, Enum):
    """Connection state of a content store."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class UploadResult:
    """Content identifier and size of a stored file."""

    content_id: str
    size: int


class ContentStore(ABC):
    """Abstract base class for content-addressed stores."""

    @abstractmethod
    async def put(
        self, file_path: Path, on_progress: Optional[ProgressCallback] = None
    ) -> UploadResult:
        """Store a local file.

        Args:
            file_path: Local file to upload
            on_progress: Optional callback receiving (bytes_sent, total_bytes)

        Returns:
            Content identifier and stored size

        Raises:
            StorageError: If the upload fails. Safe to retry.
        """
        pass

    @abstractmethod
    async def status(self) -> StoreStatus:
        """Report whether the store is reachable."""
        pass

    @abstractmethod
    def get_backend_name(self) -> str:
        """Return backend identifier."""
        pass

    async def close(self) -> None:
        """Release client resources."""
        return None


def sha256_file(file_path: Path, on_progress: Optional[ProgressCallback] = None) -> str:
    """Hex sha256 of a file, read in chunks."""
    total = file_path.stat().st_size
    digest = hashlib.sha256()
    done = 0
    with open(file_path, "rb") as f:
        while chunk := f.read(CHUNK_SIZE):
            digest.update(chunk)
            done += len(chunk)
            if on_progress:
                on_progress(done, total)
    return digest.hexdigest()
