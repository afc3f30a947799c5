"""Local filesystem content store."""

import asyncio
import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import Optional

from tilepub.exceptions import StorageError
from tilepub.storage.base import ContentStore, ProgressCallback, StoreStatus, UploadResult, sha256_file

logger = logging.getLogger(__name__)


class LocalContentStore(ContentStore):
    """Content-addressed store in a local directory.

    Files live at <base_path>/<first two hex chars>/<sha256 hex>. The
    content id is "sha256:<hex>", so identical extracts share one blob.
    """

    def __init__(self, base_path: str | Path = "data/storage"):
        self.base_path = Path(base_path)

    def get_target_path(self, digest: str) -> Path:
        return self.base_path / digest[:2] / digest

    async def put(
        self, file_path: Path, on_progress: Optional[ProgressCallback] = None
    ) -> UploadResult:
        file_path = Path(file_path)
        if not file_path.is_file():
            raise StorageError(f"File not found: {file_path}")

        try:
            return await asyncio.to_thread(self._store, file_path, on_progress)
        except OSError as e:
            raise StorageError(f"Failed to store {file_path}: {e}") from e

    def _store(self, file_path: Path, on_progress: Optional[ProgressCallback]) -> UploadResult:
        size = file_path.stat().st_size
        digest = sha256_file(file_path, on_progress)
        target_path = self.get_target_path(digest)

        if not target_path.exists():
            target_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = target_path.with_name(f".{digest}.{uuid.uuid4().hex}.tmp")
            try:
                shutil.copyfile(file_path, tmp_path)
                os.replace(tmp_path, target_path)
            finally:
                tmp_path.unlink(missing_ok=True)
            logger.debug("Stored new blob", extra={"digest": digest, "size_bytes": size})

        return UploadResult(content_id=f"sha256:{digest}", size=size)

    async def status(self) -> StoreStatus:
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError:
            return StoreStatus.ERROR
        return StoreStatus.CONNECTED if os.access(self.base_path, os.W_OK) else StoreStatus.ERROR

    def get_backend_name(self) -> str:
        return "local"
