"""Google Cloud Storage content store."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud import storage

from tilepub.exceptions import StorageError
from tilepub.storage.base import ContentStore, ProgressCallback, StoreStatus, UploadResult, sha256_file

logger = logging.getLogger(__name__)


class GCSContentStore(ContentStore):
    """Content-addressed objects in a GCS bucket.

    Objects are named <prefix>/<sha256 hex>; an object that already
    exists is not uploaded again.
    """

    def __init__(self, bucket_name: str, prefix: str = "blocks", project_id: str | None = None):
        self.bucket_name = bucket_name
        self.prefix = prefix.strip("/")
        self.project_id = project_id
        self._client: Optional[storage.Client] = None
        self._bucket: Optional[storage.Bucket] = None

    def _get_bucket(self) -> storage.Bucket:
        """Lazy-load and cache GCS bucket."""
        if self._bucket is None:
            if not self.bucket_name:
                raise ValueError("GCS_BUCKET_NAME not configured")

            self._client = storage.Client(project=self.project_id or None)
            self._bucket = self._client.bucket(self.bucket_name)

        return self._bucket

    def get_object_name(self, digest: str) -> str:
        return f"{self.prefix}/{digest}" if self.prefix else digest

    async def put(
        self, file_path: Path, on_progress: Optional[ProgressCallback] = None
    ) -> UploadResult:
        file_path = Path(file_path)
        if not file_path.is_file():
            raise StorageError(f"File not found: {file_path}")

        size = file_path.stat().st_size
        digest = await asyncio.to_thread(sha256_file, file_path)
        object_name = self.get_object_name(digest)

        try:
            blob = self._get_bucket().blob(object_name)
            exists = await asyncio.to_thread(blob.exists)
            if not exists:
                await asyncio.to_thread(
                    blob.upload_from_filename,
                    str(file_path),
                    content_type="application/vnd.pmtiles",
                )
        except (GoogleAPIError, GoogleAuthError, ValueError) as e:
            logger.error(
                "Failed to upload to GCS",
                extra={"bucket": self.bucket_name, "object_name": object_name, "error": str(e)},
            )
            raise StorageError(f"GCS upload failed for {file_path}: {e}") from e

        if on_progress:
            on_progress(size, size)

        logger.info(
            "Stored object in GCS",
            extra={"gcs_uri": f"gs://{self.bucket_name}/{object_name}", "size_bytes": size, "deduplicated": exists},
        )
        return UploadResult(content_id=f"sha256:{digest}", size=size)

    async def status(self) -> StoreStatus:
        try:
            exists = await asyncio.to_thread(self._get_bucket().exists)
        except (GoogleAPIError, GoogleAuthError, ValueError) as e:
            logger.warning("GCS status check failed", extra={"error": str(e)})
            return StoreStatus.ERROR
        return StoreStatus.CONNECTED if exists else StoreStatus.ERROR

    def get_backend_name(self) -> str:
        return "gcs"
