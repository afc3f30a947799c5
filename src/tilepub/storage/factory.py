"""Content store selection from settings."""

from tilepub.core.config import Settings
from tilepub.storage.base import ContentStore


def get_content_store(settings: Settings) -> ContentStore:
    """Build the content store named by STORAGE_BACKEND.

    Raises:
        ValueError: If the backend is unknown or its settings are missing
    """
    backend = settings.STORAGE_BACKEND.lower()

    if backend == "local":
        from tilepub.storage.local import LocalContentStore

        return LocalContentStore(settings.STORAGE_DATA_DIR)

    if backend == "http":
        from tilepub.storage.http_node import HttpNodeContentStore

        return HttpNodeContentStore(settings.STORAGE_NODE_URL, timeout=settings.STORAGE_NODE_TIMEOUT)

    if backend == "gcs":
        from tilepub.storage.gcs import GCSContentStore

        if not settings.GCS_BUCKET_NAME:
            raise ValueError("GCS_BUCKET_NAME not configured")
        return GCSContentStore(
            settings.GCS_BUCKET_NAME,
            prefix=settings.GCS_PREFIX,
            project_id=settings.GCP_PROJECT_ID or None,
        )

    raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND!r}")
