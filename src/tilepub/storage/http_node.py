"""Storage node content store reached over its REST API."""

import asyncio
import logging
from pathlib import Path
from typing import AsyncIterator, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from tilepub.exceptions import StorageError
from tilepub.storage.base import CHUNK_SIZE, ContentStore, ProgressCallback, StoreStatus, UploadResult

logger = logging.getLogger(__name__)

UPLOAD_PATH = "/api/storage/v1/data"
INFO_PATH = "/api/storage/v1/debug/info"


class HttpNodeContentStore(ContentStore):
    """Client for a storage node that returns a CID for each uploaded file."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 300,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the node client.

        Args:
            base_url: Node API root, e.g. http://127.0.0.1:8080
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests inject MockTransport)
        """
        if not base_url:
            raise ValueError("STORAGE_NODE_URL not configured")
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, transport=transport
        )

    async def put(
        self, file_path: Path, on_progress: Optional[ProgressCallback] = None
    ) -> UploadResult:
        file_path = Path(file_path)
        if not file_path.is_file():
            raise StorageError(f"File not found: {file_path}")

        size = file_path.stat().st_size
        logger.info(
            "Uploading file to storage node",
            extra={"file_path": str(file_path), "size_bytes": size},
        )

        try:
            content_id = await self._upload(file_path, size, on_progress)
        except httpx.HTTPStatusError as e:
            raise StorageError(
                f"Storage node rejected {file_path.name}: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise StorageError(f"Upload of {file_path.name} failed: {e}") from e

        if not content_id:
            raise StorageError(f"Storage node returned an empty CID for {file_path.name}")

        logger.info("Upload complete", extra={"file_path": str(file_path), "cid": content_id})
        return UploadResult(content_id=content_id, size=size)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _upload(
        self, file_path: Path, size: int, on_progress: Optional[ProgressCallback]
    ) -> str:
        response = await self._client.post(
            UPLOAD_PATH,
            content=_iter_file(file_path, size, on_progress),
            headers={
                "Content-Type": "application/octet-stream",
                "Content-Disposition": f'attachment; filename="{file_path.name}"',
                "Content-Length": str(size),
            },
        )
        response.raise_for_status()
        return response.text.strip()

    async def status(self) -> StoreStatus:
        try:
            response = await self._client.get(INFO_PATH)
        except httpx.TransportError as e:
            logger.warning("Storage node unreachable", extra={"error": str(e)})
            return StoreStatus.DISCONNECTED
        return StoreStatus.CONNECTED if response.is_success else StoreStatus.ERROR

    def get_backend_name(self) -> str:
        return "http"

    async def close(self) -> None:
        await self._client.aclose()


async def _iter_file(
    file_path: Path, size: int, on_progress: Optional[ProgressCallback]
) -> AsyncIterator[bytes]:
    sent = 0
    with open(file_path, "rb") as f:
        while chunk := await asyncio.to_thread(f.read, CHUNK_SIZE):
            sent += len(chunk)
            if on_progress:
                on_progress(sent, size)
            yield chunk
