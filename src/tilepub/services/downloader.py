"""Resumable, retrying HTTP downloader for large files.

Bytes go to "<destination>.part". An interrupted download resumes from
the size of that file with a Range request. The destination only ever
appears once the whole body arrived and its length was verified.
"""

import logging
import os
from pathlib import Path

import httpx
from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt, wait_fixed

from tilepub.exceptions import DownloadError, IncompleteDownloadError

logger = logging.getLogger(__name__)

PROGRESS_STEP_PERCENT = 5


def get_temp_path(destination: Path) -> Path:
    """Temporary file a download is written to before the final rename."""
    destination = Path(destination)
    return destination.with_name(f"{destination.name}.part")


def parse_content_range_total(header: str | None) -> int | None:
    """Total size from a Content-Range header like "bytes 100-199/200".

    Returns None when the header is absent or the total is "*".
    """
    if not header or "/" not in header:
        return None
    return parse_content_length(header.rsplit("/", 1)[1])


def parse_content_length(header: str | None) -> int | None:
    """Byte count from a Content-Length value, or None when absent or malformed."""
    value = (header or "").strip()
    return int(value) if value.isascii() and value.isdigit() else None


class ResumableDownloader:
    """Downloads a URL to a file, resuming and retrying until complete."""

    def __init__(
        self,
        max_attempts: int = 5,
        retry_delay: float = 5.0,
        timeout: float = 60,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.transport = transport

    async def download(self, url: str, destination: str | Path) -> Path:
        """Download url to destination.

        Args:
            url: HTTP(S) URL to fetch
            destination: Final file path

        Returns:
            The destination path

        Raises:
            DownloadError: When every attempt failed. The .part file is removed.
        """
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        temp_path = get_temp_path(destination)

        logger.info("Starting download", extra={"url": url, "destination": str(destination)})

        async with httpx.AsyncClient(
            timeout=self.timeout, follow_redirects=True, transport=self.transport
        ) as client:
            try:
                async for attempt in AsyncRetrying(
                    stop=stop_after_attempt(self.max_attempts),
                    wait=wait_fixed(self.retry_delay),
                    retry=retry_if_exception_type((httpx.HTTPError, DownloadError, OSError)),
                    before_sleep=self._log_retry,
                ):
                    with attempt:
                        await self._attempt(client, url, temp_path)
            except RetryError as e:
                temp_path.unlink(missing_ok=True)
                cause = e.last_attempt.exception()
                logger.error(
                    "Download failed after all attempts",
                    extra={"url": url, "attempts": self.max_attempts, "error": str(cause)},
                )
                raise DownloadError(
                    f"Download of {url} failed after {self.max_attempts} attempts: {cause}"
                ) from cause

        os.replace(temp_path, destination)
        logger.info(
            "Download complete",
            extra={"url": url, "destination": str(destination), "size_bytes": destination.stat().st_size},
        )
        return destination

    def _log_retry(self, retry_state) -> None:
        logger.warning(
            f"Download attempt {retry_state.attempt_number}/{self.max_attempts} failed, "
            f"retrying in {self.retry_delay}s",
            extra={"error": str(retry_state.outcome.exception())},
        )

    async def _attempt(self, client: httpx.AsyncClient, url: str, temp_path: Path) -> None:
        existing_size = temp_path.stat().st_size if temp_path.exists() else 0
        headers = {"Accept-Encoding": "identity"}
        if existing_size > 0:
            headers["Range"] = f"bytes={existing_size}-"
            logger.info(
                f"Resuming download from byte {existing_size} ({existing_size / 1_048_576:.2f} MB)",
                extra={"url": url},
            )

        async with client.stream("GET", url, headers=headers) as response:
            if response.status_code == 206 and existing_size > 0:
                start = existing_size
                total = parse_content_range_total(response.headers.get("content-range"))
                mode = "ab"
            elif response.status_code == 200:
                if existing_size > 0:
                    logger.info("Server ignored range request, restarting download from the beginning")
                start = 0
                total = parse_content_length(response.headers.get("content-length"))
                mode = "wb"
            else:
                raise DownloadError(f"Unexpected HTTP status {response.status_code} for {url}")

            downloaded = start
            next_report = PROGRESS_STEP_PERCENT
            with open(temp_path, mode) as f:
                async for chunk in response.aiter_bytes():
                    f.write(chunk)
                    downloaded += len(chunk)
                    if total:
                        percent = downloaded * 100 // total
                        if percent >= next_report:
                            logger.info(
                                f"Download progress: {percent}%",
                                extra={"bytes_received": downloaded, "total_bytes": total},
                            )
                            next_report = (percent // PROGRESS_STEP_PERCENT + 1) * PROGRESS_STEP_PERCENT

        if total is not None and downloaded != total:
            raise IncompleteDownloadError(downloaded, total)
