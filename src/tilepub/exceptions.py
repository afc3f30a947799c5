"""Custom exceptions for the extract and publish pipeline."""


class TilepubError(Exception):
    """Base exception for tilepub."""
    pass


class ConfigurationError(TilepubError):
    """Exception raised when configuration is missing or invalid."""
    pass


class SourceNotConfiguredError(ConfigurationError):
    """Exception raised when no planet source location is configured."""

    def __init__(self):
        super().__init__("Planet PMTiles location not configured (PLANET_PMTILES_LOCATION)")


class SourceNotFoundError(ConfigurationError):
    """Exception raised when the configured local planet file does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Planet PMTiles file not found: {path}")


class ToolNotFoundError(ConfigurationError):
    """Exception raised when the extraction tool is not on PATH."""
    pass


class CatalogError(TilepubError):
    """Exception raised when a catalog query fails."""
    pass


class CatalogMissingError(CatalogError):
    """Exception raised when the catalog database is absent and download was skipped."""
    pass


class MappingStoreError(TilepubError):
    """Exception raised when the dedup mapping store fails."""
    pass


class StorageError(TilepubError):
    """Exception raised when a content store operation fails."""
    pass


class DownloadError(TilepubError):
    """Exception raised when a download fails."""
    pass


class IncompleteDownloadError(DownloadError):
    """Exception raised when fewer bytes arrived than the server advertised."""

    def __init__(self, received: int, expected: int):
        self.received = received
        self.expected = expected
        super().__init__(f"Incomplete download: got {received} of {expected} bytes")


class ExtractionError(TilepubError):
    """Base exception for extraction failures."""
    pass


class RegionExtractionError(ExtractionError):
    """Exception raised when extracting a single region fails."""

    def __init__(self, region_id: int, detail: str):
        self.region_id = region_id
        self.detail = detail
        super().__init__(f"Extraction failed for region {region_id}: {detail}")


class ExtractionIncompleteError(ExtractionError):
    """Exception raised after a run in which one or more countries failed.

    Carries the full report so callers can log it and keep going.
    """

    def __init__(self, report):
        self.report = report
        failed = ", ".join(sorted(report.failed_countries))
        super().__init__(f"Extraction incomplete for countries: {failed}")


class UploadQueueError(TilepubError):
    """Exception raised when an upload cannot be enqueued."""
    pass


class QueueFullError(UploadQueueError):
    """Exception raised when the upload queue is at hard capacity."""
    pass


class DuplicateUploadError(UploadQueueError):
    """Exception raised when the same region is already queued."""
    pass


class MalformedExtractNameError(TilepubError):
    """Exception raised when an extract file name does not parse as a region id."""

    def __init__(self, path):
        self.path = path
        super().__init__(f"Invalid region ID in filename: {path}")


class PublishError(TilepubError):
    """Base exception for publish failures."""
    pass


class BatchCommitError(PublishError):
    """Exception raised when a batch of mappings could not be persisted."""
    pass
