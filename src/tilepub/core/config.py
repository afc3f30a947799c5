"""Configuration management for the tilepub pipeline."""

import shlex

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"  # "text" or "json"

    # Catalog (WhosOnFirst SQLite distribution)
    WHOSONFIRST_DB_PATH: str = "./data/whosonfirst-data-admin-latest.db"
    WHOSONFIRST_DB_URL: str = (
        "https://data.geocode.earth/wof/dist/sqlite/whosonfirst-data-admin-latest.db.bz2"
    )
    CID_DB_PATH: str = "./data/cids.db"
    COUNTRY_NAMES_PATH: str = ""  # Empty = bundled countries.yaml

    # Extraction
    EXTRACTS_DIR: str = "./data/extracts"
    PLACE_KIND: str = "locality"  # "locality" or "area"
    EXTRACT_EXTENSION: str = "pmtiles"
    PMTILES_CMD: str = "pmtiles"
    PLANET_PMTILES_LOCATION: str = ""  # Local path or http(s) URL
    PLANET_PMTILES_URL: str = ""  # Download source when the local location is missing
    TARGET_COUNTRIES: str = ""  # Comma-separated, empty or ALL = every country
    REGION_IDS: str = ""  # Comma-separated, overrides TARGET_COUNTRIES
    MAX_CONCURRENT_EXTRACTIONS: int = 4
    MIN_EXTRACT_BYTES: int = 1

    # Publishing
    UPLOAD_BATCH_SIZE: int = 10
    UPLOAD_QUEUE_CAPACITY: int = 100

    # Downloads
    DOWNLOAD_MAX_ATTEMPTS: int = 5
    DOWNLOAD_RETRY_DELAY_SECONDS: float = 5.0
    DOWNLOAD_TIMEOUT: int = 60  # seconds between received bytes

    # Content store
    STORAGE_BACKEND: str = "local"  # "local", "http" or "gcs"
    STORAGE_DATA_DIR: str = "./data/storage"
    STORAGE_NODE_URL: str = ""
    STORAGE_NODE_TIMEOUT: int = 300
    GCS_BUCKET_NAME: str = ""
    GCS_PREFIX: str = "blocks"
    GCP_PROJECT_ID: str = ""

    @property
    def target_countries(self) -> list[str]:
        """Parse TARGET_COUNTRIES into a list of upper-case codes."""
        return [c.strip().upper() for c in self.TARGET_COUNTRIES.split(",") if c.strip()]

    @property
    def region_ids(self) -> list[int]:
        """Parse REGION_IDS into integers, ignoring blanks."""
        ids = []
        for raw in self.REGION_IDS.split(","):
            raw = raw.strip()
            if not raw:
                continue
            try:
                ids.append(int(raw))
            except ValueError:
                raise ValueError(f"Invalid region id in REGION_IDS: {raw!r}") from None
        return ids

    @property
    def pmtiles_command(self) -> list[str]:
        """Split PMTILES_CMD so wrappers like "docker run ... pmtiles" work."""
        return shlex.split(self.PMTILES_CMD)

    @property
    def planet_is_remote(self) -> bool:
        """Whether PLANET_PMTILES_LOCATION points at an HTTP(S) URL."""
        return self.PLANET_PMTILES_LOCATION.startswith(("http://", "https://"))


def load_settings(env_file: str | None = None) -> Settings:
    """Build settings, optionally from an explicit env file instead of .env."""
    if env_file is None:
        return Settings()
    return Settings(_env_file=env_file)


# Singleton settings instance
settings = Settings()
