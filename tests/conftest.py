"""Pytest configuration and shared fixtures."""

import sqlite3
import sys
import textwrap
from pathlib import Path

import pytest
import pytest_asyncio

from tilepub.catalog.client import CatalogClient
from tilepub.catalog.mapping_store import MappingStore
from tilepub.exceptions import StorageError
from tilepub.models.region import PlaceKind
from tilepub.storage.base import ContentStore, StoreStatus, UploadResult

SPR_SCHEMA = """
CREATE TABLE spr (
    id INTEGER NOT NULL PRIMARY KEY,
    parent_id INTEGER,
    name TEXT,
    placetype TEXT,
    country TEXT,
    repo TEXT,
    latitude NUMERIC,
    longitude NUMERIC,
    min_latitude NUMERIC,
    min_longitude NUMERIC,
    max_latitude NUMERIC,
    max_longitude NUMERIC,
    is_current INTEGER,
    is_deprecated INTEGER,
    is_ceased INTEGER,
    is_superseded INTEGER,
    is_superseding INTEGER,
    superseded_by TEXT,
    supersedes TEXT,
    lastmodified INTEGER
)
"""


def insert_region(
    conn: sqlite3.Connection,
    region_id: int,
    country: str,
    placetype: str = "locality",
    name: str | None = None,
    is_current: int = 1,
    is_deprecated: int = 0,
    bbox: tuple | None = (1.0, 2.0, 3.0, 4.0),
) -> None:
    """Insert one spr row; bbox is (min_lon, min_lat, max_lon, max_lat) or None."""
    min_lon, min_lat, max_lon, max_lat = bbox or (None, None, None, None)
    conn.execute(
        """
        INSERT INTO spr (id, name, placetype, country, latitude, longitude,
                         min_latitude, min_longitude, max_latitude, max_longitude,
                         is_current, is_deprecated)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            region_id,
            name if name is not None else f"Place {region_id}",
            placetype,
            country,
            2.5,
            1.5,
            min_lat,
            min_lon,
            max_lat,
            max_lon,
            is_current,
            is_deprecated,
        ),
    )


@pytest.fixture
def catalog_path(tmp_path: Path) -> Path:
    """WhosOnFirst-shaped catalog.

    ZZ has localities 1, 2, 3 and a region 100. YY has locality 10.
    Locality 4 (deprecated) and 5 (no bbox) must never be returned.
    """
    path = tmp_path / "whosonfirst.db"
    conn = sqlite3.connect(path)
    conn.execute(SPR_SCHEMA)
    for region_id in (1, 2, 3):
        insert_region(conn, region_id, "ZZ")
    insert_region(conn, 4, "ZZ", is_deprecated=1)
    insert_region(conn, 5, "ZZ", bbox=None)
    insert_region(conn, 10, "YY", bbox=(-10.5, 40.25, -9.75, 41.0))
    insert_region(conn, 100, "ZZ", placetype="region")
    insert_region(conn, 101, "YY", placetype="county")
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def catalog(catalog_path: Path):
    client = CatalogClient(catalog_path, PlaceKind.LOCALITY)
    yield client
    client.close()


@pytest_asyncio.fixture
async def mapping_store(tmp_path: Path):
    store = MappingStore(tmp_path / "cids.db", PlaceKind.LOCALITY)
    await store.init_schema()
    yield store
    store.close()


FAKE_TOOL = textwrap.dedent(
    """
    import pathlib
    import sys

    here = pathlib.Path(__file__).parent
    _, command, source, output, bbox = sys.argv
    with open(here / "invocations.log", "a") as log:
        log.write(f"{command} {source} {output} {bbox}\\n")

    delay = here / "delay"
    if delay.exists():
        import os
        import time

        running = here / "running"
        try:
            os.close(os.open(running, os.O_CREAT | os.O_EXCL))
        except FileExistsError:
            (here / "overlapped").touch()
        time.sleep(float(delay.read_text()))
        running.unlink(missing_ok=True)

    def ids(name):
        path = here / name
        return path.read_text().split() if path.exists() else []

    region_id = pathlib.Path(output).stem
    if region_id in ids("fail_ids"):
        sys.stderr.write(f"cannot extract {region_id}\\n")
        sys.exit(2)
    if region_id not in ids("silent_ids"):
        pathlib.Path(output).write_bytes(b"PMTiles" + region_id.encode())
    """
)


class FakeTool:
    """Python script standing in for `pmtiles extract`."""

    def __init__(self, directory: Path):
        self.directory = directory
        self.script = directory / "fake_pmtiles.py"
        self.script.write_text(FAKE_TOOL)

    @property
    def command(self) -> list[str]:
        return [sys.executable, str(self.script)]

    @property
    def invocations(self) -> list[list[str]]:
        log = self.directory / "invocations.log"
        if not log.exists():
            return []
        return [line.split(" ") for line in log.read_text().splitlines()]

    def fail_for(self, *region_ids: int) -> None:
        (self.directory / "fail_ids").write_text(" ".join(str(i) for i in region_ids))

    def write_nothing_for(self, *region_ids: int) -> None:
        (self.directory / "silent_ids").write_text(" ".join(str(i) for i in region_ids))

    def run_slowly(self, seconds: float) -> None:
        """Hold every invocation open and note when two run at once."""
        (self.directory / "delay").write_text(str(seconds))

    @property
    def overlapped(self) -> bool:
        return (self.directory / "overlapped").exists()


@pytest.fixture
def fake_tool(tmp_path: Path) -> FakeTool:
    tool_dir = tmp_path / "tool"
    tool_dir.mkdir()
    return FakeTool(tool_dir)


@pytest.fixture
def planet_file(tmp_path: Path) -> Path:
    path = tmp_path / "planet.pmtiles"
    path.write_bytes(b"planet")
    return path


class InMemoryContentStore(ContentStore):
    """Content store double that records uploads and can fail chosen files."""

    def __init__(self, fail_names: set[str] | None = None):
        self.fail_names = set(fail_names or ())
        self.uploaded: list[Path] = []

    async def put(self, file_path, on_progress=None) -> UploadResult:
        file_path = Path(file_path)
        if file_path.name in self.fail_names:
            raise StorageError(f"node refused {file_path.name}")
        size = file_path.stat().st_size
        self.uploaded.append(file_path)
        return UploadResult(content_id=f"cid-{file_path.parent.name}-{file_path.stem}", size=size)

    async def status(self) -> StoreStatus:
        return StoreStatus.CONNECTED

    def get_backend_name(self) -> str:
        return "memory"


@pytest.fixture
def content_store() -> InMemoryContentStore:
    return InMemoryContentStore()
