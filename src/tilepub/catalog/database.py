"""SQLite connection wrapper shared by the catalog and mapping store."""

import asyncio
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SQLiteDatabase:
    """One SQLite connection used from worker threads.

    sqlite3 calls block, so every query runs in asyncio.to_thread. A
    lock serialises access because the connection is shared between
    those threads.
    """

    def __init__(self, path: str | Path, read_only: bool = False):
        self.path = Path(path)
        self.read_only = read_only
        if read_only:
            uri = f"file:{self.path.as_posix()}?mode=ro"
            self._conn = sqlite3.connect(uri, uri=True, check_same_thread=False)
        else:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.path), check_same_thread=False)
        self._lock = threading.Lock()

        logger.debug(
            "Opened SQLite database",
            extra={"db_path": str(self.path), "read_only": read_only},
        )

    def _locked(self, fn: Callable[..., T], *args: Any) -> T:
        with self._lock:
            return fn(self._conn, *args)

    async def run(self, fn: Callable[..., T], *args: Any) -> T:
        """Run fn(connection, *args) in a worker thread."""
        return await asyncio.to_thread(self._locked, fn, *args)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
