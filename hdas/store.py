"""
Attribution Store

SQLite persistence for tracked paths and the packages that created them,
kept in ``~/.local/share/hdas/attributions.db`` (``$HDAS_DB`` overrides).
A path recorded here is not reported again by later monitor sessions.

Each row remembers its creator and its most recent accessor. A path first
opened by an ignored (incidental) process is stored with creator
``unknown``; the first real package to open it afterwards becomes its
creator.

Usage:
    with AttributionStore() as store:
        store.record_access('/home/alice/.cache/pip', 'python-pip', 'pip')
        for record in store.query_package('python-pip'):
            print(record.path)
"""

import logging
import os
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Union

from hdas.config.monitor_config import chown_to_user, ensure_parent_dir, get_user_home
from hdas.constants import Attribution, Paths

logger = logging.getLogger(__name__)

MEMORY = ':memory:'

_SCHEMA = """
CREATE TABLE IF NOT EXISTS files (
    path TEXT PRIMARY KEY,
    created_by_package TEXT NOT NULL,
    created_by_process TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    last_accessed_by_package TEXT NOT NULL,
    last_accessed_by_process TEXT NOT NULL,
    last_accessed_at INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_package ON files(created_by_package);
CREATE INDEX IF NOT EXISTS idx_last_package ON files(last_accessed_by_package);
"""

_COLUMNS = (
    "path, created_by_package, created_by_process, created_at, "
    "last_accessed_by_package, last_accessed_by_process, last_accessed_at"
)

# An incidental open never claims creation of a path.
_RECORD_INCIDENTAL = f"""
INSERT INTO files ({_COLUMNS})
VALUES (:path, :unknown, :process, :now, :package, :process, :now)
ON CONFLICT(path) DO UPDATE SET
    last_accessed_by_package = excluded.last_accessed_by_package,
    last_accessed_by_process = excluded.last_accessed_by_process,
    last_accessed_at = excluded.last_accessed_at
"""

# A real open takes over creation from an 'unknown' creator.
_RECORD_ACCESS = f"""
INSERT INTO files ({_COLUMNS})
VALUES (:path, :package, :process, :now, :package, :process, :now)
ON CONFLICT(path) DO UPDATE SET
    last_accessed_by_package = excluded.last_accessed_by_package,
    last_accessed_by_process = excluded.last_accessed_by_process,
    last_accessed_at = excluded.last_accessed_at,
    created_by_package = CASE WHEN created_by_package = :unknown
        THEN excluded.created_by_package ELSE created_by_package END,
    created_by_process = CASE WHEN created_by_package = :unknown
        THEN excluded.created_by_process ELSE created_by_process END,
    created_at = CASE WHEN created_by_package = :unknown
        THEN excluded.created_at ELSE created_at END
"""


class StoreError(Exception):
    """Raised when the attribution database cannot be opened."""


def default_db_path() -> Path:
    """``$HDAS_DB`` if set, else the user's ``~/.local/share/hdas/attributions.db``."""
    override = os.environ.get(Paths.DB_ENV)
    if override:
        return Path(override).expanduser()
    return get_user_home() / Paths.DB_RELATIVE


@dataclass(frozen=True)
class FileRecord:
    """One tracked path with its creator and last accessor."""
    path: str
    created_by_package: str
    created_by_process: str
    created_at: int
    last_accessed_by_package: str
    last_accessed_by_process: str
    last_accessed_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> 'FileRecord':
        return cls(**{key: row[key] for key in row.keys()})

    @property
    def exists(self) -> bool:
        return os.path.lexists(self.path)

    @property
    def accessed_by_other(self) -> bool:
        """Last accessor differs from the creator."""
        return (self.last_accessed_by_package != self.created_by_package
                or self.last_accessed_by_process != self.created_by_process)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'path': self.path,
            'created_by_package': self.created_by_package,
            'created_by_process': self.created_by_process,
            'created_at': self.created_at,
            'last_accessed_by_package': self.last_accessed_by_package,
            'last_accessed_by_process': self.last_accessed_by_process,
            'last_accessed_at': self.last_accessed_at,
            'exists': self.exists,
        }


class AttributionStore:
    """
    SQLite-backed catalogue of tracked paths.

    The connection is shared between the thread that opened the store and
    the collector loop; every statement runs under one lock.
    """

    def __init__(
        self,
        db_path: Optional[Union[str, Path]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.db_path = str(db_path) if db_path is not None else str(default_db_path())
        self._clock = clock
        self._lock = threading.Lock()

        try:
            if self.db_path != MEMORY:
                ensure_parent_dir(Path(self.db_path))
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(_SCHEMA)
            self._conn.commit()
        except (OSError, sqlite3.Error) as e:
            raise StoreError(f"Cannot open database {self.db_path}: {e}") from e

        if self.db_path != MEMORY:
            chown_to_user(Path(self.db_path))
        logger.debug(f"Opened attribution store {self.db_path}")

    def __enter__(self) -> 'AttributionStore':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record_access(self, path: str, package: str, process: str,
                      incidental: bool = False) -> None:
        """Record that ``package`` (as ``process``) opened ``path``."""
        params = {
            'path': path,
            'package': package,
            'process': process,
            'now': int(self._clock()),
            'unknown': Attribution.UNKNOWN_PACKAGE,
        }
        sql = _RECORD_INCIDENTAL if incidental else _RECORD_ACCESS
        with self._lock, self._conn:
            self._conn.execute(sql, params)

    def delete_records(self, paths: Iterable[str]) -> int:
        with self._lock, self._conn:
            return sum(
                self._conn.execute("DELETE FROM files WHERE path = ?", (path,)).rowcount
                for path in paths
            )

    def prune_deleted(self) -> int:
        """Drop records whose path no longer exists on disk."""
        gone = [record.path for record in self.list_all() if not record.exists]
        pruned = self.delete_records(gone)
        if pruned:
            logger.info(f"Pruned {pruned} deleted path(s) from {self.db_path}")
        return pruned

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _select(self, where: str = "", params: Iterable[Any] = (),
                order: str = "last_accessed_at DESC") -> List[FileRecord]:
        sql = f"SELECT {_COLUMNS} FROM files {where} ORDER BY {order}"
        with self._lock:
            rows = self._conn.execute(sql, tuple(params)).fetchall()
        return [FileRecord.from_row(row) for row in rows]

    def _exists(self, where: str, params: Iterable[Any]) -> bool:
        with self._lock:
            row = self._conn.execute(f"SELECT 1 FROM files WHERE {where}", tuple(params)).fetchone()
        return row is not None

    def has_path(self, path: str) -> bool:
        return self._exists("path = ?", (path,))

    def has_known_creator(self, path: str) -> bool:
        """True once a non-incidental package has opened ``path``."""
        return self._exists("path = ? AND created_by_package != ?",
                            (path, Attribution.UNKNOWN_PACKAGE))

    def list_all(self) -> List[FileRecord]:
        return self._select()

    def query_file(self, pattern: str) -> List[FileRecord]:
        """Paths containing ``pattern``; SQL LIKE wildcards are honoured."""
        return self._select("WHERE path LIKE ?", (f"%{pattern}%",), order="path")

    def query_package(self, package: str) -> List[FileRecord]:
        return self._select("WHERE created_by_package = ?", (package,))

    def query_directory(self, directory: str) -> List[FileRecord]:
        """``directory`` itself and every path below it."""
        base = directory.rstrip('/') or '/'
        prefix = base.rstrip('/') + '/'
        return self._select("WHERE path = ? OR substr(path, 1, ?) = ?",
                            (base, len(prefix), prefix), order="path")

    def packages(self) -> List[str]:
        """Every known creator package."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT DISTINCT created_by_package FROM files "
                "WHERE created_by_package != ? ORDER BY created_by_package",
                (Attribution.UNKNOWN_PACKAGE,),
            ).fetchall()
        return [row[0] for row in rows]

    def get_orphans(self, installed: Set[str]) -> List[str]:
        """Creator packages that are no longer installed."""
        return [package for package in self.packages() if package not in installed]

    def count(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM files").fetchone()[0]

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            files, packages = self._conn.execute(
                "SELECT COUNT(*), COUNT(DISTINCT created_by_package) FROM files"
            ).fetchone()
        size = 0
        if self.db_path != MEMORY and os.path.exists(self.db_path):
            size = os.path.getsize(self.db_path)
        return {
            'database_path': self.db_path,
            'database_size_bytes': size,
            'files_tracked': files,
            'packages_seen': packages,
        }
