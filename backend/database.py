"""sqlite storage shared by the agent registry, the job board and the matcher.

All repositories go through one :class:`Database` per process. Writes are
serialised by the connection lock, which is what makes
``JobRepository.assign_agent`` a true compare-and-set across matching passes
running on different threads.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Set, Tuple

LOGGER = logging.getLogger(__name__)

MEMORY = ":memory:"
DEFAULT_URL = "sqlite:///storage/marketplace.db"
MIGRATION_TABLE = "marketplace_schema_migrations"


class DatabaseError(RuntimeError):
    """Raised when the marketplace store cannot be opened or is already closed."""


def sqlite_path(url: str) -> str:
    """Resolve a database URL to the path handed to :func:`sqlite3.connect`.

    ``sqlite:///jobs.db`` is relative to the working directory,
    ``sqlite:////srv/jobs.db`` is absolute, and ``sqlite://``,
    ``sqlite:///:memory:`` or ``memory`` select a private in-memory store.
    """

    text = url.strip()
    if not text:
        raise DatabaseError("Empty database URL")
    if text == "memory":
        return MEMORY
    for prefix in ("sqlite:///", "sqlite://", "sqlite:"):
        if text.startswith(prefix):
            remainder = text[len(prefix):]
            if prefix == "sqlite:" and ":" in remainder:
                break
            return remainder or MEMORY
    else:
        if ":" not in text and text.endswith(".db"):
            return text
    raise DatabaseError(f"Unsupported database URL: {url} (only sqlite is supported)")


class Database:
    """Single sqlite connection guarded by a re-entrant lock."""

    def __init__(self, url: str | None = None) -> None:
        self._url = url or os.environ.get("MARKETPLACE_DATABASE_URL", DEFAULT_URL)
        self._path = sqlite_path(self._url)
        self._lock = threading.RLock()
        self._conn = self._open(self._path)
        self._closed = False

    @staticmethod
    def _open(path: str) -> sqlite3.Connection:
        if path == MEMORY:
            conn = sqlite3.connect(MEMORY, check_same_thread=False)
        else:
            target = Path(path)
            if not target.is_absolute():
                target = Path.cwd() / target
            target.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(target), check_same_thread=False, timeout=5.0)
            # the API and the CLI may open the same file
            conn.execute("PRAGMA journal_mode = WAL")
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @property
    def url(self) -> str:
        return self._url

    @property
    def path(self) -> str:
        return self._path

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._lock:
            if not self._closed:
                self._conn.close()
                self._closed = True

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """Yield a cursor; commit on success, roll back on any exception."""

        with self._lock:
            if self._closed:
                raise DatabaseError(f"Database {self._url} is closed")
            cursor = self._conn.cursor()
            try:
                yield cursor
            except BaseException:
                self._conn.rollback()
                raise
            else:
                self._conn.commit()
            finally:
                cursor.close()

    # ------------------------------------------------------------------
    # Schema
    def applied_versions(self, table: str = MIGRATION_TABLE) -> Set[str]:
        with self.transaction() as cur:
            cur.execute(
                f"CREATE TABLE IF NOT EXISTS {table} (version TEXT PRIMARY KEY, applied_at REAL NOT NULL)"
            )
            cur.execute(f"SELECT version FROM {table}")
            return {row[0] for row in cur.fetchall()}

    def run_migrations(self, migrations: Sequence["Migration"], *, table: str = MIGRATION_TABLE) -> List[str]:
        """Apply pending migrations in order and return the versions applied now."""

        done = self.applied_versions(table)
        applied: List[str] = []
        for migration in migrations:
            if migration.version in done:
                continue
            with self.transaction() as cur:
                migration.upgrade(cur)
                cur.execute(f"INSERT INTO {table} (version, applied_at) VALUES (?, ?)", (migration.version, time.time()))
            applied.append(migration.version)
            LOGGER.info("database.migration.applied", extra={"version": migration.version, "path": self._path})
        return applied


class Migration:
    """A schema step: ``version`` plus the statements it executes."""

    version: str = ""
    statements: Tuple[str, ...] = ()

    def upgrade(self, cursor: sqlite3.Cursor) -> None:
        for statement in self.statements:
            cursor.execute(statement)


_DEFAULT: Optional[Database] = None
_DEFAULT_LOCK = threading.Lock()


def get_database(url: str | None = None) -> Database:
    """Return the process-wide store, opening and migrating it on first use."""

    global _DEFAULT
    with _DEFAULT_LOCK:
        if _DEFAULT is None:
            from backend.migrations import MIGRATIONS

            database = Database(url)
            database.run_migrations(MIGRATIONS)
            _DEFAULT = database
        return _DEFAULT


def set_database(database: Database | None) -> None:
    """Replace the process-wide store, closing the previous one."""

    global _DEFAULT
    with _DEFAULT_LOCK:
        previous, _DEFAULT = _DEFAULT, database
    if previous is not None and previous is not database:
        previous.close()


__all__ = [
    "DEFAULT_URL",
    "MIGRATION_TABLE",
    "Database",
    "DatabaseError",
    "Migration",
    "get_database",
    "set_database",
    "sqlite_path",
]
