"""Process-wide database handle and query helpers.

Queries are written with ``%s`` placeholders. The SQLite handle keeps one
connection behind a lock; the PostgreSQL handle borrows a pooled connection
per statement.
"""

from __future__ import annotations

import abc
import contextlib
import logging
import sqlite3
import threading
from collections.abc import Iterator
from typing import Any

import psycopg
import psycopg.rows
import psycopg_pool

from ovpn_totp.config import DatabaseBackend, backend_for, settings
from ovpn_totp.errors import StorageError

logger = logging.getLogger(__name__)

Params = tuple[Any, ...] | None


class Database(abc.ABC):
    """Common interface of the SQLite and PostgreSQL handles."""

    backend: DatabaseBackend

    def execute(self, query: str, params: Params = None) -> list[dict[str, Any]]:
        """Execute a query and return all rows as dicts."""
        rows, _ = self._run(query, params)
        return rows

    def execute_one(self, query: str, params: Params = None) -> dict[str, Any] | None:
        """Execute a query and return a single row."""
        rows, _ = self._run(query, params)
        return rows[0] if rows else None

    def execute_count(self, query: str, params: Params = None) -> int:
        """Execute a write and return the number of affected rows."""
        _, count = self._run(query, params)
        return count

    @abc.abstractmethod
    def _run(self, query: str, params: Params) -> tuple[list[dict[str, Any]], int]:
        """Execute one statement in its own transaction; return (rows, rowcount)."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release the underlying connection or pool."""


class SqliteDatabase(Database):
    backend = DatabaseBackend.SQLITE

    def __init__(self, path: str) -> None:
        self.path = path
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open SQLite database {path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row

    @contextlib.contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        with self._lock:
            cur = self._conn.cursor()
            try:
                yield cur
                self._conn.commit()
            except BaseException:
                self._conn.rollback()
                raise
            finally:
                cur.close()

    def _run(self, query: str, params: Params) -> tuple[list[dict[str, Any]], int]:
        try:
            with self._cursor() as cur:
                cur.execute(query.replace("%s", "?"), params or ())
                rows = [dict(r) for r in cur.fetchall()] if cur.description else []
                return rows, cur.rowcount
        except sqlite3.Error as exc:
            raise StorageError(f"SQLite query failed: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class PostgresDatabase(Database):
    backend = DatabaseBackend.POSTGRES

    def __init__(self, conninfo: str, min_size: int = 1, max_size: int = 10) -> None:
        self._pool = psycopg_pool.ConnectionPool(
            conninfo=conninfo,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": psycopg.rows.dict_row},
            open=False,
        )
        try:
            self._pool.open()
        except psycopg.Error as exc:
            raise StorageError(f"Cannot open PostgreSQL pool: {exc}") from exc

    def _run(self, query: str, params: Params) -> tuple[list[dict[str, Any]], int]:
        try:
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    rows = cur.fetchall() if cur.description else []
                    return rows, cur.rowcount
        except psycopg.Error as exc:
            raise StorageError(f"PostgreSQL query failed: {exc}") from exc

    def close(self) -> None:
        self._pool.close()


def sqlite_path(url: str) -> str:
    """Map ``sqlite:///relative.db`` / ``sqlite:////abs.db`` to a filesystem path."""
    if url.startswith("sqlite:///"):
        return url[len("sqlite:///"):] or ":memory:"
    if url in ("sqlite://", "sqlite:"):
        return ":memory:"
    raise ValueError(f"Not a SQLite URL: {url!r}")


def connect(url: str, min_size: int = 1, max_size: int = 10) -> Database:
    """Open a new handle for a database URL."""
    if backend_for(url) == DatabaseBackend.SQLITE:
        return SqliteDatabase(sqlite_path(url))
    return PostgresDatabase(url, min_size=min_size, max_size=max_size)


_db: Database | None = None


def init_db(url: str | None = None) -> Database:
    """Open the process-wide handle (idempotent)."""
    global _db
    if _db is not None:
        return _db
    _db = connect(
        url or settings.database_url,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
    )
    logger.debug("Opened %s database handle", _db.backend)
    return _db


def close_db() -> None:
    global _db
    if _db is not None:
        _db.close()
        _db = None


def get_db() -> Database:
    if _db is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _db
