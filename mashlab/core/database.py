"""SQLite database manager for the analysis cache and library snapshots."""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mashlab.core.repositories import CacheRepository, SnapshotRepository

CONNECT_TIMEOUT_S = 30.0


def _dict_factory(cursor: sqlite3.Cursor, row: tuple) -> dict[str, Any]:
    """Row factory that returns dicts instead of sqlite3.Row."""
    return {col[0]: row[i] for i, col in enumerate(cursor.description)}


class Database:
    """SQLite database manager.

    Worker threads read and write the analysis cache concurrently, so every
    thread gets its own connection to the same file. Provides access to:
        - cache: CacheRepository for content-addressed analysis results
        - snapshots: SnapshotRepository for the saved track library
    """

    def __init__(self, db_path: Path):
        """Initialize database.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._local = threading.local()
        self._connected = False
        self._connections: list[sqlite3.Connection] = []
        self._lock = threading.Lock()
        # Repositories (lazy initialized after connect)
        self._cache: CacheRepository | None = None
        self._snapshots: SnapshotRepository | None = None

    def connect(self) -> None:
        """Open the database file (connections are created per thread on use)."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connected = True
        # Open the calling thread's connection eagerly so errors surface here
        _ = self.conn

    @property
    def conn(self) -> sqlite3.Connection | None:
        """Connection owned by the calling thread, or None if not connected."""
        if not self._connected:
            return None
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(str(self.db_path), timeout=CONNECT_TIMEOUT_S, check_same_thread=False)
            conn.row_factory = _dict_factory
            conn.execute("PRAGMA journal_mode = WAL")
            self._local.conn = conn
            with self._lock:
                self._connections.append(conn)
        return conn

    @property
    def in_transaction(self) -> bool:
        return getattr(self._local, "in_transaction", False)

    @property
    def connection_count(self) -> int:
        """Number of open per-thread connections."""
        with self._lock:
            return len(self._connections)

    # ========== Repository Properties ==========

    @property
    def cache(self) -> CacheRepository:
        """Get the analysis cache repository."""
        if self._cache is None:
            from mashlab.core.repositories import CacheRepository

            self._cache = CacheRepository(self)
        return self._cache

    @property
    def snapshots(self) -> SnapshotRepository:
        """Get the library snapshot repository."""
        if self._snapshots is None:
            from mashlab.core.repositories import SnapshotRepository

            self._snapshots = SnapshotRepository(self)
        return self._snapshots

    # ========== Transaction Management ==========

    @contextmanager
    def transaction(self) -> Generator[None, None, None]:
        """Context manager for database transactions.

        Repository methods skip their individual commits while inside a
        transaction on the same thread.

        Raises:
            RuntimeError: If database not connected
        """
        conn = self.conn
        if conn is None:
            raise RuntimeError("Database not connected")

        self._local.in_transaction = True
        try:
            conn.execute("BEGIN")
            yield
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self._local.in_transaction = False

    # ========== Schema Management ==========

    def initialize_schema(self) -> None:
        """Create database schema."""
        conn = self.conn
        if conn is None:
            raise RuntimeError("Database not connected")

        # Content-addressed analysis results, written once per hash
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS analysis_cache (
                hash TEXT PRIMARY KEY,
                file_name TEXT NOT NULL,
                file_size INTEGER NOT NULL,
                result TEXT NOT NULL,
                cached_at REAL NOT NULL
            )
        """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_cache_cached_at ON analysis_cache(cached_at)")

        # Saved library (metadata only, no audio)
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS saved_tracks (
                id TEXT PRIMARY KEY,
                position INTEGER NOT NULL,
                name TEXT NOT NULL,
                file_name TEXT NOT NULL,
                bpm REAL NOT NULL,
                key TEXT NOT NULL,
                duration REAL NOT NULL
            )
        """
        )
        conn.commit()

    def close(self) -> None:
        """Close every per-thread connection."""
        with self._lock:
            connections = list(self._connections)
            self._connections.clear()
        for conn in connections:
            conn.close()
        self._local = threading.local()
        self._connected = False
