"""Repository classes for database operations."""

from __future__ import annotations

import json
import sqlite3
import time
from typing import TYPE_CHECKING, Any

from mashlab.core.models import SavedTrack

if TYPE_CHECKING:
    from mashlab.core.database import Database


class BaseRepository:
    """Base class for repositories."""

    def __init__(self, database: Database) -> None:
        """Initialize repository with database reference.

        Args:
            database: Database instance
        """
        self._db = database

    @property
    def _conn(self) -> sqlite3.Connection:
        """Get the calling thread's database connection."""
        conn = self._db.conn
        if conn is None:
            raise RuntimeError("Database not connected")
        return conn

    def _commit(self) -> None:
        """Commit if not inside a transaction.

        When inside a database.transaction() block, commits are deferred
        to the transaction manager.
        """
        if not self._db.in_transaction:
            self._conn.commit()


class CacheRepository(BaseRepository):
    """Repository for content-addressed analysis results."""

    def get(self, content_hash: str) -> dict[str, Any] | None:
        """Get a cache entry by content hash.

        Returns:
            Dict with hash, file_name, file_size, result (decoded) and
            cached_at, or None if absent
        """
        row = self._conn.execute(
            "SELECT hash, file_name, file_size, result, cached_at FROM analysis_cache WHERE hash = ?",
            (content_hash,),
        ).fetchone()
        if row is None:
            return None
        row["result"] = json.loads(row["result"])
        return row

    def put(self, content_hash: str, file_name: str, file_size: int, result: dict[str, Any]) -> bool:
        """Store a result unless the hash is already present.

        Returns:
            True if a row was written, False if the hash was already cached
        """
        cursor = self._conn.execute(
            """
            INSERT INTO analysis_cache (hash, file_name, file_size, result, cached_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(hash) DO NOTHING
        """,
            (content_hash, file_name, file_size, json.dumps(result), time.time()),
        )
        self._commit()
        return cursor.rowcount > 0

    def delete_older_than(self, cutoff: float) -> int:
        """Delete entries cached before ``cutoff`` (epoch seconds).

        Returns:
            Number of deleted rows
        """
        cursor = self._conn.execute("DELETE FROM analysis_cache WHERE cached_at < ?", (cutoff,))
        self._commit()
        return cursor.rowcount

    def clear(self) -> int:
        cursor = self._conn.execute("DELETE FROM analysis_cache")
        self._commit()
        return cursor.rowcount

    def count(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) AS count FROM analysis_cache").fetchone()
        return int(row["count"])


class SnapshotRepository(BaseRepository):
    """Repository for the saved track library."""

    def save_all(self, tracks: list[SavedTrack]) -> None:
        """Replace the saved library with ``tracks``, keeping their order."""
        self._conn.execute("DELETE FROM saved_tracks")
        self._conn.executemany(
            """
            INSERT INTO saved_tracks (id, position, name, file_name, bpm, key, duration)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
            [
                (t.id, position, t.name, t.file_name, t.bpm, t.key, t.duration)
                for position, t in enumerate(tracks)
            ],
        )
        self._commit()

    def load_all(self) -> list[SavedTrack]:
        rows = self._conn.execute(
            "SELECT id, name, file_name, bpm, key, duration FROM saved_tracks ORDER BY position"
        ).fetchall()
        return [SavedTrack.from_dict(row) for row in rows]

    def clear(self) -> None:
        self._conn.execute("DELETE FROM saved_tracks")
        self._commit()
