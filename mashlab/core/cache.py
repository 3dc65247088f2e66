"""Content-addressed two-tier cache for analysis results."""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass

from mashlab.core.constants import CACHE_MAX_AGE_DAYS, MEMORY_CACHE_LIMIT
from mashlab.core.models import ExtractionResult
from mashlab.core.repositories import CacheRepository

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


def content_hash(data: bytes) -> str:
    """SHA-256 hex digest of the file bytes."""
    return hashlib.sha256(data).hexdigest()


@dataclass(frozen=True)
class CacheStats:
    memory_entries: int
    durable_entries: int
    hits: int
    misses: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class AnalysisCache:
    """Memory tier in front of the durable SQLite tier.

    Keys are content hashes, so renaming a file keeps its cache entry and
    identical bytes under two names share one. Entries are written once and
    never mutated; only valid results are stored.
    """

    def __init__(
        self,
        repository: CacheRepository | None,
        memory_limit: int = MEMORY_CACHE_LIMIT,
        max_age_days: int = CACHE_MAX_AGE_DAYS,
    ) -> None:
        """Initialize the cache.

        Args:
            repository: Durable tier, or None for a memory-only cache
            memory_limit: Entries kept in memory (oldest evicted first)
            max_age_days: Durable entries older than this are ignored
        """
        self._repository = repository
        self._memory: OrderedDict[str, ExtractionResult] = OrderedDict()
        self._memory_limit = memory_limit
        self._max_age_days = max_age_days
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, data: bytes, filename: str = "") -> ExtractionResult | None:
        """Look up a cached result for these bytes."""
        key = content_hash(data)

        with self._lock:
            cached = self._memory.get(key)
            if cached is not None:
                self._hits += 1
                return cached

        result = self._get_durable(key, len(data))

        with self._lock:
            if result is None:
                self._misses += 1
                return None
            self._hits += 1
            self._remember(key, result)
        logger.debug("[Cache] Durable hit for %s", filename or key[:12])
        return result

    def put(self, data: bytes, filename: str, result: ExtractionResult) -> bool:
        """Store a result for these bytes.

        Returns:
            True if the result was accepted, False if it is invalid
        """
        if not result.is_valid:
            logger.debug("[Cache] Refusing invalid result for %s", filename)
            return False

        key = content_hash(data)
        with self._lock:
            if key not in self._memory:
                self._remember(key, result)

        if self._repository is not None:
            try:
                self._repository.put(key, filename, len(data), result.to_dict())
            except Exception:
                logger.warning("[Cache] Failed to persist result for %s", filename, exc_info=True)
        return True

    def cleanup(self, max_age_days: int | None = None) -> int:
        """Delete durable entries older than ``max_age_days``.

        Returns:
            Number of deleted entries
        """
        if self._repository is None:
            return 0
        days = self._max_age_days if max_age_days is None else max_age_days
        deleted = self._repository.delete_older_than(time.time() - days * SECONDS_PER_DAY)
        if deleted:
            logger.info("[Cache] Cleaned up %d entries older than %d days", deleted, days)
        return deleted

    def clear(self) -> None:
        """Drop every entry from both tiers."""
        with self._lock:
            self._memory.clear()
            self._hits = 0
            self._misses = 0
        if self._repository is not None:
            self._repository.clear()

    def stats(self) -> CacheStats:
        durable = self._repository.count() if self._repository is not None else 0
        with self._lock:
            return CacheStats(
                memory_entries=len(self._memory),
                durable_entries=durable,
                hits=self._hits,
                misses=self._misses,
            )

    def _remember(self, key: str, result: ExtractionResult) -> None:
        """Insert into the memory tier. Caller holds the lock."""
        self._memory[key] = result
        while len(self._memory) > self._memory_limit:
            self._memory.popitem(last=False)

    def _get_durable(self, key: str, size: int) -> ExtractionResult | None:
        if self._repository is None:
            return None
        try:
            entry = self._repository.get(key)
        except Exception:
            logger.warning("[Cache] Durable lookup failed", exc_info=True)
            return None
        if entry is None or entry["file_size"] != size:
            return None
        if entry["cached_at"] < time.time() - self._max_age_days * SECONDS_PER_DAY:
            return None
        try:
            result = ExtractionResult.from_dict(entry["result"])
        except (KeyError, TypeError, ValueError):
            logger.warning("[Cache] Discarding unreadable entry %s", key[:12])
            return None
        return result if result.is_valid else None
