"""Cache-aware analysis front end over the worker pool."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass

from mashlab.analysis.tags import apply_tag_overrides, read_tags
from mashlab.core.cache import AnalysisCache
from mashlab.core.errors import AnalysisTimeoutError
from mashlab.core.models import AnalysisMode, AudioInput, ExtractionResult, TagMetadata
from mashlab.core.worker_pool import PoolStats, WorkerPool, analysis_timeout

ProgressCallback = Callable[[int, str], None]


@dataclass
class AnalysisStats:
    """Running totals for one service instance."""

    total: int = 0
    successful: int = 0
    failed: int = 0
    cache_hits: int = 0
    quick_count: int = 0
    full_count: int = 0
    total_time: float = 0.0

    @property
    def average_time(self) -> float:
        return self.total_time / self.total if self.total else 0.0

    @property
    def cache_hit_rate(self) -> float:
        return self.cache_hits / self.total if self.total else 0.0

    @property
    def success_rate(self) -> float:
        return self.successful / self.total if self.total else 0.0


class AnalysisService:
    """Analyze files through the cache first, then the worker pool.

    A cache hit reports 100 % "Loaded from cache" and never dispatches.
    A miss waits on the pool with a size-dependent deadline; valid results
    are written back to the cache. Tagged BPM/key are merged on top of
    both cached and fresh results.
    """

    def __init__(self, pool: WorkerPool, cache: AnalysisCache, environment: str = "local") -> None:
        self.pool = pool
        self.cache = cache
        self.environment = environment
        self._stats = AnalysisStats()
        self._stats_lock = threading.Lock()

    def analyze(self, audio: AudioInput, on_progress: ProgressCallback | None = None) -> ExtractionResult:
        """Analyze one file.

        Raises:
            AnalysisTimeoutError: If the deadline passes
            AnalysisError: If the worker failed or crashed
        """
        result, _ = self.analyze_with_tags(audio, on_progress)
        return result

    def analyze_with_tags(
        self, audio: AudioInput, on_progress: ProgressCallback | None = None
    ) -> tuple[ExtractionResult, TagMetadata]:
        """Analyze one file and also return its embedded tags."""
        start = time.time()
        tags = read_tags(audio.data, audio.filename)

        cached = self.cache.get(audio.data, audio.filename)
        if cached is not None:
            if on_progress is not None:
                on_progress(100, "Loaded from cache")
            logging.debug(f"[Analysis] Cache hit: {audio.filename}")
            result = apply_tag_overrides(cached, tags)
            self._record(result, time.time() - start, success=True, cache_hit=True)
            return result, tags

        timeout = analysis_timeout(audio.size, self.environment)
        future = self.pool.submit(audio, on_progress)
        try:
            raw = future.result(timeout=timeout)
        except FuturesTimeoutError:
            future.cancel()
            self._record(None, time.time() - start, success=False)
            raise AnalysisTimeoutError(audio.filename, timeout) from None
        except Exception:
            self._record(None, time.time() - start, success=False)
            raise

        if raw.is_valid:
            self.cache.put(audio.data, audio.filename, raw)
        result = apply_tag_overrides(raw, tags)
        self._record(result, time.time() - start, success=result.is_valid)
        return result, tags

    def get_stats(self) -> AnalysisStats:
        with self._stats_lock:
            return AnalysisStats(**vars(self._stats))

    def get_pool_stats(self) -> PoolStats:
        return self.pool.get_stats()

    def _record(
        self, result: ExtractionResult | None, elapsed: float, success: bool, cache_hit: bool = False
    ) -> None:
        with self._stats_lock:
            stats = self._stats
            stats.total += 1
            stats.total_time += elapsed
            if success:
                stats.successful += 1
            else:
                stats.failed += 1
            if cache_hit:
                stats.cache_hits += 1
            if result is not None:
                if result.analysis_mode is AnalysisMode.QUICK:
                    stats.quick_count += 1
                else:
                    stats.full_count += 1
