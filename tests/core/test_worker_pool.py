"""Tests for the worker pool, concurrency detection and timeouts."""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import CancelledError
from typing import Any

import pytest

from mashlab.core.errors import ExtractionError, PoolUnavailableError, WorkerCrashError
from mashlab.core.worker_pool import MB, WorkerPool, analysis_timeout, detect_optimal_concurrency

GiB = 1024**3


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _echo(payload: Any, report: Callable[[int, str], None]) -> Any:
    report(50, "Halfway")
    return payload


def _fail_on_bad(payload: Any, report: Callable[[int, str], None]) -> Any:
    if payload == "bad":
        raise ValueError("cannot decode")
    return payload


def _crash_on_crash(payload: Any, report: Callable[[int, str], None]) -> Any:
    if payload == "crash":
        raise SystemExit("context died")
    return payload


@pytest.fixture
def make_pool() -> Any:
    pools: list[WorkerPool] = []

    def factory(extract_fn: Callable[..., Any], **kwargs: Any) -> WorkerPool:
        kwargs.setdefault("cpu_count", 4)
        pool = WorkerPool(extract_fn, **kwargs)
        pools.append(pool)
        return pool

    yield factory
    for pool in pools:
        pool.shutdown(timeout=1.0)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestDetectOptimalConcurrency:
    """Tests for detect_optimal_concurrency()."""

    def test_large_machine(self) -> None:
        assert detect_optimal_concurrency(cores=8, memory_bytes=16 * GiB) == 4

    def test_medium_machine(self) -> None:
        assert detect_optimal_concurrency(cores=4, memory_bytes=6 * GiB) == 3

    def test_small_machine(self) -> None:
        assert detect_optimal_concurrency(cores=2, memory_bytes=2 * GiB) == 2

    def test_forced_value_is_capped(self) -> None:
        assert detect_optimal_concurrency(force=20) == 8
        assert detect_optimal_concurrency(force=0) == 1
        assert detect_optimal_concurrency(force=3, cap=2) == 2

    def test_detects_hardware(self) -> None:
        assert 1 <= detect_optimal_concurrency() <= 8


class TestAnalysisTimeout:
    """Tests for analysis_timeout()."""

    def test_small_files_get_base_timeout(self) -> None:
        assert analysis_timeout(5 * MB) == 120
        assert analysis_timeout(5 * MB, "deployed") == 300

    def test_grows_per_ten_megabytes(self) -> None:
        assert analysis_timeout(25 * MB) == 150
        assert analysis_timeout(35 * MB) == 180

    def test_capped(self) -> None:
        assert analysis_timeout(10_000 * MB) == 600
        assert analysis_timeout(10_000 * MB, "deployed") == 600


class TestWorkerPool:
    """Tests for WorkerPool."""

    def test_size_bounded_by_cores(self, make_pool: Any) -> None:
        assert make_pool(_echo, max_workers=16, cpu_count=3).size == 3
        assert make_pool(_echo, max_workers=2, cpu_count=64).size == 2
        assert make_pool(_echo, max_workers=64, cpu_count=64).size == 16

    def test_results_and_progress(self, make_pool: Any) -> None:
        pool = make_pool(_echo)
        progress: list[tuple[int, str]] = []

        future = pool.submit("payload", lambda p, s: progress.append((p, s)))

        assert future.result(timeout=5) == "payload"
        assert progress == [(50, "Halfway")]

    def test_many_tasks(self, make_pool: Any) -> None:
        pool = make_pool(_echo, max_workers=2)

        futures = [pool.submit(i) for i in range(20)]

        assert [f.result(timeout=5) for f in futures] == list(range(20))
        stats = pool.get_stats()
        assert stats.busy == 0
        assert stats.queued == 0

    def test_extraction_error(self, make_pool: Any) -> None:
        pool = make_pool(_fail_on_bad)

        with pytest.raises(ExtractionError, match="cannot decode"):
            pool.submit("bad").result(timeout=5)
        assert pool.submit("good").result(timeout=5) == "good"

    def test_crash_restarts_context(self, make_pool: Any) -> None:
        pool = make_pool(_crash_on_crash, max_workers=1, max_restarts=2)

        with pytest.raises(WorkerCrashError):
            pool.submit("crash").result(timeout=5)

        assert pool.submit("after").result(timeout=5) == "after"
        stats = pool.get_stats()
        assert stats.restarts == 1
        assert stats.unhealthy == 0

    def test_retired_after_too_many_crashes(self, make_pool: Any) -> None:
        pool = make_pool(_crash_on_crash, max_workers=1, max_restarts=1)

        for _ in range(2):
            with pytest.raises(WorkerCrashError):
                pool.submit("crash").result(timeout=5)

        assert not pool.is_healthy
        assert pool.get_stats().unhealthy == 1
        with pytest.raises(PoolUnavailableError):
            pool.submit("after").result(timeout=5)

    def test_cancel_all(self, make_pool: Any) -> None:
        release = threading.Event()

        def blocking(payload: Any, report: Callable[[int, str], None]) -> Any:
            release.wait(5)
            return payload

        pool = make_pool(blocking, max_workers=1)
        running = pool.submit("running")
        queued = pool.submit("queued")

        assert pool.cancel_all() == 2
        release.set()

        assert queued.cancelled()
        with pytest.raises(CancelledError):
            running.result(timeout=5)

        # The context is freed once the detached extraction returns
        assert pool.submit("next").result(timeout=5) == "next"

    def test_submit_after_shutdown(self, make_pool: Any) -> None:
        pool = make_pool(_echo)
        pool.shutdown(timeout=1.0)

        with pytest.raises(RuntimeError):
            pool.submit("late")
