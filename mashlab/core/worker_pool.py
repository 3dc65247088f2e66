"""Pool of long-lived execution contexts running feature extraction.

Architecture:
- Each execution context is a daemon thread with its own inbox queue
- Contexts report back through one shared outbox of typed messages
  (ProgressMessage, ResultMessage, ErrorMessage, CrashMessage)
- A dispatcher thread drains the outbox, resolves futures and hands the
  next queued task to whichever context became free
- A context that dies mid-task is restarted up to ``max_restarts`` times,
  then marked unhealthy and never given work again

Usage:
    pool = WorkerPool(extractor.extract_input, max_workers=4)
    future = pool.submit(audio_input, on_progress=print)
    result = future.result(timeout=120)
    pool.shutdown()
"""

from __future__ import annotations

import logging
import os
import queue
import threading
from collections import deque
from collections.abc import Callable
from concurrent.futures import CancelledError, Future
from dataclasses import dataclass
from typing import Any

import psutil

from mashlab.core.constants import (
    BASE_TIMEOUT_DEPLOYED_S,
    BASE_TIMEOUT_LOCAL_S,
    MAX_CONCURRENCY_CAP,
    MAX_EXECUTION_CONTEXTS,
    MAX_TIMEOUT_S,
    TIMEOUT_STEP_S,
    WORKER_JOIN_TIMEOUT_S,
)
from mashlab.core.errors import ExtractionError, PoolUnavailableError, WorkerCrashError
from mashlab.core.models import new_id

ProgressCallback = Callable[[int, str], None]
ExtractFn = Callable[[Any, ProgressCallback], Any]

MB = 1024 * 1024


def detect_optimal_concurrency(
    cores: int | None = None,
    memory_bytes: int | None = None,
    force: int | None = None,
    cap: int = MAX_CONCURRENCY_CAP,
) -> int:
    """Pick how many files to analyze at once.

    Args:
        cores: Logical CPU count (detected if None)
        memory_bytes: Total system memory (detected if None)
        force: Explicit value that overrides detection
        cap: Upper bound of the result

    Returns:
        Concurrency level between 1 and ``cap``
    """
    if force is not None:
        return max(1, min(force, cap))

    if cores is None:
        cores = os.cpu_count() or 1
    if memory_bytes is None:
        memory_bytes = psutil.virtual_memory().total

    if memory_bytes > 8e9 and cores >= 8:
        level = 4
    elif memory_bytes > 4e9 and cores >= 4:
        level = 3
    else:
        level = 2
    return max(1, min(level, cap))


def analysis_timeout(file_size: int, environment: str = "local") -> float:
    """Per-file deadline: base time plus 30 s per whole 10 MB above 10 MB, capped."""
    base = BASE_TIMEOUT_DEPLOYED_S if environment == "deployed" else BASE_TIMEOUT_LOCAL_S
    extra_blocks = max(0, file_size - 10 * MB) // (10 * MB)
    return min(base + extra_blocks * TIMEOUT_STEP_S, MAX_TIMEOUT_S)


# ========== Messages ==========


@dataclass(frozen=True)
class ProgressMessage:
    context_id: int
    task_id: str
    percent: int
    status: str


@dataclass(frozen=True)
class ResultMessage:
    context_id: int
    task_id: str
    result: Any


@dataclass(frozen=True)
class ErrorMessage:
    context_id: int
    task_id: str
    error: str


@dataclass(frozen=True)
class CrashMessage:
    context_id: int
    task_id: str | None  # task in flight when the context died


Message = ProgressMessage | ResultMessage | ErrorMessage | CrashMessage


@dataclass
class _Task:
    id: str
    payload: Any
    future: Future
    on_progress: ProgressCallback | None = None


@dataclass(frozen=True)
class PoolStats:
    total: int
    busy: int
    available: int
    queued: int
    restarts: int
    unhealthy: int


class ExecutionContext:
    """One worker thread with a private inbox."""

    def __init__(self, context_id: int, extract_fn: ExtractFn, outbox: queue.Queue) -> None:
        self.id = context_id
        self.inbox: queue.Queue[_Task | None] = queue.Queue()
        self.healthy = True
        self.restarts = 0
        self._extract_fn = extract_fn
        self._outbox = outbox
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._run, name=f"mashlab-context-{self.id}", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float = WORKER_JOIN_TIMEOUT_S) -> None:
        self.inbox.put(None)
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self) -> None:
        task_id: str | None = None
        try:
            while True:
                task = self.inbox.get()
                if task is None:
                    return
                task_id = task.id
                self._execute(task)
                task_id = None
        except BaseException as e:
            # Anything escaping _execute (SystemExit, interpreter errors) ends this thread
            logging.error(f"[WorkerPool] Context {self.id} died: {e!r}")
            self._outbox.put(CrashMessage(self.id, task_id))

    def _execute(self, task: _Task) -> None:
        def report(percent: int, status: str) -> None:
            self._outbox.put(ProgressMessage(self.id, task.id, percent, status))

        try:
            result = self._extract_fn(task.payload, report)
        except Exception as e:
            self._outbox.put(ErrorMessage(self.id, task.id, str(e) or type(e).__name__))
        else:
            self._outbox.put(ResultMessage(self.id, task.id, result))


class WorkerPool:
    """Fixed set of execution contexts with a FIFO task backlog."""

    def __init__(
        self,
        extract_fn: ExtractFn,
        max_workers: int = MAX_EXECUTION_CONTEXTS,
        max_restarts: int = 3,
        cpu_count: int | None = None,
    ) -> None:
        """Start the contexts and the dispatcher.

        Args:
            extract_fn: Called as ``extract_fn(payload, on_progress)`` in a context
            max_workers: Upper bound on contexts (also capped by the CPU count)
            max_restarts: Restarts allowed per context before it is retired
            cpu_count: Logical CPUs (detected if None)
        """
        cores = cpu_count or os.cpu_count() or 1
        size = max(1, min(max_workers, cores, MAX_EXECUTION_CONTEXTS))
        self.max_restarts = max_restarts

        self._outbox: queue.Queue[Message | None] = queue.Queue()
        self._lock = threading.Lock()
        self._contexts = [ExecutionContext(i, extract_fn, self._outbox) for i in range(size)]
        self._pending: deque[_Task] = deque()
        self._tasks: dict[str, _Task] = {}
        self._in_flight: dict[int, str] = {}  # context id -> task id
        self._restarts = 0
        self._closed = False

        for context in self._contexts:
            context.start()
        self._dispatcher = threading.Thread(target=self._dispatch_loop, name="mashlab-dispatcher", daemon=True)
        self._dispatcher.start()
        logging.info(f"[WorkerPool] Started {size} execution contexts")

    @property
    def size(self) -> int:
        return len(self._contexts)

    @property
    def is_healthy(self) -> bool:
        return any(context.healthy for context in self._contexts)

    def submit(self, payload: Any, on_progress: ProgressCallback | None = None) -> Future:
        """Queue a task and return a future for its result.

        The future fails with ExtractionError if the extraction function
        raised, WorkerCrashError if the context died, or
        PoolUnavailableError if no healthy context remains.
        """
        future: Future = Future()
        with self._lock:
            if self._closed:
                raise RuntimeError("WorkerPool is shut down")
            if not self.is_healthy:
                future.set_exception(PoolUnavailableError("No healthy execution context available"))
                return future
            task = _Task(new_id(), payload, future, on_progress)
            self._tasks[task.id] = task
            self._pending.append(task)
            self._dispatch_locked()
        return future

    def get_stats(self) -> PoolStats:
        with self._lock:
            busy = len(self._in_flight)
            healthy_idle = sum(
                1 for c in self._contexts if c.healthy and c.id not in self._in_flight
            )
            return PoolStats(
                total=len(self._contexts),
                busy=busy,
                available=healthy_idle,
                queued=len(self._pending),
                restarts=self._restarts,
                unhealthy=sum(1 for c in self._contexts if not c.healthy),
            )

    def cancel_all(self) -> int:
        """Cancel queued tasks and detach running ones.

        Running extractions cannot be interrupted; their results are dropped
        when they arrive and their contexts are freed as usual.

        Returns:
            Number of tasks cancelled
        """
        with self._lock:
            cancelled = list(self._tasks.values())
            self._tasks.clear()
            self._pending.clear()

        for task in cancelled:
            if not task.future.cancel() and not task.future.done():
                task.future.set_exception(CancelledError())
        if cancelled:
            logging.info(f"[WorkerPool] Cancelled {len(cancelled)} tasks")
        return len(cancelled)

    def shutdown(self, timeout: float = WORKER_JOIN_TIMEOUT_S) -> None:
        """Cancel outstanding work and stop every thread."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self.cancel_all()
        for context in self._contexts:
            context.stop(timeout)
        self._outbox.put(None)
        self._dispatcher.join(timeout)
        logging.info("[WorkerPool] Shut down")

    # ========== Dispatch ==========

    def _dispatch_locked(self) -> None:
        """Hand queued tasks to free healthy contexts. Caller holds the lock."""
        for context in self._contexts:
            if not self._pending:
                return
            if not context.healthy or context.id in self._in_flight:
                continue
            while self._pending:
                task = self._pending.popleft()
                if task.future.set_running_or_notify_cancel():
                    self._in_flight[context.id] = task.id
                    context.inbox.put(task)
                    break
                # Future cancelled by the caller while queued
                self._tasks.pop(task.id, None)

    def _dispatch_loop(self) -> None:
        while True:
            message = self._outbox.get()
            if message is None:
                return
            try:
                self._handle(message)
            except Exception as e:
                logging.error(f"[WorkerPool] Error handling {type(message).__name__}: {e}", exc_info=True)

    def _handle(self, message: Message) -> None:
        if isinstance(message, ProgressMessage):
            self._handle_progress(message)
        elif isinstance(message, ResultMessage):
            task = self._release(message.context_id, message.task_id)
            if task is not None and not task.future.done():
                task.future.set_result(message.result)
        elif isinstance(message, ErrorMessage):
            task = self._release(message.context_id, message.task_id)
            if task is not None and not task.future.done():
                task.future.set_exception(ExtractionError(message.error))
        elif isinstance(message, CrashMessage):
            self._handle_crash(message)

    def _handle_progress(self, message: ProgressMessage) -> None:
        with self._lock:
            task = self._tasks.get(message.task_id)
        if task is None or task.on_progress is None:
            return
        try:
            task.on_progress(message.percent, message.status)
        except Exception as e:
            logging.error(f"[WorkerPool] Progress callback failed: {e}")

    def _release(self, context_id: int, task_id: str) -> _Task | None:
        """Free a context and forget its task. Returns the task if still tracked."""
        with self._lock:
            if self._in_flight.get(context_id) == task_id:
                del self._in_flight[context_id]
            task = self._tasks.pop(task_id, None)
            self._dispatch_locked()
        return task

    def _handle_crash(self, message: CrashMessage) -> None:
        stranded: list[_Task] = []
        with self._lock:
            context = self._contexts[message.context_id]
            self._in_flight.pop(context.id, None)
            task = self._tasks.pop(message.task_id, None) if message.task_id else None
            self._restarts += 1
            context.restarts += 1

            if self._closed:
                context.healthy = False
            elif context.restarts > self.max_restarts:
                context.healthy = False
                logging.error(
                    f"[WorkerPool] Context {context.id} crashed {context.restarts} times, retiring it"
                )
            else:
                logging.warning(
                    f"[WorkerPool] Context {context.id} crashed, restarting "
                    f"({context.restarts}/{self.max_restarts})"
                )
                context.start()

            if not self.is_healthy:
                stranded = list(self._pending)
                self._pending.clear()
                for t in stranded:
                    self._tasks.pop(t.id, None)
            else:
                self._dispatch_locked()

        if task is not None and not task.future.done():
            task.future.set_exception(WorkerCrashError(f"Execution context {context.id} crashed"))
        for t in stranded:
            if t.future.set_running_or_notify_cancel():
                t.future.set_exception(PoolUnavailableError("No healthy execution context available"))
