"""Admission-controlled queue of files awaiting analysis."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Any

from mashlab.core.models import AudioInput, QueueItem, TaskStatus, new_id

ItemProgress = Callable[[int, str], None]
Processor = Callable[[QueueItem, ItemProgress], Any]

# How long process_all sleeps between slot checks when nothing changed
POLL_INTERVAL_S = 0.05


class UploadQueue:
    """Keeps at most ``max_concurrent`` items processing at any moment.

    Items move pending -> processing -> completed | failed. ``clear()``
    forgets every pending and processing item; results that arrive later
    for forgotten items are dropped.

    Usage:
        queue = UploadQueue(max_concurrent=3)
        queue.add_files(inputs)
        queue.process_all(processor)  # blocks until those files are settled
        queue.close()
    """

    def __init__(
        self,
        max_concurrent: int = 3,
        on_update: Callable[[list[QueueItem]], None] | None = None,
        on_item_complete: Callable[[QueueItem, Any], None] | None = None,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.on_update = on_update
        self.on_item_complete = on_item_complete
        self._items: dict[str, QueueItem] = {}
        self._cond = threading.Condition()
        self._executor: ThreadPoolExecutor | None = None
        self._closed = False

    # ========== Admission ==========

    def add_files(self, inputs: list[AudioInput]) -> list[QueueItem]:
        """Admit files as pending items, in order."""
        items = [QueueItem(id=new_id(), input=audio) for audio in inputs]
        with self._cond:
            for item in items:
                self._items[item.id] = item
            self._cond.notify_all()
        logging.debug(f"[UploadQueue] Added {len(items)} files")
        self._notify_update()
        return items

    def is_tracked(self, item_id: str) -> bool:
        """True while the item is pending or processing."""
        with self._cond:
            return self._is_active_locked(item_id)

    def get(self, item_id: str) -> QueueItem | None:
        with self._cond:
            item = self._items.get(item_id)
            return replace(item) if item is not None else None

    def get_queue(self) -> list[QueueItem]:
        """Snapshot copies of every item, in admission order."""
        with self._cond:
            return [replace(item) for item in self._items.values()]

    # ========== Counts ==========

    def _count(self, status: TaskStatus) -> int:
        with self._cond:
            return sum(1 for item in self._items.values() if item.status is status)

    @property
    def pending_count(self) -> int:
        return self._count(TaskStatus.PENDING)

    @property
    def processing_count(self) -> int:
        return self._count(TaskStatus.PROCESSING)

    @property
    def completed_count(self) -> int:
        return self._count(TaskStatus.COMPLETED)

    @property
    def failed_count(self) -> int:
        return self._count(TaskStatus.FAILED)

    # ========== Processing ==========

    def process_next(self, processor: Processor) -> bool:
        """Start the next pending item if a slot is free.

        Returns:
            True if an item was started
        """
        with self._cond:
            if self._closed:
                raise RuntimeError("UploadQueue is closed")
            if self._processing_locked() >= self.max_concurrent:
                return False
            item = next((i for i in self._items.values() if i.status is TaskStatus.PENDING), None)
            if item is None:
                return False
            item.status = TaskStatus.PROCESSING
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_concurrent, thread_name_prefix="mashlab-queue"
                )
            executor = self._executor
        self._notify_update()
        executor.submit(self._run_item, item.id, item, processor)
        return True

    def process_all(self, processor: Processor, item_ids: list[str] | None = None) -> None:
        """Process pending items, blocking until the batch is settled or cleared.

        The batch is ``item_ids``, or every item pending at the call. Overlapping
        calls share the slots and the worker threads.
        """
        start = time.time()
        with self._cond:
            if item_ids is not None:
                batch = list(item_ids)
            else:
                batch = [item_id for item_id, item in self._items.items() if item.status is TaskStatus.PENDING]

        while True:
            while self.process_next(processor):
                pass
            with self._cond:
                if not any(self._is_active_locked(item_id) for item_id in batch):
                    break
                self._cond.wait(POLL_INTERVAL_S)

        logging.info(
            f"[UploadQueue] Complete: {self.completed_count} succeeded, "
            f"{self.failed_count} failed ({time.time() - start:.1f}s)"
        )

    def close(self) -> None:
        """Stop the worker threads once running items finish."""
        with self._cond:
            self._closed = True
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    def _run_item(self, item_id: str, item: QueueItem, processor: Processor) -> None:
        def report(percent: int, status: str) -> None:
            self.update_progress(item_id, percent)

        result: Any = None
        error: str | None = None
        try:
            result = processor(item, report)
        except Exception as e:
            error = str(e) or type(e).__name__

        with self._cond:
            if self._items.get(item_id) is not item:
                # Cleared while processing
                self._cond.notify_all()
                return
            if error is None:
                item.status = TaskStatus.COMPLETED
                item.progress = 100
            else:
                item.status = TaskStatus.FAILED
                item.error = error
            snapshot = replace(item)
            self._cond.notify_all()

        if error is not None:
            logging.warning(f"[UploadQueue] ✗ Failed: {item.filename}: {error}")
        if self.on_item_complete is not None:
            try:
                self.on_item_complete(snapshot, result)
            except Exception as e:
                logging.error(f"[UploadQueue] Completion callback failed: {e}")
        self._notify_update()

    def update_progress(self, item_id: str, percent: int) -> None:
        with self._cond:
            item = self._items.get(item_id)
            if item is None or item.status is not TaskStatus.PROCESSING:
                return
            item.progress = max(item.progress, min(100, int(percent)))
        self._notify_update()

    # ========== Removal ==========

    def clear(self) -> int:
        """Forget every pending and processing item.

        Returns:
            Number of items removed
        """
        with self._cond:
            active = [
                item_id
                for item_id, item in self._items.items()
                if item.status in (TaskStatus.PENDING, TaskStatus.PROCESSING)
            ]
            for item_id in active:
                del self._items[item_id]
            self._cond.notify_all()
        if active:
            logging.info(f"[UploadQueue] Cleared {len(active)} items")
        self._notify_update()
        return len(active)

    def remove_completed(self) -> int:
        return self._remove_status(TaskStatus.COMPLETED)

    def remove_failed(self) -> int:
        return self._remove_status(TaskStatus.FAILED)

    def _remove_status(self, status: TaskStatus) -> int:
        with self._cond:
            doomed = [item_id for item_id, item in self._items.items() if item.status is status]
            for item_id in doomed:
                del self._items[item_id]
        self._notify_update()
        return len(doomed)

    # ========== Internals ==========

    def _processing_locked(self) -> int:
        return sum(1 for item in self._items.values() if item.status is TaskStatus.PROCESSING)

    def _is_active_locked(self, item_id: str) -> bool:
        item = self._items.get(item_id)
        return item is not None and item.status in (TaskStatus.PENDING, TaskStatus.PROCESSING)

    def _notify_update(self) -> None:
        if self.on_update is None:
            return
        try:
            self.on_update(self.get_queue())
        except Exception as e:
            logging.error(f"[UploadQueue] Update callback failed: {e}")
