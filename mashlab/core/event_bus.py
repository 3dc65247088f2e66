"""Event bus for progress and library notifications."""

import logging
import threading
from collections.abc import Callable
from typing import Any


class EventBus:
    """Event bus for pub/sub."""

    def __init__(self) -> None:
        """Initialize event bus."""
        self.subscribers: dict[str, list[Callable[..., None]]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event: str, callback: Callable[..., None]) -> None:
        """Subscribe to event."""
        with self._lock:
            self.subscribers.setdefault(event, []).append(callback)
        logging.debug(f"Subscribed to event: {event}")

    def unsubscribe(self, event: str, callback: Callable[..., None]) -> bool:
        """Unsubscribe from event.

        Args:
            event: Event name
            callback: Callback to remove

        Returns:
            True if unsubscribed, False if not found
        """
        with self._lock:
            if event not in self.subscribers:
                return False
            try:
                self.subscribers[event].remove(callback)
            except ValueError:
                return False
        logging.debug(f"Unsubscribed from event: {event}")
        return True

    def clear_all_subscribers(self) -> None:
        """Clear all subscribers from all events."""
        with self._lock:
            self.subscribers.clear()
        logging.debug("Cleared all event subscribers")

    def emit(self, event: str, **data: Any) -> None:
        """Emit event.

        Analysis progress is emitted from worker threads, so the subscriber
        list is copied under a lock and callbacks run without it held.
        """
        with self._lock:
            callbacks = list(self.subscribers.get(event, ()))
        for callback in callbacks:
            try:
                callback(**data)
            except Exception as e:
                logging.error(f"Error in event handler for {event}: {e}")


class Events:
    """Standard event names.

    Analysis Events:
        ANALYSIS_PROGRESS: Progress of one queued file
            kwargs: event (ProgressEvent)
        BATCH_COMPLETE: A call to add_files finished
            kwargs: succeeded (int), failed (int)
        ANALYSIS_CANCELLED: Pending and running analyses were cancelled
            kwargs: None
        TRACKS_STUCK: The watchdog failed tracks with no live analysis
            kwargs: track_ids (list[str])

    Library Events:
        TRACK_ADDED: Placeholder track created
            kwargs: track_id (str)
        TRACK_UPDATED: Track finished analysis or failed
            kwargs: track_id (str)
        TRACK_REMOVED: Track removed from the library
            kwargs: track_id (str)
    """

    # Analysis events
    ANALYSIS_PROGRESS = "analysis_progress"  # kwargs: event (ProgressEvent)
    BATCH_COMPLETE = "batch_complete"  # kwargs: succeeded (int), failed (int)
    ANALYSIS_CANCELLED = "analysis_cancelled"  # kwargs: None
    TRACKS_STUCK = "tracks_stuck"  # kwargs: track_ids (list[str])

    # Library events
    TRACK_ADDED = "track_added"  # kwargs: track_id (str)
    TRACK_UPDATED = "track_updated"  # kwargs: track_id (str)
    TRACK_REMOVED = "track_removed"  # kwargs: track_id (str)
