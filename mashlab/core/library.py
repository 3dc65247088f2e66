"""Track library: placeholders, analysis orchestration and the stuck watchdog."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from mashlab.core.analysis_service import AnalysisService
from mashlab.core.constants import MAX_VALID_BPM, RESTORED_ERROR, STUCK_ERROR, STUCK_GRACE_SECONDS
from mashlab.core.errors import InvalidResultError
from mashlab.core.event_bus import EventBus, Events
from mashlab.core.keys import is_recognized_key, key_to_camelot, normalize_key
from mashlab.core.models import (
    AudioInput,
    ExtractionResult,
    ProgressEvent,
    QueueItem,
    SavedTrack,
    TagMetadata,
    Track,
    TrackSort,
)
from mashlab.core.upload_queue import UploadQueue
from mashlab.utils.folders import extract_folder_name, extract_folder_path, folder_stats, unique_folders


@dataclass(frozen=True)
class BatchSummary:
    succeeded: int
    failed: int


def validate_result(result: ExtractionResult) -> None:
    """Raise InvalidResultError unless BPM is in (0, 300] and the key is recognized."""
    if not 0 < result.bpm <= MAX_VALID_BPM:
        raise InvalidResultError(f"Invalid BPM detected: {result.bpm}")
    if not is_recognized_key(result.key):
        raise InvalidResultError(f"Invalid key detected: {result.key}")


def _camelot_sort_key(track: Track) -> tuple[int, str, str]:
    code = key_to_camelot(track.key)
    if code is None:
        return (99, "", track.key)
    return (int(code[:-1]), code[-1], track.key)


_SORT_KEYS: dict[TrackSort, Callable[[Track], object]] = {
    TrackSort.NAME: lambda t: t.name.casefold(),
    TrackSort.BPM: lambda t: t.bpm,
    TrackSort.KEY: _camelot_sort_key,
    TrackSort.ENERGY: lambda t: t.energy,
    TrackSort.CONFIDENCE: lambda t: t.confidence,
    TrackSort.DURATION: lambda t: t.duration,
}


class TrackLibrary:
    """Owns every track and drives their analysis.

    Each admitted file gets a placeholder track immediately. Queue items are
    mapped to tracks by id, so results land on the right track regardless of
    completion order or duplicate file names.
    """

    def __init__(
        self,
        service: AnalysisService,
        upload_queue: UploadQueue,
        event_bus: EventBus | None = None,
        grace_seconds: float = STUCK_GRACE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.service = service
        self.queue = upload_queue
        self.event_bus = event_bus or EventBus()
        self.grace_seconds = grace_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._tracks: dict[str, Track] = {}
        self._item_to_track: dict[str, str] = {}
        self._orphaned_since: dict[str, float] = {}

    # ========== Access ==========

    @property
    def tracks(self) -> list[Track]:
        with self._lock:
            return list(self._tracks.values())

    def get(self, track_id: str) -> Track | None:
        with self._lock:
            return self._tracks.get(track_id)

    def analyzed_tracks(self) -> list[Track]:
        return [track for track in self.tracks if track.is_analyzed]

    def __len__(self) -> int:
        with self._lock:
            return len(self._tracks)

    # ========== Analysis ==========

    def add_files(self, inputs: list[AudioInput]) -> BatchSummary:
        """Create placeholders for ``inputs`` and analyze them.

        Blocks until every admitted file completed, failed or was cancelled.
        """
        if not inputs:
            return BatchSummary(0, 0)

        items = self.queue.add_files(inputs)
        created: list[Track] = []
        with self._lock:
            for item in items:
                track = Track(
                    name=item.filename,
                    audio=item.input.data,
                    is_analyzing=True,
                    folder_name=extract_folder_name(item.input.path_hint),
                    folder_path=extract_folder_path(item.input.path_hint),
                    analysis_started_at=self._clock(),
                )
                self._tracks[track.id] = track
                self._item_to_track[item.id] = track.id
                created.append(track)
        for track in created:
            self.event_bus.emit(Events.TRACK_ADDED, track_id=track.id)

        logging.info(f"[Library] Analyzing {len(items)} files ({self.queue.max_concurrent} at a time)")
        self.queue.process_all(self._process_item, [item.id for item in items])

        with self._lock:
            succeeded = sum(1 for t in created if self._tracks.get(t.id) is t and t.is_analyzed)
            failed = sum(1 for t in created if self._tracks.get(t.id) is t and t.error is not None)
        self.event_bus.emit(Events.BATCH_COMPLETE, succeeded=succeeded, failed=failed)
        logging.info(f"[Library] Complete: {succeeded} succeeded, {failed} failed")
        return BatchSummary(succeeded, failed)

    def _process_item(self, item: QueueItem, report: Callable[[int, str], None]) -> ExtractionResult:
        """Queue processor: analyze one item and settle its track."""

        def progress(percent: int, status: str) -> None:
            report(percent, status)
            self.event_bus.emit(Events.ANALYSIS_PROGRESS, event=ProgressEvent(item.id, percent, status))

        start = time.time()
        try:
            result, tags = self.service.analyze_with_tags(item.input, progress)
            validate_result(result)
        except Exception as e:
            self._settle_failure(item.id, str(e) or type(e).__name__)
            raise

        track = self._settle_success(item.id, result, tags)
        if track is not None:
            logging.info(
                f"[Library] ✓ {track.name}: {result.bpm:.1f} BPM, {result.key} ({time.time() - start:.1f}s)"
            )
        return result

    def _claim(self, item_id: str) -> Track | None:
        """Detach the track waiting on ``item_id``, if it is still analyzing."""
        track_id = self._item_to_track.pop(item_id, None)
        if track_id is None:
            return None
        track = self._tracks.get(track_id)
        if track is None or not track.is_analyzing:
            return None
        self._orphaned_since.pop(track_id, None)
        return track

    def _settle_success(self, item_id: str, result: ExtractionResult, tags: TagMetadata) -> Track | None:
        with self._lock:
            track = self._claim(item_id)
            if track is None:
                return None
            track.apply_result(result)
            track.metadata = None if tags.is_empty else tags
        self.event_bus.emit(Events.TRACK_UPDATED, track_id=track.id)
        return track

    def _settle_failure(self, item_id: str, error: str) -> None:
        with self._lock:
            track = self._claim(item_id)
            if track is None:
                return
            track.fail(error)
        logging.warning(f"[Library] ✗ {track.name}: {error}")
        self.event_bus.emit(Events.TRACK_UPDATED, track_id=track.id)

    def cancel_analysis(self) -> int:
        """Drop every pending and running analysis and its placeholder.

        Returns:
            Number of placeholders removed
        """
        # Detach placeholders first so in-flight results find nothing to settle
        with self._lock:
            doomed = [track for track in self._tracks.values() if track.is_analyzing]
            for track in doomed:
                track.release_audio()
                del self._tracks[track.id]
                self._orphaned_since.pop(track.id, None)
            self._item_to_track.clear()
        self.queue.clear()
        self.service.pool.cancel_all()
        self.event_bus.emit(Events.ANALYSIS_CANCELLED)
        logging.info(f"[Library] Cancelled analysis, removed {len(doomed)} placeholders")
        return len(doomed)

    # ========== Removal ==========

    def remove_track(self, track_id: str) -> bool:
        with self._lock:
            track = self._tracks.pop(track_id, None)
            if track is None:
                return False
            track.release_audio()
            self._orphaned_since.pop(track_id, None)
        self.event_bus.emit(Events.TRACK_REMOVED, track_id=track_id)
        return True

    def clear(self) -> None:
        """Cancel running analysis and remove every track."""
        self.cancel_analysis()
        for track in self.tracks:
            self.remove_track(track.id)

    # ========== Watchdog ==========

    def find_stuck(self, now: float | None = None) -> list[Track]:
        """Analyzing tracks whose queue entry has been gone for the grace period."""
        now = self._clock() if now is None else now
        tracked_items = {
            track_id: item_id for item_id, track_id in self._snapshot_item_map().items()
        }
        stuck = []
        with self._lock:
            for track in self._tracks.values():
                if not track.is_analyzing:
                    self._orphaned_since.pop(track.id, None)
                    continue
                item_id = tracked_items.get(track.id)
                if item_id is not None and self.queue.is_tracked(item_id):
                    self._orphaned_since.pop(track.id, None)
                    continue
                since = self._orphaned_since.setdefault(track.id, now)
                if now - since >= self.grace_seconds:
                    stuck.append(track)
        return stuck

    def resolve_stuck(self, now: float | None = None) -> list[str]:
        """Fail stuck tracks with an explanatory error.

        Returns:
            Ids of the tracks that were failed
        """
        stuck = self.find_stuck(now)
        if not stuck:
            return []
        with self._lock:
            for track in stuck:
                track.fail(STUCK_ERROR)
                self._orphaned_since.pop(track.id, None)
            stuck_ids = {t.id for t in stuck}
            stale = [item_id for item_id, track_id in self._item_to_track.items() if track_id in stuck_ids]
            for item_id in stale:
                del self._item_to_track[item_id]
        ids = [track.id for track in stuck]
        logging.warning(f"[Library] {len(ids)} analyses stuck, marked as failed")
        self.event_bus.emit(Events.TRACKS_STUCK, track_ids=ids)
        return ids

    def _snapshot_item_map(self) -> dict[str, str]:
        with self._lock:
            return dict(self._item_to_track)

    # ========== Views ==========

    def filtered_tracks(
        self,
        sort_by: TrackSort = TrackSort.NAME,
        key_filter: str | None = None,
        bpm_range: tuple[float, float] | None = None,
        descending: bool = False,
    ) -> list[Track]:
        """Tracks filtered by key and inclusive BPM range, then sorted."""
        tracks = self.tracks
        if key_filter:
            wanted = normalize_key(key_filter)
            tracks = [t for t in tracks if normalize_key(t.key) == wanted]
        if bpm_range is not None:
            low, high = bpm_range
            tracks = [t for t in tracks if low <= t.bpm <= high]
        return sorted(tracks, key=_SORT_KEYS[sort_by], reverse=descending)

    def unique_keys(self) -> list[str]:
        keys = {t.key for t in self.analyzed_tracks()}
        return sorted(keys, key=lambda k: _camelot_sort_key(Track(name="", key=k)))

    def bpm_range(self) -> tuple[float, float] | None:
        bpms = [t.bpm for t in self.analyzed_tracks()]
        if not bpms:
            return None
        return (min(bpms), max(bpms))

    def folders(self) -> list[str]:
        return unique_folders(self.tracks)

    def folder_stats(self) -> dict[str, int]:
        return folder_stats(self.tracks)

    # ========== Snapshot ==========

    def snapshot(self) -> list[SavedTrack]:
        """Metadata of analyzed tracks, for persistence (no audio)."""
        return [
            SavedTrack(id=t.id, name=t.name, file_name=t.name, bpm=t.bpm, key=t.key, duration=t.duration)
            for t in self.analyzed_tracks()
        ]

    def restore(self, saved: list[SavedTrack]) -> list[Track]:
        """Recreate tracks from a snapshot. They carry no audio until re-uploaded."""
        restored = [
            Track(
                id=s.id,
                name=s.name,
                bpm=s.bpm,
                key=s.key,
                duration=s.duration,
                error=RESTORED_ERROR,
            )
            for s in saved
        ]
        with self._lock:
            for track in restored:
                self._tracks[track.id] = track
        for track in restored:
            self.event_bus.emit(Events.TRACK_ADDED, track_id=track.id)
        logging.info(f"[Library] Restored {len(restored)} saved tracks")
        return restored


class Watchdog:
    """Periodically fails library tracks stuck in analysis."""

    def __init__(self, library: TrackLibrary, interval: float = 2.0) -> None:
        self.library = library
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="mashlab-watchdog", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(self.interval * 2)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.library.resolve_stuck()
            except Exception as e:
                logging.error(f"[Watchdog] Check failed: {e}", exc_info=True)
