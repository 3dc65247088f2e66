"""Folder labels derived from relative upload paths."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from typing import TYPE_CHECKING

from mashlab.core.constants import UNCATEGORIZED

if TYPE_CHECKING:
    from mashlab.core.models import Track


def _segments(path: str | None) -> list[str]:
    if not path:
        return []
    return [part for part in path.replace("\\", "/").split("/") if part]


def extract_folder_name(path: str | None) -> str:
    """Leading folder of a relative path, e.g. ``"House/2023/a.mp3" -> "House"``."""
    parts = _segments(path)
    return parts[0] if len(parts) > 1 else UNCATEGORIZED


def extract_folder_path(path: str | None) -> str:
    """Every folder of a relative path except the file name."""
    parts = _segments(path)
    return "/".join(parts[:-1]) if len(parts) > 1 else UNCATEGORIZED


def folder_of(track: Track) -> str:
    return track.folder_name or UNCATEGORIZED


def is_cross_folder(track1: Track, track2: Track) -> bool:
    return folder_of(track1) != folder_of(track2)


def unique_folders(tracks: Iterable[Track]) -> list[str]:
    """Sorted folder labels present in ``tracks``."""
    return sorted({folder_of(track) for track in tracks})


def folder_stats(tracks: Iterable[Track]) -> dict[str, int]:
    """Track count per folder label, largest first."""
    return dict(Counter(folder_of(track) for track in tracks).most_common())
