"""Duplicate detection within the track library.

Groups tracks by a normalized base name in two passes:
  1. Version duplicates: any member carries a version marker (V1, Ver. 2, (3) ...)
  2. Exact duplicates: same display name, BPM within 1 and same key

Four-digit numbers between 1900 and 2099 are years, never versions, so
"Song (2024).mp3" keeps its own base name.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable
from dataclasses import dataclass

from mashlab.core.models import DuplicateKind, Track

# Trailing version markers, tried in order
VERSION_PATTERNS = (
    re.compile(r"[\s\-_\[\(]?[vV](\d{1,2})[\]\)]?$"),
    re.compile(r"[\s\-_\[\(]?[vV]er\.?\s*(\d{1,2})[\]\)]?$", re.IGNORECASE),
    re.compile(r"[\s\-_\[\(]?[vV]ersion\s*(\d{1,2})[\]\)]?$", re.IGNORECASE),
    re.compile(r"[\s\-_]\(([1-9]\d?)\)$"),
    re.compile(r"[\s\-_]([1-9]\d?)$"),
)

YEAR_RANGE = range(1900, 2100)
EXACT_BPM_TOLERANCE = 1.0


@dataclass(frozen=True)
class ParsedName:
    """Track name split into a normalized base and an optional version number."""

    base: str
    version: int | None

    @property
    def has_version(self) -> bool:
        return self.version is not None


@dataclass(frozen=True)
class DuplicateGroup:
    kind: DuplicateKind
    base: str
    tracks: tuple[Track, ...]


def parse_track_name(name: str) -> ParsedName:
    """Strip the extension and a trailing version marker, lowercase the rest."""
    stem, _ = os.path.splitext(name)
    stem = stem.strip()

    for pattern in VERSION_PATTERNS:
        match = pattern.search(stem)
        if match is None:
            continue
        number = int(match.group(1))
        if number in YEAR_RANGE:
            continue
        base = stem[: match.start()].strip()
        if not base:
            continue
        return ParsedName(base=DuplicateChecker._normalize(base), version=number)

    return ParsedName(base=DuplicateChecker._normalize(stem), version=None)


class DuplicateChecker:
    """Finds version and exact duplicates among settled library tracks."""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def find_duplicates(self, tracks: Iterable[Track]) -> list[DuplicateGroup]:
        """Group duplicates in first-seen order.

        Tracks still analyzing or carrying an error are ignored.
        """
        by_base: dict[str, list[tuple[Track, ParsedName]]] = {}
        for track in tracks:
            if track.is_analyzing or track.error is not None:
                continue
            parsed = parse_track_name(track.name)
            by_base.setdefault(parsed.base, []).append((track, parsed))

        groups: list[DuplicateGroup] = []
        for base, members in by_base.items():
            if len(members) < 2:
                continue
            group_tracks = tuple(track for track, _ in members)

            if any(parsed.has_version for _, parsed in members):
                groups.append(DuplicateGroup(DuplicateKind.VERSION, base, group_tracks))
                logging.debug(f"[DuplicateChecker] Version group: {base} ({len(members)} versions)")
            elif self._are_exact(group_tracks):
                groups.append(DuplicateGroup(DuplicateKind.EXACT, base, group_tracks))
                logging.debug(f"[DuplicateChecker] Exact duplicates: {base} ({len(members)} copies)")
            # Otherwise: similar names only, not flagged

        return groups

    # ------------------------------------------------------------------
    # Private — Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _are_exact(tracks: tuple[Track, ...]) -> bool:
        first = tracks[0]
        return all(
            t.name == first.name
            and abs(t.bpm - first.bpm) <= EXACT_BPM_TOLERANCE
            and t.key == first.key
            for t in tracks[1:]
        )

    @staticmethod
    def _normalize(text: str) -> str:
        """Lowercase and collapse whitespace."""
        return re.sub(r"\s+", " ", text).strip().lower()
