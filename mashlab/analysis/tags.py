"""Embedded tag reading using mutagen, and tag-over-detection merging."""

from __future__ import annotations

import io
import logging
import re
from dataclasses import replace
from typing import Any

import mutagen

from mashlab.core.constants import MAX_VALID_BPM, TAG_OVERRIDE_CONFIDENCE, TAG_OVERRIDE_THRESHOLD
from mashlab.core.keys import normalize_key
from mashlab.core.models import ExtractionResult, TagMetadata

logger = logging.getLogger(__name__)

_GENRE_SPLIT = re.compile(r"\s*[;/,]\s*")


class TagReader:
    """Read title, artist, album, year, genre, BPM and key tags from bytes."""

    @staticmethod
    def read(data: bytes, filename: str = "") -> TagMetadata:
        """Read tags from an in-memory audio file.

        Never raises: unreadable containers yield empty metadata.
        """
        try:
            audio = mutagen.File(io.BytesIO(data))
        except Exception as e:
            logger.debug("Could not read tags from %s: %s", filename or "<bytes>", e)
            return TagMetadata()
        if audio is None:
            return TagMetadata()

        get = TagReader._get_tag
        year = TagReader._parse_year(get(audio, ["TDRC", "TYER", "date", "\xa9day"]))
        genre_raw = get(audio, ["TCON", "genre", "\xa9gen"])
        genre = tuple(g for g in _GENRE_SPLIT.split(genre_raw) if g) if genre_raw else ()

        return TagMetadata(
            title=get(audio, ["TIT2", "title", "\xa9nam"]),
            artist=get(audio, ["TPE1", "artist", "\xa9ART"]),
            album=get(audio, ["TALB", "album", "\xa9alb"]),
            year=year,
            genre=genre,
            bpm=TagReader._parse_bpm(get(audio, ["TBPM", "bpm", "tmpo"])),
            key=normalize_key(get(audio, ["TKEY", "initialkey", "key"])),
        )

    @staticmethod
    def _get_tag(audio: Any, keys: list[str]) -> str | None:
        """Get the first present tag value among ``keys``."""
        for key in keys:
            try:
                if key in audio:
                    value = audio[key]
                    if isinstance(value, list) and value:
                        return str(value[0])
                    return str(value)
            except (KeyError, ValueError):
                # Mutagen FLAC raises ValueError in __contains__ for invalid keys
                continue

        return None

    @staticmethod
    def _parse_year(value: str | None) -> int | None:
        if not value:
            return None
        try:
            return int(str(value)[:4])
        except ValueError:
            return None

    @staticmethod
    def _parse_bpm(value: str | None) -> float | None:
        if not value:
            return None
        try:
            bpm = float(str(value).strip())
        except ValueError:
            return None
        return bpm if 0 < bpm <= MAX_VALID_BPM else None


def read_tags(data: bytes, filename: str = "") -> TagMetadata:
    return TagReader.read(data, filename)


def apply_tag_overrides(result: ExtractionResult, tags: TagMetadata | None) -> ExtractionResult:
    """Prefer tagged BPM/key over weak detections.

    A tagged value replaces the detected one when the matching detection
    confidence is below 0.7; the replaced confidence becomes 0.85.
    """
    if tags is None:
        return result

    changes: dict[str, Any] = {}
    if tags.bpm is not None and result.confidence < TAG_OVERRIDE_THRESHOLD:
        changes["bpm"] = tags.bpm
        changes["confidence"] = TAG_OVERRIDE_CONFIDENCE
    if tags.key is not None and result.key_confidence < TAG_OVERRIDE_THRESHOLD:
        changes["key"] = tags.key
        changes["key_confidence"] = TAG_OVERRIDE_CONFIDENCE

    if not changes:
        return result
    logger.debug("Tag overrides applied: %s", ", ".join(changes))
    return replace(result, **changes)
