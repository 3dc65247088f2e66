"""Tests for tag reading and tag-over-detection merging."""

from __future__ import annotations

from collections.abc import Callable
from unittest.mock import patch

from mashlab.analysis.tags import TagReader, apply_tag_overrides
from mashlab.core.models import ExtractionResult, TagMetadata


class _FakeTags(dict):
    """Mutagen-like mapping of tag name to value list."""


class TestTagReader:
    """Tests for TagReader."""

    def test_unreadable_bytes_give_empty_metadata(self) -> None:
        assert TagReader.read(b"definitely not audio", "junk.mp3").is_empty

    def test_mutagen_error_is_contained(self) -> None:
        with patch("mashlab.analysis.tags.mutagen.File", side_effect=Exception("corrupt")):
            assert TagReader.read(b"...", "bad.mp3") == TagMetadata()

    def test_reads_id3_style_frames(self) -> None:
        fake = _FakeTags(
            TIT2=["Song"],
            TPE1=["Artist"],
            TDRC=["2019-05-01"],
            TCON=["House; Deep House"],
            TBPM=["124"],
            TKEY=["Abm"],
        )
        with patch("mashlab.analysis.tags.mutagen.File", return_value=fake):
            tags = TagReader.read(b"...", "song.mp3")

        assert tags.title == "Song"
        assert tags.artist == "Artist"
        assert tags.year == 2019
        assert tags.genre == ("House", "Deep House")
        assert tags.bpm == 124.0
        assert tags.key == "G#m"

    def test_out_of_range_bpm_tag_is_ignored(self) -> None:
        with patch("mashlab.analysis.tags.mutagen.File", return_value=_FakeTags(bpm=["999"])):
            assert TagReader.read(b"...").bpm is None

    def test_get_tag_prefers_first_key(self) -> None:
        fake = _FakeTags(TKEY=["Am"], initialkey=["C"])
        assert TagReader._get_tag(fake, ["TKEY", "initialkey"]) == "Am"
        assert TagReader._get_tag(fake, ["missing"]) is None


class TestApplyTagOverrides:
    """Tests for apply_tag_overrides()."""

    def test_weak_detection_is_replaced(self, make_result: Callable[..., ExtractionResult]) -> None:
        result = make_result(bpm=95.0, confidence=0.4, key="D", key_confidence=0.5)

        merged = apply_tag_overrides(result, TagMetadata(bpm=128.0, key="Am"))

        assert merged.bpm == 128.0
        assert merged.confidence == 0.85
        assert merged.key == "Am"
        assert merged.key_confidence == 0.85

    def test_confident_detection_is_kept(self, make_result: Callable[..., ExtractionResult]) -> None:
        result = make_result(bpm=95.0, confidence=0.7, key="D", key_confidence=0.9)

        merged = apply_tag_overrides(result, TagMetadata(bpm=128.0, key="Am"))

        assert merged == result

    def test_fields_are_independent(self, make_result: Callable[..., ExtractionResult]) -> None:
        result = make_result(bpm=95.0, confidence=0.95, key="D", key_confidence=0.1)

        merged = apply_tag_overrides(result, TagMetadata(bpm=128.0, key="Am"))

        assert merged.bpm == 95.0
        assert merged.key == "Am"

    def test_no_tags(self, make_result: Callable[..., ExtractionResult]) -> None:
        result = make_result(confidence=0.1)
        assert apply_tag_overrides(result, None) is result
        assert apply_tag_overrides(result, TagMetadata()) is result
