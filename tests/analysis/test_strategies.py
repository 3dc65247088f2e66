"""Tests for tempo and key estimation strategies.

The librosa-backed strategies are replaced with stubs where the chain logic
is under test; the onset fallback runs on synthetic numpy signals.
"""

from __future__ import annotations

import numpy as np
import pytest

from mashlab.analysis.strategies import (
    DefaultKey,
    KeyEstimate,
    OnsetIntervalTempo,
    TempoEstimate,
    beat_regularity,
    estimate_key,
    estimate_tempo,
    fold_tempo,
    key_name,
)

SR = 22050


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _Rejecting:
    name = "rejecting"

    def estimate(self, y: np.ndarray, sr: int) -> None:
        return None


class _Raising:
    name = "raising"

    def estimate(self, y: np.ndarray, sr: int) -> TempoEstimate:
        raise RuntimeError("decoder exploded")


class _Fixed:
    name = "fixed"

    def __init__(self, bpm: float) -> None:
        self.bpm = bpm

    def estimate(self, y: np.ndarray, sr: int) -> TempoEstimate:
        return TempoEstimate(bpm=self.bpm, confidence=0.9, method=self.name)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestHelpers:
    """Tests for the pure helper functions."""

    def test_fold_tempo_into_range(self) -> None:
        assert fold_tempo(50.0) == 100.0
        assert fold_tempo(240.0) == 120.0
        assert fold_tempo(128.0) == 128.0

    def test_beat_regularity_perfect_grid(self) -> None:
        assert beat_regularity(np.arange(0, 10, 0.5)) == pytest.approx(1.0)

    def test_beat_regularity_too_few_beats(self) -> None:
        assert beat_regularity(np.array([0.0, 0.5])) == 0.0

    def test_key_name(self) -> None:
        assert key_name(9, minor=True) == "Am"
        assert key_name(13, minor=False) == "C#"


class TestOnsetIntervalTempo:
    """Tests for the energy-onset fallback."""

    def test_click_track_is_120_bpm(self, click_track: np.ndarray) -> None:
        estimate = OnsetIntervalTempo().estimate(click_track, SR)

        assert estimate.method == "onset_interval"
        assert estimate.bpm == pytest.approx(120.0, abs=2.0)
        assert 0 < estimate.confidence <= 0.8

    def test_silence_defaults_to_120(self) -> None:
        estimate = OnsetIntervalTempo().estimate(np.zeros(SR * 5, dtype=np.float32), SR)

        assert estimate.bpm == 120.0
        assert estimate.confidence == 0.0

    def test_too_few_onsets(self) -> None:
        y = np.zeros(SR * 5, dtype=np.float32)
        y[SR : SR + 256] = 0.8
        y[2 * SR : 2 * SR + 256] = 0.8

        estimate = OnsetIntervalTempo().estimate(y, SR)

        assert len(estimate.beats) == 2
        assert estimate.bpm == 120.0
        assert estimate.confidence == 0.0

    def test_irregular_onsets_default_with_low_confidence(self) -> None:
        """Two short gaps then two long ones leave nothing near the median interval."""
        hop = OnsetIntervalTempo().hop_length
        y = np.zeros(SR * 5, dtype=np.float32)
        for frame in (20, 30, 40, 80, 120):
            y[frame * hop : frame * hop + 256] = 0.8

        estimate = OnsetIntervalTempo().estimate(y, SR)

        assert len(estimate.beats) == 5
        assert estimate.bpm == 120.0
        assert estimate.confidence == OnsetIntervalTempo.IRREGULAR_CONFIDENCE == 0.2

    def test_onsets_respect_minimum_gap(self, click_track: np.ndarray) -> None:
        onsets = OnsetIntervalTempo().detect_onsets(click_track, SR)

        assert np.all(np.diff(onsets) >= OnsetIntervalTempo.MIN_GAP_S)


class TestChains:
    """Tests for estimate_tempo() / estimate_key()."""

    def test_first_estimate_wins(self) -> None:
        estimate = estimate_tempo(np.zeros(10), SR, [_Fixed(128.0), _Fixed(90.0)])
        assert estimate is not None
        assert estimate.bpm == 128.0

    def test_rejecting_and_raising_strategies_are_skipped(self) -> None:
        estimate = estimate_tempo(np.zeros(10), SR, [_Rejecting(), _Raising(), _Fixed(90.0)])
        assert estimate is not None
        assert estimate.bpm == 90.0

    def test_empty_chain(self) -> None:
        assert estimate_tempo(np.zeros(10), SR, [_Rejecting()]) is None

    def test_key_falls_back_to_default(self) -> None:
        estimate = estimate_key(np.zeros(10), SR, [_Rejecting(), DefaultKey()])
        assert estimate == KeyEstimate(key="C", confidence=0.0, method="default")
