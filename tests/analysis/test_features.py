"""Tests for scalar and segment features, and signal preparation."""

from __future__ import annotations

import numpy as np
import pytest

from mashlab.analysis import features
from mashlab.analysis.preprocess import prepare_signal, to_mono, window_for_mode
from mashlab.core.models import AnalysisMode, SegmentDensity

SR = 22050


def _sine(freq: float, seconds: float, amplitude: float = 0.5) -> np.ndarray:
    t = np.arange(int(SR * seconds)) / SR
    return (np.sin(2 * np.pi * freq * t) * amplitude).astype(np.float32)


class TestScalarFeatures:
    """Tests for energy, danceability and spectral centroid."""

    def test_energy_is_twice_rms(self) -> None:
        y = np.full(1000, 0.25, dtype=np.float32)
        assert features.energy(y) == pytest.approx(0.5)

    def test_energy_is_clipped(self) -> None:
        assert features.energy(np.ones(100, dtype=np.float32)) == 1.0
        assert features.energy(np.zeros(0)) == 0.0

    def test_danceability_ratio(self) -> None:
        # 30 s at 120 BPM expects 60 beats
        assert features.danceability(30, 30.0, 120.0) == pytest.approx(0.5)
        assert features.danceability(90, 30.0, 120.0) == 1.0

    def test_danceability_neutral_without_beats(self) -> None:
        assert features.danceability(1, 30.0, 120.0) == 0.5

    def test_centroid_tracks_frequency(self) -> None:
        # Frequencies sit on sampled spectrum bins (every 22nd bin for 2 s)
        low = features.spectral_centroid(_sine(198.0, 2.0), SR)
        high = features.spectral_centroid(_sine(4004.0, 2.0), SR)

        assert low == pytest.approx(198.0, rel=0.1)
        assert high > low

    def test_centroid_default_for_silence(self) -> None:
        assert features.spectral_centroid(np.zeros(SR), SR) == features.DEFAULT_CENTROID_HZ


class TestSegments:
    """Tests for features.segments()."""

    @pytest.mark.parametrize(
        ("density", "count"),
        [(SegmentDensity.LIGHT, 2), (SegmentDensity.STANDARD, 4), (SegmentDensity.DETAILED, 8)],
    )
    def test_segment_count(self, density: SegmentDensity, count: int) -> None:
        assert len(features.segments(_sine(440.0, 8.0), SR, density)) == count

    def test_segments_cover_signal(self) -> None:
        segments = features.segments(_sine(440.0, 8.0), SR, SegmentDensity.STANDARD)

        assert segments[0].start == 0.0
        assert segments[-1].end == pytest.approx(8.0)
        for before, after in zip(segments, segments[1:]):
            assert before.end == after.start

    def test_quiet_segment_has_low_loudness(self) -> None:
        y = np.concatenate([np.zeros(SR * 2, dtype=np.float32), _sine(440.0, 2.0)])
        quiet, loud = features.segments(y, SR, SegmentDensity.LIGHT)

        assert quiet.energy == 0.0
        assert quiet.loudness == pytest.approx(-80.0)
        assert loud.loudness > quiet.loudness

    def test_empty_signal(self) -> None:
        assert features.segments(np.zeros(0), SR) == ()


class TestPrepareSignal:
    """Tests for downmixing and windowing."""

    def test_to_mono_averages_channels(self) -> None:
        stereo = np.stack([np.ones(100), np.zeros(100)])
        assert np.allclose(to_mono(stereo), 0.5)
        assert np.allclose(to_mono(stereo.T), 0.5)

    def test_windows(self) -> None:
        assert window_for_mode(AnalysisMode.QUICK) == 15
        assert window_for_mode(AnalysisMode.FULL) == 30
        assert window_for_mode(AnalysisMode.HIGH_PRECISION) == 45

    def test_full_mode_reads_from_start(self) -> None:
        y = np.arange(SR * 60, dtype=np.float32)

        prepared = prepare_signal(y, SR, AnalysisMode.FULL, SR)

        assert prepared.analyzed_duration == pytest.approx(30.0)
        assert prepared.signal[0] == 0.0
        assert len(prepared.full_signal) == SR * 60

    def test_quick_mode_is_centred(self) -> None:
        y = np.arange(SR * 60, dtype=np.float32)

        prepared = prepare_signal(y, SR, AnalysisMode.QUICK, SR)

        assert prepared.analyzed_duration == pytest.approx(15.0)
        assert prepared.signal[0] == pytest.approx(SR * 30 - (SR * 15) // 2)

    def test_short_track_is_not_cut(self) -> None:
        y = np.zeros(SR * 5, dtype=np.float32)

        prepared = prepare_signal(y, SR, AnalysisMode.HIGH_PRECISION, SR)

        assert prepared.analyzed_duration == pytest.approx(5.0)
