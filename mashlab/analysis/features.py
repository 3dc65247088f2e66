"""Scalar and segment features computed from a prepared signal."""

from __future__ import annotations

import numpy as np

from mashlab.core.models import Segment, SegmentDensity

SEGMENT_COUNTS = {
    SegmentDensity.LIGHT: 2,
    SegmentDensity.STANDARD: 4,
    SegmentDensity.DETAILED: 8,
}

DEFAULT_CENTROID_HZ = 1000.0
CENTROID_POINTS = 1000


def rms(y: np.ndarray) -> float:
    if len(y) == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(y, dtype=np.float64))))


def energy(y: np.ndarray) -> float:
    """Overall energy in [0, 1]: twice the RMS, clipped."""
    return float(np.clip(rms(y) * 2.0, 0.0, 1.0))


def danceability(beat_count: int, analyzed_duration: float, bpm: float) -> float:
    """Ratio of detected beats to the beats expected at ``bpm``, in [0, 1]."""
    if beat_count < 2:
        return 0.5
    expected = analyzed_duration * bpm / 60.0
    if expected <= 0:
        return 0.5
    return float(np.clip(beat_count / expected, 0.0, 1.0))


def spectral_centroid(y: np.ndarray, sr: int) -> float:
    """Magnitude-weighted mean frequency over ~1000 spectrum points (Hz)."""
    if len(y) == 0:
        return DEFAULT_CENTROID_HZ
    magnitudes = np.abs(np.fft.rfft(y))
    step = max(1, len(magnitudes) // CENTROID_POINTS)
    sampled = magnitudes[::step]
    total = float(np.sum(sampled))
    if total <= 0:
        return DEFAULT_CENTROID_HZ
    indices = np.arange(0, len(magnitudes), step)[: len(sampled)]
    freqs = indices / len(magnitudes) * (sr / 2)
    return float(np.sum(freqs * sampled) / total)


def segments(y: np.ndarray, sr: int, density: SegmentDensity = SegmentDensity.STANDARD) -> tuple[Segment, ...]:
    """Split the signal into equal slices with energy and loudness (dBFS)."""
    count = SEGMENT_COUNTS[density]
    if len(y) == 0 or sr <= 0:
        return ()

    bounds = np.linspace(0, len(y), count + 1).astype(int)
    result = []
    for start, end in zip(bounds[:-1], bounds[1:]):
        level = rms(y[start:end])
        result.append(
            Segment(
                start=start / sr,
                end=end / sr,
                energy=float(np.clip(level * 5.0, 0.0, 1.0)),
                loudness=float(20.0 * np.log10(level + 1e-4)),
            )
        )
    return tuple(result)
