"""Ordered tempo and key estimation strategies.

Each strategy either returns a typed estimate or ``None`` to hand over to the
next one in its chain. The chains are fixed lists, primary first:

    TEMPO_STRATEGIES: LibrosaBeatTracker -> OnsetIntervalTempo
    KEY_STRATEGIES:   ChromaKeyEstimator -> DefaultKey
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

import numpy as np

from mashlab.core.constants import DEFAULT_TEMPO, MAX_TEMPO, MIN_TEMPO, ONSET_HOP_LENGTH
from mashlab.core.keys import CHROMATIC_ROOTS

logger = logging.getLogger(__name__)

# Krumhansl-Schmuckler key profiles, starting at the tonic
MAJOR_PROFILE = np.array([6.35, 2.23, 3.48, 2.33, 4.38, 4.09, 2.52, 5.19, 2.39, 3.66, 2.29, 2.88])
MINOR_PROFILE = np.array([6.33, 2.68, 3.52, 5.38, 2.60, 3.53, 2.54, 4.75, 3.98, 2.69, 3.34, 3.17])


@dataclass(frozen=True)
class TempoEstimate:
    bpm: float
    confidence: float
    method: str
    beats: tuple[float, ...] = field(default=(), repr=False)  # beat times in seconds


@dataclass(frozen=True)
class KeyEstimate:
    key: str
    confidence: float
    method: str


class TempoStrategy(Protocol):
    name: str

    def estimate(self, y: np.ndarray, sr: int) -> TempoEstimate | None: ...


class KeyStrategy(Protocol):
    name: str

    def estimate(self, y: np.ndarray, sr: int) -> KeyEstimate | None: ...


def beat_regularity(beat_times: np.ndarray) -> float:
    """Confidence from inter-beat regularity: 1 - coefficient of variation."""
    if len(beat_times) < 3:
        return 0.0
    intervals = np.diff(beat_times)
    mean = float(np.mean(intervals))
    if mean <= 0:
        return 0.0
    return float(np.clip(1.0 - float(np.std(intervals)) / mean, 0.0, 1.0))


def fold_tempo(bpm: float) -> float:
    """Double or halve until the tempo falls in the accepted range."""
    if bpm <= 0:
        return bpm
    while bpm < MIN_TEMPO:
        bpm *= 2
    while bpm > MAX_TEMPO:
        bpm /= 2
    return bpm


class LibrosaBeatTracker:
    """Dynamic-programming beat tracker from librosa."""

    name = "beat_track"

    def estimate(self, y: np.ndarray, sr: int) -> TempoEstimate | None:
        import librosa

        tempo, beat_frames = librosa.beat.beat_track(y=y, sr=sr)
        bpm = float(np.atleast_1d(tempo)[0])
        if not MIN_TEMPO <= bpm <= MAX_TEMPO:
            return None

        beat_times = librosa.frames_to_time(beat_frames, sr=sr)
        return TempoEstimate(
            bpm=round(bpm, 1),
            confidence=beat_regularity(beat_times),
            method=self.name,
            beats=tuple(float(t) for t in beat_times),
        )


class OnsetIntervalTempo:
    """Energy-onset fallback: tempo from the spacing of detected onsets."""

    name = "onset_interval"

    ENERGY_RATIO = 1.5  # versus previous frame
    MIN_ENERGY = 0.01
    AVERAGE_RATIO = 1.3  # versus rolling mean
    AVERAGE_FRAMES = 10
    MIN_GAP_S = 0.1
    MIN_ONSETS = 4
    INTERVAL_TOLERANCE = 0.3  # fraction of the median interval
    MAX_CONFIDENCE = 0.8
    IRREGULAR_CONFIDENCE = 0.2  # onsets found but no steady spacing

    def __init__(self, hop_length: int = ONSET_HOP_LENGTH) -> None:
        self.hop_length = hop_length

    def frame_energies(self, y: np.ndarray) -> np.ndarray:
        n_frames = len(y) // self.hop_length
        if n_frames == 0:
            return np.zeros(0)
        frames = np.asarray(y[: n_frames * self.hop_length], dtype=np.float64).reshape(n_frames, self.hop_length)
        return np.mean(frames**2, axis=1)

    def detect_onsets(self, y: np.ndarray, sr: int) -> list[float]:
        """Onset times in seconds."""
        energies = self.frame_energies(y)
        onsets: list[float] = []
        last_onset = -np.inf

        for i in range(1, len(energies)):
            energy = energies[i]
            history = energies[max(0, i - self.AVERAGE_FRAMES) : i]
            rolling = float(np.mean(history)) if len(history) else 0.0
            if (
                energy > energies[i - 1] * self.ENERGY_RATIO
                and energy > self.MIN_ENERGY
                and energy > rolling * self.AVERAGE_RATIO
            ):
                time = i * self.hop_length / sr
                if time - last_onset >= self.MIN_GAP_S:
                    onsets.append(time)
                    last_onset = time
        return onsets

    def estimate(self, y: np.ndarray, sr: int) -> TempoEstimate:
        onsets = self.detect_onsets(y, sr)
        if len(onsets) < self.MIN_ONSETS:
            return TempoEstimate(bpm=DEFAULT_TEMPO, confidence=0.0, method=self.name, beats=tuple(onsets))

        intervals = np.diff(onsets)
        median = float(np.median(intervals))
        valid = intervals[np.abs(intervals - median) <= median * self.INTERVAL_TOLERANCE]
        if len(valid) == 0 or median <= 0:
            return TempoEstimate(
                bpm=DEFAULT_TEMPO, confidence=self.IRREGULAR_CONFIDENCE, method=self.name, beats=tuple(onsets)
            )

        bpm = fold_tempo(60.0 / float(np.mean(valid)))
        confidence = min(len(valid) / len(intervals), self.MAX_CONFIDENCE)
        return TempoEstimate(bpm=round(bpm, 1), confidence=confidence, method=self.name, beats=tuple(onsets))


def key_name(root_index: int, minor: bool) -> str:
    root = CHROMATIC_ROOTS[root_index % 12]
    return f"{root}m" if minor else root


class ChromaKeyEstimator:
    """Correlate the mean chroma vector with the 24 rotated key profiles."""

    name = "chroma_profile"

    def estimate(self, y: np.ndarray, sr: int) -> KeyEstimate | None:
        import librosa

        chroma = librosa.feature.chroma_stft(y=y, sr=sr)
        profile = np.mean(chroma, axis=1)
        if not np.any(profile > 0) or np.std(profile) == 0:
            return None

        best_corr = -np.inf
        best_key = None
        for root in range(12):
            for minor, template in ((False, MAJOR_PROFILE), (True, MINOR_PROFILE)):
                corr = float(np.corrcoef(profile, np.roll(template, root))[0, 1])
                if corr > best_corr:
                    best_corr = corr
                    best_key = key_name(root, minor)

        if best_key is None or not np.isfinite(best_corr):
            return None
        return KeyEstimate(key=best_key, confidence=float(np.clip(best_corr, 0.0, 1.0)), method=self.name)


class DefaultKey:
    """Last resort: C major with zero confidence."""

    name = "default"

    def estimate(self, y: np.ndarray, sr: int) -> KeyEstimate:
        return KeyEstimate(key="C", confidence=0.0, method=self.name)


TEMPO_STRATEGIES: tuple[TempoStrategy, ...] = (LibrosaBeatTracker(), OnsetIntervalTempo())
KEY_STRATEGIES: tuple[KeyStrategy, ...] = (ChromaKeyEstimator(), DefaultKey())


def estimate_tempo(
    y: np.ndarray, sr: int, strategies: Sequence[TempoStrategy] = TEMPO_STRATEGIES
) -> TempoEstimate | None:
    """Return the first tempo estimate of the chain, skipping strategies that raise."""
    for strategy in strategies:
        try:
            estimate = strategy.estimate(y, sr)
        except Exception as e:
            logger.debug("Tempo strategy %s failed: %s", strategy.name, e)
            continue
        if estimate is not None:
            return estimate
        logger.debug("Tempo strategy %s rejected the signal", strategy.name)
    return None


def estimate_key(
    y: np.ndarray, sr: int, strategies: Sequence[KeyStrategy] = KEY_STRATEGIES
) -> KeyEstimate | None:
    """Return the first key estimate of the chain, skipping strategies that raise."""
    for strategy in strategies:
        try:
            estimate = strategy.estimate(y, sr)
        except Exception as e:
            logger.debug("Key strategy %s failed: %s", strategy.name, e)
            continue
        if estimate is not None:
            return estimate
        logger.debug("Key strategy %s rejected the signal", strategy.name)
    return None
