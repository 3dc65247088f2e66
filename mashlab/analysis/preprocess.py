"""Decoding, downmixing, resampling and windowing ahead of feature extraction."""

from __future__ import annotations

import io
from dataclasses import dataclass

import numpy as np

from mashlab.core.constants import (
    FULL_WINDOW_SECONDS,
    HIGH_PRECISION_WINDOW_SECONDS,
    QUICK_WINDOW_SECONDS,
    TARGET_SAMPLE_RATE,
)
from mashlab.core.models import AnalysisMode


@dataclass(frozen=True)
class PreparedSignal:
    """Mono signal at the analysis rate, cut to the analysis window."""

    signal: np.ndarray
    full_signal: np.ndarray
    sample_rate: int
    analyzed_duration: float


def decode_audio(data: bytes, sample_rate: int = TARGET_SAMPLE_RATE) -> tuple[np.ndarray, int]:
    """Decode an in-memory audio file to a mono float signal.

    Raises:
        ValueError: If the buffer holds no audio
    """
    import warnings

    import librosa

    # Suppress librosa/audioread warnings for corrupted files
    warnings.filterwarnings("ignore", category=UserWarning, module="librosa")

    y, sr = librosa.load(io.BytesIO(data), sr=sample_rate, mono=True)
    if len(y) == 0:
        raise ValueError("Empty audio file")
    return y, int(sr)


def to_mono(samples: np.ndarray) -> np.ndarray:
    """Average channels of a (channels, n) or (n, channels) array."""
    samples = np.asarray(samples, dtype=np.float32)
    if samples.ndim == 1:
        return samples
    # Channels are the shorter axis
    axis = 0 if samples.shape[0] <= samples.shape[1] else 1
    return np.mean(samples, axis=axis).astype(np.float32)


def window_for_mode(mode: AnalysisMode) -> float:
    if mode is AnalysisMode.QUICK:
        return QUICK_WINDOW_SECONDS
    if mode is AnalysisMode.HIGH_PRECISION:
        return HIGH_PRECISION_WINDOW_SECONDS
    return FULL_WINDOW_SECONDS


def prepare_signal(
    samples: np.ndarray,
    sample_rate: int,
    mode: AnalysisMode = AnalysisMode.FULL,
    target_rate: int = TARGET_SAMPLE_RATE,
) -> PreparedSignal:
    """Downmix, resample to ``target_rate`` and cut the analysis window.

    Quick mode takes a window centred on the middle of the track (intros are
    often beatless); the other modes read from the start.
    """
    y = to_mono(samples)

    if sample_rate != target_rate and len(y) > 0:
        import librosa

        y = librosa.resample(y, orig_sr=sample_rate, target_sr=target_rate)
    sr = target_rate

    full = y
    window = int(window_for_mode(mode) * sr)
    if len(y) > window:
        if mode is AnalysisMode.QUICK:
            start = max(0, len(y) // 2 - window // 2)
        else:
            start = 0
        y = y[start : start + window]

    return PreparedSignal(signal=y, full_signal=full, sample_rate=sr, analyzed_duration=len(y) / sr if sr else 0.0)
