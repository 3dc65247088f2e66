"""Feature extraction: tempo, key, energy, danceability and segments."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

import numpy as np

from mashlab.analysis import features
from mashlab.analysis.preprocess import decode_audio, prepare_signal
from mashlab.analysis.strategies import (
    KEY_STRATEGIES,
    TEMPO_STRATEGIES,
    KeyStrategy,
    TempoStrategy,
    estimate_key,
    estimate_tempo,
)
from mashlab.core.models import AudioInput, BeatStorage, ExtractionOptions, ExtractionResult

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]


def _no_progress(percent: int, status: str) -> None:
    pass


class FeatureExtractor:
    """Turns decoded audio into an ExtractionResult.

    Extraction never raises: a failure at any stage is logged and reported
    as ``ExtractionResult.placeholder()`` (BPM 0, key "Unknown").
    """

    def __init__(
        self,
        options: ExtractionOptions | None = None,
        tempo_strategies: Sequence[TempoStrategy] = TEMPO_STRATEGIES,
        key_strategies: Sequence[KeyStrategy] = KEY_STRATEGIES,
    ) -> None:
        self.options = options or ExtractionOptions()
        self.tempo_strategies = tempo_strategies
        self.key_strategies = key_strategies

    def extract(
        self,
        samples: np.ndarray,
        sample_rate: int,
        duration: float | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ExtractionResult:
        """Extract features from raw samples.

        Args:
            samples: Mono or multi-channel samples
            sample_rate: Sample rate of ``samples``
            duration: Track duration in seconds (derived from samples if None)
            on_progress: Called with (percent, status) at each stage

        Returns:
            ExtractionResult, or the placeholder result on failure
        """
        report = on_progress or _no_progress
        options = self.options
        try:
            report(5, "Preparing audio")
            prepared = prepare_signal(samples, sample_rate, options.mode, options.target_sample_rate)
            sr = prepared.sample_rate
            if duration is None:
                duration = len(prepared.full_signal) / sr
            if len(prepared.signal) == 0:
                raise ValueError("Empty audio signal")

            report(10, "Detecting tempo")
            tempo = estimate_tempo(prepared.signal, sr, self.tempo_strategies)
            if tempo is None:
                raise ValueError("No tempo strategy produced an estimate")

            report(40, "Detecting key")
            key = estimate_key(prepared.signal, sr, self.key_strategies)
            if key is None:
                raise ValueError("No key strategy produced an estimate")

            report(60, "Measuring energy")
            beat_count = len(tempo.beats)
            energy = features.energy(prepared.signal)
            danceability = features.danceability(beat_count, prepared.analyzed_duration, tempo.bpm)
            centroid = features.spectral_centroid(prepared.signal, sr)

            report(80, "Building segments")
            segments = features.segments(prepared.full_signal, sr, options.segment_density)

            report(95, "Finalizing")
            result = ExtractionResult(
                bpm=tempo.bpm,
                key=key.key,
                confidence=tempo.confidence,
                key_confidence=key.confidence,
                energy=energy,
                danceability=danceability,
                beat_count=0 if options.beat_storage is BeatStorage.NONE else beat_count,
                duration=float(duration),
                segments=segments,
                analysis_mode=options.mode,
                analyzed_duration=prepared.analyzed_duration,
                spectral_centroid=centroid,
                beats=tempo.beats if options.beat_storage is BeatStorage.FULL else None,
            )
            logger.debug(
                "Extracted %.1f BPM (%s), key %s (%s)", tempo.bpm, tempo.method, key.key, key.method
            )
        except Exception as e:
            logger.warning("Feature extraction failed: %s", e)
            return ExtractionResult.placeholder(float(duration or 0.0), options.mode)

        report(100, "Complete")
        return result

    def extract_bytes(
        self, data: bytes, filename: str = "", on_progress: ProgressCallback | None = None
    ) -> ExtractionResult:
        """Decode an in-memory audio file and extract its features."""
        report = on_progress or _no_progress
        report(5, "Decoding audio")
        try:
            y, sr = decode_audio(data, self.options.target_sample_rate)
        except Exception as e:
            logger.warning("Could not decode %s: %s", filename or "<bytes>", e)
            return ExtractionResult.placeholder(analysis_mode=self.options.mode)
        return self.extract(y, sr, len(y) / sr, report)

    def extract_input(self, audio: AudioInput, on_progress: ProgressCallback | None = None) -> ExtractionResult:
        """Worker entry point: extract features for one queued file."""
        return self.extract_bytes(audio.data, audio.filename, on_progress)
