"""Greedy DJ set construction along a target energy curve."""

from __future__ import annotations

import logging
import math
import random
from collections.abc import Iterable
from dataclasses import dataclass

from mashlab.core.errors import InsufficientTracksError
from mashlab.core.keys import HarmonicTier, harmonic_tier, key_score
from mashlab.core.mashup import bpm_proximity_score
from mashlab.core.models import EnergyCurve, GeneratedSet, Track, Transition
from mashlab.utils.folders import folder_of

AVERAGE_TRACK_SECONDS = 180
"""Track length assumed when estimating how many positions a set has."""

TOP_CANDIDATES = 3


@dataclass(frozen=True)
class SetPreferences:
    duration_minutes: float = 60.0
    energy_curve: EnergyCurve = EnergyCurve.BUILD
    prefer_harmonic_mixing: bool = True
    avoid_back_to_back_folder: bool = True


def target_energy(progress: float, curve: EnergyCurve, rng: random.Random) -> float:
    """Energy the set should have at ``progress`` (0 = start, 1 = end)."""
    if curve is EnergyCurve.STEADY:
        return 0.65 + rng.random() * 0.1 - 0.05
    if curve is EnergyCurve.BUILD:
        if progress < 0.25:
            # Warm-up: 0.4 -> 0.6
            return 0.4 + (progress / 0.25) * 0.2
        if progress < 0.75:
            # Climb: 0.6 -> 0.9
            return 0.6 + ((progress - 0.25) / 0.5) * 0.3
        # Sustain near peak
        return 0.85 + rng.random() * 0.05
    # Rollercoaster: three half-cycles between 0.2 and 0.8
    return 0.5 + math.sin(progress * math.pi * 3) * 0.3


def format_mix_time(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}:{secs:02d}"


class SetGenerator:
    """Builds a set track by track.

    At each position every remaining track is scored on energy fit,
    transition quality from the previous track, folder diversity and folder
    variety; the next track is drawn uniformly from the top three.
    """

    def __init__(self, preferences: SetPreferences | None = None, rng: random.Random | None = None) -> None:
        self.preferences = preferences or SetPreferences()
        self.rng = rng or random.Random()

    def transition_quality(self, previous: Track, track: Track) -> float:
        bpm = bpm_proximity_score(track.bpm - previous.bpm)
        if not self.preferences.prefer_harmonic_mixing:
            return bpm
        return (bpm + key_score(previous.key, track.key)) / 2

    def score_candidate(
        self, track: Track, previous: Track | None, progress: float, used_folders: list[str]
    ) -> float:
        prefs = self.preferences
        score = 0.0

        # Energy fit (40%)
        energy_target = target_energy(progress, prefs.energy_curve, self.rng)
        score += max(0.0, 1.0 - abs(track.energy - energy_target) * 2) * 0.4

        # Transition from previous track (40%)
        if previous is not None:
            score += self.transition_quality(previous, track) * 0.4
        else:
            score += 0.4

        # Folder diversity (10%)
        if prefs.avoid_back_to_back_folder and previous is not None:
            if folder_of(track) != folder_of(previous):
                score += 0.1
        else:
            score += 0.05

        # Folder variety (10%)
        usage = used_folders.count(folder_of(track))
        score += max(0.0, 1.0 - usage * 0.2) * 0.1
        return score

    def generate(self, tracks: Iterable[Track], starting_track: Track | None = None) -> GeneratedSet:
        """Generate a set from analyzed tracks with a known duration.

        Raises:
            InsufficientTracksError: If fewer than two tracks are usable
        """
        valid = [t for t in tracks if t.is_analyzed and t.duration > 0]
        if len(valid) < 2:
            raise InsufficientTracksError("Need at least 2 valid tracks to generate a set")

        prefs = self.preferences
        target_seconds = prefs.duration_minutes * 60
        estimated_positions = max(1, math.ceil(target_seconds / AVERAGE_TRACK_SECONDS))

        if starting_track is not None:
            current = starting_track
        else:
            start_energy = target_energy(0.0, prefs.energy_curve, self.rng)
            current = min(valid, key=lambda t: abs(t.energy - start_energy))

        selected = [current]
        used_folders = [folder_of(current)]
        transitions: list[Transition] = []
        total_duration = current.duration
        available = [t for t in valid if t.id != current.id]

        while total_duration < target_seconds and available:
            progress = min(1.0, len(selected) / estimated_positions)
            scored = [
                (self.score_candidate(track, current, progress, used_folders), track) for track in available
            ]
            scored.sort(key=lambda pair: pair[0], reverse=True)
            score, chosen = self.rng.choice(scored[:TOP_CANDIDATES])

            transitions.append(
                Transition(
                    from_track=current,
                    to_track=chosen,
                    score=score,
                    bpm_diff=abs(chosen.bpm - current.bpm),
                    key_compatible=harmonic_tier(current.key, chosen.key) is not HarmonicTier.TIER_6,
                    mix_point=f"{format_mix_time(current.duration * 0.75)} → {format_mix_time(chosen.duration * 0.1)}",
                )
            )
            selected.append(chosen)
            used_folders.append(folder_of(chosen))
            total_duration += chosen.duration
            available.remove(chosen)
            current = chosen

        average = sum(t.score for t in transitions) / len(transitions) if transitions else 0.0
        logging.info(f"[SetGenerator] Set generated: {len(selected)} tracks, {total_duration / 60:.1f} min")
        return GeneratedSet(
            tracks=tuple(selected),
            transitions=tuple(transitions),
            total_duration=total_duration,
            energy_arc=tuple(t.energy for t in selected),
            average_score=average,
        )
