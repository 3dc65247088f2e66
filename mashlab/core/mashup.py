"""Mashup compatibility engine: pruning, scoring, classification and ranking.

Pairs are pruned with BPM-sorted windows before scoring:
  1. Direct: |bpm1 - bpm2| within the selected tolerance (2/5/10/15 BPM)
  2. Half/double time: twice the slower tempo within 3 BPM of the faster one

Survivors are scored (0.4 BPM proximity + 0.4 key tier + 0.1 energy
similarity + 0.1 mean confidence), classified and ranked by a stable sort
on the composite score, so ties keep enumeration order.
"""

from __future__ import annotations

import bisect
import logging
import time
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass

from mashlab.core.keys import HarmonicTier, are_keys_compatible, harmonic_tier, key_score
from mashlab.core.models import (
    BPMTolerance,
    MashupCandidate,
    MashupCategory,
    MatchBadge,
    MixDifficulty,
    Track,
)
from mashlab.utils.folders import folder_of

TOLERANCE_BPM = {
    BPMTolerance.STRICT: 2.0,
    BPMTolerance.NORMAL: 5.0,
    BPMTolerance.FLEXIBLE: 10.0,
    BPMTolerance.CREATIVE: 15.0,
}

HALF_TIME_TOLERANCE = 3.0
"""Sub-tolerance for half/double-time pairs, independent of TOLERANCE_BPM."""

SEMITONE_PERCENT = 5.95
NATURAL_PITCH_PERCENT = 6.0
PROGRESS_EVERY = 50

# Window widening so float rounding can never drop a boundary pair
_EPSILON = 1e-9

# (max difference, score), checked in order
_BPM_SCORE_STEPS = (
    (0.0, 1.0),
    (1.0, 0.95),
    (2.0, 0.85),
    (3.0, 0.75),
    (5.0, 0.60),
    (10.0, 0.30),
    (15.0, 0.15),
)

_TIER_REASONS = {
    HarmonicTier.TIER_1: "same key",
    HarmonicTier.TIER_2: "adjacent key",
    HarmonicTier.TIER_3: "relative key",
    HarmonicTier.TIER_4: "energy boost",
    HarmonicTier.TIER_5: "diagonal key",
    HarmonicTier.TIER_6: "key clash",
}


@dataclass(frozen=True)
class BPMCompatibility:
    compatible: bool
    difference: float
    method: str  # "direct", "half-time", "double-time" or "none"
    score: float


@dataclass(frozen=True)
class PitchAdjustment:
    percent: float
    semitones: float
    direction: str  # "speed up", "slow down" or "match"
    is_natural: bool


@dataclass(frozen=True)
class MashupReport:
    candidates: list[MashupCandidate]
    comparisons: int
    skipped: int

    @property
    def total_possible(self) -> int:
        return self.comparisons + self.skipped


@dataclass(frozen=True)
class MashupStats:
    """Rough cost estimate of a mashup search over ``track_count`` tracks."""

    brute_force: int
    optimized: int
    savings: int
    speedup: float
    estimated_time_ms: float


# ------------------------------------------------------------------
# BPM
# ------------------------------------------------------------------


def tolerance_to_max_bpm(tolerance: BPMTolerance) -> float:
    return TOLERANCE_BPM[tolerance]


def bpm_proximity_score(difference: float) -> float:
    """Piecewise score of an absolute BPM difference: 1.0 at 0, 0.0 beyond 15."""
    difference = abs(difference)
    for limit, score in _BPM_SCORE_STEPS:
        if difference <= limit:
            return score
    return 0.0


def is_half_double_time(bpm1: float, bpm2: float) -> bool:
    """True when twice the slower tempo is within 3 BPM of the faster one."""
    slow, fast = sorted((bpm1, bpm2))
    return abs(slow * 2 - fast) <= HALF_TIME_TOLERANCE


def bpm_compatibility(bpm1: float, bpm2: float, max_difference: float = 15.0) -> BPMCompatibility:
    difference = abs(bpm1 - bpm2)
    score = bpm_proximity_score(difference)
    if difference <= max_difference:
        return BPMCompatibility(True, difference, "direct", score)
    if is_half_double_time(bpm1, bpm2):
        method = "half-time" if bpm2 < bpm1 else "double-time"
        return BPMCompatibility(True, difference, method, score)
    return BPMCompatibility(False, difference, "none", score)


def bpm_adjustment(source_bpm: float, target_bpm: float) -> PitchAdjustment:
    """Pitch change needed to play ``source_bpm`` at ``target_bpm``."""
    if source_bpm <= 0:
        return PitchAdjustment(0.0, 0.0, "match", True)
    percent = (target_bpm - source_bpm) / source_bpm * 100
    direction = "speed up" if percent > 0 else "slow down" if percent < 0 else "match"
    return PitchAdjustment(
        percent=abs(percent),
        semitones=abs(percent / SEMITONE_PERCENT),
        direction=direction,
        is_natural=abs(percent) <= NATURAL_PITCH_PERCENT,
    )


# ------------------------------------------------------------------
# Scoring and classification
# ------------------------------------------------------------------


def composite_score(track1: Track, track2: Track) -> float:
    """Composite compatibility in [0, 1]."""
    bpm = bpm_proximity_score(track1.bpm - track2.bpm)
    key = key_score(track1.key, track2.key)
    energy = max(0.0, 1.0 - abs(track1.energy - track2.energy))
    confidence = (track1.confidence + track2.confidence) / 2
    return bpm * 0.40 + key * 0.40 + energy * 0.10 + confidence * 0.10


def perfect_match_score(track1: Track, track2: Track) -> int:
    """Composite score on a 0-100 scale."""
    return round(composite_score(track1, track2) * 100)


def category_for(score: float) -> MashupCategory:
    if score >= 0.8:
        return MashupCategory.EXCELLENT
    if score >= 0.6:
        return MashupCategory.GOOD
    if score >= 0.4:
        return MashupCategory.FAIR
    return MashupCategory.POOR


def match_badge(bpm_difference: float, tier: HarmonicTier) -> MatchBadge:
    rank = tier.rank
    if bpm_difference == 0 and rank == 1:
        return MatchBadge.PERFECT
    if bpm_difference <= 1 and rank <= 2:
        return MatchBadge.EXCELLENT
    if bpm_difference <= 3 and rank <= 3:
        return MatchBadge.GREAT
    if bpm_difference == 0:
        return MatchBadge.BEATMATCHABLE
    if rank == 1:
        return MatchBadge.HARMONIC
    if bpm_difference <= 5 and tier is not HarmonicTier.TIER_6:
        return MatchBadge.GOOD
    return MatchBadge.FAIR


def mix_difficulty(bpm_difference: float, tier: HarmonicTier, energy_difference: float) -> MixDifficulty:
    rank = tier.rank
    if bpm_difference <= 2 and rank <= 2 and energy_difference <= 0.15:
        return MixDifficulty.BEGINNER
    if bpm_difference <= 5 or rank <= 3:
        return MixDifficulty.INTERMEDIATE
    if bpm_difference <= 10 or tier is not HarmonicTier.TIER_6:
        return MixDifficulty.ADVANCED
    return MixDifficulty.EXPERT


def describe_pair(bpm_difference: float, tier: HarmonicTier, half_double: bool = False) -> str:
    if bpm_difference == 0:
        tempo = "Identical BPM"
    elif bpm_difference <= 1:
        tempo = "Very close BPM"
    elif bpm_difference <= 3:
        tempo = "Similar BPM"
    elif bpm_difference <= 5:
        tempo = "Moderate BPM difference"
    elif half_double:
        tempo = "Half/double-time BPM"
    else:
        tempo = "Large BPM difference"
    return f"{tempo}, {_TIER_REASONS[tier]}"


def build_candidate(track1: Track, track2: Track) -> MashupCandidate:
    """Score and classify one pair."""
    difference = abs(track1.bpm - track2.bpm)
    tier = harmonic_tier(track1.key, track2.key)
    energy_difference = abs(track1.energy - track2.energy)
    pitch = bpm_adjustment(track1.bpm, track2.bpm)
    score = composite_score(track1, track2)
    return MashupCandidate(
        track1=track1,
        track2=track2,
        score=score,
        category=category_for(score),
        bpm_difference=difference,
        pitch_adjust_percent=pitch.percent,
        pitch_adjust_semitones=pitch.semitones,
        is_natural_pitch=pitch.is_natural,
        match_badge=match_badge(difference, tier),
        harmonic_tier=tier,
        mix_difficulty=mix_difficulty(difference, tier, energy_difference),
        perfect_match_score=round(score * 100),
        is_cross_folder=folder_of(track1) != folder_of(track2),
        reason=describe_pair(difference, tier, is_half_double_time(track1.bpm, track2.bpm)),
    )


# ------------------------------------------------------------------
# Pruning
# ------------------------------------------------------------------


def candidate_pairs(bpms: list[float], max_difference: float) -> Iterator[tuple[int, int]]:
    """Index pairs (i, j), i < j, that pass the BPM envelope, in enumeration order.

    Every pair with |bpm_i - bpm_j| <= max_difference is yielded, as is
    every half/double-time pair.
    """
    order = sorted(range(len(bpms)), key=lambda i: bpms[i])
    sorted_bpms = [bpms[i] for i in order]

    def window(low: float, high: float) -> list[int]:
        lo = bisect.bisect_left(sorted_bpms, low - _EPSILON)
        hi = bisect.bisect_right(sorted_bpms, high + _EPSILON)
        return order[lo:hi]

    for i, bpm in enumerate(bpms):
        partners: set[int] = set()
        partners.update(window(bpm - max_difference, bpm + max_difference))
        partners.update(window((bpm - HALF_TIME_TOLERANCE) / 2, (bpm + HALF_TIME_TOLERANCE) / 2))
        partners.update(window(bpm * 2 - HALF_TIME_TOLERANCE, bpm * 2 + HALF_TIME_TOLERANCE))
        for j in sorted(p for p in partners if p > i):
            if abs(bpm - bpms[j]) <= max_difference or is_half_double_time(bpm, bpms[j]):
                yield i, j


def _folder_pair_matches(track1: Track, track2: Track, folder1: str | None, folder2: str | None) -> bool:
    f1, f2 = folder_of(track1), folder_of(track2)
    if folder1 and folder2:
        return (f1, f2) in ((folder1, folder2), (folder2, folder1))
    if folder1:
        return folder1 in (f1, f2)
    if folder2:
        return folder2 in (f1, f2)
    return True


def find_mashups(
    tracks: Iterable[Track],
    tolerance: BPMTolerance = BPMTolerance.NORMAL,
    min_score: float = 0.3,
    require_key_compatibility: bool = False,
    cross_folder_only: bool = False,
    folder1: str | None = None,
    folder2: str | None = None,
    on_progress: Callable[[int, int], None] | None = None,
) -> MashupReport:
    """Find and rank compatible pairs among analyzed tracks.

    Args:
        tracks: Library tracks (only analyzed ones take part)
        tolerance: Direct BPM tolerance envelope
        min_score: Composite score below which pairs are dropped
        require_key_compatibility: Keep only same, adjacent or relative keys
        cross_folder_only: Keep only pairs from different folders
        folder1: Pin one side of each pair to this folder
        folder2: Pin the other side to this folder
        on_progress: Called as (comparisons, estimated_total) every 50 comparisons

    Returns:
        MashupReport with candidates sorted by descending score
    """
    valid = [t for t in tracks if t.is_analyzed]
    if len(valid) < 2:
        logging.info("[Mashup] Need at least 2 analyzed tracks")
        return MashupReport([], 0, 0)

    start = time.time()
    max_difference = tolerance_to_max_bpm(tolerance)
    estimated_total = len(valid) * 20
    total_possible = len(valid) * (len(valid) - 1) // 2

    candidates: list[MashupCandidate] = []
    comparisons = 0
    for i, j in candidate_pairs([t.bpm for t in valid], max_difference):
        track1, track2 = valid[i], valid[j]
        if cross_folder_only and folder_of(track1) == folder_of(track2):
            continue
        if not _folder_pair_matches(track1, track2, folder1, folder2):
            continue
        if require_key_compatibility and not are_keys_compatible(track1.key, track2.key):
            continue

        comparisons += 1
        candidate = build_candidate(track1, track2)
        if candidate.score >= min_score:
            candidates.append(candidate)
        if on_progress is not None and comparisons % PROGRESS_EVERY == 0:
            on_progress(comparisons, estimated_total)

    # Stable: equal scores keep enumeration order
    candidates.sort(key=lambda c: c.score, reverse=True)

    skipped = total_possible - comparisons
    logging.info(
        f"[Mashup] {len(candidates)} mashups from {comparisons} comparisons "
        f"({skipped} skipped, {time.time() - start:.2f}s)"
    )
    return MashupReport(candidates, comparisons, skipped)


# ------------------------------------------------------------------
# Filters and summaries
# ------------------------------------------------------------------


def filter_cross_folder(candidates: Iterable[MashupCandidate]) -> list[MashupCandidate]:
    return [c for c in candidates if c.is_cross_folder]


def filter_by_folder_pair(
    candidates: Iterable[MashupCandidate], folder1: str, folder2: str
) -> list[MashupCandidate]:
    """Candidates joining ``folder1`` and ``folder2``, in either direction."""
    return [c for c in candidates if _folder_pair_matches(c.track1, c.track2, folder1, folder2)]


def filter_mix_ready(candidates: Iterable[MashupCandidate]) -> list[MashupCandidate]:
    """Pairs that can be mixed right away: close tempo, compatible key, confident, audio loaded."""
    ready = []
    for c in candidates:
        if c.bpm_difference > 3 or c.harmonic_tier is HarmonicTier.TIER_6:
            continue
        if abs(c.track1.energy - c.track2.energy) >= 0.2:
            continue
        if (c.track1.confidence + c.track2.confidence) / 2 < 0.8:
            continue
        if not (c.track1.has_audio and c.track2.has_audio):
            continue
        ready.append(c)
    return ready


def category_counts(candidates: Iterable[MashupCandidate]) -> dict[MashupCategory, int]:
    counts = {category: 0 for category in MashupCategory}
    for c in candidates:
        counts[c.category] += 1
    return counts


def mashup_stats(track_count: int) -> MashupStats:
    brute_force = track_count * (track_count - 1) // 2
    per_track = min(20.0, track_count / 5)
    optimized = int(track_count * per_track)
    return MashupStats(
        brute_force=brute_force,
        optimized=optimized,
        savings=brute_force - optimized,
        speedup=max(1.0, brute_force / (optimized or 1)),
        estimated_time_ms=optimized * 0.5,
    )
