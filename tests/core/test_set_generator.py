"""Tests for the set generator."""

from __future__ import annotations

import random
from collections.abc import Callable

import pytest

from mashlab.core.errors import InsufficientTracksError
from mashlab.core.models import EnergyCurve, Track
from mashlab.core.set_generator import (
    SetGenerator,
    SetPreferences,
    format_mix_time,
    target_energy,
)

FOLDERS = ["House", "Techno", "Disco"]


@pytest.fixture
def pool(make_track: Callable[..., Track]) -> list[Track]:
    """Thirty three-minute tracks with spread energy, BPM and folders."""
    rng = random.Random(3)
    keys = ["Am", "Em", "C", "G", "Dm", "F"]
    return [
        make_track(
            f"track_{i:02d}.mp3",
            bpm=round(rng.uniform(118, 130), 1),
            key=rng.choice(keys),
            energy=round(rng.uniform(0.3, 0.95), 2),
            folder_name=FOLDERS[i % 3],
        )
        for i in range(30)
    ]


class TestTargetEnergy:
    """Tests for target_energy()."""

    def test_build(self) -> None:
        rng = random.Random(0)
        assert target_energy(0.0, EnergyCurve.BUILD, rng) == pytest.approx(0.4)
        assert target_energy(0.125, EnergyCurve.BUILD, rng) == pytest.approx(0.5)
        assert target_energy(0.5, EnergyCurve.BUILD, rng) == pytest.approx(0.75)
        assert 0.85 <= target_energy(0.9, EnergyCurve.BUILD, rng) <= 0.9

    def test_steady(self) -> None:
        rng = random.Random(0)
        values = [target_energy(p / 10, EnergyCurve.STEADY, rng) for p in range(11)]
        assert all(0.6 <= v <= 0.7 for v in values)

    def test_rollercoaster(self) -> None:
        rng = random.Random(0)
        assert target_energy(0.0, EnergyCurve.ROLLERCOASTER, rng) == pytest.approx(0.5)
        assert target_energy(1 / 6, EnergyCurve.ROLLERCOASTER, rng) == pytest.approx(0.8)
        assert target_energy(0.5, EnergyCurve.ROLLERCOASTER, rng) == pytest.approx(0.2)


class TestScoring:
    """Tests for per-candidate scoring."""

    def test_format_mix_time(self) -> None:
        assert format_mix_time(135) == "2:15"
        assert format_mix_time(59.9) == "0:59"
        assert format_mix_time(600) == "10:00"

    def test_first_position_score(self, make_track: Callable[..., Track]) -> None:
        generator = SetGenerator(rng=random.Random(0))
        track = make_track(energy=0.4)

        # Energy on target, no previous track, unused folder
        assert generator.score_candidate(track, None, 0.0, []) == pytest.approx(0.4 + 0.4 + 0.05 + 0.1)

    def test_folder_diversity_and_variety(self, make_track: Callable[..., Track]) -> None:
        generator = SetGenerator(rng=random.Random(0))
        previous = make_track(folder_name="House")
        same = make_track(folder_name="House")
        other = make_track(folder_name="Techno")

        same_score = generator.score_candidate(same, previous, 0.0, ["House", "House"])
        other_score = generator.score_candidate(other, previous, 0.0, ["House", "House"])

        assert other_score - same_score == pytest.approx(0.1 + 0.04)

    def test_transition_quality(self, make_track: Callable[..., Track]) -> None:
        previous = make_track(bpm=120.0, key="Am")
        track = make_track(bpm=122.0, key="Em")

        harmonic = SetGenerator(SetPreferences(prefer_harmonic_mixing=True))
        tempo_only = SetGenerator(SetPreferences(prefer_harmonic_mixing=False))

        assert harmonic.transition_quality(previous, track) == pytest.approx((0.85 + 0.95) / 2)
        assert tempo_only.transition_quality(previous, track) == pytest.approx(0.85)


class TestGenerate:
    """Tests for SetGenerator.generate()."""

    def test_reaches_target_duration(self, pool: list[Track]) -> None:
        result = SetGenerator(SetPreferences(duration_minutes=60), rng=random.Random(1)).generate(pool)

        assert result.total_duration >= 60 * 60
        assert len(result.tracks) == 20
        assert len(result.transitions) == 19
        assert len({t.id for t in result.tracks}) == 20

    def test_stops_once_target_is_reached(self, make_track: Callable[..., Track]) -> None:
        """With uneven track lengths the set overshoots by less than its last track."""
        rng = random.Random(11)
        tracks = [
            make_track(
                f"track_{i:02d}.mp3",
                bpm=round(rng.uniform(118, 130), 1),
                energy=round(rng.uniform(0.3, 0.95), 2),
                duration=round(rng.uniform(120, 420), 1),
                folder_name=FOLDERS[i % 3],
            )
            for i in range(30)
        ]

        for seed in range(5):
            result = SetGenerator(SetPreferences(duration_minutes=60), rng=random.Random(seed)).generate(tracks)

            assert result.total_duration == pytest.approx(sum(t.duration for t in result.tracks))
            assert 3600 <= result.total_duration < 3600 + result.tracks[-1].duration

    def test_uses_every_track_when_short(self, pool: list[Track]) -> None:
        result = SetGenerator(SetPreferences(duration_minutes=600), rng=random.Random(1)).generate(pool[:5])

        assert len(result.tracks) == 5
        assert result.total_duration == pytest.approx(5 * 180)

    def test_seeded_generation_is_reproducible(self, pool: list[Track]) -> None:
        first = SetGenerator(rng=random.Random(9)).generate(pool)
        second = SetGenerator(rng=random.Random(9)).generate(pool)

        assert [t.name for t in first.tracks] == [t.name for t in second.tracks]

    def test_transitions_chain_tracks(self, pool: list[Track]) -> None:
        result = SetGenerator(rng=random.Random(4)).generate(pool)

        for transition, (before, after) in zip(result.transitions, zip(result.tracks, result.tracks[1:])):
            assert transition.from_track is before
            assert transition.to_track is after
            assert transition.bpm_diff == pytest.approx(abs(after.bpm - before.bpm))
            assert transition.mix_point == "2:15 → 0:18"

        assert result.energy_arc == tuple(t.energy for t in result.tracks)
        assert result.average_score == pytest.approx(
            sum(t.score for t in result.transitions) / len(result.transitions)
        )

    def test_starting_track(self, pool: list[Track]) -> None:
        result = SetGenerator(rng=random.Random(2)).generate(pool, starting_track=pool[7])
        assert result.tracks[0] is pool[7]
        assert pool[7] not in result.tracks[1:]

    def test_default_start_matches_curve(self, make_track: Callable[..., Track]) -> None:
        tracks = [make_track("hot.mp3", energy=0.9), make_track("warm.mp3", energy=0.42)]

        result = SetGenerator(rng=random.Random(0)).generate(tracks)

        assert result.tracks[0].name == "warm.mp3"

    def test_key_compatibility_flag(self, make_track: Callable[..., Track]) -> None:
        start = make_track("a.mp3", key="Am")
        clash = make_track("b.mp3", key="D#")

        result = SetGenerator(rng=random.Random(0)).generate([start, clash], starting_track=start)

        assert result.transitions[0].key_compatible is False

    def test_insufficient_tracks(self, make_track: Callable[..., Track]) -> None:
        generator = SetGenerator()
        with pytest.raises(InsufficientTracksError):
            generator.generate([make_track()])
        with pytest.raises(InsufficientTracksError):
            generator.generate([make_track(), make_track(is_analyzing=True)])
        with pytest.raises(InsufficientTracksError):
            generator.generate([make_track(), make_track(duration=0.0)])
