"""Camelot wheel: key normalization and harmonic compatibility tiers.

Keys are written in short form: ``"C"``, ``"F#"`` for major, ``"Am"``,
``"C#m"`` for minor. Flats, long names (``"A minor"``) and Camelot codes
(``"8A"``) are accepted on input and normalized to sharps.
"""

from __future__ import annotations

import re
from enum import Enum

CHROMATIC_ROOTS = ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")

ENHARMONIC = {
    "DB": "C#",
    "EB": "D#",
    "GB": "F#",
    "AB": "G#",
    "BB": "A#",
    "CB": "B",
    "FB": "E",
    "E#": "F",
    "B#": "C",
}

# Camelot number -> key, per ring. "A" is the minor ring, "B" the major ring.
MINOR_RING = ("Am", "Em", "Bm", "F#m", "C#m", "G#m", "D#m", "A#m", "Fm", "Cm", "Gm", "Dm")
MAJOR_RING = ("C", "G", "D", "A", "E", "B", "F#", "C#", "G#", "D#", "A#", "F")

_KEY_TO_CAMELOT: dict[str, tuple[int, str]] = {}
for _i, _key in enumerate(MINOR_RING):
    _KEY_TO_CAMELOT[_key] = (_i + 1, "A")
for _i, _key in enumerate(MAJOR_RING):
    _KEY_TO_CAMELOT[_key] = (_i + 1, "B")

_KEY_RE = re.compile(r"^\s*([A-Ga-g])([#b♯♭]?)\s*(.*?)\s*$")
_CAMELOT_RE = re.compile(r"^\s*(1[0-2]|[1-9])\s*([ABab])\s*$")
_MINOR_SUFFIXES = {"m", "min", "minor", "-", "mi"}
_MAJOR_SUFFIXES = {"", "maj", "major", "ma", "M"}


class HarmonicTier(Enum):
    """Harmonic relationship between two keys, best first."""

    TIER_1 = "tier-1"  # same key
    TIER_2 = "tier-2"  # adjacent on the same ring
    TIER_3 = "tier-3"  # relative major/minor
    TIER_4 = "tier-4"  # two steps on the same ring
    TIER_5 = "tier-5"  # diagonal: other ring, one step
    TIER_6 = "tier-6"  # incompatible or unknown

    @property
    def rank(self) -> int:
        return int(self.value.split("-")[1])


TIER_SCORES = {
    HarmonicTier.TIER_1: 1.0,
    HarmonicTier.TIER_2: 0.95,
    HarmonicTier.TIER_3: 0.90,
    HarmonicTier.TIER_4: 0.80,
    HarmonicTier.TIER_5: 0.70,
    HarmonicTier.TIER_6: 0.30,
}


def _normalize_root(letter: str, accidental: str) -> str | None:
    accidental = accidental.replace("♯", "#").replace("♭", "b")
    root = letter.upper() + accidental
    upper = root.upper()
    if upper in ENHARMONIC:
        return ENHARMONIC[upper]
    return root if root in CHROMATIC_ROOTS else None


def key_root(key: str | None) -> str | None:
    """Return the sharp-spelled chromatic root of a key name, or None."""
    if not key:
        return None
    normalized = normalize_key(key)
    if normalized is None:
        return None
    return normalized[:-1] if normalized.endswith("m") else normalized


def is_recognized_key(key: str | None) -> bool:
    """True when the key's root is one of the twelve chromatic roots."""
    return key_root(key) is not None


def normalize_key(key: str | None) -> str | None:
    """Normalize a key name or Camelot code to short sharp form.

    Returns:
        ``"C#m"``-style name, or None if the input is not a key.
    """
    if not key:
        return None

    camelot = _CAMELOT_RE.match(key)
    if camelot:
        return camelot_to_key(key)

    match = _KEY_RE.match(key)
    if match is None:
        return None
    letter, accidental, suffix = match.groups()
    root = _normalize_root(letter, accidental)
    if root is None:
        return None

    if suffix in _MAJOR_SUFFIXES:
        return root
    if suffix.lower() in _MINOR_SUFFIXES:
        return f"{root}m"
    if suffix.lower() in {s.lower() for s in _MAJOR_SUFFIXES}:
        return root
    return None


def key_to_camelot(key: str | None) -> str | None:
    """Return the Camelot code (e.g. ``"8A"``) for a key, or None."""
    position = _position(key)
    if position is None:
        return None
    number, ring = position
    return f"{number}{ring}"


def camelot_to_key(code: str) -> str | None:
    """Return the short key name for a Camelot code, or None."""
    match = _CAMELOT_RE.match(code)
    if match is None:
        return None
    number = int(match.group(1))
    ring = MINOR_RING if match.group(2).upper() == "A" else MAJOR_RING
    return ring[number - 1]


def _position(key: str | None) -> tuple[int, str] | None:
    normalized = normalize_key(key)
    if normalized is None:
        return None
    return _KEY_TO_CAMELOT.get(normalized)


def _wrap(number: int) -> int:
    return (number - 1) % 12 + 1


def _circular_distance(a: int, b: int) -> int:
    diff = abs(a - b) % 12
    return min(diff, 12 - diff)


def compatible_camelot(code: str) -> list[str]:
    """Camelot codes that mix cleanly with ``code``: itself, +-1 and relative."""
    match = _CAMELOT_RE.match(code)
    if match is None:
        return []
    number = int(match.group(1))
    ring = match.group(2).upper()
    other = "B" if ring == "A" else "A"
    return [
        f"{number}{ring}",
        f"{_wrap(number - 1)}{ring}",
        f"{_wrap(number + 1)}{ring}",
        f"{number}{other}",
    ]


def compatible_keys(key: str) -> list[str]:
    """Key names that mix cleanly with ``key``."""
    code = key_to_camelot(key)
    if code is None:
        return []
    return [k for k in (camelot_to_key(c) for c in compatible_camelot(code)) if k is not None]


def harmonic_tier(key1: str | None, key2: str | None) -> HarmonicTier:
    """Classify the harmonic relationship between two keys.

    Distances are measured around the wheel in either direction, so the
    result does not depend on argument order.
    """
    pos1 = _position(key1)
    pos2 = _position(key2)
    if pos1 is None or pos2 is None:
        return HarmonicTier.TIER_6

    (num1, ring1), (num2, ring2) = pos1, pos2
    distance = _circular_distance(num1, num2)

    if ring1 == ring2:
        if distance == 0:
            return HarmonicTier.TIER_1
        if distance == 1:
            return HarmonicTier.TIER_2
        if distance == 2:
            return HarmonicTier.TIER_4
        return HarmonicTier.TIER_6

    if distance == 0:
        return HarmonicTier.TIER_3
    if distance == 1:
        return HarmonicTier.TIER_5
    return HarmonicTier.TIER_6


def key_score(key1: str | None, key2: str | None) -> float:
    """Score in [0.3, 1.0] for how well two keys mix."""
    return TIER_SCORES[harmonic_tier(key1, key2)]


def are_keys_compatible(key1: str | None, key2: str | None) -> bool:
    """True for same, adjacent or relative keys."""
    return harmonic_tier(key1, key2).rank <= 3
