"""Data model shared by the analysis, library and mashup layers."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from mashlab.core.constants import MAX_VALID_BPM, TARGET_SAMPLE_RATE
from mashlab.core.keys import HarmonicTier, is_recognized_key


class AnalysisMode(Enum):
    """How much of a track the extractor looks at."""

    QUICK = "quick"  # 15 s centred window
    FULL = "full"  # first 30 s
    HIGH_PRECISION = "high-precision"  # first 45 s


class SegmentDensity(Enum):
    """Number of equal-length energy segments per track."""

    LIGHT = "light"
    STANDARD = "standard"
    DETAILED = "detailed"


class BeatStorage(Enum):
    """How much beat information an extraction result keeps."""

    NONE = "none"
    COUNT = "count"
    FULL = "full"


class BPMTolerance(Enum):
    """Named BPM tolerances for mashup search."""

    STRICT = "strict"
    NORMAL = "normal"
    FLEXIBLE = "flexible"
    CREATIVE = "creative"


class MashupCategory(Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class MatchBadge(Enum):
    PERFECT = "perfect"
    EXCELLENT = "excellent"
    GREAT = "great"
    GOOD = "good"
    BEATMATCHABLE = "beatmatchable"
    HARMONIC = "harmonic"
    FAIR = "fair"


class MixDifficulty(Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


class EnergyCurve(Enum):
    STEADY = "steady"
    BUILD = "build"
    ROLLERCOASTER = "rollercoaster"


class TaskStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class TrackSort(Enum):
    NAME = "name"
    BPM = "bpm"
    KEY = "key"
    ENERGY = "energy"
    CONFIDENCE = "confidence"
    DURATION = "duration"


class DuplicateKind(Enum):
    VERSION = "version"  # same base name, different version marker
    EXACT = "exact"  # same name, BPM and key


@dataclass(frozen=True)
class Segment:
    """Energy summary of one slice of a track."""

    start: float
    end: float
    energy: float
    loudness: float


@dataclass(frozen=True)
class TagMetadata:
    """Embedded tags read from the audio container."""

    title: str | None = None
    artist: str | None = None
    album: str | None = None
    year: int | None = None
    genre: tuple[str, ...] = ()
    bpm: float | None = None
    key: str | None = None

    @property
    def is_empty(self) -> bool:
        return all(
            value in (None, ())
            for value in (self.title, self.artist, self.album, self.year, self.genre, self.bpm, self.key)
        )


@dataclass(frozen=True)
class ExtractionResult:
    """Musical features extracted from one audio file."""

    bpm: float
    key: str
    confidence: float
    key_confidence: float = 0.0
    energy: float = 0.0
    danceability: float = 0.0
    beat_count: int = 0
    duration: float = 0.0
    segments: tuple[Segment, ...] = ()
    analysis_mode: AnalysisMode = AnalysisMode.FULL
    analyzed_duration: float = 0.0
    spectral_centroid: float = 0.0
    beats: tuple[float, ...] | None = None

    @classmethod
    def placeholder(
        cls, duration: float = 0.0, analysis_mode: AnalysisMode = AnalysisMode.FULL
    ) -> ExtractionResult:
        """Zero result reported when extraction fails."""
        return cls(bpm=0.0, key="Unknown", confidence=0.0, duration=duration, analysis_mode=analysis_mode)

    @property
    def is_valid(self) -> bool:
        """BPM within (0, 300] and a recognized key root."""
        return 0 < self.bpm <= MAX_VALID_BPM and is_recognized_key(self.key)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["analysis_mode"] = self.analysis_mode.value
        data["beats"] = list(self.beats) if self.beats is not None else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExtractionResult:
        beats = data.get("beats")
        return cls(
            bpm=float(data["bpm"]),
            key=str(data["key"]),
            confidence=float(data["confidence"]),
            key_confidence=float(data.get("key_confidence", 0.0)),
            energy=float(data.get("energy", 0.0)),
            danceability=float(data.get("danceability", 0.0)),
            beat_count=int(data.get("beat_count", 0)),
            duration=float(data.get("duration", 0.0)),
            segments=tuple(Segment(**seg) for seg in data.get("segments", [])),
            analysis_mode=AnalysisMode(data.get("analysis_mode", AnalysisMode.FULL.value)),
            analyzed_duration=float(data.get("analyzed_duration", 0.0)),
            spectral_centroid=float(data.get("spectral_centroid", 0.0)),
            beats=tuple(beats) if beats is not None else None,
        )


@dataclass(frozen=True)
class ExtractionOptions:
    """Per-run extraction settings."""

    mode: AnalysisMode = AnalysisMode.FULL
    segment_density: SegmentDensity = SegmentDensity.STANDARD
    beat_storage: BeatStorage = BeatStorage.COUNT
    target_sample_rate: int = TARGET_SAMPLE_RATE


@dataclass(frozen=True)
class AudioInput:
    """Raw bytes of one file plus its name and optional relative folder path."""

    data: bytes
    filename: str
    path_hint: str | None = None

    @property
    def size(self) -> int:
        return len(self.data)


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass(eq=False)
class Track:
    """A library entry. Mutated in place as analysis progresses."""

    name: str
    id: str = field(default_factory=new_id)
    duration: float = 0.0
    bpm: float = 0.0
    key: str = ""
    confidence: float = 0.0
    key_confidence: float = 0.0
    energy: float = 0.0
    danceability: float = 0.0
    beat_count: int = 0
    analysis_mode: AnalysisMode | None = None
    analyzed_duration: float = 0.0
    folder_name: str | None = None
    folder_path: str | None = None
    audio: bytes | None = field(default=None, repr=False)
    error: str | None = None
    is_analyzing: bool = False
    metadata: TagMetadata | None = None
    segments: tuple[Segment, ...] = ()
    analysis_started_at: float | None = None

    @property
    def is_analyzed(self) -> bool:
        return not self.is_analyzing and self.error is None and self.bpm > 0 and bool(self.key)

    @property
    def has_audio(self) -> bool:
        return self.audio is not None

    def apply_result(self, result: ExtractionResult) -> None:
        """Copy extracted features onto the track and mark it settled."""
        self.bpm = result.bpm
        self.key = result.key
        self.confidence = result.confidence
        self.key_confidence = result.key_confidence
        self.energy = result.energy
        self.danceability = result.danceability
        self.beat_count = result.beat_count
        self.duration = result.duration or self.duration
        self.segments = result.segments
        self.analysis_mode = result.analysis_mode
        self.analyzed_duration = result.analyzed_duration
        self.is_analyzing = False
        self.error = None

    def fail(self, error: str) -> None:
        self.is_analyzing = False
        self.error = error

    def release_audio(self) -> None:
        self.audio = None


@dataclass
class QueueItem:
    """One file admitted to the upload queue."""

    id: str
    input: AudioInput
    status: TaskStatus = TaskStatus.PENDING
    progress: int = 0
    error: str | None = None

    @property
    def filename(self) -> str:
        return self.input.filename


@dataclass(frozen=True)
class MashupCandidate:
    """A scored pair of tracks that could be layered or mixed."""

    track1: Track
    track2: Track
    score: float
    category: MashupCategory
    bpm_difference: float
    pitch_adjust_percent: float
    pitch_adjust_semitones: float
    is_natural_pitch: bool
    match_badge: MatchBadge
    harmonic_tier: HarmonicTier
    mix_difficulty: MixDifficulty
    perfect_match_score: int
    is_cross_folder: bool
    reason: str = ""


@dataclass(frozen=True)
class Transition:
    from_track: Track
    to_track: Track
    score: float
    bpm_diff: float
    key_compatible: bool
    mix_point: str


@dataclass(frozen=True)
class GeneratedSet:
    tracks: tuple[Track, ...]
    transitions: tuple[Transition, ...]
    total_duration: float
    energy_arc: tuple[float, ...]
    average_score: float


@dataclass(frozen=True)
class SavedTrack:
    """Persisted snapshot of an analyzed track (no audio)."""

    id: str
    name: str
    file_name: str
    bpm: float
    key: str
    duration: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SavedTrack:
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            file_name=str(data.get("file_name", data["name"])),
            bpm=float(data.get("bpm", 0.0)),
            key=str(data.get("key", "")),
            duration=float(data.get("duration", 0.0)),
        )


@dataclass(frozen=True)
class ProgressEvent:
    task_id: str
    percent: int
    status: str
