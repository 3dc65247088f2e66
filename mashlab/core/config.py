"""Configuration management using Pydantic and YAML."""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator

from mashlab.core.models import AnalysisMode, BeatStorage, BPMTolerance, EnergyCurve, SegmentDensity


class AnalysisConfig(BaseModel):
    """Feature extraction configuration."""

    mode: AnalysisMode = AnalysisMode.FULL
    segment_density: SegmentDensity = SegmentDensity.STANDARD
    beat_storage: BeatStorage = BeatStorage.COUNT
    target_sample_rate: int = Field(gt=0, default=22050)


class PoolConfig(BaseModel):
    """Worker pool and upload queue configuration."""

    max_workers: int = Field(ge=1, le=64, default=16)
    max_concurrency_cap: int = Field(ge=1, le=64, default=8)
    force_concurrency: int | None = Field(ge=1, default=4)  # None = size from hardware
    max_restarts: int = Field(ge=0, default=3)
    environment: Literal["local", "deployed"] = "local"


class CacheConfig(BaseModel):
    """Analysis cache configuration."""

    database: Path = Field(default_factory=lambda: Path.home() / ".mashlab" / "cache.db")
    memory_limit: int = Field(ge=1, default=500)
    max_age_days: int = Field(gt=0, default=30)

    @field_validator("database")
    @classmethod
    def _expand_user(cls, value: Path) -> Path:
        return value.expanduser()


class WatchdogConfig(BaseModel):
    """Stuck-analysis watchdog configuration."""

    grace_seconds: float = Field(gt=0, default=10.0)
    interval_seconds: float = Field(gt=0, default=2.0)


class MashupConfig(BaseModel):
    """Mashup search configuration."""

    bpm_tolerance: BPMTolerance = BPMTolerance.NORMAL
    min_score: float = Field(ge=0, le=1, default=0.3)
    require_key_compatibility: bool = False


class SetConfig(BaseModel):
    """Set generator configuration."""

    duration_minutes: float = Field(gt=0, default=60.0)
    energy_curve: EnergyCurve = EnergyCurve.BUILD
    prefer_harmonic_mixing: bool = True
    avoid_back_to_back_folder: bool = True


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    file: str = "mashlab.log"


class MashlabConfig(BaseModel):
    """Main application configuration."""

    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    pool: PoolConfig = Field(default_factory=PoolConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    watchdog: WatchdogConfig = Field(default_factory=WatchdogConfig)
    mashup: MashupConfig = Field(default_factory=MashupConfig)
    set: SetConfig = Field(default_factory=SetConfig)
    logging: LoggingConfig


def load_config(config_path: Path | None = None) -> MashlabConfig:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config file. If None, uses default location.

    Returns:
        MashlabConfig instance

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file is invalid
    """
    if config_path is None:
        # Try multiple locations
        possible_paths = [
            Path(__file__).parent.parent.parent / "config" / "config.yaml",
            Path.home() / ".config" / "mashlab" / "config.yaml",
            Path.home() / ".mashlab" / "config.yaml",
        ]

        for path in possible_paths:
            if path.exists():
                config_path = path
                break
        else:
            config_path = possible_paths[0]

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    return MashlabConfig(**data)
