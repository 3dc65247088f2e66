"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import numpy as np
import pytest

from mashlab.core.database import Database
from mashlab.core.models import AudioInput, ExtractionResult, Track

SAMPLE_RATE = 22050


@pytest.fixture
def test_config():
    """Provide test configuration."""
    from mashlab.core.config import CacheConfig, LoggingConfig, MashlabConfig, PoolConfig

    return MashlabConfig(
        pool=PoolConfig(force_concurrency=2, max_workers=2),
        cache=CacheConfig(database=Path("/tmp/mashlab-test/cache.db")),
        logging=LoggingConfig(level="DEBUG", file="test.log"),
    )


@pytest.fixture
def database(tmp_path: Path) -> Iterator[Database]:
    """Connected database with schema, closed after the test."""
    db = Database(tmp_path / "test.db")
    db.connect()
    db.initialize_schema()
    yield db
    db.close()


@pytest.fixture
def make_track() -> Callable[..., Track]:
    """Factory for analyzed tracks: make_track("a.mp3", bpm=128, key="Am")."""

    def factory(name: str = "track.mp3", **fields: Any) -> Track:
        defaults: dict[str, Any] = {
            "bpm": 120.0,
            "key": "Am",
            "confidence": 0.9,
            "key_confidence": 0.9,
            "energy": 0.7,
            "duration": 180.0,
            "folder_name": "Uncategorized",
        }
        defaults.update(fields)
        return Track(name=name, **defaults)

    return factory


@pytest.fixture
def make_result() -> Callable[..., ExtractionResult]:
    """Factory for valid extraction results."""

    def factory(**fields: Any) -> ExtractionResult:
        defaults: dict[str, Any] = {
            "bpm": 128.0,
            "key": "Am",
            "confidence": 0.9,
            "key_confidence": 0.9,
            "energy": 0.6,
            "duration": 200.0,
        }
        defaults.update(fields)
        return ExtractionResult(**defaults)

    return factory


@pytest.fixture
def audio_inputs() -> list[AudioInput]:
    """Five inputs with distinct bytes spread over two folders."""
    return [
        AudioInput(data=f"audio-{i}".encode(), filename=f"track_{i}.mp3", path_hint=f"{folder}/track_{i}.mp3")
        for i, folder in enumerate(["House", "House", "Techno", "Techno", "Techno"])
    ]


@pytest.fixture
def click_track() -> np.ndarray:
    """Ten seconds of 256-sample bursts every 0.5 s (120 BPM) at 22050 Hz."""
    y = np.zeros(SAMPLE_RATE * 10, dtype=np.float32)
    period = SAMPLE_RATE // 2
    for start in range(period, len(y) - 256, period):
        y[start : start + 256] = 0.8
    return y
