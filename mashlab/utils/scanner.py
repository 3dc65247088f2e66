"""Collect audio files from disk as analysis inputs."""

import logging
from pathlib import Path

from mashlab.core.models import AudioInput

SUPPORTED_FORMATS = ["mp3", "wav", "flac", "ogg", "m4a", "aac", "aiff"]


def find_audio_files(path: Path, supported_formats: list[str] | None = None) -> list[Path]:
    """Audio files under ``path`` (or ``path`` itself), sorted.

    Raises:
        ValueError: If path doesn't exist
    """
    if not path.exists():
        raise ValueError(f"Path does not exist: {path}")

    extensions = {f".{fmt}" for fmt in supported_formats or SUPPORTED_FORMATS}
    if path.is_file():
        return [path] if path.suffix.lower() in extensions else []
    return sorted(p for p in path.rglob("*") if p.is_file() and p.suffix.lower() in extensions)


def load_inputs(paths: list[Path], supported_formats: list[str] | None = None) -> list[AudioInput]:
    """Read files into AudioInput triples.

    Files found under a directory argument get a path hint relative to the
    directory's parent, so ``House/a.mp3`` lands in the "House" folder. Files
    named directly carry no folder.
    """
    inputs = []
    for path in paths:
        root = path.parent if path.is_dir() else None
        for filepath in find_audio_files(path, supported_formats):
            try:
                data = filepath.read_bytes()
            except OSError as e:
                logging.error(f"[Scanner] Cannot read {filepath}: {e}")
                continue
            hint = filepath.relative_to(root).as_posix() if root is not None else filepath.name
            inputs.append(AudioInput(data=data, filename=filepath.name, path_hint=hint))
    logging.info(f"[Scanner] Found {len(inputs)} audio files")
    return inputs
