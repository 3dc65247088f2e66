"""Tests for the command-line interface."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
import yaml

from mashlab.cli import main


@pytest.fixture
def config_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "cache": {"database": str(tmp_path / "cache.db")},
                "logging": {"level": "DEBUG", "file": str(tmp_path / "mashlab.log")},
            }
        )
    )
    return path


def _run(monkeypatch: pytest.MonkeyPatch, *argv: str) -> int:
    monkeypatch.setattr(sys, "argv", ["mashlab", *argv])
    return main()


class TestCacheCommand:
    """Tests for `mashlab cache`."""

    def test_stats(
        self, config_file: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert _run(monkeypatch, "--config", str(config_file), "cache", "stats") == 0
        assert "Cached results:    0" in capsys.readouterr().out

    def test_cleanup_and_forced_clear(
        self, config_file: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert _run(monkeypatch, "--config", str(config_file), "cache", "cleanup", "--days", "1") == 0
        assert _run(monkeypatch, "--config", str(config_file), "cache", "clear", "--force") == 0

        out = capsys.readouterr().out
        assert "Removed 0 expired entries." in out
        assert "Cache cleared." in out

    def test_clear_asks_for_confirmation(
        self, config_file: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.setattr("builtins.input", lambda prompt: "n")

        assert _run(monkeypatch, "--config", str(config_file), "cache", "clear") == 0
        assert "Cancelled." in capsys.readouterr().out


class TestMain:
    """Tests for argument and config handling."""

    def test_missing_config(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        assert _run(monkeypatch, "--config", str(tmp_path / "missing.yaml"), "cache", "stats") == 1

    def test_command_is_required(self, monkeypatch: pytest.MonkeyPatch) -> None:
        with pytest.raises(SystemExit):
            _run(monkeypatch)

    def test_analyze_empty_folder(
        self, config_file: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        empty = tmp_path / "music"
        empty.mkdir()
        assert _run(monkeypatch, "--config", str(config_file), "analyze", str(empty)) == 1

    def test_missing_path(
        self, config_file: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        missing = tmp_path / "missing"
        assert _run(monkeypatch, "--config", str(config_file), "analyze", str(missing)) == 1
        assert f"Error: Path does not exist: {missing}" in capsys.readouterr().err
