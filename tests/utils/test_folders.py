"""Tests for folder label helpers."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from mashlab.core.models import Track
from mashlab.utils.folders import (
    extract_folder_name,
    extract_folder_path,
    folder_of,
    folder_stats,
    is_cross_folder,
    unique_folders,
)


class TestExtract:
    """Tests for path parsing."""

    @pytest.mark.parametrize(
        ("path", "name", "folder_path"),
        [
            ("House/2023/a.mp3", "House", "House/2023"),
            ("Techno/b.mp3", "Techno", "Techno"),
            ("Techno\\Live\\c.mp3", "Techno", "Techno/Live"),
            ("a.mp3", "Uncategorized", "Uncategorized"),
            ("", "Uncategorized", "Uncategorized"),
            (None, "Uncategorized", "Uncategorized"),
        ],
    )
    def test_extract(self, path: str | None, name: str, folder_path: str) -> None:
        assert extract_folder_name(path) == name
        assert extract_folder_path(path) == folder_path


class TestTrackFolders:
    """Tests for folder helpers over tracks."""

    def test_missing_folder_is_uncategorized(self, make_track: Callable[..., Track]) -> None:
        assert folder_of(make_track(folder_name=None)) == "Uncategorized"

    def test_cross_folder(self, make_track: Callable[..., Track]) -> None:
        house = make_track(folder_name="House")
        assert is_cross_folder(house, make_track(folder_name="Techno"))
        assert not is_cross_folder(house, make_track(folder_name="House"))
        assert not is_cross_folder(make_track(folder_name=None), make_track(folder_name="Uncategorized"))

    def test_unique_folders_and_stats(self, make_track: Callable[..., Track]) -> None:
        tracks = [
            make_track(folder_name="Techno"),
            make_track(folder_name="House"),
            make_track(folder_name="Techno"),
            make_track(folder_name=None),
        ]

        assert unique_folders(tracks) == ["House", "Techno", "Uncategorized"]
        assert folder_stats(tracks) == {"Techno": 2, "House": 1, "Uncategorized": 1}
        assert list(folder_stats(tracks))[0] == "Techno"
