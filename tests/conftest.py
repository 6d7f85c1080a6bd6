"""Shared fixtures: temporary source/destination catalogs and a track factory."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from tracksync.database import CatalogStore
from tracksync.model import FileState, Track


@pytest.fixture
def source_catalog(tmp_path: Path) -> CatalogStore:
    """A fresh source catalog in its own directory."""
    return CatalogStore.open_or_create(tmp_path / "catalog", False)


@pytest.fixture
def dest_dir(tmp_path: Path) -> Path:
    path = tmp_path / "dest"
    path.mkdir()
    return path


@pytest.fixture
def dest_catalog(dest_dir: Path) -> CatalogStore:
    """A fresh destination catalog stored next to its music."""
    return CatalogStore.open_or_create(dest_dir, True)


@pytest.fixture
def music_dir(tmp_path: Path) -> Path:
    path = tmp_path / "music"
    path.mkdir()
    return path


@pytest.fixture
def make_track(music_dir: Path) -> Callable[..., Track]:
    """Factory for Copied source tracks backed by a real file under music_dir."""

    def _make(
        title: str,
        artist: str = "Artist",
        album: str = "Album",
        extension: str = "flac",
        number: int = 1,
        disc_number: int = 1,
        content: bytes | None = None,
        state: FileState = FileState.COPIED,
    ) -> Track:
        path = music_dir / artist / album / f"{title}.{extension}"
        path.parent.mkdir(parents=True, exist_ok=True)
        if content is None:
            content = f"{artist}|{album}|{title}".encode()
        path.write_bytes(content)
        return Track(
            title=title,
            artist=artist,
            album=album,
            number=number,
            file_path=str(path),
            disc_number=disc_number,
            disc_total=1,
            extension=extension,
            file_state=state,
        ).with_identity()

    return _make
