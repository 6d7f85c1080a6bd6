"""Tests for directory scanning and tag reading."""

from __future__ import annotations

import asyncio
import os
import threading
from pathlib import Path
from types import SimpleNamespace

import pytest

from tracksync import scanner
from tracksync.errors import TagReadError, TraversalError
from tracksync.model import FileState, Track, track_hash
from tracksync.scanner import (
    _parse_position,
    add_directories,
    is_music,
    read_track,
    update_catalog,
)


def fake_read_track(path: str) -> Track:
    p = Path(path)
    return Track(
        title=p.stem,
        artist="Artist",
        album=p.parent.name,
        file_path=path,
        extension=p.suffix.lstrip("."),
    ).with_identity()


@pytest.fixture
def fake_tags(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(scanner, "read_track", fake_read_track)


def _touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"audio")
    return path


def test_is_music() -> None:
    assert is_music("song.flac")
    assert is_music("SONG.MP3")
    assert is_music("clip.m4a")
    assert not is_music("cover.jpg")
    assert not is_music("flac")


@pytest.mark.parametrize(
    "value, expected",
    [("3", (3, 0)), ("3/12", (3, 12)), (" 2 / 2 ", (2, 2)), ("A", (0, 0)), (None, (0, 0))],
)
def test_parse_position(value, expected) -> None:
    assert _parse_position(value) == expected


def test_read_track_uses_tags(monkeypatch: pytest.MonkeyPatch) -> None:
    tags = {
        "title": ["Blue Train"],
        "artist": ["John Coltrane Quintet"],
        "albumartist": ["John Coltrane"],
        "album": ["Blue Train"],
        "tracknumber": ["1/5"],
        "discnumber": ["1/1"],
    }
    monkeypatch.setattr(scanner, "MutagenFile", lambda path, easy: SimpleNamespace(tags=tags))

    track = read_track("/music/01 Blue Train.flac")

    assert track.artist == "John Coltrane"
    assert track.title == "Blue Train"
    assert (track.number, track.disc_number, track.disc_total) == (1, 1, 1)
    assert track.extension == "flac"
    assert track.file_state is FileState.UNKNOWN
    assert track.track_id == track_hash(track)


def test_read_track_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(scanner, "MutagenFile", lambda path, easy: SimpleNamespace(tags=None))

    track = read_track("/music/untagged.ogg")

    assert (track.title, track.artist, track.album) == (
        "Unknown Title",
        "Unknown Artist",
        "Unknown Album",
    )
    assert track.number == 0


def test_read_track_rejects_unreadable_files(tmp_path: Path) -> None:
    broken = tmp_path / "broken.flac"
    broken.write_bytes(b"not really flac")

    with pytest.raises(TagReadError):
        read_track(str(broken))


def test_add_directories(source_catalog, music_dir: Path, fake_tags) -> None:
    _touch(music_dir / "Album" / "a.flac")
    _touch(music_dir / "Album" / "b.mp3")
    _touch(music_dir / "Album" / "cover.jpg")

    result = asyncio.run(add_directories(source_catalog, [music_dir]))

    assert result.new == 2
    assert result.duplicates == 0
    assert source_catalog.track_ids_by_state(FileState.COPIED) == {
        t.track_id for t in source_catalog.iter_tracks()
    }
    assert source_catalog.list_directories() == [str(music_dir.resolve())]


def test_rescan_adds_nothing(source_catalog, music_dir: Path, fake_tags) -> None:
    _touch(music_dir / "Album" / "a.flac")
    asyncio.run(add_directories(source_catalog, [music_dir]))

    result = asyncio.run(add_directories(source_catalog, [music_dir]))

    assert result.new == 0
    assert result.duplicates == 1
    assert source_catalog.count_tracks() == 1


def test_several_roots_are_scanned(source_catalog, tmp_path: Path, fake_tags) -> None:
    _touch(tmp_path / "one" / "X" / "a.flac")
    _touch(tmp_path / "two" / "Y" / "b.flac")
    _touch(tmp_path / "two" / "Y" / "c.flac")
    seen = []

    result = asyncio.run(
        add_directories(
            source_catalog, [tmp_path / "one", tmp_path / "two"], on_track=seen.append
        )
    )

    assert result.new == 3
    assert sorted(t.title for t in seen) == ["a", "b", "c"]
    assert len(source_catalog.list_directories()) == 2


def test_missing_root_is_a_traversal_error(source_catalog, tmp_path: Path) -> None:
    with pytest.raises(TraversalError):
        asyncio.run(add_directories(source_catalog, [tmp_path / "nowhere"]))
    assert source_catalog.list_directories() == []


def test_update_adds_new_and_purges_missing(
    source_catalog, music_dir: Path, fake_tags
) -> None:
    old = _touch(music_dir / "Album" / "old.flac")
    _touch(music_dir / "Album" / "kept.flac")
    asyncio.run(add_directories(source_catalog, [music_dir]))

    old.unlink()
    _touch(music_dir / "Album" / "new.flac")
    result = asyncio.run(update_catalog(source_catalog))

    assert result.new == 1
    assert result.duplicates == 1
    assert result.purged == 1
    assert sorted(t.title for t in source_catalog.iter_tracks()) == ["kept", "new"]


def test_tags_are_read_off_the_event_loop(
    source_catalog, music_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    readers = []

    def recording_read_track(path: str) -> Track:
        readers.append(threading.current_thread())
        return fake_read_track(path)

    monkeypatch.setattr(scanner, "read_track", recording_read_track)
    _touch(music_dir / "Album" / "a.flac")
    _touch(music_dir / "Album" / "b.flac")

    result = asyncio.run(add_directories(source_catalog, [music_dir]))

    assert result.new == 2
    assert readers and threading.main_thread() not in readers


def test_error_during_walk_is_a_traversal_error(
    source_catalog, music_dir: Path, fake_tags, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Files streamed before the failing directory do not save the root."""

    def failing_walk(root, onerror=None):
        yield root, ["locked"], ["a.flac"]
        onerror(PermissionError(13, "Permission denied", os.path.join(root, "locked")))

    monkeypatch.setattr(scanner.os, "walk", failing_walk)

    with pytest.raises(TraversalError):
        asyncio.run(add_directories(source_catalog, [music_dir]))
    assert source_catalog.list_directories() == []


@pytest.mark.skipif(
    not hasattr(os, "geteuid") or os.geteuid() == 0,
    reason="directory permissions are not enforced for root",
)
def test_unreadable_subdirectory_stops_the_scan(
    source_catalog, music_dir: Path, fake_tags
) -> None:
    _touch(music_dir / "a.flac")
    locked = music_dir / "locked"
    _touch(locked / "b.flac")
    locked.chmod(0)
    try:
        with pytest.raises(TraversalError):
            asyncio.run(add_directories(source_catalog, [music_dir]))
    finally:
        locked.chmod(0o755)
    assert source_catalog.list_directories() == []
