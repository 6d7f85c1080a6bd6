"""
Track and album model.

A track's identity (`track_id`) is a SHA-256 digest of its artist, album, title
and extension. It does not depend on where the file lives, so the same track
found on two machines or under two paths gets the same id, while any tag edit
produces a new one.
"""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass, field, replace
from enum import IntEnum
from pathlib import Path


class FileState(IntEnum):
    """Lifecycle of a track's file inside a catalog, stored as an integer."""

    COPIED = 0
    COPYING = 1
    UNKNOWN = 2

    @classmethod
    def from_code(cls, code: int) -> "FileState":
        if code == cls.COPIED:
            return cls.COPIED
        if code == cls.COPYING:
            return cls.COPYING
        return cls.UNKNOWN


@dataclass(frozen=True)
class TrackAttributes:
    """Public view of a track handed to filter scripts."""

    title: str
    artist: str
    album: str
    number: int
    file_path: str
    disc_number: int
    disc_total: int
    extension: str


@dataclass
class Track:
    title: str
    artist: str
    album: str
    number: int = 0
    file_path: str = ""
    disc_number: int = 0
    disc_total: int = 0
    extension: str = ""
    file_state: FileState = FileState.UNKNOWN
    track_id: str = ""
    local_id: int = 0

    def __str__(self) -> str:
        return f"{self.title} - {self.album},  {self.artist}"

    def __hash__(self) -> int:
        return hash((self.track_id, self.local_id))

    def with_identity(self) -> "Track":
        """Return a copy whose track_id matches its current metadata."""
        return replace(self, track_id=track_hash(self))

    def attributes(self) -> TrackAttributes:
        return TrackAttributes(
            title=self.title,
            artist=self.artist,
            album=self.album,
            number=self.number,
            file_path=self.file_path,
            disc_number=self.disc_number,
            disc_total=self.disc_total,
            extension=self.extension,
        )

    def storage_path(self, base: str | Path) -> str:
        return storage_path(self, base)


@dataclass(frozen=True)
class Album:
    """Distinct (album, artist, extension) triple of a catalog."""

    title: str
    artist: str
    format: str = field(default="")


def track_hash(track: Track) -> str:
    """Hex SHA-256 of artist + album + title + extension, no separators."""
    raw = f"{track.artist}{track.album}{track.title}{track.extension}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


# Characters replaced in path segments. "." is only replaced in directory names.
_UNSAFE_SEGMENT_CHARS = (
    '"',
    os.sep,
    "*",
    "/",
    ":",
    "<",
    ">",
    "?",
    "\\",
    "|",
    "+",
    ",",
    ";",
    "=",
    "[",
    "]",
    "\0",
)


def clean(segment: str, is_file: bool = False) -> str:
    """Replace characters unsafe in a path segment with underscores."""
    for char in _UNSAFE_SEGMENT_CHARS:
        segment = segment.replace(char, "_")
    if not is_file:
        segment = segment.replace(".", "_")
    return segment


def storage_path(track: Track, base: str | Path) -> str:
    """
    Destination path of a track under `base`.

    Layout: base/artist/album/disc_number/title.extension, each segment cleaned.
    """
    filename = f"{track.title}.{track.extension}"
    path = (
        Path(base)
        / clean(track.artist)
        / clean(track.album)
        / clean(str(track.disc_number))
        / clean(filename, is_file=True)
    )
    return str(path)
