"""
Scans source directories into a catalog.

Each root gets a producer that walks the tree in a worker thread and streams
music file paths over an asyncio queue; the consumer reads the tags and
upserts the tracks. Several roots are scanned concurrently with
asyncio.gather. A filesystem error while walking ends that root's stream with
a TraversalError.
"""

import asyncio
import logging
import os
import threading
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

import mutagen
from mutagen import File as MutagenFile

from .database import CatalogStore
from .errors import TagReadError, TracksyncError, TraversalError
from .model import FileState, Track

logger = logging.getLogger(__name__)

MUSIC_EXTENSIONS = {"flac", "mp3", "ogg", "mp4", "m4a"}

# Sent by the producer once a root has been fully walked
_DONE = object()


@dataclass
class ScanResult:
    new: int = 0
    duplicates: int = 0
    purged: int = 0

    def __add__(self, other: "ScanResult") -> "ScanResult":
        return ScanResult(
            new=self.new + other.new,
            duplicates=self.duplicates + other.duplicates,
            purged=self.purged + other.purged,
        )


def is_music(name: str) -> bool:
    """True if `name` has one of the supported music file extensions."""
    return Path(name).suffix.lower().lstrip(".") in MUSIC_EXTENSIONS


################################################################################
# TAGS
################################################################################


def _first_tag(tags, key: str) -> Optional[str]:
    values = tags.get(key) if tags is not None else None
    if not values:
        return None
    value = str(values[0]).strip()
    return value or None


def _parse_position(value: Optional[str]) -> tuple[int, int]:
    """Parse "3" or "3/12" into (3, 0) or (3, 12); anything else gives zeros."""
    if not value:
        return 0, 0
    number, _, total = value.partition("/")
    try:
        parsed_number = int(number.strip())
    except ValueError:
        parsed_number = 0
    try:
        parsed_total = int(total.strip()) if total else 0
    except ValueError:
        parsed_total = 0
    return parsed_number, parsed_total


def read_track(path: str) -> Track:
    """
    Build a Track from a music file's tags.

    The album artist is preferred over the track artist. Missing tags get
    "Unknown ..." placeholders so every file still gets an identity.

    Raises:
        TagReadError: If mutagen cannot open or parse the file
    """
    try:
        audio = MutagenFile(path, easy=True)
    except (mutagen.MutagenError, OSError) as e:
        raise TagReadError(
            f"Cannot read tags from {path}: {e}",
            details={"path": path, "original_error": e},
        ) from e
    if audio is None:
        raise TagReadError(f"Cannot read tags from {path}: unsupported format")

    tags = audio.tags
    number, _ = _parse_position(_first_tag(tags, "tracknumber"))
    disc_number, disc_total = _parse_position(_first_tag(tags, "discnumber"))

    track = Track(
        title=_first_tag(tags, "title") or "Unknown Title",
        artist=_first_tag(tags, "albumartist")
        or _first_tag(tags, "artist")
        or "Unknown Artist",
        album=_first_tag(tags, "album") or "Unknown Album",
        number=number,
        file_path=path,
        disc_number=disc_number,
        disc_total=disc_total,
        extension=Path(path).suffix.lstrip(".") or "NONE",
        file_state=FileState.UNKNOWN,
    )
    return track.with_identity()


################################################################################
# TRAVERSAL
################################################################################


def _walk(root: str, emit: Callable[[object], None], stop: threading.Event) -> None:
    def _raise(error: OSError) -> None:
        raise error

    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
        dirnames.sort()
        for filename in sorted(filenames):
            if stop.is_set():
                return
            if is_music(filename):
                emit(os.path.join(dirpath, filename))


def traverse(root: str) -> tuple[asyncio.Queue, threading.Event, asyncio.Future]:
    """
    Start walking `root` in a worker thread.

    Returns:
        The queue receiving music paths, then either _DONE or an exception
        followed by _DONE; an event that stops the walk when set; and the
        future of the worker thread.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()
    stop = threading.Event()

    def emit(item: object) -> None:
        if not stop.is_set():
            loop.call_soon_threadsafe(queue.put_nowait, item)

    def produce() -> None:
        try:
            _walk(root, emit, stop)
        except OSError as e:
            emit(
                TraversalError(
                    f"Cannot traverse {root}: {e}",
                    details={"path": root, "original_error": e},
                )
            )
        finally:
            emit(_DONE)

    walker = loop.run_in_executor(None, produce)
    return queue, stop, walker


################################################################################
# SCANNING
################################################################################


async def scan_directory(
    catalog: CatalogStore,
    root: Union[str, Path],
    skip: Callable[[str], bool],
    on_track: Optional[Callable[[Track], None]] = None,
) -> ScanResult:
    """
    Add every music file below `root` to the catalog, then record `root`.

    Args:
        catalog: Catalog receiving the tracks
        root: Directory to scan
        skip: Returns True for paths that must not be (re)added
        on_track: Called with each newly stored track

    Returns:
        ScanResult: counts of new and skipped files
    """
    root = str(Path(root).expanduser().resolve())
    logger.info(f"Reading {root}...")
    loop = asyncio.get_running_loop()
    queue, stop, walker = traverse(root)
    result = ScanResult()

    try:
        while True:
            item = await queue.get()
            if item is _DONE:
                break
            if isinstance(item, TracksyncError):
                raise item

            path = str(item)
            if skip(path):
                logger.debug(f"Found duplicate at {path}")
                result.duplicates += 1
                continue

            # tag parsing and sqlite writes block, keep them off the event loop
            track = await loop.run_in_executor(None, read_track, path)
            track = replace(track, file_state=FileState.COPIED)
            await loop.run_in_executor(None, catalog.upsert_track, track)
            result.new += 1
            logger.debug(f"Found track: {track.title} - {track.artist}, from {track.album}")
            if on_track:
                on_track(track)
    finally:
        stop.set()
        await walker

    catalog.record_directory(root)
    return result


async def add_directories(
    catalog: CatalogStore,
    roots: Iterable[Union[str, Path]],
    on_track: Optional[Callable[[Track], None]] = None,
) -> ScanResult:
    """Scan new roots concurrently; paths already in the catalog are duplicates."""
    results = await asyncio.gather(
        *(scan_directory(catalog, root, catalog.exists, on_track) for root in roots)
    )
    total = sum(results, ScanResult())
    if total.duplicates:
        logger.info(
            f"Imported {total.new} new tracks, but found {total.duplicates} duplicates"
        )
    else:
        logger.info(f"Imported {total.new} tracks")
    return total


def purge_missing(catalog: CatalogStore) -> int:
    """Delete the tracks whose files no longer exist on disk."""
    missing = [t for t in catalog.iter_tracks() if not Path(t.file_path).exists()]
    for track in missing:
        logger.info(
            f"Found track in database not existing on filesystem, deleting: {track.file_path}"
        )
        catalog.delete_track(track.local_id)
    return len(missing)


async def update_catalog(
    catalog: CatalogStore,
    on_track: Optional[Callable[[Track], None]] = None,
) -> ScanResult:
    """Rescan every recorded directory for new files, then purge vanished ones."""
    roots = catalog.list_directories()
    known: set[str] = set()
    for root in roots:
        known |= catalog.track_paths_under(root)

    results = await asyncio.gather(
        *(
            scan_directory(catalog, root, lambda path: path in known, on_track)
            for root in roots
        )
    )
    total = sum(results, ScanResult())
    logger.info(f"Imported {total.new} new tracks")

    total.purged = purge_missing(catalog)
    if total.purged:
        logger.info(f"Purged {total.purged} vanished tracks")
    return total
