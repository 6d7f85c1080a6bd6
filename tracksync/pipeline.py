"""
Copies and deletes tracks on a destination, one track at a time.

A copy is a two-step state change on the destination catalog:

1. the track is upserted as Copying before any byte is written;
2. the file is copied (or hard-linked) to its storage path;
3. the track is upserted again as Copied.

If the process dies or the copy fails in between, the Copying row stays
behind. `recover_partial_copies` finds those rows and removes them together
with whatever part of the file made it to disk.
"""

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from rich.progress import (
    BarColumn,
    Progress,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from .config import config, console
from .database import CatalogStore
from .errors import CopyError, OrphanedFileError
from .filter import CompiledFilter
from .model import FileState, Track, storage_path
from .reconcile import Reconciliation, reconcile, tracks_to_copy, tracks_to_delete

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass
class SyncResult:
    plan: Reconciliation
    copied: list[Track] = field(default_factory=list)
    deleted: list[Track] = field(default_factory=list)


def _copy_with_progress(
    source: str,
    target: str,
    on_progress: Optional[ProgressCallback],
    chunk_size: int,
) -> None:
    """Copy file bytes, overwriting `target`, reporting (copied, total) after each chunk."""
    total = os.path.getsize(source)
    copied = 0
    with open(source, "rb") as fsrc, open(target, "wb") as fdst:
        while True:
            buf = fsrc.read(chunk_size)
            if not buf:
                break
            fdst.write(buf)
            copied += len(buf)
            if on_progress:
                on_progress(copied, total)
    if on_progress and total == 0:
        on_progress(0, 0)


def _hard_link(source: str, target: str) -> None:
    if os.path.lexists(target):
        os.remove(target)
    os.link(source, target)


def execute_copy(
    track: Track,
    destination: CatalogStore,
    base_dir: Union[str, Path],
    use_hardlink: bool = False,
    on_progress: Optional[ProgressCallback] = None,
    chunk_size: Optional[int] = None,
) -> Track:
    """
    Transfer one source track to the destination.

    Args:
        track: Source catalog track
        destination: Destination catalog
        base_dir: Destination music directory
        use_hardlink: Hard-link instead of copying bytes
        on_progress: Called with (copied_bytes, total_bytes) while copying
        chunk_size: Copy buffer size, defaults to config COPY_CHUNK_SIZE

    Returns:
        Track: The destination row, in state Copied

    Raises:
        CopyError: If the directory tree or the file cannot be written; the
                   destination row is left in state Copying
        StorageError: If the destination catalog cannot be updated
    """
    target = storage_path(track, base_dir)
    dest_track = replace(
        track, local_id=0, file_path=target, file_state=FileState.COPYING
    )

    destination.upsert_track(dest_track)

    try:
        Path(target).parent.mkdir(parents=True, exist_ok=True)
        if os.path.exists(target) and os.path.samefile(track.file_path, target):
            # writing or replacing the target would destroy the source
            logger.info(f"{track.file_path} is already stored at {target}")
        elif use_hardlink:
            _hard_link(track.file_path, target)
        else:
            _copy_with_progress(
                track.file_path,
                target,
                on_progress,
                chunk_size or config["COPY_CHUNK_SIZE"],
            )
    except OSError as e:
        raise CopyError(
            f"Cannot copy {track.file_path} to {target}: {e}",
            details={
                "track_id": track.track_id,
                "source": track.file_path,
                "target": target,
                "original_error": e,
            },
        ) from e

    dest_track = replace(dest_track, file_state=FileState.COPIED)
    destination.upsert_track(dest_track)
    logger.debug(f"Copied {track.file_path} to {target}")
    return dest_track


def execute_delete(
    track: Track, destination: CatalogStore, base_dir: Union[str, Path]
) -> None:
    """
    Remove one track from the destination: its row first, then its file.

    A file that is already gone is not an error.

    Raises:
        OrphanedFileError: If the file cannot be removed; the row is already deleted
    """
    target = storage_path(track, base_dir)

    destination.delete_track(track.local_id)

    try:
        os.remove(target)
    except FileNotFoundError:
        logger.warning(f"File already missing while deleting {track}: {target}")
    except OSError as e:
        raise OrphanedFileError(
            f"Cannot delete file {target}: {e}",
            details={"track_id": track.track_id, "path": target, "original_error": e},
        ) from e
    logger.debug(f"Deleted {target}")


def recover_partial_copies(
    destination: CatalogStore, base_dir: Union[str, Path]
) -> list[Track]:
    """
    Remove every track left in state Copying, row and file.

    Returns:
        list[Track]: The tracks that were removed
    """
    removed = []
    for track in sorted(destination.tracks_by_state(FileState.COPYING), key=str):
        logger.info(f"Deleting non-cleanly copied track: {track}")
        execute_delete(track, destination, base_dir)
        removed.append(track)
    return removed


def _track_progress(show_progress: bool) -> Progress:
    return Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
        disable=not show_progress,
    )


def run_copy(
    tracks: Iterable[Track],
    destination: CatalogStore,
    base_dir: Union[str, Path],
    use_hardlink: bool = False,
    show_progress: bool = True,
) -> list[Track]:
    """Copy tracks one after the other, stopping at the first failure."""
    tracks = list(tracks)
    copied = []
    if not tracks:
        return copied

    with _track_progress(show_progress) as progress:
        total_task = progress.add_task("[green]Total progress", total=len(tracks))
        for track in tracks:
            file_task = progress.add_task(f"[cyan]Copying: {track}", total=None)

            def on_progress(done: int, total: int, task=file_task) -> None:
                progress.update(task, completed=done, total=total)

            copied.append(
                execute_copy(
                    track,
                    destination,
                    base_dir,
                    use_hardlink=use_hardlink,
                    on_progress=on_progress,
                )
            )
            progress.remove_task(file_task)
            progress.advance(total_task)
    return copied


def run_delete(
    tracks: Iterable[Track],
    destination: CatalogStore,
    base_dir: Union[str, Path],
    show_progress: bool = True,
) -> list[Track]:
    """Delete tracks one after the other, stopping at the first failure."""
    tracks = list(tracks)
    deleted = []
    if not tracks:
        return deleted

    with _track_progress(show_progress) as progress:
        task = progress.add_task("[yellow]Deleting old tracks", total=len(tracks))
        for track in tracks:
            execute_delete(track, destination, base_dir)
            deleted.append(track)
            progress.advance(task)
    return deleted


def dry_run_copy(tracks: Iterable[Track], base_dir: Union[str, Path]) -> None:
    for track in tracks:
        logger.info(f"Will copy {track.file_path} to {storage_path(track, base_dir)}")


def dry_run_delete(tracks: Iterable[Track], base_dir: Union[str, Path]) -> None:
    for track in tracks:
        logger.info(f"Will delete {storage_path(track, base_dir)}")


def sync_catalogs(
    source: CatalogStore,
    destination: CatalogStore,
    base_dir: Union[str, Path],
    predicate: Optional[CompiledFilter] = None,
    no_delete: bool = False,
    dry_run: bool = False,
    use_hardlink: bool = False,
    show_progress: bool = True,
) -> SyncResult:
    """
    Make the destination hold exactly the (filtered) Copied tracks of the source.

    Deletions run before copies. With dry_run nothing is written, the planned
    operations are only logged.
    """
    plan = reconcile(source, destination, predicate)
    to_copy = tracks_to_copy(source, plan.copy_set, predicate)
    to_delete = tracks_to_delete(destination, plan.delete_set, predicate)
    result = SyncResult(plan=plan)

    if dry_run:
        dry_run_copy(to_copy, base_dir)
        dry_run_delete(to_delete, base_dir)
        return result

    if not no_delete:
        result.deleted = run_delete(
            to_delete, destination, base_dir, show_progress=show_progress
        )

    result.copied = run_copy(
        to_copy,
        destination,
        base_dir,
        use_hardlink=use_hardlink,
        show_progress=show_progress,
    )
    return result
