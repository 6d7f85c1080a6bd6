"""
Computes what a sync has to copy and delete.

Both catalogs are reduced to the ids of their Copied tracks and compared as
sets. The filter shrinks the wanted source set; destination tracks that are no
longer wanted, either because the source lost them or because the filter now
excludes them, are scheduled for deletion.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .database import CatalogStore
from .filter import CompiledFilter, filter_tracks
from .model import FileState, Track

logger = logging.getLogger(__name__)


@dataclass
class Reconciliation:
    copy_set: set[str] = field(default_factory=set)
    delete_set: set[str] = field(default_factory=set)

    @property
    def is_empty(self) -> bool:
        return not self.copy_set and not self.delete_set


def reconcile(
    source: CatalogStore,
    destination: CatalogStore,
    predicate: Optional[CompiledFilter] = None,
) -> Reconciliation:
    """
    Diff two catalogs under an optional filter.

    Returns:
        Reconciliation: track ids to copy from source and to delete from destination
    """
    source_copied = source.track_ids_by_state(FileState.COPIED)
    dest_copied = destination.track_ids_by_state(FileState.COPIED)
    logger.debug(f"source ids: {len(source_copied)} dest ids: {len(dest_copied)}")

    if predicate is None:
        source_wanted = set(source_copied)
    else:
        wanted_tracks = filter_tracks(source.tracks_by_ids(source_copied), predicate)
        source_wanted = {t.track_id for t in wanted_tracks}
        logger.debug(
            f"filter kept {len(source_wanted)} of {len(source_copied)} source tracks"
        )

    copy_set = source_wanted - dest_copied
    # gone from the source altogether
    missing_at_source = dest_copied - source_copied
    # still at the source, but excluded by the current filter
    excluded_by_filter = dest_copied - source_wanted

    result = Reconciliation(
        copy_set=copy_set, delete_set=missing_at_source | excluded_by_filter
    )
    logger.debug(
        f"to copy: {len(result.copy_set)} to delete: {len(result.delete_set)}"
    )
    return result


def _sorted(tracks: Iterable[Track]) -> list[Track]:
    return sorted(
        tracks, key=lambda t: (t.artist, t.album, t.disc_number, t.number, t.title)
    )


def tracks_to_copy(
    source: CatalogStore,
    copy_set: Iterable[str],
    predicate: Optional[CompiledFilter] = None,
) -> list[Track]:
    """Source rows for `copy_set`, checked against the filter once more."""
    tracks = filter_tracks(source.tracks_by_ids(copy_set), predicate)
    return _sorted(tracks)


def tracks_to_delete(
    destination: CatalogStore,
    delete_set: Iterable[str],
    predicate: Optional[CompiledFilter] = None,
) -> list[Track]:
    """Destination rows for `delete_set`; the filter never removes any of them."""
    tracks = filter_tracks(
        destination.tracks_by_ids(delete_set), predicate, keep_deletions=True
    )
    return _sorted(tracks)
