"""
Finds albums stored more than once in a catalog.

Two passes:
- likely duplicates: albums whose names share keywords (full-text lookup) and
  whose names are similar enough, e.g. "Blue Train" vs "Blue Train [24-96]";
- exact duplicates: the same (artist, album) present in more than one format.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from rapidfuzz.distance import Indel

from .config import config
from .database import CatalogStore

logger = logging.getLogger(__name__)

_PUNCTUATION_RE = re.compile(r"""[():'.<>,\-\[\]?/!]""")

# Words this short are too common to look albums up by
MIN_KEYWORD_LENGTH = 4


@dataclass(frozen=True)
class LikelyDuplicate:
    album: str
    duplicate: str
    score: float
    album_directory: str
    album_format: str
    duplicate_directory: str
    duplicate_format: str


@dataclass(frozen=True)
class ExactDuplicate:
    title: str
    artist: str
    count: int
    locations: tuple[tuple[str, str], ...]


@dataclass
class DuplicateReport:
    likely: list[LikelyDuplicate] = field(default_factory=list)
    exact: list[ExactDuplicate] = field(default_factory=list)


def split_after_parenthesis(name: str) -> str:
    """Drop everything from the first "(" on: "Kind of Blue (Legacy)" -> "Kind of Blue "."""
    return name.split("(", 1)[0]


def clean_punctuation(text: str) -> str:
    return _PUNCTUATION_RE.sub(" ", text)


def album_keywords(album_title: str) -> list[str]:
    """Words longer than three characters of an album name, punctuation removed.

    Words without any letter or digit are dropped: the full-text tokenizer
    turns them into empty phrases, which match nothing.
    """
    words = clean_punctuation(split_after_parenthesis(album_title)).split()
    return [
        w
        for w in words
        if len(w) >= MIN_KEYWORD_LENGTH and any(c.isalnum() for c in w)
    ]


def album_similarity(a: str, b: str) -> float:
    """Similarity of two album names in [0, 1]; 1.0 means identical."""
    return Indel.normalized_similarity(a, b)


def best_match(name: str, options: list[str]) -> tuple[str, float] | None:
    best = None
    for option in options:
        score = album_similarity(name, option)
        if best is None or score > best[1]:
            best = (option, score)
    return best


def _directory_of(catalog: CatalogStore, track_id: str) -> str:
    tracks = catalog.tracks_by_ids([track_id])
    if not tracks:
        return ""
    return str(Path(next(iter(tracks)).file_path).parent)


def find_likely_duplicates(
    catalog: CatalogStore, threshold: float | None = None
) -> list[LikelyDuplicate]:
    if threshold is None:
        threshold = config["DUPLICATE_THRESHOLD"]

    seen: set[tuple[str, str]] = set()
    found = []

    for album in catalog.albums():
        keywords = album_keywords(album.title)
        if not keywords:
            continue

        logger.debug(f"looking for: {keywords}")
        # album name -> (format, representative track id)
        matches = {
            split_after_parenthesis(name): (split_after_parenthesis(ext), track_id)
            for track_id, name, ext in catalog.fuzzy_match_albums(keywords)
        }
        logger.debug(f"found {len(matches)} entries")
        if len(matches) < 2:
            continue

        names = sorted(matches)
        for name in names:
            options = [n for n in names if n != name]
            best = best_match(name, options)
            if best is None:
                continue

            dupe_name, score = best
            pair = tuple(sorted((name.strip(), dupe_name.strip())))
            if pair in seen:
                continue
            seen.add(pair)

            if score < threshold:
                continue

            fmt, track_id = matches[name]
            dupe_fmt, dupe_track_id = matches[dupe_name]
            found.append(
                LikelyDuplicate(
                    album=name.strip(),
                    duplicate=dupe_name.strip(),
                    score=score,
                    album_directory=_directory_of(catalog, track_id),
                    album_format=fmt,
                    duplicate_directory=_directory_of(catalog, dupe_track_id),
                    duplicate_format=dupe_fmt,
                )
            )
    return found


def find_exact_duplicates(catalog: CatalogStore) -> list[ExactDuplicate]:
    found = []
    for (artist, title), count in sorted(catalog.duplicate_album_groups()):
        locations = tuple(sorted(catalog.album_locations(title, artist)))
        found.append(
            ExactDuplicate(title=title, artist=artist, count=count, locations=locations)
        )
    return found


def find_duplicates(
    catalog: CatalogStore, threshold: float | None = None
) -> DuplicateReport:
    """Run both duplicate passes over one catalog."""
    return DuplicateReport(
        likely=find_likely_duplicates(catalog, threshold),
        exact=find_exact_duplicates(catalog),
    )
