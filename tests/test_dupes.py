"""Tests for duplicate album detection."""

from __future__ import annotations

from pathlib import Path

import pytest

from tracksync import dupes
from tracksync.dupes import (
    album_keywords,
    album_similarity,
    clean_punctuation,
    find_duplicates,
    find_exact_duplicates,
    find_likely_duplicates,
    split_after_parenthesis,
)


def test_split_after_parenthesis() -> None:
    assert split_after_parenthesis("Kind of Blue (Legacy Edition)") == "Kind of Blue "
    assert split_after_parenthesis("No parens") == "No parens"


def test_clean_punctuation() -> None:
    assert clean_punctuation("Vol. 2: [Live]!") == "Vol  2   Live  "


def test_album_keywords_keep_long_words_only() -> None:
    assert album_keywords("The Köln Concert (Live)") == ["Köln", "Concert"]
    assert album_keywords("A Go Go") == []


def test_album_keywords_skip_symbol_only_words() -> None:
    assert album_keywords("Blue ____ Train &&&&") == ["Blue", "Train"]


def test_symbol_only_words_do_not_hide_duplicates(source_catalog, make_track) -> None:
    source_catalog.upsert_track(make_track("One", album="Blue Train &&&&"))
    source_catalog.upsert_track(make_track("One", album="Blue Train", extension="mp3"))

    found = find_likely_duplicates(source_catalog, threshold=0.6)

    assert [{d.album, d.duplicate} for d in found] == [{"Blue Train", "Blue Train &&&&"}]


def test_album_similarity_bounds() -> None:
    assert album_similarity("Blue Train", "Blue Train") == 1.0
    assert 0.0 <= album_similarity("Blue Train", "Giant Steps") < 0.6


def test_similar_albums_are_reported_once(source_catalog, make_track) -> None:
    flac = make_track("One", album="Blue Train", extension="flac")
    mp3 = make_track("One", album="Blue Train [24-96]", extension="mp3")
    source_catalog.upsert_track(flac)
    source_catalog.upsert_track(mp3)

    (found,) = find_likely_duplicates(source_catalog, threshold=0.6)

    assert {found.album, found.duplicate} == {"Blue Train", "Blue Train [24-96]"}
    # Indel similarity: 1 - 8 / 28
    assert found.score == pytest.approx(20 / 28)
    formats = {
        found.album: found.album_format,
        found.duplicate: found.duplicate_format,
    }
    assert formats == {"Blue Train": "flac", "Blue Train [24-96]": "mp3"}
    directories = {
        found.album: found.album_directory,
        found.duplicate: found.duplicate_directory,
    }
    assert directories == {
        "Blue Train": str(Path(flac.file_path).parent),
        "Blue Train [24-96]": str(Path(mp3.file_path).parent),
    }


@pytest.mark.parametrize("score, reported", [(0.6, True), (0.59, False)])
def test_threshold_is_inclusive(
    source_catalog, make_track, monkeypatch, score: float, reported: bool
) -> None:
    source_catalog.upsert_track(make_track("One", album="Blue Train"))
    source_catalog.upsert_track(make_track("One", album="Blue Train Deluxe", extension="mp3"))
    monkeypatch.setattr(dupes, "album_similarity", lambda a, b: score)

    found = find_likely_duplicates(source_catalog, threshold=0.6)

    assert bool(found) is reported


def test_default_threshold_comes_from_config(
    source_catalog, make_track, monkeypatch
) -> None:
    source_catalog.upsert_track(make_track("One", album="Blue Train"))
    source_catalog.upsert_track(make_track("One", album="Blue Train Deluxe", extension="mp3"))
    monkeypatch.setattr(dupes, "album_similarity", lambda a, b: 0.7)

    monkeypatch.setitem(dupes.config, "DUPLICATE_THRESHOLD", 0.8)
    assert find_likely_duplicates(source_catalog) == []

    monkeypatch.setitem(dupes.config, "DUPLICATE_THRESHOLD", 0.7)
    assert len(find_likely_duplicates(source_catalog)) == 1


def test_albums_without_keywords_are_skipped(source_catalog, make_track) -> None:
    source_catalog.upsert_track(make_track("One", album="Go Go"))
    source_catalog.upsert_track(make_track("One", album="Go Go", extension="mp3"))

    assert find_likely_duplicates(source_catalog, threshold=0.0) == []


def test_exact_duplicates_ignore_scores(source_catalog, make_track, monkeypatch) -> None:
    flac = make_track("One", album="Go Go", extension="flac")
    mp3 = make_track("One", album="Go Go", extension="mp3")
    source_catalog.upsert_track(flac)
    source_catalog.upsert_track(mp3)
    monkeypatch.setattr(dupes, "album_similarity", lambda a, b: 0.0)

    (exact,) = find_exact_duplicates(source_catalog)

    directory = str(Path(flac.file_path).parent)
    assert exact.title == "Go Go"
    assert exact.artist == "Artist"
    assert exact.count == 2
    assert exact.locations == ((directory, "flac"), (directory, "mp3"))


def test_find_duplicates_report(source_catalog, make_track) -> None:
    source_catalog.upsert_track(make_track("One", album="Giant Steps"))
    source_catalog.upsert_track(make_track("One", album="Blue Train"))

    report = find_duplicates(source_catalog, threshold=0.6)

    assert report.likely == []
    assert report.exact == []
