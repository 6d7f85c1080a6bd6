"""
Manages a tracksync catalog database.

A catalog is a SQLite file (`tracksync.db`) living inside a directory. The
source catalog sits in the configured database directory, while a destination
catalog sits next to the music it describes. Each catalog records its role
(source or destination) on creation and refuses to be opened with the other
one afterwards.

Every public method acquires its own connection and commits on return; nothing
spans more than one call. Crash safety of copies is handled by the
Copying/Copied state of the rows, see tracksync.pipeline.
"""

import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Iterable, Iterator, Optional, Union

from .errors import RoleMismatchError, StorageError
from .model import Album, FileState, Track

logger = logging.getLogger(__name__)

DATABASE_DEFAULT_NAME = "tracksync.db"
SCHEMA_VERSION = "1.0"

# Upper bound of bound parameters per IN (...) query
_ID_CHUNK_SIZE = 500

_TRACK_COLUMNS = (
    "id, track_id, title, artist, album, number, disc_number, disc_total, "
    "file_state, file_path, extension"
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS state (
    id          INTEGER PRIMARY KEY NOT NULL,
    version     TEXT NOT NULL,
    is_external BOOL,
    filter      TEXT
);

CREATE TABLE IF NOT EXISTS tracks (
    id          INTEGER PRIMARY KEY NOT NULL,
    track_id    TEXT NOT NULL UNIQUE,
    title       TEXT NOT NULL,
    artist      TEXT NOT NULL,
    album       TEXT NOT NULL,
    number      INTEGER NOT NULL,
    disc_number INTEGER NOT NULL,
    disc_total  INTEGER NOT NULL,
    file_state  INTEGER NOT NULL,
    file_path   TEXT NOT NULL,
    extension   TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tracks_file_path ON tracks(file_path);
CREATE INDEX IF NOT EXISTS idx_tracks_file_state ON tracks(file_state);

CREATE TABLE IF NOT EXISTS directories (
    directory TEXT PRIMARY KEY NOT NULL
);

CREATE VIEW IF NOT EXISTS albums (
    title,
    artist,
    format
) AS SELECT DISTINCT album, artist, extension FROM tracks;

CREATE VIRTUAL TABLE IF NOT EXISTS track_fts USING fts5(
    track_id, title, album, artist, extension,
    content=tracks, content_rowid=id
);

CREATE TRIGGER IF NOT EXISTS track_fts_insert AFTER INSERT ON tracks BEGIN
    INSERT INTO track_fts(rowid, track_id, title, album, artist, extension)
    VALUES (new.id, new.track_id, new.title, new.album, new.artist, new.extension);
END;

CREATE TRIGGER IF NOT EXISTS track_fts_delete AFTER DELETE ON tracks BEGIN
    INSERT INTO track_fts(track_fts, rowid, track_id, title, album, artist, extension)
    VALUES ('delete', old.id, old.track_id, old.title, old.album, old.artist, old.extension);
END;

CREATE TRIGGER IF NOT EXISTS track_fts_update AFTER UPDATE ON tracks BEGIN
    INSERT INTO track_fts(track_fts, rowid, track_id, title, album, artist, extension)
    VALUES ('delete', old.id, old.track_id, old.title, old.album, old.artist, old.extension);
    INSERT INTO track_fts(rowid, track_id, title, album, artist, extension)
    VALUES (new.id, new.track_id, new.title, new.album, new.artist, new.extension);
END;
"""


@contextmanager
def get_db_connection(
    db_path: Union[str, Path]
) -> Generator[sqlite3.Connection, None, None]:
    """
    Context manager for a single catalog connection.

    Commits when the block exits cleanly, rolls back otherwise.

    Args:
        db_path: Path to the database file

    Yields:
        sqlite3.Connection: Connection with sqlite3.Row rows
    """
    conn = None
    try:
        conn = sqlite3.connect(str(db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        yield conn
        conn.commit()
    except Exception as e:
        if conn:
            conn.rollback()
        logger.debug(f"Database connection error on {db_path}: {e}")
        raise
    finally:
        if conn:
            conn.close()


@contextmanager
def _storage_errors(operation: str, **details) -> Iterator[None]:
    """Re-raise sqlite3 errors as StorageError carrying the failing operation."""
    try:
        yield
    except sqlite3.Error as e:
        raise StorageError(
            f"{operation} failed: {e}",
            details={"operation": operation, "original_error": e, **details},
        ) from e


def _get_table_columns(conn: sqlite3.Connection, table_name: str) -> set[str]:
    ALLOWED_TABLES = {"state", "tracks", "directories"}

    if table_name not in ALLOWED_TABLES:
        raise ValueError(
            f"Table name '{table_name}' not in allowed list: {ALLOWED_TABLES}"
        )

    return {row[1] for row in conn.execute(f"PRAGMA table_info({table_name})")}


def _migrate_schema(conn: sqlite3.Connection) -> None:
    """Bring catalogs created by earlier versions up to the current schema."""
    migrations_needed = []

    if "filter" not in _get_table_columns(conn, "state"):
        migrations_needed.append("ALTER TABLE state ADD COLUMN filter TEXT")

    for migration in migrations_needed:
        conn.execute(migration)
        logger.info(f"Applied migration: {migration}")


def _row_to_track(row: sqlite3.Row) -> Track:
    return Track(
        local_id=row["id"],
        track_id=row["track_id"],
        title=row["title"],
        artist=row["artist"],
        album=row["album"],
        number=row["number"],
        disc_number=row["disc_number"],
        disc_total=row["disc_total"],
        file_state=FileState.from_code(row["file_state"]),
        file_path=row["file_path"],
        extension=row["extension"],
    )


def _chunks(items: list, size: int) -> Iterator[list]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _like_prefix(directory: str) -> str:
    """LIKE pattern matching every path below `directory` (escape char '\\')."""
    prefix = directory if directory.endswith(os.sep) else directory + os.sep
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped + "%"


def fts_album_query(keywords: Iterable[str]) -> str:
    """FTS5 query requiring every keyword to appear in the album column."""
    phrases = []
    for keyword in keywords:
        escaped = keyword.replace('"', '""')
        phrases.append(f'album : "{escaped}"')
    return " AND ".join(phrases)


class CatalogStore:
    """A role-tagged catalog of tracks, scanned directories and a filter."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        self._is_destination: Optional[bool] = None

    def __repr__(self) -> str:
        return f"CatalogStore({str(self.db_path)!r})"

    @classmethod
    def open_or_create(
        cls, path: Union[str, Path], is_destination: bool
    ) -> "CatalogStore":
        """
        Open the catalog stored in directory `path`, creating it if needed.

        Args:
            path: Catalog directory; the database file lives inside it
            is_destination: Role requested by the caller

        Returns:
            CatalogStore: The opened catalog

        Raises:
            StorageError: If `path` is not a directory or the database fails
            RoleMismatchError: If the catalog was created with the other role
        """
        directory = Path(path).expanduser()
        if directory.exists() and not directory.is_dir():
            raise StorageError(
                f"{directory} is not a directory",
                details={"operation": "open_or_create", "path": str(directory)},
            )
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                f"Cannot create catalog directory {directory}: {e}",
                details={"operation": "open_or_create", "path": str(directory)},
            ) from e

        store = cls(directory / DATABASE_DEFAULT_NAME)
        logger.debug(f"database path: {store.db_path}")
        store._initialize(is_destination)
        return store

    def _initialize(self, is_destination: bool) -> None:
        with _storage_errors("initialize", path=str(self.db_path)):
            with get_db_connection(self.db_path) as conn:
                conn.executescript(SCHEMA)
                _migrate_schema(conn)

            with get_db_connection(self.db_path) as conn:
                row = conn.execute(
                    "SELECT is_external FROM state ORDER BY id LIMIT 1"
                ).fetchone()
                if row is None:
                    conn.execute(
                        "INSERT INTO state (version, is_external) VALUES (?, ?)",
                        (SCHEMA_VERSION, is_destination),
                    )
                    stored = is_destination
                    logger.info(
                        f"Initialized {'destination' if stored else 'source'} "
                        f"catalog at {self.db_path}"
                    )
                else:
                    stored = bool(row["is_external"])

        if stored != is_destination:
            expected = "destination" if is_destination else "source"
            actual = "destination" if stored else "source"
            raise RoleMismatchError(
                f"Catalog {self.db_path} is marked as {actual}, "
                f"but was opened as {expected}",
                details={"operation": "open_or_create", "path": str(self.db_path)},
            )
        self._is_destination = stored

    @property
    def is_destination(self) -> bool:
        if self._is_destination is None:
            with _storage_errors("is_destination"):
                with get_db_connection(self.db_path) as conn:
                    row = conn.execute(
                        "SELECT is_external FROM state ORDER BY id LIMIT 1"
                    ).fetchone()
            self._is_destination = bool(row["is_external"]) if row else False
        return self._is_destination

    ############################################################################
    # TRACKS
    ############################################################################

    def upsert_track(self, track: Track) -> None:
        """Insert a track or replace the stored row with the same track_id."""
        with _storage_errors("upsert_track", track_id=track.track_id):
            with get_db_connection(self.db_path) as conn:
                conn.execute(
                    """
                    INSERT INTO tracks (
                        track_id, title, artist, album, number, file_path,
                        disc_number, disc_total, file_state, extension
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(track_id) DO UPDATE SET
                        title = excluded.title,
                        artist = excluded.artist,
                        album = excluded.album,
                        number = excluded.number,
                        file_path = excluded.file_path,
                        disc_number = excluded.disc_number,
                        disc_total = excluded.disc_total,
                        file_state = excluded.file_state,
                        extension = excluded.extension
                    """,
                    (
                        track.track_id,
                        track.title,
                        track.artist,
                        track.album,
                        track.number,
                        track.file_path,
                        track.disc_number,
                        track.disc_total,
                        int(track.file_state),
                        track.extension,
                    ),
                )

    def delete_track(self, local_id: int) -> None:
        with _storage_errors("delete_track", local_id=local_id):
            with get_db_connection(self.db_path) as conn:
                conn.execute("DELETE FROM tracks WHERE id = ?", (local_id,))

    def track_ids_by_state(self, state: FileState) -> set[str]:
        with _storage_errors("track_ids_by_state", state=state.name):
            with get_db_connection(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT track_id FROM tracks WHERE file_state = ?", (int(state),)
                ).fetchall()
        return {row["track_id"] for row in rows}

    def tracks_by_state(self, state: FileState) -> set[Track]:
        with _storage_errors("tracks_by_state", state=state.name):
            with get_db_connection(self.db_path) as conn:
                rows = conn.execute(
                    f"SELECT {_TRACK_COLUMNS} FROM tracks WHERE file_state = ?",
                    (int(state),),
                ).fetchall()
        return {_row_to_track(row) for row in rows}

    def tracks_by_ids(self, ids: Iterable[str]) -> set[Track]:
        id_list = sorted(set(ids))
        tracks: set[Track] = set()
        if not id_list:
            return tracks

        with _storage_errors("tracks_by_ids", count=len(id_list)):
            with get_db_connection(self.db_path) as conn:
                for chunk in _chunks(id_list, _ID_CHUNK_SIZE):
                    placeholders = ",".join("?" for _ in chunk)
                    rows = conn.execute(
                        f"SELECT {_TRACK_COLUMNS} FROM tracks "
                        f"WHERE track_id IN ({placeholders})",
                        chunk,
                    ).fetchall()
                    tracks.update(_row_to_track(row) for row in rows)
        return tracks

    def iter_tracks(self, batch_size: int = 1000) -> Generator[Track, None, None]:
        """Yield every track of the catalog, reading in batches."""
        with _storage_errors("iter_tracks"):
            with get_db_connection(self.db_path) as conn:
                cur = conn.execute(f"SELECT {_TRACK_COLUMNS} FROM tracks")
                while True:
                    rows = cur.fetchmany(batch_size)
                    if not rows:
                        break
                    for row in rows:
                        yield _row_to_track(row)

    def count_tracks(self) -> int:
        with _storage_errors("count_tracks"):
            with get_db_connection(self.db_path) as conn:
                return conn.execute("SELECT COUNT(*) FROM tracks").fetchone()[0]

    def exists(self, file_path: str) -> bool:
        """True if a track with this file path is already stored."""
        with _storage_errors("exists", path=file_path):
            with get_db_connection(self.db_path) as conn:
                row = conn.execute(
                    "SELECT id FROM tracks WHERE file_path = ? LIMIT 1", (file_path,)
                ).fetchone()
        return row is not None

    def track_paths_under(self, directory: str) -> set[str]:
        """File paths of every track stored below `directory`."""
        with _storage_errors("track_paths_under", directory=directory):
            with get_db_connection(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT file_path FROM tracks WHERE file_path LIKE ? ESCAPE '\\'",
                    (_like_prefix(directory),),
                ).fetchall()
        return {row["file_path"] for row in rows}

    ############################################################################
    # DIRECTORIES
    ############################################################################

    def record_directory(self, path: str) -> None:
        with _storage_errors("record_directory", directory=path):
            with get_db_connection(self.db_path) as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO directories (directory) VALUES (?)", (path,)
                )

    def list_directories(self) -> list[str]:
        with _storage_errors("list_directories"):
            with get_db_connection(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT directory FROM directories ORDER BY directory"
                ).fetchall()
        return [row["directory"] for row in rows]

    ############################################################################
    # FILTER
    ############################################################################

    def get_filter(self) -> Optional[str]:
        with _storage_errors("get_filter"):
            with get_db_connection(self.db_path) as conn:
                row = conn.execute(
                    "SELECT filter FROM state ORDER BY id LIMIT 1"
                ).fetchone()
        return row["filter"] if row else None

    def set_filter(self, text: str) -> None:
        """Store a filter script. Callers validate it first (tracksync.filter.validate)."""
        with _storage_errors("set_filter"):
            with get_db_connection(self.db_path) as conn:
                conn.execute("UPDATE state SET filter = ?", (text,))

    ############################################################################
    # ALBUMS
    ############################################################################

    def albums(self) -> list[Album]:
        with _storage_errors("albums"):
            with get_db_connection(self.db_path) as conn:
                rows = conn.execute("SELECT title, artist, format FROM albums").fetchall()
        return [
            Album(title=row["title"], artist=row["artist"], format=row["format"])
            for row in rows
        ]

    def fuzzy_match_albums(self, keywords: Iterable[str]) -> set[tuple[str, str, str]]:
        """
        Full-text lookup of albums containing every keyword.

        Returns:
            set of (track_id, album, extension), one representative per album
        """
        keywords = [k for k in keywords if k]
        if not keywords:
            return set()

        query = fts_album_query(keywords)
        with _storage_errors("fuzzy_match_albums", query=query):
            with get_db_connection(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT track_id, album, extension FROM track_fts "
                    "WHERE track_fts MATCH ? GROUP BY album",
                    (query,),
                ).fetchall()
        return {(row["track_id"], row["album"], row["extension"]) for row in rows}

    def duplicate_album_groups(self) -> set[tuple[tuple[str, str], int]]:
        """((artist, title), count) for albums stored in more than one format."""
        with _storage_errors("duplicate_album_groups"):
            with get_db_connection(self.db_path) as conn:
                rows = conn.execute(
                    """
                    SELECT artist, title, count(*) AS count FROM albums
                    GROUP BY artist, title
                    HAVING count(*) > 1
                    """
                ).fetchall()
        return {((row["artist"], row["title"]), row["count"]) for row in rows}

    def album_locations(self, title: str, artist: str) -> set[tuple[str, str]]:
        """(containing directory, extension) of an album, one per extension."""
        with _storage_errors("album_locations", title=title, artist=artist):
            with get_db_connection(self.db_path) as conn:
                rows = conn.execute(
                    """
                    SELECT file_path, extension FROM tracks
                    WHERE artist = ? AND album = ?
                    GROUP BY extension
                    """,
                    (artist, title),
                ).fetchall()
        return {(str(Path(row["file_path"]).parent), row["extension"]) for row in rows}
