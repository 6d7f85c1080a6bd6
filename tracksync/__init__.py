"""
tracksync: Sync music libraries to neatly ordered directories.

This package provides:
- Cataloging music files from source directories into a SQLite database.
- One-way sync of a source catalog to destination directories, laid out as
  artist/album/disc/title, with per-destination filter scripts.
- Crash-safe copies with cleanup of interrupted transfers.
- Duplicate album detection across audio formats.
"""
