"""
Filter scripts deciding which tracks stay out of a destination.

A filter is a short Python script defining `filter(track)`. It is compiled once,
checked before it is stored, and then called for every track with a read-only
TrackAttributes value. Returning True excludes the track from the sync.

Scripts run against a reduced set of builtins plus `regex_match`. That
namespace only keeps scripts short and focused; it is not a sandbox. Filters
are trusted code written by the catalog owner, and are expected to be pure
functions of the track they receive.
"""

import builtins
import inspect
import logging
import re
from functools import lru_cache
from typing import Callable, Iterable, Optional

from .errors import FilterCompileError, FilterRuntimeError
from .model import Track, TrackAttributes

logger = logging.getLogger(__name__)

FILTER_FN_NAME = "filter"
FILTER_FILENAME = "<filter>"

DEFAULT_FILTER = '''\
# tracksync filter
#
# filter(track) is called once for every track about to be synced.
# Return True to keep the track out of the destination, False to sync it.
#
# Attributes: track.title, track.artist, track.album, track.number,
# track.file_path, track.disc_number, track.disc_total, track.extension
#
# regex_match(pattern, text) returns True when pattern matches anywhere in text.


def filter(track):
    return False
'''

_ALLOWED_BUILTINS = (
    "abs",
    "all",
    "any",
    "bool",
    "dict",
    "enumerate",
    "float",
    "frozenset",
    "int",
    "isinstance",
    "len",
    "list",
    "map",
    "max",
    "min",
    "range",
    "reversed",
    "round",
    "set",
    "sorted",
    "str",
    "sum",
    "tuple",
    "zip",
    "ValueError",
    "TypeError",
    "KeyError",
)


@lru_cache(maxsize=256)
def _compile_pattern(expr: str) -> "re.Pattern[str]":
    return re.compile(expr)


def regex_match(expr: str, data: str) -> bool:
    """True if the regular expression `expr` matches anywhere in `data`."""
    return _compile_pattern(expr).search(data) is not None


def _script_namespace() -> dict:
    allowed = {name: getattr(builtins, name) for name in _ALLOWED_BUILTINS}
    return {"__builtins__": allowed, "regex_match": regex_match}


class CompiledFilter:
    """A validated filter script, ready to be evaluated against tracks."""

    def __init__(self, source: str, func: Callable[[TrackAttributes], bool]):
        self.source = source
        self._func = func

    def excludes(self, attrs: TrackAttributes) -> bool:
        """
        Evaluate the script for one track.

        Raises:
            FilterRuntimeError: If the script raises or does not return a bool
        """
        try:
            result = self._func(attrs)
        except Exception as e:
            raise FilterRuntimeError(
                f"Filter failed on {attrs.file_path}: {e}",
                details={"file_path": attrs.file_path, "original_error": e},
            ) from e

        if not isinstance(result, bool):
            raise FilterRuntimeError(
                f"Filter returned {type(result).__name__} instead of bool "
                f"for {attrs.file_path}",
                details={"file_path": attrs.file_path},
            )
        return result

    __call__ = excludes


def compile_filter(source: str) -> CompiledFilter:
    """
    Compile a filter script and check that it exposes filter(track).

    Raises:
        FilterCompileError: On syntax errors, errors while loading the script,
                            or a missing, non-callable or wrongly shaped filter()
    """
    try:
        code = compile(source, FILTER_FILENAME, "exec")
    except (SyntaxError, ValueError) as e:
        raise FilterCompileError(
            f"Filter script does not compile: {e}", details={"original_error": e}
        ) from e

    namespace = _script_namespace()
    try:
        exec(code, namespace)
    except Exception as e:
        raise FilterCompileError(
            f"Filter script failed to load: {e}", details={"original_error": e}
        ) from e

    func = namespace.get(FILTER_FN_NAME)
    if func is None:
        raise FilterCompileError(f"Filter script does not define {FILTER_FN_NAME}()")
    if not callable(func):
        raise FilterCompileError(f"{FILTER_FN_NAME} is not callable")

    try:
        inspect.signature(func).bind(None)
    except (TypeError, ValueError) as e:
        raise FilterCompileError(
            f"{FILTER_FN_NAME}() must take exactly one track argument",
            details={"original_error": e},
        ) from e

    return CompiledFilter(source, func)


def validate(source: str) -> None:
    """Check a filter script before storing it. Raises FilterCompileError."""
    compile_filter(source)


def load_filter(catalog) -> Optional[CompiledFilter]:
    """Compile the filter stored in `catalog`, if any."""
    source = catalog.get_filter()
    if source is None:
        return None
    logger.debug(f"Loaded filter from {catalog}")
    return compile_filter(source)


def filter_tracks(
    tracks: Iterable[Track],
    predicate: Optional[CompiledFilter],
    keep_deletions: bool = False,
) -> list[Track]:
    """
    Drop the tracks the predicate excludes.

    With keep_deletions the predicate still runs on every track (so script
    errors surface) but nothing is dropped; used when resolving tracks to
    delete from a destination.
    """
    tracks = list(tracks)
    if predicate is None:
        return tracks

    kept = []
    for track in tracks:
        excluded = predicate.excludes(track.attributes())
        if excluded and not keep_deletions:
            logger.debug(f"Filtered out: {track}")
            continue
        kept.append(track)
    return kept
