"""
Exception classes for tracksync.

Exception Hierarchy:
    TracksyncError (base)
        ValidationError - missing or invalid command parameters
        StorageError - catalog database issues
            RoleMismatchError - catalog opened with the wrong source/destination role
        TraversalError - filesystem errors while walking a source directory
        TagReadError - audio tags could not be read
        CopyError - a track's content could not be copied or linked
        OrphanedFileError - a file survived the deletion of its catalog row
        FilterError - filter script issues
            FilterCompileError - the script does not compile or has no usable filter()
            FilterRuntimeError - the script failed while evaluating a track
"""


class TracksyncError(Exception):
    """
    Base exception for all tracksync errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context (paths, track ids,
                 the underlying exception).
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class ValidationError(TracksyncError):
    """
    Raised when a required command parameter is missing.

    Always raised before any catalog is opened.
    """


class StorageError(TracksyncError):
    """
    Raised when a catalog operation fails.

    Wraps sqlite3 and filesystem errors coming from the store. The failing
    operation is kept in details['operation'].
    """


class RoleMismatchError(StorageError):
    """Raised when a catalog's stored role differs from the requested one."""


class TraversalError(TracksyncError):
    """Raised when walking a source directory fails. Aborts the whole traversal."""


class TagReadError(TracksyncError):
    """Raised when a music file's tags cannot be read."""


class CopyError(TracksyncError):
    """
    Raised when copying or linking a track to the destination fails.

    The destination row stays in the Copying state so `clean` can remove it.
    """


class OrphanedFileError(TracksyncError):
    """
    Raised when a file cannot be removed after its catalog row was deleted.

    details['path'] holds the orphaned file.
    """


class FilterError(TracksyncError):
    """Base class for filter script errors."""


class FilterCompileError(FilterError):
    """Raised when a filter script cannot be compiled or lacks a usable filter()."""


class FilterRuntimeError(FilterError):
    """Raised when a compiled filter fails on a track."""
