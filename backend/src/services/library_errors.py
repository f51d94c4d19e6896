"""Error taxonomy for query library operations."""

from __future__ import annotations

from typing import Any, Dict, Optional


class LibraryError(Exception):
    """Base class for query library failures."""

    code = "library_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NodeNotFoundError(LibraryError):
    """Raised when an operation references an id absent from the tree."""

    code = "not_found"


class NotAFolderError(LibraryError):
    """Raised when a child is added to, or moved into, a non-folder node."""

    code = "not_a_folder"


class NotAQueryError(LibraryError):
    """Raised when query-only fields are saved on a folder."""

    code = "not_a_query"


class CyclicMoveError(LibraryError):
    """Raised when a folder would be moved into its own subtree."""

    code = "cyclic_move"


class TreeTooDeepError(LibraryError):
    """Raised when a change would nest nodes past the maximum tree depth."""

    code = "too_deep"


class InvalidChartConfigError(LibraryError):
    """Raised when chart settings fail validation."""

    code = "invalid_chart_config"


class MalformedSnapshotError(LibraryError):
    """Raised when a snapshot cannot be decoded into a valid forest."""

    code = "malformed_snapshot"


class SnapshotPersistError(LibraryError):
    """Raised when the current snapshot could not be written to storage."""

    code = "persist_failed"


__all__ = [
    "LibraryError",
    "NodeNotFoundError",
    "NotAFolderError",
    "NotAQueryError",
    "CyclicMoveError",
    "TreeTooDeepError",
    "InvalidChartConfigError",
    "MalformedSnapshotError",
    "SnapshotPersistError",
]
