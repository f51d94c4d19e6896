"""Service layer for the query library."""

from .config import AppConfig, get_config, reload_config
from .database import DatabaseService, init_database
from .library_errors import (
    CyclicMoveError,
    InvalidChartConfigError,
    LibraryError,
    MalformedSnapshotError,
    NodeNotFoundError,
    NotAFolderError,
    NotAQueryError,
    SnapshotPersistError,
    TreeTooDeepError,
)
from .move_resolver import MoveOutcome, MoveResolver, MoveResult
from .snapshot_codec import SnapshotCodec
from .snapshot_storage import SnapshotStorage
from .tree_store import (
    MutationResult,
    TreeStore,
    close_tree_store,
    get_tree_store,
    open_tree_store,
)

__all__ = [
    "AppConfig",
    "get_config",
    "reload_config",
    "DatabaseService",
    "init_database",
    "LibraryError",
    "NodeNotFoundError",
    "NotAFolderError",
    "NotAQueryError",
    "CyclicMoveError",
    "TreeTooDeepError",
    "InvalidChartConfigError",
    "MalformedSnapshotError",
    "SnapshotPersistError",
    "MoveOutcome",
    "MoveResolver",
    "MoveResult",
    "SnapshotCodec",
    "SnapshotStorage",
    "MutationResult",
    "TreeStore",
    "open_tree_store",
    "get_tree_store",
    "close_tree_store",
]
