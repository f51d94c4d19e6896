"""TreeStore - owner of the saved-query library forest.

This service handles:
- Folder/query CRUD on an immutable forest (path-copy updates)
- Drag-and-drop moves (delegated to MoveResolver)
- Query selection and drag-preview bookkeeping
- Auto-persisting every changed snapshot through SnapshotStorage
- Import/export of library files through SnapshotCodec
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
import sqlite3
from typing import Callable, Iterable, List, Optional, Union
import uuid

from pydantic import ValidationError

from ..models.query_tree import (
    DEFAULT_QUERY_TEXT,
    DEFAULT_ROOT_FOLDER_NAME,
    MAX_TREE_DEPTH,
    ChartConfig,
    FolderNode,
    Forest,
    QueryNode,
    TreeNode,
)
from .config import AppConfig, get_config
from .database import DatabaseService
from .library_errors import (
    InvalidChartConfigError,
    LibraryError,
    MalformedSnapshotError,
    NodeNotFoundError,
    NotAFolderError,
    NotAQueryError,
    SnapshotPersistError,
    TreeTooDeepError,
)
from .move_resolver import MoveOutcome, MoveResolver
from .snapshot_codec import SnapshotCodec, summarize_validation_errors
from .snapshot_storage import SnapshotStorage
from .tree_paths import append_child, contains, locate, remove_at, update_at

logger = logging.getLogger(__name__)

DEFAULT_EXPORT_FILENAME = "query_library.json"

SnapshotListener = Callable[[Forest], None]
PersistErrorListener = Callable[[SnapshotPersistError], None]


@dataclass(frozen=True)
class MutationResult:
    """Outcome of a store operation.

    ``forest`` is always the store's forest after the call; it is the same
    object as before when ``changed`` is False.
    """

    forest: Forest
    changed: bool
    node_id: Optional[str] = None
    error: Optional[LibraryError] = None
    outcome: Optional[MoveOutcome] = None
    persist_error: Optional[SnapshotPersistError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> "MutationResult":
        """Raise the carried error, if any; returns self otherwise."""
        if self.error is not None:
            raise self.error
        return self


def default_forest() -> Forest:
    """Forest used when no snapshot has been saved yet."""
    return (FolderNode(id=str(uuid.uuid4()), name=DEFAULT_ROOT_FOLDER_NAME),)


class TreeStore:
    """Single owner of the library forest.

    Every public operation replaces the forest reference in one step, so a
    caller never observes a partially applied change. Operations never raise
    library errors; they report them in the returned ``MutationResult``.
    """

    def __init__(
        self,
        forest: Iterable[TreeNode] = (),
        *,
        storage: Optional[SnapshotStorage] = None,
        codec: Optional[SnapshotCodec] = None,
        resolver: Optional[MoveResolver] = None,
        id_factory: Optional[Callable[[], str]] = None,
        default_query_text: str = DEFAULT_QUERY_TEXT,
    ):
        """Initialize the store.

        Args:
            forest: Initial forest (not persisted until the first change); duplicate
                ids or over-deep nesting raise MalformedSnapshotError
            storage: Snapshot storage mirrored after every change; None keeps
                the store purely in memory
            codec: Snapshot codec (default: 2-space indented JSON)
            resolver: Move resolver for drop gestures
            id_factory: Generator of new node ids (default: uuid4 strings)
            default_query_text: SQL text given to newly added queries
        """
        self.codec = codec or SnapshotCodec()
        self._forest: Forest = self.codec.check_forest(tuple(forest))
        self.storage = storage
        self.resolver = resolver or MoveResolver()
        self._new_id = id_factory or (lambda: str(uuid.uuid4()))
        self.default_query_text = default_query_text
        self._selected_id: Optional[str] = None
        self._drag_id: Optional[str] = None
        self._listeners: List[SnapshotListener] = []
        self._persist_error_listeners: List[PersistErrorListener] = []
        self.last_persist_error: Optional[SnapshotPersistError] = None
        self._flush_on_close = True

    # ========================================
    # Lifecycle
    # ========================================

    @classmethod
    def open(cls, storage: SnapshotStorage, **kwargs) -> "TreeStore":
        """Create a store from the last persisted snapshot.

        Falls back to the default forest when nothing is stored, the storage
        cannot be read, or the stored snapshot is malformed. Only the empty
        case writes the seed right away; an unreadable store is left alone and
        a malformed snapshot is copied to the storage's backup key first.
        """
        codec = kwargs.get("codec") or SnapshotCodec()
        forest: Optional[Forest] = None
        seed_now = fallback = False
        try:
            text = storage.read()
        except (sqlite3.Error, OSError) as exc:
            logger.error(
                "Cannot read library snapshot '%s', starting from default library: %s",
                storage.key,
                exc,
            )
            text = None
            fallback = True
        else:
            seed_now = text is None
        if text is not None:
            try:
                forest = codec.deserialize(text)
                logger.info(
                    "Loaded library snapshot '%s' (%d root nodes)", storage.key, len(forest)
                )
            except MalformedSnapshotError as exc:
                logger.error(
                    "Stored snapshot '%s' is malformed, starting from default library: %s",
                    storage.key,
                    exc.message,
                )
                cls._backup_malformed(storage, text)
                fallback = True
        if forest is None:
            forest = default_forest()
            logger.info("Starting with default library")
        store = cls(forest, storage=storage, **kwargs)
        # A fallback forest is not flushed on close; only a real change overwrites storage.
        store._flush_on_close = not fallback
        if seed_now:
            # Seed ids must survive a restart.
            store._persist()
        return store

    @staticmethod
    def _backup_malformed(storage: SnapshotStorage, text: str) -> None:
        try:
            backup_key = storage.backup(text)
        except (sqlite3.Error, OSError) as exc:
            logger.error("Could not back up malformed snapshot '%s': %s", storage.key, exc)
        else:
            logger.warning("Kept malformed snapshot under '%s'", backup_key)

    def close(self) -> Optional[SnapshotPersistError]:
        """Flush the current forest to storage one last time."""
        if self._flush_on_close:
            self._persist()
        return self.last_persist_error

    # ========================================
    # Observation
    # ========================================

    @property
    def forest(self) -> Forest:
        return self._forest

    @property
    def selected_query(self) -> Optional[QueryNode]:
        if self._selected_id is None:
            return None
        node = self.find(self._selected_id)
        return node if isinstance(node, QueryNode) else None

    @property
    def active_drag_node(self) -> Optional[TreeNode]:
        if self._drag_id is None:
            return None
        return self.find(self._drag_id)

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Call ``listener`` with every new forest; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def on_persist_error(self, listener: PersistErrorListener) -> None:
        self._persist_error_listeners.append(listener)

    def find(self, node_id: str) -> Optional[TreeNode]:
        location = locate(self._forest, node_id)
        return location.node if location else None

    def get_query_text(self, node_id: str) -> Optional[str]:
        """Return the SQL of a query node, or None for folders and unknown ids."""
        node = self.find(node_id)
        return node.text if isinstance(node, QueryNode) else None

    # ========================================
    # Node Operations
    # ========================================

    def add_folder(self, name: str, parent_id: Optional[str] = None) -> MutationResult:
        return self._add(FolderNode(id=self._new_id(), name=name), parent_id)

    def add_query(
        self, name: str, parent_id: Optional[str] = None, text: Optional[str] = None
    ) -> MutationResult:
        query = QueryNode(
            id=self._new_id(),
            name=name,
            text=self.default_query_text if text is None else text,
        )
        return self._add(query, parent_id)

    def _add(self, node: TreeNode, parent_id: Optional[str]) -> MutationResult:
        if parent_id is None:
            return self._commit(self._forest + (node,), node.id)

        parent = locate(self._forest, parent_id)
        if parent is None:
            logger.warning("Parent %s not found, adding %s to the root", parent_id, node.id)
            return self._commit(self._forest + (node,), node.id)
        if not isinstance(parent.node, FolderNode):
            return self._unchanged(
                NotAFolderError(
                    f"Cannot add a child to non-folder node: {parent_id}",
                    {"parent_id": parent_id},
                )
            )
        if len(parent.path) + 1 > MAX_TREE_DEPTH:
            return self._unchanged(
                TreeTooDeepError(
                    f"Cannot nest nodes deeper than {MAX_TREE_DEPTH} levels",
                    {"parent_id": parent_id, "max_depth": MAX_TREE_DEPTH},
                )
            )
        return self._commit(append_child(self._forest, parent.path, node), node.id)

    def rename(self, node_id: str, new_name: str) -> MutationResult:
        location = locate(self._forest, node_id)
        if location is None:
            return self._unchanged(self._not_found(node_id))
        forest = update_at(
            self._forest, location.path, lambda node: node.model_copy(update={"name": new_name})
        )
        return self._commit(forest, node_id)

    def delete_node(self, node_id: str) -> MutationResult:
        """Remove a node and its whole subtree; unknown ids are a no-op."""
        location = locate(self._forest, node_id)
        if location is None:
            return MutationResult(self._forest, changed=False, node_id=node_id)
        forest, removed = remove_at(self._forest, location.path)
        if self._selected_id is not None and contains(removed, self._selected_id):
            self._selected_id = None
        if self._drag_id is not None and contains(removed, self._drag_id):
            self._drag_id = None
        return self._commit(forest, node_id)

    def save_query_text(self, node_id: str, text: str) -> MutationResult:
        return self._update_query(node_id, {"text": text})

    def save_chart_config(
        self, node_id: str, config: Union[ChartConfig, dict, None]
    ) -> MutationResult:
        """Store chart settings on a query; ``None`` clears them."""
        if isinstance(config, dict):
            try:
                config = ChartConfig.model_validate(config)
            except ValidationError as exc:
                return self._unchanged(
                    InvalidChartConfigError(
                        "Invalid chart configuration",
                        {"node_id": node_id, "errors": summarize_validation_errors(exc)},
                    )
                )
        return self._update_query(node_id, {"chart_config": config})

    def _update_query(self, node_id: str, update: dict) -> MutationResult:
        location = locate(self._forest, node_id)
        if location is None:
            return self._unchanged(self._not_found(node_id))
        if not isinstance(location.node, QueryNode):
            return self._unchanged(
                NotAQueryError(f"Node is not a query: {node_id}", {"node_id": node_id})
            )
        forest = update_at(
            self._forest, location.path, lambda node: node.model_copy(update=update)
        )
        return self._commit(forest, node_id)

    # ========================================
    # Moves and Gestures
    # ========================================

    def move(self, active_id: str, over_id: str) -> MutationResult:
        result = self.resolver.resolve(self._forest, active_id, over_id)
        if not result.changed:
            return MutationResult(
                self._forest,
                changed=False,
                node_id=active_id,
                error=result.error,
                outcome=result.outcome,
            )
        logger.info("Move %s -> %s resolved as %s", active_id, over_id, result.outcome.value)
        committed = self._commit(result.forest, active_id)
        return MutationResult(
            committed.forest,
            changed=True,
            node_id=active_id,
            persist_error=committed.persist_error,
            outcome=result.outcome,
        )

    def select_node(self, node_id: str) -> Optional[QueryNode]:
        """Select a query; folders and unknown ids keep the current selection."""
        node = self.find(node_id)
        if isinstance(node, QueryNode):
            self._selected_id = node_id
        return self.selected_query

    def clear_selection(self) -> None:
        self._selected_id = None

    def drag_start(self, node_id: str) -> Optional[TreeNode]:
        self._drag_id = node_id if self.find(node_id) is not None else None
        return self.active_drag_node

    def drag_end(self, over_id: Optional[str] = None) -> MutationResult:
        """Finish a drag; a drop target triggers ``move(dragged, over_id)``."""
        active_id, self._drag_id = self._drag_id, None
        if active_id is None or over_id is None:
            return MutationResult(self._forest, changed=False, node_id=active_id)
        return self.move(active_id, over_id)

    # ========================================
    # Snapshots
    # ========================================

    def serialize_snapshot(self) -> str:
        return self.codec.serialize(self._forest)

    def load_snapshot(self, text: str) -> MutationResult:
        """Replace the forest with a decoded snapshot; a malformed one keeps the current tree."""
        try:
            forest = self.codec.deserialize(text)
        except MalformedSnapshotError as exc:
            logger.error("Rejected library snapshot: %s", exc.message)
            return self._unchanged(exc)
        self._selected_id = self._drag_id = None
        return self._commit(forest)

    def export_library(self, path: Union[str, Path]) -> Path:
        """Write the current snapshot to a file (a directory gets the default file name)."""
        target = Path(path).expanduser()
        if target.is_dir():
            target = target / DEFAULT_EXPORT_FILENAME
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.serialize_snapshot(), encoding="utf-8")
        logger.info("Exported library to %s", target)
        return target

    def import_library(self, path: Union[str, Path]) -> MutationResult:
        """Load a library file; OSError from reading the file propagates."""
        try:
            text = Path(path).expanduser().read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            return self._unchanged(
                MalformedSnapshotError("Snapshot must be UTF-8 encoded JSON", {"reason": str(exc)})
            )
        result = self.load_snapshot(text)
        if result.ok:
            logger.info("Imported library from %s", path)
        return result

    # ========================================
    # Internals
    # ========================================

    def _not_found(self, node_id: str) -> NodeNotFoundError:
        return NodeNotFoundError(f"Node not found: {node_id}", {"node_id": node_id})

    def _unchanged(self, error: LibraryError) -> MutationResult:
        return MutationResult(
            self._forest, changed=False, node_id=error.details.get("node_id"), error=error
        )

    def _commit(self, forest: Forest, node_id: Optional[str] = None) -> MutationResult:
        self._forest = forest
        self._flush_on_close = True
        persist_error = self._persist()
        self._notify(self._listeners, forest)
        return MutationResult(forest, changed=True, node_id=node_id, persist_error=persist_error)

    def _persist(self) -> Optional[SnapshotPersistError]:
        if self.storage is None:
            return None
        try:
            self.storage.write(self.serialize_snapshot())
        except (sqlite3.Error, OSError, ValueError) as exc:
            logger.exception("Failed to persist library snapshot: %s", exc)
            error = SnapshotPersistError(
                f"Failed to persist library snapshot: {exc}", {"key": self.storage.key}
            )
            self.last_persist_error = error
            self._notify(self._persist_error_listeners, error)
            return error
        self.last_persist_error = None
        return None

    def _notify(self, listeners: list, payload) -> None:
        for listener in list(listeners):
            try:
                listener(payload)
            except Exception:
                logger.exception("Library listener %r failed", listener)


def open_tree_store(config: Optional[AppConfig] = None) -> TreeStore:
    """Open a store backed by the configured SQLite snapshot storage."""
    config = config or get_config()
    storage = SnapshotStorage(DatabaseService(config.database_path), key=config.snapshot_key)
    return TreeStore.open(storage, default_query_text=config.default_query_text)


_tree_store: Optional[TreeStore] = None


def get_tree_store() -> TreeStore:
    """Get or create the process-wide TreeStore singleton.

    Returns:
        TreeStore instance
    """
    global _tree_store
    if _tree_store is None:
        _tree_store = open_tree_store()
    return _tree_store


def close_tree_store() -> None:
    """Flush and drop the process-wide TreeStore singleton."""
    global _tree_store
    if _tree_store is not None:
        _tree_store.close()
        _tree_store = None


__all__ = [
    "TreeStore",
    "MutationResult",
    "default_forest",
    "open_tree_store",
    "get_tree_store",
    "close_tree_store",
    "DEFAULT_EXPORT_FILENAME",
]
