"""Drag-and-drop move classification for the query library.

A drop is reported as ``(active_id, over_id)``. When both nodes share a
container the drop reorders that container; otherwise the active node is
appended to ``over`` provided ``over`` is a folder outside the active
node's own subtree. Every other drop leaves the forest unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..models.query_tree import MAX_TREE_DEPTH, FolderNode, Forest
from .library_errors import (
    CyclicMoveError,
    LibraryError,
    NodeNotFoundError,
    NotAFolderError,
    TreeTooDeepError,
)
from .tree_paths import (
    append_child,
    array_move,
    children_at,
    contains,
    locate,
    remove_at,
    replace_children,
    subtree_height,
)

logger = logging.getLogger(__name__)


class MoveOutcome(str, Enum):
    """How a drop was classified."""

    SAME_NODE = "same_node"
    NOT_FOUND = "not_found"
    REORDER = "reorder"
    REPARENT = "reparent"
    REJECTED_NOT_A_FOLDER = "rejected_not_a_folder"
    REJECTED_CYCLE = "rejected_cycle"
    REJECTED_TOO_DEEP = "rejected_too_deep"


@dataclass(frozen=True)
class MoveResult:
    """Forest produced by a drop plus its classification."""

    outcome: MoveOutcome
    forest: Forest
    error: Optional[LibraryError] = None

    @property
    def changed(self) -> bool:
        return self.outcome in (MoveOutcome.REORDER, MoveOutcome.REPARENT)


class MoveResolver:
    """Stateless reorder-vs-reparent decision for drop gestures."""

    def resolve(self, forest: Forest, active_id: str, over_id: str) -> MoveResult:
        if active_id == over_id:
            return MoveResult(MoveOutcome.SAME_NODE, forest)

        active = locate(forest, active_id)
        over = locate(forest, over_id)
        if active is None or over is None:
            missing = [node_id for node_id, loc in ((active_id, active), (over_id, over)) if loc is None]
            return MoveResult(
                MoveOutcome.NOT_FOUND,
                forest,
                NodeNotFoundError(
                    f"Node not found: {', '.join(missing)}", {"missing_ids": missing}
                ),
            )

        if active.parent_id == over.parent_id:
            container_path = active.container_path
            siblings = children_at(forest, container_path)
            reordered = array_move(siblings, active.index, over.index)
            return MoveResult(
                MoveOutcome.REORDER, replace_children(forest, container_path, reordered)
            )

        if not isinstance(over.node, FolderNode):
            logger.warning(
                "Rejected move of %s onto %s: target is not a folder", active_id, over_id
            )
            return MoveResult(
                MoveOutcome.REJECTED_NOT_A_FOLDER,
                forest,
                NotAFolderError(
                    f"Cannot move into non-folder node: {over_id}",
                    {"active_id": active_id, "over_id": over_id},
                ),
            )

        if contains(active.node, over_id):
            logger.warning(
                "Rejected move of %s into its own subtree (%s)", active_id, over_id
            )
            return MoveResult(
                MoveOutcome.REJECTED_CYCLE,
                forest,
                CyclicMoveError(
                    "Cannot move a folder into itself or one of its descendants",
                    {"active_id": active_id, "over_id": over_id},
                ),
            )

        # The target keeps its depth once the active node is detached.
        new_depth = len(over.path) + subtree_height(active.node)
        if new_depth > MAX_TREE_DEPTH:
            logger.warning(
                "Rejected move of %s into %s: depth %d exceeds %d",
                active_id,
                over_id,
                new_depth,
                MAX_TREE_DEPTH,
            )
            return MoveResult(
                MoveOutcome.REJECTED_TOO_DEEP,
                forest,
                TreeTooDeepError(
                    f"Move would nest nodes deeper than {MAX_TREE_DEPTH} levels",
                    {"active_id": active_id, "over_id": over_id, "max_depth": MAX_TREE_DEPTH},
                ),
            )

        detached, moved = remove_at(forest, active.path)
        # Removing the active node can shift the target folder's index path.
        target = locate(detached, over_id)
        return MoveResult(MoveOutcome.REPARENT, append_child(detached, target.path, moved))


__all__ = ["MoveOutcome", "MoveResult", "MoveResolver"]
