"""Depth-first lookup and path-copy helpers for library forests.

A node's position is an index path: ``(2,)`` is the third root node and
``(2, 0)`` is the first child of that folder. Updates copy only the folders
along a path and return a new forest; every other subtree is shared with the
input forest.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

from ..models.query_tree import FolderNode, Forest, TreeNode

NodePath = Tuple[int, ...]


@dataclass(frozen=True)
class NodeLocation:
    """Where a node currently lives in a forest."""

    node: TreeNode
    path: NodePath
    parent_id: Optional[str]  # None means the forest root

    @property
    def index(self) -> int:
        return self.path[-1]

    @property
    def container_path(self) -> NodePath:
        return self.path[:-1]


def iter_nodes(
    nodes: Sequence[TreeNode],
    prefix: NodePath = (),
    parent_id: Optional[str] = None,
) -> Iterator[NodeLocation]:
    """Yield every node in depth-first pre-order."""
    for index, node in enumerate(nodes):
        path = prefix + (index,)
        yield NodeLocation(node=node, path=path, parent_id=parent_id)
        if isinstance(node, FolderNode):
            yield from iter_nodes(node.children, path, node.id)


def locate(forest: Forest, node_id: str) -> Optional[NodeLocation]:
    """Find a node by id; ids are unique so the first match wins."""
    for location in iter_nodes(forest):
        if location.node.id == node_id:
            return location
    return None


def find_node(forest: Forest, node_id: str) -> Optional[TreeNode]:
    location = locate(forest, node_id)
    return location.node if location else None


def contains(node: TreeNode, node_id: str) -> bool:
    """True when ``node_id`` is ``node`` itself or anywhere below it."""
    if node.id == node_id:
        return True
    if isinstance(node, FolderNode):
        return any(contains(child, node_id) for child in node.children)
    return False


def collect_ids(forest: Forest) -> List[str]:
    return [location.node.id for location in iter_nodes(forest)]


def subtree_height(node: TreeNode) -> int:
    """Levels spanned by ``node`` and its descendants; a query or empty folder is 1."""
    if isinstance(node, FolderNode) and node.children:
        return 1 + max(subtree_height(child) for child in node.children)
    return 1


def forest_depth(forest: Forest) -> int:
    return max((subtree_height(node) for node in forest), default=0)


def children_at(forest: Forest, container_path: NodePath) -> Tuple[TreeNode, ...]:
    """Return the ordered child list addressed by a folder path (``()`` is root)."""
    nodes: Tuple[TreeNode, ...] = tuple(forest)
    for index in container_path:
        folder = nodes[index]
        if not isinstance(folder, FolderNode):
            raise ValueError(f"Path {container_path} passes through a non-folder node")
        nodes = folder.children
    return nodes


def replace_children(
    forest: Forest, container_path: NodePath, children: Sequence[TreeNode]
) -> Forest:
    """Swap the child list at ``container_path``, copying only its ancestors."""
    if not container_path:
        return tuple(children)
    head, rest = container_path[0], container_path[1:]
    folder = forest[head]
    if not isinstance(folder, FolderNode):
        raise ValueError(f"Path {container_path} passes through a non-folder node")
    updated = folder.model_copy(
        update={"children": replace_children(folder.children, rest, children)}
    )
    return forest[:head] + (updated,) + forest[head + 1:]


def update_at(
    forest: Forest, path: NodePath, transform: Callable[[TreeNode], TreeNode]
) -> Forest:
    """Replace the node at ``path`` with ``transform(node)``."""
    container_path, index = path[:-1], path[-1]
    siblings = children_at(forest, container_path)
    replaced = siblings[:index] + (transform(siblings[index]),) + siblings[index + 1:]
    return replace_children(forest, container_path, replaced)


def remove_at(forest: Forest, path: NodePath) -> Tuple[Forest, TreeNode]:
    """Detach the node at ``path``; returns the new forest and the removed node."""
    container_path, index = path[:-1], path[-1]
    siblings = children_at(forest, container_path)
    removed = siblings[index]
    return replace_children(forest, container_path, siblings[:index] + siblings[index + 1:]), removed


def append_child(forest: Forest, folder_path: NodePath, node: TreeNode) -> Forest:
    """Append ``node`` to the end of the folder at ``folder_path`` (``()`` is root)."""
    siblings = children_at(forest, folder_path)
    return replace_children(forest, folder_path, siblings + (node,))


def array_move(items: Sequence[TreeNode], from_index: int, to_index: int) -> Tuple[TreeNode, ...]:
    """Remove the item at ``from_index`` and reinsert it at ``to_index``."""
    moved = list(items)
    item = moved.pop(from_index)
    moved.insert(to_index, item)
    return tuple(moved)


__all__ = [
    "NodePath",
    "NodeLocation",
    "iter_nodes",
    "locate",
    "find_node",
    "contains",
    "collect_ids",
    "subtree_height",
    "forest_depth",
    "children_at",
    "replace_children",
    "update_at",
    "remove_at",
    "append_child",
    "array_move",
]
