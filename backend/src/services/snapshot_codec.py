"""JSON encoding of library forests for storage and import/export."""

from __future__ import annotations

from collections import Counter
import json
from typing import Any, Dict, List

from pydantic import TypeAdapter, ValidationError

from ..models.query_tree import MAX_TREE_DEPTH, Forest
from .library_errors import MalformedSnapshotError
from .tree_paths import collect_ids, forest_depth

_FOREST_ADAPTER: TypeAdapter[Forest] = TypeAdapter(Forest)


def summarize_validation_errors(exc: ValidationError) -> List[Dict[str, Any]]:
    return [
        {"loc": [str(part) for part in error["loc"]], "message": error["msg"]}
        for error in exc.errors()
    ]


def _payload_exceeds_depth(payload: List[Any], limit: int) -> bool:
    """Walk raw decoded nodes without recursion; stops at the first node past ``limit``."""
    stack = [(node, 1) for node in payload]
    while stack:
        node, level = stack.pop()
        if level > limit:
            return True
        if isinstance(node, dict) and isinstance(node.get("children"), list):
            stack.extend((child, level + 1) for child in node["children"])
    return False


class SnapshotCodec:
    """Serialize a forest to text and back, rejecting structural violations.

    The encoding is a JSON array of nodes using the library file field names
    (``id``, ``name``, ``type``, ``children``, ``query``, ``chartConfig``).
    Output is deterministic for a given forest. Forests nested deeper than
    ``MAX_TREE_DEPTH`` are rejected in both directions.
    """

    def __init__(self, indent: int = 2):
        self.indent = indent

    def to_payload(self, forest: Forest) -> List[Dict[str, Any]]:
        return _FOREST_ADAPTER.dump_python(
            tuple(forest), mode="json", by_alias=True, exclude_none=True
        )

    def serialize(self, forest: Forest) -> str:
        return json.dumps(self.to_payload(forest), indent=self.indent, ensure_ascii=False)

    def check_forest(self, forest: Forest) -> Forest:
        """Reject duplicate ids and over-deep nesting in an already built forest."""
        duplicates = sorted(
            node_id for node_id, count in Counter(collect_ids(forest)).items() if count > 1
        )
        if duplicates:
            raise MalformedSnapshotError(
                "Snapshot contains duplicate node ids", {"duplicate_ids": duplicates}
            )
        if forest_depth(forest) > MAX_TREE_DEPTH:
            raise MalformedSnapshotError(
                f"Snapshot nests nodes deeper than {MAX_TREE_DEPTH} levels",
                {"max_depth": MAX_TREE_DEPTH},
            )
        return forest

    def from_payload(self, payload: Any) -> Forest:
        if not isinstance(payload, list):
            raise MalformedSnapshotError(
                "Snapshot must be a JSON array of nodes",
                {"received": type(payload).__name__},
            )
        if _payload_exceeds_depth(payload, MAX_TREE_DEPTH):
            raise MalformedSnapshotError(
                f"Snapshot nests nodes deeper than {MAX_TREE_DEPTH} levels",
                {"max_depth": MAX_TREE_DEPTH},
            )
        try:
            forest = _FOREST_ADAPTER.validate_python(payload)
        except ValidationError as exc:
            raise MalformedSnapshotError(
                "Snapshot failed validation", {"errors": summarize_validation_errors(exc)}
            ) from exc
        return self.check_forest(forest)

    def deserialize(self, text: str) -> Forest:
        try:
            payload = json.loads(text)
        except RecursionError as exc:
            raise MalformedSnapshotError(
                "Snapshot JSON is nested too deeply to decode", {"reason": "recursion_limit"}
            ) from exc
        except (TypeError, ValueError) as exc:
            raise MalformedSnapshotError(
                f"Snapshot is not valid JSON: {exc}", {"reason": str(exc)}
            ) from exc
        return self.from_payload(payload)


__all__ = ["SnapshotCodec", "summarize_validation_errors"]
