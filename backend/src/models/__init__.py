"""Pydantic models for data validation and serialization."""

from .query_tree import (
    ChartConfig,
    ChartType,
    FolderNode,
    Forest,
    QueryNode,
    TreeNode,
)

__all__ = [
    "ChartType",
    "ChartConfig",
    "FolderNode",
    "QueryNode",
    "TreeNode",
    "Forest",
]
