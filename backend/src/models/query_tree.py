"""Pydantic models for the saved-query library tree."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

DEFAULT_QUERY_TEXT = "SELECT * FROM ..."
DEFAULT_ROOT_FOLDER_NAME = "Queries"
# Deepest nesting allowed; a root node sits at depth 1.
MAX_TREE_DEPTH = 100


class ChartType(str, Enum):
    """Chart renderers a query result can default to."""

    LINE = "line"
    AREA = "area"
    BAR = "bar"
    PIE = "pie"
    POLAR_AREA = "polarArea"


CIRCULAR_CHART_TYPES = frozenset({ChartType.PIE, ChartType.POLAR_AREA})


class ChartConfig(BaseModel):
    """Chart settings stored alongside a saved query."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: ChartType = Field(default=ChartType.LINE, description="Chart renderer")
    x_column: int = Field(
        default=0, ge=0, alias="xColumn", description="X axis (or label) column index"
    )
    y_columns: List[int] = Field(
        ..., min_length=1, alias="yColumns", description="Y axis (or value) column indices"
    )
    title: Optional[str] = Field(None, description="Optional chart title")
    default_to_chart: bool = Field(
        default=False,
        alias="defaultToChart",
        description="Open results in chart view instead of the grid",
    )

    @model_validator(mode="after")
    def _check_columns(self) -> "ChartConfig":
        circular = self.type in CIRCULAR_CHART_TYPES
        value_label = "Value" if circular else "Y"
        axis_label = "Label" if circular else "X"
        if circular and len(self.y_columns) > 1:
            raise ValueError(f"{self.type.value} chart supports only one value column")
        for column in self.y_columns:
            if column < 0:
                raise ValueError("Columns must be non-negative")
            if column == self.x_column:
                raise ValueError(
                    f"{value_label} column cannot be the same as {axis_label} column"
                )
        return self


class FolderNode(BaseModel):
    """Folder row; the only node kind that owns children."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=1, description="Unique node id (UUID)")
    name: str = Field(..., description="Display name")
    type: Literal["FOLDER"] = Field(default="FOLDER", description="Node kind tag")
    children: Tuple["TreeNode", ...] = Field(
        default=(), description="Ordered child nodes (display and export order)"
    )


class QueryNode(BaseModel):
    """Saved SQL query row."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=1, description="Unique node id (UUID)")
    name: str = Field(..., description="Display name")
    type: Literal["QUERY"] = Field(default="QUERY", description="Node kind tag")
    text: str = Field(..., alias="query", description="SQL text")
    chart_config: Optional[ChartConfig] = Field(
        None, alias="chartConfig", description="Optional chart settings"
    )

    @model_validator(mode="before")
    @classmethod
    def _reject_children(cls, data: Any) -> Any:
        # Older library files wrote an empty children list on every query.
        if isinstance(data, dict) and "children" in data:
            if data["children"]:
                raise ValueError("Query nodes cannot carry children")
            data = {key: value for key, value in data.items() if key != "children"}
        return data


TreeNode = Annotated[Union[FolderNode, QueryNode], Field(discriminator="type")]
Forest = Tuple[TreeNode, ...]

FolderNode.model_rebuild()


__all__ = [
    "DEFAULT_QUERY_TEXT",
    "DEFAULT_ROOT_FOLDER_NAME",
    "MAX_TREE_DEPTH",
    "ChartType",
    "CIRCULAR_CHART_TYPES",
    "ChartConfig",
    "FolderNode",
    "QueryNode",
    "TreeNode",
    "Forest",
]
