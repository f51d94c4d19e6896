"""Query library API endpoints.

The frontend uses these endpoints to:
- Read the library tree and the current selection
- Add, rename and delete folders and queries
- Save query SQL and chart settings
- Report drag gestures and drops
- Export and import library files
"""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

from ...models.query_tree import ChartConfig, QueryNode, TreeNode
from ...services.library_errors import MalformedSnapshotError
from ...services.tree_store import (
    DEFAULT_EXPORT_FILENAME,
    MutationResult,
    TreeStore,
    get_tree_store,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/library", tags=["library"])


# ========================================
# Request/Response Models
# ========================================


class LibraryResponse(BaseModel):
    """Current tree plus UI bookkeeping."""
    nodes: List[TreeNode]
    selected_query_id: Optional[str] = None
    active_drag_id: Optional[str] = None


class MutationResponse(BaseModel):
    """Tree after a mutation."""
    changed: bool
    node_id: Optional[str] = None
    outcome: Optional[str] = None
    persist_error: Optional[str] = Field(
        None, description="Set when the snapshot could not be saved; the change still applies"
    )
    nodes: List[TreeNode]


class AddNodeRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=256)
    parent_id: Optional[str] = Field(
        None, description="Target folder; unknown ids fall back to the root"
    )


class AddQueryRequest(AddNodeRequest):
    query: Optional[str] = Field(None, description="Initial SQL (default placeholder)")


class RenameRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=256)


class SaveSqlRequest(BaseModel):
    query: str


class SaveChartRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    chart_config: Optional[ChartConfig] = Field(
        None, alias="chartConfig", description="Chart settings; null clears them"
    )


class MoveRequest(BaseModel):
    active_id: str = Field(..., min_length=1)
    over_id: str = Field(..., min_length=1)


class SelectRequest(BaseModel):
    node_id: str = Field(..., min_length=1)


class DragEndRequest(BaseModel):
    over_id: Optional[str] = Field(None, description="Drop target; null when dropped outside")


# ========================================
# Helper Functions
# ========================================


def library_to_response(store: TreeStore) -> LibraryResponse:
    selected = store.selected_query
    dragged = store.active_drag_node
    return LibraryResponse(
        nodes=list(store.forest),
        selected_query_id=selected.id if selected else None,
        active_drag_id=dragged.id if dragged else None,
    )


def mutation_to_response(result: MutationResult) -> MutationResponse:
    """Raise the carried library error or convert the result to a response."""
    result.raise_for_error()
    return MutationResponse(
        changed=result.changed,
        node_id=result.node_id,
        outcome=result.outcome.value if result.outcome else None,
        persist_error=result.persist_error.message if result.persist_error else None,
        nodes=list(result.forest),
    )


# ========================================
# Tree Endpoints
# ========================================


@router.get("", response_model=LibraryResponse)
async def get_library(store: TreeStore = Depends(get_tree_store)):
    """Get the library tree with the selected query and dragged node ids."""
    return library_to_response(store)


@router.post("/folders", response_model=MutationResponse, status_code=status.HTTP_201_CREATED)
async def add_folder(request: AddNodeRequest, store: TreeStore = Depends(get_tree_store)):
    """Create a folder at the root or inside ``parent_id``."""
    return mutation_to_response(store.add_folder(request.name, request.parent_id))


@router.post("/queries", response_model=MutationResponse, status_code=status.HTTP_201_CREATED)
async def add_query(request: AddQueryRequest, store: TreeStore = Depends(get_tree_store)):
    """Create a saved query at the root or inside ``parent_id``."""
    return mutation_to_response(
        store.add_query(request.name, request.parent_id, text=request.query)
    )


@router.patch("/nodes/{node_id}", response_model=MutationResponse)
async def rename_node(
    node_id: str, request: RenameRequest, store: TreeStore = Depends(get_tree_store)
):
    """Rename a folder or query."""
    return mutation_to_response(store.rename(node_id, request.name))


@router.delete("/nodes/{node_id}", response_model=MutationResponse)
async def delete_node(node_id: str, store: TreeStore = Depends(get_tree_store)):
    """Delete a node and its subtree. Deleting an unknown id is a no-op."""
    return mutation_to_response(store.delete_node(node_id))


@router.put("/queries/{node_id}/sql", response_model=MutationResponse)
async def save_query_sql(
    node_id: str, request: SaveSqlRequest, store: TreeStore = Depends(get_tree_store)
):
    """Save the SQL text of a query."""
    return mutation_to_response(store.save_query_text(node_id, request.query))


@router.put("/queries/{node_id}/chart", response_model=MutationResponse)
async def save_query_chart(
    node_id: str, request: SaveChartRequest, store: TreeStore = Depends(get_tree_store)
):
    """Save or clear the chart settings of a query."""
    return mutation_to_response(store.save_chart_config(node_id, request.chart_config))


@router.post("/move", response_model=MutationResponse)
async def move_node(request: MoveRequest, store: TreeStore = Depends(get_tree_store)):
    """
    Apply a drop of ``active_id`` onto ``over_id``.

    **Outcomes:**
    - `reorder`: both nodes share a container; the active node takes the target's index
    - `reparent`: the target is a folder in another container; the node is appended to it
    - `same_node`: dropped onto itself, nothing changes
    - rejected drops answer 409 (`not_a_folder`, `cyclic_move`, `too_deep`) or 404 (`not_found`)
    """
    return mutation_to_response(store.move(request.active_id, request.over_id))


# ========================================
# Selection and Drag Endpoints
# ========================================


@router.get("/selection", response_model=Optional[QueryNode])
async def get_selection(store: TreeStore = Depends(get_tree_store)):
    """Get the selected query, if any."""
    return store.selected_query


@router.post("/selection", response_model=Optional[QueryNode])
async def select_node(request: SelectRequest, store: TreeStore = Depends(get_tree_store)):
    """Select a query. Folders and unknown ids keep the current selection."""
    return store.select_node(request.node_id)


@router.delete("/selection", status_code=status.HTTP_204_NO_CONTENT)
async def clear_selection(store: TreeStore = Depends(get_tree_store)):
    """Clear the selected query."""
    store.clear_selection()


@router.post("/drag/start", response_model=LibraryResponse)
async def drag_start(request: SelectRequest, store: TreeStore = Depends(get_tree_store)):
    """Record the node being dragged for the drag preview."""
    store.drag_start(request.node_id)
    return library_to_response(store)


@router.post("/drag/end", response_model=MutationResponse)
async def drag_end(request: DragEndRequest, store: TreeStore = Depends(get_tree_store)):
    """Finish the drag; a drop target applies the move."""
    return mutation_to_response(store.drag_end(request.over_id))


# ========================================
# Import / Export Endpoints
# ========================================


@router.get("/export", response_class=PlainTextResponse)
async def export_library(store: TreeStore = Depends(get_tree_store)):
    """Download the library snapshot as a JSON file."""
    return PlainTextResponse(
        store.serialize_snapshot(),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{DEFAULT_EXPORT_FILENAME}"'},
    )


@router.post("/import", response_model=MutationResponse)
async def import_library(request: Request, store: TreeStore = Depends(get_tree_store)):
    """Replace the library with an uploaded snapshot. A malformed file keeps the current tree."""
    raw = await request.body()
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedSnapshotError(
            "Snapshot must be UTF-8 encoded JSON", {"reason": str(exc)}
        ) from exc
    return mutation_to_response(store.load_snapshot(text))
