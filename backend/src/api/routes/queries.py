"""HTTP API routes for reading saved queries."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ...models.query_tree import QueryNode, TreeNode
from ...services.library_errors import NodeNotFoundError, NotAQueryError
from ...services.tree_store import TreeStore, get_tree_store

router = APIRouter()


class QuerySqlResponse(BaseModel):
    id: str
    name: str
    sql: str


@router.get("/api/queries", response_model=List[TreeNode])
async def get_queries(store: TreeStore = Depends(get_tree_store)):
    """Return the saved-query tree."""
    return list(store.forest)


@router.get("/api/queries/{query_id}/sql", response_model=QuerySqlResponse)
async def get_query_sql(query_id: str, store: TreeStore = Depends(get_tree_store)):
    """Return the SQL text of a saved query."""
    node = store.find(query_id)
    if node is None:
        raise NodeNotFoundError(f"Query not found: {query_id}", {"node_id": query_id})
    if not isinstance(node, QueryNode):
        raise NotAQueryError(f"Node is not a query: {query_id}", {"node_id": query_id})
    return QuerySqlResponse(id=node.id, name=node.name, sql=node.text)
