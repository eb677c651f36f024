"""
Graph API - read the graph, compute search visibility, reload from the store.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from errors import CurationError, GraphValidationError, NodeNotFoundError, SaveInProgressError, UnsavedChangesError
from models import (
    GraphResponse,
    EdgeEditResponse,
    RelabelEdgeRequest,
    RemoveEdgeRequest,
    ReloadRequest,
    SessionStatus,
    VisibilityRequest,
    VisibilityResponse,
)
from services_workspace import CurationWorkspace, get_workspace

router = APIRouter(prefix="/graph", tags=["graph"])


def http_error(e: CurationError) -> HTTPException:
    if isinstance(e, NodeNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (SaveInProgressError, UnsavedChangesError)):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, GraphValidationError):
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=502, detail=str(e))


@router.get("/", response_model=GraphResponse)
def get_graph_endpoint(workspace: CurationWorkspace = Depends(get_workspace)):
    return GraphResponse(
        nodes=list(workspace.graph.nodes.values()),
        edges=list(workspace.graph.edges.values()),
    )


@router.get("/render")
def render_graph_endpoint(
    from_query: Optional[str] = None,
    to_query: Optional[str] = None,
    workspace: CurationWorkspace = Depends(get_workspace),
):
    """
    Renderer view of the graph: ghosted nodes at reduced opacity, hidden
    nodes (and their edges) flagged for exclusion from the layout.
    """
    try:
        return workspace.render([("from", from_query or ""), ("to", to_query or "")])
    except CurationError as e:
        raise http_error(e)


@router.post("/visibility", response_model=VisibilityResponse)
def visibility_endpoint(payload: VisibilityRequest, workspace: CurationWorkspace = Depends(get_workspace)):
    """
    Visible/ghosted state for every node and edge.

    Each non-empty query is expanded to its connected component; several
    queries narrow the focus (intersection). Read-only.
    """
    try:
        return workspace.visibility(payload.queries)
    except CurationError as e:
        raise http_error(e)


@router.post("/reload", response_model=SessionStatus)
def reload_endpoint(payload: ReloadRequest, workspace: CurationWorkspace = Depends(get_workspace)):
    try:
        workspace.reload(discard=payload.discard)
    except CurationError as e:
        raise http_error(e)
    return workspace.status()


@router.post("/edges/relabel", response_model=EdgeEditResponse)
def relabel_edge_endpoint(payload: RelabelEdgeRequest, workspace: CurationWorkspace = Depends(get_workspace)):
    try:
        ops = workspace.relabel_edge(
            payload.source,
            payload.target,
            payload.old_relationship,
            payload.new_relationship,
        )
    except CurationError as e:
        raise http_error(e)
    return EdgeEditResponse(operations=ops, unsaved=workspace.has_unsaved)


@router.post("/edges/remove", response_model=EdgeEditResponse)
def remove_edge_endpoint(payload: RemoveEdgeRequest, workspace: CurationWorkspace = Depends(get_workspace)):
    try:
        ops = workspace.remove_edge(payload.edge_id)
    except CurationError as e:
        raise http_error(e)
    return EdgeEditResponse(operations=ops, unsaved=workspace.has_unsaved)
