"""
Curation API - pending operations, save/discard, the per-node curation
panel and the quick editor.
"""
from fastapi import APIRouter, Depends

from api_graph import http_error
from errors import CurationError, GraphValidationError
from models import (
    CurationToggleRequest,
    CurationToggleResponse,
    CurationView,
    PendingOperationsResponse,
    QuickEdgeRequest,
    QuickEdgeResponse,
    SaveResult,
    SessionStatus,
)
from services_logging import get_recent_events
from services_workspace import CurationWorkspace, get_workspace

session_router = APIRouter(prefix="/session", tags=["session"])
curation_router = APIRouter(prefix="/curation", tags=["curation"])
quick_editor_router = APIRouter(prefix="/quick-editor", tags=["quick-editor"])


# -----------------------
# Session (unsaved badge, save, discard)
# -----------------------


@session_router.get("/", response_model=SessionStatus)
def session_status_endpoint(workspace: CurationWorkspace = Depends(get_workspace)):
    return workspace.status()


@session_router.get("/pending", response_model=PendingOperationsResponse)
def pending_operations_endpoint(workspace: CurationWorkspace = Depends(get_workspace)):
    return PendingOperationsResponse(operations=workspace.pending_operations())


@session_router.post("/save", response_model=SaveResult)
async def save_endpoint(workspace: CurationWorkspace = Depends(get_workspace)):
    """
    Write every queued operation to the record store, in order.

    Failures do not abort the batch: the response lists each failed
    operation with its reason, and those operations stay queued.
    """
    try:
        return await workspace.save()
    except CurationError as e:
        raise http_error(e)


@session_router.post("/discard", response_model=SessionStatus)
def discard_endpoint(workspace: CurationWorkspace = Depends(get_workspace)):
    try:
        workspace.discard()
    except CurationError as e:
        raise http_error(e)
    return workspace.status()


@session_router.get("/events")
def recent_events_endpoint(limit: int = 50, workspace: CurationWorkspace = Depends(get_workspace)):
    return {"events": get_recent_events(limit=limit, log_file=workspace.event_log_file)}


# -----------------------
# Curation panel
# -----------------------


@curation_router.post("/{node_id}/open", response_model=CurationView)
def open_curation_endpoint(node_id: str, workspace: CurationWorkspace = Depends(get_workspace)):
    try:
        return workspace.open_curation(node_id).view()
    except CurationError as e:
        raise http_error(e)


@curation_router.get("/current", response_model=CurationView)
def current_curation_endpoint(workspace: CurationWorkspace = Depends(get_workspace)):
    if workspace.curation is None:
        raise http_error(GraphValidationError("No curation session is open"))
    return workspace.curation.view()


@curation_router.post("/toggle", response_model=CurationToggleResponse)
def toggle_endpoint(payload: CurationToggleRequest, workspace: CurationWorkspace = Depends(get_workspace)):
    session = workspace.curation
    try:
        if session is None:
            raise GraphValidationError("No curation session is open")
        new_value = payload.value if payload.kind in ("type", "url") else payload.checked
        ops = session.toggle(
            payload.kind,
            new_value,
            target=payload.target,
            relationship=payload.relationship,
        )
        return CurationToggleResponse(operations=ops, view=session.view(), unsaved=workspace.has_unsaved)
    except CurationError as e:
        raise http_error(e)


@curation_router.post("/close", response_model=SessionStatus)
def close_curation_endpoint(workspace: CurationWorkspace = Depends(get_workspace)):
    # closing keeps queued operations; only save or discard clears them
    workspace.close_curation()
    return workspace.status()


# -----------------------
# Quick editor
# -----------------------


@quick_editor_router.post("/edges", response_model=QuickEdgeResponse)
def quick_add_edge_endpoint(payload: QuickEdgeRequest, workspace: CurationWorkspace = Depends(get_workspace)):
    try:
        action = workspace.quick_editor.add_edge(
            payload.from_label,
            payload.to_label,
            payload.relationship,
            from_type=payload.from_type,
            to_type=payload.to_type,
        )
    except CurationError as e:
        raise http_error(e)
    return QuickEdgeResponse(operations=action.ops, created_nodes=action.created_nodes, unsaved=workspace.has_unsaved)


@quick_editor_router.post("/edges/remove", response_model=QuickEdgeResponse)
def quick_remove_edge_endpoint(payload: QuickEdgeRequest, workspace: CurationWorkspace = Depends(get_workspace)):
    try:
        action = workspace.quick_editor.remove_edge(payload.from_label, payload.to_label, payload.relationship)
    except CurationError as e:
        raise http_error(e)
    return QuickEdgeResponse(operations=action.ops, unsaved=workspace.has_unsaved)


@quick_editor_router.post("/undo", response_model=QuickEdgeResponse)
def quick_undo_endpoint(workspace: CurationWorkspace = Depends(get_workspace)):
    try:
        action = workspace.quick_editor.undo()
    except CurationError as e:
        raise http_error(e)
    return QuickEdgeResponse(operations=action.ops, unsaved=workspace.has_unsaved)
