"""
Curation workspace: one record store, graph model, pending queue and sync
engine per process, plus the (single) open curation session.

The "unsaved changes" flag is never stored; it is always queue.size() > 0.
"""
import logging
from pathlib import Path
from typing import List, Optional, Sequence

from config import (
    CANDIDATES_FILE,
    EDGES_FILE,
    NODES_FILE,
    RECORD_STORE_BACKEND,
    RECORD_STORE_DIR,
    SAVE_OP_TIMEOUT_S,
)
from errors import GraphValidationError, SaveInProgressError, UnsavedChangesError
from models import RelabelEdge, RemoveEdge, SaveResult, SessionStatus, VisibilityResponse, edge_id_for
from record_store import RecordStore, build_record_store
from services_curation import Candidates, CurationSession, load_candidates
from services_filter import compute_visibility, render_payload, visibility_response
from services_graph_model import GraphModel
from services_logging import log_curation_event, log_save_result
from services_pending_ops import PendingOperationsQueue
from services_quick_editor import QuickEditor
from services_sync_engine import SyncEngine

logger = logging.getLogger("graph_curation")


class CurationWorkspace:
    def __init__(
        self,
        record_store: RecordStore,
        candidates: Optional[Candidates] = None,
        op_timeout_s: float = SAVE_OP_TIMEOUT_S,
        event_log_file: Optional[Path] = None,
    ):
        self.record_store = record_store
        self.candidates = candidates or {}
        self.event_log_file = event_log_file
        self.queue = PendingOperationsQueue()
        self.graph = GraphModel()
        self.engine = SyncEngine(record_store, self.graph, op_timeout_s=op_timeout_s)
        self.quick_editor = QuickEditor(self.graph, self.queue)
        self.curation: Optional[CurationSession] = None

    # -- derived state -------------------------------------------------

    @property
    def has_unsaved(self) -> bool:
        return self.queue.has_unsaved

    def status(self) -> SessionStatus:
        return SessionStatus(
            unsaved=self.has_unsaved,
            pending=self.queue.size(),
            saving=self.engine.saving,
            curating=self.curation.node_id if self.curation and not self.curation.closed else None,
        )

    # -- load / reload -------------------------------------------------

    def load(self) -> GraphModel:
        """Rebuild the graph model from the record store."""
        graph = GraphModel.from_record_store(self.record_store)
        self.graph = graph
        self.engine.graph = graph
        self.quick_editor = QuickEditor(graph, self.queue)
        if self.curation is not None:
            self.curation.close()
        self.curation = None
        return graph

    def reload(self, discard: bool = False) -> GraphModel:
        """
        Re-read the record store. Queued operations would be lost, so a
        reload with unsaved changes needs discard=True.
        """
        if self.engine.saving:
            raise SaveInProgressError("Cannot reload while a save is running")
        dropped = 0
        if self.has_unsaved:
            if not discard:
                raise UnsavedChangesError(self.queue.size())
            dropped = self.queue.discard()
        graph = self.load()
        log_curation_event("reload", pending=self.queue.size(), metadata={"discarded": dropped},
                           log_file=self.event_log_file)
        return graph

    # -- save / discard ------------------------------------------------

    async def save(self) -> SaveResult:
        result = await self.engine.save(self.queue)
        self.quick_editor.forget()
        log_save_result(result, log_file=self.event_log_file)
        return result

    def discard(self) -> int:
        """Drop every queued operation and return the model to the stored state."""
        if self.engine.saving:
            raise SaveInProgressError("Cannot discard while a save is running")
        dropped = self.queue.discard()
        self.load()
        log_curation_event("discard", pending=0, metadata={"discarded": dropped}, log_file=self.event_log_file)
        return dropped

    # -- curation panel ------------------------------------------------

    def open_curation(self, node_id: str) -> CurationSession:
        """Open the panel for node_id; a previously open panel is closed."""
        session = CurationSession(self.graph, self.queue, node_id, candidates=self.candidates)
        if self.curation is not None:
            self.curation.close()
        self.curation = session
        return session

    def close_curation(self) -> None:
        if self.curation is not None:
            self.curation.close()
        self.curation = None

    # -- edge panel ----------------------------------------------------

    def relabel_edge(self, source: str, target: str, old_relationship: str, new_relationship: str) -> List:
        new_relationship = (new_relationship or "").strip()
        if not new_relationship:
            raise GraphValidationError("Choose a relationship")
        if edge_id_for(source, target, old_relationship) not in self.graph.edges:
            raise GraphValidationError("No such edge found")
        if new_relationship == old_relationship:
            return []
        op = RelabelEdge(
            source=source,
            target=target,
            old_relationship=old_relationship,
            new_relationship=new_relationship,
        )
        if op.new_edge_id in self.graph.edges:
            raise GraphValidationError(f"Edge already exists: {op.new_edge_id}")
        self.graph.apply_optimistic(op)
        self.queue.enqueue(op)
        return [op]

    def remove_edge(self, edge_id: str) -> List:
        edge = self.graph.edges.get(edge_id)
        if edge is None:
            raise GraphValidationError("No such edge found")
        op = RemoveEdge.for_edge(edge)
        self.graph.apply_optimistic(op)
        self.queue.enqueue(op)
        return [op]

    # -- filtering -----------------------------------------------------

    def visibility(self, queries: Sequence) -> VisibilityResponse:
        return visibility_response(self.graph, queries)

    def render(self, queries: Sequence = ()) -> dict:
        return render_payload(self.graph, compute_visibility(self.graph, queries))

    def pending_operations(self) -> List:
        return self.queue.snapshot()


# Global workspace instance
_workspace: Optional[CurationWorkspace] = None


def build_workspace() -> CurationWorkspace:
    store = build_record_store(
        RECORD_STORE_BACKEND,
        RECORD_STORE_DIR,
        nodes_file=NODES_FILE,
        edges_file=EDGES_FILE,
    )
    workspace = CurationWorkspace(store, candidates=load_candidates(CANDIDATES_FILE))
    workspace.load()
    return workspace


def get_workspace() -> CurationWorkspace:
    """Get or create the process-wide workspace."""
    global _workspace
    if _workspace is None:
        _workspace = build_workspace()
    return _workspace


def set_workspace(workspace: Optional[CurationWorkspace]) -> None:
    global _workspace
    _workspace = workspace
