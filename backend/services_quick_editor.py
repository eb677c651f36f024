"""
Quick editor: connect or disconnect two nodes by label.

Unknown labels become new nodes (type chosen by the curator), hidden
endpoints are made visible again when connected, and the last action can be
undone as long as its operations are still the tail of the unsaved batch.
"""
import logging
from typing import List, Optional, Tuple

from config import DEFAULT_RELATIONSHIP
from errors import GraphValidationError
from models import CreateNode, Edge, RemoveEdge, SetHidden, UpsertEdge
from services_graph_model import GraphModel
from services_pending_ops import PendingOperationsQueue

logger = logging.getLogger("graph_curation")


class QuickAction:
    def __init__(self, kind: str):
        self.kind = kind
        self.ops: List = []
        self.created_nodes: List[str] = []
        self.unhidden: List[str] = []
        self.removed_edges: List[Edge] = []


class QuickEditor:
    def __init__(self, graph: GraphModel, queue: PendingOperationsQueue):
        self.graph = graph
        self.queue = queue
        self.last_action: Optional[QuickAction] = None

    def _emit(self, action: QuickAction, op) -> None:
        self.graph.apply_optimistic(op)
        self.queue.enqueue(op)
        action.ops.append(op)

    def _resolve(self, action: QuickAction, label: str, node_type: str) -> str:
        found = self.graph.find_by_label(label)
        if found is not None:
            return found.id
        op = CreateNode(node_type=node_type, label=label)
        if op.node_id not in self.graph.nodes:
            self._emit(action, op)
            action.created_nodes.append(op.node_id)
        return op.node_id

    @staticmethod
    def _check_labels(from_label: str, to_label: str) -> Tuple[str, str]:
        from_label = (from_label or "").strip()
        to_label = (to_label or "").strip()
        if not from_label or not to_label:
            raise GraphValidationError("Enter From and To labels")
        return from_label, to_label

    def add_edge(
        self,
        from_label: str,
        to_label: str,
        relationship: str = DEFAULT_RELATIONSHIP,
        from_type: str = "organization",
        to_type: str = "organization",
    ) -> QuickAction:
        from_label, to_label = self._check_labels(from_label, to_label)
        relationship = (relationship or "").strip()
        if not relationship:
            raise GraphValidationError("Choose a relationship")

        action = QuickAction("add")
        from_id = self._resolve(action, from_label, from_type)
        to_id = self._resolve(action, to_label, to_type)

        # connecting a hidden node brings it back
        for node_id in (from_id, to_id):
            if self.graph.nodes[node_id].hidden:
                self._emit(action, SetHidden(node_id=node_id, hidden=False))
                action.unhidden.append(node_id)

        if not self.graph.edges_between(from_id, to_id, relationship):
            self._emit(action, UpsertEdge(source=from_id, target=to_id, relationship=relationship))
        self.last_action = action
        logger.info(f"Quick editor: {from_id} -[{relationship}]-> {to_id} ({len(action.ops)} op(s) queued)")
        return action

    def remove_edge(self, from_label: str, to_label: str, relationship: str = DEFAULT_RELATIONSHIP) -> QuickAction:
        from_label, to_label = self._check_labels(from_label, to_label)
        relationship = (relationship or "").strip() or DEFAULT_RELATIONSHIP
        # labels are not unique across types (person::X, org::X)
        found = {
            edge.id: edge
            for source in self.graph.find_all_by_label(from_label)
            for target in self.graph.find_all_by_label(to_label)
            for edge in self.graph.edges_between(source.id, target.id, relationship)
        }
        edges = list(found.values())
        if not edges:
            raise GraphValidationError("No such edge found")

        action = QuickAction("remove")
        for edge in edges:
            action.removed_edges.append(edge)
            self._emit(action, RemoveEdge.for_edge(edge))
        self.last_action = action
        return action

    def undo(self) -> QuickAction:
        """Revert the last quick action while its operations are still unsaved."""
        action = self.last_action
        queued = self.queue.snapshot()
        if action is None or not action.ops or queued[-len(action.ops):] != action.ops:
            self.last_action = None
            raise GraphValidationError("Nothing to undo")

        for op in reversed(action.ops):
            self.queue.pop_last_if(lambda last, op=op: last == op)

        if action.kind == "add":
            for op in action.ops:
                if isinstance(op, UpsertEdge):
                    self.graph.edges.pop(op.edge_id, None)
            for node_id in action.unhidden:
                self.graph.apply_optimistic(SetHidden(node_id=node_id, hidden=True))
            for node_id in action.created_nodes:
                if not self.graph.incident_edges(node_id):
                    self.graph.nodes.pop(node_id, None)
        else:
            for edge in action.removed_edges:
                self.graph.add_edge(edge)

        self.last_action = None
        return action

    def forget(self) -> None:
        """Drop the undo slot (after save, discard or reload)."""
        self.last_action = None
