"""
Curation session: the per-node editing panel.

A session is opened for exactly one node. Every toggle goes through
apply_toggle(), a pure function of the graph model that returns the pending
operations the toggle stands for; the session then applies them to the
model and queues them. Closing a session leaves the queue alone: close is
not cancel.
"""
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from config import DEFAULT_RELATIONSHIP
from errors import GraphValidationError, NodeNotFoundError
from models import (
    CandidateItem,
    ConnectionItem,
    CreateNode,
    CurationView,
    Edge,
    NODE_ID_PREFIXES,
    RemoveEdge,
    SetHidden,
    UpdateNode,
    UpsertEdge,
    node_id_for,
)
from services_graph_model import GraphModel
from services_pending_ops import PendingOperationsQueue

logger = logging.getLogger("graph_curation")

# {"org::Name": [{"name": "Partner Org", "url": "https://..."}]}
Candidates = Dict[str, List[Dict[str, str]]]
# (partner id, relationship) -> edges unchecked in the open panel
RemovedEdges = Dict[Tuple[str, str], List[Edge]]


def load_candidates(path: Optional[Union[str, Path]]) -> Candidates:
    """Discovered partner candidates per organization id (empty when unset)."""
    if not path:
        return {}
    path = Path(path)
    if not path.exists():
        logger.warning(f"Candidates file not found: {path}")
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise GraphValidationError(f"Candidates file must hold an object keyed by node id: {path}")
    return {str(k): [c for c in v if isinstance(c, dict) and c.get("name")] for k, v in data.items()}


def _require_target(target: Optional[str], kind: str) -> str:
    if not target or not str(target).strip():
        raise GraphValidationError(f"'{kind}' toggle needs a target")
    return str(target).strip()


def _require_bool(new_value, kind: str) -> bool:
    if not isinstance(new_value, bool):
        raise GraphValidationError(f"'{kind}' toggle needs a checked value")
    return new_value


def apply_toggle(
    graph: GraphModel,
    node_id: str,
    kind: str,
    new_value: Union[bool, str],
    target: Optional[str] = None,
    relationship: Optional[str] = None,
    candidates: Optional[List[Dict[str, str]]] = None,
    removed: Optional[RemovedEdges] = None,
) -> List:
    """
    Translate one panel toggle into the pending operations it implies.

    kinds:
        self        new_value=True keeps the node, False hides it
        connection  target=partner node id; unchecking removes that edge
                    (re-checking restores an edge listed in removed as it was)
        candidate   target=partner name; checking creates org + partnership
        type        new_value=node type
        url         new_value=url
    Returns [] when the toggle matches the current state.
    """
    node = graph.get_node(node_id)

    if kind == "self":
        hidden = not _require_bool(new_value, kind)
        return [SetHidden(node_id=node_id, hidden=hidden)] if node.hidden != hidden else []

    if kind == "connection":
        partner = _require_target(target, kind)
        checked = _require_bool(new_value, kind)
        rel = relationship or DEFAULT_RELATIONSHIP
        existing = graph.edges_between(node_id, partner, rel)
        if not checked:
            return [RemoveEdge.for_edge(e) for e in existing]
        if partner not in graph.nodes:
            raise NodeNotFoundError(partner)
        if existing:
            return []
        restore = (removed or {}).get((partner, rel))
        if restore:
            return [
                UpsertEdge(source=e.source, target=e.target, relationship=e.relationship,
                           attributes=dict(e.attributes))
                for e in restore
            ]
        return [UpsertEdge(source=node_id, target=partner, relationship=rel)]

    if kind == "candidate":
        name = _require_target(target, kind)
        checked = _require_bool(new_value, kind)
        partner = node_id_for("organization", name)
        existing = [
            e for e in graph.edges.values()
            if e.source == node_id and e.target == partner and e.relationship == "partnership"
        ]
        if not checked:
            return [RemoveEdge.for_edge(e) for e in existing]
        ops: List = []
        if partner not in graph.nodes:
            url = next((c.get("url", "") for c in candidates or [] if str(c.get("name")) == name), "")
            ops.append(CreateNode(node_type="organization", label=name, attributes={"url": url} if url else {}))
        if not existing:
            ops.append(UpsertEdge(source=node_id, target=partner, relationship="partnership"))
        return ops

    if kind == "type":
        if new_value not in NODE_ID_PREFIXES:
            raise GraphValidationError(f"Unknown node type: {new_value!r}")
        return [UpdateNode(node_id=node_id, node_type=new_value)] if node.type != new_value else []

    if kind == "url":
        if not isinstance(new_value, str):
            raise GraphValidationError("'url' toggle needs a string value")
        url = new_value.strip()
        return [UpdateNode(node_id=node_id, url=url)] if node.url != url else []

    raise GraphValidationError(f"Unknown toggle kind: {kind!r}")


class CurationSession:
    def __init__(
        self,
        graph: GraphModel,
        queue: PendingOperationsQueue,
        node_id: str,
        candidates: Optional[Candidates] = None,
    ):
        graph.get_node(node_id)  # raises NodeNotFoundError
        self.graph = graph
        self.queue = queue
        self.node_id = node_id
        self.candidates = (candidates or {}).get(node_id, [])
        # connections unchecked in this panel; dropped when another panel opens
        self.removed_edges: RemovedEdges = {}
        self.closed = False

    def toggle(
        self,
        kind: str,
        new_value: Union[bool, str],
        target: Optional[str] = None,
        relationship: Optional[str] = None,
    ) -> List:
        if self.closed:
            raise GraphValidationError("Curation session is closed")
        ops = apply_toggle(
            self.graph,
            self.node_id,
            kind,
            new_value,
            target=target,
            relationship=relationship,
            candidates=self.candidates,
            removed=self.removed_edges,
        )
        if kind == "connection":
            key = (str(target).strip(), relationship or DEFAULT_RELATIONSHIP)
            if new_value is False:
                removed = [self.graph.edges[op.edge_id] for op in ops if op.edge_id in self.graph.edges]
                if removed:
                    self.removed_edges[key] = removed
            else:
                self.removed_edges.pop(key, None)
        for op in ops:
            self.graph.apply_optimistic(op)
            self.queue.enqueue(op)
        return ops

    def close(self) -> None:
        # queued operations stay queued; only save or discard clears them
        self.closed = True
        self.removed_edges = {}

    def view(self) -> CurationView:
        node = self.graph.get_node(self.node_id)
        connections = []
        for edge in self.graph.incident_edges(self.node_id):
            other = self.graph.nodes.get(edge.other_end(self.node_id))
            if other is None:
                continue
            connections.append(ConnectionItem(
                node_id=other.id,
                label=other.label,
                relationship=edge.relationship,
                url=other.url,
            ))
        # unchecked in this panel, still listed so they can be re-checked
        for partner, rel in self.removed_edges:
            other = self.graph.nodes.get(partner)
            if other is None or self.graph.edges_between(self.node_id, partner, rel):
                continue
            connections.append(ConnectionItem(
                node_id=other.id,
                label=other.label,
                relationship=rel,
                url=other.url,
                checked=False,
            ))
        checked = [c for c in connections if c.checked]

        is_org = node.type == "organization"
        candidates = []
        if is_org:
            connected_labels = {c.label for c in checked}
            candidates = [
                CandidateItem(name=str(c["name"]), url=c.get("url", ""))
                for c in self.candidates
                if str(c["name"]) not in connected_labels
            ]

        if is_org and candidates:
            info = f"{len(checked)} connections, {len(candidates)} candidates"
        elif checked:
            info = f"{len(checked)} connections"
        else:
            info = "No connections"

        return CurationView(
            node=node,
            keep=not node.hidden,
            connections=connections,
            candidates=candidates,
            info=info,
        )
