"""
Search filtering over the in-memory graph ("ghosting").

Each non-empty query matches node labels (case-insensitive substring) and is
expanded to the connected components of its matches, ignoring edge
direction. Several non-empty queries narrow the focus: the visible set is the
INTERSECTION of their expanded sets. With every query empty, all nodes are
visible again.

Everything here is read-only: neither the graph model nor the pending
operations queue is touched.
"""
from collections import deque
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from errors import GraphValidationError
from models import Visibility, VisibilityResponse
from services_graph_model import GraphModel

# query fields the editor exposes; all of them match against node labels
QUERY_FIELDS = ("from", "to", "search")

GHOST_OPACITY = 0.2


def connected_component(adjacency: Dict[str, Set[str]], start_ids: Iterable[str]) -> Set[str]:
    visited: Set[str] = set()
    queue = deque(start_ids)
    while queue:
        node_id = queue.popleft()
        if node_id in visited:
            continue
        visited.add(node_id)
        queue.extend(n for n in adjacency.get(node_id, ()) if n not in visited)
    return visited


def match_labels(graph: GraphModel, text: str) -> List[str]:
    needle = text.lower()
    return [n.id for n in graph.nodes.values() if needle in str(n.label).lower()]


def _normalize(queries: Sequence) -> List[Tuple[str, str]]:
    normalized = []
    for query in queries:
        if isinstance(query, tuple):
            field, text = query
        else:
            field, text = query.field, query.text
        field = (field or "").strip().lower()
        if field not in QUERY_FIELDS:
            raise GraphValidationError(f"Unknown query field: {field!r}")
        if text is not None and not isinstance(text, str):
            raise GraphValidationError(f"Query text must be a string, got {type(text).__name__}")
        normalized.append((field, (text or "").strip()))
    return normalized


def visible_node_ids(graph: GraphModel, queries: Sequence) -> Optional[Set[str]]:
    """Visible node ids, or None when no query is active (everything visible)."""
    active = [text for _, text in _normalize(queries) if text]
    if not active:
        return None
    adjacency = graph.adjacency()
    visible: Optional[Set[str]] = None
    for text in active:
        component = connected_component(adjacency, match_labels(graph, text))
        visible = component if visible is None else visible & component
        if not visible:
            break
    return visible


def compute_visibility(graph: GraphModel, queries: Sequence) -> Dict[str, Dict[str, Visibility]]:
    """
    Visibility of every node and edge for the given (field, text) queries.

    Returns {"nodes": {node_id: state}, "edges": {edge_id: state}}.
    """
    visible = visible_node_ids(graph, queries)
    nodes = {
        node_id: Visibility.VISIBLE if visible is None or node_id in visible else Visibility.GHOSTED
        for node_id in graph.nodes
    }
    edges = {
        edge_id: (
            Visibility.GHOSTED
            if nodes[edge.source] is Visibility.GHOSTED or nodes[edge.target] is Visibility.GHOSTED
            else Visibility.VISIBLE
        )
        for edge_id, edge in graph.edges.items()
    }
    return {"nodes": nodes, "edges": edges}


def visibility_response(graph: GraphModel, queries: Sequence) -> VisibilityResponse:
    result = compute_visibility(graph, queries)
    visible_count = sum(1 for v in result["nodes"].values() if v is Visibility.VISIBLE)
    return VisibilityResponse(
        nodes=result["nodes"],
        edges=result["edges"],
        visible_count=visible_count,
        ghosted_count=len(result["nodes"]) - visible_count,
    )


def render_payload(graph: GraphModel, visibility: Optional[Dict[str, Dict[str, Visibility]]] = None) -> dict:
    """
    Presentation view for the network renderer.

    Ghosted nodes/edges get reduced opacity; hidden nodes and every edge
    touching one are flagged hidden so the renderer leaves them out of the
    layout entirely.
    """
    if visibility is None:
        visibility = compute_visibility(graph, [])
    nodes = []
    for node in graph.nodes.values():
        ghosted = visibility["nodes"].get(node.id) is Visibility.GHOSTED
        nodes.append({
            "id": node.id,
            "label": node.label,
            "group": node.type,
            "url": node.url,
            "hidden": node.hidden,
            "opacity": GHOST_OPACITY if ghosted else 1.0,
            "physics": not ghosted,
        })
    edges = []
    for edge in graph.edges.values():
        ghosted = visibility["edges"].get(edge.id) is Visibility.GHOSTED
        edges.append({
            "id": edge.id,
            "from": edge.source,
            "to": edge.target,
            "label": edge.relationship,
            "hidden": graph.is_edge_suppressed(edge),
            "opacity": GHOST_OPACITY if ghosted else 1.0,
        })
    return {"nodes": nodes, "edges": edges}
