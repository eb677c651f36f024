"""
In-memory graph model: node-id -> Node and edge-id -> Edge.

Built from a record store snapshot, then mutated in place by applying
pending operations optimistically so the rendering reflects intent before
the save round-trip. A failed save does NOT roll the model back; the failed
operation stays queued and visible instead.
"""
import logging
from typing import Dict, Iterable, List, Optional, Set

from errors import GraphValidationError, NodeNotFoundError
from models import (
    CreateNode,
    Edge,
    Node,
    RelabelEdge,
    RemoveEdge,
    SetHidden,
    UpdateNode,
    UpsertEdge,
    label_from_id,
    node_type_from_id,
)

logger = logging.getLogger("graph_curation")


class GraphModel:
    def __init__(self, nodes: Iterable[Node] = (), edges: Iterable[Edge] = ()):
        self.nodes: Dict[str, Node] = {}
        self.edges: Dict[str, Edge] = {}
        for node in nodes:
            self.add_node(node)
        for edge in edges:
            self.add_edge(edge)

    @classmethod
    def from_record_store(cls, store) -> "GraphModel":
        graph = cls(nodes=store.list_nodes(), edges=store.list_edges())
        logger.info(f"Loaded graph: {len(graph.nodes)} nodes, {len(graph.edges)} edges from {store.describe()}")
        return graph

    # -- lookups -------------------------------------------------------

    def get_node(self, node_id: str) -> Node:
        node = self.nodes.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def find_by_label(self, label: str) -> Optional[Node]:
        wanted = str(label).strip()
        for node in self.nodes.values():
            if node.label.strip() == wanted:
                return node
        return None

    def find_all_by_label(self, label: str) -> List[Node]:
        wanted = str(label).strip()
        return [node for node in self.nodes.values() if node.label.strip() == wanted]

    def incident_edges(self, node_id: str) -> List[Edge]:
        return [e for e in self.edges.values() if e.touches(node_id)]

    def edges_between(self, a: str, b: str, relationship: Optional[str] = None) -> List[Edge]:
        """Edges joining a and b in either direction."""
        return [
            e for e in self.edges.values()
            if {e.source, e.target} == {a, b} and (relationship is None or e.relationship == relationship)
        ]

    def is_edge_suppressed(self, edge: Edge) -> bool:
        """An edge is hidden exactly when one of its endpoints is."""
        return self.nodes[edge.source].hidden or self.nodes[edge.target].hidden

    def hidden_node_ids(self) -> Set[str]:
        return {n.id for n in self.nodes.values() if n.hidden}

    def adjacency(self) -> Dict[str, Set[str]]:
        adj: Dict[str, Set[str]] = {node_id: set() for node_id in self.nodes}
        for edge in self.edges.values():
            adj[edge.source].add(edge.target)
            adj[edge.target].add(edge.source)
        return adj

    # -- structural mutations ------------------------------------------

    def add_node(self, node: Node) -> None:
        if node.id in self.nodes:
            raise GraphValidationError(f"Duplicate node id: {node.id}")
        self.nodes[node.id] = node

    def add_edge(self, edge: Edge) -> None:
        self.resolve_or_create_node(edge.source)
        self.resolve_or_create_node(edge.target)
        self.edges[edge.id] = edge

    def resolve_or_create_node(self, node_id: str) -> str:
        """
        Single choke point for edge endpoints: return node_id, creating a
        visible node (type and label taken from the id) if it is missing.
        """
        if not node_id or not node_id.strip():
            raise GraphValidationError("Edge endpoint id must not be blank")
        if node_id not in self.nodes:
            self.nodes[node_id] = Node(
                id=node_id,
                label=label_from_id(node_id),
                type=node_type_from_id(node_id),
                hidden=False,
            )
            logger.debug(f"Created implicit node {node_id}")
        return node_id

    # -- optimistic application ----------------------------------------

    def apply_optimistic(self, op) -> None:
        """Apply one pending operation to the in-memory model."""
        if isinstance(op, SetHidden):
            node = self.get_node(op.node_id)
            if node.hidden != op.hidden:
                self.nodes[op.node_id] = node.model_copy(update={"hidden": op.hidden})
        elif isinstance(op, CreateNode):
            if op.node_id not in self.nodes:
                self.nodes[op.node_id] = Node(
                    id=op.node_id,
                    label=op.label,
                    type=op.node_type,
                    hidden=False,
                    attributes=dict(op.attributes),
                )
        elif isinstance(op, UpsertEdge):
            self.resolve_or_create_node(op.source)
            self.resolve_or_create_node(op.target)
            self.edges[op.edge_id] = op.to_edge()
        elif isinstance(op, RemoveEdge):
            self.edges.pop(op.edge_id, None)
        elif isinstance(op, UpdateNode):
            node = self.get_node(op.node_id)
            update = {}
            if op.node_type is not None:
                update["type"] = op.node_type
            if op.url is not None:
                update["attributes"] = {**node.attributes, "url": op.url}
            self.nodes[op.node_id] = node.model_copy(update=update)
        elif isinstance(op, RelabelEdge):
            edge = self.edges.pop(op.edge_id, None)
            attributes = dict(edge.attributes) if edge else {}
            self.add_edge(Edge(
                source=op.source,
                target=op.target,
                relationship=op.new_relationship,
                attributes=attributes,
            ))
        else:
            raise GraphValidationError(f"Unsupported operation: {op!r}")

    def snapshot(self) -> dict:
        return {
            "nodes": [n.model_dump() for n in self.nodes.values()],
            "edges": [e.model_dump() for e in self.edges.values()],
        }
