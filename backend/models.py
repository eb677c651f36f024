# Pydantic models for the relationship graph, its pending operations,
# and the request/response bodies of the curation API.
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


NodeType = Literal["person", "organization", "project"]

# node ids are "<prefix><label>", e.g. "org::Open Climate Fund"
NODE_ID_PREFIXES: Dict[str, str] = {
    "person": "person::",
    "organization": "org::",
    "project": "project::",
}

KNOWN_RELATIONSHIPS = [
    "partnership",
    "employment",
    "project-membership",
    "affiliation",
    "membership",
]


def node_id_for(node_type: str, label: str) -> str:
    """Stable node id derived from type + trimmed label."""
    prefix = NODE_ID_PREFIXES.get(node_type, NODE_ID_PREFIXES["organization"])
    return prefix + str(label).strip()


def node_type_from_id(node_id: str) -> NodeType:
    """Infer the node type from its id prefix (organization when unknown)."""
    for node_type, prefix in NODE_ID_PREFIXES.items():
        if node_id.startswith(prefix):
            return node_type  # type: ignore[return-value]
    return "organization"


def label_from_id(node_id: str) -> str:
    for prefix in NODE_ID_PREFIXES.values():
        if node_id.startswith(prefix):
            return node_id[len(prefix):]
    return node_id


def edge_id_for(source: str, target: str, relationship: str) -> str:
    return f"{source}->{target}#{relationship}"


class Visibility(str, Enum):
    VISIBLE = "visible"
    GHOSTED = "ghosted"


# -----------------------
# Graph records
# -----------------------


class Node(BaseModel):
    id: str
    label: str
    type: NodeType = "organization"
    # persisted: a hidden node is excluded from layout and survives reload
    hidden: bool = False
    attributes: Dict[str, str] = Field(default_factory=dict)

    @property
    def url(self) -> str:
        return self.attributes.get("url", "")


class Edge(BaseModel):
    source: str
    target: str
    relationship: str = "partnership"
    attributes: Dict[str, str] = Field(default_factory=dict)

    @computed_field
    @property
    def id(self) -> str:
        return edge_id_for(self.source, self.target, self.relationship)

    def touches(self, node_id: str) -> bool:
        return self.source == node_id or self.target == node_id

    def other_end(self, node_id: str) -> str:
        return self.target if self.source == node_id else self.source


# -----------------------
# Pending operations
# -----------------------


class SetHidden(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["set_hidden"] = "set_hidden"
    node_id: str
    hidden: bool


class UpsertEdge(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["upsert_edge"] = "upsert_edge"
    source: str
    target: str
    relationship: str = "partnership"
    attributes: Dict[str, str] = Field(default_factory=dict)

    @property
    def edge_id(self) -> str:
        return edge_id_for(self.source, self.target, self.relationship)

    def to_edge(self) -> Edge:
        return Edge(
            source=self.source,
            target=self.target,
            relationship=self.relationship,
            attributes=dict(self.attributes),
        )


class RemoveEdge(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["remove_edge"] = "remove_edge"
    source: str
    target: str
    relationship: str = "partnership"

    @property
    def edge_id(self) -> str:
        return edge_id_for(self.source, self.target, self.relationship)

    @classmethod
    def for_edge(cls, edge: Edge) -> "RemoveEdge":
        return cls(source=edge.source, target=edge.target, relationship=edge.relationship)


class CreateNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["create_node"] = "create_node"
    node_type: NodeType = "organization"
    label: str = Field(..., min_length=1)
    attributes: Dict[str, str] = Field(default_factory=dict)

    @field_validator("label")
    @classmethod
    def _strip_label(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("label must not be blank")
        return value

    @property
    def node_id(self) -> str:
        return node_id_for(self.node_type, self.label)


class UpdateNode(BaseModel):
    """Type change or URL edit made from the curation panel."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["update_node"] = "update_node"
    node_id: str
    node_type: Optional[NodeType] = None
    url: Optional[str] = None


class RelabelEdge(BaseModel):
    """Relationship edit made from the edge panel."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["relabel_edge"] = "relabel_edge"
    source: str
    target: str
    old_relationship: str
    new_relationship: str

    @property
    def edge_id(self) -> str:
        return edge_id_for(self.source, self.target, self.old_relationship)

    @property
    def new_edge_id(self) -> str:
        return edge_id_for(self.source, self.target, self.new_relationship)


PendingOperation = Annotated[
    Union[SetHidden, UpsertEdge, RemoveEdge, CreateNode, UpdateNode, RelabelEdge],
    Field(discriminator="kind"),
]


# -----------------------
# API bodies
# -----------------------


class GraphResponse(BaseModel):
    nodes: List[Node]
    edges: List[Edge]


class VisibilityQuery(BaseModel):
    field: str = "search"
    text: str = ""


class VisibilityRequest(BaseModel):
    queries: List[VisibilityQuery] = []


class VisibilityResponse(BaseModel):
    nodes: Dict[str, Visibility]
    edges: Dict[str, Visibility]
    visible_count: int
    ghosted_count: int


class FailedOperation(BaseModel):
    operation: PendingOperation
    reason: str
    error_kind: str


class SaveResult(BaseModel):
    committed: int
    failed: List[FailedOperation] = []
    # queue length after the save; non-zero keeps the unsaved badge on
    pending: int = 0

    @property
    def ok(self) -> bool:
        return not self.failed


class SessionStatus(BaseModel):
    unsaved: bool
    pending: int
    saving: bool = False
    curating: Optional[str] = None


class PendingOperationsResponse(BaseModel):
    operations: List[PendingOperation]


class ConnectionItem(BaseModel):
    node_id: str
    label: str
    relationship: str
    url: str = ""
    checked: bool = True


class CandidateItem(BaseModel):
    name: str
    url: str = ""
    checked: bool = False


class CurationView(BaseModel):
    node: Node
    keep: bool
    connections: List[ConnectionItem]
    candidates: List[CandidateItem]
    info: str


ToggleKind = Literal["self", "connection", "candidate", "type", "url"]


class CurationToggleRequest(BaseModel):
    kind: ToggleKind
    # partner node id (connection) or candidate name (candidate)
    target: Optional[str] = None
    relationship: Optional[str] = None
    checked: Optional[bool] = None
    value: Optional[str] = None


class CurationToggleResponse(BaseModel):
    operations: List[PendingOperation]
    view: CurationView
    unsaved: bool


class QuickEdgeRequest(BaseModel):
    from_label: str
    to_label: str
    relationship: str = "partnership"
    from_type: NodeType = "organization"
    to_type: NodeType = "organization"


class QuickEdgeResponse(BaseModel):
    operations: List[PendingOperation]
    created_nodes: List[str] = []
    unsaved: bool


class ReloadRequest(BaseModel):
    discard: bool = False


class RelabelEdgeRequest(BaseModel):
    source: str
    target: str
    old_relationship: str
    new_relationship: str


class RemoveEdgeRequest(BaseModel):
    edge_id: str


class EdgeEditResponse(BaseModel):
    operations: List[PendingOperation]
    unsaved: bool
