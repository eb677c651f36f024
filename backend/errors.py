"""
Exception taxonomy for graph curation.

GraphValidationError is recovered locally (the curator is re-prompted).
ConflictError and TransportError mark a single pending operation as failed;
the operation stays queued until the next explicit save.
"""


class CurationError(Exception):
    """Base exception for all curation errors."""

    kind = "error"


class GraphValidationError(CurationError):
    """Raised for malformed queries or missing required fields."""

    kind = "validation"


class NodeNotFoundError(GraphValidationError):
    """Raised when an operation names a node the graph does not contain."""

    kind = "not_found"

    def __init__(self, node_id: str):
        super().__init__(f"Node not found: {node_id}")
        self.node_id = node_id


class ConflictError(CurationError):
    """Raised when a store row vanished, already exists, or was modified."""

    kind = "conflict"


class TransportError(CurationError):
    """Raised when the record store cannot be reached or a write times out."""

    kind = "transport"


class SaveInProgressError(CurationError):
    """Raised when a save is requested while another one is still running."""

    kind = "save_in_progress"


class UnsavedChangesError(CurationError):
    """Raised when a reload would silently drop queued operations."""

    kind = "unsaved_changes"

    def __init__(self, pending: int):
        super().__init__(f"{pending} unsaved change(s); save first or reload with discard")
        self.pending = pending
