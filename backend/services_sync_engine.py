"""
Synchronization engine: drains the pending operations queue into the
record store on an explicit save.

- Operations are written strictly one at a time, in queue order.
- A failing operation is recorded and the batch continues.
- After the save the queue holds only the failed operations.
- One save at a time; a second save while one is running is rejected.
- A write that times out is reported failed, but the next write waits for
  its thread to finish, so store writes never overlap.
"""
import asyncio
import logging
from typing import Optional

from config import SAVE_OP_TIMEOUT_S
from errors import CurationError, SaveInProgressError, TransportError
from models import (
    CreateNode,
    FailedOperation,
    Node,
    RelabelEdge,
    RemoveEdge,
    SaveResult,
    SetHidden,
    UpdateNode,
    UpsertEdge,
    label_from_id,
    node_type_from_id,
)
from record_store import EDGES, NODES, RecordStore, edge_to_row, node_to_row, row_attributes
from services_graph_model import GraphModel
from services_pending_ops import PendingOperationsQueue

logger = logging.getLogger("graph_curation")


class SyncEngine:
    def __init__(
        self,
        record_store: RecordStore,
        graph: Optional[GraphModel] = None,
        op_timeout_s: float = SAVE_OP_TIMEOUT_S,
    ):
        self.record_store = record_store
        # used to fill in node rows for edge endpoints the store lacks
        self.graph = graph
        self.op_timeout_s = op_timeout_s
        self._lock = asyncio.Lock()
        # write thread left running by a timeout; the next write waits for it
        self._lingering: Optional[asyncio.Future] = None

    @property
    def saving(self) -> bool:
        return self._lock.locked()

    async def save(self, queue: PendingOperationsQueue) -> SaveResult:
        """Drain queue into the record store; returns committed/failed."""
        if self._lock.locked():
            raise SaveInProgressError("A save is already running")
        async with self._lock:
            committed = 0

            async def apply(op) -> None:
                nonlocal committed
                await self._dispatch(op)
                committed += 1

            try:
                failed = await queue.drain(apply)
            finally:
                await self._settle()

        result = SaveResult(
            committed=committed,
            failed=[
                FailedOperation(operation=op, reason=str(err), error_kind=err.kind)
                for op, err in failed
            ],
            pending=queue.size(),
        )
        if result.failed:
            logger.warning(
                f"Save finished with failures: committed={result.committed} failed={len(result.failed)}"
            )
        else:
            logger.info(f"Save finished: committed={result.committed}")
        return result

    async def _dispatch(self, op) -> None:
        await self._settle()
        task = asyncio.ensure_future(asyncio.to_thread(self.write, op))
        done, _ = await asyncio.wait({task}, timeout=self.op_timeout_s)
        if not done:
            # a thread cannot be cancelled, so the write may still land
            self._lingering = task
            raise TransportError(f"Record store write timed out after {self.op_timeout_s}s")
        try:
            task.result()
        except CurationError as e:
            logger.warning(f"{op.kind} failed: {e}")
            raise
        except OSError as e:
            raise TransportError(str(e)) from e

    async def _settle(self) -> None:
        """Wait for a timed-out write so writes never overlap."""
        task, self._lingering = self._lingering, None
        if task is None:
            return
        try:
            await task
        except (CurationError, OSError) as e:
            logger.warning(f"Timed-out write failed late: {e}")
        else:
            logger.warning("Timed-out write completed after its deadline")

    # -- operation -> record store writes --------------------------------

    def write(self, op) -> None:
        store = self.record_store
        if isinstance(op, SetHidden):
            self._ensure_node_row(op.node_id, derive=False)
            store.update_row(NODES, {"id": op.node_id}, {"hidden": "true" if op.hidden else ""})
        elif isinstance(op, CreateNode):
            if store.find_row(NODES, {"id": op.node_id}) is None:
                node = Node(id=op.node_id, label=op.label, type=op.node_type, attributes=dict(op.attributes))
                store.append_row(NODES, node_to_row(node))
        elif isinstance(op, UpsertEdge):
            self._ensure_node_row(op.source)
            self._ensure_node_row(op.target)
            key = {"source": op.source, "target": op.target, "relationship": op.relationship}
            existing = store.find_row(EDGES, key)
            if existing is None:
                store.append_row(EDGES, edge_to_row(op.to_edge()))
            else:
                current = row_attributes(EDGES, existing)
                if any(current.get(k, "") != v for k, v in op.attributes.items()):
                    store.update_row(EDGES, key, dict(op.attributes))
        elif isinstance(op, RemoveEdge):
            store.delete_row(EDGES, {"source": op.source, "target": op.target, "relationship": op.relationship})
        elif isinstance(op, UpdateNode):
            patch = {}
            if op.node_type is not None:
                patch["type"] = op.node_type
            if op.url is not None:
                patch["url"] = op.url
            if patch:
                self._ensure_node_row(op.node_id, derive=False)
                store.update_row(NODES, {"id": op.node_id}, patch)
        elif isinstance(op, RelabelEdge):
            store.update_row(
                EDGES,
                {"source": op.source, "target": op.target, "relationship": op.old_relationship},
                {"relationship": op.new_relationship},
            )
        else:
            raise CurationError(f"Unsupported operation: {op!r}")

    def _ensure_node_row(self, node_id: str, derive: bool = True) -> None:
        """
        Write the node row for node_id if the store lacks it. Nodes that only
        exist in the model come from edge rows with a dangling endpoint.
        Without derive, a node the model does not know is left missing.
        """
        if self.record_store.find_row(NODES, {"id": node_id}) is not None:
            return
        node = self.graph.nodes.get(node_id) if self.graph is not None else None
        if node is None:
            if not derive:
                return
            node = Node(id=node_id, label=label_from_id(node_id), type=node_type_from_id(node_id))
        self.record_store.append_row(NODES, node_to_row(node))
