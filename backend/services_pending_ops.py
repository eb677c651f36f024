"""
Pending operations queue.

An ordered, append-only log of mutations that have been applied to the graph
model but not yet persisted. Only an explicit save (drain) or an explicit
discard removes entries; closing a curation panel never does.
"""
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from errors import CurationError, SaveInProgressError
from models import RelabelEdge, RemoveEdge, UpsertEdge

logger = logging.getLogger("graph_curation")

ChangeListener = Callable[[bool], None]
Sink = Callable[[object], Awaitable[None]]


def _edge_ids(op) -> Tuple[str, ...]:
    if isinstance(op, (UpsertEdge, RemoveEdge)):
        return (op.edge_id,)
    if isinstance(op, RelabelEdge):
        return (op.edge_id, op.new_edge_id)
    return ()


def collapse_cancel_pairs(ops: List) -> List:
    """
    Drop UpsertEdge/RemoveEdge pairs for the same edge id within one batch.

    A RemoveEdge cancels the run of UpsertEdge operations for its edge id
    that precedes it, provided nothing else touched that edge id in between.
    Neither side reaches the record store.

    A RemoveEdge followed by an UpsertEdge of the same edge id is dropped:
    the upsert alone leaves the stored row in place (patching only the
    attributes it carries) instead of deleting and re-appending it. If a
    later RemoveEdge cancels that upsert, the removal still goes out.
    """
    dropped = set()
    # edge id -> (indexes of the upsert run, whether the run replaced a removal)
    open_upserts: Dict[str, Tuple[List[int], bool]] = {}
    open_removes: Dict[str, int] = {}
    for index, op in enumerate(ops):
        if isinstance(op, RemoveEdge) and op.edge_id in open_upserts:
            run, replaced_removal = open_upserts.pop(op.edge_id)
            dropped.update(run)
            if replaced_removal:
                open_removes[op.edge_id] = index
            else:
                dropped.add(index)
            continue
        if isinstance(op, RemoveEdge):
            open_removes[op.edge_id] = index
            continue
        if isinstance(op, UpsertEdge):
            replaced_removal = op.edge_id in open_removes
            if replaced_removal:
                dropped.add(open_removes.pop(op.edge_id))
            run, replaced = open_upserts.get(op.edge_id, ([], False))
            open_upserts[op.edge_id] = (run + [index], replaced or replaced_removal)
            continue
        for edge_id in _edge_ids(op):
            open_upserts.pop(edge_id, None)
            open_removes.pop(edge_id, None)
    return [op for index, op in enumerate(ops) if index not in dropped]


class PendingOperationsQueue:
    """In-memory queue; never persisted, a reload without saving drops it."""

    def __init__(self):
        self._ops: List = []
        self._draining = False
        self._listeners: List[ChangeListener] = []

    def __len__(self) -> int:
        return len(self._ops)

    def size(self) -> int:
        return len(self._ops)

    @property
    def has_unsaved(self) -> bool:
        return self.size() > 0

    @property
    def draining(self) -> bool:
        return self._draining

    def snapshot(self) -> List:
        return list(self._ops)

    def subscribe(self, listener: ChangeListener) -> None:
        """listener(has_unsaved) runs after every change to the queue."""
        self._listeners.append(listener)

    def _notify(self) -> None:
        unsaved = self.has_unsaved
        for listener in self._listeners:
            listener(unsaved)

    def enqueue(self, op) -> None:
        self._ops.append(op)
        logger.debug(f"Queued {op.kind} ({len(self._ops)} pending)")
        self._notify()

    def discard(self) -> int:
        if self._draining:
            raise SaveInProgressError("Cannot discard while a save is running")
        count = len(self._ops)
        self._ops = []
        self._notify()
        return count

    def pop_last_if(self, predicate: Callable[[object], bool]) -> Optional[object]:
        """Remove and return the last operation if it matches predicate."""
        if self._draining:
            raise SaveInProgressError("Cannot edit the queue while a save is running")
        if self._ops and predicate(self._ops[-1]):
            op = self._ops.pop()
            self._notify()
            return op
        return None

    async def drain(self, apply: Sink) -> List[Tuple[object, CurationError]]:
        """
        Dispatch queued operations to apply() one at a time, in order.

        apply() raises CurationError to report a failed operation. Failed
        operations stay queued in their original relative order, ahead of
        anything enqueued while the drain was running. Returns the
        (operation, error) pairs that failed.
        """
        if self._draining:
            raise SaveInProgressError("A save is already running")
        self._draining = True
        taken = len(self._ops)
        batch = collapse_cancel_pairs(self._ops[:taken])
        if len(batch) < taken:
            logger.info(f"Collapsed {taken - len(batch)} cancelling operation(s) before save")
        failed: List[Tuple[object, CurationError]] = []
        position = 0
        try:
            for position, op in enumerate(batch):
                try:
                    await apply(op)
                except CurationError as e:
                    failed.append((op, e))
            position = len(batch)
        finally:
            # an unexpected error keeps the undispatched tail queued
            retained = [op for op, _ in failed] + batch[position:]
            self._ops = retained + self._ops[taken:]
            self._draining = False
            self._notify()
        return failed
