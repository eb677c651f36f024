"""
Tests for the save protocol: ordered dispatch, partial failure, cancel
pairs, timeouts and single-flight.
"""
import asyncio

import pytest

from errors import ConflictError, SaveInProgressError
from models import CreateNode, RemoveEdge, SetHidden, UpdateNode, UpsertEdge
from record_store import EDGES, NODES
from services_graph_model import GraphModel
from services_pending_ops import PendingOperationsQueue
from services_sync_engine import SyncEngine
from tests.mock_helpers import FlakyStore, RecordingStore, SlowStore


def _enqueue_applied(graph, queue, ops):
    for op in ops:
        graph.apply_optimistic(op)
        queue.enqueue(op)


@pytest.fixture
def recording_store(sample_rows):
    nodes, edges = sample_rows
    return RecordingStore(nodes=nodes, edges=edges)


@pytest.mark.asyncio
async def test_save_writes_every_operation(recording_store, queue):
    graph = GraphModel.from_record_store(recording_store)
    engine = SyncEngine(recording_store, graph)
    _enqueue_applied(graph, queue, [
        SetHidden(node_id="org::D", hidden=True),
        UpsertEdge(source="org::A", target="org::D", relationship="partnership"),
        UpdateNode(node_id="org::A", url="https://a.example.org"),
    ])

    result = await engine.save(queue)

    assert result.ok
    assert result.committed == 3
    assert result.pending == 0
    assert queue.has_unsaved is False
    assert [c[0] for c in recording_store.calls] == ["update_row", "append_row", "update_row"]
    assert recording_store.find_row(NODES, {"id": "org::A"})["url"] == "https://a.example.org"


@pytest.mark.asyncio
async def test_partial_failure_keeps_only_failed(sample_rows, queue):
    nodes, edges = sample_rows
    store = FlakyStore(
        nodes=nodes,
        edges=edges,
        fail_when=lambda method, table, payload: table == EDGES and method == "append_row",
    )
    graph = GraphModel.from_record_store(store)
    engine = SyncEngine(store, graph)
    ops = [
        SetHidden(node_id="org::A", hidden=True),
        UpsertEdge(source="org::A", target="org::D", relationship="partnership"),
        SetHidden(node_id="org::D", hidden=True),
    ]
    _enqueue_applied(graph, queue, ops)

    result = await engine.save(queue)

    assert result.committed == 2
    assert len(result.failed) == 1
    assert result.failed[0].operation == ops[1]
    assert result.failed[0].error_kind == "transport"
    assert "injected" in result.failed[0].reason
    assert queue.snapshot() == [ops[1]]
    assert result.pending == 1
    # the third operation still reached the store
    assert store.find_row(NODES, {"id": "org::D"})["hidden"] == "true"
    # no rollback of the optimistic model
    assert "org::A->org::D#partnership" in graph.edges


@pytest.mark.asyncio
async def test_every_operation_failing_reports_each(sample_rows, queue):
    nodes, edges = sample_rows
    store = FlakyStore(nodes=nodes, edges=edges, fail_when=lambda *args: True, error_cls=ConflictError)
    engine = SyncEngine(store, GraphModel.from_record_store(store))
    ops = [SetHidden(node_id=f"org::{c}", hidden=True) for c in "AD"]
    for op in ops:
        queue.enqueue(op)

    result = await engine.save(queue)

    assert result.committed == 0
    assert [f.operation for f in result.failed] == ops
    assert {f.error_kind for f in result.failed} == {"conflict"}
    assert queue.snapshot() == ops


@pytest.mark.asyncio
async def test_cancel_pair_makes_no_store_calls(recording_store, queue):
    graph = GraphModel.from_record_store(recording_store)
    engine = SyncEngine(recording_store, graph)
    _enqueue_applied(graph, queue, [
        UpsertEdge(source="org::A", target="org::D", relationship="partnership"),
        RemoveEdge(source="org::A", target="org::D", relationship="partnership"),
    ])

    result = await engine.save(queue)

    assert recording_store.calls == []
    assert result.committed == 0
    assert result.ok
    assert queue.has_unsaved is False


@pytest.mark.asyncio
async def test_identical_upsert_is_a_no_op(recording_store, queue):
    engine = SyncEngine(recording_store, GraphModel.from_record_store(recording_store))
    queue.enqueue(UpsertEdge(source="org::A", target="person::B", relationship="employment"))

    result = await engine.save(queue)

    assert result.committed == 1
    assert recording_store.calls == []


@pytest.mark.asyncio
async def test_upsert_with_changed_attributes_updates_row(recording_store, queue):
    engine = SyncEngine(recording_store, GraphModel.from_record_store(recording_store))
    queue.enqueue(UpsertEdge(source="org::A", target="person::B", relationship="employment",
                             attributes={"role": "director"}))

    await engine.save(queue)

    row = recording_store.find_row(EDGES, {"source": "org::A", "target": "person::B"})
    assert row["role"] == "director"


@pytest.mark.asyncio
async def test_upsert_writes_missing_endpoint_rows(recording_store, queue):
    graph = GraphModel.from_record_store(recording_store)
    engine = SyncEngine(recording_store, graph)
    _enqueue_applied(graph, queue, [
        UpsertEdge(source="org::A", target="person::Grace Hopper", relationship="employment"),
    ])

    result = await engine.save(queue)

    assert result.ok
    row = recording_store.find_row(NODES, {"id": "person::Grace Hopper"})
    assert row["label"] == "Grace Hopper"
    assert row["type"] == "person"


@pytest.mark.asyncio
async def test_remove_of_missing_edge_is_conflict(recording_store, queue):
    engine = SyncEngine(recording_store, GraphModel.from_record_store(recording_store))
    queue.enqueue(RemoveEdge(source="org::A", target="org::D", relationship="partnership"))

    result = await engine.save(queue)

    assert result.failed[0].error_kind == "conflict"
    assert queue.size() == 1


@pytest.mark.asyncio
async def test_hidden_survives_reload(csv_store, queue):
    graph = GraphModel.from_record_store(csv_store)
    engine = SyncEngine(csv_store, graph)
    _enqueue_applied(graph, queue, [SetHidden(node_id="person::E", hidden=True)])

    await engine.save(queue)
    reloaded = GraphModel.from_record_store(csv_store)

    assert reloaded.nodes["person::E"].hidden is True
    assert reloaded.hidden_node_ids() == {"person::E"}


@pytest.mark.asyncio
async def test_create_node_existing_row_is_skipped(recording_store, queue):
    engine = SyncEngine(recording_store, GraphModel.from_record_store(recording_store))
    queue.enqueue(CreateNode(node_type="organization", label="A"))

    result = await engine.save(queue)

    assert result.ok
    assert recording_store.calls == []


@pytest.mark.asyncio
async def test_slow_write_times_out_as_transport_error(sample_rows):
    nodes, edges = sample_rows
    store = SlowStore(nodes=nodes, edges=edges, delay_s=0.3)
    engine = SyncEngine(store, GraphModel.from_record_store(store), op_timeout_s=0.05)
    queue = PendingOperationsQueue()
    queue.enqueue(SetHidden(node_id="org::A", hidden=True))

    result = await engine.save(queue)

    assert result.committed == 0
    assert result.failed[0].error_kind == "transport"
    assert "timed out" in result.failed[0].reason
    assert queue.size() == 1


@pytest.mark.asyncio
async def test_second_save_while_saving_is_rejected(sample_rows):
    nodes, edges = sample_rows
    store = SlowStore(nodes=nodes, edges=edges, delay_s=0.2)
    engine = SyncEngine(store, GraphModel.from_record_store(store))
    queue = PendingOperationsQueue()
    queue.enqueue(SetHidden(node_id="org::A", hidden=True))

    first = asyncio.create_task(engine.save(queue))
    await asyncio.sleep(0.05)
    assert engine.saving is True

    with pytest.raises(SaveInProgressError):
        await engine.save(queue)

    result = await first
    assert result.committed == 1
    assert engine.saving is False


@pytest.fixture
def dangling_store():
    """org::Ghost only exists as an edge endpoint; it has no node row."""
    return RecordingStore(
        nodes=[{"id": "org::A", "label": "A", "type": "organization"}],
        edges=[{"source": "org::A", "target": "org::Ghost", "relationship": "partnership"}],
    )


@pytest.mark.asyncio
async def test_hiding_node_without_row_writes_the_row(dangling_store, queue):
    graph = GraphModel.from_record_store(dangling_store)
    engine = SyncEngine(dangling_store, graph)
    _enqueue_applied(graph, queue, [SetHidden(node_id="org::Ghost", hidden=True)])

    result = await engine.save(queue)

    assert result.committed == 1
    assert result.ok
    assert queue.has_unsaved is False
    reloaded = GraphModel.from_record_store(dangling_store)
    assert reloaded.nodes["org::Ghost"].hidden is True
    assert reloaded.nodes["org::Ghost"].label == "Ghost"


@pytest.mark.asyncio
async def test_updating_node_without_row_writes_the_row(dangling_store, queue):
    graph = GraphModel.from_record_store(dangling_store)
    engine = SyncEngine(dangling_store, graph)
    _enqueue_applied(graph, queue, [UpdateNode(node_id="org::Ghost", url="https://ghost.example.org")])

    result = await engine.save(queue)

    assert result.ok
    assert dangling_store.find_row(NODES, {"id": "org::Ghost"})["url"] == "https://ghost.example.org"


@pytest.mark.asyncio
async def test_hiding_node_the_model_does_not_know_conflicts(recording_store, queue):
    engine = SyncEngine(recording_store, GraphModel.from_record_store(recording_store))
    queue.enqueue(SetHidden(node_id="org::Unknown", hidden=True))

    result = await engine.save(queue)

    assert result.failed[0].error_kind == "conflict"
    assert recording_store.find_row(NODES, {"id": "org::Unknown"}) is None


@pytest.mark.asyncio
async def test_timed_out_write_never_overlaps_the_next(sample_rows):
    nodes, edges = sample_rows
    store = SlowStore(nodes=nodes, edges=edges, delay_s=0.15)
    engine = SyncEngine(store, GraphModel.from_record_store(store), op_timeout_s=0.05)
    queue = PendingOperationsQueue()
    queue.enqueue(SetHidden(node_id="org::A", hidden=True))
    queue.enqueue(SetHidden(node_id="org::D", hidden=True))

    result = await engine.save(queue)

    assert store.max_active == 1
    assert store.active == 0
    assert {f.error_kind for f in result.failed} == {"transport"}
    # both late writes still landed, one after the other
    assert store.find_row(NODES, {"id": "org::A"})["hidden"] == "true"
    assert store.find_row(NODES, {"id": "org::D"})["hidden"] == "true"
