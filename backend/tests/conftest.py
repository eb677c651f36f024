"""
Pytest configuration and fixtures for testing the graph curation backend.

This module provides:
- Environment variable overrides so tests never touch the real CSV export
- Record store fixtures (in-memory and temp-dir CSV) seeded with a small graph
- A workspace fixture wired into the FastAPI app through dependency_overrides
- Test client fixture
"""
import os
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Override environment variables before any backend module reads config
_TMP_DIR = Path(tempfile.mkdtemp(prefix="graph_curation_tests_"))
os.environ.setdefault("RECORD_STORE_BACKEND", "memory")
os.environ.setdefault("RECORD_STORE_DIR", str(_TMP_DIR / "store"))
os.environ.setdefault("EVENT_LOG_FILE", str(_TMP_DIR / "events.jsonl"))

from main import app
from record_store import CsvRecordStore, InMemoryRecordStore
from services_graph_model import GraphModel
from services_pending_ops import PendingOperationsQueue
from services_workspace import CurationWorkspace, get_workspace


def node_row(node_id, label, node_type="organization", hidden=False, **extra):
    row = {"id": node_id, "label": label, "type": node_type, "hidden": "true" if hidden else ""}
    row.update(extra)
    return row


def edge_row(source, target, relationship="partnership", **extra):
    row = {"source": source, "target": target, "relationship": relationship}
    row.update(extra)
    return row


@pytest.fixture
def sample_rows():
    """
    Two components: A-B-C and D-E (single-letter labels so that a query
    for one label never matches another).
    """
    nodes = [
        node_row("org::A", "A"),
        node_row("person::B", "B", "person"),
        node_row("project::C", "C", "project"),
        node_row("org::D", "D"),
        node_row("person::E", "E", "person"),
    ]
    edges = [
        edge_row("org::A", "person::B", "employment"),
        edge_row("person::B", "project::C", "project-membership"),
        edge_row("org::D", "person::E", "employment"),
    ]
    return nodes, edges


@pytest.fixture
def memory_store(sample_rows):
    nodes, edges = sample_rows
    return InMemoryRecordStore(nodes=nodes, edges=edges)


@pytest.fixture
def csv_store(tmp_path, sample_rows):
    store = CsvRecordStore(tmp_path / "store")
    nodes, edges = sample_rows
    for row in nodes:
        store.append_row("nodes", row)
    for row in edges:
        store.append_row("edges", row)
    return store


@pytest.fixture
def graph(memory_store):
    return GraphModel.from_record_store(memory_store)


@pytest.fixture
def queue():
    return PendingOperationsQueue()


@pytest.fixture
def candidates():
    return {
        "org::A": [
            {"name": "Open Climate Fund", "url": "https://climate.example.org"},
            {"name": "D", "url": "https://d.example.org"},
        ]
    }


@pytest.fixture
def workspace(memory_store, candidates, tmp_path):
    ws = CurationWorkspace(memory_store, candidates=candidates, event_log_file=tmp_path / "events.jsonl")
    ws.load()
    return ws


@pytest.fixture(autouse=True)
def override_workspace_dependency(workspace):
    """
    Route every endpoint to the test workspace through FastAPI's
    dependency_overrides. Runs for every test automatically.
    """
    app.dependency_overrides[get_workspace] = lambda: workspace
    yield
    app.dependency_overrides.pop(get_workspace, None)


@pytest.fixture
def client():
    """
    Test client for the FastAPI app.

    raise_server_exceptions=False lets the exception handlers turn errors into
    responses, matching production behavior.
    """
    return TestClient(app, raise_server_exceptions=False)
