"""
Record store adapter for the durable node/edge tables.

The store is row-oriented with header-named columns, the same shape as the
spreadsheet tabs the graph is curated in:

- nodes: id,label,type,url,hidden,created_at,updated_at (+ extra columns)
- edges: source,target,relationship,role,url,notes,created_at,updated_at

Backends:
- CsvRecordStore (default): one CSV file per table, rewritten on every write
- InMemoryRecordStore: tests and throwaway sessions
"""
import copy
import csv
import logging
import os
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from errors import ConflictError, GraphValidationError, TransportError
from models import Edge, Node, node_type_from_id

logger = logging.getLogger("graph_curation")

Row = Dict[str, str]

NODES = "nodes"
EDGES = "edges"

NODE_COLUMNS = ["id", "label", "type", "url", "hidden", "created_at", "updated_at"]
EDGE_COLUMNS = ["source", "target", "relationship", "role", "url", "notes", "created_at", "updated_at"]

TABLE_COLUMNS = {NODES: NODE_COLUMNS, EDGES: EDGE_COLUMNS}
KEY_COLUMNS = {NODES: ("id",), EDGES: ("source", "target", "relationship")}

# bookkeeping columns that never count as record attributes
_STAMP_COLUMNS = ("created_at", "updated_at")


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _truthy(value: str) -> bool:
    return str(value or "").strip().lower() in ("true", "1", "yes")


def row_to_node(row: Row) -> Optional[Node]:
    node_id = (row.get("id") or "").strip()
    if not node_id:
        return None
    node_type = (row.get("type") or "").strip() or node_type_from_id(node_id)
    if node_type not in ("person", "organization", "project"):
        node_type = node_type_from_id(node_id)
    attributes = {
        k: v for k, v in row.items()
        if k not in ("id", "label", "type", "hidden") + _STAMP_COLUMNS and v
    }
    return Node(
        id=node_id,
        label=(row.get("label") or "").strip() or node_id,
        type=node_type,
        hidden=_truthy(row.get("hidden", "")),
        attributes=attributes,
    )


def node_to_row(node: Node) -> Row:
    row = {
        "id": node.id,
        "label": node.label,
        "type": node.type,
        "hidden": "true" if node.hidden else "",
    }
    row.update(node.attributes)
    return row


def row_to_edge(row: Row) -> Optional[Edge]:
    source = (row.get("source") or "").strip()
    target = (row.get("target") or "").strip()
    if not source or not target:
        return None
    attributes = {
        k: v for k, v in row.items()
        if k not in KEY_COLUMNS[EDGES] + _STAMP_COLUMNS and v
    }
    return Edge(
        source=source,
        target=target,
        relationship=(row.get("relationship") or "").strip() or "connected",
        attributes=attributes,
    )


def edge_to_row(edge: Edge) -> Row:
    row = {"source": edge.source, "target": edge.target, "relationship": edge.relationship}
    row.update(edge.attributes)
    return row


def row_attributes(table: str, row: Row) -> Row:
    """Non-key, non-bookkeeping columns with a value."""
    skip = KEY_COLUMNS[table] + _STAMP_COLUMNS
    return {k: v for k, v in row.items() if k not in skip and v}


def _matches(row: Row, matcher: Row) -> bool:
    return all((row.get(k) or "") == v for k, v in matcher.items())


class RecordStore(ABC):
    """
    Abstract record store.

    Backends only load and persist whole tables; append/delete/update,
    key-uniqueness and conflict detection live here so every backend
    behaves the same way.
    """

    def __init__(self):
        self._lock = threading.Lock()

    @abstractmethod
    def _load_table(self, table: str) -> List[Row]:
        """Return all rows of a table (empty list when the table is absent)."""

    @abstractmethod
    def _store_table(self, table: str, rows: List[Row]) -> None:
        """Replace the table contents."""

    def describe(self) -> str:
        return type(self).__name__

    # -- reads ---------------------------------------------------------

    def rows(self, table: str) -> List[Row]:
        self._check_table(table)
        return self._load_table(table)

    def list_nodes(self) -> List[Node]:
        nodes = []
        for row in self.rows(NODES):
            node = row_to_node(row)
            if node is None:
                logger.warning("Skipping node row without id: %s", row)
                continue
            nodes.append(node)
        return nodes

    def list_edges(self) -> List[Edge]:
        edges = []
        for row in self.rows(EDGES):
            edge = row_to_edge(row)
            if edge is None:
                logger.warning("Skipping edge row without endpoints: %s", row)
                continue
            edges.append(edge)
        return edges

    def find_row(self, table: str, matcher: Row) -> Optional[Row]:
        for row in self.rows(table):
            if _matches(row, matcher):
                return row
        return None

    # -- writes --------------------------------------------------------

    def append_row(self, table: str, record: Row) -> None:
        """Append a row; a row with the same key is a ConflictError."""
        self._check_table(table)
        key = self._key_of(table, record)
        with self._lock:
            rows = self._load_table(table)
            if any(_matches(r, key) for r in rows):
                raise ConflictError(f"{table} row already exists: {key}")
            now = utcnow_iso()
            row = {k: str(v) for k, v in record.items()}
            row.setdefault("created_at", now)
            row["updated_at"] = now
            rows.append(row)
            self._store_table(table, rows)

    def delete_row(self, table: str, matcher: Row) -> int:
        """Delete every row matching; no match is a ConflictError."""
        self._check_table(table)
        with self._lock:
            rows = self._load_table(table)
            kept = [r for r in rows if not _matches(r, matcher)]
            removed = len(rows) - len(kept)
            if removed == 0:
                raise ConflictError(f"{table} row not found: {matcher}")
            self._store_table(table, kept)
        return removed

    def update_row(self, table: str, matcher: Row, patch: Row) -> int:
        """Patch every row matching; no match is a ConflictError."""
        self._check_table(table)
        with self._lock:
            rows = self._load_table(table)
            hits = [r for r in rows if _matches(r, matcher)]
            if not hits:
                raise ConflictError(f"{table} row not found: {matcher}")
            now = utcnow_iso()
            for row in hits:
                row.update({k: str(v) for k, v in patch.items()})
                row["updated_at"] = now
            if any(k in KEY_COLUMNS[table] for k in patch):
                keys = [tuple(r.get(c, "") for c in KEY_COLUMNS[table]) for r in rows]
                if len(keys) != len(set(keys)):
                    raise ConflictError(f"{table} update would duplicate a key: {patch}")
            self._store_table(table, rows)
        return len(hits)

    def _check_table(self, table: str) -> None:
        if table not in TABLE_COLUMNS:
            raise GraphValidationError(f"Unknown table: {table}")

    def _key_of(self, table: str, record: Row) -> Row:
        key = {c: str(record.get(c) or "") for c in KEY_COLUMNS[table]}
        if not all(key.values()):
            raise GraphValidationError(f"{table} row is missing key columns: {key}")
        return key


class InMemoryRecordStore(RecordStore):
    def __init__(self, nodes: Optional[Sequence[Row]] = None, edges: Optional[Sequence[Row]] = None):
        super().__init__()
        self._tables: Dict[str, List[Row]] = {
            NODES: [dict(r) for r in nodes or []],
            EDGES: [dict(r) for r in edges or []],
        }

    def _load_table(self, table: str) -> List[Row]:
        return copy.deepcopy(self._tables[table])

    def _store_table(self, table: str, rows: List[Row]) -> None:
        self._tables[table] = copy.deepcopy(rows)


class CsvRecordStore(RecordStore):
    """One CSV file per table; writes go to a temp file and are swapped in."""

    def __init__(self, directory: Path, nodes_file: str = "nodes.csv", edges_file: str = "edges.csv"):
        super().__init__()
        self.directory = Path(directory)
        self.paths = {NODES: self.directory / nodes_file, EDGES: self.directory / edges_file}

    def describe(self) -> str:
        return f"CsvRecordStore({self.directory})"

    def _load_table(self, table: str) -> List[Row]:
        path = self.paths[table]
        if not path.exists():
            return []
        try:
            with path.open("r", newline="", encoding="utf-8") as f:
                reader = csv.DictReader(f)
                return [{k: (v or "") for k, v in row.items() if k} for row in reader]
        except OSError as e:
            raise TransportError(f"Failed to read {path.name}: {e}") from e

    def _store_table(self, table: str, rows: List[Row]) -> None:
        path = self.paths[table]
        header = list(TABLE_COLUMNS[table])
        for row in rows:
            for column in row:
                if column not in header:
                    header.append(column)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", newline="", encoding="utf-8") as f:
                writer = csv.DictWriter(f, fieldnames=header)
                writer.writeheader()
                for row in rows:
                    writer.writerow({c: row.get(c, "") for c in header})
            os.replace(tmp_path, path)
        except OSError as e:
            raise TransportError(f"Failed to write {path.name}: {e}") from e


def build_record_store(backend: str, directory: Optional[Path] = None, **kwargs) -> RecordStore:
    """
    Factory: create a RecordStore of the requested backend type.

    Args:
        backend: "csv" or "memory"
        directory: folder holding the CSV files (csv backend only)
    """
    backend = (backend or "csv").lower()
    if backend == "memory":
        return InMemoryRecordStore()
    if backend == "csv":
        if directory is None:
            raise GraphValidationError("csv record store needs a directory")
        return CsvRecordStore(directory, **kwargs)
    raise GraphValidationError(f"Unknown record store backend: {backend}")
