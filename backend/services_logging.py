"""
Logging service for curation events.
Logs saves, reloads and discards to a JSONL file for auditing and debugging.
"""
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from config import EVENT_LOG_FILE

logger = logging.getLogger("graph_curation")


def structured_log_line(payload: dict) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def _log_file(log_file: Optional[Path]) -> Path:
    return Path(log_file) if log_file is not None else EVENT_LOG_FILE


def log_curation_event(
    event: str,
    pending: int,
    committed: Optional[int] = None,
    failed: Optional[List[Dict[str, Any]]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    log_file: Optional[Path] = None,
) -> None:
    """
    Append a curation event to the JSONL log.

    Args:
        event: "save", "reload" or "discard"
        pending: queue length after the event
        committed: operations written by a save
        failed: failed operations of a save ({"kind", "reason", "error_kind"})
        metadata: optional additional metadata
    """
    record: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": event,
        "pending": pending,
    }
    if committed is not None:
        record["committed"] = committed
    if failed:
        record["failed"] = failed
    if metadata:
        record["metadata"] = metadata

    path = _log_file(log_file)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(structured_log_line(record) + "\n")
    except OSError as e:
        # the audit trail must never fail a save
        logger.warning(f"Failed to log curation event: {e}")


def log_save_result(result, log_file: Optional[Path] = None) -> None:
    log_curation_event(
        "save",
        pending=result.pending,
        committed=result.committed,
        failed=[
            {"kind": f.operation.kind, "reason": f.reason, "error_kind": f.error_kind}
            for f in result.failed
        ],
        log_file=log_file,
    )


def get_recent_events(limit: int = 100, log_file: Optional[Path] = None) -> List[Dict[str, Any]]:
    """
    Get recent curation events, most recent first.

    Args:
        limit: Maximum number of events to return
    """
    path = _log_file(log_file)
    if not path.exists():
        return []

    events = []
    with path.open("r", encoding="utf-8") as f:
        lines = f.readlines()
    for line in lines[-limit:]:
        try:
            events.append(json.loads(line.strip()))
        except json.JSONDecodeError:
            logger.warning("Skipping malformed curation event line")
    events.sort(key=lambda e: e.get("timestamp", ""), reverse=True)
    return events
