import os
from pathlib import Path
from dotenv import load_dotenv

# .env files, later ones win: backend/.env, then .env and .env.local at the repo root
repo_root = Path(__file__).parent.parent
backend_env = Path(__file__).parent / ".env"

for env_path in (backend_env, repo_root / ".env", repo_root / ".env.local"):
    if env_path.exists():
        load_dotenv(dotenv_path=env_path, override=env_path is not backend_env)

# -----------------------------------------------------------------------------
# Record store (the spreadsheet export: one CSV per table)
# -----------------------------------------------------------------------------
RECORD_STORE_BACKEND = os.getenv("RECORD_STORE_BACKEND", "csv").lower()  # "csv" or "memory"
RECORD_STORE_DIR = Path(os.getenv("RECORD_STORE_DIR", str(repo_root / "output")))
NODES_FILE = os.getenv("NODES_FILE", "nodes.csv")
EDGES_FILE = os.getenv("EDGES_FILE", "edges.csv")

# Optional JSON file: {"org::Name": [{"name": "...", "url": "..."}]}
CANDIDATES_FILE = os.getenv("CANDIDATES_FILE")

# -----------------------------------------------------------------------------
# Save protocol
# -----------------------------------------------------------------------------
# Upper bound for a single record store write during save, in seconds
SAVE_OP_TIMEOUT_S = float(os.getenv("SAVE_OP_TIMEOUT_S", "10"))
DEFAULT_RELATIONSHIP = os.getenv("DEFAULT_RELATIONSHIP", "partnership")

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
EVENT_LOG_FILE = Path(os.getenv("EVENT_LOG_FILE", str(Path(__file__).parent / "logs" / "curation_events.jsonl")))

# -----------------------------------------------------------------------------
# HTTP
# -----------------------------------------------------------------------------
ALLOWED_ORIGINS = [
    o.strip()
    for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:8002,http://127.0.0.1:8002").split(",")
    if o.strip()
]
PORT = int(os.getenv("PORT", "8000"))
