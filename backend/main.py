from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager
import logging
import time
import uuid

from api_curation import curation_router, quick_editor_router, session_router
from api_graph import router as graph_router
from config import ALLOWED_ORIGINS, LOG_LEVEL, PORT
from errors import CurationError
from services_logging import structured_log_line
from services_workspace import get_workspace

# Configure logging
logging.basicConfig(level=LOG_LEVEL, format="%(message)s")
logger = logging.getLogger("graph_curation")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Load the graph from the record store on startup. A store that cannot be
    read is logged, not fatal: the first request retries the load.
    """
    try:
        workspace = get_workspace()
        logger.info(structured_log_line({
            "event": "startup_load",
            "store": workspace.record_store.describe(),
            "nodes": len(workspace.graph.nodes),
            "edges": len(workspace.graph.edges),
        }))
    except CurationError as e:
        logger.error(f"Error loading graph on startup: {e}", exc_info=True)

    yield  # App runs here


app = FastAPI(
    title="Graph Curation Backend",
    description="Curate a relationship graph: hide/show, connect, search, and save back to the record store.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(graph_router)
app.include_router(session_router)
app.include_router(curation_router)
app.include_router(quick_editor_router)


@app.middleware("http")
async def request_observability(request: Request, call_next):
    start = time.perf_counter()
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    request.state.request_id = request_id
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
    finally:
        latency_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            structured_log_line(
                {
                    "event": "request",
                    "request_id": request_id,
                    "route": request.url.path,
                    "method": request.method,
                    "status": status_code,
                    "latency_ms": latency_ms,
                }
            )
        )
    response.headers["x-request-id"] = request_id
    return response


# Centralized error handling
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(level, f"HTTP {exc.status_code} on {request.method} {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Invalid request body on {request.method} {request.url.path}")
    return JSONResponse(status_code=422, content={"detail": jsonable_errors(exc)})


def jsonable_errors(exc: RequestValidationError) -> list:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    # full trace in the log, generic message to the client
    logger.exception(f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/")
def read_root():
    return {"status": "ok", "message": "Graph curation backend is running"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
