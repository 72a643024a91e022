"""
Promptflow - FastAPI Application Entry Point.

Serves the workflow engine to the visual editor: run a graph over HTTP
or stream its progress over a WebSocket.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from promptflow.config import settings
from promptflow.api.routes import websocket, workflow


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    if not settings.GEMINI_API_KEY:
        logger.warning("GEMINI_API_KEY is not set; generative nodes will fail")

    yield

    # Shutdown
    logger.info("Shutting down...")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="""
## Workflow Engine API

Executes visual AI workflows built from trigger, generate-text,
generate-image, condition, api-call and passthrough nodes.

### Features
- **Variables**: Nodes publish results as named variables
- **Templates**: Prompts reference variables with `{{name}}`
- **Output mappings**: Copy fields of JSON results into variables
- **Failure isolation**: A failing node only stops its own subtree
- **Real-time Updates**: WebSocket streaming of node status and log lines

### Quick Start
1. Run a graph: `POST /workflows/run`
2. Check a run: `GET /workflows/runs/{run_id}`
3. Stream a run: `WS /ws/run`
    """,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include routers
app.include_router(workflow.router)
app.include_router(workflow.schema_router)
app.include_router(websocket.router)


# ============================================================
# Root Endpoints
# ============================================================

@app.get("/", tags=["Root"])
async def root():
    """API root - returns basic info and links."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "description": "An execution engine for visual AI workflows",
        "docs": "/docs",
        "redoc": "/redoc",
        "endpoints": {
            "run": "/workflows/run",
            "runs": "/workflows/runs",
            "normalize_schema": "/schema/normalize",
            "websocket_run": "/ws/run",
        },
    }


@app.get("/health", tags=["Root"])
async def health():
    """Health check endpoint."""
    from promptflow.storage.memory import run_storage

    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "runs_count": len(run_storage),
        "ai_configured": bool(settings.GEMINI_API_KEY),
    }


# ============================================================
# Error Handlers
# ============================================================

@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for unhandled errors."""
    logger.exception(f"Unhandled error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "detail": str(exc) if settings.DEBUG else "An unexpected error occurred",
        },
    )
