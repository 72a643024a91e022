"""
Workflow API Routes.

Endpoints for running workflow graphs and inspecting their runs.
"""

from typing import Any, Dict, List, Set
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from uuid import uuid4
import asyncio
import logging

from promptflow.ai.schema import normalize_schema
from promptflow.api.schemas import (
    ErrorResponse,
    ExecutionStatus,
    NodeExecutionEntry,
    RunListResponse,
    SchemaNormalizeRequest,
    SchemaNormalizeResponse,
    WorkflowRunRequest,
    WorkflowRunResponse,
)
from promptflow.engine.executor import WorkflowEngine
from promptflow.engine.graph import Node
from promptflow.storage.memory import StoredRun, run_storage


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["Workflows"])
schema_router = APIRouter(prefix="/schema", tags=["Schema"])


def get_ai_service() -> Any:
    """
    AI backend used by API runs.

    Returning None lets the engine build its default Gemini service.
    Override with ``app.dependency_overrides`` to plug in another one.
    """
    return None


# ============================================================
# Run Endpoints
# ============================================================

@router.post(
    "/run",
    response_model=WorkflowRunResponse,
    responses={
        422: {"model": ErrorResponse, "description": "Invalid graph definition"},
        500: {"model": ErrorResponse, "description": "Execution failed"},
    }
)
async def run_workflow(
    request: WorkflowRunRequest,
    background_tasks: BackgroundTasks,
    ai_service: Any = Depends(get_ai_service),
) -> WorkflowRunResponse:
    """
    Execute a workflow graph.

    Node failures do not fail the request: they are reported on the nodes
    and in the log. If `async_execution` is True, the workflow runs in the
    background and you can poll GET /workflows/runs/{run_id}.
    """
    nodes = [n.model_dump(mode="json", by_alias=True) for n in request.nodes]
    edges = [e.model_dump(mode="json", by_alias=True) for e in request.edges]

    run_id = str(uuid4())
    try:
        engine = _create_engine(run_id, request, ai_service)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    await run_storage.create(run_id, nodes, edges)

    if request.async_execution:
        background_tasks.add_task(_execute_in_background, engine)
        return WorkflowRunResponse(run_id=run_id, status=ExecutionStatus.PENDING, nodes=nodes)

    try:
        await engine.run()
    except Exception as e:
        logger.exception(f"Execution failed: {e}")
        await run_storage.fail(run_id, str(e))
        raise HTTPException(status_code=500, detail=str(e))

    stored = await run_storage.complete(run_id, engine.get_execution_summary())
    return _stored_to_response(stored)


def _create_engine(run_id: str, request: WorkflowRunRequest, ai_service: Any) -> WorkflowEngine:
    """Build an engine whose sinks mirror progress into run storage."""
    return WorkflowEngine(
        {"nodes": request.nodes, "edges": request.edges},
        on_nodes_changed=lambda nodes: _schedule(run_storage.update_nodes(run_id, _dump_nodes(nodes))),
        on_log=lambda lines: _schedule(run_storage.update_logs(run_id, lines)),
        ai_service=ai_service,
        run_id=run_id,
    )


def _dump_nodes(nodes: List[Node]) -> List[Dict[str, Any]]:
    return [n.model_dump(mode="json", by_alias=True) for n in nodes]


# Storage updates still in flight
_pending_updates: Set["asyncio.Task[Any]"] = set()


def _schedule(coro) -> None:
    """Run a storage update from a sync sink callback."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        coro.close()
        return
    task = loop.create_task(coro)
    _pending_updates.add(task)
    task.add_done_callback(_pending_updates.discard)


async def _execute_in_background(engine: WorkflowEngine):
    """Execute a workflow in the background."""
    try:
        await engine.run()
        await run_storage.complete(engine.run_id, engine.get_execution_summary())
    except Exception as e:
        logger.exception(f"Background execution failed: {e}")
        await run_storage.fail(engine.run_id, str(e))


def _stored_to_response(stored: StoredRun) -> WorkflowRunResponse:
    """Convert a stored run to an API response."""
    return WorkflowRunResponse(
        run_id=stored.run_id,
        status=ExecutionStatus(stored.status),
        nodes=stored.nodes,
        logs=stored.logs,
        variables=stored.variables,
        history=[NodeExecutionEntry(**entry) for entry in stored.history],
        started_at=stored.started_at.isoformat(),
        completed_at=stored.completed_at.isoformat() if stored.completed_at else None,
        error=stored.error,
    )


# ============================================================
# Run State Endpoints
# ============================================================

@router.get(
    "/runs/{run_id}",
    response_model=WorkflowRunResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_run(run_id: str) -> WorkflowRunResponse:
    """
    Get the current state of a workflow run.

    Use this to poll the status of async executions.
    """
    stored = await run_storage.get(run_id)
    if not stored:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found")
    return _stored_to_response(stored)


@router.get(
    "/runs",
    response_model=RunListResponse,
)
async def list_runs() -> RunListResponse:
    """List all runs."""
    runs = [_stored_to_response(stored) for stored in await run_storage.list_all()]
    return RunListResponse(runs=runs, total=len(runs))


@router.delete(
    "/runs/{run_id}",
    responses={404: {"model": ErrorResponse}},
)
async def delete_run(run_id: str):
    """Delete a stored run."""
    deleted = await run_storage.delete(run_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found")
    return {"message": f"Run '{run_id}' deleted"}


# ============================================================
# Schema Endpoints
# ============================================================

@schema_router.post(
    "/normalize",
    response_model=SchemaNormalizeResponse,
)
async def normalize(request: SchemaNormalizeRequest) -> SchemaNormalizeResponse:
    """Expand a `{field: TYPE}` shorthand into a full response schema."""
    return SchemaNormalizeResponse(json_schema=normalize_schema(request.json_schema))
