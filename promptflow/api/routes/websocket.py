"""
WebSocket Routes for Real-time Execution Streaming.

Streams the engine's two sinks to the editor while a workflow runs:
every node status change and every log line becomes one message. Other
clients can subscribe to a run that is already in progress and receive
the same messages.
"""

from typing import Any, Dict, Set
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from uuid import uuid4
import asyncio
import logging

from promptflow.api.routes.workflow import get_ai_service
from promptflow.engine.executor import WorkflowEngine
from promptflow.storage.memory import run_storage


logger = logging.getLogger(__name__)

router = APIRouter(tags=["WebSocket"])


class ConnectionManager:
    """Manages the WebSocket connections watching each active run."""

    def __init__(self):
        self.active_connections: Dict[str, Set[WebSocket]] = {}
        self._finished: Dict[str, asyncio.Event] = {}

    def open_run(self, run_id: str):
        """Make a run available for subscribers."""
        self.active_connections.setdefault(run_id, set())
        self._finished[run_id] = asyncio.Event()

    def close_run(self, run_id: str):
        """Release the subscribers of a finished run."""
        finished = self._finished.pop(run_id, None)
        if finished is not None:
            finished.set()

    def is_active(self, run_id: str) -> bool:
        return run_id in self._finished

    async def wait_finished(self, run_id: str):
        finished = self._finished.get(run_id)
        if finished is not None:
            await finished.wait()

    def connect(self, websocket: WebSocket, run_id: str):
        """Attach an accepted WebSocket to a run."""
        self.active_connections.setdefault(run_id, set()).add(websocket)
        logger.info(f"WebSocket connected for run: {run_id}")

    def disconnect(self, websocket: WebSocket, run_id: str):
        """Remove a WebSocket connection."""
        if run_id in self.active_connections:
            self.active_connections[run_id].discard(websocket)
            if not self.active_connections[run_id]:
                del self.active_connections[run_id]
        logger.info(f"WebSocket disconnected for run: {run_id}")

    async def broadcast(self, run_id: str, message: Dict[str, Any]):
        """Broadcast a message to all connections for a run."""
        if run_id in self.active_connections:
            disconnected = set()
            for websocket in list(self.active_connections[run_id]):
                try:
                    await websocket.send_json(message)
                except Exception:
                    disconnected.add(websocket)

            # Clean up disconnected clients
            for ws in disconnected:
                self.active_connections[run_id].discard(ws)


# Global connection manager
manager = ConnectionManager()


@router.websocket("/ws/run")
async def websocket_run(websocket: WebSocket, ai_service: Any = Depends(get_ai_service)):
    """
    WebSocket endpoint for real-time workflow execution.

    Message format (client -> server):
    ```json
    {"action": "start", "nodes": [...], "edges": [...]}
    {"action": "subscribe", "run_id": "..."}
    ```

    Message format (server -> client):
    ```json
    {"type": "started", "run_id": "..."}
    {"type": "subscribed", "run_id": "..."}
    {"type": "nodes", "nodes": [...]}
    {"type": "log", "line": "[12:00:00] Executing node: Start (trigger)", "logs": [...]}
    {"type": "completed", "run_id": "...", "status": "completed", "variables": {...}}
    ```
    """
    await websocket.accept()
    run_id = None

    try:
        data = await websocket.receive_json()
        action = data.get("action")

        if action == "subscribe":
            run_id = data.get("run_id")
            if not run_id or not manager.is_active(run_id):
                await websocket.send_json({
                    "type": "error",
                    "error": f"Run '{run_id}' is not in progress"
                })
                run_id = None
                return
            manager.connect(websocket, run_id)
            await websocket.send_json({"type": "subscribed", "run_id": run_id})
            await manager.wait_finished(run_id)
            return

        if action != "start":
            await websocket.send_json({
                "type": "error",
                "error": "Expected 'start' or 'subscribe' action"
            })
            return

        run_id = str(uuid4())
        try:
            nodes = data.get("nodes", [])
            edges = data.get("edges", [])
            queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
            engine = WorkflowEngine(
                {"nodes": nodes, "edges": edges},
                on_nodes_changed=lambda changed: queue.put_nowait({
                    "type": "nodes",
                    "nodes": [n.model_dump(mode="json", by_alias=True) for n in changed],
                }),
                on_log=lambda lines: queue.put_nowait({
                    "type": "log",
                    "line": lines[-1],
                    "logs": lines,
                }),
                ai_service=ai_service,
                run_id=run_id,
            )
        except (ValidationError, ValueError) as e:
            await websocket.send_json({"type": "error", "error": str(e)})
            run_id = None
            return

        manager.open_run(run_id)
        manager.connect(websocket, run_id)
        await websocket.send_json({"type": "started", "run_id": run_id})
        await run_storage.create(run_id, nodes, edges)

        try:
            run_task = asyncio.create_task(engine.run())
            await _pump(queue, run_task, run_id)
            await run_task

            summary = engine.get_execution_summary()
            await run_storage.complete(run_id, summary)

            await manager.broadcast(run_id, {
                "type": "completed",
                "run_id": run_id,
                "status": summary["status"],
                "variables": summary["variables"],
            })
        finally:
            manager.close_run(run_id)

    except WebSocketDisconnect:
        logger.info(f"Client disconnected from run {run_id}")
    except Exception as e:
        logger.exception(f"WebSocket error: {e}")
        try:
            await websocket.send_json({
                "type": "error",
                "error": str(e),
            })
        except Exception:
            logger.debug("Could not deliver error to client")
    finally:
        if run_id is not None:
            manager.disconnect(websocket, run_id)


async def _pump(queue: "asyncio.Queue[Dict[str, Any]]", run_task: "asyncio.Task[None]", run_id: str):
    """Forward sink messages until the run finishes and the queue drains."""
    while not (run_task.done() and queue.empty()):
        try:
            message = await asyncio.wait_for(queue.get(), timeout=0.05)
        except asyncio.TimeoutError:
            continue
        await manager.broadcast(run_id, message)
