"""
In-Memory Storage for Workflow Runs.

Keeps the latest node states and log of every run started through the
API so clients can poll background runs. Can be easily replaced with a
database implementation.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime
import asyncio
from dataclasses import dataclass, field


@dataclass
class StoredRun:
    """A stored workflow run."""
    run_id: str
    status: str
    nodes: List[Dict[str, Any]] = field(default_factory=list)
    edges: List[Dict[str, Any]] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)
    variables: Dict[str, Any] = field(default_factory=dict)
    history: List[Dict[str, Any]] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    error: Optional[str] = None


class RunStorage:
    """
    In-memory storage for workflow runs, guarded by an asyncio lock.

    Node and log updates arrive from the engine's sinks while the run is
    in progress; ``complete`` stores the final picture.
    """

    def __init__(self):
        self._runs: Dict[str, StoredRun] = {}
        self._lock = asyncio.Lock()

    async def create(
        self,
        run_id: str,
        nodes: List[Dict[str, Any]],
        edges: List[Dict[str, Any]],
    ) -> StoredRun:
        """
        Create a new run.

        Args:
            run_id: Unique run identifier
            nodes: Node definitions as submitted
            edges: Edge definitions as submitted

        Returns:
            The stored run
        """
        async with self._lock:
            stored = StoredRun(
                run_id=run_id,
                status="pending",
                nodes=nodes,
                edges=edges,
            )
            self._runs[run_id] = stored
            return stored

    async def get(self, run_id: str) -> Optional[StoredRun]:
        """Get a run by ID."""
        async with self._lock:
            return self._runs.get(run_id)

    async def update_nodes(self, run_id: str, nodes: List[Dict[str, Any]]) -> Optional[StoredRun]:
        """Replace the node states of a running run."""
        async with self._lock:
            if run_id not in self._runs:
                return None
            stored = self._runs[run_id]
            if stored.completed_at is not None:
                return stored
            stored.nodes = nodes
            stored.status = "running"
            return stored

    async def update_logs(self, run_id: str, logs: List[str]) -> Optional[StoredRun]:
        """Replace the log of a running run."""
        async with self._lock:
            if run_id not in self._runs:
                return None
            stored = self._runs[run_id]
            if stored.completed_at is None:
                stored.logs = logs
            return stored

    async def complete(self, run_id: str, summary: Dict[str, Any]) -> Optional[StoredRun]:
        """Store the final state of a run from the engine's summary."""
        async with self._lock:
            if run_id not in self._runs:
                return None
            stored = self._runs[run_id]
            stored.status = summary["status"]
            stored.nodes = summary["nodes"]
            stored.logs = summary["logs"]
            stored.variables = summary["variables"]
            stored.history = summary["history"]
            stored.completed_at = datetime.now()
            if summary["status"] == "failed" and summary["logs"]:
                stored.error = summary["logs"][-1]
            return stored

    async def fail(self, run_id: str, error: str) -> Optional[StoredRun]:
        """Mark a run as failed."""
        async with self._lock:
            if run_id not in self._runs:
                return None
            stored = self._runs[run_id]
            stored.status = "failed"
            stored.error = error
            stored.completed_at = datetime.now()
            return stored

    async def list_all(self) -> List[StoredRun]:
        """List all runs."""
        async with self._lock:
            return list(self._runs.values())

    async def delete(self, run_id: str) -> bool:
        """Delete a run."""
        async with self._lock:
            if run_id in self._runs:
                del self._runs[run_id]
                return True
            return False

    def __len__(self) -> int:
        return len(self._runs)


# Global storage instance
run_storage = RunStorage()
