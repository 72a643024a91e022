"""
Run State for Workflow Engine.

Everything that belongs to a single workflow run lives on a
``RunContext``: the node arena, the variable environment, the run log
and the observer callbacks. The context is created by the executor and
passed explicitly to every handler; nothing is shared between runs.
"""

from typing import Any, Callable, Dict, List, Optional, Set, TYPE_CHECKING
from dataclasses import dataclass, field
from datetime import datetime
import asyncio
import inspect
import logging
import uuid

from promptflow.config import Settings, settings as default_settings
from promptflow.engine.graph import Node, WorkflowGraph
from promptflow.engine.templates import TemplateResolver
from promptflow.engine.variables import VariableEnvironment

if TYPE_CHECKING:
    from promptflow.ai.service import AIInvocationService


logger = logging.getLogger(__name__)

NodesChangedSink = Callable[[List[Node]], Any]
LogSink = Callable[[List[str]], Any]


@dataclass
class NodeExecution:
    """Timing and outcome of one node visit."""
    node_id: str
    node_type: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    result: str = "running"
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "node_type": self.node_type,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "result": self.result,
            "error": self.error,
        }


@dataclass
class RunContext:
    """
    The state of one workflow run.

    Attributes:
        graph: Arena of the run's nodes
        ai_service: Backend used by generative nodes
        on_nodes_changed: Called with all nodes after each status change
        on_log: Called with the full log after each appended line
        settings: Engine settings (delays, thresholds, default models)
    """

    graph: WorkflowGraph
    ai_service: Optional["AIInvocationService"] = None
    on_nodes_changed: Optional[NodesChangedSink] = None
    on_log: Optional[LogSink] = None
    settings: Settings = field(default_factory=lambda: default_settings)
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    variables: VariableEnvironment = field(default_factory=VariableEnvironment)
    logs: List[str] = field(default_factory=list)
    history: List[NodeExecution] = field(default_factory=list)
    sink_tasks: Set["asyncio.Future[Any]"] = field(default_factory=set, repr=False)

    def __post_init__(self):
        self.resolver = TemplateResolver(self.variables, warn=self.warn)

    def log(self, message: str, level: int = logging.INFO) -> None:
        """Append a timestamped line to the run log and notify the sink."""
        timestamp = datetime.now().strftime("%H:%M:%S")
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, f"[run {self.run_id[:8]}] {message}")
        self._notify(self.on_log, list(self.logs))

    def warn(self, message: str) -> None:
        self.log(message, level=logging.WARNING)

    def notify_nodes(self) -> None:
        """Tell the status sink that a node changed."""
        self._notify(self.on_nodes_changed, self.graph.nodes)

    def _notify(self, sink: Optional[Callable[[Any], Any]], payload: Any) -> None:
        if sink is None:
            return
        try:
            result = sink(payload)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self.sink_tasks.add(task)
                task.add_done_callback(self._sink_task_done)
        except Exception as e:
            logger.warning(f"Sink callback failed: {e}")

    def _sink_task_done(self, task: "asyncio.Future[Any]") -> None:
        self.sink_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Sink callback failed: {task.exception()}")

    async def flush_sinks(self) -> None:
        """Wait for async sink callbacks that are still in flight."""
        if self.sink_tasks:
            await asyncio.gather(*list(self.sink_tasks), return_exceptions=True)
