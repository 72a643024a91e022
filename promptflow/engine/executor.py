"""
Async Workflow Executor.

The executor walks a workflow graph depth-first from its trigger node.
For every node it resolves the configuration against the run's
variables, dispatches to the node type's handler, publishes the output
to the variables and then descends into each outgoing edge, in order,
passing the output along as the next node's payload.

A failure marks only the failing node and stops the descent below it;
siblings reached through other edges still run.
"""

from typing import Any, Dict, List, Optional, Tuple, Union
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
import json
import logging
import time
import uuid

from promptflow.config import Settings, settings as default_settings
from promptflow.engine.errors import CycleDetected
from promptflow.engine.extractor import extract_outputs
from promptflow.engine.graph import Node, NodeStatus, WorkflowGraph
from promptflow.engine.handlers import dispatch
from promptflow.engine.state import LogSink, NodeExecution, NodesChangedSink, RunContext
from promptflow.engine.variables import VariableEnvironment


# Configure logging
logger = logging.getLogger(__name__)

TRIGGER_PAYLOAD = "Workflow triggered."


class ExecutionStatus(str, Enum):
    """Status of a workflow run."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class _Frame:
    """A pending node visit on the work list."""
    node_id: str
    payload: Any
    path: Tuple[str, ...]


class WorkflowEngine:
    """
    Runs one workflow graph.

    Results are observed through the two sinks and through the nodes'
    ``output_value`` / ``error_message`` fields; ``run()`` itself returns
    nothing and never raises for node failures.

    Usage:
        engine = WorkflowEngine(
            {"nodes": nodes, "edges": edges},
            on_nodes_changed=render,
            on_log=print_log,
        )
        await engine.run()
        engine.variables.get("result")
    """

    def __init__(
        self,
        graph: Union[WorkflowGraph, Dict[str, Any]],
        on_nodes_changed: Optional[NodesChangedSink] = None,
        on_log: Optional[LogSink] = None,
        ai_service: Optional[Any] = None,
        settings: Optional[Settings] = None,
        run_id: Optional[str] = None,
    ):
        """
        Initialize the engine.

        Args:
            graph: A WorkflowGraph or a ``{"nodes": [...], "edges": [...]}``
                definition; the engine always works on its own copy
            on_nodes_changed: Called with all nodes after each status change
            on_log: Called with the whole log after each new line
            ai_service: Backend for generative nodes (Gemini by default)
            settings: Engine settings (module settings by default)
            run_id: Optional run ID (generated if not provided)
        """
        if isinstance(graph, WorkflowGraph):
            arena = WorkflowGraph(graph.nodes, graph.edges)
        else:
            arena = WorkflowGraph.from_definition(graph.get("nodes", []), graph.get("edges", []))

        settings = settings or default_settings
        if ai_service is None:
            # Imported here: the AI package depends on the engine's models
            from promptflow.ai.service import GeminiService
            ai_service = GeminiService(settings=settings)

        self.context = RunContext(
            graph=arena,
            ai_service=ai_service,
            on_nodes_changed=on_nodes_changed,
            on_log=on_log,
            settings=settings,
            run_id=run_id or str(uuid.uuid4()),
        )
        self._status = ExecutionStatus.PENDING
        self._started_at: Optional[datetime] = None
        self._completed_at: Optional[datetime] = None

    @property
    def run_id(self) -> str:
        return self.context.run_id

    @property
    def status(self) -> ExecutionStatus:
        return self._status

    @property
    def graph(self) -> WorkflowGraph:
        return self.context.graph

    @property
    def nodes(self) -> List[Node]:
        return self.context.graph.nodes

    @property
    def variables(self) -> VariableEnvironment:
        return self.context.variables

    @property
    def logs(self) -> List[str]:
        return list(self.context.logs)

    async def run(self) -> None:
        """Execute the workflow from its trigger node."""
        ctx = self.context
        self._status = ExecutionStatus.RUNNING
        self._started_at = datetime.now()
        ctx.log("Starting workflow execution...")

        trigger = ctx.graph.find_trigger()
        if trigger is None:
            ctx.log("Error: No trigger node found.", level=logging.ERROR)
            await ctx.flush_sinks()
            self._finish(ExecutionStatus.FAILED)
            return

        ctx.variables.reset()
        ctx.graph.reset()
        ctx.notify_nodes()

        await self._traverse(trigger)

        ctx.log("Workflow execution finished.")
        ctx.log(f"Final Global Variables: {json.dumps(ctx.variables.names())}")
        await ctx.flush_sinks()
        self._finish(ExecutionStatus.COMPLETED)

    async def _traverse(self, start: Node) -> None:
        """
        Depth-first walk over an explicit work list.

        Children are pushed in reverse so they are popped in edge order,
        and a child's whole subtree finishes before the next sibling.
        An edge leading back to a node on the current path closes a cycle
        and is logged instead of followed.
        """
        ctx = self.context
        stack: List[_Frame] = [_Frame(start.id, TRIGGER_PAYLOAD, ())]

        while stack:
            frame = stack.pop()
            node = ctx.graph.get(frame.node_id)

            succeeded, output = await self._execute_node(node, frame.payload)
            if not succeeded:
                continue

            path = frame.path + (node.id,)
            children: List[_Frame] = []
            for edge in ctx.graph.outgoing(node.id):
                if ctx.graph.get(edge.target) is None:
                    ctx.warn(f"Warning: Edge target '{edge.target}' not found in graph")
                    continue
                if edge.target in path:
                    # Ancestors keep their terminal status; only the closing edge is dropped
                    cycle = CycleDetected(list(path[path.index(edge.target):] + (edge.target,)))
                    ctx.log(f"Error: {cycle}. Edge {node.id} -> {edge.target} skipped.", level=logging.ERROR)
                    continue
                children.append(_Frame(edge.target, output, path))
            stack.extend(reversed(children))

    async def _execute_node(self, node: Node, payload: Any) -> Tuple[bool, Any]:
        """Run a single node through its lifecycle."""
        ctx = self.context
        record = NodeExecution(
            node_id=node.id,
            node_type=node.type.value,
            started_at=datetime.now(),
        )
        ctx.history.append(record)
        node_start_time = time.time()

        ctx.graph.set_status(node.id, NodeStatus.RUNNING)
        ctx.notify_nodes()
        ctx.log(f"Executing node: {node.label} ({node.type.value})")

        try:
            resolved = ctx.resolver.resolve_node_data(node.data)
            output = await dispatch(ctx, node.type, resolved, payload)
            extract_outputs(ctx, node, output)
        except Exception as e:
            record.completed_at = datetime.now()
            record.duration_ms = (time.time() - node_start_time) * 1000
            self._fail_node(node, e, record)
            return False, None

        record.completed_at = datetime.now()
        record.duration_ms = (time.time() - node_start_time) * 1000
        record.result = "success"

        ctx.graph.set_status(node.id, NodeStatus.SUCCESS, output)
        ctx.notify_nodes()
        ctx.log(f"Node {node.label} completed.")
        return True, output

    def _fail_node(self, node: Node, error: Exception, record: NodeExecution) -> None:
        ctx = self.context
        message = str(error) or error.__class__.__name__
        record.result = "error"
        record.error = message

        ctx.graph.set_status(node.id, NodeStatus.ERROR, error=message)
        ctx.notify_nodes()
        ctx.log(f"Error in node {node.label}: {message}", level=logging.ERROR)

    def _finish(self, status: ExecutionStatus) -> None:
        self._status = status
        self._completed_at = datetime.now()

    def get_execution_summary(self) -> Dict[str, Any]:
        """Get a summary of the run so far."""
        return {
            "run_id": self.run_id,
            "status": self._status.value,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "completed_at": self._completed_at.isoformat() if self._completed_at else None,
            "nodes": self.graph.to_dict()["nodes"],
            "logs": self.logs,
            "variables": self.variables.snapshot(),
            "history": [step.to_dict() for step in self.context.history],
        }


async def run_workflow(
    graph: Union[WorkflowGraph, Dict[str, Any]],
    on_nodes_changed: Optional[NodesChangedSink] = None,
    on_log: Optional[LogSink] = None,
    ai_service: Optional[Any] = None,
    settings: Optional[Settings] = None,
) -> None:
    """
    Convenience function to run a graph once.

    Args:
        graph: The workflow graph or its definition
        on_nodes_changed: Status sink
        on_log: Log sink
        ai_service: Optional AI backend
        settings: Optional engine settings
    """
    engine = WorkflowEngine(graph, on_nodes_changed, on_log, ai_service, settings)
    await engine.run()
