"""
Engine package - Core workflow execution components.
"""

from promptflow.engine.errors import (
    CycleDetected,
    InvocationError,
    MappingFieldMissing,
    MappingTargetNotObject,
    PayloadParseError,
    UnresolvedVariable,
    WorkflowError,
)
from promptflow.engine.graph import Edge, Node, NodeData, NodeStatus, NodeType, WorkflowGraph
from promptflow.engine.variables import VariableEnvironment
from promptflow.engine.templates import TemplateResolver
from promptflow.engine.sanitizer import sanitize_context
from promptflow.engine.state import RunContext
from promptflow.engine.executor import ExecutionStatus, WorkflowEngine, run_workflow

__all__ = [
    "CycleDetected",
    "Edge",
    "ExecutionStatus",
    "InvocationError",
    "MappingFieldMissing",
    "MappingTargetNotObject",
    "Node",
    "NodeData",
    "NodeStatus",
    "NodeType",
    "PayloadParseError",
    "RunContext",
    "TemplateResolver",
    "UnresolvedVariable",
    "VariableEnvironment",
    "WorkflowEngine",
    "WorkflowError",
    "WorkflowGraph",
    "run_workflow",
    "sanitize_context",
]
