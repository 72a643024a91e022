"""
Graph Definition for Workflow Engine.

A workflow graph is supplied by the visual editor as a list of nodes and
a list of edges. Each node carries a type and a free-form configuration
bag (``data``). The engine runs on a private copy of the graph held in a
``WorkflowGraph`` arena, where nodes are addressed by id and updated in
place as they change status.
"""

from typing import Any, Dict, Iterator, List, Optional
from enum import Enum

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel


class NodeType(str, Enum):
    """Types of nodes in the workflow."""
    TRIGGER = "trigger"                # Entry point, produces the first payload
    GENERATE_TEXT = "generate-text"    # Text model call
    GENERATE_IMAGE = "generate-image"  # Image model call
    CONDITION = "condition"            # Placeholder, passes payload through
    API_CALL = "api-call"              # Simulated HTTP request
    PASSTHROUGH = "passthrough"        # Forwards the payload unchanged


# Names used by older editor exports
NODE_TYPE_ALIASES: Dict[str, NodeType] = {
    "webhook": NodeType.TRIGGER,
    "ai-text": NodeType.GENERATE_TEXT,
    "ai-image": NodeType.GENERATE_IMAGE,
    "api": NodeType.API_CALL,
    "variable": NodeType.PASSTHROUGH,
    "loop": NodeType.PASSTHROUGH,  # iteration is not executed; forwards its payload
}


class NodeStatus(str, Enum):
    """Lifecycle of a node within one run."""
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class _EditorModel(BaseModel):
    """Accepts the editor's camelCase keys as well as snake_case."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "allow"


class NodeInput(_EditorModel):
    """
    A multimedia input of a generative node.

    ``type == "file"`` carries the data inline (usually a data URL);
    ``type == "variable"`` names a variable resolved at dispatch time.
    """
    id: Optional[str] = None
    type: str = "variable"
    value: Any = None


class OutputMapping(_EditorModel):
    """Copies one field of an object result into a named variable."""
    field: str = ""
    variable: str = ""


class FormField(_EditorModel):
    """A key/value pair of a form-style trigger payload."""
    id: Optional[str] = None
    key: str = ""
    type: str = "text"
    value: Any = ""


class NodeData(_EditorModel):
    """
    Type-dependent configuration of a node.

    Only ``status``, ``output_value`` and ``error_message`` are written by
    the engine; everything else is authored in the editor.
    """
    label: str = ""
    description: Optional[str] = None

    # Generative nodes
    prompt: Optional[str] = None
    model: Optional[str] = None
    inputs: List[NodeInput] = Field(default_factory=list)
    input_image: Optional[str] = None
    input_image_variable: Optional[str] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    max_output_tokens: Optional[int] = None
    json_schema: Optional[str] = None

    # Output extraction
    output_variable_name: Optional[str] = None
    output_mappings: List[OutputMapping] = Field(default_factory=list)

    # Condition / API / trigger
    condition: Optional[str] = None
    api_url: Optional[str] = None
    api_method: Optional[str] = None
    webhook_content_type: Optional[str] = None
    webhook_payload: Optional[str] = None
    webhook_form_data: List[FormField] = Field(default_factory=list)

    # Run state
    status: NodeStatus = NodeStatus.IDLE
    output_value: Any = None
    error_message: Optional[str] = None


class Node(_EditorModel):
    """A node in the workflow graph."""
    id: str
    type: NodeType
    data: NodeData = Field(default_factory=NodeData)
    position: Optional[Dict[str, float]] = None
    version: int = 0

    @field_validator("type", mode="before")
    @classmethod
    def _accept_legacy_type(cls, value: Any) -> Any:
        if isinstance(value, str) and value in NODE_TYPE_ALIASES:
            return NODE_TYPE_ALIASES[value]
        return value

    @property
    def label(self) -> str:
        return self.data.label or self.id


class Edge(_EditorModel):
    """An edge: run ``target`` after ``source`` completes, using its output."""
    id: Optional[str] = None
    source: str
    target: str


_UNSET: Any = object()


class WorkflowGraph:
    """
    Arena of nodes addressed by id, plus the ordered edge list.

    The arena owns deep copies of the nodes it was built from, so status
    changes made during a run never reach the caller's objects.

    Usage:
        graph = WorkflowGraph.from_definition(nodes, edges)
        trigger = graph.find_trigger()
        for edge in graph.outgoing(trigger.id):
            ...
    """

    def __init__(self, nodes: List[Node], edges: List[Edge]):
        self._nodes: Dict[str, Node] = {}
        for node in nodes:
            if node.id in self._nodes:
                raise ValueError(f"Node '{node.id}' already exists in the graph")
            self._nodes[node.id] = node.model_copy(deep=True)
        self.edges: List[Edge] = [edge.model_copy() for edge in edges]

    @classmethod
    def from_definition(
        cls,
        nodes: List[Any],
        edges: List[Any],
    ) -> "WorkflowGraph":
        """Build an arena from model instances or plain dicts."""
        return cls(
            [n if isinstance(n, Node) else Node.model_validate(n) for n in nodes],
            [e if isinstance(e, Edge) else Edge.model_validate(e) for e in edges],
        )

    @property
    def nodes(self) -> List[Node]:
        """Nodes in definition order."""
        return list(self._nodes.values())

    def get(self, node_id: str) -> Optional[Node]:
        return self._nodes.get(node_id)

    def find_trigger(self) -> Optional[Node]:
        """Get the first trigger node, if any."""
        for node in self._nodes.values():
            if node.type == NodeType.TRIGGER:
                return node
        return None

    def outgoing(self, node_id: str) -> List[Edge]:
        """Edges leaving a node, in declaration order."""
        return [edge for edge in self.edges if edge.source == node_id]

    def set_status(
        self,
        node_id: str,
        status: NodeStatus,
        output: Any = _UNSET,
        error: Optional[str] = None,
    ) -> Node:
        """
        Move a node to a new status.

        The previous output is kept unless a new one is given; the error
        message is always replaced.
        """
        node = self._nodes[node_id]
        node.data.status = status
        if output is not _UNSET:
            node.data.output_value = output
        node.data.error_message = error
        node.version += 1
        return node

    def reset(self) -> None:
        """Put every node back to idle with no output or error."""
        for node in self._nodes.values():
            node.data.status = NodeStatus.IDLE
            node.data.output_value = None
            node.data.error_message = None
            node.version += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [n.model_dump(mode="json", by_alias=True) for n in self._nodes.values()],
            "edges": [e.model_dump(mode="json", by_alias=True) for e in self.edges],
        }

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    def __repr__(self) -> str:
        return f"WorkflowGraph(nodes={list(self._nodes.keys())}, edges={len(self.edges)})"
