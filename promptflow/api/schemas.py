"""
Pydantic Schemas for API Request/Response Models.

These schemas define the structure of data flowing through the API,
providing automatic validation and documentation.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from enum import Enum

from promptflow.engine.graph import Edge, Node


# ============================================================
# Enums
# ============================================================

class ExecutionStatus(str, Enum):
    """Status of a workflow run."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# ============================================================
# Run Schemas
# ============================================================

class WorkflowRunRequest(BaseModel):
    """Request to run a workflow graph."""
    nodes: List[Node] = Field(..., description="Nodes of the workflow")
    edges: List[Edge] = Field(default_factory=list, description="Edges between nodes")
    async_execution: bool = Field(
        False,
        description="If true, run in background and return immediately"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "nodes": [
                    {
                        "id": "start",
                        "type": "trigger",
                        "data": {
                            "label": "Start",
                            "webhookPayload": "{\"topic\": \"rivers\"}",
                            "outputMappings": [{"field": "topic", "variable": "topic"}]
                        }
                    },
                    {
                        "id": "write",
                        "type": "generate-text",
                        "data": {
                            "label": "Write",
                            "prompt": "Write a haiku about {{topic}}",
                            "outputVariableName": "haiku"
                        }
                    }
                ],
                "edges": [{"source": "start", "target": "write"}],
                "async_execution": False
            }
        }


class NodeExecutionEntry(BaseModel):
    """Timing and outcome of one node visit."""
    node_id: str
    node_type: str
    started_at: str
    completed_at: Optional[str]
    duration_ms: Optional[float]
    result: str
    error: Optional[str]


class WorkflowRunResponse(BaseModel):
    """Response after running a workflow."""
    run_id: str = Field(..., description="Unique identifier for this run")
    status: ExecutionStatus
    nodes: List[Dict[str, Any]] = Field(default_factory=list)
    logs: List[str] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)
    history: List[NodeExecutionEntry] = Field(default_factory=list)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error: Optional[str] = None


class RunListResponse(BaseModel):
    """Response listing runs."""
    runs: List[WorkflowRunResponse]
    total: int


# ============================================================
# Schema Normalization
# ============================================================

class SchemaNormalizeRequest(BaseModel):
    """A response schema, full or in field -> TYPE shorthand."""
    json_schema: Any = Field(..., alias="schema")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {"schema": {"title": "STRING", "score": "NUMBER"}}
        }


class SchemaNormalizeResponse(BaseModel):
    """The normalized schema."""
    json_schema: Any = Field(..., serialization_alias="schema")


# ============================================================
# Error Schemas
# ============================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    status_code: int
