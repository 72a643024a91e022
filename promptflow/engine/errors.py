"""
Exceptions raised by the workflow engine.

Only errors raised while resolving or dispatching a node are fatal, and
only to that node's own subtree. Mapping and payload errors are caught
and logged as warnings by the engine.
"""

from typing import Iterable, List, Optional


class WorkflowError(Exception):
    """Base class for all engine errors."""


class UnresolvedVariable(WorkflowError, KeyError):
    """A referenced variable does not exist in the run's environment."""

    def __init__(self, name: str, known: Iterable[str] = ()):
        self.name = name
        self.known: List[str] = sorted(known)
        super().__init__(name)

    def __str__(self) -> str:
        return f"Variable '{self.name}' not found. Available: {', '.join(self.known)}"


class PayloadParseError(WorkflowError, ValueError):
    """A trigger's test payload is not valid JSON."""

    def __init__(self, raw: str, reason: str = ""):
        self.raw = raw
        self.reason = reason
        super().__init__(f"Invalid JSON Payload: {reason}" if reason else "Invalid JSON Payload")


class MappingFieldMissing(WorkflowError):
    """An output mapping names a field the result does not have."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Field '{field}' not found in output.")


class MappingTargetNotObject(WorkflowError):
    """Output mappings were declared but the result is not an object."""

    def __init__(self):
        super().__init__("Output Mappings ignored because output is not an object.")


class InvocationError(WorkflowError):
    """The AI Invocation Service failed; the message is shown to the user as-is."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class CycleDetected(WorkflowError):
    """A node was reached again through one of its own descendants."""

    def __init__(self, path: List[str]):
        self.path = list(path)
        super().__init__(f"Cycle detected: {' -> '.join(self.path)}")
