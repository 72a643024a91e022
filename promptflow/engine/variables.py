"""
Variable Environment for Workflow Engine.

The environment is the run-scoped store that carries data between nodes
by name. It is filled by output extraction and read by the template
resolver. One value per name; the last writer wins.
"""

from typing import Any, Dict, List
from copy import deepcopy
import re

from promptflow.engine.errors import UnresolvedVariable


VARIABLE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+$")


def is_valid_variable_name(name: str) -> bool:
    """Check that a name can be referenced from a {{placeholder}}."""
    return bool(name) and VARIABLE_NAME_PATTERN.match(name) is not None


class VariableEnvironment:
    """
    Mutable name -> value store for a single workflow run.

    Names are case-sensitive. Values may be strings, structured objects
    or data-URL blobs and are stored as given.

    Usage:
        env = VariableEnvironment()
        env.set("topic", "rivers")
        env.get("topic")  # "rivers"
    """

    def __init__(self):
        self._values: Dict[str, Any] = {}

    def set(self, name: str, value: Any) -> None:
        """Store a value, overwriting any previous one."""
        self._values[name] = value

    def get(self, name: str) -> Any:
        """
        Look up a value.

        Raises:
            UnresolvedVariable: If the name has never been set in this run
        """
        if name not in self._values:
            raise UnresolvedVariable(name, self._values.keys())
        return self._values[name]

    def has(self, name: str) -> bool:
        return name in self._values

    def reset(self) -> None:
        """Forget every variable. Called once at the start of each run."""
        self._values.clear()

    def names(self) -> List[str]:
        """Variable names in insertion order."""
        return list(self._values.keys())

    def snapshot(self) -> Dict[str, Any]:
        """A deep copy of the current values."""
        return deepcopy(self._values)

    def __contains__(self, name: str) -> bool:
        return self.has(name)

    def __len__(self) -> int:
        return len(self._values)
