"""
Template Resolution for Workflow Engine.

Node configuration may reference run variables with ``{{name}}``
placeholders. Text fields are interpolated as a whole: one unknown name
fails the entire string. Input lists are more forgiving, since each
entry is an optional enrichment of a model call.
"""

from typing import Any, Callable, Dict, List, Optional
import json
import re

from promptflow.engine.errors import UnresolvedVariable
from promptflow.engine.graph import NodeData, NodeInput
from promptflow.engine.variables import VariableEnvironment


PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z0-9_\-]+)\s*\}\}")
_BARE_REFERENCE_PATTERN = re.compile(r"^\{\{\s*|\s*\}\}$")


def to_text(value: Any) -> str:
    """
    Render a value the way it appears inside interpolated text.

    Objects and lists become compact JSON; scalars use their JSON spelling
    so that ``True`` reads ``true`` and ``3.0`` reads ``3``.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bool) or value is None:
        return json.dumps(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
    return str(value)


class TemplateResolver:
    """
    Resolves placeholders and variable references against an environment.

    Args:
        env: The run's variable environment
        warn: Callback receiving non-fatal warnings (usually the run log)
    """

    def __init__(
        self,
        env: VariableEnvironment,
        warn: Optional[Callable[[str], Any]] = None,
    ):
        self.env = env
        self.warn = warn

    def resolve_text(self, text: Optional[str]) -> str:
        """
        Substitute every ``{{name}}`` in ``text``.

        Raises:
            UnresolvedVariable: If any referenced name is not set; no
                partially substituted text is returned
        """
        if not text:
            return ""

        def substitute(match: "re.Match[str]") -> str:
            return to_text(self.env.get(match.group(1)))

        return PLACEHOLDER_PATTERN.sub(substitute, text)

    def resolve_single_reference(self, reference: str) -> Any:
        """
        Look up a field that holds exactly one variable name.

        The name may be written bare (``photo``) or as a placeholder
        (``{{ photo }}``). The raw value is returned, not its text form.
        """
        name = _BARE_REFERENCE_PATTERN.sub("", str(reference).strip())
        return self.env.get(name)

    def resolve_input_list(self, inputs: Optional[List[NodeInput]]) -> List[NodeInput]:
        """
        Resolve the ``variable`` entries of a multimedia input list.

        An entry whose variable is missing is logged and passed through
        unresolved; ``file`` entries are returned unchanged.
        """
        if not inputs:
            return []

        resolved: List[NodeInput] = []
        for item in inputs:
            if item.type == "variable":
                try:
                    value = self.resolve_single_reference(item.value)
                except UnresolvedVariable as e:
                    self._warn(f"Warning: {e}")
                    resolved.append(item)
                    continue
                resolved.append(item.model_copy(update={"value": value}))
            else:
                resolved.append(item)
        return resolved

    def resolve_input_image(self, data: NodeData) -> Optional[str]:
        """
        Resolve the single-image field used by older graphs.

        A configured ``input_image_variable`` must resolve; otherwise the
        inline ``input_image`` is used as-is.
        """
        if data.input_image_variable:
            return self.resolve_single_reference(data.input_image_variable)
        return data.input_image

    def resolve_node_data(self, data: NodeData) -> NodeData:
        """
        Produce the resolved copy of a node's configuration.

        Text fields (prompt, API URL) are interpolated, and either the
        input list or the legacy single image is resolved.
        """
        updates: Dict[str, Any] = {}
        if data.prompt:
            updates["prompt"] = self.resolve_text(data.prompt)
        if data.api_url:
            updates["api_url"] = self.resolve_text(data.api_url)

        if data.inputs:
            updates["inputs"] = self.resolve_input_list(data.inputs)
        else:
            updates["input_image"] = self.resolve_input_image(data)

        return data.model_copy(update=updates)

    def _warn(self, message: str) -> None:
        if self.warn is not None:
            self.warn(message)
