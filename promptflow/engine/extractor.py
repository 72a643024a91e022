"""
Output Extraction.

After a node succeeds its result can be published to the run's
variables in two independent ways: whole, under ``output_variable_name``,
and field by field through ``output_mappings``.
"""

from typing import Any, List

from promptflow.engine.errors import MappingFieldMissing, MappingTargetNotObject
from promptflow.engine.graph import Node
from promptflow.engine.state import RunContext
from promptflow.engine.variables import is_valid_variable_name


def extract_outputs(ctx: RunContext, node: Node, result: Any) -> List[str]:
    """
    Write a node's result into the variable environment.

    Missing fields and non-object results are logged as warnings and the
    affected mappings are skipped.

    Returns:
        Names of the variables that were written
    """
    written: List[str] = []

    name = (node.data.output_variable_name or "").strip()
    if name:
        if not is_valid_variable_name(name):
            ctx.warn(f"Warning: Variable name '{name}' cannot be referenced from a template.")
        ctx.variables.set(name, result)
        written.append(name)
        ctx.log(f"Stored output to variable '{name}'")

    if not node.data.output_mappings:
        return written

    if not isinstance(result, dict):
        ctx.warn(f"Warning: {MappingTargetNotObject()}")
        return written

    for mapping in node.data.output_mappings:
        field = mapping.field.strip()
        variable = mapping.variable.strip()
        if not field or not variable:
            continue
        if field not in result:
            ctx.warn(f"Warning: {MappingFieldMissing(field)}")
            continue
        ctx.variables.set(variable, result[field])
        written.append(variable)
        ctx.log(f"Stored field '{field}' to variable '{variable}'")

    return written
