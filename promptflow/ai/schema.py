"""
Response-schema normalization.

Users may describe a structured response either with a full schema
(``{"type": "OBJECT", "properties": {...}}``) or with a flat shorthand
that maps each field to a type keyword (``{"title": "STRING"}``). The
shorthand is expanded here before it is sent to the model.
"""

from typing import Any, Dict


SCHEMA_TYPES = ("STRING", "NUMBER", "INTEGER", "BOOLEAN", "ARRAY", "OBJECT")


def normalize_schema(schema: Any) -> Any:
    """
    Expand a shorthand schema into a full one.

    Unknown type keywords become ``STRING``. Anything that cannot be read
    as shorthand is returned unchanged.

    Example:
        >>> normalize_schema({"name": "string", "age": "INTEGER"})
        {'type': 'OBJECT', 'properties': {'name': {'type': 'STRING'}, 'age': {'type': 'INTEGER'}}}
    """
    if not isinstance(schema, dict):
        return schema
    if schema.get("type"):
        return schema
    if not schema:
        return schema

    properties: Dict[str, Any] = {}
    for key, value in schema.items():
        if isinstance(value, str):
            keyword = value.upper()
            properties[key] = {"type": keyword if keyword in SCHEMA_TYPES else "STRING"}
        elif isinstance(value, dict):
            properties[key] = value if value.get("type") else normalize_schema(value)
        else:
            return schema

    return {"type": "OBJECT", "properties": properties}
