"""
Context Sanitizer.

Turns the output of a previous node into text that is safe to hand to a
model as conversational context: embedded images are replaced by a
marker and oversized strings are truncated.
"""

from typing import Any, Optional
import json

from promptflow.config import settings
from promptflow.engine.templates import to_text


DATA_URL_PREFIX = "data:"
IMAGE_OMITTED = "[Image Data URL - Content Omitted from Text Context]"
IMAGE_FIELD_OMITTED = "[Image Data]"
TRUNCATED_SUFFIX = "... [Truncated]"


def is_data_url(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(DATA_URL_PREFIX)


def _redact_fields(value: Any, field_limit: int, binary_min: int) -> Any:
    """Recursively redact and truncate the strings inside a structure."""
    if isinstance(value, str):
        if is_data_url(value) and len(value) > binary_min:
            return IMAGE_FIELD_OMITTED
        if len(value) > field_limit:
            return value[:field_limit] + TRUNCATED_SUFFIX
        return value
    if isinstance(value, dict):
        return {k: _redact_fields(v, field_limit, binary_min) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_redact_fields(v, field_limit, binary_min) for v in value]
    return value


def sanitize_context(
    value: Any,
    max_chars: Optional[int] = None,
    field_max_chars: Optional[int] = None,
    binary_field_min_chars: Optional[int] = None,
) -> str:
    """
    Render a node output as bounded, image-free context text.

    Args:
        value: Output of the previous node (any type)
        max_chars: Limit for a plain string value
        field_max_chars: Limit for each string inside a structure
        binary_field_min_chars: Data URLs inside a structure longer than
            this are replaced by a marker

    Returns:
        The sanitized text
    """
    max_chars = settings.CONTEXT_MAX_CHARS if max_chars is None else max_chars
    field_max_chars = settings.CONTEXT_FIELD_MAX_CHARS if field_max_chars is None else field_max_chars
    if binary_field_min_chars is None:
        binary_field_min_chars = settings.CONTEXT_BINARY_FIELD_MIN_CHARS

    if isinstance(value, str):
        if is_data_url(value):
            return IMAGE_OMITTED
        if len(value) > max_chars:
            return value[:max_chars] + TRUNCATED_SUFFIX
        return value

    if isinstance(value, (dict, list, tuple)):
        try:
            redacted = _redact_fields(value, field_max_chars, binary_field_min_chars)
            return json.dumps(redacted, indent=2, ensure_ascii=False)
        except (TypeError, ValueError, RecursionError):
            return str(value)

    return to_text(value)
