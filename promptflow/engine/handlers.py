"""
Node Handlers for Workflow Engine.

Each node type has one handler. A handler receives the run context, the
node's resolved configuration and the payload produced by the previous
node, and returns the node's output.
"""

from typing import Any, Awaitable, Callable, Dict, Optional
import asyncio
import json
import time

from promptflow.engine.errors import PayloadParseError, WorkflowError
from promptflow.engine.graph import NodeData, NodeType
from promptflow.engine.sanitizer import sanitize_context
from promptflow.engine.state import RunContext


Handler = Callable[[RunContext, NodeData, Any], Awaitable[Any]]

# Registry of node type -> handler
_handler_registry: Dict[NodeType, Handler] = {}


def handler(node_type: NodeType) -> Callable[[Handler], Handler]:
    """
    Decorator to register the handler of a node type.

    Usage:
        @handler(NodeType.PASSTHROUGH)
        async def handle_passthrough(ctx, data, payload):
            return payload
    """
    def decorator(func: Handler) -> Handler:
        _handler_registry[node_type] = func
        return func

    return decorator


def get_handler(node_type: NodeType) -> Optional[Handler]:
    """Get the handler registered for a node type."""
    return _handler_registry.get(node_type)


async def dispatch(ctx: RunContext, node_type: NodeType, data: NodeData, payload: Any) -> Any:
    """
    Run the handler of ``node_type``.

    Raises:
        WorkflowError: If no handler is registered for the type
    """
    func = get_handler(node_type)
    if func is None:
        raise WorkflowError(f"No handler registered for node type '{node_type.value}'")
    return await func(ctx, data, payload)


def parse_json_payload(raw: str) -> Any:
    """
    Parse a trigger's JSON test payload.

    Raises:
        PayloadParseError: If the text is not valid JSON
    """
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise PayloadParseError(raw, str(e)) from e


# ============================================================
# Handlers
# ============================================================

@handler(NodeType.TRIGGER)
async def handle_trigger(ctx: RunContext, data: NodeData, payload: Any) -> Any:
    """Produce the run's first payload from the trigger's test data."""
    if data.webhook_content_type == "form-data":
        form = {f.key: f.value for f in data.webhook_form_data if f.key}
        ctx.log("Loaded simulation Form-Data payload.")
        return form

    if data.webhook_payload:
        try:
            parsed = parse_json_payload(data.webhook_payload)
        except PayloadParseError as e:
            ctx.warn(f"Error parsing trigger payload, using error payload. ({e.reason})")
            return {"error": "Invalid JSON Payload", "raw": e.raw}
        ctx.log("Loaded simulation JSON payload.")
        return parsed

    return {"trigger": "manual", "timestamp": int(time.time() * 1000)}


async def _invoke_model(ctx: RunContext, data: NodeData, payload: Any, default_model: str) -> Any:
    if ctx.ai_service is None:
        raise WorkflowError("No AI service configured for this run")
    context_text = sanitize_context(
        payload,
        max_chars=ctx.settings.CONTEXT_MAX_CHARS,
        field_max_chars=ctx.settings.CONTEXT_FIELD_MAX_CHARS,
        binary_field_min_chars=ctx.settings.CONTEXT_BINARY_FIELD_MIN_CHARS,
    )
    if not data.model:
        data = data.model_copy(update={"model": default_model})
    return await ctx.ai_service.invoke(data, context_text)


@handler(NodeType.GENERATE_TEXT)
async def handle_generate_text(ctx: RunContext, data: NodeData, payload: Any) -> Any:
    return await _invoke_model(ctx, data, payload, ctx.settings.DEFAULT_TEXT_MODEL)


@handler(NodeType.GENERATE_IMAGE)
async def handle_generate_image(ctx: RunContext, data: NodeData, payload: Any) -> Any:
    ctx.log("Requesting image generation/editing...")
    return await _invoke_model(ctx, data, payload, ctx.settings.DEFAULT_IMAGE_MODEL)


@handler(NodeType.CONDITION)
async def handle_condition(ctx: RunContext, data: NodeData, payload: Any) -> Any:
    """Log the condition; no branching is evaluated yet."""
    ctx.log(f"Checking condition: {data.condition or ''}")
    return payload


@handler(NodeType.API_CALL)
async def handle_api_call(ctx: RunContext, data: NodeData, payload: Any) -> Any:
    """Simulated request: waits, then returns a fixed response."""
    ctx.log(f"Calling API: {data.api_url or 'No URL'}")
    await asyncio.sleep(ctx.settings.API_CALL_DELAY)
    return {"status": 200, "data": {"mock": "result"}}


@handler(NodeType.PASSTHROUGH)
async def handle_passthrough(ctx: RunContext, data: NodeData, payload: Any) -> Any:
    return payload
