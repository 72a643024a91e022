"""
AI Invocation Service.

The only real I/O boundary of the engine. A service receives the
resolved configuration of a generative node plus the sanitized context
of the previous step, and returns text, a parsed JSON object, or an
image as a data URL.

``GeminiService`` talks to the Gemini ``generateContent`` REST endpoint
with ``httpx``.
"""

from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable
import json
import logging

import httpx

from promptflow.ai.schema import normalize_schema
from promptflow.config import Settings, settings as default_settings
from promptflow.engine.errors import InvocationError
from promptflow.engine.graph import NodeData


logger = logging.getLogger(__name__)


TOKEN_LIMIT_MESSAGE = (
    "Token Limit Exceeded: The input context passed to the model is too large. "
    "Check if you are passing large images or files as text context from previous steps."
)
SCHEMA_REJECTED_MESSAGE = (
    "API rejected the request. Please verify your JSON Schema matches the Gemini API "
    "requirements (e.g. use 'type': 'OBJECT' and no nulls). Details: {details}"
)


@runtime_checkable
class AIInvocationService(Protocol):
    """Anything that can run a generative node."""

    async def invoke(self, data: NodeData, context_text: str) -> Any:
        ...


def split_data_url(data_url: str) -> Dict[str, str]:
    """Split ``data:<mime>;base64,<data>`` into Gemini's inline-data shape."""
    header, _, payload = data_url.partition(",")
    mime_type = header[len("data:"):].split(";", 1)[0]
    return {"mimeType": mime_type, "data": payload}


def build_parts(data: NodeData, context_text: str) -> List[Dict[str, Any]]:
    """
    Assemble the request parts: images first, then prompt plus context.

    Raises:
        InvocationError: If the legacy single image is not a data URL
    """
    parts: List[Dict[str, Any]] = []

    if data.inputs:
        for item in data.inputs:
            if isinstance(item.value, str) and item.value.startswith("data:"):
                parts.append({"inlineData": split_data_url(item.value)})
            elif item.type == "variable":
                logger.warning(f"Input variable was not a valid data URL: {str(item.value)[:50]}")
    elif data.input_image:
        if not isinstance(data.input_image, str) or not data.input_image.startswith("data:"):
            raise InvocationError(
                "Input image variable must contain a valid Data URL "
                "(e.g. data:image/png;base64,...)."
            )
        parts.append({"inlineData": split_data_url(data.input_image)})

    prompt = f"{data.prompt or ''}\n\nContext from previous steps:\n{context_text}"
    parts.append({"text": prompt})
    return parts


def build_generation_config(data: NodeData) -> Dict[str, Any]:
    """
    Sampling parameters and, when configured, the response schema.

    Raises:
        InvocationError: If ``json_schema`` is not valid JSON
    """
    config: Dict[str, Any] = {}
    if data.temperature is not None:
        config["temperature"] = data.temperature
    if data.top_p is not None:
        config["topP"] = data.top_p
    if data.top_k is not None:
        config["topK"] = data.top_k
    if data.max_output_tokens is not None:
        config["maxOutputTokens"] = data.max_output_tokens

    if data.json_schema and data.json_schema.strip():
        try:
            schema = json.loads(data.json_schema)
        except json.JSONDecodeError as e:
            raise InvocationError(
                "Invalid JSON Schema provided. Please check JSON syntax."
            ) from e
        config["responseMimeType"] = "application/json"
        config["responseSchema"] = normalize_schema(schema)

    return config


def explain_failure(message: str, schema_sent: bool) -> str:
    """Swap well-known upstream failures for a more helpful message."""
    if "token" in message or "exceeds" in message:
        return TOKEN_LIMIT_MESSAGE
    if "INVALID_ARGUMENT" in message and schema_sent:
        return SCHEMA_REJECTED_MESSAGE.format(details=message)
    return message or "Failed to execute AI request"


class GeminiService:
    """
    Runs generative nodes against the Gemini REST API.

    Usage:
        service = GeminiService(api_key="...")
        text = await service.invoke(node.data, "context")

    Args:
        api_key: Gemini API key (defaults to settings)
        base_url: API root (defaults to settings)
        timeout: Request timeout in seconds
        transport: Optional httpx transport, used by tests
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or default_settings
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.base_url = (base_url or settings.GEMINI_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.AI_REQUEST_TIMEOUT
        self.transport = transport
        self.default_text_model = settings.DEFAULT_TEXT_MODEL
        self.default_image_model = settings.DEFAULT_IMAGE_MODEL

    async def invoke(self, data: NodeData, context_text: str) -> Any:
        """
        Run one model call.

        Returns:
            Text, a parsed JSON object (when a schema was used), or an
            image data URL (image models)

        Raises:
            InvocationError: On missing credentials, bad input, or any
                upstream failure
        """
        if not self.api_key:
            raise InvocationError("API_KEY is missing from environment variables")

        is_image = "image" in (data.model or "")
        model = data.model or (self.default_image_model if is_image else self.default_text_model)

        parts = build_parts(data, context_text)
        config = build_generation_config(data)
        body: Dict[str, Any] = {"contents": [{"parts": parts}]}
        if config:
            body["generationConfig"] = config

        logger.info(f"Calling model {model} ({len(parts)} parts)")
        response_data = await self._post(model, body, schema_sent="responseSchema" in config)

        text, image = self._collect_output(response_data)

        if is_image:
            return image or text or "No image generated."

        if config.get("responseMimeType") == "application/json":
            try:
                return json.loads(text)
            except json.JSONDecodeError as e:
                logger.warning(f"Could not parse JSON output despite schema: {e}")
                return text
        return text or "No text generated."

    async def _post(self, model: str, body: Dict[str, Any], schema_sent: bool) -> Dict[str, Any]:
        url = f"{self.base_url}/models/{model}:generateContent"
        headers = {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, json=body, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Gemini request failed: {e}")
            raise InvocationError(explain_failure(str(e), schema_sent)) from e

        if response.status_code >= 400:
            message = self._error_message(response)
            logger.error(f"Gemini API Error: {message}")
            raise InvocationError(explain_failure(message, schema_sent), response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise InvocationError(f"Malformed response from model API: {e}") from e

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return f"HTTP {response.status_code}: {response.text}"
        error = payload.get("error") if isinstance(payload, dict) else None
        if not isinstance(error, dict):
            return f"HTTP {response.status_code}: {response.text}"
        status = error.get("status", "")
        message = error.get("message", "")
        if status:
            return f"{status}: {message}"
        return message or f"HTTP {response.status_code}"

    @staticmethod
    def _collect_output(response_data: Dict[str, Any]) -> Tuple[str, str]:
        """Concatenate text parts and keep the last inline image."""
        text = ""
        image = ""
        if not isinstance(response_data, dict):
            return text, image
        candidates = response_data.get("candidates") or []
        if not candidates:
            return text, image
        for part in (candidates[0].get("content") or {}).get("parts") or []:
            if part.get("text"):
                text += part["text"]
            inline = part.get("inlineData")
            if inline:
                image = f"data:{inline.get('mimeType')};base64,{inline.get('data')}"
        return text, image
