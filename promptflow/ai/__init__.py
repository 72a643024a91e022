"""
AI package - The generative-model boundary of the engine.
"""

from promptflow.ai.schema import normalize_schema
from promptflow.ai.service import AIInvocationService, GeminiService

__all__ = [
    "AIInvocationService",
    "GeminiService",
    "normalize_schema",
]
