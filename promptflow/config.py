"""
Configuration settings for the Workflow Engine.
"""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Application
    APP_NAME: str = "Promptflow"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # AI Invocation Service
    GEMINI_API_KEY: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GEMINI_API_KEY", "API_KEY"),
    )
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    AI_REQUEST_TIMEOUT: float = 120.0  # Seconds
    DEFAULT_TEXT_MODEL: str = "gemini-2.5-flash"
    DEFAULT_IMAGE_MODEL: str = "gemini-2.5-flash-image"

    # Workflow Engine
    API_CALL_DELAY: float = 1.0  # Simulated latency of api-call nodes
    CONTEXT_MAX_CHARS: int = 50000
    CONTEXT_FIELD_MAX_CHARS: int = 5000
    CONTEXT_BINARY_FIELD_MIN_CHARS: int = 500

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


# Global settings instance
settings = Settings()
