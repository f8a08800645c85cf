"""
Configuration module for the Orchestrator service.

Uses pydantic-settings for environment variable management with type validation.
"""

from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class OrchestratorConfig(BaseSettings):
    """Configuration for the turn orchestrator and its front-ends."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service Configuration
    host: str = Field(default="0.0.0.0", description="Host to bind the service")
    port: int = Field(default=8000, description="Port to bind the service")
    reload: bool = Field(default=False, description="Enable auto-reload for development")

    # Model Provider Configuration
    llm_provider: str = Field(default="gemini", description="Model provider (gemini, mock)")
    gemini_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("gemini_api_key", "api_key"),
        description="Gemini API key (GEMINI_API_KEY or API_KEY)",
    )
    gemini_model: str = Field(default="gemini-2.5-flash", description="Gemini model name")
    gemini_api_base: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/",
        description="Gemini REST API base URL",
    )
    gateway_timeout_seconds: float = Field(
        default=60.0, gt=0, description="Timeout for one model request"
    )
    system_instruction: Optional[str] = Field(
        default=None, description="System instruction sent with every request"
    )

    # Orchestration Configuration
    max_tool_rounds: int = Field(
        default=5, ge=1, description="Maximum tool dispatch cycles per user message"
    )
    tools_file: Optional[str] = Field(
        default=None, description="YAML catalog loaded in place of the built-in tools"
    )

    # Observability Configuration
    log_level: str = Field(
        default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the allowed values."""
        allowed_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in allowed_levels:
            raise ValueError(f"log_level must be one of {allowed_levels}")
        return v_upper

    @field_validator("llm_provider")
    @classmethod
    def validate_llm_provider(cls, v: str) -> str:
        """Validate model provider is supported."""
        allowed_providers = {"gemini", "mock"}
        v_lower = v.lower()
        if v_lower not in allowed_providers:
            raise ValueError(f"llm_provider must be one of {allowed_providers}")
        return v_lower


# Global config instance
config = OrchestratorConfig()
