"""
Configuration for the tool execution sandbox.
Module: code_exec/service/config.py
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CodeExecSettings(BaseSettings):
    """Configuration settings for tool execution."""

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="CODE_EXEC_", case_sensitive=False, extra="ignore"
    )

    max_execution_time: float = Field(
        default=30, gt=0, description="Maximum execution time per tool call in seconds"
    )
    execution_mode: str = Field(
        default="in_process",
        description="Where tool bodies run: in_process or subprocess",
    )

    # Logging configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )

    @field_validator("execution_mode")
    @classmethod
    def validate_execution_mode(cls, v: str) -> str:
        """Validate execution mode is supported."""
        allowed_modes = {"in_process", "subprocess"}
        v_lower = v.lower()
        if v_lower not in allowed_modes:
            raise ValueError(f"execution_mode must be one of {allowed_modes}")
        return v_lower


settings = CodeExecSettings()
