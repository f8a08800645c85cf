"""
Model gateway factory.

Module: adapters/llm/factory.py

Creates a gateway for the configured provider, with environment defaults
and runtime overrides.
"""

import logging
import os
from enum import Enum
from typing import Any, Optional, Union

from .base import ModelGateway

logger = logging.getLogger(__name__)


class GatewayProvider(str, Enum):
    """Supported model providers."""

    GEMINI = "gemini"
    MOCK = "mock"


PROVIDER_ENV_MAP = {
    GatewayProvider.GEMINI: {
        "api_key": "GEMINI_API_KEY",
        "model": "GEMINI_MODEL",
        "default_model": "gemini-2.5-flash",
    },
    GatewayProvider.MOCK: {
        "api_key": None,
        "model": None,
        "default_model": "mock-model",
    },
}


def get_default_provider() -> GatewayProvider:
    """
    Get the provider from LLM_PROVIDER, falling back to Gemini.

    Returns:
        Default provider
    """
    explicit_provider = os.getenv("LLM_PROVIDER", "").lower()
    if explicit_provider:
        try:
            return GatewayProvider(explicit_provider)
        except ValueError:
            logger.warning(f"Invalid LLM_PROVIDER '{explicit_provider}', using gemini")

    return GatewayProvider.GEMINI


def get_default_model(provider: GatewayProvider) -> str:
    env_config = PROVIDER_ENV_MAP[provider]
    model_env_var = env_config.get("model")

    if model_env_var:
        env_model = os.getenv(model_env_var)
        if env_model:
            return env_model.strip()

    return env_config["default_model"]


def create_gateway(
    provider: Optional[Union[str, GatewayProvider]] = None,
    model: Optional[str] = None,
    api_key: Optional[str] = None,
    **kwargs: Any,
) -> ModelGateway:
    """
    Create a model gateway.

    Priority (highest to lowest):
    1. Explicit parameters passed to this function
    2. Environment variables
    3. Built-in defaults

    Args:
        provider: Gateway provider (gemini, mock)
        model: Model identifier
        api_key: Provider credential
        **kwargs: Provider-specific options (timeout, system_instruction, ...)

    Returns:
        Configured gateway instance

    Raises:
        ValueError: If the provider is not supported
    """
    if provider is None:
        provider = get_default_provider()
    elif isinstance(provider, str):
        provider = GatewayProvider(provider.lower())

    if model is None:
        model = get_default_model(provider)

    logger.info(f"Creating {provider.value} gateway with model: {model}")

    if provider == GatewayProvider.GEMINI:
        from .gemini import GeminiGateway

        return GeminiGateway(model=model, api_key=api_key, **kwargs)

    from .mock import ScriptedGateway

    return ScriptedGateway(model=model, api_key=api_key, **kwargs)
