"""
Model gateway implementations.

Supported gateways:
- GeminiGateway: Google Gemini generateContent API with function calling
- ScriptedGateway: Replays canned responses for tests and offline use

Factory functions:
- create_gateway(): Create a gateway with environment defaults
- get_default_provider(): Get provider from LLM_PROVIDER
"""

from adapters.llm.base import (
    ConfigurationError,
    ConversationTurn,
    GatewayError,
    GatewayResponse,
    GatewaySession,
    ModelGateway,
    ToolCallRequest,
    ToolCallResult,
    ToolDeclaration,
    TurnRole,
    build_contents,
)
from adapters.llm.gemini import GeminiGateway
from adapters.llm.mock import ScriptedGateway
from adapters.llm.factory import (
    GatewayProvider,
    create_gateway,
    get_default_model,
    get_default_provider,
)

__all__ = [
    # Contract
    "ModelGateway",
    "GatewaySession",
    "GatewayResponse",
    "GatewayError",
    "ConfigurationError",
    # Conversation records
    "ConversationTurn",
    "TurnRole",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolDeclaration",
    "build_contents",
    # Gateways
    "GeminiGateway",
    "ScriptedGateway",
    # Factory
    "GatewayProvider",
    "create_gateway",
    "get_default_model",
    "get_default_provider",
]
