"""
Orchestrator module for the tool-calling chat agent.

This module provides the turn orchestration service responsible for:
- Sending user messages and conversation history to the model
- Dispatching requested tool calls to the sandboxed executor
- Feeding tool results back until the model answers
- Maintaining the conversation log and notifying the presentation layer

The orchestrator is the central coordination point between model and tools.
"""

__version__ = "1.0.0"

from .service.config import OrchestratorConfig, config
from .service.conversation import ConversationLog, EventHub
from .service.models import OrchestratorState, TurnOutcome, TurnStatus
from .service.turn_orchestrator import ConversationBusyError, TurnOrchestrator

__all__ = [
    "OrchestratorConfig",
    "config",
    "ConversationLog",
    "EventHub",
    "OrchestratorState",
    "TurnOutcome",
    "TurnStatus",
    "ConversationBusyError",
    "TurnOrchestrator",
]
