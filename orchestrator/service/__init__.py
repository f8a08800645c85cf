"""
Orchestrator service implementation.

Contains the turn orchestrator, the conversation log and the HTTP API models.
The FastAPI application lives in ``orchestrator.service.main``.
"""

from .config import OrchestratorConfig, config
from .conversation import (
    ConversationEvent,
    ConversationLog,
    ConversationLogError,
    EventHub,
    EventType,
)
from .models import (
    ConversationResponse,
    ErrorResponse,
    MessageRequest,
    MessageResponse,
    OrchestratorState,
    TurnOutcome,
    TurnStatus,
)
from .turn_orchestrator import ConversationBusyError, TurnOrchestrator

__all__ = [
    "config",
    "OrchestratorConfig",
    "TurnOrchestrator",
    "ConversationBusyError",
    "ConversationLog",
    "ConversationLogError",
    "ConversationEvent",
    "EventHub",
    "EventType",
    "OrchestratorState",
    "TurnOutcome",
    "TurnStatus",
    "MessageRequest",
    "MessageResponse",
    "ConversationResponse",
    "ErrorResponse",
]
