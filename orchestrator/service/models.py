"""
Pydantic models for the Orchestrator service.

Defines turn outcomes, orchestrator states and the HTTP API contracts.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from adapters.llm.base import ConversationTurn, ToolDeclaration
from code_exec.service.models import Tool


# ============================================================================
# Enums
# ============================================================================


class OrchestratorState(str, Enum):
    """Where the orchestration loop currently is."""

    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    DISPATCHING = "dispatching"


class TurnStatus(str, Enum):
    """How a user message was resolved."""

    COMPLETED = "completed"
    LOOP_LIMIT = "loop_limit"
    ERROR = "error"


# ============================================================================
# Orchestration Results
# ============================================================================


class TurnOutcome(BaseModel):
    """Result of resolving one user message."""

    status: TurnStatus = Field(..., description="How the loop ended")
    rounds: int = Field(default=0, ge=0, description="Tool dispatch cycles run")
    final_turn: ConversationTurn = Field(..., description="The closing model turn")
    error: Optional[str] = Field(default=None, description="Gateway failure, if any")

    @property
    def text(self) -> str:
        return self.final_turn.content


# ============================================================================
# API Contracts
# ============================================================================


class MessageRequest(BaseModel):
    """Request to send a user message."""

    text: str = Field(..., min_length=1, description="The user's message")


class MessageResponse(BaseModel):
    """Outcome of a user message plus the resulting conversation."""

    outcome: TurnOutcome
    turns: List[ConversationTurn]


class ConversationResponse(BaseModel):
    """The conversation log."""

    turns: List[ConversationTurn]
    state: OrchestratorState


class ToolListResponse(BaseModel):
    """Every registered tool."""

    tools: List[Tool]
    total: int = Field(..., ge=0)


class DeclarationListResponse(BaseModel):
    """Declarations the model would receive right now."""

    declarations: List[ToolDeclaration]


class HealthCheckResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service status")
    version: str = Field(..., description="Service version")
    provider: str = Field(..., description="Model provider in use")
    credentials: bool = Field(..., description="Whether the provider credential is set")
    uptime_seconds: float = Field(..., ge=0.0, description="Service uptime")


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: Optional[Dict[str, Any]] = Field(default=None, description="Additional details")
    request_id: Optional[str] = Field(default=None, description="Request ID for tracing")
