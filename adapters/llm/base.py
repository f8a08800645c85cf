"""
Abstract base gateway for model providers.

This module defines the contract every model gateway implements, the
conversation records replayed to the provider, and the wire codec that
turns those records into the provider-neutral ``{role, parts}`` shape.
"""

import copy
import logging
import time
import uuid
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class TurnRole(str, Enum):
    """Speaker of a conversation turn."""

    USER = "user"
    MODEL = "model"


class ToolCallRequest(BaseModel):
    """A tool invocation requested by the model."""

    model_config = ConfigDict(frozen=True)

    name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None


class ToolCallResult(BaseModel):
    """Outcome of one tool invocation, success or failure."""

    model_config = ConfigDict(frozen=True)

    name: str
    result: Any = None
    is_error: bool = False
    call_id: Optional[str] = None

    @classmethod
    def not_found(cls, call: ToolCallRequest) -> "ToolCallResult":
        """Synthesize the result for a call to an unknown tool."""
        return cls(
            name=call.name,
            result={"error": "Tool not found"},
            is_error=True,
            call_id=call.id,
        )


def _now_ms() -> int:
    return int(time.time() * 1000)


class ConversationTurn(BaseModel):
    """
    One contribution to the conversation.

    Turns are immutable; attaching results to a pending model turn produces
    a new record with the same id (see ``ConversationLog.resolve``).
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: TurnRole
    content: str = ""
    tool_calls: Tuple[ToolCallRequest, ...] = ()
    tool_results: Tuple[ToolCallResult, ...] = ()
    is_error: bool = False
    timestamp: int = Field(default_factory=_now_ms)

    @property
    def is_pending(self) -> bool:
        """True while requested calls are still waiting for their results."""
        return bool(self.tool_calls) and len(self.tool_results) != len(self.tool_calls)

    @classmethod
    def user(cls, text: str) -> "ConversationTurn":
        return cls(role=TurnRole.USER, content=text)

    @classmethod
    def model(
        cls,
        text: str = "",
        tool_calls: Sequence[ToolCallRequest] = (),
        is_error: bool = False,
    ) -> "ConversationTurn":
        return cls(
            role=TurnRole.MODEL,
            content=text,
            tool_calls=tuple(tool_calls),
            is_error=is_error,
        )


class ToolDeclaration(BaseModel):
    """Tool description sent to the model."""

    name: str
    description: str = ""
    parameters: Dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


class GatewayResponse(BaseModel):
    """Structured model output for one step of an exchange."""

    parts: List[Dict[str, Any]] = Field(default_factory=list)
    finish_reason: Optional[str] = None
    usage: Dict[str, int] = Field(default_factory=dict)
    raw_response: Optional[Dict[str, Any]] = None

    @property
    def text_fragments(self) -> List[str]:
        return [
            part["text"]
            for part in self.parts
            if isinstance(part.get("text"), str) and not part.get("thought")
        ]

    @property
    def text(self) -> str:
        """Visible text fragments concatenated in order."""
        return "".join(self.text_fragments)

    @property
    def tool_calls(self) -> List[ToolCallRequest]:
        calls: List[ToolCallRequest] = []
        for part in self.parts:
            call = part.get("functionCall")
            if not call:
                continue
            calls.append(
                ToolCallRequest(
                    name=call.get("name", ""),
                    args=call.get("args") or {},
                    id=call.get("id"),
                )
            )
        return calls

    @classmethod
    def from_parts(
        cls, parts: Sequence[Dict[str, Any]], **kwargs: Any
    ) -> "GatewayResponse":
        return cls(parts=[dict(part) for part in parts], **kwargs)

    @classmethod
    def from_text(cls, text: str) -> "GatewayResponse":
        return cls(parts=[{"text": text}])

    @classmethod
    def from_calls(
        cls, *calls: ToolCallRequest, text: str = ""
    ) -> "GatewayResponse":
        parts: List[Dict[str, Any]] = [{"text": text}] if text else []
        parts.extend({"functionCall": call_to_wire(call)} for call in calls)
        return cls(parts=parts)


# ============================================================================
# Wire codec
# ============================================================================


def call_to_wire(call: ToolCallRequest) -> Dict[str, Any]:
    wire: Dict[str, Any] = {"name": call.name, "args": dict(call.args)}
    if call.id:
        wire["id"] = call.id
    return wire


def result_to_wire(result: ToolCallResult) -> Dict[str, Any]:
    # functionResponse.response must be an object
    response = result.result if isinstance(result.result, dict) else {"result": result.result}
    wire: Dict[str, Any] = {"name": result.name, "response": response}
    if result.call_id:
        wire["id"] = result.call_id
    return wire


def results_content(results: Sequence[ToolCallResult]) -> Dict[str, Any]:
    return {
        "role": "user",
        "parts": [{"functionResponse": result_to_wire(r)} for r in results],
    }


def build_contents(history: Sequence[ConversationTurn]) -> List[Dict[str, Any]]:
    """
    Replay conversation turns as provider contents.

    Each turn expands to its text, then its tool calls; results attached to
    a model turn follow as a separate ``user`` entry. Empty user turns
    are skipped; an empty model turn is sent as empty text so roles keep
    alternating.

    Args:
        history: Ordered conversation turns

    Returns:
        List of ``{"role", "parts"}`` entries
    """
    contents: List[Dict[str, Any]] = []

    for turn in history:
        parts: List[Dict[str, Any]] = []
        if turn.content:
            parts.append({"text": turn.content})

        if turn.role == TurnRole.USER:
            if parts:
                contents.append({"role": "user", "parts": parts})
            continue

        parts.extend({"functionCall": call_to_wire(call)} for call in turn.tool_calls)
        # An empty answer still takes its place between user entries
        contents.append({"role": "model", "parts": parts or [{"text": ""}]})
        if turn.tool_results:
            contents.append(results_content(turn.tool_results))

    return contents


# ============================================================================
# Gateway contract
# ============================================================================


class GatewaySession:
    """
    Opaque handle for one turn exchange.

    Created by ``ModelGateway.send`` and required by
    ``ModelGateway.continue_session``.
    """

    def __init__(
        self,
        gateway: "ModelGateway",
        contents: List[Dict[str, Any]],
        tools: List[ToolDeclaration],
    ) -> None:
        self.session_id = str(uuid.uuid4())
        self.gateway = gateway
        self.contents = contents
        self.tools = tools
        self.closed = False
        self.steps = 0

    def close(self) -> None:
        self.closed = True


class ModelGateway(ABC):
    """
    Abstract base class for model provider gateways.

    Subclasses implement ``_generate``; the base class owns session
    bookkeeping and turns every provider failure into ``GatewayError``.
    """

    provider: str = "base"

    def __init__(self, model: str, api_key: Optional[str] = None, **kwargs: Any) -> None:
        """
        Initialize the gateway.

        Args:
            model: Model identifier (e.g., "gemini-2.5-flash")
            api_key: Provider credential, if the provider needs one
            **kwargs: Provider-specific configuration options
        """
        self.model = model
        self.api_key = api_key
        self.config = kwargs

    @property
    def requires_api_key(self) -> bool:
        return True

    def check_credentials(self) -> None:
        """
        Verify the provider credential is present.

        Raises:
            ConfigurationError: If the credential is missing
        """
        if self.requires_api_key and not self.api_key:
            raise ConfigurationError(
                f"{self.provider} API key not found (set GEMINI_API_KEY or API_KEY)"
            )

    @abstractmethod
    async def _generate(
        self, contents: List[Dict[str, Any]], tools: List[ToolDeclaration]
    ) -> GatewayResponse:
        """
        Run one provider request.

        Args:
            contents: Full ``{role, parts}`` request contents
            tools: Tool declarations to expose

        Returns:
            Parsed provider response
        """

    async def send(
        self,
        history: Sequence[ConversationTurn],
        new_user_text: str,
        tools: Sequence[ToolDeclaration],
    ) -> Tuple[GatewayResponse, GatewaySession]:
        """
        Start an exchange with the conversation so far plus a new utterance.

        Args:
            history: Turns logged before ``new_user_text``
            new_user_text: The user's new message
            tools: Declarations for enabled, schema-valid tools

        Returns:
            The model's response and the session to continue it

        Raises:
            GatewayError: If the provider request fails
        """
        contents = build_contents(history)
        contents.append({"role": "user", "parts": [{"text": new_user_text}]})
        session = GatewaySession(self, contents, list(tools))
        response = await self._step(session)
        return response, session

    async def continue_session(
        self, session: GatewaySession, tool_results: Sequence[ToolCallResult]
    ) -> GatewayResponse:
        """
        Feed tool results back into an exchange started by ``send``.

        Args:
            session: Handle returned by ``send``
            tool_results: Results for every call of the previous response

        Returns:
            The model's next response

        Raises:
            GatewayError: If the session is invalid or the request fails
        """
        if not isinstance(session, GatewaySession) or session.gateway is not self:
            raise GatewayError("continue_session called without a session from send", self.provider)
        if session.closed:
            raise GatewayError("Gateway session is closed", self.provider)

        session.contents.append(results_content(tool_results))
        return await self._step(session)

    async def _step(self, session: GatewaySession) -> GatewayResponse:
        try:
            response = await self._generate(copy.deepcopy(session.contents), session.tools)
            # Malformed function calls fail here rather than in the caller
            calls = response.tool_calls
        except GatewayError:
            raise
        except Exception as e:
            raise GatewayError(f"{self.provider} request failed: {e}", self.provider, e) from e

        session.steps += 1
        logger.debug(f"{self.provider} step {session.steps} requested {len(calls)} tool calls")
        session.contents.append({"role": "model", "parts": response.parts})
        return response

    async def aclose(self) -> None:
        """Release provider resources."""


class ConfigurationError(Exception):
    """Raised when required configuration is missing or malformed."""


class GatewayError(Exception):
    """Base exception for model gateway failures."""

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize gateway error.

        Args:
            message: Error message
            provider: Provider name
            original_error: Original exception if wrapping another error
        """
        super().__init__(message)
        self.provider = provider
        self.original_error = original_error
