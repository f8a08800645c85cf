"""
Turn Orchestrator - resolves one user message into a final model answer.

Module: orchestrator/service/turn_orchestrator.py

The loop runs ``idle -> awaiting_model -> (dispatching -> awaiting_model)* -> idle``:
- A response without tool calls closes the exchange with a final model turn
- A response with tool calls is logged as a pending model turn, the calls
  are dispatched against the registry snapshot taken at loop start, the
  results are attached to that turn and sent back to the model
- The number of dispatch cycles is capped; reaching the cap is a normal stop
- A gateway failure appends one error turn and returns, it is not re-raised
"""

import logging
import traceback
from typing import Dict, List, Optional, Sequence, Tuple

import anyio

from adapters.llm.base import (
    ConversationTurn,
    GatewayError,
    GatewayResponse,
    GatewaySession,
    ModelGateway,
    ToolCallRequest,
    ToolCallResult,
    ToolDeclaration,
)
from adapters.llm.factory import create_gateway
from code_exec.service.executor import SandboxedExecutor
from code_exec.service.models import Tool
from code_exec.service.registry import ToolRegistry

from .config import OrchestratorConfig
from .conversation import ConversationEvent, ConversationLog, EventHub, EventType
from .models import OrchestratorState, TurnOutcome, TurnStatus

logger = logging.getLogger(__name__)

ERROR_MESSAGE = "Sorry, I encountered an error processing your request."
DEFAULT_MAX_TOOL_ROUNDS = 5


class ConversationBusyError(Exception):
    """Raised when a message arrives while a loop is in flight."""

    pass


class TurnOrchestrator:
    """
    Drives the model/tool exchange for one conversation.

    Only one loop runs at a time. The conversation log is touched only by
    this class, between suspension points of its own loop.
    """

    def __init__(
        self,
        gateway: ModelGateway,
        registry: ToolRegistry,
        executor: SandboxedExecutor,
        log: Optional[ConversationLog] = None,
        events: Optional[EventHub] = None,
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            gateway: Model gateway
            registry: Tool registry, snapshotted at the start of every loop
            executor: Executor for tool bodies
            log: Conversation log (a fresh one by default)
            events: Event hub for the presentation layer (a fresh one by default)
            max_tool_rounds: Maximum dispatch cycles per user message

        Raises:
            ValueError: If max_tool_rounds is below 1
        """
        if max_tool_rounds < 1:
            raise ValueError("max_tool_rounds must be at least 1")

        self.gateway = gateway
        self.registry = registry
        self.executor = executor
        self.log = log if log is not None else ConversationLog()
        self.events = events if events is not None else EventHub()
        self.max_tool_rounds = max_tool_rounds
        self._state = OrchestratorState.IDLE

    @classmethod
    def from_config(
        cls,
        config: OrchestratorConfig,
        gateway: Optional[ModelGateway] = None,
        registry: Optional[ToolRegistry] = None,
    ) -> "TurnOrchestrator":
        """
        Build an orchestrator from configuration.

        Args:
            config: Orchestrator configuration
            gateway: Gateway to use instead of the configured provider
            registry: Registry to use instead of the configured catalog

        Returns:
            Configured orchestrator

        Raises:
            ConfigurationError: If the tool catalog file is invalid
        """
        if gateway is None:
            is_gemini = config.llm_provider == "gemini"
            gateway = create_gateway(
                provider=config.llm_provider,
                model=config.gemini_model if is_gemini else None,
                api_key=config.gemini_api_key,
                base_url=config.gemini_api_base,
                timeout=config.gateway_timeout_seconds,
                system_instruction=config.system_instruction,
            )

        if registry is None:
            registry = ToolRegistry.from_catalog(config.tools_file)

        return cls(
            gateway=gateway,
            registry=registry,
            executor=SandboxedExecutor(),
            max_tool_rounds=config.max_tool_rounds,
        )

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._state != OrchestratorState.IDLE

    def reset(self) -> None:
        """
        Clear the conversation.

        Raises:
            ConversationBusyError: If a loop is in flight
        """
        if self.busy:
            raise ConversationBusyError("Cannot reset while a message is being processed")
        self.log.reset()
        self._publish_log()
        logger.info("Conversation reset")

    async def handle_user_message(self, text: str) -> TurnOutcome:
        """
        Resolve a user message into a final model turn.

        Args:
            text: The user's message

        Returns:
            Outcome with the closing turn and the number of dispatch cycles

        Raises:
            ConversationBusyError: If another message is being processed
            ConfigurationError: If the provider credential is missing; the
                log is left untouched
        """
        if self.busy:
            raise ConversationBusyError("A message is already being processed")

        self.gateway.check_credentials()

        self._state = OrchestratorState.AWAITING_MODEL
        self.events.publish(ConversationEvent(type=EventType.LOADING_STARTED))
        try:
            return await self._run_loop(text)
        finally:
            self._state = OrchestratorState.IDLE
            self.events.publish(ConversationEvent(type=EventType.LOADING_ENDED))

    # ========================================================================
    # Loop
    # ========================================================================

    async def _run_loop(self, text: str) -> TurnOutcome:
        tools = self.registry.snapshot()
        declarations = self.registry.declarations(tools.values())
        history = self.log.snapshot()

        self._append(ConversationTurn.user(text))
        logger.info(
            f"Handling user message with {len(declarations)} declared tools "
            f"(history: {len(history)} turns)"
        )

        rounds = 0
        session: Optional[GatewaySession] = None
        try:
            response, session = await self._send(history, text, declarations)

            while True:
                calls = response.tool_calls
                if not calls:
                    return self._finish(response, TurnStatus.COMPLETED, rounds)

                if rounds >= self.max_tool_rounds:
                    logger.warning(
                        f"Tool round limit ({self.max_tool_rounds}) reached, "
                        f"dropping {len(calls)} requested calls"
                    )
                    return self._finish(response, TurnStatus.LOOP_LIMIT, rounds)

                pending = self._append(ConversationTurn.model(response.text, calls))

                self._state = OrchestratorState.DISPATCHING
                results = await self._dispatch(calls, tools)
                self.log.resolve(pending.id, results)
                self._publish_log()
                rounds += 1

                self._state = OrchestratorState.AWAITING_MODEL
                response = await self._continue(session, results)

        except GatewayError as e:
            logger.error(f"Gateway failure after {rounds} tool rounds: {e}", exc_info=True)
            error_turn = self._append(ConversationTurn.model(ERROR_MESSAGE, is_error=True))
            return TurnOutcome(
                status=TurnStatus.ERROR, rounds=rounds, final_turn=error_turn, error=str(e)
            )
        finally:
            if session is not None:
                session.close()

    def _finish(self, response: GatewayResponse, status: TurnStatus, rounds: int) -> TurnOutcome:
        final_turn = self._append(ConversationTurn.model(response.text))
        logger.info(f"Turn {status.value} after {rounds} tool rounds")
        return TurnOutcome(status=status, rounds=rounds, final_turn=final_turn)

    async def _send(
        self,
        history: Sequence[ConversationTurn],
        text: str,
        declarations: List[ToolDeclaration],
    ) -> Tuple[GatewayResponse, GatewaySession]:
        try:
            return await self.gateway.send(history, text, declarations)
        except GatewayError:
            raise
        except Exception as e:
            raise GatewayError(str(e), self.gateway.provider, e) from e

    async def _continue(
        self, session: GatewaySession, results: Sequence[ToolCallResult]
    ) -> GatewayResponse:
        try:
            return await self.gateway.continue_session(session, results)
        except GatewayError:
            raise
        except Exception as e:
            raise GatewayError(str(e), self.gateway.provider, e) from e

    # ========================================================================
    # Dispatch
    # ========================================================================

    async def _dispatch(
        self, calls: Sequence[ToolCallRequest], tools: Dict[str, Tool]
    ) -> List[ToolCallResult]:
        """
        Run every call of one round concurrently.

        Results are stored by call position; the round completes once every
        call has produced a result.

        Args:
            calls: Requested calls in model order
            tools: Registry snapshot for this loop

        Returns:
            One result per call, in call order
        """
        results: List[Optional[ToolCallResult]] = [None] * len(calls)

        async def run(position: int, call: ToolCallRequest) -> None:
            results[position] = await self._run_call(call, tools)

        async with anyio.create_task_group() as tg:
            for position, call in enumerate(calls):
                tg.start_soon(run, position, call)

        return [result for result in results if result is not None]

    async def _run_call(self, call: ToolCallRequest, tools: Dict[str, Tool]) -> ToolCallResult:
        tool = tools.get(call.name)
        if tool is None:
            logger.warning(f"Model requested unknown tool '{call.name}'")
            return ToolCallResult.not_found(call)

        try:
            return await self.executor.execute(
                call.name, call.args, tool.implementation, call_id=call.id
            )
        except Exception as e:
            logger.error(f"Executor failed on tool '{call.name}': {e}", exc_info=True)
            return ToolCallResult(
                name=call.name,
                result={"error": f"Execution failed: {e}", "stack": traceback.format_exc()},
                is_error=True,
                call_id=call.id,
            )

    # ========================================================================
    # Log helpers
    # ========================================================================

    def _append(self, turn: ConversationTurn) -> ConversationTurn:
        self.log.append(turn)
        self._publish_log()
        return turn

    def _publish_log(self) -> None:
        self.events.publish(
            ConversationEvent(type=EventType.LOG_CHANGED, turns=self.log.snapshot())
        )
