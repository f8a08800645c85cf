"""
Tests for the turn orchestrator.

Tests cover:
- Final answers with and without tool rounds
- Dispatch against the registry snapshot
- Failure containment for tools and the gateway
- The tool round limit
- Busy handling, reset and events
"""

from typing import Any, Dict, List, Optional, Sequence

import anyio
import httpx
import pytest

from adapters.llm.base import (
    ConfigurationError,
    GatewayResponse,
    ToolCallRequest,
    ToolCallResult,
)
from adapters.llm.gemini import GeminiGateway
from adapters.llm.mock import ScriptedGateway
from code_exec.service.executor import SandboxedExecutor
from code_exec.service.models import Tool
from code_exec.service.registry import ToolRegistry
from orchestrator.service.config import OrchestratorConfig
from orchestrator.service.conversation import ConversationEvent, EventHub, EventType
from orchestrator.service.models import OrchestratorState, TurnStatus
from orchestrator.service.turn_orchestrator import (
    ERROR_MESSAGE,
    ConversationBusyError,
    TurnOrchestrator,
)


# ============================================================================
# Fixtures
# ============================================================================


def call(name: str, call_id: Optional[str] = None, **args: Any) -> ToolCallRequest:
    return ToolCallRequest(name=name, args=args, id=call_id)


def calls(*requests: ToolCallRequest, text: str = "") -> GatewayResponse:
    return GatewayResponse.from_calls(*requests, text=text)


def make_orchestrator(
    script: Sequence[Any],
    registry: Optional[ToolRegistry] = None,
    events: Optional[EventHub] = None,
    max_tool_rounds: int = 5,
    delay_ms: int = 0,
) -> TurnOrchestrator:
    return TurnOrchestrator(
        gateway=ScriptedGateway(script, delay_ms=delay_ms),
        registry=registry or ToolRegistry.with_defaults(),
        executor=SandboxedExecutor(timeout=5, execution_mode="in_process"),
        events=events,
        max_tool_rounds=max_tool_rounds,
    )


@pytest.fixture
def registry() -> ToolRegistry:
    """Built-in catalog plus a failing tool and an echo tool."""
    reg = ToolRegistry.with_defaults()
    reg.register(
        Tool(
            id="fail-tool",
            name="always_fails",
            parameters='{"type": "OBJECT", "properties": {}}',
            implementation="raise RuntimeError('broken tool')",
        )
    )
    reg.register(
        Tool(
            id="echo-tool",
            name="echo",
            parameters='{"type": "OBJECT", "properties": {"value": {"type": "STRING"}}}',
            implementation="return {'value': args.get('value')}",
        )
    )
    return reg


# ============================================================================
# Completion
# ============================================================================


class TestCompletion:
    """Test loops that end with a final answer."""

    @pytest.mark.asyncio
    async def test_text_only_answer(self) -> None:
        orchestrator = make_orchestrator(["Hello!"])

        outcome = await orchestrator.handle_user_message("hi")

        assert outcome.status == TurnStatus.COMPLETED
        assert outcome.rounds == 0
        assert outcome.text == "Hello!"

        turns = orchestrator.log.snapshot()
        assert [t.role.value for t in turns] == ["user", "model"]
        assert turns[0].content == "hi"
        assert orchestrator.state == OrchestratorState.IDLE

    @pytest.mark.asyncio
    async def test_empty_final_answer_is_logged(self) -> None:
        orchestrator = make_orchestrator([GatewayResponse()])

        outcome = await orchestrator.handle_user_message("hi")

        assert outcome.status == TurnStatus.COMPLETED
        assert outcome.final_turn.content == ""
        assert len(orchestrator.log) == 2

    @pytest.mark.asyncio
    async def test_one_tool_round(self) -> None:
        orchestrator = make_orchestrator(
            [
                calls(call("get_current_weather", location="Paris"), text="Let me check."),
                "It is nice in Paris.",
            ]
        )

        outcome = await orchestrator.handle_user_message("weather in Paris")

        assert outcome.status == TurnStatus.COMPLETED
        assert outcome.rounds == 1

        user, tool_turn, final = orchestrator.log.snapshot()
        assert tool_turn.content == "Let me check."
        assert tool_turn.is_pending is False
        assert tool_turn.tool_results[0].result["location"] == "Paris"
        assert final.content == "It is nice in Paris."

    @pytest.mark.asyncio
    async def test_previous_turns_are_replayed(self) -> None:
        orchestrator = make_orchestrator(["first answer", "second answer"])

        await orchestrator.handle_user_message("first")
        await orchestrator.handle_user_message("second")

        contents = orchestrator.gateway.requests[1]["contents"]
        texts = [part["text"] for entry in contents for part in entry["parts"]]
        assert texts == ["first", "first answer", "second"]

    @pytest.mark.asyncio
    async def test_empty_answer_is_replayed(self) -> None:
        orchestrator = make_orchestrator(["", "second answer"])

        await orchestrator.handle_user_message("first")
        await orchestrator.handle_user_message("second")

        contents = orchestrator.gateway.requests[1]["contents"]
        assert [c["role"] for c in contents] == ["user", "model", "user"]

    @pytest.mark.asyncio
    async def test_only_enabled_valid_tools_declared(self, registry: ToolRegistry) -> None:
        registry.register(
            Tool(id="draft", name="draft_tool", parameters="{oops", implementation="return 1"),
            validate=False,
        )
        orchestrator = make_orchestrator(["ok"], registry=registry)

        await orchestrator.handle_user_message("hi")

        assert orchestrator.gateway.requests[0]["tools"] == [
            "get_current_weather",
            "calculator",
            "always_fails",
            "echo",
        ]


# ============================================================================
# Dispatch
# ============================================================================


class TestDispatch:
    """Test tool dispatch within a round."""

    @pytest.mark.asyncio
    async def test_results_follow_call_order(self, registry: ToolRegistry) -> None:
        orchestrator = make_orchestrator(
            [
                calls(
                    call("echo", "c1", value="a"),
                    call("calculator", "c2", expression="6 * 7"),
                    call("echo", "c3", value="b"),
                ),
                "done",
            ],
            registry=registry,
        )

        await orchestrator.handle_user_message("go")

        results = orchestrator.log.snapshot()[1].tool_results
        assert [r.name for r in results] == ["echo", "calculator", "echo"]
        assert [r.call_id for r in results] == ["c1", "c2", "c3"]
        assert results[0].result == {"value": "a"}
        assert results[1].result["result"] == 42
        assert results[2].result == {"value": "b"}

    @pytest.mark.asyncio
    async def test_failing_tool_does_not_block_siblings(self, registry: ToolRegistry) -> None:
        orchestrator = make_orchestrator(
            [calls(call("always_fails"), call("echo", value="ok")), "recovered"],
            registry=registry,
        )

        outcome = await orchestrator.handle_user_message("go")

        assert outcome.status == TurnStatus.COMPLETED
        failed, echoed = orchestrator.log.snapshot()[1].tool_results
        assert failed.is_error is True
        assert failed.result["error"] == "Execution failed: broken tool"
        assert "RuntimeError" in failed.result["stack"]
        assert echoed.is_error is False
        assert echoed.result == {"value": "ok"}

        # The model sees the failure on the next step
        last_request = orchestrator.gateway.requests[1]["contents"][-1]
        responses = [p["functionResponse"]["response"] for p in last_request["parts"]]
        assert responses[0]["error"] == "Execution failed: broken tool"

    @pytest.mark.asyncio
    async def test_exiting_tool_does_not_abort_loop(self, registry: ToolRegistry) -> None:
        registry.register(
            Tool(id="exit-tool", name="quitter", implementation="raise SystemExit(3)")
        )
        orchestrator = make_orchestrator(
            [calls(call("quitter"), call("echo", value="still here")), "carried on"],
            registry=registry,
        )

        outcome = await orchestrator.handle_user_message("go")

        assert outcome.status == TurnStatus.COMPLETED
        assert outcome.text == "carried on"
        exited, echoed = orchestrator.log.snapshot()[1].tool_results
        assert exited.is_error is True
        assert "SystemExit" in exited.result["stack"]
        assert echoed.result == {"value": "still here"}
        assert not any(t.is_pending for t in orchestrator.log.snapshot())

    @pytest.mark.asyncio
    async def test_unknown_tool(self) -> None:
        orchestrator = make_orchestrator([calls(call("nonexistent_tool")), "Sorry about that."])

        outcome = await orchestrator.handle_user_message("go")

        assert outcome.status == TurnStatus.COMPLETED
        result = orchestrator.log.snapshot()[1].tool_results[0]
        assert result.result == {"error": "Tool not found"}
        assert result.is_error is True

    @pytest.mark.asyncio
    async def test_disabled_tool_is_not_found(self) -> None:
        orchestrator = make_orchestrator([calls(call("get_stock_price", ticker="AAPL")), "ok"])

        await orchestrator.handle_user_message("price?")

        result = orchestrator.log.snapshot()[1].tool_results[0]
        assert result.result == {"error": "Tool not found"}

    @pytest.mark.asyncio
    async def test_snapshot_survives_mid_loop_disable(self) -> None:
        events = EventHub()
        registry = ToolRegistry.with_defaults()

        def disable_on_pending(event: ConversationEvent) -> None:
            if event.type == EventType.LOG_CHANGED and event.turns and event.turns[-1].is_pending:
                registry.set_enabled("weather-tool", False)

        events.subscribe(disable_on_pending)
        orchestrator = make_orchestrator(
            [calls(call("get_current_weather", location="Oslo")), "done"],
            registry=registry,
            events=events,
        )

        await orchestrator.handle_user_message("weather in Oslo")

        result = orchestrator.log.snapshot()[1].tool_results[0]
        assert result.is_error is False
        assert result.result["location"] == "Oslo"
        assert registry.find_by_name("get_current_weather") is None

    @pytest.mark.asyncio
    async def test_executor_exception_becomes_result(self) -> None:
        class ExplodingExecutor(SandboxedExecutor):
            async def execute(self, *args: Any, **kwargs: Any) -> ToolCallResult:
                raise RuntimeError("executor crashed")

        orchestrator = TurnOrchestrator(
            gateway=ScriptedGateway([calls(call("calculator", expression="1")), "ok"]),
            registry=ToolRegistry.with_defaults(),
            executor=ExplodingExecutor(),
        )

        outcome = await orchestrator.handle_user_message("go")

        assert outcome.status == TurnStatus.COMPLETED
        result = orchestrator.log.snapshot()[1].tool_results[0]
        assert result.is_error is True
        assert result.result["error"] == "Execution failed: executor crashed"


# ============================================================================
# Round limit
# ============================================================================


class TestRoundLimit:
    """Test the cap on dispatch cycles."""

    @pytest.mark.asyncio
    async def test_stops_after_five_rounds(self) -> None:
        script = [calls(call("calculator", expression=str(i)), text=f"step {i}") for i in range(6)]
        orchestrator = make_orchestrator(script)

        outcome = await orchestrator.handle_user_message("loop forever")

        assert outcome.status == TurnStatus.LOOP_LIMIT
        assert outcome.rounds == 5
        assert outcome.error is None
        assert outcome.final_turn.content == "step 5"
        assert outcome.final_turn.tool_calls == ()
        assert orchestrator.gateway.call_count == 6

        turns = orchestrator.log.snapshot()
        assert len(turns) == 1 + 5 + 1
        assert not any(t.is_pending for t in turns)

    @pytest.mark.asyncio
    async def test_answer_within_limit_completes(self) -> None:
        script: List[Any] = [calls(call("calculator", expression="1")) for _ in range(4)]
        script.append("converged")
        orchestrator = make_orchestrator(script)

        outcome = await orchestrator.handle_user_message("go")

        assert outcome.status == TurnStatus.COMPLETED
        assert outcome.rounds == 4

    @pytest.mark.asyncio
    async def test_custom_limit(self) -> None:
        script = [calls(call("calculator", expression="1")) for _ in range(3)]
        orchestrator = make_orchestrator(script, max_tool_rounds=2)

        outcome = await orchestrator.handle_user_message("go")

        assert outcome.status == TurnStatus.LOOP_LIMIT
        assert outcome.rounds == 2
        assert outcome.final_turn.content == ""

    def test_limit_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            make_orchestrator([], max_tool_rounds=0)


# ============================================================================
# Failures
# ============================================================================


class TestFailures:
    """Test gateway and configuration failures."""

    @pytest.mark.asyncio
    async def test_gateway_failure_first_round(self) -> None:
        orchestrator = make_orchestrator([RuntimeError("provider down")])

        outcome = await orchestrator.handle_user_message("hi")

        assert outcome.status == TurnStatus.ERROR
        assert "provider down" in outcome.error
        turns = orchestrator.log.snapshot()
        assert len(turns) == 2
        assert turns[1].is_error is True
        assert turns[1].content == ERROR_MESSAGE
        assert orchestrator.state == OrchestratorState.IDLE

    @pytest.mark.asyncio
    async def test_gateway_failure_after_tool_round(self) -> None:
        orchestrator = make_orchestrator(
            [calls(call("calculator", expression="2 + 2")), RuntimeError("timeout")]
        )

        outcome = await orchestrator.handle_user_message("hi")

        assert outcome.status == TurnStatus.ERROR
        assert outcome.rounds == 1
        user, tool_turn, error_turn = orchestrator.log.snapshot()
        assert tool_turn.is_pending is False
        assert tool_turn.tool_results[0].result["result"] == 4
        assert error_turn.is_error is True

    @pytest.mark.asyncio
    async def test_malformed_function_call(self) -> None:
        orchestrator = make_orchestrator(
            [GatewayResponse(parts=[{"functionCall": {"name": "calculator", "args": ["1+1"]}}])]
        )

        outcome = await orchestrator.handle_user_message("hi")

        assert outcome.status == TurnStatus.ERROR
        turns = orchestrator.log.snapshot()
        assert len(turns) == 2
        assert turns[1].is_error is True

    @pytest.mark.asyncio
    async def test_gateway_timeout(self) -> None:
        def stall(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        orchestrator = TurnOrchestrator(
            gateway=GeminiGateway(api_key="k", transport=httpx.MockTransport(stall)),
            registry=ToolRegistry.with_defaults(),
            executor=SandboxedExecutor(timeout=5, execution_mode="in_process"),
        )

        outcome = await orchestrator.handle_user_message("hi")
        await orchestrator.gateway.aclose()

        assert outcome.status == TurnStatus.ERROR
        assert "timed out" in outcome.error
        turns = orchestrator.log.snapshot()
        assert len(turns) == 2
        assert turns[1].content == ERROR_MESSAGE

    @pytest.mark.asyncio
    async def test_conversation_continues_after_error(self) -> None:
        orchestrator = make_orchestrator([RuntimeError("blip"), "back again"])

        await orchestrator.handle_user_message("one")
        outcome = await orchestrator.handle_user_message("two")

        assert outcome.status == TurnStatus.COMPLETED
        assert len(orchestrator.log) == 4

    @pytest.mark.asyncio
    async def test_missing_credentials(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.delenv("API_KEY", raising=False)

        orchestrator = TurnOrchestrator(
            gateway=GeminiGateway(),
            registry=ToolRegistry.with_defaults(),
            executor=SandboxedExecutor(),
        )

        with pytest.raises(ConfigurationError):
            await orchestrator.handle_user_message("hi")

        assert len(orchestrator.log) == 0
        assert orchestrator.state == OrchestratorState.IDLE
        await orchestrator.gateway.aclose()


# ============================================================================
# Lifecycle
# ============================================================================


class TestLifecycle:
    """Test busy handling, reset and events."""

    @pytest.mark.asyncio
    async def test_busy_while_loop_in_flight(self) -> None:
        orchestrator = make_orchestrator(["slow answer"], delay_ms=200)
        states: Dict[str, OrchestratorState] = {}

        async with anyio.create_task_group() as tg:
            tg.start_soon(orchestrator.handle_user_message, "first")
            await anyio.sleep(0.05)
            states["during"] = orchestrator.state

            with pytest.raises(ConversationBusyError):
                await orchestrator.handle_user_message("second")
            with pytest.raises(ConversationBusyError):
                orchestrator.reset()

        assert states["during"] == OrchestratorState.AWAITING_MODEL
        assert orchestrator.state == OrchestratorState.IDLE
        assert len(orchestrator.log) == 2

    @pytest.mark.asyncio
    async def test_reset(self) -> None:
        orchestrator = make_orchestrator(["one", "two"])

        await orchestrator.handle_user_message("first")
        orchestrator.reset()
        await orchestrator.handle_user_message("again")

        assert len(orchestrator.log) == 2
        contents = orchestrator.gateway.requests[1]["contents"]
        assert contents == [{"role": "user", "parts": [{"text": "again"}]}]

    @pytest.mark.asyncio
    async def test_events(self) -> None:
        events = EventHub()
        received: List[ConversationEvent] = []
        events.subscribe(received.append)
        orchestrator = make_orchestrator(
            [calls(call("calculator", expression="1 + 1")), "2"], events=events
        )

        await orchestrator.handle_user_message("add")

        types = [e.type for e in received]
        assert types[0] == EventType.LOADING_STARTED
        assert types[-1] == EventType.LOADING_ENDED

        snapshots = [e.turns for e in received if e.type == EventType.LOG_CHANGED]
        # user appended, pending turn appended, results attached, final appended
        assert [len(s) for s in snapshots] == [1, 2, 2, 3]
        assert snapshots[1][-1].is_pending is True
        assert snapshots[2][-1].is_pending is False

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_loop(self) -> None:
        events = EventHub()

        def broken(event: ConversationEvent) -> None:
            raise ValueError("listener bug")

        events.subscribe(broken)
        orchestrator = make_orchestrator(["fine"], events=events)

        outcome = await orchestrator.handle_user_message("hi")

        assert outcome.status == TurnStatus.COMPLETED

    def test_from_config_mock_provider(self) -> None:
        settings = OrchestratorConfig(llm_provider="mock", max_tool_rounds=3)

        orchestrator = TurnOrchestrator.from_config(settings)

        assert isinstance(orchestrator.gateway, ScriptedGateway)
        assert orchestrator.max_tool_rounds == 3
        assert len(orchestrator.registry) == 3
