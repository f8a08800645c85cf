"""
Sandboxed executor for user-defined tool bodies.
Module: code_exec/service/executor.py
"""

import copy
import inspect
import json
import logging
import os
import sys
import time
import traceback
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import anyio
from anyio import fail_after

from adapters.llm.base import ToolCallResult

from .config import settings
from .sandbox import compile_implementation

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]


class ToolExecutionError(Exception):
    """Raised by a tool handler when a body fails."""

    def __init__(self, message: str, stack: str = "") -> None:
        super().__init__(message)
        self.stack = stack


class ExecutionTimeoutError(ToolExecutionError):
    """Raised when a body exceeds the execution timeout."""

    pass


# ============================================================================
# Handlers
# ============================================================================


class ToolHandler(ABC):
    """Runs one tool body against a set of arguments."""

    def __init__(self, name: str, source: str) -> None:
        self.name = name
        self.source = source

    @abstractmethod
    async def invoke(self, args: Dict[str, Any]) -> Any:
        """
        Run the body.

        Args:
            args: Call arguments, passed to the body as ``args``

        Returns:
            The body's return value

        Raises:
            Exception: Whatever the body raises
        """


class InProcessToolHandler(ToolHandler):
    """
    Runs a body inside the current interpreter.

    Plain bodies run on a worker thread so they cannot block the event
    loop; bodies using ``await`` run on the loop. An awaitable return value
    is awaited.
    """

    def __init__(self, name: str, source: str) -> None:
        super().__init__(name, source)
        self._func = compile_implementation(source, name)

    async def invoke(self, args: Dict[str, Any]) -> Any:
        if inspect.iscoroutinefunction(self._func):
            result = await self._func(args)
        else:
            result = await anyio.to_thread.run_sync(
                self._func, args, abandon_on_cancel=True
            )

        if inspect.isawaitable(result):
            result = await result
        return result


class SubprocessToolHandler(ToolHandler):
    """
    Runs a body in a fresh interpreter.

    The body, arguments and outcome cross the process boundary as JSON, so
    a body cannot touch the host process state. The process is killed when
    the executor's timeout fires.
    """

    async def invoke(self, args: Dict[str, Any]) -> Any:
        payload = json.dumps({"name": self.name, "source": self.source, "args": args})

        env = dict(os.environ)
        env["PYTHONPATH"] = os.pathsep.join(
            p for p in (str(PROJECT_ROOT), env.get("PYTHONPATH", "")) if p
        )

        completed = await anyio.run_process(
            [sys.executable, "-m", "code_exec.service.sandbox_worker"],
            input=payload.encode("utf-8"),
            check=False,
            env=env,
        )

        if completed.returncode != 0:
            stderr = completed.stderr.decode("utf-8", errors="replace").strip()
            raise ToolExecutionError(
                f"Sandbox worker exited with status {completed.returncode}", stack=stderr
            )

        try:
            response = json.loads(completed.stdout)
        except ValueError as e:
            raise ToolExecutionError(f"Sandbox worker returned invalid output: {e}")

        if not response.get("ok"):
            raise ToolExecutionError(
                response.get("error", "Unknown error"), stack=response.get("stack", "")
            )
        return response.get("result")


HANDLER_TYPES: Dict[str, Callable[[str, str], ToolHandler]] = {
    "in_process": InProcessToolHandler,
    "subprocess": SubprocessToolHandler,
}


# ============================================================================
# Executor
# ============================================================================


class SandboxedExecutor:
    """
    Executes tool bodies and captures every outcome as a ``ToolCallResult``.

    Responsibilities:
    - Handler selection (in-process or subprocess)
    - Timeout enforcement
    - Failure capture (message and stack)
    - Execution logging
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        execution_mode: Optional[str] = None,
    ) -> None:
        """
        Initialize the executor.

        Args:
            timeout: Per-call limit in seconds (default from settings)
            execution_mode: ``in_process`` or ``subprocess`` (default from settings)

        Raises:
            ValueError: If the execution mode is unknown
        """
        self.timeout = timeout if timeout is not None else settings.max_execution_time
        self.execution_mode = execution_mode or settings.execution_mode
        if self.execution_mode not in HANDLER_TYPES:
            raise ValueError(
                f"Unknown execution mode '{self.execution_mode}', "
                f"expected one of {sorted(HANDLER_TYPES)}"
            )

    def create_handler(self, name: str, implementation: str) -> ToolHandler:
        return HANDLER_TYPES[self.execution_mode](name, implementation)

    async def execute(
        self,
        tool_name: str,
        args: Dict[str, Any],
        implementation: str,
        call_id: Optional[str] = None,
    ) -> ToolCallResult:
        """
        Run a tool body and capture its outcome.

        This never raises for body failures: compile errors, exceptions
        raised by the body and timeouts all become an error result.

        Args:
            tool_name: Name of the tool, copied to the result
            args: Call arguments
            implementation: Tool body source
            call_id: Provider call id, copied to the result

        Returns:
            Success or failure result
        """
        execution_id = str(uuid.uuid4())
        start_time = time.time()
        self._log(execution_id, "INFO", f"Executing tool: {tool_name}")

        try:
            handler = self.create_handler(tool_name, implementation)
            with fail_after(self.timeout):
                value = self._to_json_value(await handler.invoke(copy.deepcopy(args)))
        except TimeoutError:
            error = ExecutionTimeoutError(f"Execution exceeded timeout of {self.timeout}s")
            return self._failure(execution_id, tool_name, call_id, error, "")
        except ToolExecutionError as e:
            return self._failure(execution_id, tool_name, call_id, e, e.stack)
        except (Exception, SystemExit, KeyboardInterrupt) as e:
            return self._failure(execution_id, tool_name, call_id, e, traceback.format_exc())

        execution_time_ms = (time.time() - start_time) * 1000
        self._log(
            execution_id, "INFO", f"Tool '{tool_name}' completed in {execution_time_ms:.2f}ms"
        )
        return ToolCallResult(
            name=tool_name,
            result=value,
            is_error=False,
            call_id=call_id,
        )

    def _failure(
        self,
        execution_id: str,
        tool_name: str,
        call_id: Optional[str],
        error: Exception,
        stack: str,
    ) -> ToolCallResult:
        self._log(execution_id, "ERROR", f"Tool '{tool_name}' failed: {error}")
        return ToolCallResult(
            name=tool_name,
            result={"error": f"Execution failed: {error}", "stack": stack},
            is_error=True,
            call_id=call_id,
        )

    def _to_json_value(self, value: Any) -> Any:
        # Results are replayed to the model, so they must be JSON values
        return json.loads(json.dumps(value, default=str))

    def _log(self, execution_id: str, level: str, message: str) -> None:
        logger_method = getattr(logger, level.lower(), logger.info)
        logger_method(f"[{execution_id[:8]}] {message}")
