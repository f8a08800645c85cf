"""
Tool Execution Service - Tool registry, sandboxed execution, and built-in catalog.
"""

from .models import Tool, ToolEnabledRequest, ToolRequest
from .registry import (
    ToolRegistry,
    ToolRegistryError,
    UnknownToolError,
    normalize_schema,
)
from .executor import (
    ExecutionTimeoutError,
    InProcessToolHandler,
    SandboxedExecutor,
    SubprocessToolHandler,
    ToolExecutionError,
    ToolHandler,
)
from .defaults import default_tools, new_tool_template

__all__ = [
    "Tool",
    "ToolRequest",
    "ToolEnabledRequest",
    "ToolRegistry",
    "ToolRegistryError",
    "UnknownToolError",
    "normalize_schema",
    "ToolHandler",
    "InProcessToolHandler",
    "SubprocessToolHandler",
    "SandboxedExecutor",
    "ToolExecutionError",
    "ExecutionTimeoutError",
    "default_tools",
    "new_tool_template",
]
