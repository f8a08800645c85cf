"""
Compilation of tool bodies into callables.
Module: code_exec/service/sandbox.py

A tool implementation is the body of a function receiving one argument,
``args``. It is wrapped in a function definition and compiled in a fresh
namespace seeded with a few standard modules.
"""

import asyncio
import datetime
import json
import math
import random
import re
import textwrap
from typing import Any, Callable, Dict

ENTRY_POINT = "__tool_entry__"

TOOL_GLOBALS: Dict[str, Any] = {
    "json": json,
    "math": math,
    "random": random,
    "asyncio": asyncio,
    "datetime": datetime,
    "re": re,
}


def _wrap(source: str, is_async: bool) -> str:
    body = textwrap.dedent(source).strip("\n") or "pass"
    keyword = "async def" if is_async else "def"
    return f"{keyword} {ENTRY_POINT}(args):\n" + textwrap.indent(body, "    ") + "\n"


def compile_implementation(source: str, name: str = "tool") -> Callable[[Dict[str, Any]], Any]:
    """
    Compile a tool body into a callable taking ``args``.

    The body is first compiled as a plain function. A body using ``await``
    fails that pass and is compiled as a coroutine function instead.

    Args:
        source: Function body text
        name: Tool name, used as the code object's filename

    Returns:
        The compiled function

    Raises:
        SyntaxError: If the body compiles in neither form
    """
    filename = f"<tool:{name}>"
    try:
        code = compile(_wrap(source, is_async=False), filename, "exec")
    except SyntaxError as sync_error:
        try:
            code = compile(_wrap(source, is_async=True), filename, "exec")
        except SyntaxError as async_error:
            # Report the coroutine-form error for bodies that use await
            raise async_error if "await" in source else sync_error

    namespace: Dict[str, Any] = dict(TOOL_GLOBALS)
    namespace["__builtins__"] = __builtins__
    namespace["__name__"] = f"tool_{name}"
    exec(code, namespace)
    return namespace[ENTRY_POINT]
