"""
Subprocess entry point for running one tool body in a fresh interpreter.
Module: code_exec/service/sandbox_worker.py

Reads ``{"name", "source", "args"}`` as JSON on stdin and writes either
``{"ok": true, "result": ...}`` or ``{"ok": false, "error": ..., "stack": ...}``
as JSON on stdout.
"""

import asyncio
import inspect
import json
import sys
import traceback
from typing import Any, Dict

from code_exec.service.sandbox import compile_implementation


def run(payload: Dict[str, Any]) -> Dict[str, Any]:
    try:
        func = compile_implementation(payload["source"], payload.get("name", "tool"))
        result = func(payload.get("args") or {})
        if inspect.isawaitable(result):
            result = asyncio.run(_await(result))
        return {"ok": True, "result": result}
    except Exception as e:
        return {"ok": False, "error": str(e), "stack": traceback.format_exc()}


async def _await(awaitable: Any) -> Any:
    return await awaitable


def main() -> int:
    try:
        payload = json.loads(sys.stdin.read())
    except ValueError as e:
        response = {"ok": False, "error": f"Invalid worker payload: {e}", "stack": ""}
    else:
        response = run(payload)

    # Non-serializable values degrade to their string form
    sys.stdout.write(json.dumps(response, default=str))
    sys.stdout.flush()
    return 0


if __name__ == "__main__":
    sys.exit(main())
