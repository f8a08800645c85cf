"""
Scripted model gateway for testing and development.

This gateway replays a queue of canned responses without calling any
provider, and records every request it receives.
"""

from typing import Any, Dict, List, Optional, Sequence, Union

import anyio

from .base import GatewayResponse, ModelGateway, ToolDeclaration

ScriptItem = Union[GatewayResponse, str, Exception]


class ScriptedGateway(ModelGateway):
    """
    Deterministic gateway driven by a response script.

    Each provider step pops the next script item: a ``GatewayResponse`` is
    returned as-is, a string becomes a text-only response and an exception
    is raised (and surfaces as ``GatewayError``). When the script runs out,
    ``fallback_text`` is returned.
    """

    provider = "mock"

    def __init__(
        self,
        script: Optional[Sequence[ScriptItem]] = None,
        model: str = "mock-model",
        api_key: Optional[str] = None,
        fallback_text: str = "Mock response",
        delay_ms: int = 0,
        **kwargs: Any,
    ) -> None:
        """
        Initialize scripted gateway.

        Args:
            script: Responses to replay, in order
            model: Mock model identifier
            api_key: Not used, accepted for interface compatibility
            fallback_text: Text returned once the script is exhausted
            delay_ms: Simulated latency in milliseconds
            **kwargs: Additional configuration
        """
        super().__init__(model, api_key, **kwargs)
        self.script: List[ScriptItem] = list(script or [])
        self.fallback_text = fallback_text
        self.delay_ms = delay_ms
        self.requests: List[Dict[str, Any]] = []

    @property
    def requires_api_key(self) -> bool:
        return False

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def queue(self, *items: ScriptItem) -> None:
        self.script.extend(items)

    async def _generate(
        self, contents: List[Dict[str, Any]], tools: List[ToolDeclaration]
    ) -> GatewayResponse:
        if self.delay_ms:
            await anyio.sleep(self.delay_ms / 1000.0)

        self.requests.append({"contents": contents, "tools": [t.name for t in tools]})

        item: ScriptItem = self.script.pop(0) if self.script else self.fallback_text
        if isinstance(item, Exception):
            raise item
        if isinstance(item, str):
            return GatewayResponse.from_text(item)
        return item
