"""
Google Gemini model gateway.

This gateway talks to the Gemini ``generateContent`` REST endpoint with
function calling enabled.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import httpx

from .base import GatewayError, GatewayResponse, ModelGateway, ToolDeclaration

logger = logging.getLogger(__name__)


class GeminiGateway(ModelGateway):
    """
    Gateway for the Google Gemini API.

    The credential is read lazily so that a missing key is reported by
    ``check_credentials`` before a turn starts rather than at construction.
    """

    provider = "gemini"

    API_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta/"
    DEFAULT_MODEL: str = "gemini-2.5-flash"

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 60.0,
        system_instruction: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs: Any,
    ) -> None:
        """
        Initialize Gemini gateway.

        Args:
            model: Gemini model identifier (e.g., "gemini-2.5-flash")
            api_key: Gemini API key (defaults to GEMINI_API_KEY, then API_KEY)
            base_url: Override for the REST base URL
            timeout: Request timeout in seconds
            system_instruction: Optional system prompt for every request
            transport: Custom httpx transport (used by tests)
            **kwargs: Additional configuration
        """
        api_key = api_key or os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY")
        super().__init__(model, api_key, **kwargs)

        self.timeout = timeout
        self.system_instruction = system_instruction
        self.client = httpx.AsyncClient(
            base_url=base_url or self.API_BASE_URL,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    def _build_payload(
        self, contents: List[Dict[str, Any]], tools: List[ToolDeclaration]
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"contents": contents}

        if tools:
            payload["tools"] = [
                {"functionDeclarations": [tool.to_wire() for tool in tools]}
            ]

        if self.system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": self.system_instruction}]}

        return payload

    async def _generate(
        self, contents: List[Dict[str, Any]], tools: List[ToolDeclaration]
    ) -> GatewayResponse:
        """
        Run one generateContent request.

        Raises:
            GatewayError: On transport failure, timeout or non-200 status
        """
        payload = self._build_payload(contents, tools)

        try:
            response = await self.client.post(
                f"models/{self.model}:generateContent",
                json=payload,
                headers={"x-goog-api-key": self.api_key or ""},
            )
        except httpx.TimeoutException as e:
            raise GatewayError(f"Gemini request timed out: {e}", self.provider, e) from e
        except httpx.HTTPError as e:
            raise GatewayError(f"Gemini request failed: {e}", self.provider, e) from e

        if response.status_code != 200:
            error_detail = response.text
            try:
                error_detail = response.json().get("error", {}).get("message", error_detail)
            except ValueError:
                pass
            raise GatewayError(
                f"Gemini API error ({response.status_code}): {error_detail}", self.provider
            )

        return self._parse_response(response.json())

    def _parse_response(self, data: Dict[str, Any]) -> GatewayResponse:
        usage_meta = data.get("usageMetadata", {})
        usage = {
            "prompt_tokens": usage_meta.get("promptTokenCount", 0),
            "completion_tokens": usage_meta.get("candidatesTokenCount", 0),
            "total_tokens": usage_meta.get("totalTokenCount", 0),
        }

        candidates = data.get("candidates") or []
        if not candidates:
            block_reason = data.get("promptFeedback", {}).get("blockReason")
            logger.warning(f"Gemini returned no candidates (block reason: {block_reason})")
            return GatewayResponse(
                parts=[], finish_reason=block_reason, usage=usage, raw_response=data
            )

        candidate = candidates[0]
        parts = candidate.get("content", {}).get("parts") or []

        return GatewayResponse.from_parts(
            parts,
            finish_reason=candidate.get("finishReason"),
            usage=usage,
            raw_response=data,
        )

    async def aclose(self) -> None:
        await self.client.aclose()
