"""Anthropic Messages API adapter."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ...models.generation import GenerationResult
from .base import (
    MALFORMED_ENVELOPE_ERRORS,
    BackendResponseError,
    ProviderAdapter,
    read_json_object,
)

logger = logging.getLogger(__name__)


class AnthropicAdapter(ProviderAdapter):
    """The Messages API has no JSON mode; ``json_output`` relies on the prompt."""

    name = "anthropic"
    API_BASE = "https://api.anthropic.com/v1"
    API_VERSION = "2023-06-01"
    DEFAULT_MODEL = "claude-3-5-sonnet-latest"

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {
            "x-api-key": api_key,
            "anthropic-version": self.API_VERSION,
            "Content-Type": "application/json",
        }

    async def _call_backend(
        self,
        prompt: str,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: Optional[str],
        json_output: bool = True,
    ) -> GenerationResult:
        payload: Dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            payload["system"] = system_prompt

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.API_BASE}/messages",
                headers=self._headers(self.api_key),
                json=payload,
            )
            response.raise_for_status()
            data = read_json_object(response)

        try:
            usage = data.get("usage") or {}
            return GenerationResult(
                content=_extract_text(data),
                tokens_used=int(usage.get("input_tokens") or 0)
                + int(usage.get("output_tokens") or 0),
                provider=self.name,
                model=model,
            )
        except MALFORMED_ENVELOPE_ERRORS as e:
            raise BackendResponseError(f"Malformed Anthropic response: {type(e).__name__}") from e

    async def validate_key(self, api_key: str) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.API_BASE}/models", headers=self._headers(api_key)
                )
                response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.info(f"Anthropic key validation failed: {type(e).__name__}")
            return False


def _extract_text(data: Dict[str, Any]) -> str:
    blocks = data.get("content")
    if not isinstance(blocks, list):
        raise BackendResponseError("Anthropic response has no content blocks")
    return "".join(block.get("text", "") for block in blocks if block.get("type") == "text")


__all__ = ["AnthropicAdapter"]
