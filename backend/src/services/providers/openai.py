"""OpenAI chat completions adapter."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from ...models.generation import GenerationResult
from .base import (
    MALFORMED_ENVELOPE_ERRORS,
    BackendResponseError,
    ProviderAdapter,
    read_json_object,
)

logger = logging.getLogger(__name__)


class OpenAIAdapter(ProviderAdapter):
    """Talks to ``/v1/chat/completions`` with JSON-object output."""

    name = "openai"
    API_BASE = "https://api.openai.com/v1"
    DEFAULT_MODEL = "gpt-4o-mini"

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
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
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if json_output:
            payload["response_format"] = {"type": "json_object"}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.API_BASE}/chat/completions",
                headers=self._headers(self.api_key),
                json=payload,
            )
            response.raise_for_status()
            data = read_json_object(response)

        try:
            return GenerationResult(
                content=_extract_content(data),
                tokens_used=int((data.get("usage") or {}).get("total_tokens") or 0),
                provider=self.name,
                model=model,
            )
        except MALFORMED_ENVELOPE_ERRORS as e:
            raise BackendResponseError(f"Malformed OpenAI response: {type(e).__name__}") from e

    async def validate_key(self, api_key: str) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.API_BASE}/models", headers=self._headers(api_key)
                )
                response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.info(f"OpenAI key validation failed: {type(e).__name__}")
            return False


def _extract_content(data: Dict[str, Any]) -> str:
    choices = data.get("choices") or []
    if not choices:
        raise BackendResponseError("OpenAI response has no choices")
    message = choices[0].get("message") or {}
    return message.get("content") or ""


__all__ = ["OpenAIAdapter"]
