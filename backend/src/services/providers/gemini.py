"""Google Gemini ``generateContent`` adapter."""

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


class GeminiAdapter(ProviderAdapter):
    """Gemini has no system role here; the system prompt is prepended."""

    name = "gemini"
    API_BASE = "https://generativelanguage.googleapis.com/v1beta"
    DEFAULT_MODEL = "gemini-1.5-flash"

    def _headers(self, api_key: str) -> Dict[str, str]:
        # Header rather than ?key= so the credential never shows up in URLs or error text
        return {"x-goog-api-key": api_key, "Content-Type": "application/json"}

    async def _call_backend(
        self,
        prompt: str,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: Optional[str],
        json_output: bool = True,
    ) -> GenerationResult:
        full_prompt = f"{system_prompt}\n\n{prompt}" if system_prompt else prompt
        generation_config: Dict[str, Any] = {
            "temperature": temperature,
            "maxOutputTokens": max_tokens,
        }
        if json_output:
            generation_config["responseMimeType"] = "application/json"

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.API_BASE}/models/{model}:generateContent",
                headers=self._headers(self.api_key),
                json={
                    "contents": [{"role": "user", "parts": [{"text": full_prompt}]}],
                    "generationConfig": generation_config,
                },
            )
            response.raise_for_status()
            data = read_json_object(response)

        try:
            usage = data.get("usageMetadata") or {}
            return GenerationResult(
                content=_extract_text(data),
                tokens_used=int(usage.get("totalTokenCount") or 0),
                provider=self.name,
                model=model,
            )
        except MALFORMED_ENVELOPE_ERRORS as e:
            raise BackendResponseError(f"Malformed Gemini response: {type(e).__name__}") from e

    async def validate_key(self, api_key: str) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.API_BASE}/models", headers=self._headers(api_key)
                )
                response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.info(f"Gemini key validation failed: {type(e).__name__}")
            return False


def _extract_text(data: Dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        raise BackendResponseError("Gemini response has no candidates")
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts)


__all__ = ["GeminiAdapter"]
