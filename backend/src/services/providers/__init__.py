"""Provider adapters, one per LLM backend, built per call from a credential."""

from __future__ import annotations

from typing import Dict, Optional, Type

from ..config import AppConfig, get_config
from ..errors import UnknownProviderError
from .anthropic import AnthropicAdapter
from .base import BackendResponseError, ProviderAdapter, SleepFunc, is_transient
from .gemini import GeminiAdapter
from .openai import OpenAIAdapter

ADAPTER_CLASSES: Dict[str, Type[ProviderAdapter]] = {
    OpenAIAdapter.name: OpenAIAdapter,
    GeminiAdapter.name: GeminiAdapter,
    AnthropicAdapter.name: AnthropicAdapter,
}


def create_adapter(
    provider: str,
    api_key: str,
    config: Optional[AppConfig] = None,
    sleep: Optional[SleepFunc] = None,
) -> ProviderAdapter:
    """Build a fresh adapter for ``provider`` bound to ``api_key``."""
    adapter_cls = ADAPTER_CLASSES.get(provider)
    if adapter_cls is None:
        raise UnknownProviderError(f"Unknown provider: {provider}", {"provider": provider})

    config = config or get_config()
    return adapter_cls(
        api_key,
        max_retries=config.provider_max_retries,
        base_delay=config.provider_retry_base_delay,
        max_jitter=config.provider_retry_max_jitter,
        timeout=config.provider_timeout_seconds,
        sleep=sleep,
    )


__all__ = [
    "ADAPTER_CLASSES",
    "AnthropicAdapter",
    "BackendResponseError",
    "GeminiAdapter",
    "OpenAIAdapter",
    "ProviderAdapter",
    "create_adapter",
    "is_transient",
]
