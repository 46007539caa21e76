"""Static provider configuration, pricing and availability lookups."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Dict, List, Optional

from ..models.generation import (
    CostEstimate,
    Feature,
    ModelConfig,
    ProviderConfig,
    ProviderStatus,
    ProviderValidation,
)
from .cache import SystemClock, TTLCache
from .config import get_config
from .errors import NoProvidersAvailableError, UnknownProviderError, ValidationError

logger = logging.getLogger(__name__)

_ALL_FEATURES = {f.value for f in Feature}
_GENERATION_FEATURES = (Feature.REASONING.value, Feature.SUMMARY.value, Feature.EXPANSION.value)

# Declaration order is the fallback order used by get_default_provider().
AI_PROVIDERS: Dict[str, ProviderConfig] = {
    "openai": ProviderConfig(
        name="openai",
        models={
            "reasoning": "gpt-4o-mini",
            "summary": "gpt-4o-mini",
            "expansion": "gpt-4o-mini",
        },
        max_tokens={"reasoning": 4000, "summary": 1000, "expansion": 2000},
        default_temperature=0.7,
        supported_features=set(_ALL_FEATURES),
    ),
    "gemini": ProviderConfig(
        name="gemini",
        models={
            "reasoning": "gemini-1.5-flash",
            "summary": "gemini-1.5-flash",
            "expansion": "gemini-1.5-flash",
        },
        max_tokens={"reasoning": 4000, "summary": 1000, "expansion": 2000},
        default_temperature=0.7,
        supported_features=set(_ALL_FEATURES),
    ),
    "anthropic": ProviderConfig(
        name="anthropic",
        models={
            "reasoning": "claude-3-5-sonnet-latest",
            "summary": "claude-3-5-sonnet-latest",
            "expansion": "claude-3-5-sonnet-latest",
        },
        max_tokens={"reasoning": 4000, "summary": 1000, "expansion": 2000},
        default_temperature=0.7,
        supported_features=set(_ALL_FEATURES),
    ),
}

# USD per 1K tokens
PRICING: Dict[str, Dict[str, float]] = {
    "openai": {"reasoning": 0.0005, "summary": 0.0003, "expansion": 0.0004},
    "gemini": {"reasoning": 0.0004, "summary": 0.0002, "expansion": 0.0003},
    "anthropic": {"reasoning": 0.001, "summary": 0.0008, "expansion": 0.0009},
}


class ProviderRegistry:
    """Lookups over the static provider table plus a short-lived status cache."""

    def __init__(
        self,
        providers: Optional[Dict[str, ProviderConfig]] = None,
        pricing: Optional[Dict[str, Dict[str, float]]] = None,
        clock: Optional[SystemClock] = None,
        status_ttl_seconds: float = 300.0,
    ):
        """
        Initialize the registry.

        Args:
            providers: Provider table (defaults to AI_PROVIDERS)
            pricing: Price per 1K tokens by provider and feature
            clock: Clock used for status timestamps and expiry
            status_ttl_seconds: How long a status check is reused
        """
        self.providers = providers if providers is not None else AI_PROVIDERS
        self.pricing = pricing if pricing is not None else PRICING
        self.clock = clock or SystemClock()
        self._status_cache: TTLCache[ProviderStatus] = TTLCache(
            status_ttl_seconds, clock=self.clock
        )

    def list_providers(self) -> List[str]:
        return list(self.providers.keys())

    def get_provider_config(self, name: str) -> ProviderConfig:
        config = self.providers.get(name)
        if config is None:
            raise UnknownProviderError(f"Unknown provider: {name}", {"provider": name})
        return config

    def get_model_config(self, name: str, feature: str) -> ModelConfig:
        """Resolve model, token cap and temperature for a provider feature."""
        config = self.get_provider_config(name)
        if feature not in _GENERATION_FEATURES:
            raise ValidationError(
                f"Provider {name} has no model for feature: {feature}",
                {"provider": name, "feature": feature},
            )
        return ModelConfig(
            model=config.models[feature],
            max_tokens=config.max_tokens[feature],
            temperature=config.default_temperature,
        )

    def validate_provider_request(self, name: str, feature: str) -> ProviderValidation:
        config = self.providers.get(name)
        if config is None:
            return ProviderValidation(valid=False, error=f"Unknown provider: {name}")
        if feature not in config.supported_features:
            return ProviderValidation(
                valid=False,
                error=f"Provider {name} does not support feature: {feature}",
            )
        return ProviderValidation(valid=True)

    def get_provider_status(self, name: str) -> ProviderStatus:
        """
        Return provider availability, reusing a recent check when present.

        Configured providers are reported available without a live probe.
        """
        cached = self._status_cache.get(name)
        if cached is not None:
            logger.debug("Provider status cache hit", extra={"provider": name})
            return cached

        now = self.clock.now()
        if name not in self.providers:
            status = ProviderStatus(
                available=False, error=f"Unknown provider: {name}", last_checked=now
            )
        else:
            status = ProviderStatus(available=True, last_checked=now)

        self._status_cache.set(name, status)
        return status

    def get_default_provider(self, preferred: Optional[str] = None) -> str:
        if preferred:
            if self.get_provider_status(preferred).available:
                return preferred
            logger.info(f"Preferred provider {preferred} unavailable, falling back")

        for name in self.providers:
            if self.get_provider_status(name).available:
                return name

        raise NoProvidersAvailableError("No AI providers are available")

    def estimate_cost(self, name: str, feature: str, tokens: int) -> CostEstimate:
        """Estimate spend; unknown providers or features cost nothing."""
        rate = self.pricing.get(name, {}).get(feature, 0.0)
        cost = (tokens / 1000) * rate
        return CostEstimate(
            estimated_cost=cost,
            currency="USD",
            breakdown={
                "tokens": float(tokens),
                "rate": rate * 1000,
                "cost": cost,
            },
        )


@lru_cache(maxsize=1)
def get_provider_registry() -> ProviderRegistry:
    """Get cached instance of ProviderRegistry."""
    config = get_config()
    return ProviderRegistry(status_ttl_seconds=config.provider_status_ttl_seconds)


__all__ = [
    "AI_PROVIDERS",
    "PRICING",
    "ProviderRegistry",
    "get_provider_registry",
]
