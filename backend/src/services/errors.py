"""Error taxonomy shared by the map generation engine."""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class MapEngineError(Exception):
    """Base class for engine failures."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(MapEngineError):
    """Malformed caller input."""


class ConfigurationError(MapEngineError):
    """No credential configured for the requested provider."""


class NotFoundError(MapEngineError):
    """Map or node could not be resolved."""


class UnknownProviderError(MapEngineError):
    """Provider name is not registered."""


class UnsupportedComplexityError(MapEngineError):
    """Template does not accept the requested complexity."""


class UnknownTemplateError(MapEngineError):
    """Template name is not registered."""


class NoProvidersAvailableError(MapEngineError):
    """Registry has no available provider left to choose."""


class ConflictError(MapEngineError):
    """Map changed between read and write."""


class UpstreamProviderError(MapEngineError):
    """Backend call failed after all retries were exhausted."""

    def __init__(
        self,
        message: str,
        provider: str,
        cause: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.provider = provider
        self.cause = cause


class ParseError(MapEngineError):
    """Backend returned non-JSON or schema-invalid content."""

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.errors = errors or []


__all__ = [
    "MapEngineError",
    "ValidationError",
    "ConfigurationError",
    "NotFoundError",
    "UnknownProviderError",
    "UnsupportedComplexityError",
    "UnknownTemplateError",
    "NoProvidersAvailableError",
    "ConflictError",
    "UpstreamProviderError",
    "ParseError",
]
