"""Service layer for map generation, provider access and persistence."""

from .cache import SystemClock, TTLCache
from .config import AppConfig, get_config, reload_config
from .database import DatabaseService, init_database
from .errors import (
    ConfigurationError,
    ConflictError,
    MapEngineError,
    NoProvidersAvailableError,
    NotFoundError,
    ParseError,
    UnknownProviderError,
    UnknownTemplateError,
    UnsupportedComplexityError,
    UpstreamProviderError,
    ValidationError,
)
from .map_engine import AIMapEngine, get_map_engine
from .map_store import MapStore, MapStoreError, SqliteMapStore
from .prompt_templates import PromptTemplateEngine, RenderedPrompt
from .provider_registry import ProviderRegistry, get_provider_registry
from .providers import ProviderAdapter, create_adapter

__all__ = [
    "AppConfig",
    "get_config",
    "reload_config",
    "DatabaseService",
    "init_database",
    "SystemClock",
    "TTLCache",
    "MapEngineError",
    "ValidationError",
    "ConfigurationError",
    "NotFoundError",
    "ConflictError",
    "UnknownProviderError",
    "UnsupportedComplexityError",
    "UnknownTemplateError",
    "NoProvidersAvailableError",
    "UpstreamProviderError",
    "ParseError",
    "AIMapEngine",
    "get_map_engine",
    "MapStore",
    "MapStoreError",
    "SqliteMapStore",
    "PromptTemplateEngine",
    "RenderedPrompt",
    "ProviderRegistry",
    "get_provider_registry",
    "ProviderAdapter",
    "create_adapter",
]
