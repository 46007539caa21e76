"""Pydantic models for data validation and serialization."""

from .generation import (
    ExpansionRequest,
    ExpansionResult,
    Feature,
    GenerateRequest,
    GenerateResult,
    GenerationJob,
    GenerationOptions,
    GenerationResult,
    JobStatus,
    ProviderConfig,
    ProviderStatus,
    RegenerationRequest,
    RegenerationResult,
    SummarizationRequest,
    SummarizationResult,
)
from .mindmap import (
    Citation,
    ComplexityLevel,
    MapNode,
    MindMap,
    MindMapMetadata,
    NodeShape,
    VisualMetadata,
)

__all__ = [
    "Citation",
    "ComplexityLevel",
    "MapNode",
    "MindMap",
    "MindMapMetadata",
    "NodeShape",
    "VisualMetadata",
    "Feature",
    "ProviderConfig",
    "ProviderStatus",
    "GenerationOptions",
    "GenerationResult",
    "GenerationJob",
    "JobStatus",
    "GenerateRequest",
    "GenerateResult",
    "ExpansionRequest",
    "ExpansionResult",
    "RegenerationRequest",
    "RegenerationResult",
    "SummarizationRequest",
    "SummarizationResult",
]
