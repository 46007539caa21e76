"""Pydantic models for generation requests, results and provider settings."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, Field

from .mindmap import ComplexityLevel, MapNode, MindMap


class Feature(str, Enum):
    """Capabilities a provider may support."""

    REASONING = "reasoning"
    SUMMARY = "summary"
    EXPANSION = "expansion"
    CITATIONS = "citations"


class ProviderConfig(BaseModel):
    """Static configuration for one LLM backend."""

    name: str
    models: Dict[str, str] = Field(..., description="Model name per feature")
    max_tokens: Dict[str, int] = Field(..., description="Token cap per feature")
    default_temperature: float = 0.7
    supported_features: Set[str] = Field(default_factory=set)


class ModelConfig(BaseModel):
    """Resolved call settings for a provider/feature pair."""

    model: str
    max_tokens: int
    temperature: float


class ProviderStatus(BaseModel):
    """Cached availability of a provider."""

    available: bool
    error: Optional[str] = None
    last_checked: datetime


class ProviderValidation(BaseModel):
    """Outcome of checking a provider/feature request."""

    valid: bool
    error: Optional[str] = None


class CostEstimate(BaseModel):
    """Estimated spend for a number of tokens."""

    estimated_cost: float
    currency: str = "USD"
    breakdown: Dict[str, float] = Field(default_factory=dict)


class GenerationOptions(BaseModel):
    """Per-call options handed to a provider adapter."""

    model: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    system_prompt: Optional[str] = None
    json_output: bool = Field(default=True, description="Ask the backend for JSON-formatted output")


class GenerationResult(BaseModel):
    """Raw text returned by a provider."""

    content: str
    tokens_used: int = Field(default=0, ge=0)
    provider: str
    model: str


class GenerateRequest(BaseModel):
    """Request to build a brand-new map from a prompt."""

    prompt: str
    complexity: ComplexityLevel = ComplexityLevel.MODERATE
    focus: Optional[str] = None
    sources: List[str] = Field(default_factory=list, description="Source material texts")
    provider: Optional[str] = None
    workspace_id: Optional[str] = None
    user_id: Optional[str] = None
    api_key: Optional[str] = Field(None, repr=False, exclude=True)


class ExpansionRequest(BaseModel):
    """Request to add children under an existing node."""

    node_id: str
    prompt: Optional[str] = None
    depth: Optional[int] = Field(None, ge=1)
    complexity: Optional[ComplexityLevel] = None
    provider: Optional[str] = None
    user_id: str
    api_key: Optional[str] = Field(None, repr=False, exclude=True)


class RegenerationRequest(ExpansionRequest):
    """Request to rewrite a node in place (same shape as expansion)."""


class SummarizationRequest(BaseModel):
    """Request to summarize a whole map."""

    mind_map_id: str
    provider: Optional[str] = None
    user_id: str
    api_key: Optional[str] = Field(None, repr=False, exclude=True)


class GenerateResult(BaseModel):
    """Outcome of the generate operation."""

    mind_map: MindMap
    tokens_used: int = 0
    provider: str


class ExpansionResult(BaseModel):
    """Outcome of the expand operation."""

    new_nodes: List[MapNode] = Field(default_factory=list)
    tokens_used: int = 0
    provider: str


class RegenerationResult(BaseModel):
    """Outcome of the regenerate operation."""

    node: MapNode
    tokens_used: int = 0
    provider: str


class SummarizationResult(BaseModel):
    """Outcome of the summarize operation."""

    summary: str
    tokens_used: Optional[int] = None
    provider: Optional[str] = None
    cached: bool = False


class JobStatus(str, Enum):
    """Lifecycle of a recorded generation run."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class GenerationJob(BaseModel):
    """One provider-backed engine run, kept for cost accounting."""

    id: str
    mind_map_id: Optional[str] = None
    provider: str
    feature: Feature
    prompt: str
    status: JobStatus = JobStatus.PROCESSING
    error: Optional[str] = None
    tokens_used: int = Field(default=0, ge=0)
    estimated_cost: float = 0.0
    started_at: datetime
    completed_at: Optional[datetime] = None


class PromptValidation(BaseModel):
    """Batch-reportable result of checking template variables."""

    valid: bool
    errors: List[str] = Field(default_factory=list)


class PromptTokenEstimate(BaseModel):
    """Estimated tokens for a rendered prompt pair."""

    system_tokens: int
    user_tokens: int
    total_tokens: int
