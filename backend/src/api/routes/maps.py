"""HTTP API routes for mind map generation operations."""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field

from ...models.generation import (
    ExpansionRequest,
    ExpansionResult,
    GenerateRequest,
    GenerateResult,
    RegenerationRequest,
    RegenerationResult,
    SummarizationRequest,
    SummarizationResult,
)
from ...models.mindmap import ComplexityLevel
from ...services.map_engine import AIMapEngine, get_map_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/maps", tags=["maps"])

PROVIDER_KEY_HEADER = "X-Provider-Key"


def get_user_id() -> str:
    """Return the current user ID. For now, hardcoded to 'local-dev'."""
    return "local-dev"


class GenerateBody(BaseModel):
    prompt: str
    complexity: ComplexityLevel = ComplexityLevel.MODERATE
    focus: Optional[str] = None
    sources: List[str] = Field(default_factory=list)
    provider: Optional[str] = None
    workspace_id: Optional[str] = None


class NodeBody(BaseModel):
    node_id: str
    prompt: Optional[str] = None
    depth: Optional[int] = Field(None, ge=1)
    complexity: Optional[ComplexityLevel] = None
    provider: Optional[str] = None


class SummarizeBody(BaseModel):
    provider: Optional[str] = None


@router.post("/generate", response_model=GenerateResult, status_code=201)
async def generate_map(
    body: GenerateBody,
    x_provider_key: Optional[str] = Header(None, alias=PROVIDER_KEY_HEADER),
    engine: AIMapEngine = Depends(get_map_engine),
):
    """Generate a new mind map from a prompt."""
    request = GenerateRequest(
        **body.model_dump(), user_id=get_user_id(), api_key=x_provider_key
    )
    return await engine.generate(request)


@router.post("/{map_id}/expand-node", response_model=ExpansionResult)
async def expand_node(
    map_id: str,
    body: NodeBody,
    x_provider_key: Optional[str] = Header(None, alias=PROVIDER_KEY_HEADER),
    engine: AIMapEngine = Depends(get_map_engine),
):
    """Add generated children under an existing node."""
    request = ExpansionRequest(
        **body.model_dump(), user_id=get_user_id(), api_key=x_provider_key
    )
    return await engine.expand_node(map_id, request)


@router.post("/{map_id}/regenerate-node", response_model=RegenerationResult)
async def regenerate_node(
    map_id: str,
    body: NodeBody,
    x_provider_key: Optional[str] = Header(None, alias=PROVIDER_KEY_HEADER),
    engine: AIMapEngine = Depends(get_map_engine),
):
    """Rewrite a node in place, optionally replacing its subtree."""
    request = RegenerationRequest(
        **body.model_dump(), user_id=get_user_id(), api_key=x_provider_key
    )
    return await engine.regenerate_node(map_id, request)


@router.post("/{map_id}/summarize", response_model=SummarizationResult)
async def summarize_map(
    map_id: str,
    body: Optional[SummarizeBody] = None,
    x_provider_key: Optional[str] = Header(None, alias=PROVIDER_KEY_HEADER),
    engine: AIMapEngine = Depends(get_map_engine),
):
    """Summarize a map, serving the stored summary while it is fresh."""
    request = SummarizationRequest(
        mind_map_id=map_id,
        provider=body.provider if body else None,
        user_id=get_user_id(),
        api_key=x_provider_key,
    )
    return await engine.summarize_mind_map(request)


__all__ = ["router", "get_user_id", "PROVIDER_KEY_HEADER"]
