"""Pydantic models for mind maps, nodes and citations."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class ComplexityLevel(str, Enum):
    """Generation breadth/depth axis."""

    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"
    DETAILED = "detailed"
    EXPERT = "expert"


class NodeShape(str, Enum):
    """Shapes the editor knows how to draw."""

    RECTANGLE = "rectangle"
    CIRCLE = "circle"
    DIAMOND = "diamond"
    HEXAGON = "hexagon"


class Citation(BaseModel):
    """A source reference attached to a node."""

    id: Optional[str] = Field(None, description="Citation identifier")
    title: str = Field(..., description="Source title")
    url: Optional[str] = Field(None, description="Source URL")
    summary: Optional[str] = Field(None, description="Short summary of the source")
    author: Optional[str] = Field(None, description="Source author")


class VisualMetadata(BaseModel):
    """Position and appearance of a node on the canvas."""

    x: float = 0
    y: float = 0
    width: float = Field(default=120, gt=0)
    height: float = Field(default=80, gt=0)
    color: Optional[str] = None
    shape: NodeShape = NodeShape.RECTANGLE


class MapNode(BaseModel):
    """One element of the hierarchical structure."""

    id: str = Field(..., description="Node identifier")
    parent_id: Optional[str] = Field(None, description="Parent node id (None for roots)")
    title: Optional[str] = Field(None, description="Short node title")
    content: str = Field(..., description="Node body text")
    level: int = Field(..., ge=0, description="Depth in hierarchy (0 = root)")
    order: int = Field(..., ge=0, description="Position among siblings")
    visual: VisualMetadata = Field(default_factory=VisualMetadata)
    is_collapsed: bool = False
    citations: List[Citation] = Field(default_factory=list)
    children: List["MapNode"] = Field(default_factory=list)


class MindMapMetadata(BaseModel):
    """Derived statistics and timestamps for a map."""

    total_nodes: int = Field(default=0, ge=0)
    max_depth: int = Field(default=0, ge=0)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MindMap(BaseModel):
    """Root aggregate: title, optional summary/prompt, and a node tree."""

    id: str = Field(..., description="Mind map identifier")
    workspace_id: Optional[str] = Field(None, description="Owning workspace")
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    summary: Optional[str] = None
    prompt: Optional[str] = None
    provider: Optional[str] = None
    complexity: ComplexityLevel = ComplexityLevel.MODERATE
    version: int = Field(default=1, ge=1, description="Bumped on every structural write")
    root_nodes: List[MapNode] = Field(default_factory=list)
    metadata: MindMapMetadata = Field(default_factory=MindMapMetadata)


MapNode.model_rebuild()
