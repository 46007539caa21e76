"""Parse-then-validate boundary for provider output.

Provider text is untrusted. It is first decoded as JSON, then checked against
draft schemas; only a successful ``ParsedOk`` carries a value onward, and the
engine builds its own ``MapNode`` objects from the drafts. Nothing here
touches storage.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import re
from typing import Any, Generic, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ..models.mindmap import Citation, ComplexityLevel, MapNode, VisualMetadata
from .errors import ParseError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_FENCE_PATTERN = re.compile(r"^\s*```(?:json)?\s*\n(.*?)\n\s*```\s*$", re.DOTALL)

# Deepest node nesting accepted from a provider, counting roots as depth 1
MAX_DRAFT_DEPTH = 32


# ========================================
# Tagged outcome
# ========================================


@dataclass(frozen=True)
class ParsedOk(Generic[T]):
    value: T


@dataclass(frozen=True)
class ParseFailure:
    """Text was not JSON."""

    message: str


@dataclass(frozen=True)
class SchemaFailure:
    """JSON did not match the expected shape."""

    errors: List[str]


ParseOutcome = Union[ParsedOk[T], ParseFailure, SchemaFailure]


def unwrap(outcome: "ParseOutcome[T]", what: str) -> T:
    """Return the parsed value or raise ``ParseError`` describing the failure."""
    if isinstance(outcome, ParsedOk):
        return outcome.value
    if isinstance(outcome, ParseFailure):
        raise ParseError(f"Failed to parse {what} response as JSON: {outcome.message}")
    raise ParseError(
        f"Invalid {what} structure: {'; '.join(outcome.errors)}",
        errors=list(outcome.errors),
    )


# ========================================
# Draft schemas
# ========================================


class _Draft(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class CitationDraft(_Draft):
    title: str = Field(..., min_length=1)
    url: Optional[str] = None
    summary: Optional[str] = None
    author: Optional[str] = None


class NodeDraft(_Draft):
    title: Optional[str] = None
    content: str = ""
    visual: Optional[VisualMetadata] = None
    is_collapsed: bool = Field(default=False, alias="isCollapsed")
    citations: List[CitationDraft] = Field(default_factory=list)
    children: List["NodeDraft"] = Field(default_factory=list)

    @model_validator(mode="after")
    def _require_text(self) -> "NodeDraft":
        if not self.content.strip():
            if not (self.title or "").strip():
                raise ValueError("node needs a title or content")
            self.content = self.title or ""
        return self


NodeDraft.model_rebuild()


class MapDraft(_Draft):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    complexity: ComplexityLevel
    root_nodes: List[NodeDraft] = Field(..., alias="rootNodes")


class ExpansionDraft(_Draft):
    children: List[NodeDraft] = Field(..., min_length=1)


class RegenerationDraft(_Draft):
    title: Optional[str] = None
    content: Optional[str] = None
    # None keeps the current subtree; a list replaces it
    children: Optional[List[NodeDraft]] = None

    @model_validator(mode="after")
    def _require_change(self) -> "RegenerationDraft":
        if not (self.title or "").strip() and not (self.content or "").strip():
            raise ValueError("regenerated node needs a title or content")
        return self


# ========================================
# Parsing
# ========================================


def _strip_fences(text: str) -> str:
    match = _FENCE_PATTERN.match(text)
    return match.group(1) if match else text


def _decode(text: str) -> Union[Any, ParseFailure]:
    try:
        return json.loads(_strip_fences(text.strip()))
    except json.JSONDecodeError as e:
        return ParseFailure(str(e))
    except RecursionError:
        return ParseFailure("JSON nesting is too deep")


def _validate(schema: Type[BaseModel], data: Any) -> "ParseOutcome":
    try:
        return ParsedOk(schema.model_validate(data))
    except ValidationError as e:
        return SchemaFailure(
            [f"{'.'.join(str(p) for p in err['loc']) or 'root'}: {err['msg']}" for err in e.errors()]
        )
    except RecursionError:
        return SchemaFailure(["root: nesting is too deep to validate"])


def _draft_depth(nodes: List[NodeDraft]) -> int:
    deepest = 0
    stack = [(node, 1) for node in nodes]
    while stack:
        node, depth = stack.pop()
        deepest = max(deepest, depth)
        stack.extend((child, depth + 1) for child in node.children)
    return deepest


def _limit_depth(
    outcome: "ParseOutcome", nodes: Optional[List[NodeDraft]], field: str
) -> "ParseOutcome":
    if nodes and _draft_depth(nodes) > MAX_DRAFT_DEPTH:
        logger.warning("Rejected provider output nested too deeply", extra={"field": field})
        return SchemaFailure([f"{field}: nodes nested deeper than {MAX_DRAFT_DEPTH} levels"])
    return outcome


def parse_map(text: str) -> "ParseOutcome[MapDraft]":
    data = _decode(text)
    if isinstance(data, ParseFailure):
        return data
    outcome = _validate(MapDraft, data)
    if isinstance(outcome, ParsedOk):
        return _limit_depth(outcome, outcome.value.root_nodes, "rootNodes")
    return outcome


def parse_expansion(text: str) -> "ParseOutcome[ExpansionDraft]":
    """Accepts ``{"children": [...]}`` or a bare JSON array of nodes."""
    data = _decode(text)
    if isinstance(data, ParseFailure):
        return data
    if isinstance(data, list):
        data = {"children": data}
    outcome = _validate(ExpansionDraft, data)
    if isinstance(outcome, ParsedOk):
        return _limit_depth(outcome, outcome.value.children, "children")
    return outcome


def parse_regeneration(text: str) -> "ParseOutcome[RegenerationDraft]":
    data = _decode(text)
    if isinstance(data, ParseFailure):
        return data
    outcome = _validate(RegenerationDraft, data)
    if isinstance(outcome, ParsedOk):
        return _limit_depth(outcome, outcome.value.children, "children")
    return outcome


# ========================================
# Draft -> domain
# ========================================


def draft_to_node(draft: NodeDraft) -> MapNode:
    """Build an unnumbered node; ids, levels and orders are assigned afterwards."""
    return MapNode(
        id="",
        title=draft.title,
        content=draft.content,
        level=0,
        order=0,
        visual=draft.visual or VisualMetadata(),
        is_collapsed=draft.is_collapsed,
        citations=[Citation(**c.model_dump()) for c in draft.citations],
        children=[draft_to_node(child) for child in draft.children],
    )


__all__ = [
    "CitationDraft",
    "ExpansionDraft",
    "MAX_DRAFT_DEPTH",
    "MapDraft",
    "NodeDraft",
    "ParseFailure",
    "ParseOutcome",
    "ParsedOk",
    "RegenerationDraft",
    "SchemaFailure",
    "draft_to_node",
    "parse_expansion",
    "parse_map",
    "parse_regeneration",
    "unwrap",
]
