"""Named prompt templates for map generation, expansion, regeneration and summaries.

Each template pairs a system prompt with a user prompt skeleton containing
``{placeholder}`` tokens. Rendering substitutes every placeholder from the
supplied variables (missing ones become empty strings), injects the
complexity instruction, and can trim variables to fit a token budget.

System prompts may be overridden on disk: if ``prompts_dir/<template>/system.md``
exists it is rendered with Jinja2 (context: ``complexity``) and used instead of
the built-in text. Overrides are reloaded on every call.
"""

from __future__ import annotations

import logging
import math
import re
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Set, Union

import jinja2
from pydantic import BaseModel, Field

from ..models.generation import PromptTokenEstimate, PromptValidation
from ..models.mindmap import ComplexityLevel
from .errors import UnknownTemplateError, UnsupportedComplexityError

logger = logging.getLogger(__name__)

DEFAULT_PROMPTS_DIR = Path(__file__).resolve().parent.parent.parent / "prompts"

PLACEHOLDER_PATTERN = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")
TRUNCATION_MARKER = "..."

Variables = Mapping[str, Optional[str]]

ALL_COMPLEXITIES: Set[ComplexityLevel] = set(ComplexityLevel)

COMPLEXITY_INSTRUCTIONS: Dict[ComplexityLevel, str] = {
    ComplexityLevel.SIMPLE: (
        "COMPLEXITY: Simple - Focus on the main concepts with minimal detail. "
        "Create 2-4 top-level branches with 2-3 sub-nodes each."
    ),
    ComplexityLevel.MODERATE: (
        "COMPLEXITY: Moderate - Provide balanced detail with good coverage. "
        "Create 3-6 top-level branches with 3-5 sub-nodes each."
    ),
    ComplexityLevel.COMPLEX: (
        "COMPLEXITY: Complex - Include comprehensive detail and explore connections deeply. "
        "Create 4-8 top-level branches with 4-6 sub-nodes each, including "
        "cross-connections where relevant."
    ),
    ComplexityLevel.DETAILED: (
        "COMPLEXITY: Detailed - Provide a very thorough breakdown. "
        "Create 6-10 top-level branches with 5-8 sub-nodes each. "
        "Focus on granularity and completeness."
    ),
    ComplexityLevel.EXPERT: (
        "COMPLEXITY: Expert - Provide professional-grade analysis with extensive depth. "
        "Create 8-12 top-level branches with multiple sub-levels. Include sophisticated "
        "concepts, terminology, and cross-references."
    ),
}

VARIABLE_DEFAULTS: Dict[str, str] = {
    "focusAreas": "all areas",
    "summaryLength": "detailed",
    "summaryStyle": "analytical",
}

# Variables that must be non-empty, beyond "prompt", per template
TEMPLATE_REQUIRED_VARIABLES: Dict[str, List[str]] = {
    "node-expansion": ["nodeTitle", "nodeContent"],
    "map-summarization": ["mapTitle", "mapStructure"],
}

_TEMPLATE_LABELS = {
    "node-expansion": "expansion",
    "map-summarization": "summarization",
}


class PromptTemplate(BaseModel):
    """A named system/user prompt skeleton."""

    name: str
    description: str = ""
    system_prompt: str
    user_prompt_template: str
    supported_complexity: Set[ComplexityLevel] = Field(
        default_factory=lambda: set(ALL_COMPLEXITIES)
    )


class RenderedPrompt(BaseModel):
    system_prompt: str
    user_prompt: str


_NODE_VISUAL_EXAMPLE = """      "visual": {
        "x": 0,
        "y": 0,
        "width": 120,
        "height": 80,
        "shape": "rectangle"
      },
      "citations": [],
      "children": []"""

PROMPT_TEMPLATES: List[PromptTemplate] = [
    PromptTemplate(
        name="mindmap-reasoning",
        description="Generate a comprehensive mind map structure",
        system_prompt="""You are an expert mind map generator. Create structured, hierarchical mind maps from prompts and source materials. Follow these guidelines:

1. STRUCTURE: Create a tree-like hierarchy with clear parent-child relationships
2. CONTENT: Use concise, informative titles and rich content for each node
3. CITATIONS: Include relevant citations when source material is provided
4. COMPLEXITY: Adapt detail level based on the specified complexity
5. VALIDATION: Ensure all nodes have meaningful content and proper relationships

Always respond with valid JSON that matches the specified schema.""",
        user_prompt_template="""Generate a mind map for the following prompt: "{prompt}"

{focusPrompt}

{complexityInstruction}

{instructions}

{sources}

Return the mind map as a JSON object with the following structure:
{
  "title": "Main topic title",
  "description": "Optional brief description",
  "complexity": "{complexity}",
  "rootNodes": [
    {
      "title": "Branch title",
      "content": "Branch content",
      "citations": [],
      "children": []
    }
  ]
}

Ensure the mind map is comprehensive, well-structured, and follows the specified complexity level.""",
    ),
    PromptTemplate(
        name="node-regeneration",
        description="Regenerate existing mind map nodes with improved content",
        system_prompt="""You are an expert at regenerating mind map nodes with improved clarity, accuracy, and detail. Focus on:

1. CLARITY: Make the content clearer and more understandable
2. ACCURACY: Ensure all information is factually correct
3. COMPLETENESS: Cover all important aspects of the topic
4. CONSISTENCY: Maintain the overall mind map structure and style
5. IMPROVEMENT: Enhance the node while preserving its core meaning

Always respond with valid JSON that matches the specified schema.""",
        user_prompt_template="""Regenerate this mind map node with improved content:

Current Node:
- Title: {nodeTitle}
- Content: {nodeContent}
- Context: {parentContext}

{focusPrompt}

{complexityInstruction}

{instructions}

Return the regenerated node as a JSON object:
{
  "title": "Improved title",
  "content": "Enhanced content with better clarity and detail",
  "children": [
    {
      "title": "Child node title",
      "content": "Child node content",
"""
        + _NODE_VISUAL_EXAMPLE
        + """
    }
  ]
}

Omit "children" to keep the node's current sub-nodes. Ensure the regenerated node maintains the same hierarchical level and improves upon the original content.""",
    ),
    PromptTemplate(
        name="node-expansion",
        description="Expand existing mind map nodes with additional detail",
        system_prompt="""You are an expert at expanding mind map nodes with relevant, detailed content. Focus on:

1. RELEVANCE: Ensure expanded content directly relates to the parent node
2. HIERARCHY: Create logical sub-nodes that break down the main topic
3. DEPTH: Adjust detail level based on complexity and context
4. CONNECTIONS: Maintain clear relationships to the parent node
5. INNOVATION: Add unique insights and connections where appropriate

Always respond with valid JSON that matches the node schema.""",
        user_prompt_template="""Expand the following mind map node:

Current Node: {nodeTitle}
Current Content: {nodeContent}
Context: {parentContext}

Focus on: {focusPrompt}
Complexity: {complexity}
{complexityInstruction}
Instructions: {instructions}

Generate 3-7 child nodes that expand this topic meaningfully. Do not repeat existing children. Return as JSON:
{
  "children": [
    {
      "title": "Child node title",
      "content": "Child node content",
      "citations": [],
      "children": []
    }
  ]
}""",
    ),
    PromptTemplate(
        name="map-summarization",
        description="Generate comprehensive summaries of mind maps",
        system_prompt="""You are an expert at analyzing and summarizing complex information structures. Your task is to create clear, comprehensive summaries of mind maps that:

1. CAPTURE ESSENCE: Identify the core themes and key insights
2. MAINTAIN STRUCTURE: Preserve the hierarchical relationships in the summary
3. HIGHLIGHT CONNECTIONS: Point out important connections between branches
4. PROVIDE VALUE: Offer additional insights or implications not explicitly stated
5. STAY CONCISE: Provide thorough but digestible summaries

Always respond with clear, well-structured text.""",
        user_prompt_template="""Create a comprehensive summary of the following mind map:

Title: {mapTitle}
Structure:
{mapStructure}

Focus areas: {focusAreas}
Length: {summaryLength}
Style: {summaryStyle}

Provide a detailed summary that captures the essence, key insights, and important connections.""",
    ),
]


def get_complexity_instruction(complexity: ComplexityLevel) -> str:
    return COMPLEXITY_INSTRUCTIONS[complexity]


def estimate_tokens(text: str) -> int:
    """Rough estimate: 1 token per 4 characters."""
    return math.ceil(len(text) / 4)


class PromptTemplateEngine:
    """Render, validate and budget prompts from the template registry.

    Example:
        >>> engine = PromptTemplateEngine()
        >>> prompt = engine.generate_prompt("mindmap-reasoning", {"prompt": "Rust"}, "simple")
    """

    def __init__(
        self,
        templates: Optional[List[PromptTemplate]] = None,
        prompts_dir: Optional[Path] = None,
    ) -> None:
        """Initialize the engine.

        Args:
            templates: Template registry (defaults to PROMPT_TEMPLATES).
            prompts_dir: Directory holding ``<template>/system.md`` overrides.
        """
        self._templates: Dict[str, PromptTemplate] = {
            t.name: t for t in (templates if templates is not None else PROMPT_TEMPLATES)
        }
        self.prompts_dir = prompts_dir or DEFAULT_PROMPTS_DIR

        if self.prompts_dir.is_dir():
            self.env: Optional[jinja2.Environment] = jinja2.Environment(
                loader=jinja2.FileSystemLoader(str(self.prompts_dir)),
                autoescape=False,
                auto_reload=True,
                keep_trailing_newline=True,
            )
            logger.debug(
                "Prompt overrides enabled",
                extra={"prompts_dir": str(self.prompts_dir)},
            )
        else:
            self.env = None

    def list_templates(self) -> List[str]:
        return list(self._templates.keys())

    def get_template(self, name: str) -> PromptTemplate:
        template = self._templates.get(name)
        if template is None:
            raise UnknownTemplateError(f"Unknown template: {name}", {"template": name})
        return template

    def register(self, template: PromptTemplate) -> None:
        self._templates[template.name] = template

    def generate_prompt(
        self,
        name: str,
        variables: Variables,
        complexity: Union[ComplexityLevel, str],
    ) -> RenderedPrompt:
        """Render the system and user prompts for ``name``.

        Raises:
            UnknownTemplateError: If ``name`` is not registered.
            UnsupportedComplexityError: If the template rejects ``complexity``.
        """
        template = self.get_template(name)
        level = _coerce_complexity(name, complexity)
        if level not in template.supported_complexity:
            raise UnsupportedComplexityError(
                f"Template {name} does not support complexity {level.value}",
                {"template": name, "complexity": level.value},
            )

        values: Dict[str, str] = dict(VARIABLE_DEFAULTS)
        for key, value in variables.items():
            if value:
                values[key] = value
        values["complexity"] = level.value
        values["complexityInstruction"] = get_complexity_instruction(level)

        user_prompt = PLACEHOLDER_PATTERN.sub(
            lambda m: values.get(m.group(1), ""), template.user_prompt_template
        )
        return RenderedPrompt(
            system_prompt=self._system_prompt(template, level),
            user_prompt=user_prompt,
        )

    def _system_prompt(self, template: PromptTemplate, level: ComplexityLevel) -> str:
        if self.env is None:
            return template.system_prompt
        path = f"{template.name}/system.md"
        try:
            rendered = self.env.get_template(path).render(complexity=level.value)
        except jinja2.TemplateNotFound:
            return template.system_prompt
        logger.debug("Loaded system prompt override", extra={"path": path})
        return rendered

    def validate_prompt_variables(self, name: str, variables: Variables) -> PromptValidation:
        """Collect every missing required variable instead of failing on the first."""
        if name not in self._templates:
            return PromptValidation(valid=False, errors=[f"Unknown template: {name}"])

        errors: List[str] = []
        if not (variables.get("prompt") or "").strip():
            errors.append("Missing required variable: prompt")

        label = _TEMPLATE_LABELS.get(name)
        for required in TEMPLATE_REQUIRED_VARIABLES.get(name, []):
            if not (variables.get(required) or "").strip():
                errors.append(f"Missing required variable for {label}: {required}")

        return PromptValidation(valid=not errors, errors=errors)

    def estimate_prompt_tokens(
        self,
        name: str,
        variables: Variables,
        complexity: Union[ComplexityLevel, str],
    ) -> PromptTokenEstimate:
        rendered = self.generate_prompt(name, variables, complexity)
        system_tokens = estimate_tokens(rendered.system_prompt)
        user_tokens = estimate_tokens(rendered.user_prompt)
        return PromptTokenEstimate(
            system_tokens=system_tokens,
            user_tokens=user_tokens,
            total_tokens=system_tokens + user_tokens,
        )

    def optimize_variables_for_token_limit(
        self,
        name: str,
        variables: Variables,
        complexity: Union[ComplexityLevel, str],
        max_tokens: int,
    ) -> Dict[str, Optional[str]]:
        """Shrink every variable except ``prompt`` so the prompt fits ``max_tokens``.

        Each truncatable value is cut by the same ratio, derived from the token
        excess, and suffixed with ``...``. Every cut removes at least one
        token's worth of characters, so the estimate strictly drops whenever a
        rendered variable is long enough to cut. Within the limit this is a
        no-op and returns the input values unchanged.
        """
        estimate = self.estimate_prompt_tokens(name, variables, complexity)
        optimized: Dict[str, Optional[str]] = dict(variables)
        if estimate.total_tokens <= max_tokens:
            return optimized

        placeholders = set(PLACEHOLDER_PATTERN.findall(self.get_template(name).user_prompt_template))
        truncatable = [
            key
            for key, value in optimized.items()
            if key != "prompt" and key in placeholders and value
        ]
        budget_chars = sum(len(optimized[key] or "") for key in truncatable)
        if budget_chars == 0:
            logger.warning(
                "Prompt exceeds token limit but has nothing to truncate",
                extra={"template": name, "total_tokens": estimate.total_tokens},
            )
            return optimized

        excess_chars = (estimate.total_tokens - max_tokens) * 4
        ratio = max(0.1, 1 - excess_chars / budget_chars)
        min_cut = len(TRUNCATION_MARKER) + 4

        for key in truncatable:
            value = optimized[key] or ""
            new_length = min(math.floor(len(value) * ratio), len(value) - min_cut)
            if new_length >= 0:
                optimized[key] = value[:new_length] + TRUNCATION_MARKER

        logger.debug(
            "Truncated prompt variables",
            extra={"template": name, "ratio": round(ratio, 3), "keys": truncatable},
        )
        return optimized


def _coerce_complexity(name: str, complexity: Union[ComplexityLevel, str]) -> ComplexityLevel:
    if isinstance(complexity, ComplexityLevel):
        return complexity
    try:
        return ComplexityLevel(complexity)
    except ValueError:
        raise UnsupportedComplexityError(
            f"Template {name} does not support complexity {complexity}",
            {"template": name, "complexity": complexity},
        ) from None


__all__ = [
    "COMPLEXITY_INSTRUCTIONS",
    "DEFAULT_PROMPTS_DIR",
    "PROMPT_TEMPLATES",
    "PromptTemplate",
    "PromptTemplateEngine",
    "RenderedPrompt",
    "estimate_tokens",
    "get_complexity_instruction",
]
