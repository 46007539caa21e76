"""AIMapEngine - turns prompts and existing nodes into validated map structure.

Every operation follows the same path: build a prompt from a named template,
resolve the provider and call a per-request adapter (which owns retries),
parse and validate the reply, then hand one delta to the MapStore. A failure
anywhere before the store call leaves the map untouched.

Operations on the same map race only at the store: structural writes carry
the map version they read and fail with ``ConflictError`` if it moved.

Each run that reaches a provider is recorded as a generation job with its
status, token usage and estimated cost.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from functools import lru_cache
import logging
from typing import Callable, Dict, List, Optional
import uuid

from ..models.generation import (
    ExpansionRequest,
    ExpansionResult,
    Feature,
    GenerateRequest,
    GenerateResult,
    GenerationJob,
    GenerationOptions,
    GenerationResult,
    JobStatus,
    RegenerationRequest,
    RegenerationResult,
    SummarizationRequest,
    SummarizationResult,
)
from ..models.mindmap import ComplexityLevel, MapNode, MindMap, MindMapMetadata
from .cache import SystemClock
from .config import get_config
from .database import DatabaseService
from .errors import (
    ConfigurationError,
    NotFoundError,
    ParseError,
    UnknownProviderError,
    ValidationError,
)
from .map_store import MapStore, MapStoreError, SqliteMapStore
from .map_tree import (
    assign_structure,
    count_nodes,
    find_node,
    find_parent,
    max_depth,
    next_child_order,
    render_outline,
)
from .prompt_templates import PromptTemplateEngine, RenderedPrompt
from .provider_registry import ProviderRegistry, get_provider_registry
from .providers import ProviderAdapter, create_adapter
from .response_parser import (
    draft_to_node,
    parse_expansion,
    parse_map,
    parse_regeneration,
    unwrap,
)

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[str, str], ProviderAdapter]

GENERATE_INSTRUCTIONS = "Create a comprehensive mind map from scratch."
EXPAND_DEFAULT_FOCUS = "Provide comprehensive coverage of this topic"
REGENERATE_DEFAULT_FOCUS = "Provide a comprehensive and accurate representation of this topic"
REGENERATE_INSTRUCTIONS = (
    "Regenerate this node with improved clarity and detail while maintaining the same depth level."
)
SUMMARY_TEMPERATURE = 0.5


class AIMapEngine:
    """Generate, expand, regenerate and summarize mind maps with an LLM.

    The engine holds no per-map state. Time-dependent behaviour (the summary
    cache window) reads the injected clock, and the only shared mutable state
    is the registry's provider-status cache.
    """

    DEFAULT_PROMPT_TOKEN_LIMIT = 8000

    def __init__(
        self,
        store: MapStore,
        registry: Optional[ProviderRegistry] = None,
        templates: Optional[PromptTemplateEngine] = None,
        adapter_factory: Optional[AdapterFactory] = None,
        clock: Optional[SystemClock] = None,
        summary_ttl_seconds: float = 3600.0,
        default_provider: Optional[str] = None,
        prompt_token_limit: int = DEFAULT_PROMPT_TOKEN_LIMIT,
    ):
        """Initialize the engine.

        Args:
            store: Persistence collaborator for maps and nodes
            registry: Provider table and availability cache
            templates: Prompt template engine
            adapter_factory: Builds an adapter from (provider, api_key)
            clock: Clock used for summary freshness and timestamps
            summary_ttl_seconds: How long a stored summary is served as-is
            default_provider: Preferred provider when a request names none
            prompt_token_limit: Budget for variable-heavy prompts
        """
        self.store = store
        self.registry = registry or get_provider_registry()
        self.templates = templates or PromptTemplateEngine()
        self.adapter_factory = adapter_factory or create_adapter
        self.clock = clock or SystemClock()
        self.summary_ttl = timedelta(seconds=summary_ttl_seconds)
        self.default_provider = default_provider
        self.prompt_token_limit = prompt_token_limit

    # ========================================
    # Generate
    # ========================================

    async def generate(self, request: GenerateRequest) -> GenerateResult:
        """Create a new map from ``request.prompt`` and persist its whole tree."""
        variables = {
            "prompt": request.prompt,
            "focusPrompt": f"Focus on: {request.focus}" if request.focus else "",
            "instructions": GENERATE_INSTRUCTIONS,
            "sources": "\n\n".join(request.sources),
        }
        self._require_variables("mindmap-reasoning", variables)

        provider = self._resolve_provider(request.provider, Feature.REASONING)
        adapter = self._build_adapter(provider, request.api_key)
        rendered = self._render_within_budget("mindmap-reasoning", variables, request.complexity)

        job = self._start_job(provider, Feature.REASONING, request.prompt)
        result: Optional[GenerationResult] = None
        try:
            result = await self._call(adapter, provider, Feature.REASONING, rendered)
            draft = unwrap(parse_map(result.content), "mind map")

            root_nodes = assign_structure([draft_to_node(d) for d in draft.root_nodes])
            if draft.complexity != request.complexity:
                logger.debug(
                    "Provider echoed a different complexity",
                    extra={
                        "requested": request.complexity.value,
                        "returned": draft.complexity.value,
                    },
                )

            now = self.clock.now()
            mind_map = MindMap(
                id=str(uuid.uuid4()),
                workspace_id=request.workspace_id,
                title=draft.title,
                description=draft.description,
                prompt=request.prompt,
                provider=provider,
                complexity=request.complexity,
                root_nodes=root_nodes,
                metadata=MindMapMetadata(
                    total_nodes=count_nodes(root_nodes),
                    max_depth=max_depth(root_nodes),
                    created_at=now,
                    updated_at=now,
                ),
            )
            saved = self.store.create_map(mind_map)
        except (Exception, asyncio.CancelledError) as e:
            self._fail_job(job, e, result)
            raise
        self._complete_job(job, result, mind_map_id=saved.id)

        logger.info(
            f"Generated mind map {saved.id} with {saved.metadata.total_nodes} nodes",
            extra={"provider": provider, "tokens_used": result.tokens_used},
        )
        return GenerateResult(mind_map=saved, tokens_used=result.tokens_used, provider=provider)

    # ========================================
    # Expand
    # ========================================

    async def expand_node(self, mind_map_id: str, request: ExpansionRequest) -> ExpansionResult:
        """Append generated children after the node's existing ones.

        Existing children keep their ids and orders; new siblings continue
        numbering from the current highest order.
        """
        provider = self._resolve_provider(request.provider, Feature.EXPANSION)
        adapter = self._build_adapter(provider, request.api_key)
        mind_map, node = self._load_node(mind_map_id, request.node_id)

        complexity = request.complexity or mind_map.complexity
        variables = {
            "prompt": request.prompt or node.title or node.content,
            "nodeTitle": node.title or "Untitled",
            "nodeContent": node.content,
            "parentContext": self._parent_context(mind_map, node),
            "focusPrompt": request.prompt or EXPAND_DEFAULT_FOCUS,
            "instructions": f"Expand with {request.depth or 2} levels of depth.",
        }
        rendered = self._render_within_budget("node-expansion", variables, complexity)

        job = self._start_job(
            provider, Feature.EXPANSION, f"Expand node: {variables['nodeTitle']}", mind_map.id
        )
        result: Optional[GenerationResult] = None
        try:
            result = await self._call(adapter, provider, Feature.EXPANSION, rendered)
            draft = unwrap(parse_expansion(result.content), "expansion")

            new_nodes = assign_structure(
                [draft_to_node(d) for d in draft.children],
                parent=node,
                start_order=next_child_order(node.children),
            )
            updated = self.store.apply_changes(
                mind_map.id,
                expected_version=mind_map.version,
                new_nodes=new_nodes,
                updated_at=self.clock.now(),
            )
        except (Exception, asyncio.CancelledError) as e:
            self._fail_job(job, e, result)
            raise
        self._complete_job(job, result)

        persisted = find_node(updated.root_nodes, node.id)
        new_ids = {n.id for n in new_nodes}
        created = [c for c in (persisted.children if persisted else []) if c.id in new_ids]

        logger.info(
            f"Expanded node {node.id} with {len(created)} children",
            extra={"map_id": mind_map.id, "provider": provider, "tokens_used": result.tokens_used},
        )
        return ExpansionResult(new_nodes=created, tokens_used=result.tokens_used, provider=provider)

    # ========================================
    # Regenerate
    # ========================================

    async def regenerate_node(
        self, mind_map_id: str, request: RegenerationRequest
    ) -> RegenerationResult:
        """Rewrite a node's title/content in place, keeping its id.

        When the reply carries a non-empty ``children`` list the node's old
        subtree is replaced by it; otherwise the subtree is left alone.
        """
        provider = self._resolve_provider(request.provider, Feature.REASONING)
        adapter = self._build_adapter(provider, request.api_key)
        mind_map, node = self._load_node(mind_map_id, request.node_id)

        complexity = request.complexity or mind_map.complexity
        variables = {
            "prompt": request.prompt or node.title or node.content,
            "nodeTitle": node.title or "Untitled",
            "nodeContent": node.content,
            "parentContext": self._parent_context(mind_map, node),
            "focusPrompt": request.prompt or REGENERATE_DEFAULT_FOCUS,
            "instructions": REGENERATE_INSTRUCTIONS,
        }
        rendered = self._render_within_budget("node-regeneration", variables, complexity)

        job = self._start_job(
            provider, Feature.REASONING, f"Regenerate node: {variables['nodeTitle']}", mind_map.id
        )
        result: Optional[GenerationResult] = None
        try:
            result = await self._call(adapter, provider, Feature.REASONING, rendered)
            draft = unwrap(parse_regeneration(result.content), "regeneration")

            revised = node.model_copy(
                update={
                    "title": draft.title or node.title,
                    "content": draft.content or node.content,
                }
            )
            new_children: List[MapNode] = []
            deleted: List[str] = []
            if draft.children:
                new_children = assign_structure(
                    [draft_to_node(d) for d in draft.children], parent=revised
                )
                deleted = [child.id for child in node.children]

            updated = self.store.apply_changes(
                mind_map.id,
                expected_version=mind_map.version,
                new_nodes=new_children,
                updated_nodes=[revised],
                deleted_node_ids=deleted,
                updated_at=self.clock.now(),
            )
        except (Exception, asyncio.CancelledError) as e:
            self._fail_job(job, e, result)
            raise
        self._complete_job(job, result)

        persisted = find_node(updated.root_nodes, node.id)
        if persisted is None:
            raise NotFoundError(f"Node not found: {node.id}", {"node_id": node.id})

        logger.info(
            f"Regenerated node {node.id}"
            + (f", replaced {len(deleted)} children with {len(new_children)}" if new_children else ""),
            extra={"map_id": mind_map.id, "provider": provider, "tokens_used": result.tokens_used},
        )
        return RegenerationResult(node=persisted, tokens_used=result.tokens_used, provider=provider)

    # ========================================
    # Summarize
    # ========================================

    async def summarize_mind_map(self, request: SummarizationRequest) -> SummarizationResult:
        """Return the stored summary if it is fresh, otherwise generate one."""
        mind_map = self.store.get_map(request.mind_map_id)
        if mind_map is None:
            raise NotFoundError(
                f"Mind map not found: {request.mind_map_id}", {"map_id": request.mind_map_id}
            )

        if self._summary_is_fresh(mind_map):
            logger.debug("Serving cached summary", extra={"map_id": mind_map.id})
            return SummarizationResult(summary=mind_map.summary or "", cached=True)

        provider = self._resolve_provider(request.provider, Feature.SUMMARY)
        adapter = self._build_adapter(provider, request.api_key)

        variables = {
            "prompt": mind_map.prompt or mind_map.title,
            "mapTitle": mind_map.title,
            "mapStructure": render_outline(mind_map.root_nodes),
            "focusAreas": "all areas",
            "summaryLength": "comprehensive",
            "summaryStyle": "analytical and insightful",
        }
        rendered = self._render_within_budget(
            "map-summarization", variables, mind_map.complexity
        )

        job = self._start_job(
            provider, Feature.SUMMARY, f"Summarize mind map: {mind_map.title}", mind_map.id
        )
        result: Optional[GenerationResult] = None
        try:
            result = await self._call(
                adapter,
                provider,
                Feature.SUMMARY,
                rendered,
                temperature=SUMMARY_TEMPERATURE,
                json_output=False,
            )
            summary = result.content.strip()
            if not summary:
                raise ParseError("Provider returned an empty summary")

            self.store.update_summary(mind_map.id, summary, self.clock.now())
        except (Exception, asyncio.CancelledError) as e:
            self._fail_job(job, e, result)
            raise
        self._complete_job(job, result)

        logger.info(
            f"Summarized mind map {mind_map.id}",
            extra={"provider": provider, "tokens_used": result.tokens_used},
        )
        return SummarizationResult(
            summary=summary,
            tokens_used=result.tokens_used,
            provider=provider,
            cached=False,
        )

    async def validate_credential(self, provider: str, api_key: str) -> bool:
        """Probe ``provider`` once with ``api_key``."""
        self.registry.get_provider_config(provider)
        adapter = self._build_adapter(provider, api_key)
        return await adapter.validate_key(api_key)

    # ========================================
    # Helpers
    # ========================================

    def _resolve_provider(self, requested: Optional[str], feature: Feature) -> str:
        provider = requested or self.registry.get_default_provider(self.default_provider)
        validation = self.registry.validate_provider_request(provider, feature.value)
        if not validation.valid:
            if provider not in self.registry.providers:
                raise UnknownProviderError(validation.error or "", {"provider": provider})
            raise ValidationError(
                validation.error or "", {"provider": provider, "feature": feature.value}
            )
        return provider

    def _build_adapter(self, provider: str, api_key: Optional[str]) -> ProviderAdapter:
        if not api_key or not api_key.strip():
            raise ConfigurationError(
                f"No API key configured for provider {provider}", {"provider": provider}
            )
        return self.adapter_factory(provider, api_key)

    def _load_node(self, mind_map_id: str, node_id: str) -> tuple[MindMap, MapNode]:
        mind_map = self.store.get_map(mind_map_id)
        if mind_map is None:
            raise NotFoundError(f"Mind map not found: {mind_map_id}", {"map_id": mind_map_id})
        node = find_node(mind_map.root_nodes, node_id)
        if node is None:
            raise NotFoundError(
                f"Node not found: {node_id}", {"map_id": mind_map_id, "node_id": node_id}
            )
        return mind_map, node

    @staticmethod
    def _parent_context(mind_map: MindMap, node: MapNode) -> str:
        parts = [f"Mind map: {mind_map.title}"]
        parent = find_parent(mind_map.root_nodes, node.id)
        if parent is not None:
            parts.append(f"Parent: {parent.title or parent.content[:100]}")
        if node.children:
            titles = ", ".join(child.title or child.content[:40] for child in node.children)
            parts.append(f"Existing children ({len(node.children)}): {titles}")
        else:
            parts.append("No existing children")
        return "\n".join(parts)

    def _require_variables(self, template: str, variables: Dict[str, Optional[str]]) -> None:
        validation = self.templates.validate_prompt_variables(template, variables)
        if not validation.valid:
            raise ValidationError(
                "; ".join(validation.errors), {"template": template, "errors": validation.errors}
            )

    def _render_within_budget(
        self,
        template: str,
        variables: Dict[str, Optional[str]],
        complexity: ComplexityLevel,
    ) -> RenderedPrompt:
        self._require_variables(template, variables)
        trimmed = self.templates.optimize_variables_for_token_limit(
            template, variables, complexity, self.prompt_token_limit
        )
        return self.templates.generate_prompt(template, trimmed, complexity)

    async def _call(
        self,
        adapter: ProviderAdapter,
        provider: str,
        feature: Feature,
        rendered: RenderedPrompt,
        temperature: Optional[float] = None,
        json_output: bool = True,
    ) -> GenerationResult:
        model_config = self.registry.get_model_config(provider, feature.value)
        estimate = self.registry.estimate_cost(
            provider,
            feature.value,
            adapter.estimate_tokens(rendered.system_prompt + rendered.user_prompt),
        )
        logger.debug(
            f"Calling {provider} for {feature.value}",
            extra={"model": model_config.model, "estimated_cost": estimate.estimated_cost},
        )
        return await adapter.generate_response(
            rendered.user_prompt,
            GenerationOptions(
                model=model_config.model,
                max_tokens=model_config.max_tokens,
                temperature=temperature if temperature is not None else model_config.temperature,
                system_prompt=rendered.system_prompt,
                json_output=json_output,
            ),
        )

    def _start_job(
        self,
        provider: str,
        feature: Feature,
        prompt: str,
        mind_map_id: Optional[str] = None,
    ) -> GenerationJob:
        return self.store.create_job(
            GenerationJob(
                id=str(uuid.uuid4()),
                mind_map_id=mind_map_id,
                provider=provider,
                feature=feature,
                prompt=prompt,
                started_at=self.clock.now(),
            )
        )

    def _complete_job(
        self,
        job: GenerationJob,
        result: GenerationResult,
        mind_map_id: Optional[str] = None,
    ) -> None:
        estimate = self.registry.estimate_cost(job.provider, job.feature.value, result.tokens_used)
        self.store.finish_job(
            job.id,
            JobStatus.COMPLETED,
            self.clock.now(),
            tokens_used=result.tokens_used,
            estimated_cost=estimate.estimated_cost,
            mind_map_id=mind_map_id,
        )

    def _fail_job(
        self,
        job: GenerationJob,
        error: BaseException,
        result: Optional[GenerationResult] = None,
    ) -> None:
        # Tokens are spent once the provider answered, even if the reply is unusable
        tokens_used = result.tokens_used if result is not None else 0
        estimate = self.registry.estimate_cost(job.provider, job.feature.value, tokens_used)
        message = str(error) or type(error).__name__
        try:
            self.store.finish_job(
                job.id,
                JobStatus.FAILED,
                self.clock.now(),
                tokens_used=tokens_used,
                estimated_cost=estimate.estimated_cost,
                error=message,
            )
        except MapStoreError as e:
            logger.error(f"Failed to mark generation job {job.id} as failed: {e}")

    def _summary_is_fresh(self, mind_map: MindMap) -> bool:
        updated_at = mind_map.metadata.updated_at
        if not mind_map.summary or updated_at is None:
            return False
        return self.clock.now() - updated_at < self.summary_ttl


@lru_cache(maxsize=1)
def get_map_engine() -> AIMapEngine:
    """Get cached engine wired to the configured database."""
    config = get_config()
    return AIMapEngine(
        store=SqliteMapStore(DatabaseService(config.db_path)),
        registry=get_provider_registry(),
        summary_ttl_seconds=config.summary_cache_ttl_seconds,
        default_provider=config.default_provider,
    )


__all__ = ["AIMapEngine", "AdapterFactory", "get_map_engine"]
