"""Unit tests for PromptTemplateEngine."""

from pathlib import Path

import pytest

from backend.src.models.mindmap import ComplexityLevel
from backend.src.services.errors import UnknownTemplateError, UnsupportedComplexityError
from backend.src.services.prompt_templates import (
    PromptTemplate,
    PromptTemplateEngine,
    estimate_tokens,
)


@pytest.fixture
def engine(tmp_path: Path) -> PromptTemplateEngine:
    """Engine with no on-disk overrides."""
    return PromptTemplateEngine(prompts_dir=tmp_path / "missing")


class TestRegistry:
    """Tests for template lookup."""

    def test_lists_builtin_templates(self, engine: PromptTemplateEngine) -> None:
        assert set(engine.list_templates()) == {
            "mindmap-reasoning",
            "node-regeneration",
            "node-expansion",
            "map-summarization",
        }

    def test_unknown_template(self, engine: PromptTemplateEngine) -> None:
        with pytest.raises(UnknownTemplateError):
            engine.get_template("nope")

        with pytest.raises(UnknownTemplateError):
            engine.generate_prompt("nope", {"prompt": "x"}, ComplexityLevel.SIMPLE)


class TestGeneratePrompt:
    """Tests for rendering."""

    def test_simple_and_expert_instructions_differ(self, engine: PromptTemplateEngine) -> None:
        simple = engine.generate_prompt(
            "mindmap-reasoning", {"prompt": "Rust ownership"}, ComplexityLevel.SIMPLE
        )
        expert = engine.generate_prompt(
            "mindmap-reasoning", {"prompt": "Rust ownership"}, ComplexityLevel.EXPERT
        )

        assert "2-4 top-level branches" in simple.user_prompt
        assert "8-12 top-level branches" in expert.user_prompt
        assert simple.user_prompt != expert.user_prompt
        assert 'for the following prompt: "Rust ownership"' in simple.user_prompt

    def test_missing_placeholders_render_empty(self, engine: PromptTemplateEngine) -> None:
        rendered = engine.generate_prompt(
            "mindmap-reasoning", {"prompt": "Topic"}, ComplexityLevel.MODERATE
        )

        assert "{focusPrompt}" not in rendered.user_prompt
        assert "{sources}" not in rendered.user_prompt
        assert '"complexity": "moderate"' in rendered.user_prompt

    def test_accepts_complexity_string(self, engine: PromptTemplateEngine) -> None:
        rendered = engine.generate_prompt("mindmap-reasoning", {"prompt": "Topic"}, "detailed")

        assert "6-10 top-level branches" in rendered.user_prompt

    def test_rejects_unknown_complexity_string(self, engine: PromptTemplateEngine) -> None:
        with pytest.raises(UnsupportedComplexityError):
            engine.generate_prompt("mindmap-reasoning", {"prompt": "Topic"}, "trivial")

    def test_rejects_complexity_outside_template(self, engine: PromptTemplateEngine) -> None:
        engine.register(
            PromptTemplate(
                name="simple-only",
                system_prompt="System",
                user_prompt_template="{prompt}",
                supported_complexity={ComplexityLevel.SIMPLE},
            )
        )

        with pytest.raises(UnsupportedComplexityError):
            engine.generate_prompt("simple-only", {"prompt": "x"}, ComplexityLevel.EXPERT)

    def test_summary_defaults_fill_style(self, engine: PromptTemplateEngine) -> None:
        rendered = engine.generate_prompt(
            "map-summarization",
            {"prompt": "p", "mapTitle": "Title", "mapStructure": "- Root"},
            ComplexityLevel.MODERATE,
        )

        assert "Focus areas: all areas" in rendered.user_prompt
        assert "Title: Title" in rendered.user_prompt

    def test_system_prompt_override(self, tmp_path: Path) -> None:
        override = tmp_path / "prompts" / "map-summarization"
        override.mkdir(parents=True)
        (override / "system.md").write_text("Summarize at {{ complexity }} depth.")
        engine = PromptTemplateEngine(prompts_dir=tmp_path / "prompts")

        overridden = engine.generate_prompt(
            "map-summarization",
            {"prompt": "p", "mapTitle": "T", "mapStructure": "- R"},
            ComplexityLevel.COMPLEX,
        )
        builtin = engine.generate_prompt(
            "node-expansion",
            {"prompt": "p", "nodeTitle": "T", "nodeContent": "C"},
            ComplexityLevel.COMPLEX,
        )

        assert overridden.system_prompt == "Summarize at complex depth."
        assert builtin.system_prompt.startswith("You are an expert at expanding")


class TestValidateVariables:
    """Tests for variable validation."""

    def test_missing_prompt(self, engine: PromptTemplateEngine) -> None:
        result = engine.validate_prompt_variables("mindmap-reasoning", {"prompt": "  "})

        assert result.valid is False
        assert result.errors == ["Missing required variable: prompt"]

    def test_reports_all_expansion_errors(self, engine: PromptTemplateEngine) -> None:
        result = engine.validate_prompt_variables("node-expansion", {})

        assert result.valid is False
        assert result.errors == [
            "Missing required variable: prompt",
            "Missing required variable for expansion: nodeTitle",
            "Missing required variable for expansion: nodeContent",
        ]

    def test_summarization_requirements(self, engine: PromptTemplateEngine) -> None:
        result = engine.validate_prompt_variables(
            "map-summarization", {"prompt": "p", "mapTitle": "T"}
        )

        assert result.errors == ["Missing required variable for summarization: mapStructure"]

    def test_valid(self, engine: PromptTemplateEngine) -> None:
        result = engine.validate_prompt_variables("mindmap-reasoning", {"prompt": "Topic"})

        assert result.valid is True
        assert result.errors == []


class TestTokenBudget:
    """Tests for token estimation and truncation."""

    def test_estimate_tokens_rounds_up(self) -> None:
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2

    def test_estimate_prompt_tokens_sums_parts(self, engine: PromptTemplateEngine) -> None:
        estimate = engine.estimate_prompt_tokens(
            "mindmap-reasoning", {"prompt": "Topic"}, ComplexityLevel.SIMPLE
        )

        assert estimate.total_tokens == estimate.system_tokens + estimate.user_tokens
        assert estimate.user_tokens > 0

    def test_within_limit_is_noop(self, engine: PromptTemplateEngine) -> None:
        variables = {"prompt": "Topic", "nodeTitle": "Title", "nodeContent": "Content"}

        optimized = engine.optimize_variables_for_token_limit(
            "node-expansion", variables, ComplexityLevel.SIMPLE, 100_000
        )

        assert optimized == variables
        assert optimized is not variables

    def test_truncation_lowers_tokens_and_keeps_prompt(
        self, engine: PromptTemplateEngine
    ) -> None:
        prompt = "What matters most " * 50
        variables = {
            "prompt": prompt,
            "nodeTitle": "Distributed systems",
            "nodeContent": "consensus " * 2000,
            "parentContext": "Parent: Computing " * 200,
        }
        before = engine.estimate_prompt_tokens(
            "node-expansion", variables, ComplexityLevel.MODERATE
        )

        optimized = engine.optimize_variables_for_token_limit(
            "node-expansion", variables, ComplexityLevel.MODERATE, 1000
        )
        after = engine.estimate_prompt_tokens(
            "node-expansion", optimized, ComplexityLevel.MODERATE
        )

        assert after.total_tokens < before.total_tokens
        assert optimized["prompt"] == prompt
        assert optimized["nodeContent"].endswith("...")
        assert len(optimized["nodeContent"]) < len(variables["nodeContent"])
