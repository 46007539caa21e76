"""Unit tests for provider response parsing."""

import json

import pytest

from backend.src.models.mindmap import ComplexityLevel
from backend.src.services.errors import ParseError
from backend.src.services.response_parser import (
    MAX_DRAFT_DEPTH,
    ParsedOk,
    ParseFailure,
    SchemaFailure,
    draft_to_node,
    parse_expansion,
    parse_map,
    parse_regeneration,
    unwrap,
)

MAP_JSON = json.dumps(
    {
        "title": "Photosynthesis",
        "description": "How plants make food",
        "complexity": "simple",
        "rootNodes": [
            {
                "title": "Light reactions",
                "content": "Happen in the thylakoid",
                "citations": [{"title": "Biology 101", "url": "https://example.org/bio"}],
                "children": [{"title": "Photosystem II", "content": "Splits water"}],
            },
            {"title": "Calvin cycle", "content": "Fixes carbon", "isCollapsed": True},
        ],
    }
)


class TestParseMap:
    """Tests for parse_map()."""

    def test_valid_map(self) -> None:
        outcome = parse_map(MAP_JSON)

        assert isinstance(outcome, ParsedOk)
        draft = outcome.value
        assert draft.title == "Photosynthesis"
        assert draft.complexity == ComplexityLevel.SIMPLE
        assert len(draft.root_nodes) == 2
        assert draft.root_nodes[0].children[0].title == "Photosystem II"
        assert draft.root_nodes[1].is_collapsed is True

    def test_strips_code_fences(self) -> None:
        outcome = parse_map(f"```json\n{MAP_JSON}\n```")

        assert isinstance(outcome, ParsedOk)

    def test_not_json(self) -> None:
        outcome = parse_map("Sure! Here is your mind map.")

        assert isinstance(outcome, ParseFailure)

    def test_missing_root_nodes(self) -> None:
        outcome = parse_map(json.dumps({"title": "T", "complexity": "simple"}))

        assert isinstance(outcome, SchemaFailure)
        assert any("rootNodes" in error for error in outcome.errors)

    def test_invalid_complexity(self) -> None:
        outcome = parse_map(json.dumps({"title": "T", "complexity": "huge", "rootNodes": []}))

        assert isinstance(outcome, SchemaFailure)

    def test_node_without_text_rejected(self) -> None:
        outcome = parse_map(
            json.dumps({"title": "T", "complexity": "simple", "rootNodes": [{"children": []}]})
        )

        assert isinstance(outcome, SchemaFailure)

    def test_content_defaults_to_title(self) -> None:
        outcome = parse_map(
            json.dumps({"title": "T", "complexity": "simple", "rootNodes": [{"title": "Only"}]})
        )

        assert isinstance(outcome, ParsedOk)
        assert outcome.value.root_nodes[0].content == "Only"


class TestParseExpansion:
    """Tests for parse_expansion()."""

    def test_object_with_children(self) -> None:
        outcome = parse_expansion(json.dumps({"children": [{"title": "A", "content": "a"}]}))

        assert isinstance(outcome, ParsedOk)
        assert [c.title for c in outcome.value.children] == ["A"]

    def test_bare_list(self) -> None:
        outcome = parse_expansion(json.dumps([{"title": "A"}, {"title": "B"}]))

        assert isinstance(outcome, ParsedOk)
        assert len(outcome.value.children) == 2

    def test_empty_children_rejected(self) -> None:
        assert isinstance(parse_expansion(json.dumps({"children": []})), SchemaFailure)


class TestParseRegeneration:
    """Tests for parse_regeneration()."""

    def test_without_children_keeps_subtree(self) -> None:
        outcome = parse_regeneration(json.dumps({"title": "New", "content": "Better"}))

        assert isinstance(outcome, ParsedOk)
        assert outcome.value.children is None

    def test_with_children(self) -> None:
        outcome = parse_regeneration(
            json.dumps({"title": "New", "children": [{"title": "C", "content": "c"}]})
        )

        assert isinstance(outcome, ParsedOk)
        assert len(outcome.value.children) == 1

    def test_requires_title_or_content(self) -> None:
        assert isinstance(parse_regeneration(json.dumps({"children": []})), SchemaFailure)


class TestUnwrap:
    """Tests for unwrap()."""

    def test_returns_value(self) -> None:
        assert unwrap(ParsedOk(5), "thing") == 5

    def test_parse_failure_raises(self) -> None:
        with pytest.raises(ParseError, match="Failed to parse mind map response as JSON"):
            unwrap(parse_map("not json"), "mind map")

    def test_schema_failure_carries_errors(self) -> None:
        with pytest.raises(ParseError) as exc_info:
            unwrap(parse_map(json.dumps({"title": ""})), "mind map")

        assert exc_info.value.errors
        assert exc_info.value.message.startswith("Invalid mind map structure")


def _nested_nodes(depth: int) -> str:
    """JSON text for a single chain of ``depth`` nodes."""
    return '{"title": "n", "children": [' * (depth - 1) + '{"title": "leaf"}' + "]}" * (depth - 1)


class TestNesting:
    """Tests for deeply nested provider output."""

    def test_pathological_brackets_are_a_parse_error(self) -> None:
        text = "[" * 100000 + "]" * 100000

        with pytest.raises(ParseError):
            unwrap(parse_map(text), "mind map")

    def test_deep_expansion_is_rejected(self) -> None:
        text = "[" + _nested_nodes(MAX_DRAFT_DEPTH + 1) + "]"

        outcome = parse_expansion(text)

        assert isinstance(outcome, SchemaFailure)

    def test_very_deep_map_is_rejected(self) -> None:
        text = json.dumps({"title": "T", "complexity": "simple", "rootNodes": []})
        text = text.replace("[]", "[" + _nested_nodes(400) + "]")

        with pytest.raises(ParseError):
            unwrap(parse_map(text), "mind map")

    def test_depth_at_limit_is_accepted(self) -> None:
        text = json.dumps({"title": "Rewritten", "children": []})
        text = text.replace("[]", "[" + _nested_nodes(MAX_DRAFT_DEPTH) + "]")

        assert isinstance(parse_regeneration(text), ParsedOk)


class TestDraftToNode:
    """Tests for draft_to_node()."""

    def test_builds_unnumbered_tree_with_default_visual(self) -> None:
        draft = unwrap(parse_map(MAP_JSON), "mind map")

        node = draft_to_node(draft.root_nodes[0])

        assert node.id == ""
        assert node.level == 0
        assert node.visual.width == 120
        assert node.visual.height == 80
        assert node.citations[0].url == "https://example.org/bio"
        assert node.children[0].content == "Splits water"
