"""Tests for lenient LLM response parsing and prompts."""

import pytest

from concept_graph.errors import MalformedResponseError
from concept_graph.llm.parsing import extract_payload, parse_relations, strip_code_fences
from concept_graph.llm.prompts import GRAPH_EXTRACTION_SYSTEM_PROMPT, system_prompt, user_prompt


class TestParseRelations:
    """Tests for parse_relations."""

    def test_plain_array(self):
        """Test the node_1/node_2/edge format."""
        response = """[
            {"node_1": "Rust", "node_1_type": "language", "node_2": "Cargo",
             "node_2_type": "tool", "edge": "is built with"}
        ]"""

        triples = parse_relations(response)

        assert len(triples) == 1
        assert triples[0].subject == "Rust"
        assert triples[0].object == "Cargo"
        assert triples[0].relation == "is built with"
        assert triples[0].subject_type == "language"
        assert triples[0].object_type == "tool"

    def test_code_fence(self):
        """Test a response wrapped in a json code fence."""
        response = '```json\n[{"node_1": "A", "node_2": "B", "edge": "uses"}]\n```'

        triples = parse_relations(response, chunk_id="c1")

        assert [(t.subject, t.object, t.source_chunk_id) for t in triples] == [("A", "B", "c1")]

    def test_prose_around_array(self):
        """Test an array embedded in explanatory text."""
        response = 'Here are the relations [as requested]:\n[{"subject": "A", "predicate": "calls", "object": "B"}]\nDone.'

        triples = parse_relations(response)

        assert len(triples) == 1
        assert triples[0].relation == "calls"

    def test_brackets_inside_strings(self):
        """Test that brackets inside string values do not confuse the scanner."""
        response = 'Result: [{"node_1": "list[int]", "node_2": "B]", "edge": "holds [items]"}]'

        triples = parse_relations(response)

        assert triples[0].subject == "list[int]"
        assert triples[0].object == "B]"

    def test_object_with_relations_key(self):
        """Test an object holding the array under a known key."""
        response = '{"relations": [{"source": "A", "target": "B", "relation": "uses"}]}'

        triples = parse_relations(response)

        assert triples[0].subject == "A"
        assert triples[0].object == "B"

    def test_incomplete_items_skipped(self):
        """Test that items without both ends are skipped, not fatal."""
        response = '[{"node_1": "A"}, "junk", {"node_1": "A", "node_2": "B"}]'

        triples = parse_relations(response)

        assert len(triples) == 1
        assert triples[0].relation == "related to"

    def test_empty_array(self):
        """Test that an empty array is a valid answer."""
        assert parse_relations("[]") == []

    def test_no_payload_is_malformed(self):
        """Test that prose without JSON is malformed."""
        with pytest.raises(MalformedResponseError):
            parse_relations("I could not find any relations in this text.")

    def test_empty_response_is_malformed(self):
        """Test an empty response."""
        with pytest.raises(MalformedResponseError):
            parse_relations("   ")

    def test_object_without_relations_is_malformed(self):
        """Test that an unrelated object is not accepted as a payload."""
        with pytest.raises(MalformedResponseError):
            extract_payload('{"answer": 42}')

    def test_strip_code_fences(self):
        """Test fence removal."""
        assert strip_code_fences("```\n[1]\n```") == "[1]"
        assert strip_code_fences("[1]") == "[1]"


class TestPrompts:
    """Tests for prompt construction."""

    def test_system_prompt_without_domain(self):
        """Test the base system prompt."""
        assert system_prompt() == GRAPH_EXTRACTION_SYSTEM_PROMPT
        assert system_prompt("   ") == GRAPH_EXTRACTION_SYSTEM_PROMPT

    def test_system_prompt_with_domain(self):
        """Test that domain context is appended."""
        prompt = system_prompt("Kubernetes operations")

        assert prompt.startswith(GRAPH_EXTRACTION_SYSTEM_PROMPT)
        assert "Kubernetes operations" in prompt

    def test_user_prompt_fences_chunk(self):
        """Test that the chunk is delimited."""
        assert "```some text```" in user_prompt("some text")
