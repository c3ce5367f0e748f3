"""Tests for shared LLM response parsing utilities."""

import json

import pytest
from attention.common.llm_utils import extract_json_block


class TestExtractJsonBlock:
    def test_bare_object(self):
        assert extract_json_block('{"urgency_score": 4}') == '{"urgency_score": 4}'

    def test_json_fence(self):
        raw = 'Result:\n```json\n{"relevance": "high"}\n```\nDone.'
        assert json.loads(extract_json_block(raw)) == {"relevance": "high"}

    def test_plain_fence(self):
        raw = '```\n{"a": 1}\n```'
        assert json.loads(extract_json_block(raw)) == {"a": 1}

    def test_json_fence_preferred_over_plain_fence(self):
        raw = '```\nnot this\n```\n```json\n{"b": 2}\n```'
        assert json.loads(extract_json_block(raw)) == {"b": 2}

    def test_think_block_removed(self):
        raw = '<think>maybe {"wrong": true}</think>\n{"urgency_score": 7}'
        assert json.loads(extract_json_block(raw)) == {"urgency_score": 7}

    def test_stray_closing_think_tag(self):
        raw = 'reasoning about {"draft": 1}</think>{"urgency_score": 2}'
        assert json.loads(extract_json_block(raw)) == {"urgency_score": 2}

    def test_object_embedded_in_prose(self):
        raw = 'Here is my answer: {"key": "value"} hope that helps.'
        assert extract_json_block(raw) == '{"key": "value"}'

    def test_nested_object_keeps_outer_span(self):
        raw = 'x {"context": {"hrv": 41}, "tags": ["sleep"]} y'
        assert json.loads(extract_json_block(raw)) == {"context": {"hrv": 41}, "tags": ["sleep"]}

    @pytest.mark.parametrize("raw", ["", None, "no json here", "} backwards {"])
    def test_no_object_returns_none(self, raw):
        assert extract_json_block(raw) is None

    def test_invalid_json_still_returned(self):
        # Callers are responsible for json.loads
        assert extract_json_block('{"broken: json}') == '{"broken: json}'
