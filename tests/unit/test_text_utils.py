"""Unit tests for text utility functions."""

import pytest

from clinical_core.utils.text_utils import is_parsing_error, parse_structured_reply


class TestParseStructuredReply:
    """Test cases for parse_structured_reply function."""

    def test_plain_json(self):
        assert parse_structured_reply('{"a": 1}') == {"a": 1}
        assert parse_structured_reply('  {"a": 1}\n') == {"a": 1}

    def test_fenced_json(self):
        text = 'Here you go:\n```json\n{"a": 1}\n```\nAnything else?'
        assert parse_structured_reply(text) == {"a": 1}

    def test_fence_without_language(self):
        assert parse_structured_reply('```\n{"a": [1, 2]}\n```') == {"a": [1, 2]}

    def test_json_surrounded_by_prose(self):
        text = 'Sure! {"acuity_level": 2, "nested": {"x": true}} Let me know.'
        assert parse_structured_reply(text) == {"acuity_level": 2, "nested": {"x": True}}

    def test_unparseable_text_is_preserved(self):
        result = parse_structured_reply("The patient seems fine.")

        assert result == {"raw_response": "The patient seems fine.", "parsing_error": True}
        assert is_parsing_error(result) is True

    def test_non_object_json_is_a_parsing_error(self):
        assert is_parsing_error(parse_structured_reply("[1, 2, 3]"))
        assert is_parsing_error(parse_structured_reply('"just a string"'))

    def test_broken_json_is_a_parsing_error(self):
        assert is_parsing_error(parse_structured_reply('{"a": 1,'))

    @pytest.mark.parametrize("parsed", [
        {"a": 1},
        {"parsing_error": True},
        {"raw_response": "x", "parsing_error": "yes"},
    ])
    def test_is_parsing_error_requires_both_markers(self, parsed):
        assert is_parsing_error(parsed) is False
